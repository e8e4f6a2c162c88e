"""
JSON Repair Engine for Generative Model Output

Recovers structured data from JSON-like text produced by a generative model
that does not strictly conform to the JSON grammar.

Design Considerations:
- Ordered list of named repair strategies, each a pure ``str -> str``
  function that can be tested on its own
- A parse attempt after every strategy so the least invasive repair wins
- Bracket-aware extraction of the first top-level array/object with
  truncation recovery for cut-off responses
- Never raises: every call returns a JSONParseResult with a success flag
  and the original/cleaned lengths for observability
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

RepairStrategy = Callable[[str], str]

_CODE_FENCE_START = re.compile(r"^\s*```[a-zA-Z]*\s*")
_CODE_FENCE_END = re.compile(r"\s*```\s*$")
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_WHITESPACE = re.compile(r"\s+")
_BAREWORD_KEY = re.compile(r"([{,]\s*)([A-Za-z_$][A-Za-z0-9_$]*)\s*:")
_SINGLE_QUOTED = re.compile(r"([{\[,:]\s*)'((?:[^'\\]|\\.)*)'(?=\s*[,}\]:])")
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")
_DANGLING_COMMA = re.compile(r",\s*$")

# Escaped-quote patterns produced when the model re-escapes its own output
_ESCAPED_VALUE_THEN_KEY = re.compile(r'\\+"(\s*,\s*)\\+"')
_ESCAPED_BEFORE_COLON = re.compile(r'\\+"(\s*:)')
_ESCAPED_AFTER_COLON = re.compile(r'(:\s*)\\+"')
_ESCAPED_BEFORE_CLOSE = re.compile(r'\\+"(\s*[}\]])')
_ESCAPED_AFTER_OPEN = re.compile(r'([{\[]\s*)\\+"')
_DOUBLED_QUOTES = re.compile(r'""([^",:{}\[\]]+)""')

# Cap on truncation cut points tried, keeps recovery linear-ish on large input
_MAX_TRIM_CANDIDATES = 50


@dataclass
class JSONParseResult:
    """Outcome of a repair attempt."""
    success: bool
    data: Any = None
    error: Optional[str] = None
    original_length: int = 0
    cleaned_length: int = 0
    strategy: Optional[str] = None


def strip_code_fences(text: str) -> str:
    """Remove a leading ```json fence and a trailing ``` fence."""
    return _CODE_FENCE_END.sub("", _CODE_FENCE_START.sub("", text.strip()))


def strip_control_characters(text: str) -> str:
    """Drop control characters other than tab, CR and LF."""
    return _CONTROL_CHARS.sub("", text)


def collapse_whitespace(text: str) -> str:
    """Collapse whitespace runs, including raw newlines inside strings."""
    return _WHITESPACE.sub(" ", text).strip()


def rejoin_escaped_quotes(text: str) -> str:
    """
    Undo naive model-side re-escaping of structural quotes.

    Turns ``"UBER BV\\", \\"date": "..."`` back into two well-formed
    adjacent key/value pairs and fixes escaped quotes that sit directly
    next to a colon, an opening bracket or a closing bracket.
    """
    fixed = _ESCAPED_VALUE_THEN_KEY.sub(r'"\1"', text)
    fixed = _ESCAPED_BEFORE_COLON.sub(r'"\1', fixed)
    fixed = _ESCAPED_AFTER_COLON.sub(r'\1"', fixed)
    fixed = _ESCAPED_BEFORE_CLOSE.sub(r'"\1', fixed)
    fixed = _ESCAPED_AFTER_OPEN.sub(r'\1"', fixed)
    return _DOUBLED_QUOTES.sub(r'"\1"', fixed)


def quote_bareword_keys(text: str) -> str:
    """Quote unquoted object keys: ``{category: "X"}`` -> ``{"category": "X"}``."""
    return _BAREWORD_KEY.sub(r'\1"\2":', text)


def normalize_single_quotes(text: str) -> str:
    """Convert single-quoted keys/values to double quotes, leaving apostrophes alone."""
    def _replace(match: re.Match) -> str:
        inner = match.group(2).replace("\\'", "'").replace('"', '\\"')
        return f'{match.group(1)}"{inner}"'

    return _SINGLE_QUOTED.sub(_replace, text)


def remove_trailing_commas(text: str) -> str:
    """Remove commas before a closing bracket and at the very end."""
    return _DANGLING_COMMA.sub("", _TRAILING_COMMA.sub(r"\1", text))


CLEANUP_STRATEGIES: List[Tuple[str, RepairStrategy]] = [
    ("strip_code_fences", strip_code_fences),
    ("strip_control_characters", strip_control_characters),
    ("collapse_whitespace", collapse_whitespace),
    ("rejoin_escaped_quotes", rejoin_escaped_quotes),
    ("quote_bareword_keys", quote_bareword_keys),
    ("normalize_single_quotes", normalize_single_quotes),
    ("remove_trailing_commas", remove_trailing_commas),
]


def find_balanced_span(text: str) -> Tuple[Optional[str], bool]:
    """
    Locate the first top-level ``[...]`` or ``{...}`` span.

    Returns:
        Tuple of (span, balanced). When the structure never closes the span
        runs to the end of the text and ``balanced`` is False. Returns
        (None, False) when there is no opening bracket at all.
    """
    start = -1
    for index, char in enumerate(text):
        if char in "[{":
            start = index
            break
    if start < 0:
        return None, False

    stack: List[str] = []
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "[{":
            stack.append("]" if char == "[" else "}")
        elif char in "]}":
            if not stack or stack[-1] != char:
                # Mismatched closer, the span ends before it
                return text[start:index], False
            stack.pop()
            if not stack:
                return text[start:index + 1], True
    return text[start:], False


def _truncation_candidates(span: str) -> List[str]:
    """
    Build shortened variants of ``span`` that end on an element boundary.

    Each candidate cuts after a completed nested value or before a comma,
    then closes every bracket still open at that point. Candidates are
    ordered from longest to shortest.
    """
    cut_points: List[Tuple[int, List[str]]] = []
    stack: List[str] = []
    in_string = False
    escaped = False
    for index, char in enumerate(span):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char in "[{":
            stack.append("]" if char == "[" else "}")
        elif char in "]}":
            if stack and stack[-1] == char:
                stack.pop()
                if stack:
                    cut_points.append((index + 1, list(stack)))
        elif char == "," and stack:
            cut_points.append((index, list(stack)))

    candidates = []
    for cut, open_stack in reversed(cut_points[-_MAX_TRIM_CANDIDATES:]):
        body = remove_trailing_commas(span[:cut].rstrip())
        candidates.append(body + "".join(reversed(open_stack)))
    return candidates


def _try_parse(text: str) -> Tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except (ValueError, TypeError, RecursionError):
        return False, None


class JSONRepairEngine:
    """
    Best-effort parser for malformed JSON from generative models.

    Strategies, stopping at the first success:
    1. Direct parse of the input
    2. Structural cleanup, one named strategy at a time with a parse after each
    3. Extraction of the first balanced array/object, trimming an incomplete
       trailing element when the span is truncated or still invalid
    4. Failure, so the caller can fall back to field scraping
    """

    MAX_ATTEMPTS = 3

    def __init__(self, strategies: Optional[List[Tuple[str, RepairStrategy]]] = None):
        self.strategies = strategies or CLEANUP_STRATEGIES

    def parse(self, text: Union[str, bytes, None]) -> JSONParseResult:
        """
        Parse ``text`` with every repair strategy in turn.

        Args:
            text: Possibly malformed JSON-like text

        Returns:
            JSONParseResult; never raises
        """
        try:
            return self._parse(text)
        except Exception as e:
            # Strategies are pure string functions, this guards unforeseen input
            logger.warning(f"JSON repair aborted unexpectedly: {e}")
            length = len(text) if isinstance(text, (str, bytes)) else 0
            return JSONParseResult(
                success=False,
                error=f"Repair aborted: {e}",
                original_length=length,
                cleaned_length=0,
            )

    def _parse(self, text: Union[str, bytes, None]) -> JSONParseResult:
        if text is None:
            return JSONParseResult(success=False, error="No input")
        if isinstance(text, bytes):
            text = text.decode("utf-8", errors="replace")
        if not isinstance(text, str):
            return JSONParseResult(success=False, error=f"Unsupported input type {type(text).__name__}")

        original_length = len(text)

        ok, data = _try_parse(text)
        if ok:
            return JSONParseResult(True, data, None, original_length, original_length, "direct")

        cleaned = text
        for name, strategy in self.strategies:
            cleaned = strategy(cleaned)
            ok, data = _try_parse(cleaned)
            if ok:
                logger.debug(f"JSON repaired by '{name}' ({original_length} -> {len(cleaned)} chars)")
                return JSONParseResult(True, data, None, original_length, len(cleaned), name)

        span, balanced = find_balanced_span(cleaned)
        if span is not None:
            if balanced:
                ok, data = _try_parse(span)
                if ok:
                    logger.debug(f"JSON extracted from surrounding text ({original_length} -> {len(span)} chars)")
                    return JSONParseResult(True, data, None, original_length, len(span), "extract_span")

            for candidate in _truncation_candidates(span):
                ok, data = _try_parse(candidate)
                if ok:
                    logger.debug(
                        f"JSON recovered by trimming incomplete element "
                        f"({original_length} -> {len(candidate)} chars)"
                    )
                    return JSONParseResult(True, data, None, original_length, len(candidate), "trim_incomplete")

        logger.debug(f"All JSON repair strategies failed ({original_length} -> {len(cleaned)} chars)")
        return JSONParseResult(
            success=False,
            error="All parsing strategies failed",
            original_length=original_length,
            cleaned_length=len(cleaned),
        )

    def parse_with_retry(
        self,
        source: Union[str, Callable[[int], str]],
        max_attempts: int = MAX_ATTEMPTS,
    ) -> JSONParseResult:
        """
        Parse with retries across freshly supplied input.

        Re-parsing identical text cannot change the outcome, so a plain
        string is parsed once. A callable is invoked with the attempt number
        (starting at 1) to supply new input each time, e.g. a re-generation.

        Args:
            source: Text to parse, or a supplier of text per attempt
            max_attempts: Upper bound on supplier invocations

        Returns:
            The first successful result, or the last failure
        """
        if not callable(source):
            return self.parse(source)

        result = JSONParseResult(success=False, error="No attempts made")
        for attempt in range(1, max(1, max_attempts) + 1):
            try:
                text = source(attempt)
            except Exception as e:
                logger.warning(f"Input supplier failed on attempt {attempt}: {e}")
                result = JSONParseResult(success=False, error=f"Supplier failed: {e}")
                continue
            result = self.parse(text)
            if result.success:
                return result
            logger.debug(f"Parse attempt {attempt}/{max_attempts} failed")

        result.error = f"All {max_attempts} attempts failed. Last error: {result.error}"
        return result


def scrape_field_values(text: Optional[str], field: str = "category") -> List[str]:
    """
    Pull every ``"<field>": "<value>"`` occurrence out of raw text.

    Tolerates escaped quotes around the key and value so that partially
    re-escaped output still yields its values.
    """
    if not text:
        return []
    pattern = re.compile(
        r'\\*"' + re.escape(field) + r'\\*"\s*:\s*\\*"([^"\\]+)',
        re.IGNORECASE,
    )
    return [match.strip() for match in pattern.findall(text)]


def scrape_quoted_strings(text: Optional[str]) -> List[str]:
    """Return every double-quoted string in ``text``, in order."""
    if not text:
        return []
    return re.findall(r'"([^"\\]{1,80})"', text)
