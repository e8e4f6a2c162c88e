"""
Expense Field Extraction

Turns a fetched transaction-notification message into an ExtractedExpense.
The HTML part is preferred; its visible text is obtained with BeautifulSoup
so that the bank's table layout (label cell, value cell) reduces to
"Label:" lines followed by their values, which anchored patterns then read.

Design Considerations:
- Spanish and English labels (Comercio/Merchant, Fecha/Date, Monto/Amount,
  Ciudad y país/Location)
- Missing merchant or a non-positive amount means "not an expense email":
  the extractor returns None instead of raising
- Date resolution order: body date, then the Date header, then now
- Platform-neutral base64url decoding tolerant of missing padding
"""

import base64
import binascii
import html
import logging
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional, Tuple
from zoneinfo import ZoneInfo

from bs4 import BeautifulSoup

from expense_importer.email_processing.models import ExtractedExpense, MessagePart, RawMessage
from expense_importer.utils.date_utils import parse_email_date

logger = logging.getLogger(__name__)


def _label_pattern(labels: str) -> re.Pattern:
    # Value either follows the colon on the same line or sits on the next line
    return re.compile(
        rf"^[ \t]*(?:{labels})[ \t]*:[ \t]*(?:\n[ \t]*)?([^\n]+)",
        re.IGNORECASE | re.MULTILINE
    )


FIELD_LABELS = {
    "merchant": r"comercio|merchant",
    "date": r"fecha|date",
    "amount": r"monto|amount",
    "location": r"ciudad\s+y\s+pa[ií]s|location",
}

FIELD_PATTERNS = {field: _label_pattern(labels) for field, labels in FIELD_LABELS.items()}

_LABEL_ONLY = re.compile(r"^[^:]{1,40}:\s*$")
# A value that is itself another labelled field means the label was empty
_KNOWN_LABEL = re.compile(rf"^(?:{'|'.join(FIELD_LABELS.values())})\s*:", re.IGNORECASE)
_CURRENCY_CODE = re.compile(r"\b([A-Z]{3})\b")
_NUMBER = re.compile(r"-?\d[\d,]*(?:\.\d+)?")


def decode_base64url(data: Optional[str]) -> str:
    """Decode a base64url payload, tolerating missing padding and bad bytes."""
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as e:
        logger.warning(f"Error decoding body content: {e}")
        return ""
    return raw.decode("utf-8", errors="replace")


def _find_part(part: MessagePart, mime_type: str) -> Optional[MessagePart]:
    if part.mime_type.lower() == mime_type and part.data:
        return part
    for child in part.parts:
        found = _find_part(child, mime_type)
        if found:
            return found
    return None


def select_body(message: RawMessage) -> Tuple[str, bool]:
    """
    Decoded body text and whether it is HTML.

    Walks the MIME tree depth-first: first text/html part with data, else
    first text/plain part, else the top-level body data.
    """
    html_part = _find_part(message.payload, "text/html")
    if html_part:
        return decode_base64url(html_part.data), True

    text_part = _find_part(message.payload, "text/plain")
    if text_part:
        return decode_base64url(text_part.data), False

    body = decode_base64url(message.payload.data)
    return body, bool(re.search(r"<(?:html|body|table|p|div)\b", body, re.IGNORECASE))


def html_to_text(content: str) -> str:
    """Visible text of an HTML document, one text node per line."""
    soup = BeautifulSoup(content, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return soup.get_text("\n", strip=True)


def parse_amount(value: Optional[str], default_currency: str) -> Optional[Tuple[Decimal, str]]:
    """
    Amount and currency from a value like ``USD 45.67`` or ``12,500.00 CRC``.

    Returns:
        (amount, currency) with amount > 0, or None
    """
    if not value:
        return None

    number = _NUMBER.search(value)
    if not number:
        return None

    try:
        amount = Decimal(number.group(0).replace(",", ""))
    except InvalidOperation:
        return None
    if not amount.is_finite() or amount <= 0:
        return None

    currency = _CURRENCY_CODE.search(value)
    return amount, currency.group(1) if currency else default_currency


class EmailFieldExtractor:
    """
    Extracts expense fields from transaction-notification messages.

    Attributes:
        default_currency: Used when the amount carries no 3-letter code
        default_location: Used when the body has no location
        timezone: Zone applied to dates without an offset
    """

    def __init__(
        self,
        default_currency: str = "CRC",
        default_location: str = "Unknown",
        timezone: str = "UTC",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.default_currency = default_currency
        self.default_location = default_location
        self.timezone = timezone
        self._clock = clock or (lambda: datetime.now(ZoneInfo("UTC")))

    def body_text(self, message: RawMessage) -> str:
        content, is_html = select_body(message)
        if is_html:
            content = html_to_text(content)
        return html.unescape(content)

    @staticmethod
    def find_field(text: str, field: str) -> Optional[str]:
        """Value of a labelled field in ``text``, or None."""
        match = FIELD_PATTERNS[field].search(text)
        if not match:
            return None
        value = " ".join(match.group(1).split())
        if not value or _LABEL_ONLY.match(value) or _KNOWN_LABEL.match(value):
            return None
        return value

    def resolve_date(self, body_date: Optional[str], header_date: Optional[str]) -> datetime:
        """Body date, else header date, else the current time."""
        for candidate in (body_date, header_date):
            parsed, ok = parse_email_date(candidate, self.timezone)
            if ok:
                return parsed
        return self._clock()

    def extract(self, message: RawMessage) -> Optional[ExtractedExpense]:
        """
        Extract an expense from ``message``.

        Returns:
            ExtractedExpense, or None when the message is not a usable
            expense notification
        """
        text = self.body_text(message)
        if not text.strip():
            logger.debug(f"Message {message.message_id} has no readable body")
            return None

        merchant = self.find_field(text, "merchant")
        amount = parse_amount(self.find_field(text, "amount"), self.default_currency)

        if not merchant or not amount:
            logger.debug(
                f"Message {message.message_id} is not an expense notification "
                f"(merchant={'yes' if merchant else 'no'}, amount={'yes' if amount else 'no'})"
            )
            return None

        value, currency = amount
        expense = ExtractedExpense(
            merchant=merchant,
            amount=value,
            currency=currency,
            occurred_at=self.resolve_date(self.find_field(text, "date"), message.date_header),
            location=self.find_field(text, "location") or self.default_location,
        )

        errors = expense.validation_errors()
        if errors:
            logger.debug(f"Message {message.message_id} rejected: {'; '.join(errors)}")
            return None

        logger.debug(f"Extracted expense from {message.message_id}: {merchant} {currency} {value}")
        return expense
