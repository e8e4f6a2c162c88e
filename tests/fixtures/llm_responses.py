"""
Recorded malformed model outputs and what they should repair to.

Each entry is (raw_text, expected_value).
"""

# Model re-escaped the quote closing a value and the quote opening the next key
ESCAPED_QUOTE_DOUBLING = (
    r'[{"merchant": "UBER BV USD-USD COSTA\", \"amount": 12.5, "category": "Transportation"}]',
    [{"merchant": "UBER BV USD-USD COSTA", "amount": 12.5, "category": "Transportation"}],
)

ESCAPED_QUOTE_DOUBLE_BACKSLASH = (
    r'[{"merchant": "AUTOMERCADO\", \\"date": "2025-10-03", "category": "Groceries"}]',
    [{"merchant": "AUTOMERCADO", "date": "2025-10-03", "category": "Groceries"}],
)

FULLY_ESCAPED_OBJECT = (
    r'{\"category\": \"Groceries\"}',
    {"category": "Groceries"},
)

TRAILING_COMMAS = (
    '[{"category": "Groceries",}, {"category": "Travel"},]',
    [{"category": "Groceries"}, {"category": "Travel"}],
)

BAREWORD_KEYS = (
    "[{category: 'Food & Dining'}, {category: 'Shopping'}]",
    [{"category": "Food & Dining"}, {"category": "Shopping"}],
)

TRUNCATED_ARRAY = (
    '[{"merchant": "Walmart", "category": "Groceries"}, '
    '{"merchant": "Shell", "category": "Transportation"}, '
    '{"merchant": "Netfl',
    [
        {"merchant": "Walmart", "category": "Groceries"},
        {"merchant": "Shell", "category": "Transportation"},
    ],
)

CODE_FENCED = (
    '```json\n[\n  {"category": "Travel"}\n]\n```',
    [{"category": "Travel"}],
)

PROSE_WRAPPED = (
    'Here are the categories:\n[{"category": "Healthcare"}]\nLet me know if you need more.',
    [{"category": "Healthcare"}],
)

RAW_NEWLINE_IN_STRING = (
    '{"merchant": "SODA\nLA ESQUINA", "category": "Food & Dining"}',
    {"merchant": "SODA LA ESQUINA", "category": "Food & Dining"},
)

RECOVERABLE_SAMPLES = {
    "escaped_quote_doubling": ESCAPED_QUOTE_DOUBLING,
    "escaped_quote_double_backslash": ESCAPED_QUOTE_DOUBLE_BACKSLASH,
    "fully_escaped_object": FULLY_ESCAPED_OBJECT,
    "trailing_commas": TRAILING_COMMAS,
    "bareword_keys": BAREWORD_KEYS,
    "truncated_array": TRUNCATED_ARRAY,
    "code_fenced": CODE_FENCED,
    "prose_wrapped": PROSE_WRAPPED,
    "raw_newline_in_string": RAW_NEWLINE_IN_STRING,
}

UNRECOVERABLE_SAMPLES = [
    b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR",
    "\x00\x01\x02\x03 \xff\xfe ~~~",
    "I could not categorize these expenses.",
    "{{{{",
    "",
]

# Field-scraping fallbacks for the categorizer
SCRAPABLE_CATEGORIES = 'Sure! "category": "Travel" and then "category": "Groceries" (done'
QUOTED_LABELS_ONLY = 'My answer: "Food & Dining", then "Shopping".'
