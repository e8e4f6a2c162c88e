"""Unit tests for EmailFieldExtractor and its body decoding helpers."""

from datetime import datetime, timedelta
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from expense_importer.email_processing.extractor import (
    EmailFieldExtractor,
    decode_base64url,
    html_to_text,
    parse_amount,
    select_body,
)
from expense_importer.email_processing.models import RawMessage
from fixtures.messages import api_message, bank_html, encode

FIXED_NOW = datetime(2025, 10, 20, 8, 0, tzinfo=ZoneInfo("UTC"))


@pytest.fixture
def extractor():
    return EmailFieldExtractor(default_currency="CRC", timezone="UTC", clock=lambda: FIXED_NOW)


def message(**kwargs):
    return RawMessage.from_api(api_message(**kwargs))


class TestExtract:

    def test_bank_html_notification(self, extractor):
        expense = extractor.extract(message(html=bank_html()))

        assert expense.merchant == "SHELL GAS STATION"
        assert expense.amount == Decimal("45.67")
        assert expense.currency == "USD"
        assert expense.location == "San Jose, Costa Rica"
        assert expense.occurred_at == datetime(2025, 10, 15, 14, 30, tzinfo=ZoneInfo("UTC"))

    def test_plain_text_english_labels(self, extractor):
        body = "Merchant: UBER TRIP\nAmount: 12.50 USD\nDate: Oct 10, 2025, 09:00\nLocation: San Jose"

        expense = extractor.extract(message(plain=body))

        assert expense.merchant == "UBER TRIP"
        assert (expense.amount, expense.currency) == (Decimal("12.50"), "USD")
        assert expense.location == "San Jose"
        assert expense.occurred_at.day == 10

    def test_html_preferred_over_plain(self, extractor):
        expense = extractor.extract(message(plain="Merchant: PLAIN\nAmount: USD 1.00", html=bank_html()))
        assert expense.merchant == "SHELL GAS STATION"

    def test_grouped_amount_and_default_currency(self, extractor):
        grouped = extractor.extract(message(html=bank_html(amount="CRC 12,500.00")))
        bare = extractor.extract(message(html=bank_html(amount="45.67")))

        assert (grouped.amount, grouped.currency) == (Decimal("12500.00"), "CRC")
        assert (bare.amount, bare.currency) == (Decimal("45.67"), "CRC")

    @pytest.mark.parametrize("amount", ["USD 0.00", "USD -5.00", "USD", None])
    def test_non_positive_or_missing_amount_is_not_an_expense(self, extractor, amount):
        assert extractor.extract(message(html=bank_html(amount=amount))) is None

    def test_missing_merchant_is_not_an_expense(self, extractor):
        assert extractor.extract(message(html=bank_html(merchant=None))) is None

    @pytest.mark.parametrize("body", [
        "Merchant:\nAmount: USD 5.00\nDate: Oct 10, 2025",
        "Comercio:\nMonto: CRC 5,000.00\nFecha: Oct 10, 2025",
        "Comercio:\nCiudad y país: San Jose\nMonto: USD 5.00",
    ])
    def test_empty_merchant_label_does_not_take_next_field(self, extractor, body):
        assert extractor.extract(message(plain=body)) is None

    def test_value_on_line_after_label(self, extractor):
        expense = extractor.extract(message(plain="Merchant:\nUBER TRIP\nAmount:\nUSD 5.00"))

        assert expense.merchant == "UBER TRIP"
        assert expense.amount == Decimal("5.00")

    def test_empty_body(self, extractor):
        assert extractor.extract(message()) is None

    def test_missing_location_uses_default(self, extractor):
        expense = extractor.extract(message(html=bank_html(location=None)))
        assert expense.location == "Unknown"

    def test_falls_back_to_date_header(self, extractor):
        expense = extractor.extract(message(html=bank_html(date="someday")))

        assert (expense.occurred_at.day, expense.occurred_at.hour, expense.occurred_at.minute) == (15, 14, 35)
        assert expense.occurred_at.utcoffset() == timedelta(hours=-6)

    def test_falls_back_to_clock(self, extractor):
        expense = extractor.extract(message(html=bank_html(date=None), date_header=None))
        assert expense.occurred_at == FIXED_NOW


class TestBodySelection:

    def test_nested_multipart_prefers_html(self):
        raw = RawMessage.from_api({
            "id": "nested",
            "payload": {
                "mimeType": "multipart/mixed",
                "parts": [
                    {
                        "mimeType": "multipart/alternative",
                        "parts": [
                            {"mimeType": "text/plain", "body": {"data": encode("plain body")}},
                            {"mimeType": "text/html", "body": {"data": encode("<p>html body</p>")}},
                        ],
                    },
                    {"mimeType": "application/pdf", "body": {"attachmentId": "a1"}},
                ],
            },
        })

        assert select_body(raw) == ("<p>html body</p>", True)

    def test_single_part_html_body_is_detected(self):
        raw = message(body="<html><body><p>Comercio: X</p></body></html>")
        content, is_html = select_body(raw)

        assert is_html is True
        assert content.startswith("<html>")

    def test_decode_base64url(self):
        assert decode_base64url(encode("Ciudad y país: San José")) == "Ciudad y país: San José"
        assert decode_base64url(encode("ab", padding=True)) == "ab"
        assert decode_base64url(None) == ""
        assert decode_base64url("") == ""

    def test_html_to_text_drops_scripts_and_styles(self):
        text = html_to_text("<style>p{}</style><script>var x;</script><p>Monto:</p><p>USD 1</p>")
        assert text == "Monto:\nUSD 1"


@pytest.mark.parametrize("value, expected", [
    ("USD 45.67", (Decimal("45.67"), "USD")),
    ("12,500.00 CRC", (Decimal("12500.00"), "CRC")),
    ("1234", (Decimal("1234"), "EUR")),
    ("USD 0", None),
    ("", None),
    ("no digits", None),
])
def test_parse_amount(value, expected):
    assert parse_amount(value, "EUR") == expected
