"""
End-to-end import pipeline tests.

Real components throughout: GmailMessageSource over a mocked Gmail service
resource, GeminiClient over a mocked aiohttp session, the extractor, the
categorizer and SQLAlchemyExpenseStore on in-memory SQLite.
"""

import json
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from expense_importer.email_processing import EmailFieldExtractor, ExpenseCategorizer, ImportOrchestrator
from expense_importer.exceptions import AuthenticationError
from expense_importer.integrations import GeminiClient, GmailMessageSource
from expense_importer.integrations.gmail import build_search_queries
from fixtures.gmail_api import http_error, mock_service
from fixtures.messages import BANK_SENDER, api_message, bank_html

SESSION_PATH = "expense_importer.integrations.gemini.client.aiohttp.ClientSession"
OCTOBER_START = datetime(2025, 10, 1)
OCTOBER_END = datetime(2025, 10, 31, 23, 59, 59, 999999)

UBER_HTML = bank_html(
    merchant="UBER BV",
    amount="USD 12.50",
    date="Oct 10, 2025, 09:00",
    location="San Jose, Costa Rica",
)
MALFORMED_HTML = "<html><body><p>Comercio:</p><p>Monto: pendiente</p></body></html>"


def gemini_session_factory(reply_text, status=200):
    """Side effect for ClientSession(): a fresh mocked session per request."""
    def _factory(*args, **kwargs):
        response = MagicMock()
        response.status = status
        response.json = AsyncMock(return_value={"candidates": [{"content": {"parts": [{"text": reply_text}]}}]})
        response.text = AsyncMock(return_value="error body")

        post_cm = MagicMock()
        post_cm.__aenter__ = AsyncMock(return_value=response)
        post_cm.__aexit__ = AsyncMock(return_value=None)

        session = MagicMock()
        session.post = MagicMock(return_value=post_cm)

        session_cm = MagicMock()
        session_cm.__aenter__ = AsyncMock(return_value=session)
        session_cm.__aexit__ = AsyncMock(return_value=None)
        return session_cm
    return _factory


@pytest.fixture
def gmail_service():
    primary, _, _ = build_search_queries(BANK_SENDER, OCTOBER_START, OCTOBER_END)
    return mock_service(
        pages_by_query={primary: {None: {"messages": [{"id": "uber"}, {"id": "broken"}]}}},
        messages_by_id={
            "uber": api_message("uber", html=UBER_HTML),
            "broken": api_message("broken", html=MALFORMED_HTML),
        },
    )


@pytest.fixture
def orchestrator(fetcher, fake_sleep, gmail_service, expense_store):
    return ImportOrchestrator(
        source=GmailMessageSource(fetcher, service=gmail_service),
        extractor=EmailFieldExtractor(default_currency="CRC"),
        categorizer=ExpenseCategorizer(
            client=GeminiClient(api_key="test-key", fetcher=fetcher),
            sleep=fake_sleep,
        ),
        store=expense_store,
        owner_key="user-1",
    )


@pytest.mark.asyncio
async def test_month_import_end_to_end(orchestrator, expense_store):
    with patch(SESSION_PATH, side_effect=gemini_session_factory('{"category": "Transportation"}')):
        summary = await orchestrator.run(BANK_SENDER, 10, 2025)

    assert summary.counts() == {
        "processed": 2, "extracted": 1, "categorized": 1, "stored": 1, "deleted": 0, "errors": 1,
    }
    assert summary.transactions == [{
        "merchant": "UBER BV",
        "amount": "12.50",
        "currency": "USD",
        "category": "Transportation",
        "location": "San Jose, Costa Rica",
        "date": "2025-10-10T09:00:00+00:00",
    }]
    assert await expense_store.count("user-1", OCTOBER_START, OCTOBER_END) == 1

    # Summary is JSON serializable as printed by the CLI
    assert json.loads(json.dumps(summary.to_dict()))["stored"] == 1


@pytest.mark.asyncio
async def test_reimport_replaces_previous_rows(orchestrator, expense_store):
    with patch(SESSION_PATH, side_effect=gemini_session_factory('{"category": "Transportation"}')):
        await orchestrator.run(BANK_SENDER, 10, 2025)
        summary = await orchestrator.run(BANK_SENDER, 10, 2025)

    assert summary.deleted == 1
    assert summary.stored == 1
    assert await expense_store.count("user-1") == 1


@pytest.mark.asyncio
async def test_rejected_gemini_key_still_imports_with_keyword_rules(orchestrator, expense_store):
    with patch(SESSION_PATH, side_effect=gemini_session_factory("", status=401)):
        summary = await orchestrator.run(BANK_SENDER, 10, 2025)

    assert summary.stored == 1
    assert summary.transactions[0]["category"] == "Transportation"


@pytest.mark.asyncio
async def test_malformed_model_output_is_repaired(orchestrator):
    reply = r'[{"merchant": "UBER BV\", \"category": "Travel"}]'

    with patch(SESSION_PATH, side_effect=gemini_session_factory(reply)):
        summary = await orchestrator.run(BANK_SENDER, 10, 2025)

    assert summary.transactions[0]["category"] == "Travel"


@pytest.mark.asyncio
async def test_rejected_gmail_token_aborts_import(fetcher, expense_store):
    primary, _, _ = build_search_queries(BANK_SENDER, OCTOBER_START, OCTOBER_END)
    orchestrator = ImportOrchestrator(
        source=GmailMessageSource(fetcher, service=mock_service({primary: {None: http_error(401)}})),
        extractor=EmailFieldExtractor(),
        categorizer=ExpenseCategorizer(client=None),
        store=expense_store,
        owner_key="user-1",
    )

    with pytest.raises(AuthenticationError):
        await orchestrator.run(BANK_SENDER, 10, 2025)


@pytest.mark.asyncio
async def test_reimport_with_transaction_dated_before_the_month(fetcher, expense_store):
    primary, _, _ = build_search_queries(BANK_SENDER, OCTOBER_START, OCTOBER_END)
    late_html = bank_html(merchant="SHELL", amount="USD 30.00", date="Sep 30, 2025, 23:10")
    orchestrator = ImportOrchestrator(
        source=GmailMessageSource(fetcher, service=mock_service(
            pages_by_query={primary: {None: {"messages": [{"id": "uber"}, {"id": "late"}]}}},
            messages_by_id={
                "uber": api_message("uber", html=UBER_HTML),
                "late": api_message("late", html=late_html, date_header="Wed, 1 Oct 2025 06:00:00 +0000"),
            },
        )),
        extractor=EmailFieldExtractor(),
        categorizer=ExpenseCategorizer(client=None),
        store=expense_store,
        owner_key="user-1",
    )

    await orchestrator.run(BANK_SENDER, 10, 2025)
    summary = await orchestrator.run(BANK_SENDER, 10, 2025)

    assert (summary.stored, summary.deleted, summary.errors) == (1, 1, 1)
    assert await expense_store.count("user-1") == 1


@pytest.mark.asyncio
async def test_gmail_search_outage_is_reported(fetcher, expense_store):
    queries = build_search_queries(BANK_SENDER, OCTOBER_START, OCTOBER_END)
    orchestrator = ImportOrchestrator(
        source=GmailMessageSource(fetcher, service=mock_service({q: {None: http_error(503)} for q in queries})),
        extractor=EmailFieldExtractor(),
        categorizer=ExpenseCategorizer(client=None),
        store=expense_store,
        owner_key="user-1",
    )

    summary = await orchestrator.run(BANK_SENDER, 10, 2025)

    assert summary.processed == 0
    assert summary.errors == 1
    assert summary.partial is True
