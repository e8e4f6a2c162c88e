"""Shared fixtures for the expense importer test suite."""

from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import pytest

from expense_importer.email_processing.models import CategorizedExpense, ExtractedExpense
from expense_importer.integrations.http.rate_limiter import RateLimitedFetcher, RateLimitProfile
from expense_importer.storage.database import Database
from expense_importer.storage.expense_store import SQLAlchemyExpenseStore

ZERO_DELAY_PROFILE = RateLimitProfile(
    name="test",
    batch_size=3,
    inter_batch_delay=0.0,
    inter_request_delay=0.0,
    page_delay=0.0,
)


@pytest.fixture
def fake_sleep():
    """Records requested delays without sleeping."""
    return AsyncMock(return_value=None)


@pytest.fixture
def fetcher(fake_sleep):
    """Zero-delay fetcher with two retries."""
    return RateLimitedFetcher(
        "test",
        profile=ZERO_DELAY_PROFILE,
        max_retries=2,
        base_delay=0.0,
        sleep=fake_sleep,
    )


@pytest.fixture
def database():
    """Isolated in-memory SQLite database with the schema created."""
    db = Database("sqlite://")
    db.init_db()
    yield db
    db.engine.dispose()


@pytest.fixture
def expense_store(database):
    return SQLAlchemyExpenseStore(database)


@pytest.fixture
def sample_expense():
    return ExtractedExpense(
        merchant="SHELL GAS STATION",
        amount=Decimal("45.67"),
        currency="USD",
        occurred_at=datetime(2025, 10, 15, 14, 30, tzinfo=ZoneInfo("UTC")),
        location="San Jose, Costa Rica",
    )


@pytest.fixture
def make_record():
    """Factory for CategorizedExpense records."""
    def _make(
        merchant="Uber",
        amount="12.50",
        currency="USD",
        occurred_at=datetime(2025, 10, 10, 9, 0),
        location="San Jose",
        category="Transportation",
    ):
        return CategorizedExpense(
            merchant=merchant,
            amount=Decimal(amount),
            currency=currency,
            occurred_at=occurred_at,
            location=location,
            category=category,
        )
    return _make
