"""Unit tests for SQLAlchemyExpenseStore against in-memory SQLite."""

import threading
from datetime import datetime, timedelta
from unittest.mock import patch
from zoneinfo import ZoneInfo

import pytest

from expense_importer.exceptions import StorageError
from expense_importer.storage.expense_store import SQLAlchemyExpenseStore
from expense_importer.storage.models import Merchant, Transaction, utc_now

OCTOBER = (datetime(2025, 10, 1), datetime(2025, 10, 31, 23, 59, 59, 999999))
SENDER = "noreply@bank.com"


class TestCreate:

    @pytest.mark.asyncio
    async def test_create_many_inserts_all(self, expense_store, make_record):
        records = [make_record(), make_record(merchant="Walmart", amount="30.00", category="Groceries")]

        assert await expense_store.create_many(records, "user-1", sender=SENDER) == 2
        assert await expense_store.count("user-1") == 2

    @pytest.mark.asyncio
    async def test_merchants_and_categories_are_reused(self, expense_store, database, make_record):
        await expense_store.create_many([make_record(), make_record(amount="8.00")], "user-1")
        await expense_store.create(make_record(amount="3.00"), "user-1")

        with database.session_scope() as session:
            assert session.query(Merchant).count() == 1
            assert {t.merchant.merchant_name for t in session.query(Transaction)} == {"Uber"}

    @pytest.mark.asyncio
    async def test_create_returns_stored_row(self, expense_store, make_record):
        row = await expense_store.create(make_record(), "user-1", sender=SENDER)

        assert row["transaction_id"] is not None
        assert row["merchant"] == "Uber"
        assert row["category"] == "Transportation"
        assert row["amount"] == "12.50"
        assert row["sender"] == SENDER
        assert row["source"] == "gmail"
        assert row["date"] == "2025-10-10T09:00:00"

    @pytest.mark.asyncio
    async def test_aware_dates_are_stored_in_store_timezone(self, database, make_record):
        store = SQLAlchemyExpenseStore(database, timezone="America/Costa_Rica")
        occurred = datetime(2025, 10, 10, 15, 0, tzinfo=ZoneInfo("UTC"))

        row = await store.create(make_record(occurred_at=occurred), "user-1")

        assert row["date"] == "2025-10-10T09:00:00"

    @pytest.mark.asyncio
    async def test_create_many_is_atomic(self, expense_store, make_record):
        records = [make_record(), make_record(currency=None)]

        with pytest.raises(StorageError):
            await expense_store.create_many(records, "user-1")

        assert await expense_store.count("user-1") == 0

    @pytest.mark.asyncio
    async def test_create_failure_raises_storage_error(self, expense_store, make_record):
        with pytest.raises(StorageError):
            await expense_store.create(make_record(currency=None), "user-1")

    @pytest.mark.asyncio
    async def test_create_many_empty(self, expense_store):
        assert await expense_store.create_many([], "user-1") == 0

    @pytest.mark.asyncio
    async def test_find_or_create_lookups(self, expense_store):
        first = await expense_store.find_or_create_merchant("Shell")
        second = await expense_store.find_or_create_merchant("Shell")
        category = await expense_store.find_or_create_category("Travel")

        assert first == second
        assert category["category_name"] == "Travel"


class TestDeleteByDateRange:

    @pytest.mark.asyncio
    async def test_window_bounds_are_inclusive(self, expense_store, make_record):
        start, end = OCTOBER
        await expense_store.create_many([
            make_record(occurred_at=start),
            make_record(occurred_at=end),
            make_record(occurred_at=datetime(2025, 9, 30, 23, 59, 59)),
            make_record(occurred_at=datetime(2025, 11, 1, 0, 0, 0)),
        ], "user-1", sender=SENDER)

        assert await expense_store.delete_by_date_range(start, end, "user-1", sender=SENDER) == 2
        assert await expense_store.count("user-1") == 2

    @pytest.mark.asyncio
    async def test_scoped_to_owner_and_sender(self, expense_store, make_record):
        start, end = OCTOBER
        await expense_store.create_many([make_record()], "user-1", sender=SENDER)
        await expense_store.create_many([make_record()], "user-1", sender="alerts@other.com")
        await expense_store.create_many([make_record()], "user-2", sender=SENDER)

        assert await expense_store.delete_by_date_range(start, end, "user-1", sender=SENDER) == 1
        assert await expense_store.count("user-1") == 1
        assert await expense_store.count("user-2") == 1

    @pytest.mark.asyncio
    async def test_without_sender_deletes_whole_window(self, expense_store, make_record):
        start, end = OCTOBER
        await expense_store.create_many([make_record()], "user-1", sender=SENDER)
        await expense_store.create_many([make_record()], "user-1", sender="alerts@other.com")

        assert await expense_store.delete_by_date_range(start, end, "user-1") == 2

    @pytest.mark.asyncio
    async def test_nothing_to_delete(self, expense_store):
        start, end = OCTOBER
        assert await expense_store.delete_by_date_range(start, end, "user-1") == 0

    @pytest.mark.asyncio
    async def test_count_within_window(self, expense_store, make_record):
        start, end = OCTOBER
        await expense_store.create_many([
            make_record(),
            make_record(occurred_at=datetime(2025, 12, 1)),
        ], "user-1")

        assert await expense_store.count("user-1", start, end) == 1


class TestSessionHandling:

    @pytest.mark.asyncio
    async def test_created_at_is_naive_utc(self, expense_store, database, make_record):
        before = utc_now()
        await expense_store.create(make_record(), "user-1")

        with database.session_scope() as session:
            created_at = session.query(Transaction).one().created_at

        assert created_at.tzinfo is None
        assert before - timedelta(seconds=1) <= created_at <= utc_now() + timedelta(seconds=1)

    @pytest.mark.asyncio
    async def test_session_work_runs_off_the_event_loop_thread(self, expense_store):
        loop_thread = threading.get_ident()

        with patch.object(expense_store, "_count", side_effect=lambda *args: threading.get_ident()):
            worker_thread = await expense_store.count("user-1")

        assert worker_thread != loop_thread
