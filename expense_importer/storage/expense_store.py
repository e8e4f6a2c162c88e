"""
Expense Store Implementation

Storage collaborator of the import pipeline: batch insert, single insert and
delete-by-window, with merchant and category foreign keys resolved through
find-or-create lookups.

Design Considerations:
- The pipeline depends on the ExpenseStore protocol only
- create_many is all-or-nothing: one session, one commit
- Methods return dictionaries rather than ORM objects to prevent
  session-related issues once the session is closed
- Errors are re-raised as StorageError so the pipeline can count them
- Sessions are synchronous; each async method runs its session work in a
  worker thread via asyncio.to_thread
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Protocol, Sequence

from sqlalchemy.orm import Session

from expense_importer.email_processing.models import CategorizedExpense
from expense_importer.exceptions import StorageError
from expense_importer.storage.database import Database
from expense_importer.storage.models import Category, Merchant, Transaction, utc_now
from expense_importer.utils.date_utils import to_local_naive

logger = logging.getLogger(__name__)


class ExpenseStore(Protocol):
    """Operations the import pipeline needs from storage."""

    async def create_many(
        self, records: Sequence[CategorizedExpense], owner_key: str, sender: Optional[str] = None
    ) -> int:
        ...

    async def delete_by_date_range(
        self, start: datetime, end: datetime, owner_key: str, sender: Optional[str] = None
    ) -> int:
        ...

    async def create(
        self, record: CategorizedExpense, owner_key: str, sender: Optional[str] = None
    ) -> Dict[str, Any]:
        ...


class SQLAlchemyExpenseStore:
    """
    SQLAlchemy-backed ExpenseStore.

    Attributes:
        database: Database providing sessions
        timezone: Zone naive stored dates are expressed in
        source: Value written to ``transactions.source``
    """

    def __init__(self, database: Database, timezone: str = "UTC", source: str = "gmail"):
        self.database = database
        self.timezone = timezone
        self.source = source

    def _to_storage_time(self, value: datetime) -> datetime:
        return to_local_naive(value, self.timezone)

    @staticmethod
    def _find_or_create_merchant(session: Session, name: str) -> Merchant:
        merchant = session.query(Merchant).filter(Merchant.merchant_name == name).first()
        if merchant is None:
            merchant = Merchant(merchant_name=name)
            session.add(merchant)
            session.flush()
            logger.debug(f"Created merchant '{name}'")
        return merchant

    @staticmethod
    def _find_or_create_category(session: Session, name: str) -> Category:
        category = session.query(Category).filter(Category.category_name == name).first()
        if category is None:
            category = Category(category_name=name)
            session.add(category)
            session.flush()
            logger.debug(f"Created category '{name}'")
        return category

    def _build_transaction(
        self,
        record: CategorizedExpense,
        owner_key: str,
        sender: Optional[str],
        merchant: Merchant,
        category: Category,
    ) -> Transaction:
        return Transaction(
            amount=record.amount,
            currency=record.currency,
            location=record.location,
            transaction_date=self._to_storage_time(record.occurred_at),
            merchant=merchant,
            category=category,
            user_id=owner_key,
            sender=sender,
            source=self.source,
            created_at=utc_now(),
        )

    def _resolve_merchant(self, name: str) -> Dict[str, Any]:
        with self.database.session_scope() as session:
            merchant = self._find_or_create_merchant(session, name)
            return {"merchant_id": merchant.merchant_id, "merchant_name": merchant.merchant_name}

    def _resolve_category(self, name: str) -> Dict[str, Any]:
        with self.database.session_scope() as session:
            category = self._find_or_create_category(session, name)
            return {"category_id": category.category_id, "category_name": category.category_name}

    async def find_or_create_merchant(self, name: str) -> Dict[str, Any]:
        """Merchant row for ``name``, created if missing."""
        try:
            return await asyncio.to_thread(self._resolve_merchant, name)
        except Exception as e:
            raise StorageError(f"Failed to resolve merchant '{name}': {e}") from e

    async def find_or_create_category(self, name: str) -> Dict[str, Any]:
        """Category row for ``name``, created if missing."""
        try:
            return await asyncio.to_thread(self._resolve_category, name)
        except Exception as e:
            raise StorageError(f"Failed to resolve category '{name}': {e}") from e

    def _insert_many(self, records: Sequence[CategorizedExpense], owner_key: str, sender: Optional[str]) -> None:
        with self.database.session_scope() as session:
            merchants = {
                name: self._find_or_create_merchant(session, name)
                for name in dict.fromkeys(record.merchant for record in records)
            }
            categories = {
                name: self._find_or_create_category(session, name)
                for name in dict.fromkeys(record.category for record in records)
            }
            session.add_all([
                self._build_transaction(
                    record, owner_key, sender, merchants[record.merchant], categories[record.category]
                )
                for record in records
            ])

    async def create_many(
        self,
        records: Sequence[CategorizedExpense],
        owner_key: str,
        sender: Optional[str] = None,
    ) -> int:
        """
        Insert all records in one transaction.

        Args:
            records: Validated categorized expenses
            owner_key: Owning user identifier
            sender: Notification sender the records were imported from

        Returns:
            Number of rows inserted

        Raises:
            StorageError: If any insert fails; nothing is stored in that case
        """
        if not records:
            return 0

        try:
            await asyncio.to_thread(self._insert_many, records, owner_key, sender)
        except Exception as e:
            logger.error(f"Batch insert of {len(records)} transactions failed: {str(e)}")
            raise StorageError(f"Batch insert failed: {str(e)}") from e

        logger.info(f"Stored {len(records)} transactions for {owner_key}")
        return len(records)

    def _insert_one(self, record: CategorizedExpense, owner_key: str, sender: Optional[str]) -> Dict[str, Any]:
        with self.database.session_scope() as session:
            transaction = self._build_transaction(
                record,
                owner_key,
                sender,
                self._find_or_create_merchant(session, record.merchant),
                self._find_or_create_category(session, record.category),
            )
            session.add(transaction)
            session.flush()
            return transaction.to_dict()

    async def create(
        self,
        record: CategorizedExpense,
        owner_key: str,
        sender: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Insert one record.

        Returns:
            Dictionary containing the stored transaction

        Raises:
            StorageError: If the insert fails
        """
        try:
            return await asyncio.to_thread(self._insert_one, record, owner_key, sender)
        except Exception as e:
            logger.error(f"Insert of transaction for '{record.merchant}' failed: {str(e)}")
            raise StorageError(f"Insert failed: {str(e)}") from e

    def _window_query(self, session: Session, start: datetime, end: datetime, owner_key: str, sender: Optional[str]):
        query = session.query(Transaction).filter(
            Transaction.user_id == owner_key,
            Transaction.transaction_date >= self._to_storage_time(start),
            Transaction.transaction_date <= self._to_storage_time(end),
        )
        if sender is not None:
            query = query.filter(Transaction.sender == sender)
        return query

    def _delete_window(self, start: datetime, end: datetime, owner_key: str, sender: Optional[str]) -> int:
        with self.database.session_scope() as session:
            return self._window_query(session, start, end, owner_key, sender).delete(synchronize_session=False)

    async def delete_by_date_range(
        self,
        start: datetime,
        end: datetime,
        owner_key: str,
        sender: Optional[str] = None,
    ) -> int:
        """
        Delete an owner's transactions dated within ``[start, end]``.

        Args:
            start: Inclusive window start
            end: Inclusive window end
            owner_key: Owning user identifier
            sender: Restrict to rows imported from this sender

        Returns:
            Number of rows deleted

        Raises:
            StorageError: If the delete fails
        """
        try:
            deleted = await asyncio.to_thread(self._delete_window, start, end, owner_key, sender)
        except Exception as e:
            logger.error(f"Delete of transactions in window failed: {str(e)}")
            raise StorageError(f"Delete failed: {str(e)}") from e

        logger.info(f"Deleted {deleted} transactions for {owner_key} between {start} and {end}")
        return deleted

    def _count(self, owner_key: str, start: Optional[datetime], end: Optional[datetime]) -> int:
        with self.database.session_scope() as session:
            query = session.query(Transaction).filter(Transaction.user_id == owner_key)
            if start is not None:
                query = query.filter(Transaction.transaction_date >= self._to_storage_time(start))
            if end is not None:
                query = query.filter(Transaction.transaction_date <= self._to_storage_time(end))
            return query.count()

    async def count(
        self,
        owner_key: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> int:
        """Number of an owner's transactions, optionally within a window."""
        return await asyncio.to_thread(self._count, owner_key, start, end)
