"""
Expense Import Orchestration

Runs one import for a sender and calendar month through a linear pipeline:

    DeletePriorWindow -> FetchMessages -> ExtractFields -> Categorize
    -> StoreBatch -> Summarize

Each stage processes the full output of the previous one. Per-item failures
are logged, counted in ImportSummary.errors and dropped; only an
AuthenticationError aborts the run.

Re-running an import for the same sender and month first deletes what the
previous run stored, so repeated imports do not accumulate duplicates. Only
records dated inside the month window are stored.
Callers must serialize imports per (sender, month) themselves.
"""

import logging
from typing import List, Optional, Sequence

from expense_importer.email_processing.analyzers.expense_categorizer import (
    ExpenseCategorizer,
    categorize_by_keywords,
)
from expense_importer.email_processing.extractor import EmailFieldExtractor
from expense_importer.email_processing.models import (
    CategorizationRequest,
    CategorizedExpense,
    ExtractedExpense,
    ImportSummary,
    RawMessage,
)
from expense_importer.exceptions import AuthenticationError, ExpenseImportError
from expense_importer.integrations.gmail.client import GmailMessageSource
from expense_importer.storage.expense_store import ExpenseStore
from expense_importer.utils.date_utils import month_window, to_local_naive
from expense_importer.utils.logging_config import mask_email, new_request_id

logger = logging.getLogger(__name__)


class ImportOrchestrator:
    """
    Coordinates message retrieval, extraction, categorization and storage.

    Attributes:
        source: Message source (Gmail)
        extractor: EmailFieldExtractor
        categorizer: ExpenseCategorizer
        store: Storage collaborator implementing ExpenseStore
        owner_key: Default owner for stored records
        timezone: Zone the month window and stored dates are expressed in
    """

    def __init__(
        self,
        source: GmailMessageSource,
        extractor: EmailFieldExtractor,
        categorizer: ExpenseCategorizer,
        store: ExpenseStore,
        owner_key: str = "default",
        timezone: str = "UTC",
    ):
        self.source = source
        self.extractor = extractor
        self.categorizer = categorizer
        self.store = store
        self.owner_key = owner_key
        self.timezone = timezone
        logger.info("ImportOrchestrator initialized successfully")

    async def _delete_prior_window(self, summary: ImportSummary, owner_key: str, request_id: str) -> None:
        try:
            summary.deleted = await self.store.delete_by_date_range(
                summary.start, summary.end, owner_key, sender=summary.sender
            )
            logger.info(f"[{request_id}] Deleted {summary.deleted} previously imported transactions")
        except AuthenticationError:
            raise
        except Exception as e:
            summary.deleted = 0
            summary.errors += 1
            logger.error(f"[{request_id}] Failed to delete prior window, continuing: {str(e)}")

    async def _fetch_messages(self, summary: ImportSummary, request_id: str) -> List[RawMessage]:
        try:
            ids = await self.source.search(summary.sender, summary.start, summary.end)
        except AuthenticationError:
            raise
        except ExpenseImportError as e:
            summary.errors += 1
            logger.error(f"[{request_id}] Message search failed: {str(e)}")
            return []

        summary.processed = len(ids)
        if not ids:
            return []

        result = await self.source.fetch_bodies_detailed(ids)
        if result.failures:
            summary.errors += len(result.failures)
            logger.warning(f"[{request_id}] {len(result.failures)} messages could not be fetched")
        return result.messages

    def _extract_fields(
        self, messages: Sequence[RawMessage], summary: ImportSummary, request_id: str
    ) -> List[ExtractedExpense]:
        expenses = []
        for message in messages:
            try:
                expense = self.extractor.extract(message)
            except Exception as e:
                logger.error(f"[{request_id}] Extraction crashed for message {message.message_id}: {str(e)}")
                expense = None

            if expense is None:
                summary.errors += 1
                continue
            expenses.append(expense)

        summary.extracted = len(expenses)
        logger.info(f"[{request_id}] Extracted {len(expenses)}/{len(messages)} expenses")
        return expenses

    async def _categorize(
        self, expenses: Sequence[ExtractedExpense], summary: ImportSummary, request_id: str
    ) -> List[CategorizedExpense]:
        if not expenses:
            return []

        requests = [CategorizationRequest.from_expense(expense) for expense in expenses]
        try:
            categories = await self.categorizer.categorize_many(requests, request_id=request_id)
        except Exception as e:
            logger.error(f"[{request_id}] Categorizer failed, using keyword rules: {str(e)}")
            categories = [categorize_by_keywords(request.merchant) for request in requests]

        categorized = []
        for expense, category in zip(expenses, categories):
            record = CategorizedExpense.from_expense(expense, category)
            errors = record.validation_errors()
            if errors:
                summary.errors += 1
                logger.warning(f"[{request_id}] Dropping '{expense.merchant}': {'; '.join(errors)}")
                continue
            categorized.append(record)

        # A short category list leaves trailing expenses uncategorized
        summary.errors += max(0, len(expenses) - len(categories))
        summary.categorized = len(categorized)
        return categorized

    async def _store_batch(
        self,
        records: Sequence[CategorizedExpense],
        summary: ImportSummary,
        owner_key: str,
        request_id: str,
    ) -> None:
        valid = []
        for record in records:
            errors = record.validation_errors()
            if errors:
                summary.errors += 1
                logger.warning(f"[{request_id}] Not storing '{record.merchant}': {'; '.join(errors)}")
                continue
            occurred = to_local_naive(record.occurred_at, self.timezone)
            if not summary.start <= occurred <= summary.end:
                summary.errors += 1
                logger.warning(f"[{request_id}] Not storing '{record.merchant}': dated {occurred} outside the window")
                continue
            valid.append(record)

        if not valid:
            return

        try:
            summary.stored = await self.store.create_many(valid, owner_key, sender=summary.sender)
            summary.transactions = [record.to_dict() for record in valid]
            return
        except AuthenticationError:
            raise
        except Exception as e:
            logger.warning(f"[{request_id}] Batch insert failed, storing records one at a time: {str(e)}")

        for record in valid:
            try:
                await self.store.create(record, owner_key, sender=summary.sender)
            except AuthenticationError:
                raise
            except Exception as e:
                summary.errors += 1
                logger.error(f"[{request_id}] Failed to store '{record.merchant}': {str(e)}")
                continue
            summary.stored += 1
            summary.transactions.append(record.to_dict())

    async def run(self, sender: str, month: int, year: int, owner_key: Optional[str] = None) -> ImportSummary:
        """
        Import one month of expense notifications from ``sender``.

        Args:
            sender: Notification sender address
            month: 1..12
            year: Four-digit year
            owner_key: Owner of the stored records, defaults to ``owner_key``

        Returns:
            ImportSummary; ``errors > 0`` means partial success

        Raises:
            ValueError: Invalid month or year, before any external call
            AuthenticationError: Missing, expired or rejected credential
        """
        start, end = month_window(month, year)
        owner_key = owner_key or self.owner_key
        request_id = new_request_id()
        summary = ImportSummary(sender=sender, start=start, end=end)

        logger.info(f"[{request_id}] Starting import for {mask_email(sender)} {year}-{month:02d}")

        await self._delete_prior_window(summary, owner_key, request_id)
        messages = await self._fetch_messages(summary, request_id)
        expenses = self._extract_fields(messages, summary, request_id)
        records = await self._categorize(expenses, summary, request_id)
        await self._store_batch(records, summary, owner_key, request_id)

        logger.info(
            f"[{request_id}] Import finished: processed={summary.processed} extracted={summary.extracted} "
            f"categorized={summary.categorized} stored={summary.stored} deleted={summary.deleted} "
            f"errors={summary.errors}"
        )
        return summary
