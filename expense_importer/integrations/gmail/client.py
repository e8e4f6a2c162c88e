"""
Gmail Message Source

Retrieves transaction-notification messages for one sender across a date
window through the Gmail API, paginating search results and fetching full
message bodies in rate-limited batches.

Design Considerations:
- Read-only: the externally issued bearer token is used as-is and never
  refreshed here; a missing or rejected token fails fast
- Blocking googleapiclient calls run in a worker thread via asyncio.to_thread
- Search falls back through alternate date encodings and finally a
  sender-only query, since Gmail accepts date syntaxes inconsistently
  across account locales
- A failed continuation page keeps the ids collected so far
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from expense_importer.email_processing.models import RawMessage
from expense_importer.exceptions import AuthenticationError, ExpenseImportError
from expense_importer.integrations.http.rate_limiter import RateLimitedFetcher
from expense_importer.utils.logging_config import mask_email

logger = logging.getLogger(__name__)

GMAIL_SCOPES = ['https://www.googleapis.com/auth/gmail.readonly']


@dataclass
class BodyFetchResult:
    """Messages fetched in order plus the ids that could not be fetched."""
    messages: List[RawMessage] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)


def build_search_queries(sender: str, start: datetime, end: datetime) -> List[str]:
    """
    Search queries to try in order for a sender and inclusive window.

    Gmail's ``before:`` is exclusive, so it is set to the day after ``end``.
    """
    before = end.date() + timedelta(days=1)
    after = start.date()
    return [
        f"from:{sender} after:{after:%Y/%m/%d} before:{before:%Y/%m/%d}",
        f"from:{sender} after:{after:%Y-%m-%d} before:{before:%Y-%m-%d}",
        f"from:{sender}",
    ]


class GmailMessageSource:
    """
    Gmail-backed message source.

    Attributes:
        service: Gmail API service resource
        fetcher: RateLimitedFetcher pacing every API call
        user_id: Mailbox owner, ``me`` for the token's account
        page_size: maxResults per search page
    """

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        access_token: Optional[str] = None,
        user_id: str = 'me',
        page_size: int = 100,
        service: Optional[Any] = None,
    ):
        """
        Initialize the message source.

        Args:
            fetcher: Rate limiter for Gmail calls
            access_token: OAuth bearer token with gmail.readonly scope
            user_id: Mailbox owner identifier
            page_size: Search page size
            service: Prebuilt Gmail service, used instead of the token

        Raises:
            AuthenticationError: If neither a service nor a token is given,
                or the token is already expired
        """
        self.fetcher = fetcher
        self.user_id = user_id
        self.page_size = page_size
        self.service = service or self._build_service(access_token)
        logger.info("Gmail message source initialized")

    @staticmethod
    def _build_service(access_token: Optional[str]) -> Any:
        if not access_token:
            raise AuthenticationError("Gmail access token is missing", service="gmail")

        credentials = Credentials(token=access_token, scopes=GMAIL_SCOPES)
        if credentials.expired:
            raise AuthenticationError("Gmail access token has expired", service="gmail")

        return build('gmail', 'v1', credentials=credentials, cache_discovery=False)

    @classmethod
    def from_settings(cls, settings: Any, fetcher: RateLimitedFetcher) -> "GmailMessageSource":
        token = settings.GMAIL_ACCESS_TOKEN.get_secret_value() if settings.GMAIL_ACCESS_TOKEN else None
        return cls(
            fetcher=fetcher,
            access_token=token,
            user_id=settings.GMAIL_USER_ID,
            page_size=settings.GMAIL_PAGE_SIZE,
        )

    def _list_page(self, query: str, page_token: Optional[str]) -> Dict[str, Any]:
        params = {'userId': self.user_id, 'q': query, 'maxResults': self.page_size}
        if page_token:
            params['pageToken'] = page_token
        return self.service.users().messages().list(**params).execute()

    def _get_message(self, message_id: str) -> Dict[str, Any]:
        return self.service.users().messages().get(
            userId=self.user_id,
            id=message_id,
            format='full'
        ).execute()

    async def list_message_ids(self, query: str) -> List[str]:
        """
        Collect every message id matching ``query`` across all pages.

        Raises:
            AuthenticationError: On a rejected credential
            ExpenseImportError: If the first page cannot be fetched
        """
        ids: List[str] = []
        page_token: Optional[str] = None
        page = 0

        while True:
            if page:
                await self.fetcher.pause_between_pages()
            try:
                response = await self.fetcher.call(
                    lambda token=page_token: asyncio.to_thread(self._list_page, query, token),
                    label=f"search page {page + 1}"
                )
            except AuthenticationError:
                raise
            except ExpenseImportError as e:
                if not page:
                    raise
                logger.warning(f"Search page {page + 1} failed, keeping {len(ids)} ids already collected: {e}")
                break

            ids.extend(message['id'] for message in response.get('messages') or () if message.get('id'))
            page += 1
            page_token = response.get('nextPageToken')
            if not page_token:
                break

        # First occurrence wins when pages overlap
        return list(dict.fromkeys(ids))

    async def search(self, sender: str, start: datetime, end: datetime) -> List[str]:
        """
        Message ids from ``sender`` within the inclusive window.

        Tries the date-qualified queries first and a sender-only query last;
        a failure on one query moves on to the next.

        Raises:
            AuthenticationError: On a rejected credential
            ExpenseImportError: If every query failed
        """
        masked = mask_email(sender)
        queries = build_search_queries(sender, start, end)
        last_error: Optional[ExpenseImportError] = None
        failed = 0

        for query in queries:
            try:
                ids = await self.list_message_ids(query)
            except AuthenticationError:
                raise
            except ExpenseImportError as e:
                logger.warning(f"Search for {masked} failed on one query form, trying next: {e}")
                last_error = e
                failed += 1
                continue

            if ids:
                logger.info(f"Found {len(ids)} messages from {masked}")
                return ids
            logger.info(f"No messages from {masked} for one query form, trying next")

        if failed == len(queries):
            logger.error(f"Every search query for {masked} failed")
            raise last_error

        logger.info(f"No messages found from {masked}")
        return []

    async def fetch_bodies_detailed(self, message_ids: Sequence[str]) -> BodyFetchResult:
        """
        Fetch full messages in rate-limited batches, keeping per-id failures.

        Raises:
            AuthenticationError: If any fetch hit a rejected credential
        """
        ids = list(message_ids)
        outcomes = await self.fetcher.call_batch(
            [lambda message_id=message_id: asyncio.to_thread(self._get_message, message_id) for message_id in ids],
            label="fetch message"
        )

        result = BodyFetchResult()
        for message_id, outcome in zip(ids, outcomes):
            if isinstance(outcome, Exception):
                logger.warning(f"Failed to fetch message {message_id}: {outcome}")
                result.failures[message_id] = str(outcome)
                continue
            try:
                result.messages.append(RawMessage.from_api(outcome))
            except (AttributeError, TypeError) as e:
                logger.warning(f"Malformed message {message_id}: {e}")
                result.failures[message_id] = f"malformed message: {e}"

        logger.info(f"Fetched {len(result.messages)}/{len(ids)} messages")
        return result

    async def fetch_bodies(self, message_ids: Sequence[str]) -> List[RawMessage]:
        """Fetched messages in input order; failed ids are logged and skipped."""
        result = await self.fetch_bodies_detailed(message_ids)
        return result.messages
