"""
Rate-Limited Request Execution

Wraps outbound calls to external services (Gmail search/fetch, Gemini
generation) with bounded concurrency, staggered request starts and
exponential backoff on throttling and server errors.

Design Considerations:
- Named profiles (conservative/normal/aggressive) from PIPELINE_CONFIG
- Explicit bounded retry loop with an attempt counter, no recursion
- HTTP 401 fails fast as AuthenticationError, retrying cannot help
- 429 and 5xx are retried; exhaustion raises a typed error that the
  caller counts per item instead of aborting the batch
- Batches are joined before the next starts; every request writes to its
  own result slot so no locking is needed
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import aiohttp
import httplib2
from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from expense_importer.config.pipeline_config import PIPELINE_CONFIG
from expense_importer.exceptions import (
    AuthenticationError,
    ExternalServiceError,
    RateLimitExceededError,
    TransientServiceError,
)

logger = logging.getLogger(__name__)

RequestFactory = Callable[[], Awaitable[Any]]
SleepFunction = Callable[[float], Awaitable[Any]]

# Connection-level failures treated like a 5xx
TRANSIENT_ERRORS = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    ConnectionError,
    TimeoutError,
    httplib2.HttpLib2Error,
)


@dataclass(frozen=True)
class RateLimitProfile:
    """Batching and pacing parameters, delays in seconds."""
    name: str
    batch_size: int
    inter_batch_delay: float
    inter_request_delay: float
    page_delay: float = 0.0

    @classmethod
    def from_config(cls, name: str, config: Optional[Dict[str, Any]] = None) -> "RateLimitProfile":
        """
        Load a named profile.

        Args:
            name: Profile name, case-insensitive
            config: Profile table, defaults to PIPELINE_CONFIG

        Raises:
            ValueError: If the profile is unknown
        """
        profiles = config or PIPELINE_CONFIG["rate_limit_profiles"]
        key = (name or "").strip().lower()
        if key not in profiles:
            raise ValueError(f"Unknown rate limit profile '{name}'. Expected one of: {', '.join(sorted(profiles))}")
        values = profiles[key]
        return cls(
            name=key,
            batch_size=max(1, int(values["batch_size"])),
            inter_batch_delay=float(values["inter_batch_delay"]),
            inter_request_delay=float(values["inter_request_delay"]),
            page_delay=float(values.get("page_delay", 0.0)),
        )


def status_of(error: BaseException) -> Optional[int]:
    """HTTP status carried by an error raised from any of our transports."""
    if isinstance(error, HttpError):
        try:
            return int(error.resp.status)
        except (AttributeError, TypeError, ValueError):
            return None
    if isinstance(error, aiohttp.ClientResponseError):
        return error.status
    if isinstance(error, ExternalServiceError):
        return error.status
    return None


def is_retryable(error: BaseException) -> bool:
    """429, 5xx and connection failures are worth another attempt."""
    status = status_of(error)
    if status is not None:
        return status == 429 or 500 <= status < 600
    if isinstance(error, (RateLimitExceededError, TransientServiceError)):
        return True
    return isinstance(error, TRANSIENT_ERRORS)


class RateLimitedFetcher:
    """
    Executes request coroutines under a rate-limit profile.

    Attributes:
        service: Service name used in errors and logs
        profile: Active RateLimitProfile
        max_retries: Retries after the first attempt
        base_delay: Backoff base in seconds, doubled per retry
    """

    def __init__(
        self,
        service: str,
        profile: Optional[RateLimitProfile] = None,
        max_retries: Optional[int] = None,
        base_delay: Optional[float] = None,
        sleep: SleepFunction = asyncio.sleep,
    ):
        retry_config = PIPELINE_CONFIG["retry"]
        self.service = service
        self.profile = profile or RateLimitProfile.from_config("normal")
        self.max_retries = retry_config["max_retries"] if max_retries is None else max(0, max_retries)
        self.base_delay = retry_config["base_delay"] if base_delay is None else max(0.0, base_delay)
        self._sleep = sleep

        logger.debug(
            f"Rate limiter for {service} using '{self.profile.name}' profile "
            f"(batch={self.profile.batch_size}, retries={self.max_retries})"
        )

    async def pause(self, seconds: float) -> None:
        """Cooperative delay; a no-op for zero or negative values."""
        if seconds and seconds > 0:
            await self._sleep(seconds)

    async def pause_between_pages(self) -> None:
        await self.pause(self.profile.page_delay)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based)."""
        return self.base_delay * (2 ** attempt)

    async def call(self, request_factory: RequestFactory, label: str = "request") -> Any:
        """
        Run one request with retry on throttling and server errors.

        Args:
            request_factory: Zero-argument callable returning a fresh awaitable
                for every attempt
            label: Short description for log lines

        Returns:
            Whatever the request coroutine returns

        Raises:
            AuthenticationError: On HTTP 401 or a failed credential refresh
            RateLimitExceededError: 429 on every attempt
            TransientServiceError: 5xx or connection failure on every attempt
            ExternalServiceError: Any other failure, not retried
        """
        total_attempts = self.max_retries + 1

        for attempt in range(total_attempts):
            try:
                return await request_factory()

            except AuthenticationError:
                raise

            except RefreshError as e:
                raise AuthenticationError(f"{self.service} credential could not be refreshed: {e}", self.service) from e

            except Exception as e:
                status = status_of(e)
                if status == 401:
                    logger.error(f"{self.service} rejected the credential during {label}")
                    raise AuthenticationError(f"{self.service} rejected the credential (HTTP 401)", self.service) from e

                if not is_retryable(e):
                    logger.warning(f"{self.service} {label} failed with non-retryable error: {e}")
                    if isinstance(e, ExternalServiceError):
                        raise
                    raise ExternalServiceError(self.service, str(e), status) from e

                if attempt == total_attempts - 1:
                    logger.error(f"{self.service} {label} failed after {total_attempts} attempts: {e}")
                    if status == 429:
                        raise RateLimitExceededError(self.service, total_attempts) from e
                    raise TransientServiceError(self.service, str(e), status, total_attempts) from e

                delay = self.backoff_delay(attempt)
                logger.warning(
                    f"{self.service} {label} attempt {attempt + 1}/{total_attempts} failed "
                    f"(status={status}): retrying in {delay:.2f}s"
                )
                await self.pause(delay)

        # The loop always returns or raises
        raise TransientServiceError(self.service, f"{label} exhausted retries", attempts=total_attempts)

    async def _staggered_call(self, request_factory: RequestFactory, slot: int, label: str) -> Any:
        await self.pause(self.profile.inter_request_delay * slot)
        return await self.call(request_factory, label)

    async def call_batch(self, request_factories: Sequence[RequestFactory], label: str = "request") -> List[Any]:
        """
        Run independent requests in profile-sized concurrent batches.

        Within a batch request starts are staggered by the inter-request
        delay; the next batch starts after the whole batch finished and the
        inter-batch delay elapsed.

        Args:
            request_factories: One factory per request
            label: Short description for log lines

        Returns:
            One entry per factory, in input order: the request's result, or
            the exception that ended it

        Raises:
            AuthenticationError: If any request hit an authentication failure
        """
        factories = list(request_factories)
        results: List[Any] = []
        batch_size = self.profile.batch_size
        total_batches = (len(factories) + batch_size - 1) // batch_size

        for batch_index, start in enumerate(range(0, len(factories), batch_size)):
            batch = factories[start:start + batch_size]
            logger.debug(f"{self.service} {label} batch {batch_index + 1}/{total_batches} ({len(batch)} requests)")

            outcomes = await asyncio.gather(
                *(
                    self._staggered_call(factory, slot, f"{label} #{start + slot + 1}")
                    for slot, factory in enumerate(batch)
                ),
                return_exceptions=True
            )

            for outcome in outcomes:
                if isinstance(outcome, AuthenticationError):
                    raise outcome
                if isinstance(outcome, BaseException) and not isinstance(outcome, Exception):
                    raise outcome
            results.extend(outcomes)

            if start + batch_size < len(factories):
                await self.pause(self.profile.inter_batch_delay)

        return results
