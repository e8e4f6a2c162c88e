"""
Gemini Text Generation Client

Thin async client for the Gemini ``generateContent`` endpoint, used as an
opaque classifier by the expense categorizer.

Design Considerations:
- aiohttp session per request, matching the rest of the async HTTP code
- Every call goes through RateLimitedFetcher for retry on 429/5xx
- Non-success statuses surface as the importer's error taxonomy
- Returns the raw text of the first candidate; parsing is the caller's job
"""

import logging
from typing import Any, Dict, Optional

import aiohttp

from expense_importer.config.pipeline_config import PIPELINE_CONFIG
from expense_importer.exceptions import AuthenticationError, ExternalServiceError
from expense_importer.integrations.http.rate_limiter import RateLimitedFetcher

logger = logging.getLogger(__name__)

SERVICE_NAME = "gemini"


def build_generation_config(overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """generationConfig payload section from PIPELINE_CONFIG."""
    model = dict(PIPELINE_CONFIG["categorizer"]["model"])
    model.update(overrides or {})
    return {
        "temperature": model["temperature"],
        "maxOutputTokens": model["max_output_tokens"],
        "topP": model["top_p"],
        "topK": model["top_k"],
        "responseMimeType": "application/json",
    }


def extract_candidate_text(data: Any) -> str:
    """
    Text of the first part of the first candidate.

    Raises:
        ExternalServiceError: If the envelope is missing or the text is empty
    """
    try:
        text = data["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError) as e:
        raise ExternalServiceError(SERVICE_NAME, f"unexpected response envelope: {e!r}") from e

    if not isinstance(text, str) or not text.strip():
        raise ExternalServiceError(SERVICE_NAME, "empty response text")
    return text


class GeminiClient:
    """
    Client for ``POST {endpoint}/models/{model}:generateContent``.

    Attributes:
        model: Model name
        endpoint: API base URL
        timeout: Total request timeout in seconds
    """

    def __init__(
        self,
        api_key: Optional[str],
        fetcher: RateLimitedFetcher,
        model: str = "gemini-2.5-flash",
        endpoint: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60,
        generation_config: Optional[Dict[str, Any]] = None,
    ):
        if not api_key:
            raise AuthenticationError("Gemini API key is missing", service=SERVICE_NAME)

        self._api_key = api_key
        self.fetcher = fetcher
        self.model = model
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self.generation_config = build_generation_config(generation_config)

    @classmethod
    def from_settings(cls, settings: Any, fetcher: RateLimitedFetcher) -> "GeminiClient":
        api_key = settings.GEMINI_API_KEY.get_secret_value() if settings.GEMINI_API_KEY else None
        return cls(
            api_key=api_key,
            fetcher=fetcher,
            model=settings.GEMINI_MODEL,
            endpoint=settings.GEMINI_API_ENDPOINT,
            timeout=settings.GEMINI_TIMEOUT,
        )

    @property
    def url(self) -> str:
        return f"{self.endpoint}/models/{self.model}:generateContent"

    def build_payload(self, prompt: str) -> Dict[str, Any]:
        return {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": self.generation_config,
        }

    async def _post(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self.url, params={"key": self._api_key}, json=payload) as response:
                if response.status in (401, 403):
                    raise AuthenticationError(
                        f"Gemini rejected the API key (HTTP {response.status})",
                        service=SERVICE_NAME
                    )
                if response.status != 200:
                    error_text = await response.text()
                    raise ExternalServiceError(
                        SERVICE_NAME,
                        f"HTTP {response.status}: {error_text[:200]}",
                        status=response.status
                    )
                return await response.json(content_type=None)

    async def generate(self, prompt: str, request_id: str = "") -> str:
        """
        Send ``prompt`` and return the raw response text.

        Args:
            prompt: Full prompt text
            request_id: Identifier for log correlation

        Returns:
            Text of the first candidate, possibly malformed JSON

        Raises:
            AuthenticationError: API key missing or rejected
            ExternalServiceError: Non-success status, retries exhausted or
                empty response
        """
        payload = self.build_payload(prompt)
        logger.debug(f"[{request_id}] Gemini request: model={self.model}, prompt length={len(prompt)}")

        data = await self.fetcher.call(lambda: self._post(payload), label="generateContent")
        text = extract_candidate_text(data)

        logger.debug(f"[{request_id}] Gemini response: {len(text)} chars")
        return text
