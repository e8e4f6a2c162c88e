from .gmail.client import GmailMessageSource
from .gemini.client import GeminiClient
from .http.rate_limiter import RateLimitedFetcher, RateLimitProfile

__all__ = [
    'GmailMessageSource',
    'GeminiClient',
    'RateLimitedFetcher',
    'RateLimitProfile',
]
