from .rate_limiter import RateLimitedFetcher, RateLimitProfile, is_retryable, status_of

__all__ = ["RateLimitedFetcher", "RateLimitProfile", "is_retryable", "status_of"]
