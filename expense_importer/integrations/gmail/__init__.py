"""
Gmail integration package.

Provides read-only message search and retrieval for transaction
notification emails.
"""

from .client import BodyFetchResult, GmailMessageSource, build_search_queries

__all__ = ["BodyFetchResult", "GmailMessageSource", "build_search_queries"]
