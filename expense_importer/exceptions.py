"""
Error taxonomy for the expense import pipeline.

Only AuthenticationError is allowed to escape an import run. Every other
error type is caught at a stage boundary, logged, and folded into the
ImportSummary error counter.
"""

from typing import Optional


class ExpenseImportError(Exception):
    """Base class for all pipeline errors."""
    pass


class AuthenticationError(ExpenseImportError):
    """
    Missing, expired or rejected credential.

    Retrying cannot succeed without a fresh credential, so this error is
    never retried and aborts the run.
    """

    def __init__(self, message: str, service: str = "gmail"):
        super().__init__(message)
        self.service = service


class ExternalServiceError(ExpenseImportError):
    """Non-success response from an external service that is not retried."""

    def __init__(self, service: str, message: str, status: Optional[int] = None):
        super().__init__(f"{service} error: {message}")
        self.service = service
        self.status = status


class RateLimitExceededError(ExternalServiceError):
    """HTTP 429 still returned after every retry."""

    def __init__(self, service: str, attempts: int):
        super().__init__(service, f"rate limited after {attempts} attempts", status=429)
        self.attempts = attempts


class TransientServiceError(ExternalServiceError):
    """Server error or connection failure still present after all retries."""

    def __init__(self, service: str, message: str, status: Optional[int] = None, attempts: int = 0):
        super().__init__(service, message, status=status)
        self.attempts = attempts


class StorageError(ExpenseImportError):
    """Failure reported by the storage collaborator."""
    pass
