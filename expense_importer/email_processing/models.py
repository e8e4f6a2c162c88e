"""
Shared data models for expense import.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class ExpenseCategory(Enum):
    """Closed set of spending categories."""
    GROCERIES = "Groceries"
    TRANSPORTATION = "Transportation"
    FOOD_AND_DINING = "Food & Dining"
    SHOPPING = "Shopping"
    UTILITIES = "Utilities"
    HEALTHCARE = "Healthcare"
    ENTERTAINMENT = "Entertainment"
    EDUCATION = "Education"
    INSURANCE = "Insurance"
    TRAVEL = "Travel"
    HOME_AND_GARDEN = "Home & Garden"
    PERSONAL_CARE = "Personal Care"
    BUSINESS = "Business"
    GIFTS_AND_DONATIONS = "Gifts & Donations"
    OTHER = "Other"


EXPENSE_CATEGORIES: Tuple[str, ...] = tuple(category.value for category in ExpenseCategory)
DEFAULT_CATEGORY = ExpenseCategory.OTHER.value

_CATEGORY_LOOKUP = {" ".join(name.lower().split()): name for name in EXPENSE_CATEGORIES}
_CURRENCY_CODE = re.compile(r"^[A-Z]{3}$")


def normalize_category(label: Any) -> Optional[str]:
    """
    Map a label onto the closed set, ignoring case and extra whitespace.

    Returns:
        The canonical label, or None when the label is not in the set
    """
    if not isinstance(label, str):
        return None
    return _CATEGORY_LOOKUP.get(" ".join(label.lower().split()))


def coerce_category(label: Any) -> str:
    """Canonical label for ``label``, or the Other sentinel."""
    return normalize_category(label) or DEFAULT_CATEGORY


@dataclass(frozen=True)
class MessagePart:
    """One node of a message's MIME tree, payload still base64url encoded."""
    mime_type: str
    data: Optional[str] = None
    parts: Tuple["MessagePart", ...] = ()

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "MessagePart":
        payload = payload or {}
        return cls(
            mime_type=payload.get("mimeType", "") or "",
            data=(payload.get("body") or {}).get("data"),
            parts=tuple(cls.from_api(part) for part in payload.get("parts") or ()),
        )


@dataclass(frozen=True)
class RawMessage:
    """A fetched message: identifiers, headers and the MIME body tree."""
    message_id: str
    thread_id: Optional[str]
    headers: Tuple[Tuple[str, str], ...]
    payload: MessagePart

    @classmethod
    def from_api(cls, message: Dict[str, Any]) -> "RawMessage":
        """Build from a Gmail ``users.messages.get(format='full')`` response."""
        payload = message.get("payload") or {}
        headers = tuple(
            (header.get("name", ""), header.get("value", ""))
            for header in payload.get("headers") or ()
        )
        return cls(
            message_id=message.get("id", ""),
            thread_id=message.get("threadId"),
            headers=headers,
            payload=MessagePart.from_api(payload),
        )

    def header(self, name: str) -> Optional[str]:
        """First header value matching ``name`` case-insensitively."""
        wanted = name.lower()
        for key, value in self.headers:
            if key.lower() == wanted:
                return value
        return None

    @property
    def subject(self) -> Optional[str]:
        return self.header("Subject")

    @property
    def sender(self) -> Optional[str]:
        return self.header("From")

    @property
    def date_header(self) -> Optional[str]:
        return self.header("Date")


@dataclass(frozen=True)
class ExtractedExpense:
    """Expense fields pulled out of one notification email."""
    merchant: str
    amount: Decimal
    currency: str
    occurred_at: datetime
    location: str

    def validation_errors(self) -> List[str]:
        """Reasons the record cannot be stored; empty when valid."""
        errors = []
        if not isinstance(self.merchant, str) or not self.merchant.strip():
            errors.append("merchant is empty")
        if not isinstance(self.amount, Decimal) or not self.amount.is_finite() or self.amount <= 0:
            errors.append(f"amount {self.amount!r} is not a positive number")
        if not isinstance(self.currency, str) or not _CURRENCY_CODE.match(self.currency):
            errors.append(f"currency {self.currency!r} is not a 3-letter code")
        if not isinstance(self.occurred_at, datetime):
            errors.append("occurred_at is not a datetime")
        return errors


@dataclass(frozen=True)
class CategorizationRequest:
    """The view of an expense that is sent to the classifier."""
    merchant: str
    amount: Decimal
    currency: str
    location: str
    occurred_at: datetime

    @classmethod
    def from_expense(cls, expense: ExtractedExpense) -> "CategorizationRequest":
        return cls(
            merchant=expense.merchant,
            amount=expense.amount,
            currency=expense.currency,
            location=expense.location,
            occurred_at=expense.occurred_at,
        )


@dataclass(frozen=True)
class CategorizedExpense(ExtractedExpense):
    """An extracted expense with its category from the closed set."""
    category: str = DEFAULT_CATEGORY

    @classmethod
    def from_expense(cls, expense: ExtractedExpense, category: str) -> "CategorizedExpense":
        return cls(
            merchant=expense.merchant,
            amount=expense.amount,
            currency=expense.currency,
            occurred_at=expense.occurred_at,
            location=expense.location,
            category=category,
        )

    def validation_errors(self) -> List[str]:
        errors = super().validation_errors()
        if self.category not in EXPENSE_CATEGORIES:
            errors.append(f"category {self.category!r} is not a known category")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            "merchant": self.merchant,
            "amount": str(self.amount),
            "currency": self.currency,
            "category": self.category,
            "location": self.location,
            "date": self.occurred_at.isoformat(),
        }


@dataclass
class ImportSummary:
    """Aggregate outcome of one import run."""
    processed: int = 0
    extracted: int = 0
    categorized: int = 0
    stored: int = 0
    deleted: int = 0
    errors: int = 0
    sender: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    transactions: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        """True when the run completed but some items failed."""
        return self.errors > 0

    def counts(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "extracted": self.extracted,
            "categorized": self.categorized,
            "stored": self.stored,
            "deleted": self.deleted,
            "errors": self.errors,
        }

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = self.counts()
        data.update({
            "sender": self.sender,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "transactions": list(self.transactions),
        })
        return data
