"""
Database Models for Imported Expenses

Merchants and categories are normalized into lookup tables; each imported
transaction references one of each and belongs to one owner.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utc_now() -> datetime:
    """Current time as naive UTC, the form timestamp columns store."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Merchant(Base):
    __tablename__ = "merchants"

    merchant_id = Column(Integer, primary_key=True, autoincrement=True)
    merchant_name = Column(String(255), unique=True, nullable=False, index=True)

    transactions = relationship("Transaction", back_populates="merchant")


class Category(Base):
    __tablename__ = "categories"

    category_id = Column(Integer, primary_key=True, autoincrement=True)
    category_name = Column(String(100), unique=True, nullable=False, index=True)

    transactions = relationship("Transaction", back_populates="category")


class Transaction(Base):
    """
    One imported expense.

    ``transaction_date`` is stored naive, in the store's configured timezone,
    so that month windows compare without offset arithmetic in SQL.
    """
    __tablename__ = "transactions"

    transaction_id = Column(Integer, primary_key=True, autoincrement=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    location = Column(String(255), nullable=True)
    transaction_date = Column(DateTime, nullable=False, index=True)
    merchant_id = Column(Integer, ForeignKey("merchants.merchant_id"), nullable=False)
    category_id = Column(Integer, ForeignKey("categories.category_id"), nullable=False)
    user_id = Column(String(255), nullable=False, index=True)
    sender = Column(String(320), nullable=True, index=True)
    source = Column(String(50), nullable=False, default="gmail")
    created_at = Column(DateTime, default=utc_now, nullable=False)

    merchant = relationship("Merchant", back_populates="transactions")
    category = relationship("Category", back_populates="transactions")

    def to_dict(self) -> Dict[str, Any]:
        """Convert transaction to dictionary representation."""
        return {
            "transaction_id": self.transaction_id,
            "merchant": self.merchant.merchant_name if self.merchant else None,
            "category": self.category.category_name if self.category else None,
            "amount": str(self.amount),
            "currency": self.currency,
            "location": self.location,
            "date": self.transaction_date.isoformat() if self.transaction_date else None,
            "user_id": self.user_id,
            "sender": self.sender,
            "source": self.source,
        }
