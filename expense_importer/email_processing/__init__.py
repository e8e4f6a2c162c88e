"""
Email processing package initialization.
"""

from .models import (
    EXPENSE_CATEGORIES,
    CategorizationRequest,
    CategorizedExpense,
    ExpenseCategory,
    ExtractedExpense,
    ImportSummary,
    MessagePart,
    RawMessage,
)
from .extractor import EmailFieldExtractor
from .analyzers.expense_categorizer import ExpenseCategorizer, categorize_by_keywords
from .processor import ImportOrchestrator

__all__ = [
    'EXPENSE_CATEGORIES',
    'CategorizationRequest',
    'CategorizedExpense',
    'ExpenseCategory',
    'ExtractedExpense',
    'ImportSummary',
    'MessagePart',
    'RawMessage',
    'EmailFieldExtractor',
    'ExpenseCategorizer',
    'categorize_by_keywords',
    'ImportOrchestrator',
]
