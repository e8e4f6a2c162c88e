from .expense_categorizer import ExpenseCategorizer, categorize_by_keywords

__all__ = ['ExpenseCategorizer', 'categorize_by_keywords']
