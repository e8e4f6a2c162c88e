from .database import Database, create_db_engine
from .expense_store import ExpenseStore, SQLAlchemyExpenseStore
from .models import Base, Category, Merchant, Transaction

__all__ = [
    'Database',
    'create_db_engine',
    'ExpenseStore',
    'SQLAlchemyExpenseStore',
    'Base',
    'Category',
    'Merchant',
    'Transaction',
]
