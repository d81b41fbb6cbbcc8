"""
Database Models
"""
from app.db.models.user import User
from app.db.models.expense import Expense

__all__ = [
    "User",
    "Expense",
]
