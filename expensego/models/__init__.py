from .account import AccountType, CategoryType
from .transaction import TransactionType

__all__ = [
    "AccountType",
    "CategoryType",
    "TransactionType",
]
