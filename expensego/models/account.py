"""
Account and category models for the personal ledger.

Defines account types and category types used by every (bank, year) scope.
"""

from enum import Enum


class AccountType(str, Enum):
    """
    Kinds of money-holding accounts a user can track.

    The type is descriptive only; every account type follows the same
    balance rules (income adds, expense subtracts, transfers move money).
    """

    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT = "credit"
    INVESTMENT = "investment"
    CASH = "cash"
    OTHER = "other"


class CategoryType(str, Enum):
    """Whether a category groups spending or earnings."""

    EXPENSE = "expense"
    INCOME = "income"
