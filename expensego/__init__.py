"""
ExpenseGo - Ledger Core

The data and balance-consistency core of a personal finance tracker:
per-bank, per-year ledgers of accounts, categories and transactions with
always-consistent balances, plus versioned backup and restore.
"""

from .db import (
    LedgerDatabase,
    LedgerRepository,
    TransactionFilters,
    get_repository,
)
from .exceptions import (
    BackupIntegrityError,
    ConstraintViolation,
    DuplicateName,
    LedgerError,
    NotFound,
    SchemaError,
    StorageError,
    ValidationError,
)
from .models import AccountType, CategoryType, TransactionType
from .services import BackupFormat, BackupService, PendingRestore

__version__ = "0.1.0"

__all__ = [
    "AccountType",
    "BackupFormat",
    "BackupIntegrityError",
    "BackupService",
    "CategoryType",
    "ConstraintViolation",
    "DuplicateName",
    "LedgerDatabase",
    "LedgerError",
    "LedgerRepository",
    "NotFound",
    "PendingRestore",
    "SchemaError",
    "StorageError",
    "TransactionFilters",
    "TransactionType",
    "ValidationError",
    "get_repository",
]
