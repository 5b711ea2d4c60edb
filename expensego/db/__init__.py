"""
Database module for the ExpenseGo ledger core.

This module provides the database layer for the per-bank, per-year ledger,
including repositories for banks, accounts, categories, transactions and
report queries.

Structure:
- store.py: Durable key-value store holding the serialized database image
- base.py: Database handle, transaction boundary, schema and migrations
- models.py: Data models (Bank, Account, Category, Transaction, etc.)
- schema.py: Scope registration, default seeding and reset
- banks.py: Bank CRUD
- accounts.py: Account CRUD
- categories.py: Category CRUD and duplicate cleanup
- balances.py: Incremental balance effects and full recomputation
- transactions.py: Transaction CRUD and queries
- queries.py: Balance summary and report totals
- repository.py: Main facade that composes all sub-repositories
"""

from .accounts import AccountRepository
from .balances import BalanceEngine, effects
from .banks import BankRepository
from .base import BaseRepository, LedgerDatabase
from .categories import CategoryRepository
from .models import (
    Account,
    Bank,
    Category,
    RecalculationResult,
    Transaction,
    TransactionFilters,
)
from .queries import QueryRepository
from .repository import LedgerRepository, get_repository
from .schema import SchemaManager
from .store import FileKeyValueStore, KeyValueStore, MemoryKeyValueStore
from .transactions import TransactionRepository

__all__ = [
    # Base
    "BaseRepository",
    "LedgerDatabase",
    # Stores
    "FileKeyValueStore",
    "KeyValueStore",
    "MemoryKeyValueStore",
    # Models
    "Account",
    "Bank",
    "Category",
    "RecalculationResult",
    "Transaction",
    "TransactionFilters",
    # Repositories
    "AccountRepository",
    "BalanceEngine",
    "BankRepository",
    "CategoryRepository",
    "LedgerRepository",
    "QueryRepository",
    "SchemaManager",
    "TransactionRepository",
    # Utilities
    "effects",
    "get_repository",
]
