"""
Ledger repository facade.

Composes the scope-level repositories over one shared LedgerDatabase and
exposes every ledger operation from a single object.
"""

import logging
from decimal import Decimal
from typing import Any, Optional

from expensego import config
from expensego.models import CategoryType

from .accounts import AccountRepository
from .balances import BalanceEngine
from .banks import BankRepository
from .base import LedgerDatabase
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
from .schema import SchemaManager
from .store import FileKeyValueStore, KeyValueStore
from .transactions import TransactionRepository

logger = logging.getLogger(__name__)


class LedgerRepository:
    """
    Main entry point of the ledger core.

    Every method delegates to one of the sub-repositories, which share the
    same database handle and therefore the same transaction boundary.
    """

    def __init__(
        self,
        database: Optional[LedgerDatabase] = None,
        store: Optional[KeyValueStore] = None,
    ):
        """
        Initialize the repository.

        Args:
            database: An existing database handle to use
            store: Durable store for a new handle when database is not given
        """
        self.db = database or LedgerDatabase(store)
        self.db.open()

        self.schema = SchemaManager(self.db)
        self.balances = BalanceEngine(self.db)
        self.banks = BankRepository(self.db, self.schema)
        self.accounts = AccountRepository(self.db, self.schema)
        self.categories = CategoryRepository(self.db, self.schema)
        self.transactions = TransactionRepository(self.db, self.schema, self.balances)
        self.queries = QueryRepository(self.db, self.schema)

    def transaction(self):
        """Atomic unit of work spanning several repository calls."""
        return self.db.transaction()

    def close(self):
        self.db.close()

    def clear_all_data(self):
        """Delete every bank and scope and start over with an empty ledger."""
        self.db.clear_all_data()

    # =========================================================================
    # Scopes
    # =========================================================================

    def ensure_tables(self, bank_id: int, year: int) -> bool:
        return self.schema.ensure_tables(bank_id, year)

    def seed_defaults(self, bank_id: int, year: int) -> dict[str, int]:
        return self.schema.seed_defaults(bank_id, year)

    def recreate_scope(self, bank_id: int, year: int):
        self.schema.recreate(bank_id, year)

    def list_scopes(self, bank_id: Optional[int] = None) -> list[tuple[int, int]]:
        return self.schema.list_scopes(bank_id)

    def get_schema_sql(self) -> list[str]:
        return self.db.get_schema_sql()

    # =========================================================================
    # Banks
    # =========================================================================

    def create_bank(
        self, name: str, icon: Optional[str] = None, year: Optional[int] = None
    ) -> Bank:
        return self.banks.create_bank(name, icon, year)

    def get_banks(self) -> list[Bank]:
        return self.banks.get_banks()

    def get_bank(self, bank_id: int) -> Bank:
        return self.banks.get_bank(bank_id)

    def update_bank(
        self, bank_id: int, name: Optional[str] = None, icon: Optional[str] = None
    ) -> Bank:
        return self.banks.update_bank(bank_id, name, icon)

    def delete_bank(self, bank_id: int) -> bool:
        return self.banks.delete_bank(bank_id)

    # =========================================================================
    # Accounts
    # =========================================================================

    def create_account(self, bank_id: int, year: int, data: dict[str, Any]) -> int:
        return self.accounts.create_account(bank_id, year, data)

    def get_accounts(self, bank_id: int, year: int) -> list[Account]:
        return self.accounts.get_accounts(bank_id, year)

    def get_account(self, bank_id: int, year: int, account_id: int) -> Account:
        return self.accounts.get_account(bank_id, year, account_id)

    def get_default_account(self, bank_id: int, year: int) -> Optional[Account]:
        return self.accounts.get_default_account(bank_id, year)

    def get_account_balance(self, bank_id: int, year: int, account_id: int) -> Decimal:
        return self.accounts.get_account_balance(bank_id, year, account_id)

    def update_account(
        self, bank_id: int, year: int, account_id: int, data: dict[str, Any]
    ) -> Account:
        return self.accounts.update_account(bank_id, year, account_id, data)

    def delete_account(self, bank_id: int, year: int, account_id: int) -> bool:
        return self.accounts.delete_account(bank_id, year, account_id)

    def has_existing_data(self, bank_id: int, year: int) -> bool:
        return self.accounts.has_existing_data(bank_id, year)

    # =========================================================================
    # Categories
    # =========================================================================

    def create_category(self, bank_id: int, year: int, data: dict[str, Any]) -> int:
        return self.categories.create_category(bank_id, year, data)

    def get_categories(
        self, bank_id: int, year: int, category_type: Optional[CategoryType] = None
    ) -> list[Category]:
        return self.categories.get_categories(bank_id, year, category_type)

    def get_category(self, bank_id: int, year: int, category_id: int) -> Category:
        return self.categories.get_category(bank_id, year, category_id)

    def find_category(
        self, bank_id: int, year: int, name: str, category_type: CategoryType
    ) -> Optional[Category]:
        return self.categories.find_category(bank_id, year, name, category_type)

    def update_category(
        self, bank_id: int, year: int, category_id: int, data: dict[str, Any]
    ) -> Category:
        return self.categories.update_category(bank_id, year, category_id, data)

    def delete_category(self, bank_id: int, year: int, category_id: int) -> bool:
        return self.categories.delete_category(bank_id, year, category_id)

    def cleanup_duplicate_categories(self, bank_id: int, year: int) -> int:
        return self.categories.cleanup_duplicate_categories(bank_id, year)

    # =========================================================================
    # Transactions
    # =========================================================================

    def create_transaction(self, bank_id: int, year: int, data: dict[str, Any]) -> int:
        return self.transactions.create_transaction(bank_id, year, data)

    def update_transaction(
        self, bank_id: int, year: int, transaction_id: int, data: dict[str, Any]
    ) -> Transaction:
        return self.transactions.update_transaction(bank_id, year, transaction_id, data)

    def delete_transaction(self, bank_id: int, year: int, transaction_id: int) -> bool:
        return self.transactions.delete_transaction(bank_id, year, transaction_id)

    def get_transaction(self, bank_id: int, year: int, transaction_id: int) -> Transaction:
        return self.transactions.get_transaction(bank_id, year, transaction_id)

    def get_transactions(
        self, bank_id: int, year: int, filters: Optional[TransactionFilters] = None
    ) -> list[Transaction]:
        return self.transactions.get_transactions(bank_id, year, filters)

    def get_transactions_by_account(
        self, bank_id: int, year: int, account_id: int
    ) -> list[Transaction]:
        return self.transactions.get_transactions_by_account(bank_id, year, account_id)

    def count_transactions(
        self, bank_id: int, year: int, filters: Optional[TransactionFilters] = None
    ) -> int:
        return self.transactions.count_transactions(bank_id, year, filters)

    # =========================================================================
    # Balances and reports
    # =========================================================================

    def recalculate_account_balances(self, bank_id: int, year: int) -> RecalculationResult:
        return self.balances.recalculate_account_balances(bank_id, year)

    def get_account_summary(self, bank_id: int, year: int) -> dict[str, Any]:
        return self.queries.get_account_summary(bank_id, year)

    def get_category_totals(self, bank_id: int, year: int, **kwargs) -> list[dict[str, Any]]:
        return self.queries.get_category_totals(bank_id, year, **kwargs)

    def get_monthly_totals(self, bank_id: int, year: int) -> list[dict[str, Any]]:
        return self.queries.get_monthly_totals(bank_id, year)

    def get_daily_totals(self, bank_id: int, year: int, **kwargs) -> list[dict[str, Any]]:
        return self.queries.get_daily_totals(bank_id, year, **kwargs)


# Singleton instance for convenience
_default_repository: Optional[LedgerRepository] = None


def get_repository() -> LedgerRepository:
    """Get or create the default repository, persisted under DATA_DIR."""
    global _default_repository
    if _default_repository is None:
        config.ensure_directories()
        _default_repository = LedgerRepository(store=FileKeyValueStore(config.DATA_DIR))
        logger.info(f"Opened ledger at {config.DATA_DIR}")
    return _default_repository
