"""
Accounts repository module.

Handles account CRUD inside a (bank, year) scope:
- Creation with current_balance starting at initial_balance
- Updates of descriptive fields and the opening balance
- Deletion guarded against default and referenced accounts
"""

import logging
from decimal import Decimal
from typing import Any, Optional

from expensego.config import DEFAULT_CURRENCY, MAX_NAME_LENGTH
from expensego.exceptions import ConstraintViolation, NotFound, ValidationError
from expensego.models import AccountType

from .base import BaseRepository, LedgerDatabase, has_field, pick, to_decimal, utc_now
from .models import Account
from .schema import SchemaManager

logger = logging.getLogger(__name__)

ACCOUNT_COLUMNS = """
    account_id, bank_id, fiscal_year, name, type, currency, initial_balance,
    current_balance, color_code, icon, notes, is_default, created_at, updated_at
"""


class AccountRepository(BaseRepository):
    """
    Repository for managing the accounts of a scope.

    Balances are never recomputed here; transaction writes adjust them
    through the balance engine and full recomputation is a separate call.
    """

    def __init__(self, database: LedgerDatabase, schema: Optional[SchemaManager] = None):
        """
        Initialize the account repository.

        Args:
            database: The shared database handle
            schema: Schema manager used to lazily prepare scopes
        """
        super().__init__(database)
        self.schema = schema or SchemaManager(database)

    # =========================================================================
    # Validation
    # =========================================================================

    @staticmethod
    def _clean_name(name: Any) -> str:
        if name is None or not str(name).strip():
            raise ValidationError("Account name cannot be empty")
        name = str(name).strip()
        if len(name) > MAX_NAME_LENGTH:
            raise ValidationError(
                f"Account name must be at most {MAX_NAME_LENGTH} characters"
            )
        return name

    @staticmethod
    def _clean_type(value: Any) -> AccountType:
        if isinstance(value, AccountType):
            return value
        try:
            return AccountType(str(value).strip().lower())
        except ValueError:
            allowed = ", ".join(t.value for t in AccountType)
            raise ValidationError(
                f"Invalid account type {value!r}; expected one of: {allowed}"
            )

    # =========================================================================
    # Create / Read
    # =========================================================================

    def create_account(self, bank_id: int, year: int, data: dict[str, Any]) -> int:
        """
        Create a new account in a scope.

        Args:
            bank_id: Bank owning the scope
            year: Fiscal year of the scope
            data: Account fields (name, type, currency, initial_balance,
                  color_code, icon, notes); camelCase keys are accepted

        Returns:
            The new account id

        Raises:
            ValidationError: If required fields are missing or malformed
        """
        self._validate_scope(bank_id, year)
        name = self._clean_name(pick(data, "name"))
        account_type = self._clean_type(pick(data, "type", AccountType.CHECKING.value))
        initial_balance = to_decimal(
            pick(data, "initial_balance", Decimal("0")), "initial balance"
        )
        currency = str(pick(data, "currency") or DEFAULT_CURRENCY).strip().upper()

        self.schema.ensure_tables(bank_id, year)
        now = utc_now()
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO accounts
                (bank_id, fiscal_year, name, type, currency, initial_balance,
                 current_balance, color_code, icon, notes, is_default,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (
                    bank_id,
                    year,
                    name,
                    account_type.value,
                    currency,
                    initial_balance,
                    initial_balance,
                    pick(data, "color_code") or pick(data, "color"),
                    pick(data, "icon"),
                    pick(data, "notes") or "",
                    now,
                    now,
                ),
            )
            account_id = cursor.lastrowid

        logger.info(
            f"Created account '{name}' ({account_type.value}) id {account_id} "
            f"in scope ({bank_id}, {year})"
        )
        return account_id

    def get_accounts(self, bank_id: int, year: int) -> list[Account]:
        """List the accounts of a scope ordered by name."""
        self._validate_scope(bank_id, year)
        self.schema.ensure_tables(bank_id, year)
        with self._transaction() as conn:
            rows = conn.execute(
                f"""
                SELECT {ACCOUNT_COLUMNS} FROM accounts
                WHERE bank_id = ? AND fiscal_year = ?
                ORDER BY name COLLATE NOCASE, account_id
                """,
                (bank_id, year),
            ).fetchall()
        accounts = [Account.from_row(row) for row in rows]
        logger.debug(f"Retrieved {len(accounts)} accounts for scope ({bank_id}, {year})")
        return accounts

    def get_account(self, bank_id: int, year: int, account_id: int) -> Account:
        """
        Get one account.

        Raises:
            NotFound: If the account does not exist in the scope
        """
        self._validate_scope(bank_id, year)
        self._validate_id(account_id, "account_id")
        with self._transaction() as conn:
            row = self._fetch(conn, bank_id, year, account_id)
        if not row:
            raise NotFound(f"Account {account_id} not found")
        return Account.from_row(row)

    def get_default_account(self, bank_id: int, year: int) -> Optional[Account]:
        """The seeded default account of a scope, if any."""
        self._validate_scope(bank_id, year)
        self.schema.ensure_tables(bank_id, year)
        with self._transaction() as conn:
            row = conn.execute(
                f"""
                SELECT {ACCOUNT_COLUMNS} FROM accounts
                WHERE bank_id = ? AND fiscal_year = ? AND is_default = 1
                """,
                (bank_id, year),
            ).fetchone()
        return Account.from_row(row) if row else None

    def get_account_balance(self, bank_id: int, year: int, account_id: int) -> Decimal:
        """Current balance of one account."""
        return self.get_account(bank_id, year, account_id).current_balance

    @staticmethod
    def _fetch(conn, bank_id: int, year: int, account_id: int):
        return conn.execute(
            f"""
            SELECT {ACCOUNT_COLUMNS} FROM accounts
            WHERE account_id = ? AND bank_id = ? AND fiscal_year = ?
            """,
            (account_id, bank_id, year),
        ).fetchone()

    def has_existing_data(self, bank_id: int, year: int) -> bool:
        """Whether the scope holds any transaction or user-created account."""
        self._validate_scope(bank_id, year)
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM transactions
                     WHERE bank_id = ? AND fiscal_year = ?) AS transactions,
                    (SELECT COUNT(*) FROM accounts
                     WHERE bank_id = ? AND fiscal_year = ? AND is_default = 0) AS accounts
                """,
                (bank_id, year, bank_id, year),
            ).fetchone()
        return row["transactions"] > 0 or row["accounts"] > 0

    # =========================================================================
    # Update / Delete
    # =========================================================================

    def update_account(
        self, bank_id: int, year: int, account_id: int, data: dict[str, Any]
    ) -> Account:
        """
        Update an account's mutable fields.

        Only the fields present in data change. Changing initial_balance
        shifts current_balance by the same amount; transactions are not
        replayed.

        Args:
            bank_id: Bank owning the scope
            year: Fiscal year of the scope
            account_id: Account to update
            data: Fields to change

        Returns:
            The updated Account

        Raises:
            NotFound: If the account does not exist
            ValidationError: If a field is malformed
        """
        self._validate_scope(bank_id, year)
        self._validate_id(account_id, "account_id")

        with self._transaction() as conn:
            row = self._fetch(conn, bank_id, year, account_id)
            if not row:
                raise NotFound(f"Account {account_id} not found")
            account = Account.from_row(row)

            if has_field(data, "name"):
                account.name = self._clean_name(pick(data, "name"))
            if has_field(data, "type"):
                account.account_type = self._clean_type(pick(data, "type"))
            if has_field(data, "currency"):
                account.currency = (
                    str(pick(data, "currency") or DEFAULT_CURRENCY).strip().upper()
                )
            if has_field(data, "color_code") or has_field(data, "color"):
                account.color_code = pick(data, "color_code") or pick(data, "color")
            if has_field(data, "icon"):
                account.icon = pick(data, "icon")
            if has_field(data, "notes"):
                account.notes = pick(data, "notes") or ""
            if has_field(data, "initial_balance"):
                new_initial = to_decimal(pick(data, "initial_balance"), "initial balance")
                account.current_balance += new_initial - account.initial_balance
                account.initial_balance = new_initial

            account.updated_at = utc_now()
            conn.execute(
                """
                UPDATE accounts
                SET name = ?, type = ?, currency = ?, initial_balance = ?,
                    current_balance = ?, color_code = ?, icon = ?, notes = ?,
                    updated_at = ?
                WHERE account_id = ?
                """,
                (
                    account.name,
                    account.account_type.value,
                    account.currency,
                    account.initial_balance,
                    account.current_balance,
                    account.color_code,
                    account.icon,
                    account.notes,
                    account.updated_at,
                    account_id,
                ),
            )

        logger.info(f"Updated account {account_id} in scope ({bank_id}, {year})")
        return account

    def delete_account(self, bank_id: int, year: int, account_id: int) -> bool:
        """
        Delete an account that is neither default nor referenced.

        Raises:
            NotFound: If the account does not exist
            ConstraintViolation: If the account is the default account or
                any transaction references it (either leg)
        """
        self._validate_scope(bank_id, year)
        self._validate_id(account_id, "account_id")

        with self._transaction() as conn:
            row = self._fetch(conn, bank_id, year, account_id)
            if not row:
                raise NotFound(f"Account {account_id} not found")
            if row["is_default"]:
                raise ConstraintViolation(
                    f"Cannot delete default account \"{row['name']}\""
                )

            count = conn.execute(
                """
                SELECT COUNT(*) FROM transactions
                WHERE account_id = ? OR to_account_id = ?
                """,
                (account_id, account_id),
            ).fetchone()[0]
            if count > 0:
                raise ConstraintViolation(
                    f"Cannot delete account \"{row['name']}\" because it has "
                    f"{count} transaction(s). Please delete the transactions first."
                )

            conn.execute("DELETE FROM accounts WHERE account_id = ?", (account_id,))

        logger.info(f"Deleted account {account_id} from scope ({bank_id}, {year})")
        return True
