"""
Transactions repository module.

Handles the ledger entries of a (bank, year) scope. Every write is one
atomic unit: the row change and the balance adjustments of the accounts it
touches commit together or not at all.
"""

import json
import logging
import sqlite3
from dataclasses import replace
from decimal import Decimal
from typing import Any, Optional

from expensego import config
from expensego.exceptions import NotFound, ValidationError
from expensego.models import TransactionType

from .balances import BalanceEngine, effects
from .base import (
    BaseRepository,
    LedgerDatabase,
    has_field,
    pick,
    to_decimal,
    to_iso_date,
    utc_now,
)
from .models import Transaction, TransactionFilters
from .schema import SchemaManager

logger = logging.getLogger(__name__)

TRANSACTION_COLUMNS = """
    t.transaction_id, t.bank_id, t.fiscal_year, t.type, t.amount, t.date,
    t.account_id, t.to_account_id, t.category_id, t.description,
    t.payment_method, t.location, t.notes, t.tags, t.attachments,
    t.created_at, t.updated_at
"""

JOINED_SELECT = f"""
    SELECT {TRANSACTION_COLUMNS},
           a.name AS account_name,
           ta.name AS to_account_name,
           c.name AS category_name
    FROM transactions t
    LEFT JOIN accounts a ON a.account_id = t.account_id
    LEFT JOIN accounts ta ON ta.account_id = t.to_account_id
    LEFT JOIN categories c ON c.category_id = t.category_id
"""


def _string_list(value: Any, field_name: str) -> list[str]:
    """Accept a list of strings, a JSON array string, or None."""
    if value is None or value == "":
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            raise ValidationError(f"Invalid {field_name}: expected a list")
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"Invalid {field_name}: expected a list")
    return [str(item) for item in value]


class TransactionRepository(BaseRepository):
    """
    Repository for expense, income and transfer entries.

    Balance math is delegated to the BalanceEngine so the incremental path
    and full recomputation share one definition of a transaction's effect.
    """

    def __init__(
        self,
        database: LedgerDatabase,
        schema: Optional[SchemaManager] = None,
        balances: Optional[BalanceEngine] = None,
    ):
        """
        Initialize the transaction repository.

        Args:
            database: The shared database handle
            schema: Schema manager used to lazily prepare scopes
            balances: Balance engine applying account effects
        """
        super().__init__(database)
        self.schema = schema or SchemaManager(database)
        self.balances = balances or BalanceEngine(database)

    # =========================================================================
    # Validation
    # =========================================================================

    def _validate(
        self, conn: sqlite3.Connection, bank_id: int, year: int, txn: Transaction
    ) -> Transaction:
        """
        Check a candidate transaction against the scope's data.

        Normalizes the amount to its magnitude and clears the field that
        does not apply to the transaction type.

        Raises:
            ValidationError: If a field is malformed or inconsistent
            NotFound: If a referenced account or category does not exist
        """
        if txn.amount == 0:
            raise ValidationError("Amount must not be zero")
        txn.amount = abs(txn.amount)

        self._validate_id(txn.account_id, "account_id")
        if not self._account_exists(conn, bank_id, year, txn.account_id):
            raise NotFound(f"Account {txn.account_id} not found")

        if txn.transaction_type.needs_category:
            if txn.category_id is None:
                raise ValidationError(
                    f"A category is required for {txn.transaction_type.value} transactions"
                )
            self._validate_id(txn.category_id, "category_id")
            category = conn.execute(
                """
                SELECT type FROM categories
                WHERE category_id = ? AND bank_id = ? AND fiscal_year = ?
                """,
                (txn.category_id, bank_id, year),
            ).fetchone()
            if not category:
                raise NotFound(f"Category {txn.category_id} not found")
            if category["type"] != txn.transaction_type.value:
                raise ValidationError(
                    f"Category {txn.category_id} is an {category['type']} category and "
                    f"cannot be used for a {txn.transaction_type.value} transaction"
                )
            txn.to_account_id = None
        else:
            if txn.to_account_id is None:
                raise ValidationError("Transfer requires a destination account")
            self._validate_id(txn.to_account_id, "to_account_id")
            if txn.to_account_id == txn.account_id:
                raise ValidationError(
                    "Cannot transfer to the same account; choose a different destination"
                )
            if not self._account_exists(conn, bank_id, year, txn.to_account_id):
                raise NotFound(f"Destination account {txn.to_account_id} not found")
            txn.category_id = None

        if len(txn.description) > config.MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"Description must be at most {config.MAX_DESCRIPTION_LENGTH} characters"
            )
        return txn

    @staticmethod
    def _account_exists(conn, bank_id: int, year: int, account_id: int) -> bool:
        row = conn.execute(
            "SELECT 1 FROM accounts WHERE account_id = ? AND bank_id = ? AND fiscal_year = ?",
            (account_id, bank_id, year),
        ).fetchone()
        return row is not None

    @staticmethod
    def _parse_type(value: Any) -> TransactionType:
        if isinstance(value, TransactionType):
            return value
        try:
            return TransactionType(str(value).strip().lower())
        except ValueError:
            raise ValidationError(
                f"Invalid transaction type {value!r}; "
                "expected 'expense', 'income' or 'transfer'"
            )

    @staticmethod
    def _optional_id(value: Any) -> Optional[int]:
        if value is None or value == "":
            return None
        if isinstance(value, str) and value.strip().isdigit():
            return int(value)
        return value

    def _build(self, bank_id: int, year: int, data: dict[str, Any]) -> Transaction:
        """Turn raw input into an unsaved Transaction."""
        if not has_field(data, "type"):
            raise ValidationError("Transaction type is required")
        if not has_field(data, "amount"):
            raise ValidationError("Amount is required")
        if not has_field(data, "date"):
            raise ValidationError("Date is required")
        if not has_field(data, "account_id"):
            raise ValidationError("Account is required")

        return Transaction(
            id=None,
            bank_id=bank_id,
            fiscal_year=year,
            transaction_type=self._parse_type(pick(data, "type")),
            amount=to_decimal(pick(data, "amount"), "amount"),
            date=to_iso_date(pick(data, "date")),
            account_id=self._optional_id(pick(data, "account_id")),
            to_account_id=self._optional_id(pick(data, "to_account_id")),
            category_id=self._optional_id(pick(data, "category_id")),
            description=str(pick(data, "description") or "").strip(),
            payment_method=str(pick(data, "payment_method") or "cash"),
            location=str(pick(data, "location") or ""),
            notes=str(pick(data, "notes") or ""),
            tags=_string_list(pick(data, "tags"), "tags"),
            attachments=_string_list(pick(data, "attachments"), "attachments"),
        )

    def _merge(self, current: Transaction, data: dict[str, Any]) -> Transaction:
        """Overlay a partial update on a stored transaction."""
        merged = replace(
            current, tags=list(current.tags), attachments=list(current.attachments)
        )
        if has_field(data, "type"):
            merged.transaction_type = self._parse_type(pick(data, "type"))
        if has_field(data, "amount"):
            merged.amount = to_decimal(pick(data, "amount"), "amount")
        if has_field(data, "date"):
            merged.date = to_iso_date(pick(data, "date"))
        if has_field(data, "account_id"):
            merged.account_id = self._optional_id(pick(data, "account_id"))
        if has_field(data, "to_account_id"):
            merged.to_account_id = self._optional_id(pick(data, "to_account_id"))
        if has_field(data, "category_id"):
            merged.category_id = self._optional_id(pick(data, "category_id"))
        if has_field(data, "description"):
            merged.description = str(pick(data, "description") or "").strip()
        if has_field(data, "payment_method"):
            merged.payment_method = str(pick(data, "payment_method") or "cash")
        if has_field(data, "location"):
            merged.location = str(pick(data, "location") or "")
        if has_field(data, "notes"):
            merged.notes = str(pick(data, "notes") or "")
        if has_field(data, "tags"):
            merged.tags = _string_list(pick(data, "tags"), "tags")
        if has_field(data, "attachments"):
            merged.attachments = _string_list(pick(data, "attachments"), "attachments")
        merged.account_name = merged.to_account_name = merged.category_name = None
        return merged

    @staticmethod
    def _debited_balances(conn, txn: Transaction) -> dict[int, Decimal]:
        """Current balances of the accounts a transaction takes money from."""
        if config.ALLOW_NEGATIVE_BALANCE:
            return {}
        balances = {}
        for account_id, delta in effects(
            txn.transaction_type, txn.amount, txn.account_id, txn.to_account_id
        ):
            if delta < 0:
                balances[account_id] = conn.execute(
                    "SELECT current_balance FROM accounts WHERE account_id = ?",
                    (account_id,),
                ).fetchone()[0]
        return balances

    @staticmethod
    def _check_funds(conn, before: dict[int, Decimal]):
        """
        Reject writes that leave a debited account below zero and lower
        than it was before the write. No-op when negative balances are allowed.
        """
        for account_id, previous in before.items():
            row = conn.execute(
                "SELECT name, current_balance FROM accounts WHERE account_id = ?",
                (account_id,),
            ).fetchone()
            if row["current_balance"] < 0 and row["current_balance"] < previous:
                raise ValidationError(
                    f"Insufficient funds in \"{row['name']}\": "
                    f"balance would be {row['current_balance']}"
                )

    def _check_capacity(self, conn, bank_id: int, year: int):
        limit = config.MAX_TRANSACTIONS_PER_SCOPE
        if limit is None:
            return
        count = conn.execute(
            "SELECT COUNT(*) FROM transactions WHERE bank_id = ? AND fiscal_year = ?",
            (bank_id, year),
        ).fetchone()[0]
        if count >= limit:
            raise ValidationError(
                f"Transaction limit of {limit} reached for ({bank_id}, {year})"
            )

    # =========================================================================
    # Create / Update / Delete
    # =========================================================================

    def create_transaction(self, bank_id: int, year: int, data: dict[str, Any]) -> int:
        """
        Record a transaction and apply its balance effects.

        Args:
            bank_id: Bank owning the scope
            year: Fiscal year of the scope
            data: Fields (type, amount, date, account_id, to_account_id,
                  category_id, description, payment_method, location, notes,
                  tags, attachments); camelCase keys are accepted

        Returns:
            The new transaction id

        Raises:
            ValidationError: If the input is malformed
            NotFound: If a referenced account or category does not exist
        """
        self._validate_scope(bank_id, year)
        txn = self._build(bank_id, year, data)
        self.schema.ensure_tables(bank_id, year)

        try:
            with self._transaction() as conn:
                self._validate(conn, bank_id, year, txn)
                self._check_capacity(conn, bank_id, year)
                before = self._debited_balances(conn, txn)
                txn.id = self._insert(conn, txn)
                self.balances.apply(conn, txn)
                self._check_funds(conn, before)
        except (ValidationError, NotFound):
            raise
        except Exception as e:
            logger.error(f"Error creating transaction: {e}", exc_info=True)
            raise

        logger.info(
            f"Created {txn.transaction_type.value} transaction {txn.id} of {txn.amount} "
            f"in scope ({bank_id}, {year})"
        )
        return txn.id

    def update_transaction(
        self, bank_id: int, year: int, transaction_id: int, data: dict[str, Any]
    ) -> Transaction:
        """
        Update a transaction and rebalance the accounts involved.

        The previous effects are always reversed in full and the new ones
        applied, even when only descriptive fields change.

        Returns:
            The updated Transaction

        Raises:
            NotFound: If the transaction or a referenced entity does not exist
            ValidationError: If the merged transaction is invalid
        """
        self._validate_scope(bank_id, year)
        self._validate_id(transaction_id, "transaction_id")

        try:
            with self._transaction() as conn:
                current = self._fetch(conn, bank_id, year, transaction_id)
                if current is None:
                    raise NotFound(f"Transaction {transaction_id} not found")
                updated = self._validate(conn, bank_id, year, self._merge(current, data))
                before = self._debited_balances(conn, updated)

                self.balances.reverse(conn, current)
                updated.updated_at = utc_now()
                conn.execute(
                    """
                    UPDATE transactions
                    SET type = ?, amount = ?, date = ?, account_id = ?,
                        to_account_id = ?, category_id = ?, description = ?,
                        payment_method = ?, location = ?, notes = ?, tags = ?,
                        attachments = ?, updated_at = ?
                    WHERE transaction_id = ?
                    """,
                    (
                        updated.transaction_type.value,
                        updated.amount,
                        updated.date,
                        updated.account_id,
                        updated.to_account_id,
                        updated.category_id,
                        updated.description,
                        updated.payment_method,
                        updated.location,
                        updated.notes,
                        json.dumps(updated.tags),
                        json.dumps(updated.attachments),
                        updated.updated_at,
                        transaction_id,
                    ),
                )
                self.balances.apply(conn, updated)
                self._check_funds(conn, before)
        except (ValidationError, NotFound):
            raise
        except Exception as e:
            logger.error(f"Error updating transaction {transaction_id}: {e}", exc_info=True)
            raise

        logger.info(f"Updated transaction {transaction_id} in scope ({bank_id}, {year})")
        return updated

    def delete_transaction(self, bank_id: int, year: int, transaction_id: int) -> bool:
        """
        Delete a transaction and undo its balance effects.

        Raises:
            NotFound: If the transaction does not exist
        """
        self._validate_scope(bank_id, year)
        self._validate_id(transaction_id, "transaction_id")

        try:
            with self._transaction() as conn:
                current = self._fetch(conn, bank_id, year, transaction_id)
                if current is None:
                    raise NotFound(f"Transaction {transaction_id} not found")
                self.balances.reverse(conn, current)
                conn.execute(
                    "DELETE FROM transactions WHERE transaction_id = ?", (transaction_id,)
                )
        except NotFound:
            raise
        except Exception as e:
            logger.error(f"Error deleting transaction {transaction_id}: {e}", exc_info=True)
            raise

        logger.info(f"Deleted transaction {transaction_id} from scope ({bank_id}, {year})")
        return True

    def insert_raw(self, conn: sqlite3.Connection, txn: Transaction) -> int:
        """
        Insert a transaction row without validation or balance effects.

        Used by restore, which recomputes every balance once all rows are in.
        Must be called inside an open transaction.
        """
        return self._insert(conn, txn)

    @staticmethod
    def _insert(conn: sqlite3.Connection, txn: Transaction) -> int:
        now = utc_now()
        txn.created_at = txn.created_at or now
        txn.updated_at = txn.updated_at or now
        cursor = conn.execute(
            """
            INSERT INTO transactions
            (bank_id, fiscal_year, type, amount, date, account_id, to_account_id,
             category_id, description, payment_method, location, notes, tags,
             attachments, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                txn.bank_id,
                txn.fiscal_year,
                txn.transaction_type.value,
                txn.amount,
                txn.date,
                txn.account_id,
                txn.to_account_id,
                txn.category_id,
                txn.description,
                txn.payment_method,
                txn.location,
                txn.notes,
                json.dumps(txn.tags),
                json.dumps(txn.attachments),
                txn.created_at,
                txn.updated_at,
            ),
        )
        return cursor.lastrowid

    # =========================================================================
    # Read
    # =========================================================================

    @staticmethod
    def _fetch(conn, bank_id: int, year: int, transaction_id: int) -> Optional[Transaction]:
        row = conn.execute(
            f"""
            SELECT {TRANSACTION_COLUMNS} FROM transactions t
            WHERE t.transaction_id = ? AND t.bank_id = ? AND t.fiscal_year = ?
            """,
            (transaction_id, bank_id, year),
        ).fetchone()
        return Transaction.from_row(row) if row else None

    def get_transaction(self, bank_id: int, year: int, transaction_id: int) -> Transaction:
        """
        Get one transaction with its account and category names.

        Raises:
            NotFound: If the transaction does not exist in the scope
        """
        self._validate_scope(bank_id, year)
        self._validate_id(transaction_id, "transaction_id")
        with self._transaction() as conn:
            row = conn.execute(
                JOINED_SELECT
                + " WHERE t.transaction_id = ? AND t.bank_id = ? AND t.fiscal_year = ?",
                (transaction_id, bank_id, year),
            ).fetchone()
        if not row:
            raise NotFound(f"Transaction {transaction_id} not found")
        return Transaction.from_row(row)

    @staticmethod
    def _filter_clause(
        bank_id: int, year: int, filters: TransactionFilters
    ) -> tuple[str, list[Any]]:
        clauses = ["t.bank_id = ?", "t.fiscal_year = ?"]
        params: list[Any] = [bank_id, year]

        if filters.start_date is not None:
            clauses.append("t.date >= ?")
            params.append(to_iso_date(filters.start_date, "start date"))
        if filters.end_date is not None:
            clauses.append("t.date <= ?")
            params.append(to_iso_date(filters.end_date, "end date"))
        if filters.account_id is not None:
            clauses.append("(t.account_id = ? OR t.to_account_id = ?)")
            params.extend([filters.account_id, filters.account_id])
        if filters.category_id is not None:
            clauses.append("t.category_id = ?")
            params.append(filters.category_id)
        if filters.transaction_type is not None:
            clauses.append("t.type = ?")
            params.append(TransactionType(filters.transaction_type).value)

        return " WHERE " + " AND ".join(clauses), params

    def get_transactions(
        self,
        bank_id: int,
        year: int,
        filters: Optional[TransactionFilters] = None,
    ) -> list[Transaction]:
        """
        List transactions, newest first.

        Ties on date are broken by transaction id, highest first. Each
        result carries account_name, to_account_name and category_name.

        Args:
            bank_id: Bank owning the scope
            year: Fiscal year of the scope
            filters: Optional date range, account (either leg), category,
                     type and paging

        Returns:
            List of Transaction objects
        """
        self._validate_scope(bank_id, year)
        filters = filters or TransactionFilters()
        self.schema.ensure_tables(bank_id, year)

        where, params = self._filter_clause(bank_id, year, filters)
        query = JOINED_SELECT + where + " ORDER BY t.date DESC, t.transaction_id DESC"
        if filters.limit is not None:
            query += " LIMIT ? OFFSET ?"
            params.extend([filters.limit, filters.offset])
        elif filters.offset:
            query += " LIMIT -1 OFFSET ?"
            params.append(filters.offset)

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
        transactions = [Transaction.from_row(row) for row in rows]
        logger.debug(
            f"Retrieved {len(transactions)} transactions for scope ({bank_id}, {year})"
        )
        return transactions

    def get_transactions_by_account(
        self,
        bank_id: int,
        year: int,
        account_id: int,
        limit: Optional[int] = config.DEFAULT_TRANSACTION_LIMIT,
    ) -> list[Transaction]:
        """Transactions touching an account on either leg."""
        return self.get_transactions(
            bank_id, year, TransactionFilters(account_id=account_id, limit=limit)
        )

    def count_transactions(
        self,
        bank_id: int,
        year: int,
        filters: Optional[TransactionFilters] = None,
    ) -> int:
        """Number of transactions matching the filters (paging ignored)."""
        self._validate_scope(bank_id, year)
        where, params = self._filter_clause(bank_id, year, filters or TransactionFilters())
        with self._transaction() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM transactions t" + where, params
            ).fetchone()[0]
