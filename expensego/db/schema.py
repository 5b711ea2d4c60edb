"""
Schema manager for (bank, year) ledger scopes.

Guarantees the ledger tables exist before any scoped operation touches them,
seeds the default categories and cash account exactly once per scope, and
provides the destructive reset used by restore and corruption recovery.
"""

import logging
from typing import Optional

from expensego.config import DEFAULT_ACCOUNT, DEFAULT_CATEGORIES
from expensego.exceptions import LedgerError, NotFound, SchemaError

from .base import BaseRepository, LedgerDatabase, utc_now
from .models import normalize_name

logger = logging.getLogger(__name__)


class SchemaManager(BaseRepository):
    """
    Creates, seeds and resets the tables of a (bank, year) scope.

    All scopes share one physical set of tables keyed by bank_id and
    fiscal_year; a scope "exists" once it is registered in ledger_scopes.
    """

    def __init__(self, database: LedgerDatabase):
        super().__init__(database)

    def ensure_tables(self, bank_id: int, year: int) -> bool:
        """
        Make sure the ledger tables exist and the scope is registered.

        Idempotent and never destroys data. A scope registered here for the
        first time is seeded with the default categories and cash account.

        Args:
            bank_id: Bank owning the scope
            year: Fiscal year of the scope

        Returns:
            True if the scope was newly registered, False if it already existed

        Raises:
            NotFound: If the bank does not exist
            SchemaError: If table creation fails
        """
        self._validate_scope(bank_id, year)

        try:
            with self._transaction() as conn:
                self.db.ensure_schema(conn)
                self._require_bank(conn, bank_id)
                cursor = conn.execute(
                    """
                    INSERT OR IGNORE INTO ledger_scopes (bank_id, fiscal_year, created_at)
                    VALUES (?, ?, ?)
                    """,
                    (bank_id, year, utc_now()),
                )
                created = cursor.rowcount > 0
                if created:
                    logger.info(f"Registered ledger scope ({bank_id}, {year})")
                    self._seed_scope(conn, bank_id, year)
                return created
        except (SchemaError, NotFound):
            raise
        except LedgerError as e:
            logger.error(f"Failed to prepare scope ({bank_id}, {year}): {e}")
            raise SchemaError(
                f"Failed to prepare tables for ({bank_id}, {year}): {e}"
            ) from e

    @staticmethod
    def _require_bank(conn, bank_id: int):
        row = conn.execute("SELECT 1 FROM banks WHERE bank_id = ?", (bank_id,)).fetchone()
        if row is None:
            raise NotFound(f"Bank {bank_id} not found")

    def scope_exists(self, bank_id: int, year: int) -> bool:
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT 1 FROM ledger_scopes WHERE bank_id = ? AND fiscal_year = ?",
                (bank_id, year),
            ).fetchone()
            return row is not None

    def list_scopes(self, bank_id: Optional[int] = None) -> list[tuple[int, int]]:
        """List registered (bank_id, year) scopes, optionally for one bank."""
        with self._transaction() as conn:
            if bank_id is None:
                cursor = conn.execute(
                    "SELECT bank_id, fiscal_year FROM ledger_scopes "
                    "ORDER BY bank_id, fiscal_year"
                )
            else:
                cursor = conn.execute(
                    "SELECT bank_id, fiscal_year FROM ledger_scopes "
                    "WHERE bank_id = ? ORDER BY fiscal_year",
                    (bank_id,),
                )
            return [(row[0], row[1]) for row in cursor.fetchall()]

    def seed_defaults(self, bank_id: int, year: int) -> dict[str, int]:
        """
        Insert the default categories and cash account that are missing.

        Categories are matched by normalized (name, type); the account is
        only created when the scope has no default account at all. Calling
        this any number of times gives the same result as calling it once.

        Args:
            bank_id: Bank owning the scope
            year: Fiscal year of the scope

        Returns:
            Dictionary with the number of categories and accounts inserted by
            this call. A scope seen for the first time is already seeded by
            ensure_tables, so the counts are zero.
        """
        self.ensure_tables(bank_id, year)
        with self._transaction() as conn:
            return self._seed_scope(conn, bank_id, year)

    @staticmethod
    def _seed_scope(conn, bank_id: int, year: int) -> dict[str, int]:
        inserted = {"categories": 0, "accounts": 0}
        now = utc_now()
        existing = {
            (normalize_name(row["name"]), row["type"])
            for row in conn.execute(
                "SELECT name, type FROM categories "
                "WHERE bank_id = ? AND fiscal_year = ?",
                (bank_id, year),
            ).fetchall()
        }

        for default in DEFAULT_CATEGORIES:
            key = (normalize_name(default["name"]), default["type"])
            if key in existing:
                continue
            conn.execute(
                """
                INSERT INTO categories
                (bank_id, fiscal_year, name, type, color_code, icon,
                 is_default, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?)
                """,
                (
                    bank_id,
                    year,
                    default["name"],
                    default["type"],
                    default["color_code"],
                    default["icon"],
                    now,
                    now,
                ),
            )
            existing.add(key)
            inserted["categories"] += 1

        has_default_account = conn.execute(
            "SELECT 1 FROM accounts "
            "WHERE bank_id = ? AND fiscal_year = ? AND is_default = 1",
            (bank_id, year),
        ).fetchone()
        if not has_default_account:
            conn.execute(
                """
                INSERT INTO accounts
                (bank_id, fiscal_year, name, type, currency, initial_balance,
                 current_balance, color_code, icon, notes, is_default,
                 created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?)
                """,
                (
                    bank_id,
                    year,
                    DEFAULT_ACCOUNT["name"],
                    DEFAULT_ACCOUNT["type"],
                    DEFAULT_ACCOUNT["currency"],
                    DEFAULT_ACCOUNT["initial_balance"],
                    DEFAULT_ACCOUNT["initial_balance"],
                    DEFAULT_ACCOUNT["color_code"],
                    DEFAULT_ACCOUNT["icon"],
                    DEFAULT_ACCOUNT["notes"],
                    now,
                    now,
                ),
            )
            inserted["accounts"] = 1

        if inserted["categories"] or inserted["accounts"]:
            logger.info(
                f"Seeded scope ({bank_id}, {year}): "
                f"{inserted['categories']} categories, {inserted['accounts']} accounts"
            )
        return inserted

    def recreate(self, bank_id: int, year: int):
        """
        Reset a scope to empty. Every account, category and transaction of
        the scope is deleted; other scopes are untouched. Seeding is left to
        the caller.
        """
        self._validate_scope(bank_id, year)
        with self._transaction() as conn:
            self._require_bank(conn, bank_id)
            self._delete_scope_rows(conn, bank_id, year)
            self.db.ensure_schema(conn)
            conn.execute(
                """
                INSERT OR IGNORE INTO ledger_scopes (bank_id, fiscal_year, created_at)
                VALUES (?, ?, ?)
                """,
                (bank_id, year, utc_now()),
            )
        logger.warning(f"Recreated scope ({bank_id}, {year}); previous data discarded")

    def drop_scope(self, bank_id: int, year: int):
        """Delete all rows of a scope and unregister it."""
        self._validate_scope(bank_id, year)
        with self._transaction() as conn:
            self._delete_scope_rows(conn, bank_id, year)
            conn.execute(
                "DELETE FROM ledger_scopes WHERE bank_id = ? AND fiscal_year = ?",
                (bank_id, year),
            )
        logger.info(f"Dropped scope ({bank_id}, {year})")

    @staticmethod
    def _delete_scope_rows(conn, bank_id: int, year: int):
        # Children first so foreign keys never dangle mid-statement
        params = (bank_id, year)
        conn.execute(
            "DELETE FROM transactions WHERE bank_id = ? AND fiscal_year = ?", params
        )
        conn.execute(
            "UPDATE categories SET parent_category_id = NULL "
            "WHERE bank_id = ? AND fiscal_year = ?",
            params,
        )
        conn.execute(
            "DELETE FROM categories WHERE bank_id = ? AND fiscal_year = ?", params
        )
        conn.execute("DELETE FROM accounts WHERE bank_id = ? AND fiscal_year = ?", params)
