"""
Banks repository module.

A bank is the top-level tenant of the ledger. Each bank owns one scope per
fiscal year; deleting a bank deletes every scope it owns.
"""

import logging
from datetime import date
from typing import Optional

from expensego.config import MAX_NAME_LENGTH
from expensego.exceptions import NotFound, ValidationError

from .base import BaseRepository, LedgerDatabase, utc_now
from .models import Bank
from .schema import SchemaManager

logger = logging.getLogger(__name__)


class BankRepository(BaseRepository):
    """Repository for creating, listing, renaming and deleting banks."""

    def __init__(self, database: LedgerDatabase, schema: Optional[SchemaManager] = None):
        super().__init__(database)
        self.schema = schema or SchemaManager(database)

    @staticmethod
    def _clean_name(name: Optional[str]) -> str:
        if not name or not str(name).strip():
            raise ValidationError("Bank name cannot be empty")
        name = str(name).strip()
        if len(name) > MAX_NAME_LENGTH:
            raise ValidationError(
                f"Bank name must be at most {MAX_NAME_LENGTH} characters"
            )
        return name

    def create_bank(
        self,
        name: str,
        icon: Optional[str] = None,
        year: Optional[int] = None,
    ) -> Bank:
        """
        Create a bank and prepare its scope for a fiscal year.

        Args:
            name: Display name
            icon: Optional icon
            year: Fiscal year to prepare. Defaults to the current year.

        Returns:
            The created Bank

        Raises:
            ValidationError: If the name is empty or too long
        """
        name = self._clean_name(name)
        year = year or date.today().year
        created_at = utc_now()

        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO banks (name, icon, created_at) VALUES (?, ?, ?)",
                (name, icon, created_at),
            )
            bank_id = cursor.lastrowid
            self.schema.ensure_tables(bank_id, year)

        logger.info(f"Created bank '{name}' (id {bank_id}) with scope {year}")
        return Bank(id=bank_id, name=name, icon=icon, created_at=created_at)

    def get_banks(self) -> list[Bank]:
        """List all banks ordered by name."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT bank_id, name, icon, created_at FROM banks ORDER BY name, bank_id"
            ).fetchall()
            return [Bank.from_row(row) for row in rows]

    def get_bank(self, bank_id: int) -> Bank:
        """
        Get a bank by id.

        Raises:
            NotFound: If the bank does not exist
        """
        self._validate_id(bank_id, "bank_id")
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT bank_id, name, icon, created_at FROM banks WHERE bank_id = ?",
                (bank_id,),
            ).fetchone()
        if not row:
            raise NotFound(f"Bank {bank_id} not found")
        return Bank.from_row(row)

    def update_bank(
        self,
        bank_id: int,
        name: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> Bank:
        """Rename a bank or change its icon. Unspecified fields are kept."""
        bank = self.get_bank(bank_id)
        new_name = self._clean_name(name) if name is not None else bank.name
        new_icon = icon if icon is not None else bank.icon

        with self._transaction() as conn:
            conn.execute(
                "UPDATE banks SET name = ?, icon = ? WHERE bank_id = ?",
                (new_name, new_icon, bank_id),
            )
        logger.info(f"Updated bank {bank_id}")
        return Bank(id=bank_id, name=new_name, icon=new_icon, created_at=bank.created_at)

    def delete_bank(self, bank_id: int) -> bool:
        """
        Delete a bank and every scope it owns, atomically.

        Raises:
            NotFound: If the bank does not exist
        """
        self.get_bank(bank_id)
        with self._transaction() as conn:
            for _, year in self.schema.list_scopes(bank_id):
                self.schema.drop_scope(bank_id, year)
            conn.execute("DELETE FROM banks WHERE bank_id = ?", (bank_id,))
        logger.info(f"Deleted bank {bank_id} and all its scopes")
        return True
