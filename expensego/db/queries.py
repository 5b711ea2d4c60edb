"""
Queries repository module for balances and report totals.

Handles read-only queries that feed the report formatter:
- Account balance summary
- Category totals over a date range
- Monthly and daily income/expense totals

Amounts are summed in Python as Decimal; SQLite's SUM would go through
floating point. Transfers move money between accounts and never count as
income or expense.
"""

import logging
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Union

from expensego.models import CategoryType, TransactionType

from .base import BaseRepository, LedgerDatabase, to_iso_date
from .schema import SchemaManager

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class QueryRepository(BaseRepository):
    """
    Repository for report queries.

    Provides read-only operations over one (bank, year) scope.
    """

    def __init__(self, database: LedgerDatabase, schema: Optional[SchemaManager] = None):
        super().__init__(database)
        self.schema = schema or SchemaManager(database)

    # =========================================================================
    # Balance Queries
    # =========================================================================

    def get_account_summary(self, bank_id: int, year: int) -> dict[str, Any]:
        """
        Balance of every account in a scope plus totals.

        Args:
            bank_id: Bank owning the scope
            year: Fiscal year of the scope

        Returns:
            Dictionary with "accounts" (one row per account with name, type,
            currency, initial and current balance), "totalInitial" and
            "totalCurrent"
        """
        self._validate_scope(bank_id, year)
        self.schema.ensure_tables(bank_id, year)

        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT account_id, name, type, currency, initial_balance,
                       current_balance, is_default
                FROM accounts
                WHERE bank_id = ? AND fiscal_year = ?
                ORDER BY name COLLATE NOCASE, account_id
                """,
                (bank_id, year),
            ).fetchall()

        accounts = [
            {
                "accountId": row["account_id"],
                "name": row["name"],
                "type": row["type"],
                "currency": row["currency"],
                "initialBalance": row["initial_balance"],
                "currentBalance": row["current_balance"],
                "isDefault": bool(row["is_default"]),
            }
            for row in rows
        ]
        return {
            "accounts": accounts,
            "totalInitial": sum((a["initialBalance"] for a in accounts), ZERO),
            "totalCurrent": sum((a["currentBalance"] for a in accounts), ZERO),
        }

    # =========================================================================
    # Analytics Queries
    # =========================================================================

    def _income_expense_rows(
        self,
        bank_id: int,
        year: int,
        start_date: Optional[Union[date, str]] = None,
        end_date: Optional[Union[date, str]] = None,
    ):
        query = """
            SELECT t.type, t.amount, t.date, t.category_id, c.name AS category_name
            FROM transactions t
            LEFT JOIN categories c ON c.category_id = t.category_id
            WHERE t.bank_id = ? AND t.fiscal_year = ? AND t.type != ?
        """
        params: list[Any] = [bank_id, year, TransactionType.TRANSFER.value]
        if start_date is not None:
            query += " AND t.date >= ?"
            params.append(to_iso_date(start_date, "start date"))
        if end_date is not None:
            query += " AND t.date <= ?"
            params.append(to_iso_date(end_date, "end date"))

        with self._transaction() as conn:
            return conn.execute(query, params).fetchall()

    def get_category_totals(
        self,
        bank_id: int,
        year: int,
        category_type: CategoryType = CategoryType.EXPENSE,
        start_date: Optional[Union[date, str]] = None,
        end_date: Optional[Union[date, str]] = None,
    ) -> list[dict[str, Any]]:
        """
        Total amount per category for one category type.

        Returns:
            Rows of {categoryId, name, total, count}, largest total first
        """
        self._validate_scope(bank_id, year)
        category_type = CategoryType(category_type)
        self.schema.ensure_tables(bank_id, year)

        totals: dict[Optional[int], dict[str, Any]] = {}
        for row in self._income_expense_rows(bank_id, year, start_date, end_date):
            if row["type"] != category_type.value:
                continue
            entry = totals.setdefault(
                row["category_id"],
                {
                    "categoryId": row["category_id"],
                    "name": row["category_name"] or "Uncategorized",
                    "total": ZERO,
                    "count": 0,
                },
            )
            entry["total"] += row["amount"]
            entry["count"] += 1

        result = sorted(totals.values(), key=lambda e: (-e["total"], e["name"]))
        logger.debug(
            f"Category totals for ({bank_id}, {year}) {category_type.value}: "
            f"{len(result)} categories"
        )
        return result

    def _totals_by(self, bank_id: int, year: int, key_length: int, start_date, end_date):
        buckets: dict[str, dict[str, Decimal]] = defaultdict(
            lambda: {"income": ZERO, "expense": ZERO}
        )
        for row in self._income_expense_rows(bank_id, year, start_date, end_date):
            buckets[row["date"][:key_length]][row["type"]] += row["amount"]

        return [
            {
                "period": period,
                "income": values["income"],
                "expense": values["expense"],
                "net": values["income"] - values["expense"],
            }
            for period, values in sorted(buckets.items())
        ]

    def get_monthly_totals(self, bank_id: int, year: int) -> list[dict[str, Any]]:
        """
        Income, expense and net per YYYY-MM for a scope.

        Returns:
            Rows of {period, income, expense, net} ordered by month
        """
        self._validate_scope(bank_id, year)
        self.schema.ensure_tables(bank_id, year)
        return self._totals_by(bank_id, year, 7, None, None)

    def get_daily_totals(
        self,
        bank_id: int,
        year: int,
        start_date: Optional[Union[date, str]] = None,
        end_date: Optional[Union[date, str]] = None,
    ) -> list[dict[str, Any]]:
        """
        Income, expense and net per day.

        Args:
            bank_id: Bank owning the scope
            year: Fiscal year of the scope
            start_date: First day included (optional)
            end_date: Last day included (optional)

        Returns:
            Rows of {period, income, expense, net} ordered by date
        """
        self._validate_scope(bank_id, year)
        self.schema.ensure_tables(bank_id, year)
        return self._totals_by(bank_id, year, 10, start_date, end_date)
