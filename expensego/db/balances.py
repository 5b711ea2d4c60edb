"""
Balance engine for account current balances.

Keeps current_balance = initial_balance + sum(effects) for every account,
either incrementally (one adjustment per affected account on each write) or
by a full replay of a scope's transactions.
"""

import logging
import sqlite3
from decimal import Decimal
from typing import Optional

from expensego.exceptions import NotFound, ValidationError
from expensego.models import TransactionType

from .base import BaseRepository, LedgerDatabase, utc_now
from .models import RecalculationResult, Transaction

logger = logging.getLogger(__name__)


def effects(
    transaction_type: TransactionType,
    amount: Decimal,
    account_id: int,
    to_account_id: Optional[int] = None,
) -> list[tuple[int, Decimal]]:
    """
    Signed balance deltas a transaction applies, one per affected account.

    The stored amount is always positive; the sign comes from the type:
    - expense: account decreases by amount
    - income: account increases by amount
    - transfer: account decreases, to_account increases

    Returns:
        List of (account_id, delta) pairs
    """
    magnitude = abs(amount)
    transaction_type = TransactionType(transaction_type)

    if transaction_type == TransactionType.EXPENSE:
        return [(account_id, -magnitude)]
    if transaction_type == TransactionType.INCOME:
        return [(account_id, magnitude)]

    if to_account_id is None:
        raise ValidationError("Transfer requires a destination account")
    if to_account_id == account_id:
        raise ValidationError("Transfer source and destination must differ")
    return [(account_id, -magnitude), (to_account_id, magnitude)]


class BalanceEngine(BaseRepository):
    """
    Applies and recomputes account balances.

    Incremental methods take the caller's open connection so the balance
    change commits or rolls back together with the transaction row.
    """

    def __init__(self, database: LedgerDatabase):
        super().__init__(database)

    # =========================================================================
    # Incremental adjustment
    # =========================================================================

    def adjust_balance(
        self,
        conn: sqlite3.Connection,
        bank_id: int,
        year: int,
        account_id: int,
        delta: Decimal,
    ) -> Decimal:
        """
        Apply current_balance += delta to one account.

        Args:
            conn: Connection of the enclosing transaction
            bank_id: Bank owning the scope
            year: Fiscal year of the scope
            account_id: Account to adjust
            delta: Signed change

        Returns:
            The new current balance

        Raises:
            NotFound: If the account does not exist in the scope
        """
        row = conn.execute(
            """
            SELECT current_balance FROM accounts
            WHERE account_id = ? AND bank_id = ? AND fiscal_year = ?
            """,
            (account_id, bank_id, year),
        ).fetchone()
        if not row:
            raise NotFound(f"Account {account_id} not found")

        new_balance = row["current_balance"] + delta
        conn.execute(
            """
            UPDATE accounts
            SET current_balance = ?, updated_at = ?
            WHERE account_id = ?
            """,
            (new_balance, utc_now(), account_id),
        )
        logger.debug(f"Adjusted account {account_id} by {delta} to {new_balance}")
        return new_balance

    def apply(self, conn: sqlite3.Connection, txn: Transaction):
        """Apply a transaction's effects to its accounts."""
        for account_id, delta in effects(
            txn.transaction_type, txn.amount, txn.account_id, txn.to_account_id
        ):
            self.adjust_balance(conn, txn.bank_id, txn.fiscal_year, account_id, delta)

    def reverse(self, conn: sqlite3.Connection, txn: Transaction):
        """Undo a transaction's effects on its accounts."""
        for account_id, delta in effects(
            txn.transaction_type, txn.amount, txn.account_id, txn.to_account_id
        ):
            self.adjust_balance(conn, txn.bank_id, txn.fiscal_year, account_id, -delta)

    # =========================================================================
    # Full recomputation
    # =========================================================================

    def recalculate_account_balances(self, bank_id: int, year: int) -> RecalculationResult:
        """
        Recompute every balance of a scope from scratch.

        Resets each account to its initial balance, then replays all
        transactions ordered by date and id. Transactions pointing at a
        missing account are skipped and counted rather than aborting the
        pass. Joins the caller's transaction when one is open.

        Args:
            bank_id: Bank owning the scope
            year: Fiscal year of the scope

        Returns:
            RecalculationResult with counts, skipped ids and final balances
        """
        self._validate_scope(bank_id, year)
        result = RecalculationResult()

        with self._transaction() as conn:
            balances: dict[int, Decimal] = {}
            for row in conn.execute(
                """
                SELECT account_id, initial_balance FROM accounts
                WHERE bank_id = ? AND fiscal_year = ?
                """,
                (bank_id, year),
            ).fetchall():
                balances[row["account_id"]] = row["initial_balance"]

            rows = conn.execute(
                """
                SELECT transaction_id, type, amount, account_id, to_account_id
                FROM transactions
                WHERE bank_id = ? AND fiscal_year = ?
                ORDER BY date ASC, transaction_id ASC
                """,
                (bank_id, year),
            ).fetchall()

            for row in rows:
                try:
                    deltas = effects(
                        TransactionType(row["type"]),
                        row["amount"],
                        row["account_id"],
                        row["to_account_id"],
                    )
                except ValidationError as e:
                    logger.warning(f"Skipping transaction {row['transaction_id']}: {e}")
                    result.skipped += 1
                    result.skipped_ids.append(row["transaction_id"])
                    continue

                if any(account_id not in balances for account_id, _ in deltas):
                    logger.warning(
                        f"Skipping orphaned transaction {row['transaction_id']} "
                        f"in scope ({bank_id}, {year})"
                    )
                    result.skipped += 1
                    result.skipped_ids.append(row["transaction_id"])
                    continue

                for account_id, delta in deltas:
                    balances[account_id] += delta
                result.transactions_applied += 1

            now = utc_now()
            conn.executemany(
                "UPDATE accounts SET current_balance = ?, updated_at = ? "
                "WHERE account_id = ?",
                [(balance, now, account_id) for account_id, balance in balances.items()],
            )

        result.accounts = len(balances)
        result.balances = balances
        logger.info(
            f"Recalculated {result.accounts} balances in scope ({bank_id}, {year}): "
            f"{result.transactions_applied} applied, {result.skipped} skipped"
        )
        return result
