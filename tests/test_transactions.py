"""Tests for transaction validation, atomicity and queries."""

from datetime import date
from decimal import Decimal

import pytest

from expensego import config
from expensego.db import TransactionFilters
from expensego.exceptions import NotFound, StorageError, ValidationError
from expensego.models import TransactionType
from tests.helpers import (
    YEAR,
    balance,
    category_id,
    expense,
    income,
    make_account,
    transfer,
)


class TestValidation:
    """Tests for rejecting malformed transactions before any write."""

    def test_zero_amount_is_rejected(self, repo, scope):
        wallet = make_account(repo, scope, "Wallet", "100")
        with pytest.raises(ValidationError):
            expense(repo, scope, wallet, "0")
        assert repo.count_transactions(*scope) == 0

    def test_non_numeric_amount_is_rejected(self, repo, scope):
        wallet = make_account(repo, scope, "Wallet", "100")
        with pytest.raises(ValidationError):
            expense(repo, scope, wallet, "twelve")

    def test_negative_amount_is_stored_as_magnitude(self, repo, scope):
        """Test that the sign of an input amount is ignored."""
        wallet = make_account(repo, scope, "Wallet", "100")
        txn = expense(repo, scope, wallet, "-30")

        assert repo.get_transaction(*scope, txn).amount == Decimal("30")
        assert balance(repo, scope, wallet) == Decimal("70")

    def test_unknown_type_is_rejected(self, repo, scope):
        wallet = make_account(repo, scope, "Wallet")
        with pytest.raises(ValidationError):
            repo.create_transaction(
                *scope,
                {"type": "refund", "amount": "1", "date": "2024-01-01", "account_id": wallet},
            )

    def test_bad_date_is_rejected(self, repo, scope):
        wallet = make_account(repo, scope, "Wallet")
        with pytest.raises(ValidationError):
            expense(repo, scope, wallet, "5", on="yesterday")

    def test_missing_category_is_rejected(self, repo, scope):
        wallet = make_account(repo, scope, "Wallet")
        with pytest.raises(ValidationError):
            repo.create_transaction(
                *scope,
                {"type": "expense", "amount": "5", "date": "2024-01-01", "account_id": wallet},
            )

    def test_unknown_account_is_not_found(self, repo, scope):
        with pytest.raises(NotFound):
            expense(repo, scope, 9999, "5")

    def test_unknown_category_is_not_found(self, repo, scope):
        wallet = make_account(repo, scope, "Wallet")
        with pytest.raises(NotFound):
            repo.create_transaction(
                *scope,
                {
                    "type": "expense",
                    "amount": "5",
                    "date": "2024-01-01",
                    "account_id": wallet,
                    "category_id": 9999,
                },
            )

    def test_self_transfer_is_rejected(self, repo, scope):
        wallet = make_account(repo, scope, "Wallet", "100")
        with pytest.raises(ValidationError):
            transfer(repo, scope, wallet, wallet, "10")
        assert balance(repo, scope, wallet) == Decimal("100")

    def test_transfer_requires_destination(self, repo, scope):
        wallet = make_account(repo, scope, "Wallet", "100")
        with pytest.raises(ValidationError):
            repo.create_transaction(
                *scope,
                {"type": "transfer", "amount": "5", "date": "2024-01-01", "account_id": wallet},
            )

    def test_transfer_clears_category(self, repo, scope):
        a = make_account(repo, scope, "A", "100")
        b = make_account(repo, scope, "B")
        txn = repo.create_transaction(
            *scope,
            {
                "type": "transfer",
                "amount": "5",
                "date": "2024-01-01",
                "accountId": a,
                "toAccountId": b,
                "categoryId": category_id(repo, scope, "Groceries"),
            },
        )
        assert repo.get_transaction(*scope, txn).category_id is None

    def test_account_from_another_scope_is_not_found(self, repo, scope):
        other = make_account(repo, (scope[0], YEAR + 1), "Next year")
        with pytest.raises(NotFound):
            expense(repo, scope, other, "5")

    def test_negative_balance_can_be_forbidden(self, repo, scope, monkeypatch):
        """Test the optional insufficient-funds rule rolls back the write."""
        monkeypatch.setattr(config, "ALLOW_NEGATIVE_BALANCE", False)
        wallet = make_account(repo, scope, "Wallet", "10")

        with pytest.raises(ValidationError, match="Insufficient funds"):
            expense(repo, scope, wallet, "25")

        assert balance(repo, scope, wallet) == Decimal("10")
        assert repo.count_transactions(*scope) == 0

    def test_negative_balance_allowed_by_default(self, repo, scope):
        wallet = make_account(repo, scope, "Wallet", "10")
        expense(repo, scope, wallet, "25")
        assert balance(repo, scope, wallet) == Decimal("-15")

    def test_overdrawn_account_can_be_brought_back_up(self, repo, scope, monkeypatch):
        """Test shrinking an expense on an account already below zero."""
        wallet = make_account(repo, scope, "Wallet", "10")
        txn = expense(repo, scope, wallet, "25")
        monkeypatch.setattr(config, "ALLOW_NEGATIVE_BALANCE", False)

        repo.update_transaction(*scope, txn, {"amount": "20"})
        assert balance(repo, scope, wallet) == Decimal("-10")

        with pytest.raises(ValidationError, match="Insufficient funds"):
            repo.update_transaction(*scope, txn, {"amount": "30"})
        assert balance(repo, scope, wallet) == Decimal("-10")

    def test_enum_type_is_accepted(self, repo, scope):
        wallet = make_account(repo, scope, "Wallet", "10")
        txn = repo.create_transaction(
            *scope,
            {
                "type": TransactionType.EXPENSE,
                "amount": "4",
                "date": "2024-03-01",
                "account_id": wallet,
                "category_id": category_id(repo, scope, "Groceries"),
            },
        )
        assert repo.get_transaction(*scope, txn).transaction_type == TransactionType.EXPENSE

    def test_category_type_must_match(self, repo, scope):
        wallet = make_account(repo, scope, "Wallet", "10")
        with pytest.raises(ValidationError):
            expense(repo, scope, wallet, "5", category="Salary")
        assert repo.count_transactions(*scope) == 0

    def test_type_change_must_keep_category_consistent(self, repo, scope):
        wallet = make_account(repo, scope, "Wallet", "10")
        txn = expense(repo, scope, wallet, "5")

        with pytest.raises(ValidationError):
            repo.update_transaction(*scope, txn, {"type": "income"})

        assert balance(repo, scope, wallet) == Decimal("5")
        repo.update_transaction(
            *scope, txn, {"type": "income", "category_id": category_id(repo, scope, "Salary")}
        )
        assert balance(repo, scope, wallet) == Decimal("15")

    def test_transaction_cap(self, repo, scope, monkeypatch):
        monkeypatch.setattr(config, "MAX_TRANSACTIONS_PER_SCOPE", 1)
        wallet = make_account(repo, scope, "Wallet", "10")
        expense(repo, scope, wallet, "1")

        with pytest.raises(ValidationError):
            expense(repo, scope, wallet, "1")

    def test_update_unknown_transaction(self, repo, scope):
        with pytest.raises(NotFound):
            repo.update_transaction(*scope, 9999, {"amount": "1"})

    def test_delete_unknown_transaction(self, repo, scope):
        with pytest.raises(NotFound):
            repo.delete_transaction(*scope, 9999)


class TestAtomicity:
    """Tests that a failed write leaves no trace."""

    def test_failure_before_balance_adjustment_rolls_back_insert(
        self, repo, scope, monkeypatch
    ):
        """Test a storage failure after the row insert keeps nothing."""
        wallet = make_account(repo, scope, "Wallet", "100")

        def failing_adjust(*args, **kwargs):
            raise StorageError("disk went away")

        monkeypatch.setattr(repo.balances, "adjust_balance", failing_adjust)

        with pytest.raises(StorageError):
            expense(repo, scope, wallet, "30")

        monkeypatch.undo()
        with repo.transaction() as conn:
            rows = conn.execute("SELECT COUNT(*) FROM transactions").fetchone()[0]
        assert rows == 0
        assert balance(repo, scope, wallet) == Decimal("100")

    def test_failed_update_keeps_old_row_and_balances(self, repo, scope, monkeypatch):
        a = make_account(repo, scope, "A", "100")
        b = make_account(repo, scope, "B", "0")
        txn = expense(repo, scope, a, "30")

        calls = []
        original = repo.balances.adjust_balance

        def fail_on_apply(conn, bank_id, year, account_id, delta):
            calls.append(account_id)
            if account_id == b:
                raise StorageError("disk went away")
            return original(conn, bank_id, year, account_id, delta)

        monkeypatch.setattr(repo.balances, "adjust_balance", fail_on_apply)
        with pytest.raises(StorageError):
            repo.update_transaction(*scope, txn, {"account_id": b})
        monkeypatch.undo()

        assert calls == [a, b]
        assert repo.get_transaction(*scope, txn).account_id == a
        assert balance(repo, scope, a) == Decimal("70")
        assert balance(repo, scope, b) == Decimal("0")


class TestQueries:
    """Tests for listing and filtering transactions."""

    def test_same_date_orders_by_highest_id_first(self, repo, scope):
        wallet = make_account(repo, scope, "Wallet", "100")
        first = expense(repo, scope, wallet, "1", on="2024-05-01")
        second = expense(repo, scope, wallet, "2", on="2024-05-01")

        ids = [t.id for t in repo.get_transactions(*scope)]
        assert ids == [second, first]

    def test_newest_date_first(self, repo, scope):
        wallet = make_account(repo, scope, "Wallet", "100")
        later = expense(repo, scope, wallet, "1", on="2024-06-01")
        earlier = expense(repo, scope, wallet, "2", on="2024-01-01")

        assert [t.id for t in repo.get_transactions(*scope)] == [later, earlier]

    def test_joined_names(self, repo, scope):
        a = make_account(repo, scope, "Checking", "100")
        b = make_account(repo, scope, "Savings")
        expense(repo, scope, a, "5", category="Shopping")
        transfer(repo, scope, a, b, "10", on="2024-03-02")

        moved, bought = repo.get_transactions(*scope)
        assert (moved.account_name, moved.to_account_name) == ("Checking", "Savings")
        assert moved.category_name is None
        assert bought.category_name == "Shopping"
        assert bought.to_dict()["accountName"] == "Checking"

    def test_account_filter_matches_either_leg(self, repo, scope):
        a = make_account(repo, scope, "A", "100")
        b = make_account(repo, scope, "B")
        c = make_account(repo, scope, "C")
        t1 = transfer(repo, scope, a, b, "10")
        t2 = expense(repo, scope, b, "1")
        expense(repo, scope, c, "1")

        found = repo.get_transactions_by_account(*scope, b)
        assert {t.id for t in found} == {t1, t2}

    def test_date_type_and_category_filters(self, repo, scope):
        wallet = make_account(repo, scope, "Wallet", "100")
        expense(repo, scope, wallet, "1", on="2024-01-15")
        march = expense(repo, scope, wallet, "2", on="2024-03-15", category="Shopping")
        income(repo, scope, wallet, "3", on="2024-03-20")

        filters = TransactionFilters(
            start_date=date(2024, 3, 1),
            end_date="2024-03-31",
            transaction_type=TransactionType.EXPENSE,
        )
        assert [t.id for t in repo.get_transactions(*scope, filters)] == [march]

        by_category = TransactionFilters(
            category_id=category_id(repo, scope, "Shopping")
        )
        assert repo.count_transactions(*scope, by_category) == 1

    def test_limit_and_offset(self, repo, scope):
        wallet = make_account(repo, scope, "Wallet", "100")
        ids = [expense(repo, scope, wallet, "1", on=f"2024-01-0{d}") for d in range(1, 6)]

        page = repo.get_transactions(*scope, TransactionFilters(limit=2, offset=1))
        assert [t.id for t in page] == [ids[3], ids[2]]
        assert repo.count_transactions(*scope, TransactionFilters(limit=2)) == 5

    def test_camel_case_input_and_lists(self, repo, scope):
        wallet = make_account(repo, scope, "Wallet", "100")
        txn = repo.create_transaction(
            *scope,
            {
                "type": "expense",
                "amount": 12.5,
                "date": date(2024, 2, 29),
                "accountId": wallet,
                "categoryId": category_id(repo, scope, "Groceries"),
                "paymentMethod": "card",
                "tags": '["weekly", "market"]',
            },
        )

        stored = repo.get_transaction(*scope, txn)
        assert stored.amount == Decimal("12.5")
        assert stored.date == "2024-02-29"
        assert stored.payment_method == "card"
        assert stored.tags == ["weekly", "market"]
        assert stored.attachments == []
