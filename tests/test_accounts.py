"""Tests for account CRUD and deletion guards."""

from decimal import Decimal

import pytest

from expensego.exceptions import ConstraintViolation, NotFound, ValidationError
from expensego.models import AccountType
from tests.helpers import balance, expense, make_account, transfer


class TestAccountCrud:
    """Tests for creating, reading and updating accounts."""

    def test_create_starts_at_initial_balance(self, repo, scope):
        account_id = make_account(repo, scope, "Savings", "250.75")

        account = repo.get_account(*scope, account_id)
        assert account.initial_balance == Decimal("250.75")
        assert account.current_balance == Decimal("250.75")
        assert account.account_type == AccountType.SAVINGS
        assert account.currency == "INR"
        assert not account.is_default

    def test_camel_case_fields(self, repo, scope):
        account_id = repo.create_account(
            *scope,
            {"name": "Card", "type": "credit", "initialBalance": "-50", "colorCode": "#000"},
        )

        account = repo.get_account(*scope, account_id)
        assert account.initial_balance == Decimal("-50")
        assert account.color_code == "#000"

    def test_enum_type_is_accepted(self, repo, scope):
        account_id = repo.create_account(*scope, {"name": "Jar", "type": AccountType.SAVINGS})
        updated = repo.update_account(*scope, account_id, {"type": AccountType.CASH})

        assert updated.account_type == AccountType.CASH
        assert repo.get_account(*scope, account_id).account_type == AccountType.CASH

    def test_empty_name_is_rejected(self, repo, scope):
        with pytest.raises(ValidationError):
            repo.create_account(*scope, {"name": "   "})

    def test_unknown_type_is_rejected(self, repo, scope):
        with pytest.raises(ValidationError):
            repo.create_account(*scope, {"name": "Odd", "type": "crypto"})

    def test_invalid_scope_is_rejected(self, repo):
        with pytest.raises(ValidationError):
            repo.get_accounts(0, 2024)
        with pytest.raises(ValidationError):
            repo.get_accounts(1, "2024")

    def test_accounts_are_listed_by_name(self, repo, scope):
        make_account(repo, scope, "zeta")
        make_account(repo, scope, "Alpha")

        names = [a.name for a in repo.get_accounts(*scope)]
        assert names == ["Alpha", "Petty Cash", "zeta"]

    def test_get_missing_account(self, repo, scope):
        with pytest.raises(NotFound):
            repo.get_account(*scope, 9999)

    def test_changing_initial_balance_shifts_current(self, repo, scope):
        """Test that the opening balance change carries into the balance."""
        account_id = make_account(repo, scope, "Wallet", "100")
        expense(repo, scope, account_id, "30")

        updated = repo.update_account(*scope, account_id, {"initial_balance": "150"})

        assert updated.current_balance == Decimal("120")
        assert balance(repo, scope, account_id) == Decimal("120")
        assert repo.recalculate_account_balances(*scope).balances[account_id] == Decimal(
            "120"
        )

    def test_partial_update_keeps_other_fields(self, repo, scope):
        account_id = make_account(repo, scope, "Wallet", "100")

        repo.update_account(*scope, account_id, {"name": "Pocket", "icon": "👛"})

        account = repo.get_account(*scope, account_id)
        assert account.name == "Pocket"
        assert account.icon == "👛"
        assert account.initial_balance == Decimal("100")

    def test_has_existing_data(self, repo, scope):
        assert not repo.has_existing_data(*scope)
        make_account(repo, scope, "Wallet")
        assert repo.has_existing_data(*scope)


class TestDeletionGuards:
    """Tests for refusing to delete default or referenced accounts."""

    def test_default_account_cannot_be_deleted(self, repo, scope):
        default = repo.get_default_account(*scope)
        with pytest.raises(ConstraintViolation):
            repo.delete_account(*scope, default.id)

    def test_account_with_transactions_cannot_be_deleted(self, repo, scope):
        account_id = make_account(repo, scope, "Wallet", "100")
        expense(repo, scope, account_id, "5")

        with pytest.raises(ConstraintViolation, match="1 transaction"):
            repo.delete_account(*scope, account_id)
        assert repo.get_account(*scope, account_id)

    def test_transfer_destination_cannot_be_deleted(self, repo, scope):
        a = make_account(repo, scope, "A", "100")
        b = make_account(repo, scope, "B")
        transfer(repo, scope, a, b, "5")

        with pytest.raises(ConstraintViolation):
            repo.delete_account(*scope, b)

    def test_unused_account_can_be_deleted(self, repo, scope):
        account_id = make_account(repo, scope, "Wallet")

        assert repo.delete_account(*scope, account_id)
        with pytest.raises(NotFound):
            repo.get_account(*scope, account_id)
