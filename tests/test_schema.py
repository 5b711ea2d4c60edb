"""Tests for banks, scope preparation and default seeding."""

import pytest

from expensego.config import DEFAULT_CATEGORIES, SCHEMA_VERSION
from expensego.exceptions import NotFound, ValidationError
from tests.helpers import YEAR, expense, make_account


class TestSeeding:
    """Tests for the default categories and cash account."""

    def test_new_bank_scope_is_seeded(self, repo, scope):
        categories = repo.get_categories(*scope)
        accounts = repo.get_accounts(*scope)

        assert len(categories) == len(DEFAULT_CATEGORIES)
        assert all(c.is_default for c in categories)
        assert [a.name for a in accounts] == ["Petty Cash"]
        assert accounts[0].is_default

    def test_seeding_is_idempotent(self, repo, scope):
        """Test that seeding N times equals seeding once."""
        before = {(c.name, c.category_type) for c in repo.get_categories(*scope)}

        for _ in range(3):
            assert repo.seed_defaults(*scope) == {"categories": 0, "accounts": 0}

        after = {(c.name, c.category_type) for c in repo.get_categories(*scope)}
        assert after == before
        assert len(repo.get_categories(*scope)) == len(DEFAULT_CATEGORIES)
        defaults = [a for a in repo.get_accounts(*scope) if a.is_default]
        assert len(defaults) == 1

    def test_seeding_restores_missing_defaults_only(self, repo, scope):
        with repo.transaction() as conn:
            conn.execute(
                "DELETE FROM categories WHERE name = 'Salary' AND bank_id = ?",
                (scope[0],),
            )

        assert repo.seed_defaults(*scope) == {"categories": 1, "accounts": 0}

    def test_ensure_tables_is_idempotent(self, repo, scope):
        assert repo.ensure_tables(*scope) is False
        assert repo.ensure_tables(scope[0], YEAR + 1) is True
        assert repo.list_scopes(scope[0]) == [(scope[0], YEAR), (scope[0], YEAR + 1)]

    def test_new_year_scope_is_seeded_on_first_use(self, repo, scope):
        next_year = (scope[0], YEAR + 1)

        default = repo.get_default_account(*next_year)

        assert default is not None and default.name == "Petty Cash"
        assert len(repo.get_categories(*next_year)) == len(DEFAULT_CATEGORIES)
        assert repo.seed_defaults(*next_year) == {"categories": 0, "accounts": 0}

    def test_scope_of_unknown_bank_is_refused(self, repo):
        with pytest.raises(NotFound):
            repo.create_account(999, YEAR, {"name": "Ghost"})
        with pytest.raises(NotFound):
            repo.ensure_tables(999, YEAR)
        with pytest.raises(NotFound):
            repo.recreate_scope(999, YEAR)
        assert repo.list_scopes() == []

    def test_recreate_wipes_only_that_scope(self, repo, scope):
        other = (scope[0], YEAR + 1)
        repo.seed_defaults(*other)
        wallet = make_account(repo, scope, "Wallet", "10")
        expense(repo, scope, wallet, "1")
        kept = make_account(repo, other, "Kept")

        repo.recreate_scope(*scope)

        assert repo.get_accounts(*scope) == []
        assert repo.count_transactions(*scope) == 0
        assert repo.get_account(*other, kept).name == "Kept"

    def test_schema_version_is_recorded(self, repo):
        assert repo.db.get_schema_version() == SCHEMA_VERSION

    def test_schema_sql_lists_tables(self, repo):
        statements = repo.get_schema_sql()
        assert any(
            sql.startswith("CREATE TABLE") and "transactions" in sql for sql in statements
        )
        assert any("database_info" in sql for sql in statements)


class TestBanks:
    """Tests for bank CRUD."""

    def test_create_and_list(self, repo):
        repo.create_bank("Work", year=YEAR)
        repo.create_bank("Home", year=YEAR)

        assert [b.name for b in repo.get_banks()] == ["Home", "Work"]

    def test_empty_name_is_rejected(self, repo):
        with pytest.raises(ValidationError):
            repo.create_bank("  ")
        assert repo.get_banks() == []

    def test_update_bank(self, repo, bank):
        updated = repo.update_bank(bank.id, name="House")

        assert updated.name == "House"
        assert updated.icon == bank.icon
        assert repo.get_bank(bank.id).name == "House"

    def test_delete_bank_drops_all_scopes(self, repo, bank):
        make_account(repo, (bank.id, YEAR + 1), "Next")
        other = repo.create_bank("Other", year=YEAR)

        assert repo.delete_bank(bank.id)

        with pytest.raises(NotFound):
            repo.get_bank(bank.id)
        assert repo.list_scopes(bank.id) == []
        with pytest.raises(NotFound):
            repo.get_accounts(bank.id, YEAR + 1)
        assert len(repo.get_accounts(other.id, YEAR)) == 1

    def test_missing_bank(self, repo):
        with pytest.raises(NotFound):
            repo.get_bank(42)
