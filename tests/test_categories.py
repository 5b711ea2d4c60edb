"""Tests for category CRUD, uniqueness and duplicate cleanup."""

import pytest

from expensego.exceptions import (
    ConstraintViolation,
    DuplicateName,
    NotFound,
    ValidationError,
)
from expensego.models import CategoryType
from tests.helpers import category_id, expense, make_account


def insert_duplicate(repo, scope, name, category_type="expense", is_default=0):
    """Insert a category row directly, bypassing the uniqueness check."""
    with repo.transaction() as conn:
        cursor = conn.execute(
            """
            INSERT INTO categories
            (bank_id, fiscal_year, name, type, is_default, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, 'now', 'now')
            """,
            (*scope, name, category_type, is_default),
        )
        return cursor.lastrowid


class TestCategoryCrud:
    """Tests for creating, updating and deleting categories."""

    def test_create_and_filter_by_type(self, repo, scope):
        new_id = repo.create_category(*scope, {"name": "Pets", "type": "expense"})

        expenses = repo.get_categories(*scope, CategoryType.EXPENSE)
        incomes = repo.get_categories(*scope, CategoryType.INCOME)
        assert new_id in {c.id for c in expenses}
        assert all(c.category_type == CategoryType.INCOME for c in incomes)
        assert len(incomes) == 3

    def test_enum_type_is_accepted(self, repo, scope):
        bonus = repo.create_category(*scope, {"name": "Bonus", "type": CategoryType.INCOME})

        found = repo.find_category(*scope, " bonus ", CategoryType.INCOME)

        assert found.id == bonus
        assert repo.find_category(*scope, "Bonus", CategoryType.EXPENSE) is None

    def test_duplicate_name_is_case_and_space_insensitive(self, repo, scope):
        with pytest.raises(DuplicateName):
            repo.create_category(*scope, {"name": "  groceries ", "type": "expense"})

    def test_same_name_allowed_for_other_type(self, repo, scope):
        assert repo.create_category(*scope, {"name": "Groceries", "type": "income"})

    def test_rename_onto_existing_name_is_rejected(self, repo, scope):
        pets = repo.create_category(*scope, {"name": "Pets", "type": "expense"})
        with pytest.raises(DuplicateName):
            repo.update_category(*scope, pets, {"name": "SHOPPING"})

    def test_default_category_cannot_be_renamed(self, repo, scope):
        salary = category_id(repo, scope, "Salary")
        with pytest.raises(ConstraintViolation):
            repo.update_category(*scope, salary, {"name": "Wages"})

    def test_default_category_colour_can_change(self, repo, scope):
        salary = category_id(repo, scope, "Salary")
        updated = repo.update_category(*scope, salary, {"colorCode": "#123456"})
        assert updated.color_code == "#123456"
        assert updated.is_default

    def test_parent_must_exist(self, repo, scope):
        with pytest.raises(NotFound):
            repo.create_category(
                *scope, {"name": "Vet", "type": "expense", "parent_category_id": 9999}
            )

    def test_parent_cycles_are_rejected(self, repo, scope):
        pets = repo.create_category(*scope, {"name": "Pets", "type": "expense"})
        vet = repo.create_category(
            *scope, {"name": "Vet", "type": "expense", "parent_category_id": pets}
        )
        checkup = repo.create_category(
            *scope, {"name": "Checkup", "type": "expense", "parent_category_id": vet}
        )

        with pytest.raises(ValidationError):
            repo.update_category(*scope, pets, {"parent_category_id": checkup})
        with pytest.raises(ValidationError):
            repo.update_category(*scope, pets, {"parent_category_id": pets})
        assert repo.get_category(*scope, pets).parent_category_id is None

    def test_parent_is_kept(self, repo, scope):
        pets = repo.create_category(*scope, {"name": "Pets", "type": "expense"})
        vet = repo.create_category(
            *scope, {"name": "Vet", "type": "expense", "parentCategoryId": pets}
        )
        assert repo.get_category(*scope, vet).parent_category_id == pets

    def test_bad_type_is_rejected(self, repo, scope):
        with pytest.raises(ValidationError):
            repo.create_category(*scope, {"name": "Gifts", "type": "transfer"})

    def test_unused_category_can_be_deleted(self, repo, scope):
        pets = repo.create_category(*scope, {"name": "Pets", "type": "expense"})
        assert repo.delete_category(*scope, pets)
        with pytest.raises(NotFound):
            repo.get_category(*scope, pets)

    def test_referenced_category_cannot_be_deleted(self, repo, scope):
        pets = repo.create_category(*scope, {"name": "Pets", "type": "expense"})
        wallet = make_account(repo, scope, "Wallet", "10")
        expense(repo, scope, wallet, "3", category="Pets")

        with pytest.raises(ConstraintViolation):
            repo.delete_category(*scope, pets)

    def test_default_category_cannot_be_deleted(self, repo, scope):
        with pytest.raises(ConstraintViolation):
            repo.delete_category(*scope, category_id(repo, scope, "Groceries"))


class TestDuplicateCleanup:
    """Tests for merging categories that share a (name, type)."""

    def test_duplicates_converge_on_lowest_id(self, repo, scope):
        """Test Food/1 and Food/2 merge into 1 and transactions follow."""
        food = repo.create_category(*scope, {"name": "Food", "type": "expense"})
        duplicate = insert_duplicate(repo, scope, "Food")
        wallet = make_account(repo, scope, "Wallet", "10")
        txn = repo.create_transaction(
            *scope,
            {
                "type": "expense",
                "amount": "2",
                "date": "2024-01-01",
                "account_id": wallet,
                "category_id": duplicate,
            },
        )

        assert repo.cleanup_duplicate_categories(*scope) == 1

        foods = [c for c in repo.get_categories(*scope) if c.name == "Food"]
        assert [c.id for c in foods] == [food]
        assert repo.get_transaction(*scope, txn).category_id == food

    def test_cleanup_is_noop_on_clean_data(self, repo, scope):
        before = repo.get_categories(*scope)
        assert repo.cleanup_duplicate_categories(*scope) == 0
        assert repo.get_categories(*scope) == before

    def test_names_are_compared_normalized(self, repo, scope):
        insert_duplicate(repo, scope, "groceries ")
        assert repo.cleanup_duplicate_categories(*scope) == 1
        assert len([c for c in repo.get_categories(*scope) if c.key[0] == "groceries"]) == 1

    def test_types_are_kept_apart(self, repo, scope):
        insert_duplicate(repo, scope, "Salary", category_type="expense")
        assert repo.cleanup_duplicate_categories(*scope) == 0

    def test_default_flag_survives_merge(self, repo, scope):
        """Test the kept row becomes default when a removed one was."""
        custom = repo.create_category(*scope, {"name": "Rent", "type": "expense"})
        insert_duplicate(repo, scope, "rent", is_default=1)

        repo.cleanup_duplicate_categories(*scope)

        assert repo.get_category(*scope, custom).is_default

    def test_children_are_repointed(self, repo, scope):
        food = repo.create_category(*scope, {"name": "Food", "type": "expense"})
        duplicate = insert_duplicate(repo, scope, "Food")
        child = repo.create_category(
            *scope, {"name": "Snacks", "type": "expense", "parent_category_id": duplicate}
        )

        repo.cleanup_duplicate_categories(*scope)

        assert repo.get_category(*scope, child).parent_category_id == food

    def test_canonical_row_never_becomes_its_own_parent(self, repo, scope):
        food = repo.create_category(*scope, {"name": "Food", "type": "expense"})
        duplicate = insert_duplicate(repo, scope, "Food")
        with repo.transaction() as conn:
            conn.execute(
                "UPDATE categories SET parent_category_id = ? WHERE category_id = ?",
                (duplicate, food),
            )

        assert repo.cleanup_duplicate_categories(*scope) == 1

        assert repo.get_category(*scope, food).parent_category_id is None
