"""Helpers for building ledger data in tests."""

from decimal import Decimal

YEAR = 2024


def category_id(repo, scope, name):
    """Id of the category with the given name in a scope."""
    for category in repo.get_categories(*scope):
        if category.name == name:
            return category.id
    raise AssertionError(f"no category named {name!r}")


def make_account(repo, scope, name, initial="0", account_type="savings"):
    return repo.create_account(
        *scope, {"name": name, "type": account_type, "initial_balance": Decimal(initial)}
    )


def expense(repo, scope, account_id, amount, on="2024-03-01", category="Groceries"):
    return repo.create_transaction(
        *scope,
        {
            "type": "expense",
            "amount": amount,
            "date": on,
            "account_id": account_id,
            "category_id": category_id(repo, scope, category),
        },
    )


def income(repo, scope, account_id, amount, on="2024-03-01", category="Salary"):
    return repo.create_transaction(
        *scope,
        {
            "type": "income",
            "amount": amount,
            "date": on,
            "account_id": account_id,
            "category_id": category_id(repo, scope, category),
        },
    )


def transfer(repo, scope, source_id, destination_id, amount, on="2024-03-01"):
    return repo.create_transaction(
        *scope,
        {
            "type": "transfer",
            "amount": amount,
            "date": on,
            "account_id": source_id,
            "to_account_id": destination_id,
        },
    )


def balance(repo, scope, account_id):
    return repo.get_account_balance(*scope, account_id)
