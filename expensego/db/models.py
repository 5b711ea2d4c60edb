"""
Database models for the ExpenseGo ledger.

Defines the records stored per (bank, year) scope. Every record converts to
the camelCase dictionary shape used by snapshots and the UI layer.
"""

import json
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Optional, Union

from expensego.models import AccountType, CategoryType, TransactionType


def _json_list(raw: Optional[str]) -> list[str]:
    """Decode a JSON array column, tolerating empty or malformed values."""
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return []
    if not isinstance(value, list):
        return []
    return [str(item) for item in value]


@dataclass
class Bank:
    """A top-level ledger tenant owning one scope per fiscal year."""

    id: Optional[int]
    name: str
    icon: Optional[str] = None
    created_at: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "bankId": self.id,
            "name": self.name,
            "icon": self.icon,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_row(cls, row) -> "Bank":
        """Create a Bank from a database row."""
        return cls(
            id=row["bank_id"],
            name=row["name"],
            icon=row["icon"],
            created_at=row["created_at"],
        )


@dataclass
class Account:
    """
    A money-holding account inside one (bank, year) scope.

    current_balance always equals initial_balance plus the balance effects
    of every transaction touching the account.
    """

    id: Optional[int]
    bank_id: int
    fiscal_year: int
    name: str
    account_type: AccountType
    currency: str
    initial_balance: Decimal
    current_balance: Decimal
    color_code: Optional[str] = None
    icon: Optional[str] = None
    notes: Optional[str] = None
    is_default: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "accountId": self.id,
            "name": self.name,
            "type": self.account_type.value,
            "currency": self.currency,
            "initialBalance": self.initial_balance,
            "currentBalance": self.current_balance,
            "colorCode": self.color_code,
            "icon": self.icon,
            "notes": self.notes,
            "isDefault": self.is_default,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_row(cls, row) -> "Account":
        """Create an Account from a database row."""
        return cls(
            id=row["account_id"],
            bank_id=row["bank_id"],
            fiscal_year=row["fiscal_year"],
            name=row["name"],
            account_type=AccountType(row["type"]),
            currency=row["currency"],
            initial_balance=row["initial_balance"],
            current_balance=row["current_balance"],
            color_code=row["color_code"],
            icon=row["icon"],
            notes=row["notes"],
            is_default=bool(row["is_default"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class Category:
    """An expense or income category inside one (bank, year) scope."""

    id: Optional[int]
    bank_id: int
    fiscal_year: int
    name: str
    category_type: CategoryType
    parent_category_id: Optional[int] = None
    color_code: Optional[str] = None
    icon: Optional[str] = None
    is_default: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @property
    def key(self) -> tuple[str, str]:
        """Normalized (name, type) pair used for uniqueness checks."""
        return normalize_name(self.name), self.category_type.value

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "categoryId": self.id,
            "name": self.name,
            "type": self.category_type.value,
            "parentCategoryId": self.parent_category_id,
            "colorCode": self.color_code,
            "icon": self.icon,
            "isDefault": self.is_default,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_row(cls, row) -> "Category":
        """Create a Category from a database row."""
        return cls(
            id=row["category_id"],
            bank_id=row["bank_id"],
            fiscal_year=row["fiscal_year"],
            name=row["name"],
            category_type=CategoryType(row["type"]),
            parent_category_id=row["parent_category_id"],
            color_code=row["color_code"],
            icon=row["icon"],
            is_default=bool(row["is_default"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass
class Transaction:
    """
    A single expense, income or transfer.

    amount is always stored positive; the direction of its effect on an
    account balance comes from transaction_type.
    """

    id: Optional[int]
    bank_id: int
    fiscal_year: int
    transaction_type: TransactionType
    amount: Decimal
    date: str
    account_id: int
    to_account_id: Optional[int] = None
    category_id: Optional[int] = None
    description: str = ""
    payment_method: str = "cash"
    location: str = ""
    notes: str = ""
    tags: list[str] = field(default_factory=list)
    attachments: list[str] = field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    # Populated by joined queries only
    account_name: Optional[str] = None
    to_account_name: Optional[str] = None
    category_name: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        data = {
            "transactionId": self.id,
            "type": self.transaction_type.value,
            "amount": self.amount,
            "date": self.date,
            "accountId": self.account_id,
            "toAccountId": self.to_account_id,
            "categoryId": self.category_id,
            "description": self.description,
            "paymentMethod": self.payment_method,
            "location": self.location,
            "notes": self.notes,
            "tags": list(self.tags),
            "attachments": list(self.attachments),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.account_name is not None:
            data["accountName"] = self.account_name
            data["toAccountName"] = self.to_account_name
            data["categoryName"] = self.category_name
        return data

    @classmethod
    def from_row(cls, row) -> "Transaction":
        """Create a Transaction from a database row (joined names optional)."""
        keys = row.keys()
        return cls(
            id=row["transaction_id"],
            bank_id=row["bank_id"],
            fiscal_year=row["fiscal_year"],
            transaction_type=TransactionType(row["type"]),
            amount=row["amount"],
            date=row["date"],
            account_id=row["account_id"],
            to_account_id=row["to_account_id"],
            category_id=row["category_id"],
            description=row["description"] or "",
            payment_method=row["payment_method"] or "cash",
            location=row["location"] or "",
            notes=row["notes"] or "",
            tags=_json_list(row["tags"]),
            attachments=_json_list(row["attachments"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            account_name=row["account_name"] if "account_name" in keys else None,
            to_account_name=(
                row["to_account_name"] if "to_account_name" in keys else None
            ),
            category_name=row["category_name"] if "category_name" in keys else None,
        )


@dataclass
class TransactionFilters:
    """Optional filters for transaction queries. None means no filter."""

    start_date: Optional[Union[date, str]] = None
    end_date: Optional[Union[date, str]] = None
    account_id: Optional[int] = None  # matches either leg of a transfer
    category_id: Optional[int] = None
    transaction_type: Optional[TransactionType] = None
    limit: Optional[int] = None
    offset: int = 0


@dataclass
class RecalculationResult:
    """Outcome of a full balance recomputation."""

    accounts: int = 0
    transactions_applied: int = 0
    skipped: int = 0
    skipped_ids: list[int] = field(default_factory=list)
    balances: dict[int, Decimal] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "accounts": self.accounts,
            "transactionsApplied": self.transactions_applied,
            "skipped": self.skipped,
            "skippedIds": list(self.skipped_ids),
            "balances": {str(k): v for k, v in self.balances.items()},
        }


def normalize_name(name: str) -> str:
    """Case- and whitespace-insensitive form of a display name."""
    return " ".join((name or "").split()).lower()
