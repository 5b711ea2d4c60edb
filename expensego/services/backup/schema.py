"""
Snapshot schema for ledger backups.

These models define the exact shape of a backup envelope. A snapshot is
validated against them both before it is handed out and before a restore
touches the database, so a partial or corrupt snapshot is rejected as a
whole.

Field names follow the camelCase keys of the serialized file; Python code
uses the snake_case attribute names.
"""

import datetime as dt
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from expensego.exceptions import BackupIntegrityError
from expensego.models import AccountType, CategoryType, TransactionType

from .formats import BackupFormat


class SnapshotModel(BaseModel):
    """Base for every snapshot record: camelCase on the wire, extra keys ignored."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


# =============================================================================
# Records
# =============================================================================


class SnapshotBank(SnapshotModel):
    bank_id: int = Field(..., gt=0)
    name: str = Field(..., min_length=1)
    icon: Optional[str] = None
    created_at: Optional[str] = None


class SnapshotAccount(SnapshotModel):
    """
    An account as exported.

    current_balance is advisory; restore recomputes every balance from the
    transactions.
    """

    account_id: int = Field(..., gt=0)
    name: str = Field(..., min_length=1)
    type: AccountType
    currency: str = Field(default="INR", min_length=1)
    initial_balance: Decimal = Decimal("0")
    current_balance: Decimal = Decimal("0")
    color_code: Optional[str] = None
    icon: Optional[str] = None
    notes: Optional[str] = None
    is_default: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class SnapshotCategory(SnapshotModel):
    category_id: int = Field(..., gt=0)
    name: str = Field(..., min_length=1)
    type: CategoryType
    parent_category_id: Optional[int] = None
    color_code: Optional[str] = None
    icon: Optional[str] = None
    is_default: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class SnapshotTransaction(SnapshotModel):
    """A transaction as exported. amount is always the positive magnitude."""

    transaction_id: int = Field(..., gt=0)
    type: TransactionType
    amount: Decimal = Field(..., gt=0)
    date: dt.date
    account_id: int = Field(..., gt=0)
    to_account_id: Optional[int] = None
    category_id: Optional[int] = None
    description: str = ""
    payment_method: str = "cash"
    location: str = ""
    notes: str = ""
    tags: list[str] = Field(default_factory=list)
    attachments: list[str] = Field(default_factory=list)
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @model_validator(mode="after")
    def check_legs(self) -> "SnapshotTransaction":
        if self.type == TransactionType.TRANSFER and self.to_account_id is None:
            raise ValueError(
                f"transfer {self.transaction_id} has no destination account"
            )
        return self


# =============================================================================
# Envelope
# =============================================================================


class RecordCounts(SnapshotModel):
    banks: int = Field(..., ge=0)
    accounts: int = Field(..., ge=0)
    categories: int = Field(..., ge=0)
    transactions: int = Field(..., ge=0)


class DataMetadata(SnapshotModel):
    record_counts: RecordCounts


class BackupData(SnapshotModel):
    """The ledger content of a snapshot."""

    table_schema: list[str] = Field(default_factory=list, alias="schema")
    banks: list[SnapshotBank] = Field(default_factory=list)
    accounts: list[SnapshotAccount]
    categories: list[SnapshotCategory]
    transactions: list[SnapshotTransaction]
    metadata: DataMetadata

    @model_validator(mode="after")
    def check_record_counts(self) -> "BackupData":
        counts = self.metadata.record_counts
        for name in ("banks", "accounts", "categories", "transactions"):
            expected = getattr(counts, name)
            actual = len(getattr(self, name))
            if expected != actual:
                raise ValueError(
                    f"recordCounts.{name} is {expected} but the snapshot has {actual}"
                )
        return self


class BackupMetadata(SnapshotModel):
    """Where and by what the snapshot was produced."""

    app_version: str
    platform: str = ""
    user_agent: str = ""
    timezone: str = "UTC"


class BackupEnvelope(SnapshotModel):
    version: str = Field(..., pattern=r"^\d+(\.\d+)*$")
    timestamp: dt.datetime
    format: BackupFormat = BackupFormat.DEFAULT
    metadata: BackupMetadata
    data: BackupData

    @property
    def major_version(self) -> str:
        return self.version.split(".")[0]

    def to_json_dict(self) -> dict[str, Any]:
        """Plain JSON-ready dictionary with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


def validate_envelope(raw: Any) -> BackupEnvelope:
    """
    Validate a decoded snapshot.

    Raises:
        BackupIntegrityError: Listing every problem found
    """
    if not isinstance(raw, dict):
        raise BackupIntegrityError("Invalid backup file: expected a JSON object")
    try:
        return BackupEnvelope.model_validate(raw)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'backup'}: {err['msg']}"
            for err in e.errors()
        )
        raise BackupIntegrityError(f"Invalid backup file: {problems}") from e
