"""
Deferred restore staging.

A restore can be staged now and applied on the next startup. The staged
backup lives in one persisted record; consuming it clears the record before
handing the backup out, so it is applied at most once.
"""

import base64
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from expensego.config import PENDING_RESTORE_KEY
from expensego.db.store import KeyValueStore
from expensego.exceptions import BackupIntegrityError

from .formats import BackupFormat

logger = logging.getLogger(__name__)


class PendingRecord(BaseModel):
    """Persisted shape: {pending, payload, format, bankId, year, stagedAt}."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    pending: bool
    payload: str = ""
    format: BackupFormat = BackupFormat.DEFAULT
    bank_id: int = Field(default=0, ge=0)
    year: int = Field(default=0, ge=0)
    staged_at: Optional[str] = None


@dataclass
class StagedRestore:
    """A consumed staging record, ready to restore."""

    payload: bytes
    backup_format: BackupFormat
    bank_id: int
    year: int
    staged_at: Optional[str]


class PendingRestore:
    """The single staging record for a restore awaiting the next startup."""

    def __init__(self, store: KeyValueStore, key: str = PENDING_RESTORE_KEY):
        """
        Initialize the staging record.

        Args:
            store: Durable store holding the record
            key: Key of the record in the store
        """
        self.store = store
        self.key = key

    def stage(
        self,
        payload: bytes,
        bank_id: int,
        year: int,
        backup_format: BackupFormat = BackupFormat.DEFAULT,
    ):
        """Persist a backup to be restored on next startup, replacing any staged one."""
        record = PendingRecord(
            pending=True,
            payload=base64.b64encode(payload).decode("ascii"),
            format=BackupFormat(backup_format),
            bank_id=bank_id,
            year=year,
            staged_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
        )
        self.store.put(
            self.key, record.model_dump_json(by_alias=True).encode("utf-8")
        )
        logger.info(f"Staged restore of {len(payload)} bytes into ({bank_id}, {year})")

    def _read(self) -> Optional[PendingRecord]:
        raw = self.store.get(self.key)
        if not raw:
            return None
        try:
            return PendingRecord.model_validate(json.loads(raw.decode("utf-8")))
        except (ValueError, ValidationError) as e:
            raise BackupIntegrityError(f"Pending restore record is corrupt: {e}") from e

    def has_pending(self) -> bool:
        """Whether a staged restore is waiting."""
        try:
            record = self._read()
        except BackupIntegrityError:
            return True
        return record is not None and record.pending

    def clear(self):
        self.store.delete(self.key)

    def consume(self) -> Optional[StagedRestore]:
        """
        Take the staged restore, clearing the record first.

        Returns:
            The staged restore, or None when nothing is pending

        Raises:
            BackupIntegrityError: If the record is corrupt (it is cleared anyway)
        """
        try:
            record = self._read()
        except BackupIntegrityError:
            self.clear()
            logger.error("Discarded corrupt pending restore record")
            raise

        if record is None or not record.pending:
            return None

        self.clear()
        logger.info(f"Consumed pending restore staged at {record.staged_at}")
        try:
            payload = base64.b64decode(record.payload.encode("ascii"), validate=True)
        except ValueError as e:
            raise BackupIntegrityError(f"Pending restore payload is corrupt: {e}") from e
        return StagedRestore(
            payload=payload,
            backup_format=record.format,
            bank_id=record.bank_id,
            year=record.year,
            staged_at=record.staged_at,
        )
