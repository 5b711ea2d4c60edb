"""
Backup service for ledger snapshots.

Provides functionality for:
- Exporting one (bank, year) scope as a validated, versioned snapshot
- Encoding snapshots in the DEFAULT, ENCRYPTED and PORTABLE formats
- Restoring a snapshot into a freshly rebuilt scope in one atomic step
- Applying a restore that was staged for the next startup
"""

import base64
import hashlib
import json
import logging
import platform
import zlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional, Union

from cryptography.fernet import Fernet, InvalidToken
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from expensego import config
from expensego.db.models import Transaction, TransactionFilters, normalize_name
from expensego.db.repository import LedgerRepository
from expensego.exceptions import BackupIntegrityError, StorageError
from expensego.models import TransactionType

from .formats import BackupFormat, format_for_filename
from .pending import PendingRestore
from .schema import BackupEnvelope, validate_envelope

logger = logging.getLogger(__name__)

COMPRESSION_LEVEL = 9


@dataclass
class RestoreResult:
    """Outcome of a restore."""

    accounts_created: int = 0
    categories_created: int = 0
    transactions_restored: int = 0
    transactions_skipped: int = 0
    skipped_ids: list[int] = field(default_factory=list)
    balances: dict[int, Decimal] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "accountsCreated": self.accounts_created,
            "categoriesCreated": self.categories_created,
            "transactionsRestored": self.transactions_restored,
            "transactionsSkipped": self.transactions_skipped,
            "skippedIds": list(self.skipped_ids),
            "balances": {str(k): v for k, v in self.balances.items()},
        }


def _fernet() -> Fernet:
    """
    Fernet for the ENCRYPTED format.

    Uses EXPENSEGO_BACKUP_KEY when it holds a valid Fernet key, otherwise a
    key derived from EXPENSEGO_APP_SECRET.

    Raises:
        BackupIntegrityError: If neither is configured
    """
    key = (config.BACKUP_KEY or "").strip()
    if key:
        padded = key + "=" * (-len(key) % 4)
        try:
            if len(base64.urlsafe_b64decode(padded.encode("utf-8"))) == 32:
                return Fernet(padded.encode("utf-8"))
        except ValueError:
            pass
        logger.warning("EXPENSEGO_BACKUP_KEY is not a valid Fernet key; ignoring it")

    secret = (config.APP_SECRET or "").strip()
    if secret:
        raw = hashlib.sha256(secret.encode("utf-8")).digest()
        return Fernet(base64.urlsafe_b64encode(raw))

    raise BackupIntegrityError(
        "Encrypted backups need EXPENSEGO_BACKUP_KEY or EXPENSEGO_APP_SECRET to be set"
    )


class BackupService:
    """Service for exporting and restoring ledger snapshots."""

    def __init__(self, repository: LedgerRepository):
        """
        Initialize the backup service.

        Args:
            repository: Ledger repository to read from and restore into
        """
        self.repository = repository

    # =========================================================================
    # Export
    # =========================================================================

    def build_snapshot(self, bank_id: int, year: int) -> dict[str, Any]:
        """
        Collect one scope into a validated snapshot envelope.

        Args:
            bank_id: Bank owning the scope
            year: Fiscal year of the scope

        Returns:
            JSON-ready envelope dictionary

        Raises:
            NotFound: If the bank does not exist
            BackupIntegrityError: If the collected data fails validation
        """
        self.repository.get_bank(bank_id)

        banks = [bank.to_dict() for bank in self.repository.get_banks()]
        accounts = [a.to_dict() for a in self.repository.get_accounts(bank_id, year)]
        categories = [c.to_dict() for c in self.repository.get_categories(bank_id, year)]
        transactions = [
            t.to_dict()
            for t in self.repository.get_transactions(bank_id, year, TransactionFilters())
        ]

        raw = {
            "version": config.BACKUP_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "format": BackupFormat.DEFAULT.value,
            "metadata": {
                "appVersion": config.VERSION,
                "platform": platform.platform(),
                "userAgent": (
                    f"{config.APP_NAME}/{config.VERSION} "
                    f"Python/{platform.python_version()}"
                ),
                "timezone": config.TIMEZONE,
            },
            "data": {
                "schema": self.repository.get_schema_sql(),
                "banks": banks,
                "accounts": accounts,
                "categories": categories,
                "transactions": transactions,
                "metadata": {
                    "recordCounts": {
                        "banks": len(banks),
                        "accounts": len(accounts),
                        "categories": len(categories),
                        "transactions": len(transactions),
                    }
                },
            },
        }
        envelope = validate_envelope(raw)
        logger.info(
            f"Built snapshot of ({bank_id}, {year}): {len(accounts)} accounts, "
            f"{len(categories)} categories, {len(transactions)} transactions"
        )
        return envelope.to_json_dict()

    def create_backup(
        self,
        bank_id: int,
        year: int,
        backup_format: BackupFormat = BackupFormat.DEFAULT,
    ) -> bytes:
        """
        Export a scope as an encoded backup.

        The whole export is retried on StorageError, up to
        BACKUP_MAX_RETRIES attempts with a fixed BACKUP_RETRY_DELAY between
        them.

        Returns:
            The encoded backup bytes

        Raises:
            BackupIntegrityError: If validation fails or the result exceeds
                MAX_BACKUP_SIZE
            StorageError: If every attempt failed
        """
        backup_format = BackupFormat(backup_format)
        retrying = Retrying(
            stop=stop_after_attempt(config.BACKUP_MAX_RETRIES),
            wait=wait_fixed(config.BACKUP_RETRY_DELAY),
            retry=retry_if_exception_type(StorageError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            return retrying(self._create_backup_once, bank_id, year, backup_format)
        except StorageError as e:
            logger.error(
                f"Backup of ({bank_id}, {year}) failed after "
                f"{config.BACKUP_MAX_RETRIES} attempts: {e}",
                exc_info=True,
            )
            raise

    def _create_backup_once(
        self, bank_id: int, year: int, backup_format: BackupFormat
    ) -> bytes:
        envelope = self.build_snapshot(bank_id, year)
        envelope["format"] = backup_format.value
        payload = self.encode(envelope, backup_format)

        if len(payload) > config.MAX_BACKUP_SIZE:
            raise BackupIntegrityError(
                f"Backup size {len(payload)} bytes exceeds the limit of "
                f"{config.MAX_BACKUP_SIZE} bytes"
            )
        logger.info(
            f"Created {backup_format.value} backup of ({bank_id}, {year}): "
            f"{len(payload)} bytes"
        )
        return payload

    def write_backup(
        self,
        path: Union[str, Path],
        bank_id: int,
        year: int,
        backup_format: BackupFormat = BackupFormat.DEFAULT,
    ) -> Path:
        """
        Create a backup and write it to a file.

        The file gets the format's extension if it does not already have it.

        Returns:
            Path of the written file
        """
        backup_format = BackupFormat(backup_format)
        path = Path(path)
        extension = f".{backup_format.profile.extension}"
        if path.suffix.lower() != extension:
            path = path.with_name(path.name + extension)

        payload = self.create_backup(bank_id, year, backup_format)
        try:
            path.write_bytes(payload)
        except OSError as e:
            logger.error(f"Failed to write backup to {path}: {e}", exc_info=True)
            raise StorageError(f"Failed to write backup to {path}: {e}")
        logger.info(f"Wrote backup to {path}")
        return path

    # =========================================================================
    # Encoding
    # =========================================================================

    @staticmethod
    def encode(envelope: dict[str, Any], backup_format: BackupFormat) -> bytes:
        """Serialize an envelope dictionary in the given format."""
        backup_format = BackupFormat(backup_format)
        if backup_format == BackupFormat.PORTABLE:
            return json.dumps(envelope, ensure_ascii=False, indent=2).encode("utf-8")

        compressed = zlib.compress(
            json.dumps(envelope, ensure_ascii=False, separators=(",", ":")).encode(
                "utf-8"
            ),
            COMPRESSION_LEVEL,
        )
        if backup_format == BackupFormat.ENCRYPTED:
            return _fernet().encrypt(compressed)
        return compressed

    @staticmethod
    def decode(payload: bytes, backup_format: BackupFormat) -> Any:
        """
        Turn encoded bytes back into the raw decoded JSON value.

        Raises:
            BackupIntegrityError: If the bytes are not a backup of that format
        """
        backup_format = BackupFormat(backup_format)
        try:
            if backup_format == BackupFormat.ENCRYPTED:
                payload = _fernet().decrypt(payload)
            if backup_format != BackupFormat.PORTABLE:
                payload = zlib.decompress(payload)
            return json.loads(payload.decode("utf-8"))
        except InvalidToken:
            raise BackupIntegrityError(
                "Cannot decrypt backup: wrong key or the file was modified"
            )
        except (zlib.error, UnicodeDecodeError, ValueError) as e:
            raise BackupIntegrityError(f"Invalid backup file format: {e}")

    def load_backup(
        self, payload: bytes, backup_format: BackupFormat = BackupFormat.DEFAULT
    ) -> BackupEnvelope:
        """
        Decode and validate a backup.

        Raises:
            BackupIntegrityError: If the payload is oversized, undecodable,
                structurally invalid or from an incompatible version
        """
        if not payload:
            raise BackupIntegrityError("Backup file is empty")
        if len(payload) > config.MAX_BACKUP_SIZE:
            raise BackupIntegrityError(
                f"Backup size {len(payload)} bytes exceeds the limit of "
                f"{config.MAX_BACKUP_SIZE} bytes"
            )

        envelope = validate_envelope(self.decode(payload, backup_format))
        current_major = config.BACKUP_VERSION.split(".")[0]
        if envelope.major_version != current_major:
            raise BackupIntegrityError(
                f"Incompatible backup version. Expected {config.BACKUP_VERSION}, "
                f"got {envelope.version}"
            )
        return envelope

    # =========================================================================
    # Restore
    # =========================================================================

    def restore_backup(
        self,
        payload: bytes,
        bank_id: int,
        year: int,
        backup_format: BackupFormat = BackupFormat.DEFAULT,
    ) -> RestoreResult:
        """
        Rebuild a scope from a backup.

        The target scope is wiped and reseeded, accounts and categories are
        recreated with new ids, every transaction is replayed through the
        id remap, and balances are recomputed from the transactions. The
        whole restore is one atomic transaction: on any failure the ledger
        is left exactly as it was.

        Args:
            payload: Encoded backup bytes
            bank_id: Bank to restore into (must exist)
            year: Fiscal year to restore into
            backup_format: Encoding of the payload

        Returns:
            RestoreResult with counts and the recomputed balances

        Raises:
            BackupIntegrityError: If the backup is invalid (nothing is written)
            NotFound: If the target bank does not exist
        """
        envelope = self.load_backup(payload, backup_format)
        self.repository.get_bank(bank_id)
        data = envelope.data
        result = RestoreResult()
        repo = self.repository

        try:
            with repo.transaction() as conn:
                repo.schema.recreate(bank_id, year)
                repo.schema.seed_defaults(bank_id, year)

                account_map = self._restore_accounts(data, bank_id, year, result)
                category_map, categories_by_key = self._restore_categories(
                    data, bank_id, year, result
                )

                ordered = sorted(
                    data.transactions, key=lambda t: (t.date, t.transaction_id)
                )
                for snap in ordered:
                    account_id = account_map.get(snap.account_id)
                    to_account_id = None
                    if snap.type == TransactionType.TRANSFER:
                        to_account_id = account_map.get(snap.to_account_id)
                    if account_id is None or (
                        snap.type == TransactionType.TRANSFER
                        and (to_account_id is None or to_account_id == account_id)
                    ):
                        logger.warning(
                            f"Skipping transaction {snap.transaction_id}: "
                            "its account is not in the backup"
                        )
                        result.transactions_skipped += 1
                        result.skipped_ids.append(snap.transaction_id)
                        continue

                    category_id = None
                    if snap.type != TransactionType.TRANSFER:
                        category_id = category_map.get(snap.category_id)
                        if category_id is None:
                            fallback = config.FALLBACK_CATEGORY_NAMES[snap.type.value]
                            category_id = categories_by_key[
                                (normalize_name(fallback), snap.type.value)
                            ]

                    repo.transactions.insert_raw(
                        conn,
                        Transaction(
                            id=None,
                            bank_id=bank_id,
                            fiscal_year=year,
                            transaction_type=snap.type,
                            amount=snap.amount,
                            date=snap.date.isoformat(),
                            account_id=account_id,
                            to_account_id=to_account_id,
                            category_id=category_id,
                            description=snap.description,
                            payment_method=snap.payment_method,
                            location=snap.location,
                            notes=snap.notes,
                            tags=list(snap.tags),
                            attachments=list(snap.attachments),
                            created_at=snap.created_at,
                            updated_at=snap.updated_at,
                        ),
                    )
                    result.transactions_restored += 1

                recalculated = repo.balances.recalculate_account_balances(bank_id, year)
                result.balances = recalculated.balances
        except BackupIntegrityError:
            raise
        except Exception as e:
            logger.error(f"Restore into ({bank_id}, {year}) failed: {e}", exc_info=True)
            raise

        logger.info(
            f"Restored ({bank_id}, {year}): {result.accounts_created} accounts, "
            f"{result.categories_created} categories, "
            f"{result.transactions_restored} transactions "
            f"({result.transactions_skipped} skipped)"
        )
        return result

    def _restore_accounts(self, data, bank_id: int, year: int, result: RestoreResult):
        """Map snapshot account ids onto the rebuilt scope's ids."""
        repo = self.repository
        default = repo.get_default_account(bank_id, year)
        by_name = {normalize_name(default.name): default.id}
        account_map: dict[int, int] = {}

        for snap in data.accounts:
            if snap.is_default:
                account_map[snap.account_id] = default.id
                repo.update_account(
                    bank_id,
                    year,
                    default.id,
                    {
                        "initial_balance": snap.initial_balance,
                        "currency": snap.currency,
                        "color_code": snap.color_code,
                        "icon": snap.icon,
                        "notes": snap.notes,
                    },
                )
                continue

            key = normalize_name(snap.name)
            if key in by_name:
                account_map[snap.account_id] = by_name[key]
                logger.debug(f"Account '{snap.name}' already restored; reusing it")
                continue

            new_id = repo.create_account(
                bank_id,
                year,
                {
                    "name": snap.name,
                    "type": snap.type.value,
                    "currency": snap.currency,
                    "initial_balance": snap.initial_balance,
                    "color_code": snap.color_code,
                    "icon": snap.icon,
                    "notes": snap.notes,
                },
            )
            by_name[key] = new_id
            account_map[snap.account_id] = new_id
            result.accounts_created += 1

        return account_map

    def _restore_categories(self, data, bank_id: int, year: int, result: RestoreResult):
        """Map snapshot category ids onto the rebuilt scope's ids."""
        repo = self.repository
        by_key = {c.key: c.id for c in repo.get_categories(bank_id, year)}
        category_map: dict[int, int] = {}

        for snap in data.categories:
            key = (normalize_name(snap.name), snap.type.value)
            if key in by_key:
                category_map[snap.category_id] = by_key[key]
                continue
            new_id = repo.create_category(
                bank_id,
                year,
                {
                    "name": snap.name,
                    "type": snap.type.value,
                    "color_code": snap.color_code,
                    "icon": snap.icon,
                },
            )
            by_key[key] = new_id
            category_map[snap.category_id] = new_id
            result.categories_created += 1

        for snap in data.categories:
            parent_id = category_map.get(snap.parent_category_id)
            child_id = category_map[snap.category_id]
            if parent_id is not None and parent_id != child_id:
                repo.update_category(
                    bank_id, year, child_id, {"parent_category_id": parent_id}
                )

        return category_map, by_key

    def restore_file(
        self,
        path: Union[str, Path],
        bank_id: int,
        year: int,
        backup_format: Optional[BackupFormat] = None,
    ) -> RestoreResult:
        """Restore from a backup file; the format defaults to its extension."""
        path = Path(path)
        backup_format = backup_format or format_for_filename(path)
        try:
            payload = path.read_bytes()
        except OSError as e:
            logger.error(f"Failed to read backup {path}: {e}", exc_info=True)
            raise StorageError(f"Error reading backup file {path}: {e}")
        return self.restore_backup(payload, bank_id, year, backup_format)

    # =========================================================================
    # Deferred restore
    # =========================================================================

    def stage_restore(
        self,
        pending: PendingRestore,
        payload: bytes,
        bank_id: int,
        year: int,
        backup_format: BackupFormat = BackupFormat.DEFAULT,
    ):
        """Validate a backup now and stage it to be applied on next startup."""
        self.load_backup(payload, backup_format)
        pending.stage(payload, bank_id, year, backup_format)

    def apply_pending_restore(self, pending: PendingRestore) -> Optional[RestoreResult]:
        """
        Apply a staged restore, if any.

        The staging record is cleared before the restore starts, so a crash
        or failure part way through never replays the same backup twice.

        Returns:
            RestoreResult, or None when nothing was staged
        """
        staged = pending.consume()
        if staged is None:
            logger.debug("No pending restore")
            return None

        logger.info(
            f"Applying restore staged at {staged.staged_at} into "
            f"({staged.bank_id}, {staged.year})"
        )
        return self.restore_backup(
            staged.payload, staged.bank_id, staged.year, staged.backup_format
        )
