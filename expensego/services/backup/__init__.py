from .formats import (
    FORMAT_PROFILES,
    BackupFormat,
    FormatProfile,
    default_filename,
    format_for_filename,
)
from .pending import PendingRestore, StagedRestore
from .schema import (
    BackupData,
    BackupEnvelope,
    BackupMetadata,
    RecordCounts,
    SnapshotAccount,
    SnapshotBank,
    SnapshotCategory,
    SnapshotTransaction,
    validate_envelope,
)
from .service import BackupService, RestoreResult

__all__ = [
    "BackupData",
    "BackupEnvelope",
    "BackupFormat",
    "BackupMetadata",
    "BackupService",
    "FORMAT_PROFILES",
    "FormatProfile",
    "PendingRestore",
    "RecordCounts",
    "RestoreResult",
    "SnapshotAccount",
    "SnapshotBank",
    "SnapshotCategory",
    "SnapshotTransaction",
    "StagedRestore",
    "default_filename",
    "format_for_filename",
    "validate_envelope",
]
