from .backup import (
    BackupFormat,
    BackupService,
    PendingRestore,
    RestoreResult,
)

__all__ = [
    "BackupFormat",
    "BackupService",
    "PendingRestore",
    "RestoreResult",
]
