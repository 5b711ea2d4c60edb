"""
Backup format registry.

Each format names an encoding profile for the same snapshot data: the file
extension it is saved under, its MIME type and a human description.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from pathlib import Path
from typing import Optional, Union

from expensego.config import APP_NAME, BACKUP_VERSION
from expensego.exceptions import BackupIntegrityError


@dataclass(frozen=True)
class FormatProfile:
    """How one backup format is stored."""

    extension: str
    mime: str
    description: str
    version: str = BACKUP_VERSION


class BackupFormat(str, Enum):
    """Supported backup formats."""

    DEFAULT = "DEFAULT"  # compressed JSON
    ENCRYPTED = "ENCRYPTED"  # compressed JSON sealed with Fernet
    PORTABLE = "PORTABLE"  # plain, human-readable JSON

    @property
    def profile(self) -> FormatProfile:
        return FORMAT_PROFILES[self]


FORMAT_PROFILES = {
    BackupFormat.DEFAULT: FormatProfile(
        extension="backup",
        mime="application/octet-stream",
        description=f"{APP_NAME} Backup",
    ),
    BackupFormat.ENCRYPTED: FormatProfile(
        extension="secure",
        mime="application/octet-stream",
        description=f"{APP_NAME} Encrypted Backup",
    ),
    BackupFormat.PORTABLE: FormatProfile(
        extension="export",
        mime="application/json",
        description=f"{APP_NAME} Portable Export",
    ),
}


def format_for_filename(path: Union[str, Path]) -> BackupFormat:
    """
    Detect the backup format from a file's extension.

    Raises:
        BackupIntegrityError: If the extension matches no known format
    """
    extension = Path(path).suffix.lstrip(".").lower()
    for backup_format, profile in FORMAT_PROFILES.items():
        if profile.extension == extension:
            return backup_format
    supported = ", ".join(f".{p.extension}" for p in FORMAT_PROFILES.values())
    raise BackupIntegrityError(
        f"Invalid backup file type '{Path(path).name}'; supported formats: {supported}"
    )


def default_filename(
    backup_format: BackupFormat = BackupFormat.DEFAULT, on: Optional[date] = None
) -> str:
    """Suggested file name, e.g. ExpenseGo_2024-05-01.backup."""
    on = on or date.today()
    return f"{APP_NAME}_{on.isoformat()}.{backup_format.profile.extension}"
