"""
Durable key-value storage for the serialized database image.

The ledger keeps its SQLite database in memory and persists the full image
under a single key after every committed write. Any backend that can do an
atomic put/get of a byte string satisfies the contract.
"""

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from expensego.exceptions import StorageError

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """
    Abstract interface for the durable store.

    Implementations must make `put` atomic: a reader never observes a
    partially written value.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """
        Load the value stored under a key.

        Args:
            key: Logical key

        Returns:
            The stored bytes, or None if the key is absent

        Raises:
            StorageError: If the read fails
        """

    @abstractmethod
    def put(self, key: str, value: bytes) -> None:
        """
        Store a value under a key, replacing any previous value.

        Raises:
            StorageError: If the write fails
        """

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key. Removing an absent key is not an error."""


class MemoryKeyValueStore(KeyValueStore):
    """Process-local store, used for tests and throwaway ledgers."""

    def __init__(self):
        self._data: dict[str, bytes] = {}

    def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    def put(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)


class FileKeyValueStore(KeyValueStore):
    """
    Store that keeps one file per key inside a directory.

    Writes go to a temporary file in the same directory and are moved into
    place with os.replace, so a crash mid-write leaves the old value intact.
    """

    def __init__(self, directory: Path):
        """
        Initialize the file store.

        Args:
            directory: Directory holding the key files (created if missing)
        """
        self.directory = Path(directory)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            logger.debug(f"Store directory ensured: {self.directory}")
        except OSError as e:
            logger.error(f"Failed to create store directory: {e}", exc_info=True)
            raise StorageError(f"Cannot create store directory {self.directory}: {e}")

    def _path_for(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise StorageError(f"Invalid store key: {key!r}")
        return self.directory / f"{key}.bin"

    def get(self, key: str) -> Optional[bytes]:
        path = self._path_for(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error(f"Failed to read key '{key}': {e}", exc_info=True)
            raise StorageError(f"Failed to read '{key}' from store: {e}")

    def put(self, key: str, value: bytes) -> None:
        path = self._path_for(key)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(value)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, path)
            logger.debug(f"Stored {len(value)} bytes under '{key}'")
        except OSError as e:
            logger.error(f"Failed to write key '{key}': {e}", exc_info=True)
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise StorageError(f"Failed to write '{key}' to store: {e}")

    def delete(self, key: str) -> None:
        path = self._path_for(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to delete key '{key}': {e}", exc_info=True)
            raise StorageError(f"Failed to delete '{key}' from store: {e}")
