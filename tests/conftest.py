"""
Shared fixtures for the ledger core tests.

Every test gets its own in-memory store and database handle, so tests never
share state or touch the filesystem unless they ask for tmp_path.
"""

import pytest

from expensego.db import LedgerDatabase, LedgerRepository, MemoryKeyValueStore
from expensego.services.backup import BackupService, PendingRestore
from tests.helpers import YEAR


@pytest.fixture
def store():
    return MemoryKeyValueStore()


@pytest.fixture
def repo(store):
    repository = LedgerRepository(LedgerDatabase(store))
    yield repository
    repository.close()


@pytest.fixture
def bank(repo):
    """A bank with a seeded scope for YEAR."""
    return repo.create_bank("Home", icon="🏠", year=YEAR)


@pytest.fixture
def scope(bank):
    return bank.id, YEAR


@pytest.fixture
def backup_service(repo):
    return BackupService(repo)


@pytest.fixture
def pending(store):
    return PendingRestore(store)
