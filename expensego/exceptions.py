"""
Error types raised by the ledger core.

Every error carries a human-readable message suitable for showing to the
user as-is.
"""


class LedgerError(Exception):
    """Base class for all ledger core errors."""


class SchemaError(LedgerError):
    """Table creation or migration failed."""


class ConstraintViolation(LedgerError):
    """Deleting a default or referenced entity, or a uniqueness clash."""


class DuplicateName(ConstraintViolation):
    """A category with the same (name, type) already exists in the scope."""


class ValidationError(LedgerError, ValueError):
    """Malformed input to a create/update operation."""


class NotFound(LedgerError, LookupError):
    """A referenced bank, account, category or transaction does not exist."""


class StorageError(LedgerError):
    """Reading from or writing to the durable store failed."""


class BackupIntegrityError(ValidationError):
    """A snapshot failed structural validation or exceeded the size ceiling."""
