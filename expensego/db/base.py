"""
Base database module with handle lifecycle, transactions and schema initialization.

Provides the foundation for all database operations in the ExpenseGo ledger.
The SQLite database lives in memory; after every committed write its full
image is serialized into a durable key-value store under a single key, and
it is loaded back from there on open.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Iterator, Optional

from expensego.config import DB_STORE_KEY, SCHEMA_VERSION
from expensego.exceptions import (
    ConstraintViolation,
    LedgerError,
    SchemaError,
    StorageError,
    ValidationError,
)

from .store import KeyValueStore, MemoryKeyValueStore

logger = logging.getLogger(__name__)

# Money columns are declared DECIMAL_TEXT: the name selects the converter
# below and the "TEXT" part keeps SQLite's TEXT affinity, so values are
# stored exactly as written.
sqlite3.register_adapter(Decimal, str)
sqlite3.register_converter("DECIMAL_TEXT", lambda raw: Decimal(raw.decode("utf-8")))

MIN_YEAR = 1900
MAX_YEAR = 9999

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS banks (
        bank_id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL CHECK(length(trim(name)) > 0),
        icon TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ledger_scopes (
        bank_id INTEGER NOT NULL,
        fiscal_year INTEGER NOT NULL,
        created_at TEXT NOT NULL,
        PRIMARY KEY (bank_id, fiscal_year)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS accounts (
        account_id INTEGER PRIMARY KEY AUTOINCREMENT,
        bank_id INTEGER NOT NULL,
        fiscal_year INTEGER NOT NULL,
        name TEXT NOT NULL CHECK(length(trim(name)) > 0),
        type TEXT NOT NULL CHECK(
            type IN ('checking', 'savings', 'credit', 'investment', 'cash', 'other')
        ),
        currency TEXT NOT NULL DEFAULT 'INR',
        initial_balance DECIMAL_TEXT NOT NULL DEFAULT '0',
        current_balance DECIMAL_TEXT NOT NULL DEFAULT '0',
        color_code TEXT,
        icon TEXT,
        notes TEXT,
        is_default INTEGER NOT NULL DEFAULT 0 CHECK(is_default IN (0, 1)),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS categories (
        category_id INTEGER PRIMARY KEY AUTOINCREMENT,
        bank_id INTEGER NOT NULL,
        fiscal_year INTEGER NOT NULL,
        name TEXT NOT NULL CHECK(length(trim(name)) > 0),
        type TEXT NOT NULL CHECK(type IN ('expense', 'income')),
        parent_category_id INTEGER
            REFERENCES categories(category_id) ON DELETE SET NULL,
        color_code TEXT,
        icon TEXT,
        is_default INTEGER NOT NULL DEFAULT 0 CHECK(is_default IN (0, 1)),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        transaction_id INTEGER PRIMARY KEY AUTOINCREMENT,
        bank_id INTEGER NOT NULL,
        fiscal_year INTEGER NOT NULL,
        type TEXT NOT NULL CHECK(type IN ('expense', 'income', 'transfer')),
        amount DECIMAL_TEXT NOT NULL CHECK(CAST(amount AS REAL) > 0),
        date TEXT NOT NULL,
        account_id INTEGER NOT NULL REFERENCES accounts(account_id),
        to_account_id INTEGER REFERENCES accounts(account_id),
        category_id INTEGER REFERENCES categories(category_id),
        description TEXT,
        payment_method TEXT,
        location TEXT,
        notes TEXT,
        tags TEXT NOT NULL DEFAULT '[]',
        attachments TEXT NOT NULL DEFAULT '[]',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        CHECK(to_account_id IS NULL OR to_account_id != account_id)
    )
    """,
]

INDEXES = [
    ("idx_accounts_scope", "accounts", "bank_id, fiscal_year"),
    ("idx_categories_scope", "categories", "bank_id, fiscal_year, type"),
    ("idx_transactions_scope_date", "transactions", "bank_id, fiscal_year, date"),
    ("idx_transactions_account", "transactions", "account_id"),
    ("idx_transactions_to_account", "transactions", "to_account_id"),
    ("idx_transactions_category", "transactions", "category_id"),
]


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def to_decimal(value, field_name: str = "amount") -> Decimal:
    """
    Coerce user input into a finite Decimal.

    Floats go through str() so 0.1 becomes Decimal("0.1") rather than its
    binary expansion.

    Raises:
        ValidationError: If the value is not a finite number
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"Invalid {field_name}: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Invalid {field_name}: {value!r}")
    if not result.is_finite():
        raise ValidationError(f"Invalid {field_name}: {value!r}")
    return result


def to_iso_date(value, field_name: str = "date") -> str:
    """Normalize a date, datetime or ISO string to YYYY-MM-DD."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            return date.fromisoformat(text[:10]).isoformat()
        except ValueError:
            pass
    raise ValidationError(f"Invalid {field_name}: {value!r}")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def has_field(data: dict, name: str) -> bool:
    """Whether input data carries a field, in snake_case or camelCase."""
    return name in data or _camel(name) in data


def pick(data: dict, name: str, default=None):
    """
    Read a field from UI input, accepting snake_case or camelCase keys.

    pick(data, "initial_balance") finds either "initial_balance" or
    "initialBalance".
    """
    if name in data:
        return data[name]
    return data.get(_camel(name), default)


def _migrate_to_v1(conn: sqlite3.Connection):
    """Create the base ledger schema."""
    for statement in SCHEMA_STATEMENTS:
        conn.execute(statement)
    for index_name, table, columns in INDEXES:
        conn.execute(f"CREATE INDEX IF NOT EXISTS {index_name} ON {table}({columns})")
    # At most one default account per (bank, year) scope
    conn.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS idx_accounts_single_default
        ON accounts(bank_id, fiscal_year) WHERE is_default = 1
    """)


MIGRATIONS = {
    1: _migrate_to_v1,
}


class LedgerDatabase:
    """
    The single embedded database handle.

    Owns the SQLite connection, the atomic transaction boundary, and
    persistence of the database image to a durable store. One instance is
    shared by every repository of a ledger; tests build isolated instances
    over a MemoryKeyValueStore.
    """

    def __init__(self, store: Optional[KeyValueStore] = None, key: str = DB_STORE_KEY):
        """
        Initialize the database handle (does not open it).

        Args:
            store: Durable store for the database image. Defaults to memory.
            key: Key under which the image is stored
        """
        self.store = store if store is not None else MemoryKeyValueStore()
        self.key = key
        self._conn: Optional[sqlite3.Connection] = None
        self._depth = 0
        self._savepoint_seq = 0
        self._changes_at_begin = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    @property
    def connection(self) -> sqlite3.Connection:
        """The live connection, opening the database on first use."""
        if self._conn is None:
            self.open()
        return self._conn

    def open(self) -> "LedgerDatabase":
        """
        Open the database. Calling open on an open database does nothing.

        Loads the persisted image if the store has one, otherwise starts an
        empty database. Pending schema migrations are applied and the result
        is persisted.

        Raises:
            StorageError: If the image cannot be read or loaded
            SchemaError: If a migration fails
        """
        if self._conn is not None:
            return self

        image = self.store.get(self.key)
        conn = self._connect()
        if image:
            try:
                conn.deserialize(image)
            except sqlite3.Error as e:
                conn.close()
                logger.error(f"Failed to load database image: {e}", exc_info=True)
                raise StorageError(f"Stored database image is unreadable: {e}")
            logger.info(f"Loaded database image ({len(image)} bytes)")
        else:
            logger.info("No stored database image; starting a new database")

        conn.execute("PRAGMA foreign_keys = ON")
        self._conn = conn
        self._depth = 0

        try:
            self._apply_migrations()
        except sqlite3.Error as e:
            self._conn = None
            conn.close()
            logger.error(f"Stored database image is corrupt: {e}", exc_info=True)
            raise StorageError(f"Stored database image is unreadable: {e}")
        except Exception:
            self._conn = None
            conn.close()
            raise
        return self

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            ":memory:",
            detect_types=sqlite3.PARSE_DECLTYPES,
            isolation_level=None,
        )
        conn.row_factory = sqlite3.Row
        return conn

    def close(self):
        """Discard the handle. Uncommitted work is lost."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self._depth = 0
            logger.debug("Database handle closed")

    def clear_all_data(self):
        """
        Wipe the ledger: close and discard the handle, delete the stored
        image, and open a fresh empty database in its place.
        """
        if self._depth:
            raise StorageError("Cannot clear data while a transaction is open")
        self.close()
        self.store.delete(self.key)
        logger.warning("All ledger data cleared")
        self.open()

    # =========================================================================
    # Schema
    # =========================================================================

    def get_schema_version(self) -> int:
        conn = self.connection
        conn.execute("CREATE TABLE IF NOT EXISTS database_info (version INTEGER NOT NULL)")
        row = conn.execute("SELECT version FROM database_info LIMIT 1").fetchone()
        return row[0] if row else 0

    def _apply_migrations(self):
        current = self.get_schema_version()
        if current >= SCHEMA_VERSION:
            logger.debug(f"Schema is current (version {current})")
            return

        try:
            with self.transaction() as conn:
                for version in range(current + 1, SCHEMA_VERSION + 1):
                    MIGRATIONS[version](conn)
                    logger.info(f"Applied schema migration {version}")
                conn.execute("DELETE FROM database_info")
                conn.execute(
                    "INSERT INTO database_info (version) VALUES (?)", (SCHEMA_VERSION,)
                )
        except LedgerError:
            raise
        except Exception as e:
            logger.error(f"Schema migration failed: {e}", exc_info=True)
            raise SchemaError(f"Schema migration failed: {e}")

    def ensure_schema(self, conn: sqlite3.Connection):
        """Re-run the idempotent base schema statements."""
        try:
            _migrate_to_v1(conn)
        except sqlite3.Error as e:
            logger.error(f"Schema creation failed: {e}", exc_info=True)
            raise SchemaError(f"Failed to create ledger tables: {e}")

    def get_schema_sql(self) -> list[str]:
        """Raw CREATE TABLE statements of every user table."""
        rows = self.connection.execute("""
            SELECT sql FROM sqlite_master
            WHERE type = 'table' AND name NOT LIKE 'sqlite_%' AND sql IS NOT NULL
            ORDER BY name
        """).fetchall()
        return [row[0] for row in rows]

    # =========================================================================
    # Transactions and persistence
    # =========================================================================

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Atomic unit of work.

        The outermost level issues BEGIN/COMMIT and persists the image after
        a commit that changed anything; nested levels use savepoints. Any
        exception rolls the level back and propagates. Raw sqlite errors are
        wrapped in StorageError.
        """
        conn = self.connection
        outermost = self._depth == 0
        savepoint = None

        if outermost:
            conn.execute("BEGIN IMMEDIATE")
            self._changes_at_begin = conn.total_changes
        else:
            self._savepoint_seq += 1
            savepoint = f"sp_{self._savepoint_seq}"
            conn.execute(f"SAVEPOINT {savepoint}")

        self._depth += 1
        try:
            yield conn
        except BaseException as e:
            self._depth -= 1
            self._rollback(conn, savepoint)
            if isinstance(e, sqlite3.IntegrityError):
                logger.error(f"Integrity error, rolled back: {e}", exc_info=True)
                raise ConstraintViolation(f"Constraint failed: {e}") from e
            if isinstance(e, sqlite3.Error):
                logger.error(f"Database error, rolled back: {e}", exc_info=True)
                raise StorageError(f"Database operation failed: {e}") from e
            raise
        else:
            self._depth -= 1
            if savepoint:
                conn.execute(f"RELEASE SAVEPOINT {savepoint}")
                return

            changed = conn.total_changes != self._changes_at_begin
            conn.execute("COMMIT")
            if changed:
                self._persist_after_commit()

    def _rollback(self, conn: sqlite3.Connection, savepoint: Optional[str]):
        try:
            if savepoint:
                conn.execute(f"ROLLBACK TO SAVEPOINT {savepoint}")
                conn.execute(f"RELEASE SAVEPOINT {savepoint}")
            else:
                conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.error(f"Rollback failed: {e}", exc_info=True)

    def _persist_after_commit(self):
        try:
            self.persist()
        except StorageError:
            # Memory must never run ahead of the durable copy
            logger.error("Persist failed after commit; reloading stored image")
            self.close()
            self.open()
            raise

    def persist(self):
        """
        Write the current database image to the durable store.

        Raises:
            StorageError: If serialization or the store write fails
        """
        if self._conn is None:
            raise StorageError("Database is not open")
        try:
            image = self._conn.serialize()
        except sqlite3.Error as e:
            logger.error(f"Failed to serialize database: {e}", exc_info=True)
            raise StorageError(f"Failed to serialize database: {e}")
        self.store.put(self.key, image)
        logger.debug(f"Persisted database image ({len(image)} bytes)")


class BaseRepository:
    """
    Base repository class sharing one LedgerDatabase.

    Provides scope validation and the transaction helper for all
    repository classes.
    """

    def __init__(self, database: LedgerDatabase):
        """
        Initialize the base repository.

        Args:
            database: The shared database handle
        """
        self.db = database

    def _transaction(self):
        return self.db.transaction()

    @staticmethod
    def _validate_scope(bank_id: int, year: int):
        """
        Check a (bank, year) scope identifier.

        Raises:
            ValidationError: If either part is not a sensible integer
        """
        if isinstance(bank_id, bool) or not isinstance(bank_id, int) or bank_id <= 0:
            raise ValidationError(f"Invalid bank_id: {bank_id!r}")
        if (
            isinstance(year, bool)
            or not isinstance(year, int)
            or not MIN_YEAR <= year <= MAX_YEAR
        ):
            raise ValidationError(f"Invalid year: {year!r}")

    @staticmethod
    def _validate_id(value: int, field_name: str):
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationError(f"Invalid {field_name}: {value!r}")
