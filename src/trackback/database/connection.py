"""SQLite connection helpers for the item and match stores.

Each operation opens its own short-lived connection so repositories can be
shared across threads. Writers take ``BEGIN IMMEDIATE`` so that a
check-then-write sequence runs as a single-writer transaction.
"""

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from loguru import logger

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

# Applied in order; the numeric prefix is the schema version
MIGRATIONS = [
    "001_create_items_and_matches.sql",
    "002_add_match_audit_columns.sql",
]

# Seconds a connection waits on a locked database before raising
BUSY_TIMEOUT_SECONDS = 30.0

_init_lock = threading.Lock()
_initialized: set[Path] = set()


def connect(db_path: str | Path, timeout: float = BUSY_TIMEOUT_SECONDS) -> sqlite3.Connection:
    """Open a connection in autocommit mode with named-column rows."""
    conn = sqlite3.connect(str(db_path), timeout=timeout, isolation_level=None)
    conn.row_factory = sqlite3.Row  # Access columns by name
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def open_connection(db_path: str | Path) -> Iterator[sqlite3.Connection]:
    """Get database connection with context manager.

    Yields:
        sqlite3.Connection: Database connection
    """
    conn = connect(db_path)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def immediate_transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run a block inside ``BEGIN IMMEDIATE`` ... ``COMMIT``, rolling back on error."""
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def initialize_database(db_path: str | Path) -> Path:
    """Create the database directory and apply pending migrations.

    Safe to call repeatedly and from several repositories sharing one file.

    Returns:
        Resolved database path
    """
    path = Path(db_path).expanduser().resolve()
    with _init_lock:
        if path in _initialized and path.exists():
            return path

        path.parent.mkdir(parents=True, exist_ok=True)
        with open_connection(path) as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            _run_migrations(conn, path)

        _initialized.add(path)
    return path


def _current_version(conn: sqlite3.Connection) -> int:
    row = conn.execute("""
        SELECT name FROM sqlite_master
        WHERE type='table' AND name='schema_version'
    """).fetchone()
    if not row:
        return 0
    result = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return result[0] if result and result[0] is not None else 0


def _run_migrations(conn: sqlite3.Connection, path: Path) -> None:
    """Run database migrations.

    Args:
        conn: Database connection
        path: Database path (for logging)
    """
    current_version = _current_version(conn)

    for migration_file_name in MIGRATIONS:
        migration_num = int(migration_file_name.split("_")[0])
        if migration_num <= current_version:
            logger.debug(f"Skipping migration {migration_file_name} (already applied)")
            continue

        migration_file = MIGRATIONS_DIR / migration_file_name
        if not migration_file.exists():
            raise FileNotFoundError(f"Migration file not found: {migration_file}")

        logger.info(f"Applying migration {migration_file_name} to {path}...")
        conn.executescript(migration_file.read_text(encoding="utf-8"))
        logger.info(f"Applied migration {migration_file_name}")


def to_iso(value: datetime | None) -> str | None:
    """Serialize a datetime as a fixed-width UTC ISO string."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def now_iso() -> str:
    """Return current UTC timestamp as ISO format string."""
    return to_iso(datetime.now(timezone.utc))
