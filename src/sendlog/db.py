"""Database layer for the send log.

Two tables hold the log:
- message_send_log_content: one row per logical send, holding the exact
  serialized content, its group id (if any), timestamp and content hint.
- message_send_log: the fan-out index, one row per (recipient, device) that
  received a content row. Deleting content cascades to its entries.

Connection Management:
    # Every operation gets its own short-lived connection
    with scoped_connection("/path/to/sendlog.db") as conn:
        init_db_with_conn(conn)
        content_id = insert_content(conn, ...)

    # In-memory databases are shared between connections by name
    uri = memory_database_uri("tests")
    anchor = get_connection(uri)  # keeps the database alive

Connections run in autocommit mode. Multi-statement writes use
transaction(), which takes the write lock up front (BEGIN IMMEDIATE).
"""

from __future__ import annotations

import itertools
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator

# Current schema version (increment when the two tables change)
SCHEMA_VERSION = 1

# Milliseconds to wait for a competing writer before failing
BUSY_TIMEOUT_MS = 5000

_memory_db_counter = itertools.count(1)


# --- Connection Management ---


def memory_database_uri(name: str | None = None) -> str:
    """Build a URI for a named in-memory database on the memdb VFS.

    Every connection opened on the same URI sees the same data for as long as
    at least one of them stays open. memdb databases use ordinary file
    locking, so competing writers wait out busy_timeout like they do on a
    file. The name includes the process ID so parallel test processes don't
    interfere.
    """
    if name is None:
        name = str(next(_memory_db_counter))
    # A leading "/" makes the memdb database shared by name
    return f"file:/sendlog_{os.getpid()}_{name}?vfs=memdb"


def is_memory_uri(db_path: str | Path) -> bool:
    return str(db_path).startswith("file:") and "vfs=memdb" in str(db_path)


def get_connection(db_path: str | Path) -> sqlite3.Connection:
    """Open a new database connection.

    Args:
        db_path: Path to a database file, or a URI from memory_database_uri().

    Returns:
        SQLite connection in autocommit mode with foreign keys enforced and
        row_factory set to sqlite3.Row.
    """
    path = str(db_path)
    if path.startswith("file:"):
        conn = sqlite3.connect(path, uri=True, check_same_thread=False, isolation_level=None)
    else:
        conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        # Enable WAL mode for better concurrent read/write performance
        conn.execute("PRAGMA journal_mode=WAL")
    # Set busy timeout to wait for locks instead of failing immediately
    conn.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
    # Enable foreign key enforcement (needed for ON DELETE CASCADE)
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def scoped_connection(db_path: str | Path) -> Iterator[sqlite3.Connection]:
    """Context manager for scoped database connections.

    Creates a new connection that is automatically closed when the context exits.
    """
    conn = get_connection(db_path)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run the enclosed statements as one atomic unit.

    Commits on normal exit and rolls back if the block raises.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    else:
        conn.commit()


# --- Schema ---


SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        description TEXT
    );

    CREATE TABLE IF NOT EXISTS message_send_log_content (
        _id INTEGER PRIMARY KEY,
        group_id BLOB,
        timestamp INTEGER NOT NULL,
        content BLOB NOT NULL,
        content_hint INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS message_send_log (
        _id INTEGER PRIMARY KEY,
        content_id INTEGER NOT NULL REFERENCES message_send_log_content (_id) ON DELETE CASCADE,
        recipient_id INTEGER NOT NULL,
        device_id INTEGER NOT NULL
    );

    CREATE INDEX IF NOT EXISTS mslc_timestamp_index
        ON message_send_log_content (timestamp);
    CREATE INDEX IF NOT EXISTS msl_recipient_index
        ON message_send_log (recipient_id, device_id, content_id);
    CREATE INDEX IF NOT EXISTS msl_content_index
        ON message_send_log (content_id);
"""


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Get the current schema version from the database.

    Returns 0 if the schema has not been created yet.
    """
    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'schema_version'"
    )
    if cursor.fetchone() is None:
        return 0
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] if row and row[0] is not None else 0


def init_db_with_conn(conn: sqlite3.Connection) -> None:
    """Create the send log tables and indexes if they don't exist."""
    conn.executescript(SCHEMA_SQL)
    if get_schema_version(conn) < SCHEMA_VERSION:
        conn.execute(
            "INSERT OR IGNORE INTO schema_version (version, description) VALUES (?, ?)",
            (SCHEMA_VERSION, "Create message send log tables"),
        )


def reset_db(conn: sqlite3.Connection) -> None:
    """Drop and recreate the send log tables (for testing)."""
    conn.executescript("""
        DROP TABLE IF EXISTS message_send_log;
        DROP TABLE IF EXISTS message_send_log_content;
        DROP TABLE IF EXISTS schema_version;
    """)
    init_db_with_conn(conn)


# --- Content Store ---


def insert_content(
    conn: sqlite3.Connection,
    timestamp: int,
    group_id: bytes | None,
    content: bytes,
    content_hint: int,
) -> int | None:
    """Insert one content row. Returns its id, or None if no id was generated."""
    cursor = conn.execute(
        """INSERT INTO message_send_log_content (timestamp, group_id, content, content_hint)
           VALUES (?, ?, ?, ?)""",
        (timestamp, group_id, content, content_hint),
    )
    return cursor.lastrowid


def delete_content_older_than(conn: sqlite3.Connection, cutoff: int) -> int:
    """Delete content sent before cutoff (entries cascade). Returns count deleted."""
    cursor = conn.execute(
        "DELETE FROM message_send_log_content WHERE timestamp < ?",
        (cutoff,),
    )
    return cursor.rowcount


def count_content_older_than(conn: sqlite3.Connection, cutoff: int) -> int:
    row = conn.execute(
        "SELECT COUNT(*) FROM message_send_log_content WHERE timestamp < ?",
        (cutoff,),
    ).fetchone()
    return row[0]


def delete_content_for_group(conn: sqlite3.Connection, timestamp: int, group_id: bytes) -> int:
    """Delete group content sent at timestamp (entries cascade)."""
    cursor = conn.execute(
        "DELETE FROM message_send_log_content WHERE timestamp = ? AND group_id = ?",
        (timestamp, group_id),
    )
    return cursor.rowcount


def delete_content_for_recipient_non_group(
    conn: sqlite3.Connection, timestamp: int, recipient_id: int
) -> int:
    """Delete direct (non-group) content sent at timestamp to a recipient."""
    cursor = conn.execute(
        """DELETE FROM message_send_log_content
           WHERE timestamp = ? AND group_id IS NULL
             AND _id IN (SELECT content_id FROM message_send_log WHERE recipient_id = ?)""",
        (timestamp, recipient_id),
    )
    return cursor.rowcount


def count_content(conn: sqlite3.Connection) -> int:
    return conn.execute("SELECT COUNT(*) FROM message_send_log_content").fetchone()[0]


# --- Fan-out Index ---


def append_entries(
    conn: sqlite3.Connection,
    content_id: int,
    recipient_devices: Iterable[tuple[int, int]],
) -> int:
    """Insert one entry per (recipient_id, device_id) pointing at content_id.

    Duplicates are not rejected. Returns the number of rows written.
    """
    params = [
        (recipient_id, device_id, content_id) for recipient_id, device_id in recipient_devices
    ]
    if not params:
        return 0
    conn.executemany(
        "INSERT INTO message_send_log (recipient_id, device_id, content_id) VALUES (?, ?, ?)",
        params,
    )
    return len(params)


def delete_entries_for_recipient_device(
    conn: sqlite3.Connection,
    timestamps: Iterable[int],
    recipient_id: int,
    device_id: int,
) -> int:
    """Delete a device's entries for content sent at any of the timestamps."""
    cursor = conn.executemany(
        """DELETE FROM message_send_log
           WHERE content_id IN (SELECT _id FROM message_send_log_content WHERE timestamp = ?)
             AND recipient_id = ? AND device_id = ?""",
        [(timestamp, recipient_id, device_id) for timestamp in timestamps],
    )
    return max(cursor.rowcount, 0)


def delete_orphaned_content(conn: sqlite3.Connection) -> int:
    """Delete content rows that no entry references any more."""
    cursor = conn.execute(
        """DELETE FROM message_send_log_content
           WHERE _id NOT IN (SELECT content_id FROM message_send_log)"""
    )
    return cursor.rowcount


def count_entries(conn: sqlite3.Connection) -> int:
    return conn.execute("SELECT COUNT(*) FROM message_send_log").fetchone()[0]


# --- Queries ---


def find_entry_rows(
    conn: sqlite3.Connection,
    recipient_id: int,
    device_id: int,
    timestamp: int,
) -> sqlite3.Cursor:
    """Look up content sent to a device at timestamp.

    Returns the open cursor; rows (group_id, content, content_hint) are
    fetched as the caller iterates.
    """
    return conn.execute(
        """SELECT lc.group_id, lc.content, lc.content_hint
           FROM message_send_log l
           INNER JOIN message_send_log_content lc ON l.content_id = lc._id
           WHERE l.recipient_id = ? AND l.device_id = ? AND lc.timestamp = ?""",
        (recipient_id, device_id, timestamp),
    )


def get_stats(conn: sqlite3.Connection) -> dict:
    """Row counts and timestamp range of the log."""
    row = conn.execute(
        "SELECT COUNT(*), MIN(timestamp), MAX(timestamp) FROM message_send_log_content"
    ).fetchone()
    return {
        "content_rows": row[0],
        "entry_rows": count_entries(conn),
        "oldest_timestamp": row[1],
        "newest_timestamp": row[2],
        "schema_version": get_schema_version(conn),
    }
