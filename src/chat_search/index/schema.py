"""SQLite schema for the thread/message FTS5 search index.

The schema uses:
- threads, messages: primary tables holding the canonical records
- threads_fts, messages_fts: standalone FTS5 tables (one document per row)
- triggers: mirror every insert/update/delete of a primary row into its
  FTS5 document inside the same transaction
- schema_version: tracks which index layout the database carries

IMPORTANT: Soft-deleting a thread (setting deleted_at) keeps its FTS5
document. Visibility is filtered at query time, so undelete is a plain
update with no extra index work.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)

# Current schema version; bump to force index recreation on open
SCHEMA_VERSION = 1

# Default PRAGMAs for all connections (centralized to avoid drift)
DEFAULT_PRAGMAS = {
    "journal_mode": "WAL",  # Readers keep the last committed index
    "synchronous": "NORMAL",
    "busy_timeout": 5000,  # Wait up to 5s for locks, then fail
    "foreign_keys": "ON",
}

THREAD_INDEX_TABLE = "threads_fts"
MESSAGE_INDEX_TABLE = "messages_fts"

TABLES = ["threads", "messages", THREAD_INDEX_TABLE, MESSAGE_INDEX_TABLE]

TRIGGERS = [
    "threads_fts_insert",
    "threads_fts_update",
    "threads_fts_delete",
    "messages_fts_insert",
    "messages_fts_update",
    "messages_fts_delete",
]

# Columns a caller may change after creation
THREAD_MUTABLE_FIELDS = {
    "title",
    "model_id",
    "owner_id",
    "pinned_at",
    "last_message_at",
    "deleted_at",
}
MESSAGE_MUTABLE_FIELDS = {
    "content",
    "role",
    "model_id",
    "owner_id",
    "prompt_tokens",
    "completion_tokens",
    "total_tokens",
    "input_neurons",
    "output_neurons",
    "total_neurons",
    "provider_message_id",
    "pinned_at",
    "feedback",
}

PRIMARY_SCHEMA = (
    """CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
)""",
    """CREATE TABLE IF NOT EXISTS threads (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    model_id TEXT,
    owner_id TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    pinned_at DATETIME,
    last_message_at DATETIME,
    deleted_at DATETIME              -- NULL = live
)""",
    """CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    thread_id TEXT NOT NULL REFERENCES threads(id),
    model_id TEXT,
    role TEXT NOT NULL,              -- system, user, assistant, tool, ...
    owner_id TEXT,
    content TEXT NOT NULL,
    prompt_tokens INTEGER DEFAULT 0,
    completion_tokens INTEGER DEFAULT 0,
    total_tokens INTEGER DEFAULT 0,
    input_neurons INTEGER DEFAULT 0,
    output_neurons INTEGER DEFAULT 0,
    total_neurons INTEGER DEFAULT 0,
    provider_message_id TEXT,
    pinned_at DATETIME,
    feedback TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
)""",
    "CREATE INDEX IF NOT EXISTS idx_messages_thread_id ON messages(thread_id)",
    "CREATE INDEX IF NOT EXISTS idx_threads_owner_id ON threads(owner_id)",
)

# Standalone FTS5 tables: only the searched text is tokenized, the
# UNINDEXED columns carry the join keys and the role filter
INDEX_SCHEMA = (
    f"DROP TABLE IF EXISTS {THREAD_INDEX_TABLE}",
    f"DROP TABLE IF EXISTS {MESSAGE_INDEX_TABLE}",
    f"""CREATE VIRTUAL TABLE {THREAD_INDEX_TABLE} USING fts5(
    id UNINDEXED,
    title
)""",
    f"""CREATE VIRTUAL TABLE {MESSAGE_INDEX_TABLE} USING fts5(
    id UNINDEXED,
    thread_id UNINDEXED,
    content,
    role UNINDEXED
)""",
)

# Update triggers replace the document keyed by the old id, so a thread
# whose document was dropped by a rebuild (while soft-deleted) gets it
# back on the next update.
TRIGGER_SCHEMA = tuple(
    f"DROP TRIGGER IF EXISTS {name}" for name in TRIGGERS
) + (
    """CREATE TRIGGER threads_fts_insert AFTER INSERT ON threads BEGIN
    INSERT INTO threads_fts(id, title) VALUES (new.id, new.title);
END""",
    """CREATE TRIGGER threads_fts_update AFTER UPDATE ON threads BEGIN
    DELETE FROM threads_fts WHERE id = old.id;
    INSERT INTO threads_fts(id, title) VALUES (new.id, new.title);
END""",
    """CREATE TRIGGER threads_fts_delete AFTER DELETE ON threads BEGIN
    DELETE FROM threads_fts WHERE id = old.id;
END""",
    """CREATE TRIGGER messages_fts_insert AFTER INSERT ON messages BEGIN
    INSERT INTO messages_fts(id, thread_id, content, role)
    VALUES (new.id, new.thread_id, new.content, new.role);
END""",
    """CREATE TRIGGER messages_fts_update AFTER UPDATE ON messages BEGIN
    DELETE FROM messages_fts WHERE id = old.id;
    INSERT INTO messages_fts(id, thread_id, content, role)
    VALUES (new.id, new.thread_id, new.content, new.role);
END""",
    """CREATE TRIGGER messages_fts_delete AFTER DELETE ON messages BEGIN
    DELETE FROM messages_fts WHERE id = old.id;
END""",
)

# Centralized SQL for primary inserts (used by sync and seed)
INSERT_THREAD_SQL = """INSERT INTO threads
    (id, title, model_id, owner_id, pinned_at, last_message_at, deleted_at,
     created_at, updated_at)
    VALUES (?, ?, ?, ?, ?, ?, ?,
            COALESCE(?, CURRENT_TIMESTAMP), COALESCE(?, CURRENT_TIMESTAMP))"""

INSERT_MESSAGE_SQL = """INSERT INTO messages
    (id, thread_id, model_id, role, owner_id, content,
     prompt_tokens, completion_tokens, total_tokens,
     input_neurons, output_neurons, total_neurons,
     provider_message_id, pinned_at, feedback, created_at)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?,
            COALESCE(?, CURRENT_TIMESTAMP))"""

# Upserts go through the UPDATE path on conflict, so the update trigger
# (not a REPLACE delete) keeps the document in step
UPSERT_THREAD_SQL = (
    INSERT_THREAD_SQL
    + """
    ON CONFLICT(id) DO UPDATE SET
        title = excluded.title,
        model_id = excluded.model_id,
        owner_id = excluded.owner_id,
        updated_at = CURRENT_TIMESTAMP"""
)

UPSERT_MESSAGE_SQL = (
    INSERT_MESSAGE_SQL
    + """
    ON CONFLICT(id) DO UPDATE SET
        thread_id = excluded.thread_id,
        role = excluded.role,
        owner_id = excluded.owner_id,
        content = excluded.content"""
)


def thread_to_row(thread: dict) -> tuple:
    """
    Convert a thread dict to a row tuple matching INSERT_THREAD_SQL.

    Args:
        thread: Thread dict; ``title`` is required, ``id`` defaults to a
            new UUID4 and timestamps default to the current time

    Returns:
        Tuple in INSERT_THREAD_SQL parameter order
    """
    return (
        thread.get("id") or str(uuid.uuid4()),
        thread["title"],
        thread.get("model_id"),
        thread.get("owner_id"),
        thread.get("pinned_at"),
        thread.get("last_message_at"),
        thread.get("deleted_at"),
        thread.get("created_at"),
        thread.get("updated_at"),
    )


def message_to_row(message: dict) -> tuple:
    """
    Convert a message dict to a row tuple matching INSERT_MESSAGE_SQL.

    Args:
        message: Message dict; ``thread_id``, ``role`` and ``content`` are
            required, counters default to 0

    Returns:
        Tuple in INSERT_MESSAGE_SQL parameter order
    """
    return (
        message.get("id") or str(uuid.uuid4()),
        message["thread_id"],
        message.get("model_id"),
        message["role"],
        message.get("owner_id"),
        message["content"],
        message.get("prompt_tokens", 0),
        message.get("completion_tokens", 0),
        message.get("total_tokens", 0),
        message.get("input_neurons", 0),
        message.get("output_neurons", 0),
        message.get("total_neurons", 0),
        message.get("provider_message_id"),
        message.get("pinned_at"),
        message.get("feedback"),
        message.get("created_at"),
    )


def create_connection(db_path: Path | str) -> sqlite3.Connection:
    """
    Create a database connection with standard configuration.

    The connection runs in autocommit mode (isolation_level=None) so every
    unit of work opens its own explicit transaction via transaction().

    Args:
        db_path: Path to the SQLite database file (or ":memory:")

    Returns:
        Configured connection with WAL mode, foreign keys and Row factory
    """
    conn = sqlite3.connect(
        db_path, check_same_thread=False, isolation_level=None
    )
    conn.row_factory = sqlite3.Row

    for pragma, value in DEFAULT_PRAGMAS.items():
        conn.execute(f"PRAGMA {pragma}={value}")

    return conn


@contextmanager
def transaction(
    conn: sqlite3.Connection, *, immediate: bool = False
) -> Iterator[sqlite3.Connection]:
    """
    Run a block as one atomic unit of work.

    Args:
        conn: Connection in autocommit mode (see create_connection)
        immediate: Take the write lock up front (BEGIN IMMEDIATE) so the
            block serializes against other writers

    Yields:
        The same connection

    Rolls back on any exception, including a failed COMMIT (deferred
    constraint, disk full), and re-raises it.
    """
    conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
    try:
        yield conn
        conn.execute("COMMIT")
    except BaseException:
        # SQLite may already have rolled back (e.g. SQLITE_FULL)
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise


def get_schema_sql() -> str:
    """Return the complete schema creation SQL as one script."""
    statements = PRIMARY_SCHEMA + INDEX_SCHEMA + TRIGGER_SCHEMA
    return ";\n\n".join(statements) + ";\n"


def create_schema(conn: sqlite3.Connection) -> None:
    """
    Create primary tables if absent and recreate the index structures.

    Primary data is never touched. The FTS5 tables and their triggers are
    dropped and recreated empty, so the caller must repopulate them
    (populate_index) inside the same transaction.
    """
    for statement in PRIMARY_SCHEMA + INDEX_SCHEMA + TRIGGER_SCHEMA:
        conn.execute(statement)


def populate_index(conn: sqlite3.Connection) -> tuple[int, int]:
    """
    Discard every FTS5 document and regenerate them from the primary tables.

    Only live threads (deleted_at IS NULL) get a document; every message
    does. Must run inside a transaction.

    Returns:
        Tuple of (thread documents, message documents) written
    """
    conn.execute(f"DELETE FROM {THREAD_INDEX_TABLE}")
    conn.execute(f"DELETE FROM {MESSAGE_INDEX_TABLE}")

    conn.execute(
        f"INSERT INTO {THREAD_INDEX_TABLE}(id, title) "
        "SELECT id, title FROM threads WHERE deleted_at IS NULL"
    )
    conn.execute(
        f"INSERT INTO {MESSAGE_INDEX_TABLE}(id, thread_id, content, role) "
        "SELECT id, thread_id, content, role FROM messages"
    )

    threads = conn.execute(
        f"SELECT COUNT(*) FROM {THREAD_INDEX_TABLE}"
    ).fetchone()[0]
    messages = conn.execute(
        f"SELECT COUNT(*) FROM {MESSAGE_INDEX_TABLE}"
    ).fetchone()[0]
    return threads, messages


def get_schema_version(conn: sqlite3.Connection) -> int:
    """Return the recorded schema version, or 0 for an uninitialized DB."""
    sql = "SELECT name FROM sqlite_master "
    sql += "WHERE type='table' AND name='schema_version'"
    if conn.execute(sql).fetchone() is None:
        return 0

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] if row and row[0] is not None else 0


def set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    """Record the schema version (inside the caller's transaction)."""
    conn.execute("DELETE FROM schema_version")
    conn.execute(
        "INSERT INTO schema_version (version) VALUES (?)", (version,)
    )


def init_database(db_path: Path) -> sqlite3.Connection:
    """
    Open the database, creating or upgrading the schema when needed.

    A fresh database, or one recorded at an older SCHEMA_VERSION, gets
    its index structures recreated and repopulated from the primary
    tables in one immediate transaction. Existing primary rows survive.

    Args:
        db_path: Path to the SQLite database file

    Returns:
        Open database connection

    Security:
        Sets file permissions to 0600 (owner read/write only) on new
        databases since they hold conversation content.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)

    is_new_db = not db_path.exists()

    conn = create_connection(db_path)

    # Must be done after sqlite3.connect() creates the file
    if is_new_db:
        try:
            os.chmod(db_path, 0o600)
            logger.debug("Set secure permissions (0600) on %s", db_path)
        except OSError as e:
            logger.warning(
                "Could not set secure permissions on %s: %s", db_path, e
            )

    current_version = get_schema_version(conn)
    if current_version < SCHEMA_VERSION:
        if current_version == 0:
            logger.info(
                "Creating database schema (version %d)", SCHEMA_VERSION
            )
        else:
            logger.info(
                "Migrating index from version %d to %d",
                current_version,
                SCHEMA_VERSION,
            )

        with transaction(conn, immediate=True):
            create_schema(conn)
            threads, messages = populate_index(conn)
            set_schema_version(conn, SCHEMA_VERSION)

        logger.info(
            "Index populated: %d threads, %d messages", threads, messages
        )

    return conn


def optimize_fts_index(conn: sqlite3.Connection) -> None:
    """
    Merge FTS5 b-tree segments for better query performance.

    Call after bulk loads (seeding, rebuild).
    """
    with transaction(conn):
        for table in (THREAD_INDEX_TABLE, MESSAGE_INDEX_TABLE):
            conn.execute(f"INSERT INTO {table}({table}) VALUES('optimize')")
