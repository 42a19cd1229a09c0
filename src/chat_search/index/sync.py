"""Write path that keeps the FTS5 documents in step with primary records.

Every write below runs as one transaction. The primary statement fires
the sync trigger (see schema.TRIGGER_SCHEMA), so the index write lands
in the same unit of work: either both sides commit or neither does.

Also provides the recovery tools:
- rebuild_index(): regenerate every document from the primary tables
- get_index_inventory(): snapshot of the index contents
- check_consistency(): compare primary rows with their documents
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from ..errors import ConsistencyError, StoreError, ValidationError
from .schema import (
    INSERT_MESSAGE_SQL,
    INSERT_THREAD_SQL,
    MESSAGE_INDEX_TABLE,
    MESSAGE_MUTABLE_FIELDS,
    THREAD_INDEX_TABLE,
    THREAD_MUTABLE_FIELDS,
    message_to_row,
    populate_index,
    thread_to_row,
    transaction,
)

logger = logging.getLogger(__name__)

# Error text that points at the index side of a write
_INDEX_MARKERS = (THREAD_INDEX_TABLE, MESSAGE_INDEX_TABLE, "fts5")


@dataclass
class RebuildResult:
    """Documents written by a full index rebuild."""

    threads: int
    messages: int


@dataclass
class IndexInventory:
    """Contents of both FTS5 tables, as sets (order-independent)."""

    threads: set[tuple[str, str]]
    messages: set[tuple[str, str, str, str]]


@dataclass
class ConsistencyReport:
    """Differences between primary records and their index documents."""

    missing_threads: list[str] = field(default_factory=list)
    stale_threads: list[str] = field(default_factory=list)
    orphan_threads: list[str] = field(default_factory=list)
    duplicate_threads: list[str] = field(default_factory=list)
    missing_messages: list[str] = field(default_factory=list)
    stale_messages: list[str] = field(default_factory=list)
    orphan_messages: list[str] = field(default_factory=list)
    duplicate_messages: list[str] = field(default_factory=list)

    @property
    def issue_count(self) -> int:
        return sum(len(ids) for ids in vars(self).values())

    @property
    def is_consistent(self) -> bool:
        return self.issue_count == 0


def _is_index_failure(error: sqlite3.Error) -> bool:
    message = str(error).lower()
    return any(marker in message for marker in _INDEX_MARKERS)


@contextmanager
def unit_of_work(
    conn: sqlite3.Connection,
    operation: str,
    entity_id: str | None = None,
) -> Iterator[sqlite3.Connection]:
    """
    Run a primary write (and its trigger-driven index write) atomically.

    Translates SQLite failures into the search error taxonomy after the
    transaction has been rolled back.

    Args:
        conn: Connection from schema.create_connection()
        operation: Operation name for logs and errors
        entity_id: Id of the affected record, if any

    Raises:
        ValidationError: A constraint rejected the write (duplicate id,
            unknown thread, NULL in a required column)
        ConsistencyError: The index side of the write failed
        StoreError: Any other SQLite failure
    """
    try:
        with transaction(conn):
            yield conn
    except sqlite3.IntegrityError as e:
        logger.warning("%s rejected for %s: %s", operation, entity_id, e)
        raise ValidationError(
            f"{operation} rejected: {e}", operation, entity_id
        ) from e
    except sqlite3.Error as e:
        if _is_index_failure(e):
            logger.error(
                "%s failed on the search index for %s, rolled back: %s",
                operation,
                entity_id,
                e,
            )
            raise ConsistencyError(
                f"{operation} could not update the search index: {e}",
                operation,
                entity_id,
            ) from e
        logger.error("%s failed for %s: %s", operation, entity_id, e)
        raise StoreError(
            f"{operation} failed: {e}", operation, entity_id
        ) from e


def _require(record: dict, keys: tuple[str, ...], operation: str) -> None:
    missing = [key for key in keys if record.get(key) is None]
    if missing:
        raise ValidationError(
            f"{operation} requires {', '.join(missing)}",
            operation,
            record.get("id"),
        )


def _check_fields(
    fields: dict, allowed: set[str], operation: str, entity_id: str
) -> None:
    unknown = sorted(set(fields) - allowed)
    if unknown:
        raise ValidationError(
            f"{operation} cannot change {', '.join(unknown)}; "
            f"allowed fields: {', '.join(sorted(allowed))}",
            operation,
            entity_id,
        )


# ─────────────────────────────────────────────────────────────────
# Threads
# ─────────────────────────────────────────────────────────────────


def create_thread(conn: sqlite3.Connection, thread: dict) -> str:
    """
    Insert a thread; its index document is created by the insert trigger.

    Args:
        conn: Database connection
        thread: Thread dict (``title`` required, ``id`` optional)

    Returns:
        The thread id
    """
    _require(thread, ("title",), "create_thread")
    row = thread_to_row(thread)
    thread_id = row[0]

    with unit_of_work(conn, "create_thread", thread_id):
        conn.execute(INSERT_THREAD_SQL, row)

    logger.debug("Created thread %s", thread_id)
    return thread_id


def update_thread(conn: sqlite3.Connection, thread_id: str, **fields) -> bool:
    """
    Update thread columns and bump ``updated_at``.

    Returns:
        True if the thread exists and was updated
    """
    _check_fields(fields, THREAD_MUTABLE_FIELDS, "update_thread", thread_id)

    assignments = [f"{name} = ?" for name in fields]
    assignments.append("updated_at = CURRENT_TIMESTAMP")
    params = [*fields.values(), thread_id]

    with unit_of_work(conn, "update_thread", thread_id):
        cursor = conn.execute(
            f"UPDATE threads SET {', '.join(assignments)} WHERE id = ?",
            params,
        )

    return cursor.rowcount > 0


def soft_delete_thread(conn: sqlite3.Connection, thread_id: str) -> bool:
    """
    Mark a thread deleted.

    The index document stays; search filters on ``deleted_at``.

    Returns:
        True if a live thread was marked deleted
    """
    with unit_of_work(conn, "soft_delete_thread", thread_id):
        cursor = conn.execute(
            "UPDATE threads SET deleted_at = CURRENT_TIMESTAMP, "
            "updated_at = CURRENT_TIMESTAMP "
            "WHERE id = ? AND deleted_at IS NULL",
            (thread_id,),
        )

    if cursor.rowcount:
        logger.debug("Soft-deleted thread %s", thread_id)
    return cursor.rowcount > 0


def restore_thread(conn: sqlite3.Connection, thread_id: str) -> bool:
    """Clear ``deleted_at`` on a soft-deleted thread."""
    with unit_of_work(conn, "restore_thread", thread_id):
        cursor = conn.execute(
            "UPDATE threads SET deleted_at = NULL, "
            "updated_at = CURRENT_TIMESTAMP "
            "WHERE id = ? AND deleted_at IS NOT NULL",
            (thread_id,),
        )

    return cursor.rowcount > 0


def delete_thread(conn: sqlite3.Connection, thread_id: str) -> bool:
    """
    Hard-delete a thread together with its messages.

    Both primary tables and both index tables change in one transaction.

    Returns:
        True if the thread existed
    """
    with unit_of_work(conn, "delete_thread", thread_id):
        removed = conn.execute(
            "DELETE FROM messages WHERE thread_id = ?", (thread_id,)
        ).rowcount
        cursor = conn.execute("DELETE FROM threads WHERE id = ?", (thread_id,))

    if cursor.rowcount:
        logger.debug(
            "Deleted thread %s and %d messages", thread_id, removed
        )
    return cursor.rowcount > 0


# ─────────────────────────────────────────────────────────────────
# Messages
# ─────────────────────────────────────────────────────────────────


def create_message(conn: sqlite3.Connection, message: dict) -> str:
    """
    Insert a message; the owning thread must exist.

    Args:
        conn: Database connection
        message: Message dict (``thread_id``, ``role``, ``content``
            required)

    Returns:
        The message id
    """
    _require(message, ("thread_id", "role", "content"), "create_message")
    row = message_to_row(message)
    message_id = row[0]

    with unit_of_work(conn, "create_message", message_id):
        conn.execute(INSERT_MESSAGE_SQL, row)

    logger.debug("Created message %s in thread %s", message_id, row[1])
    return message_id


def update_message(
    conn: sqlite3.Connection, message_id: str, **fields
) -> bool:
    """
    Update message columns; content and role changes reach the index.

    Returns:
        True if the message exists and was updated
    """
    _check_fields(fields, MESSAGE_MUTABLE_FIELDS, "update_message", message_id)
    if not fields:
        return False

    assignments = ", ".join(f"{name} = ?" for name in fields)
    params = [*fields.values(), message_id]

    with unit_of_work(conn, "update_message", message_id):
        cursor = conn.execute(
            f"UPDATE messages SET {assignments} WHERE id = ?", params
        )

    return cursor.rowcount > 0


def delete_message(conn: sqlite3.Connection, message_id: str) -> bool:
    """Delete a message and its index document."""
    with unit_of_work(conn, "delete_message", message_id):
        cursor = conn.execute(
            "DELETE FROM messages WHERE id = ?", (message_id,)
        )

    return cursor.rowcount > 0


# ─────────────────────────────────────────────────────────────────
# Recovery
# ─────────────────────────────────────────────────────────────────


def rebuild_index(conn: sqlite3.Connection) -> RebuildResult:
    """
    Regenerate every FTS5 document from the primary tables.

    Runs under BEGIN IMMEDIATE, so it serializes against writers while
    WAL readers keep seeing the previous committed index (never an empty
    one). Running it twice yields the same index contents.

    Returns:
        RebuildResult with the number of documents per entity type

    Raises:
        StoreError: If the rebuild failed (nothing is changed)
    """
    try:
        with transaction(conn, immediate=True):
            threads, messages = populate_index(conn)
    except sqlite3.Error as e:
        logger.error("Index rebuild failed, rolled back: %s", e)
        raise StoreError(
            f"Index rebuild failed: {e}", "rebuild_index"
        ) from e

    logger.info(
        "Rebuilt index: %d threads, %d messages", threads, messages
    )
    return RebuildResult(threads=threads, messages=messages)


def get_index_inventory(conn: sqlite3.Connection) -> IndexInventory:
    """
    Snapshot both FTS5 tables.

    Returns:
        IndexInventory with (id, title) and
        (id, thread_id, content, role) tuples
    """
    threads = {
        (row["id"], row["title"])
        for row in conn.execute(f"SELECT id, title FROM {THREAD_INDEX_TABLE}")
    }
    messages = {
        (row["id"], row["thread_id"], row["content"], row["role"])
        for row in conn.execute(
            f"SELECT id, thread_id, content, role FROM {MESSAGE_INDEX_TABLE}"
        )
    }
    return IndexInventory(threads=threads, messages=messages)


def check_consistency(conn: sqlite3.Connection) -> ConsistencyReport:
    """
    Compare primary records with their index documents.

    Documents belonging to soft-deleted threads are expected and are not
    reported as orphans; a soft-deleted thread without a document is not
    reported as missing either.

    Returns:
        ConsistencyReport listing offending ids per category
    """
    report = ConsistencyReport()

    # Threads: id -> (title, live)
    threads = {
        row["id"]: (row["title"], row["deleted_at"] is None)
        for row in conn.execute("SELECT id, title, deleted_at FROM threads")
    }
    thread_docs: dict[str, list[str]] = {}
    for row in conn.execute(f"SELECT id, title FROM {THREAD_INDEX_TABLE}"):
        thread_docs.setdefault(row["id"], []).append(row["title"])

    for thread_id, (title, live) in threads.items():
        docs = thread_docs.get(thread_id)
        if docs is None:
            if live:
                report.missing_threads.append(thread_id)
        elif any(doc_title != title for doc_title in docs):
            report.stale_threads.append(thread_id)

    for doc_id, docs in thread_docs.items():
        if doc_id not in threads:
            report.orphan_threads.append(doc_id)
        if len(docs) > 1:
            report.duplicate_threads.append(doc_id)

    # Messages: id -> (thread_id, content, role)
    messages = {
        row["id"]: (row["thread_id"], row["content"], row["role"])
        for row in conn.execute(
            "SELECT id, thread_id, content, role FROM messages"
        )
    }
    message_docs: dict[str, list[tuple]] = {}
    for row in conn.execute(
        f"SELECT id, thread_id, content, role FROM {MESSAGE_INDEX_TABLE}"
    ):
        message_docs.setdefault(row["id"], []).append(
            (row["thread_id"], row["content"], row["role"])
        )

    for message_id, values in messages.items():
        docs = message_docs.get(message_id)
        if docs is None:
            report.missing_messages.append(message_id)
        elif any(doc != values for doc in docs):
            report.stale_messages.append(message_id)

    for doc_id, docs in message_docs.items():
        if doc_id not in messages:
            report.orphan_messages.append(doc_id)
        if len(docs) > 1:
            report.duplicate_messages.append(doc_id)

    if not report.is_consistent:
        logger.warning(
            "Index inconsistent: %d issue(s) found", report.issue_count
        )

    return report
