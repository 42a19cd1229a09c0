"""IndexManager - Central interface for the thread/message search index.

Provides:
- setup(): create tables, recreate FTS5 tables and sync triggers, rebuild
- rebuild(): regenerate all index documents (recovery)
- status(): row counts, document counts and a smoke-test query
- search(): ranked, paginated search over threads and/or messages
- seed(): load the sample conversations

Thread Safety:
- Uses threading.Lock for connection management
- Database connections use check_same_thread=False
- Atomicity between a primary write and its index write comes from
  SQLite transactions, not from in-process locks
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from ..config import get_db_path, get_smoke_query
from ..errors import StoreError
from .schema import (
    SCHEMA_VERSION,
    TABLES,
    TRIGGERS,
    create_schema,
    init_database,
    optimize_fts_index,
    populate_index,
    set_schema_version,
    transaction,
)
from .sync import RebuildResult, rebuild_index

if TYPE_CHECKING:
    from .search import SearchResults
    from .seed import SeedResult
    from .sync import ConsistencyReport

logger = logging.getLogger(__name__)


@dataclass
class SetupResult:
    """Outcome of IndexManager.setup()."""

    tables_created: list[str]
    triggers_created: list[str]
    fts_rebuilt: dict[str, int]

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class IndexStatus:
    """Row counts for primary and index tables plus a live query check."""

    threads: int
    messages: int
    threads_index_count: int
    messages_index_count: int
    fts_smoke_test: dict
    consistent: bool
    db_size_mb: float

    def to_dict(self) -> dict:
        return asdict(self)


class IndexManager:
    """
    Owns the database connection and the maintenance operations.

    The database is stored at ~/.chat-search/index.db by default.
    Set CHAT_SEARCH_DB_PATH to customize the location.

    Thread Safety:
    - get_instance() uses class-level lock
    - _get_conn() uses instance-level lock
    """

    _instance: IndexManager | None = None
    _instance_lock = threading.Lock()

    def __init__(self, db_path: Path | None = None):
        """
        Initialize the IndexManager.

        Args:
            db_path: Custom database path (uses config default if None)
        """
        self._db_path = db_path or get_db_path()
        self._conn: sqlite3.Connection | None = None
        self._conn_lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> IndexManager:
        """Get the singleton IndexManager instance (thread-safe)."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = IndexManager()
            return cls._instance

    @property
    def db_path(self) -> Path:
        """Get the database file path."""
        return self._db_path

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create the database connection (thread-safe)."""
        with self._conn_lock:
            if self._conn is None:
                try:
                    self._conn = init_database(self._db_path)
                except sqlite3.Error as e:
                    logger.error(
                        "Cannot open database %s: %s", self._db_path, e
                    )
                    raise StoreError(
                        f"Cannot open database {self._db_path}: {e}", "open"
                    ) from e
            return self._conn

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def has_index(self) -> bool:
        """Check if a database file exists."""
        return self._db_path.exists()

    def setup(self) -> SetupResult:
        """
        Idempotent setup of the whole schema.

        Creates the primary tables if absent (never dropping data),
        recreates the FTS5 tables and sync triggers, and repopulates the
        index, all in one immediate transaction so no reader ever sees
        a missing or empty index.

        Returns:
            SetupResult listing tables, triggers and documents rebuilt

        Raises:
            StoreError: If any DDL statement or the rebuild failed
        """
        conn = self._get_conn()

        try:
            with transaction(conn, immediate=True):
                create_schema(conn)
                threads, messages = populate_index(conn)
                set_schema_version(conn, SCHEMA_VERSION)
        except sqlite3.Error as e:
            logger.error("Setup failed, rolled back: %s", e)
            raise StoreError(f"Setup failed: {e}", "setup") from e

        logger.info(
            "Setup complete: %d threads, %d messages indexed",
            threads,
            messages,
        )
        return SetupResult(
            tables_created=list(TABLES),
            triggers_created=list(TRIGGERS),
            fts_rebuilt={"threads": threads, "messages": messages},
        )

    def rebuild(self) -> RebuildResult:
        """
        Force rebuild of every index document from the primary tables.

        Returns:
            RebuildResult with documents per entity type
        """
        conn = self._get_conn()
        result = rebuild_index(conn)

        try:
            optimize_fts_index(conn)
        except sqlite3.Error as e:
            # Documents are already committed at this point
            logger.warning("FTS optimize after rebuild failed: %s", e)

        return result

    def status(self) -> IndexStatus:
        """
        Report row counts and run one live query against the index.

        Returns:
            IndexStatus with primary/index counts and smoke-test matches

        Raises:
            StoreError: If the tables or the FTS5 index cannot be read
        """
        from .search import count_thread_matches
        from .sync import check_consistency

        conn = self._get_conn()
        smoke_query = get_smoke_query()

        try:
            counts: dict[str, int] = {}
            for table in TABLES:
                row = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
                counts[table] = row[0]
            consistent = check_consistency(conn).is_consistent
        except sqlite3.Error as e:
            logger.error("Status check failed: %s", e)
            raise StoreError(f"Status check failed: {e}", "status") from e

        matches = count_thread_matches(conn, smoke_query)

        # WAL pages not yet checkpointed live in the -wal sidecar
        size_bytes = 0
        for path in (self._db_path, Path(f"{self._db_path}-wal")):
            if path.exists():
                size_bytes += path.stat().st_size
        db_size_mb = size_bytes / (1024 * 1024)

        return IndexStatus(
            threads=counts["threads"],
            messages=counts["messages"],
            threads_index_count=counts["threads_fts"],
            messages_index_count=counts["messages_fts"],
            fts_smoke_test={"query": smoke_query, "matches": matches},
            consistent=consistent,
            db_size_mb=db_size_mb,
        )

    def search(
        self,
        query: str | None,
        scope: str | None = "all",
        limit: int | str | None = None,
        offset: int | str | None = None,
    ) -> SearchResults:
        """
        Search threads and/or messages using FTS5.

        Args:
            query: Search term (FTS5 syntax supported, sanitized)
            scope: "threads", "messages" or "all"
            limit: Page size (default 10)
            offset: Rows to skip (default 0)

        Returns:
            SearchResults with one page and total per requested scope
        """
        from .search import search

        return search(
            self._get_conn(), query, scope=scope, limit=limit, offset=offset
        )

    def seed(self) -> SeedResult:
        """Upsert the sample conversations."""
        from .seed import seed_sample_data

        return seed_sample_data(self._get_conn())

    def check_consistency(self) -> ConsistencyReport:
        """Compare primary records with their index documents."""
        from .sync import check_consistency

        return check_consistency(self._get_conn())
