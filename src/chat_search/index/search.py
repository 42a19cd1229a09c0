"""FTS5 ranked search over threads and messages.

Provides:
- search(): validate input and run the requested scopes independently
- search_threads() / search_messages(): one ranked, paginated page plus
  the total match count under the same visibility filter
- sanitize_fts_query(): escape special FTS5 syntax characters
- normalize_pagination() / normalize_scope(): input validation

Visibility rules applied at query time:
- threads with deleted_at set are hidden (their documents stay indexed)
- messages of such threads are hidden
- messages with role 'system' are never returned

FTS5 rank is BM25-based: lower (more negative) means a better match.
Ties are broken by recency, then id, so pages are stable.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from contextlib import nullcontext
from dataclasses import asdict, dataclass, field
from typing import Literal

from ..config import get_default_limit, get_max_limit
from ..errors import StoreError, ValidationError
from .schema import transaction

logger = logging.getLogger(__name__)

SearchScope = Literal["threads", "messages", "all"]

SCOPES: tuple[str, ...] = ("threads", "messages", "all")

# Accepted spellings mapped onto SCOPES
_SCOPE_ALIASES = {"both": "all"}

# Role whose content is never surfaced in search
HIDDEN_ROLE = "system"

# FTS5 barewords may only hold letters, digits and underscores; anything
# else (hyphens = NOT, colons = column filter, parens = grouping, etc.)
# must be quoted
_BAREWORD = re.compile(r"^\w+$")

# FTS5 boolean operators that should be passed through
_FTS5_OPERATORS = {"OR", "AND", "NOT"}

# Largest value SQLite can bind as an INTEGER
_MAX_OFFSET = 2**63 - 1

THREADS_SQL = """
    SELECT
        t.id,
        t.title,
        t.model_id,
        t.owner_id,
        t.created_at,
        t.updated_at,
        t.last_message_at,
        threads_fts.rank AS rank
    FROM threads_fts
    JOIN threads t ON threads_fts.id = t.id
    WHERE threads_fts MATCH ?
    AND t.deleted_at IS NULL
    ORDER BY threads_fts.rank, t.updated_at DESC, t.id
    LIMIT ? OFFSET ?
"""

THREADS_COUNT_SQL = """
    SELECT COUNT(*)
    FROM threads_fts
    JOIN threads t ON threads_fts.id = t.id
    WHERE threads_fts MATCH ?
    AND t.deleted_at IS NULL
"""

MESSAGES_SQL = """
    SELECT
        m.id,
        m.thread_id,
        m.role,
        m.owner_id,
        m.content,
        m.created_at,
        t.title AS thread_title,
        messages_fts.rank AS rank
    FROM messages_fts
    JOIN messages m ON messages_fts.id = m.id
    JOIN threads t ON m.thread_id = t.id
    WHERE messages_fts MATCH ?
    AND t.deleted_at IS NULL
    AND m.role != ?
    ORDER BY messages_fts.rank, m.created_at DESC, m.id
    LIMIT ? OFFSET ?
"""

MESSAGES_COUNT_SQL = """
    SELECT COUNT(*)
    FROM messages_fts
    JOIN messages m ON messages_fts.id = m.id
    JOIN threads t ON m.thread_id = t.id
    WHERE messages_fts MATCH ?
    AND t.deleted_at IS NULL
    AND m.role != ?
"""


@dataclass
class ThreadHit:
    """A thread whose title matched."""

    id: str
    title: str
    model_id: str | None
    owner_id: str | None
    created_at: str | None
    updated_at: str | None
    last_message_at: str | None
    rank: float


@dataclass
class MessageHit:
    """A message whose content matched, with its thread's title."""

    id: str
    thread_id: str
    role: str
    owner_id: str | None
    content: str
    created_at: str | None
    thread_title: str
    rank: float


@dataclass
class ResultPage:
    """One page of hits plus the total number of visible matches."""

    total: int
    data: list = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.data)

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "total": self.total,
            "data": [asdict(hit) for hit in self.data],
        }


@dataclass
class SearchResults:
    """Independent result pages per entity type (never merged)."""

    query: str
    scope: str
    limit: int
    offset: int
    threads: ResultPage | None = None
    messages: ResultPage | None = None

    def to_dict(self) -> dict:
        results: dict = {}
        if self.threads is not None:
            results["threads"] = self.threads.to_dict()
        if self.messages is not None:
            results["messages"] = self.messages.to_dict()
        return {
            "query": self.query,
            "scope": self.scope,
            "limit": self.limit,
            "offset": self.offset,
            "results": results,
        }


# ─────────────────────────────────────────────────────────────────
# Query sanitization
# ─────────────────────────────────────────────────────────────────


def _tokenize_fts_query(query: str) -> list[str]:
    """Split query into phrase blocks and bare tokens.

    Balanced double-quoted segments are kept intact (including quotes).
    Unbalanced quotes are dropped.
    """
    tokens: list[str] = []
    i = 0
    n = len(query)

    while i < n:
        if query[i].isspace():
            i += 1
            continue

        if query[i] == '"':
            end = query.find('"', i + 1)
            if end != -1:
                tokens.append(query[i : end + 1])
                i = end + 1
            else:
                i += 1
        else:
            start = i
            while i < n and not query[i].isspace() and query[i] != '"':
                i += 1
            tokens.append(query[start:i])

    return tokens


def _sanitize_bare_token(token: str) -> str:
    """Quote a bare token if it contains FTS5 syntax characters.

    FTS5 escaping works by wrapping in double quotes; backslash escaping
    is NOT supported. A trailing ``*`` (prefix search) and the boolean
    operators are preserved.
    """
    if token in _FTS5_OPERATORS:
        return token

    has_wildcard = token.endswith("*") and len(token) > 1
    core = token[:-1] if has_wildcard else token

    if not _BAREWORD.match(core):
        safe_core = '"' + core.replace('"', '""') + '"'
        return safe_core + "*" if has_wildcard else safe_core

    return token


def _escape_all_special(query: str) -> str:
    """Quote every term individually as a last-resort fallback.

    Used when the first attempt raises an FTS5 syntax error, typically a
    dangling operator ("story AND", "OR story"). Operators are quoted as
    well, so they are matched as plain words and the result is always
    valid FTS5.
    """
    return " ".join(
        '"' + word.replace('"', '""') + '"' for word in query.split()
    )


def sanitize_fts_query(query: str) -> str:
    """Sanitize a query string for safe FTS5 use.

    Preserves:
    - Balanced double-quoted phrases: ``"exact phrase"``
    - Trailing ``*`` for prefix search: ``kni*``
    - Boolean operators: ``OR``, ``AND``, ``NOT``

    Escapes:
    - Unbalanced quotes, colons, carets, parentheses, punctuation

    Args:
        query: Raw user query

    Returns:
        Sanitized query safe for FTS5 (empty for a blank query)
    """
    if not query or not query.strip():
        return ""

    sanitized_parts: list[str] = []
    for token in _tokenize_fts_query(query.strip()):
        if token.startswith('"') and token.endswith('"') and len(token) > 1:
            sanitized_parts.append(token)
        else:
            sanitized_parts.append(_sanitize_bare_token(token))

    return " ".join(sanitized_parts)


# ─────────────────────────────────────────────────────────────────
# Input validation
# ─────────────────────────────────────────────────────────────────


def _coerce_int(value: object, name: str, default: int) -> int:
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    if isinstance(value, bool):
        raise ValidationError(
            f"{name} must be an integer, got {value!r}", "search"
        )
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            pass
    raise ValidationError(
        f"{name} must be an integer, got {value!r}", "search"
    )


def validate_query(query: str | None) -> str:
    """Return the stripped query, or raise ValidationError if blank."""
    if query is None or not sanitize_fts_query(str(query)):
        raise ValidationError(
            'Missing query: pass a non-empty search term, e.g. "story"',
            "search",
        )
    return str(query).strip()


def normalize_pagination(
    limit: int | str | None, offset: int | str | None
) -> tuple[int, int]:
    """
    Validate and default pagination parameters.

    Args:
        limit: Page size; None uses the configured default (10)
        offset: Rows to skip; None means 0

    Returns:
        Tuple of (limit, offset), limit clamped to the configured maximum

    Raises:
        ValidationError: Non-numeric values, limit below 1, offset outside
            0..2**63-1
    """
    max_limit = get_max_limit()
    limit = _coerce_int(limit, "limit", get_default_limit())
    offset = _coerce_int(offset, "offset", 0)

    if limit < 1:
        raise ValidationError(
            f"limit must be between 1 and {max_limit}, got {limit}", "search"
        )
    if offset < 0:
        raise ValidationError(
            f"offset must be 0 or greater, got {offset}", "search"
        )
    if offset > _MAX_OFFSET:
        raise ValidationError(
            f"offset must be at most {_MAX_OFFSET}, got {offset}", "search"
        )
    if limit > max_limit:
        logger.debug("Clamping limit %d to %d", limit, max_limit)
        limit = max_limit

    return limit, offset


def normalize_scope(scope: str | None) -> str:
    """
    Validate a search scope.

    Returns:
        One of "threads", "messages", "all" (None means "all")
    """
    if scope is None:
        return "all"
    normalized = str(scope).strip().lower()
    normalized = _SCOPE_ALIASES.get(normalized, normalized)
    if normalized not in SCOPES:
        raise ValidationError(
            f"scope must be one of {', '.join(SCOPES)}, got {scope!r}",
            "search",
        )
    return normalized


# ─────────────────────────────────────────────────────────────────
# Queries
# ─────────────────────────────────────────────────────────────────


def _execute_match(
    conn: sqlite3.Connection,
    sql: str,
    query: str,
    params: tuple,
    operation: str,
) -> list[sqlite3.Row]:
    """Run a MATCH statement, retrying once with every term quoted."""
    try:
        safe_query = sanitize_fts_query(query)
        return conn.execute(sql, (safe_query, *params)).fetchall()
    except sqlite3.OperationalError as e:
        if "fts5: syntax error" not in str(e).lower():
            logger.error("%s failed for %r: %s", operation, query, e)
            raise StoreError(f"{operation} failed: {e}", operation) from e
        logger.debug("FTS5 syntax error for %r, retrying quoted", query)
    except sqlite3.Error as e:
        logger.error("%s failed for %r: %s", operation, query, e)
        raise StoreError(f"{operation} failed: {e}", operation) from e

    try:
        escaped_query = _escape_all_special(query)
        return conn.execute(sql, (escaped_query, *params)).fetchall()
    except sqlite3.OperationalError as e:
        if "fts5: syntax error" in str(e).lower():
            raise ValidationError(
                f"Cannot parse query {query!r}: use words, "
                '"quoted phrases", prefix* and OR/AND/NOT between terms',
                operation,
            ) from e
        logger.error("%s failed for %r: %s", operation, query, e)
        raise StoreError(f"{operation} failed: {e}", operation) from e
    except sqlite3.Error as e:
        logger.error("%s failed for %r: %s", operation, query, e)
        raise StoreError(f"{operation} failed: {e}", operation) from e


def count_thread_matches(conn: sqlite3.Connection, query: str) -> int:
    """Count live threads whose title matches, ignoring pagination."""
    rows = _execute_match(
        conn, THREADS_COUNT_SQL, query, (), "count_thread_matches"
    )
    return rows[0][0]


def count_message_matches(conn: sqlite3.Connection, query: str) -> int:
    """Count visible messages whose content matches, ignoring pagination."""
    rows = _execute_match(
        conn,
        MESSAGES_COUNT_SQL,
        query,
        (HIDDEN_ROLE,),
        "count_message_matches",
    )
    return rows[0][0]


def search_threads(
    conn: sqlite3.Connection, query: str, limit: int, offset: int
) -> ResultPage:
    """
    Search live thread titles.

    Args:
        conn: Database connection
        query: Search term (FTS5 syntax supported, sanitized)
        limit: Maximum rows in the page
        offset: Rows to skip

    Returns:
        ResultPage of ThreadHit ordered by rank, then recency
    """
    rows = _execute_match(
        conn, THREADS_SQL, query, (limit, offset), "search_threads"
    )
    hits = [
        ThreadHit(
            id=row["id"],
            title=row["title"],
            model_id=row["model_id"],
            owner_id=row["owner_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            last_message_at=row["last_message_at"],
            rank=row["rank"],
        )
        for row in rows
    ]
    return ResultPage(total=count_thread_matches(conn, query), data=hits)


def search_messages(
    conn: sqlite3.Connection, query: str, limit: int, offset: int
) -> ResultPage:
    """
    Search message content in live threads, excluding system messages.

    Args:
        conn: Database connection
        query: Search term (FTS5 syntax supported, sanitized)
        limit: Maximum rows in the page
        offset: Rows to skip

    Returns:
        ResultPage of MessageHit ordered by rank, then recency
    """
    rows = _execute_match(
        conn,
        MESSAGES_SQL,
        query,
        (HIDDEN_ROLE, limit, offset),
        "search_messages",
    )
    hits = [
        MessageHit(
            id=row["id"],
            thread_id=row["thread_id"],
            role=row["role"],
            owner_id=row["owner_id"],
            content=row["content"],
            created_at=row["created_at"],
            thread_title=row["thread_title"],
            rank=row["rank"],
        )
        for row in rows
    ]
    return ResultPage(total=count_message_matches(conn, query), data=hits)


def search(
    conn: sqlite3.Connection,
    query: str | None,
    scope: str | None = "all",
    limit: int | str | None = None,
    offset: int | str | None = None,
) -> SearchResults:
    """
    Validate input and search the requested entity types.

    Page and total are read in one read transaction so they agree even
    while writers commit in between.

    Args:
        conn: Database connection
        query: Search term; blank is rejected before touching the index
        scope: "threads", "messages" or "all"
        limit: Page size (default 10, clamped to the configured maximum)
        offset: Rows to skip (default 0)

    Returns:
        SearchResults with one ResultPage per requested scope

    Raises:
        ValidationError: Blank query, unknown scope, bad pagination
        StoreError: SQLite failure
    """
    query = validate_query(query)
    scope = normalize_scope(scope)
    limit, offset = normalize_pagination(limit, offset)

    results = SearchResults(
        query=query, scope=scope, limit=limit, offset=offset
    )

    read_tx = nullcontext() if conn.in_transaction else transaction(conn)
    with read_tx:
        if scope in ("threads", "all"):
            results.threads = search_threads(conn, query, limit, offset)
        if scope in ("messages", "all"):
            results.messages = search_messages(conn, query, limit, offset)

    logger.debug(
        "search %r scope=%s limit=%d offset=%d", query, scope, limit, offset
    )
    return results
