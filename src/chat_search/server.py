"""
Chat Search MCP Server

Exposes the thread/message FTS5 index to MCP clients.

TOOLS (5 total):
- setup() - Create tables and triggers, rebuild the index
- search(query, scope?, limit?, offset?) - Ranked search with pagination
- status() - Row counts and a smoke-test query
- rebuild_index() - Regenerate every index document
- seed_sample_data() - Load the sample conversations
"""

from __future__ import annotations

import logging
from typing import Literal

from fastmcp import FastMCP
from typing_extensions import TypedDict
from fastmcp.exceptions import ToolError

from .errors import ChatSearchError, ValidationError

logger = logging.getLogger(__name__)

mcp = FastMCP("Chat Search")


# ========== Response Type Definitions ==========


class ThreadRow(TypedDict):
    """A matching thread."""

    id: str
    title: str
    model_id: str | None
    owner_id: str | None
    created_at: str | None
    updated_at: str | None
    last_message_at: str | None
    rank: float


class MessageRow(TypedDict):
    """A matching message with its thread's title."""

    id: str
    thread_id: str
    role: str
    owner_id: str | None
    content: str
    created_at: str | None
    thread_title: str
    rank: float


class ResultPage(TypedDict):
    """One page of results; total ignores limit/offset."""

    count: int
    total: int
    data: list


class SearchResponse(TypedDict):
    """Result of search()."""

    query: str
    scope: str
    limit: int
    offset: int
    results: dict[str, ResultPage]


class SetupResponse(TypedDict):
    """Result of setup()."""

    tables_created: list[str]
    triggers_created: list[str]
    fts_rebuilt: dict[str, int]


class StatusResponse(TypedDict):
    """Result of status()."""

    threads: int
    messages: int
    threads_index_count: int
    messages_index_count: int
    fts_smoke_test: dict
    consistent: bool
    db_size_mb: float


class RebuildResponse(TypedDict):
    """Result of rebuild_index()."""

    threads_rebuilt: int
    messages_rebuilt: int


class SeedResponse(TypedDict):
    """Result of seed_sample_data()."""

    threads_inserted: int
    messages_inserted: int


# ========== Helper Functions ==========


def _get_index_manager():
    """Get the IndexManager singleton, lazily imported."""
    from .index import IndexManager

    return IndexManager.get_instance()


def _tool_error(operation: str, error: ChatSearchError) -> ToolError:
    """Translate a core error into an MCP tool error."""
    if isinstance(error, ValidationError):
        return ToolError(f"Invalid request: {error}")
    logger.error("%s failed: %s", operation, error)
    return ToolError(f"{operation} failed: {error}")


# ========== MCP Tools (5 total) ==========


@mcp.tool
async def setup() -> SetupResponse:
    """
    Create tables if absent, recreate the FTS5 index and sync triggers,
    and rebuild the index from existing threads and messages.

    Safe to run repeatedly: thread and message rows are never dropped.

    Returns:
        Tables and triggers created, and documents rebuilt per type.
    """
    try:
        return _get_index_manager().setup().to_dict()
    except ChatSearchError as e:
        raise _tool_error("setup", e) from e


@mcp.tool
async def search(
    query: str,
    scope: Literal["threads", "messages", "all"] = "all",
    limit: int | None = None,
    offset: int = 0,
) -> SearchResponse:
    """
    Search thread titles and message content with FTS5 ranking.

    Deleted threads, their messages and system messages are never
    returned. Threads and messages are ranked and paginated separately.

    Args:
        query: Search term or phrase (supports "phrases", prefix*, OR/NOT)
        scope: What to search:
            - "threads": Thread titles only
            - "messages": Message content only
            - "all": Both, returned as separate result sets (default)
        limit: Maximum results per result set (default: 10, or
            CHAT_SEARCH_DEFAULT_LIMIT)
        offset: Results to skip for pagination (default: 0)

    Returns:
        Per-scope result sets with count (rows returned) and total
        (all visible matches).

    Examples:
        >>> search("story")
        >>> search("knight", scope="messages", limit=5, offset=5)
    """
    try:
        results = _get_index_manager().search(
            query, scope=scope, limit=limit, offset=offset
        )
    except ChatSearchError as e:
        raise _tool_error("search", e) from e
    return results.to_dict()


@mcp.tool
async def status() -> StatusResponse:
    """
    Report row counts for threads, messages and both index tables, and
    run one live query against the thread index as a smoke test.
    """
    try:
        return _get_index_manager().status().to_dict()
    except ChatSearchError as e:
        raise _tool_error("status", e) from e


@mcp.tool
async def rebuild_index() -> RebuildResponse:
    """
    Discard every index document and regenerate them from live threads
    and all messages. Use after corruption or a schema change.
    """
    try:
        result = _get_index_manager().rebuild()
    except ChatSearchError as e:
        raise _tool_error("rebuild_index", e) from e
    return {
        "threads_rebuilt": result.threads,
        "messages_rebuilt": result.messages,
    }


@mcp.tool
async def seed_sample_data() -> SeedResponse:
    """Insert (or refresh) a handful of sample threads and messages."""
    try:
        result = _get_index_manager().seed()
    except ChatSearchError as e:
        raise _tool_error("seed_sample_data", e) from e
    return {
        "threads_inserted": result.threads_inserted,
        "messages_inserted": result.messages_inserted,
    }


if __name__ == "__main__":
    mcp.run()
