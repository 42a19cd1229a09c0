"""Configuration for the chat-search index."""

import os
from pathlib import Path

# Default index location
DEFAULT_DB_PATH = Path.home() / ".chat-search" / "index.db"


def get_db_path() -> Path:
    """
    Get the SQLite database path holding threads, messages and FTS tables.

    Set CHAT_SEARCH_DB_PATH to customize the location.
    Defaults to ~/.chat-search/index.db

    Returns:
        Path to the database file.
    """
    env_path = os.environ.get("CHAT_SEARCH_DB_PATH")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_DB_PATH


# ========== Search Configuration ==========


def get_default_limit() -> int:
    """
    Get the page size used when a search does not specify one.

    Set CHAT_SEARCH_DEFAULT_LIMIT to customize.
    Defaults to 10 rows.

    Returns:
        Default page size.
    """
    return int(os.environ.get("CHAT_SEARCH_DEFAULT_LIMIT", "10"))


def get_max_limit() -> int:
    """
    Get the largest page size a search may request.

    Larger limits are clamped to this value so a caller can never run
    an unbounded query.

    Set CHAT_SEARCH_MAX_LIMIT to customize.
    Defaults to 100 rows.

    Returns:
        Maximum page size.
    """
    return int(os.environ.get("CHAT_SEARCH_MAX_LIMIT", "100"))


def get_smoke_query() -> str:
    """Term used by the status check to exercise the thread index."""
    return os.environ.get("CHAT_SEARCH_SMOKE_QUERY", "story")
