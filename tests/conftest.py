"""Shared pytest fixtures for chat-search tests."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from chat_search.index.manager import IndexManager
from chat_search.index.schema import (
    SCHEMA_VERSION,
    create_connection,
    create_schema,
    set_schema_version,
    transaction,
)
from chat_search.index.sync import (
    create_message,
    create_thread,
    soft_delete_thread,
)

STORY_THREAD = "t-story"
PASTA_THREAD = "t-pasta"
DELETED_THREAD = "t-deleted"


@pytest.fixture
def temp_db():
    """Create an in-memory database with the schema and triggers."""
    conn = create_connection(":memory:")
    with transaction(conn):
        create_schema(conn)
        set_schema_version(conn, SCHEMA_VERSION)
    yield conn
    conn.close()


@pytest.fixture
def temp_db_path(tmp_path: Path) -> Path:
    """Return a temporary path for a database file."""
    return tmp_path / "test_index.db"


@pytest.fixture
def sample_threads() -> list[dict]:
    """Return sample thread data for testing."""
    return [
        {
            "id": STORY_THREAD,
            "title": "Tell me a story",
            "updated_at": "2024-01-15 10:30:00",
        },
        {
            "id": PASTA_THREAD,
            "title": "How to cook pasta",
            "updated_at": "2024-01-14 09:00:00",
        },
        {
            "id": DELETED_THREAD,
            "title": "An old story about sailing",
            "updated_at": "2024-01-13 14:22:00",
        },
    ]


@pytest.fixture
def sample_messages() -> list[dict]:
    """Return sample message data for testing."""
    return [
        {
            "id": "m-system",
            "thread_id": STORY_THREAD,
            "role": "system",
            "content": "You are a storyteller. Every story needs a knight.",
        },
        {
            "id": "m-user",
            "thread_id": STORY_THREAD,
            "role": "user",
            "content": "Tell me a story about a brave knight.",
            "created_at": "2024-01-15 10:30:00",
        },
        {
            "id": "m-assistant",
            "thread_id": STORY_THREAD,
            "role": "assistant",
            "content": "Once upon a time a knight rode out of the village.",
            "created_at": "2024-01-15 10:31:00",
        },
        {
            "id": "m-pasta",
            "thread_id": PASTA_THREAD,
            "role": "user",
            "content": "What's the best way to cook pasta al dente?",
        },
        {
            "id": "m-deleted",
            "thread_id": DELETED_THREAD,
            "role": "user",
            "content": "Tell me the story of a knight at sea.",
        },
    ]


@pytest.fixture
def populated_db(
    temp_db: sqlite3.Connection,
    sample_threads: list[dict],
    sample_messages: list[dict],
):
    """Database with sample threads and messages written via the sync path.

    DELETED_THREAD is soft-deleted afterwards, so its documents remain in
    the index but must never be returned.
    """
    for thread in sample_threads:
        create_thread(temp_db, thread)
    for message in sample_messages:
        create_message(temp_db, message)
    soft_delete_thread(temp_db, DELETED_THREAD)
    return temp_db


@pytest.fixture
def manager(temp_db_path: Path):
    """IndexManager backed by a temporary database file."""
    index_manager = IndexManager(db_path=temp_db_path)
    yield index_manager
    index_manager.close()
    IndexManager._instance = None
