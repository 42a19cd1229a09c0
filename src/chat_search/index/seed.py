"""Sample threads and messages for trying out search.

Seeding is an upsert: running it again refreshes the same rows (and,
through the update triggers, their documents) instead of duplicating.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

from .schema import (
    UPSERT_MESSAGE_SQL,
    UPSERT_THREAD_SQL,
    message_to_row,
    thread_to_row,
)
from .sync import unit_of_work

logger = logging.getLogger(__name__)

SAMPLE_OWNER = "user_2x29Kdb5Vs2QJ9a7dBrSxjKAml2"
SAMPLE_MODEL = "deepseek/deepseek-chat-v3-0324"

STORY_THREAD = "cefa1417-840b-4a84-af3d-ae57b7246866"
JOKE_THREAD = "aebc8ca5-e7b3-4e16-87a8-77385587b856"
CODE_THREAD = "1014bac0-a40e-4092-b6c1-0e210780c76e"
PASTA_THREAD = "550e8400-e29b-41d4-a716-446655440000"

SAMPLE_THREADS = [
    {"id": STORY_THREAD, "title": "Tell me a story"},
    {"id": JOKE_THREAD, "title": "Tell me a joke"},
    {"id": CODE_THREAD, "title": "Programming help with JavaScript"},
    {"id": PASTA_THREAD, "title": "How to cook pasta"},
]

SAMPLE_MESSAGES = [
    {
        "id": "3f8f7814-a7ae-4a9c-8530-de669d6bbbfe",
        "thread_id": STORY_THREAD,
        "role": "system",
        "content": "You are a helpful assistant.",
    },
    {
        "id": "61df5949-f54e-4e03-89d8-aa0d0cee15d9",
        "thread_id": STORY_THREAD,
        "role": "user",
        "owner_id": SAMPLE_OWNER,
        "content": (
            "Tell me a story about a brave knight who saves a village "
            "from a dragon."
        ),
    },
    {
        "id": "721df949-f54e-4e03-89d8-aa0d0cee15d9",
        "thread_id": STORY_THREAD,
        "role": "assistant",
        "content": (
            "Once upon a time, in a small village nestled between rolling "
            "hills, there lived a brave knight named Sir Galahad. The "
            "village was terrorized by a fearsome dragon that demanded "
            "tribute every month. Sir Galahad took up his sword and "
            "shield, rode to the dragon's lair, and after a fierce battle, "
            "convinced the dragon to find a new home far from the village. "
            "The villagers celebrated their hero, and peace returned to "
            "the land."
        ),
    },
    {
        "id": "831df949-f54e-4e03-89d8-aa0d0cee15d9",
        "thread_id": JOKE_THREAD,
        "role": "user",
        "owner_id": SAMPLE_OWNER,
        "content": "Tell me a programming joke about JavaScript",
    },
    {
        "id": "941df949-f54e-4e03-89d8-aa0d0cee15d9",
        "thread_id": JOKE_THREAD,
        "role": "assistant",
        "content": (
            "Why do JavaScript developers prefer dark mode? "
            "Because light attracts bugs!"
        ),
    },
    {
        "id": "a51df949-f54e-4e03-89d8-aa0d0cee15d9",
        "thread_id": CODE_THREAD,
        "role": "user",
        "owner_id": SAMPLE_OWNER,
        "content": (
            "How do I implement async/await in JavaScript for API calls?"
        ),
    },
    {
        "id": "b61df949-f54e-4e03-89d8-aa0d0cee15d9",
        "thread_id": CODE_THREAD,
        "role": "assistant",
        "content": (
            "Here's how to use async/await for API calls in JavaScript:\n\n"
            "async function fetchData() {\n"
            "  try {\n"
            "    const response = "
            "await fetch('https://api.example.com/data');\n"
            "    const data = await response.json();\n"
            "    return data;\n"
            "  } catch (error) {\n"
            "    console.error('Error fetching data:', error);\n"
            "  }\n"
            "}\n\n"
            "This pattern makes asynchronous code more readable and easier "
            "to debug."
        ),
    },
    {
        "id": "c71df949-f54e-4e03-89d8-aa0d0cee15d9",
        "thread_id": PASTA_THREAD,
        "role": "user",
        "owner_id": SAMPLE_OWNER,
        "content": "What's the best way to cook pasta al dente?",
    },
    {
        "id": "d81df949-f54e-4e03-89d8-aa0d0cee15d9",
        "thread_id": PASTA_THREAD,
        "role": "assistant",
        "content": (
            "To cook pasta al dente: 1) Use plenty of salted boiling water, "
            "2) Follow package timing but test 1-2 minutes early, 3) The "
            "pasta should be firm to the bite with no white center, "
            "4) Reserve pasta water before draining, 5) Finish cooking in "
            "the sauce for best results. The key is frequent testing near "
            "the end of cooking time!"
        ),
    },
]


@dataclass
class SeedResult:
    """Rows written by seed_sample_data()."""

    threads_inserted: int
    messages_inserted: int


def seed_sample_data(conn: sqlite3.Connection) -> SeedResult:
    """
    Upsert the sample threads and messages in one transaction.

    Returns:
        SeedResult with the number of rows written per table
    """
    with unit_of_work(conn, "seed"):
        for thread in SAMPLE_THREADS:
            conn.execute(
                UPSERT_THREAD_SQL,
                thread_to_row(
                    {
                        **thread,
                        "model_id": SAMPLE_MODEL,
                        "owner_id": SAMPLE_OWNER,
                    }
                ),
            )
        for message in SAMPLE_MESSAGES:
            conn.execute(UPSERT_MESSAGE_SQL, message_to_row(message))

    logger.info(
        "Seeded %d threads, %d messages",
        len(SAMPLE_THREADS),
        len(SAMPLE_MESSAGES),
    )
    return SeedResult(
        threads_inserted=len(SAMPLE_THREADS),
        messages_inserted=len(SAMPLE_MESSAGES),
    )
