"""Error taxonomy for the search core.

- ValidationError: caller supplied a bad query, scope, page or field
- ConsistencyError: the index side of a write failed; the unit was rolled back
- StoreError: SQLite failed (unreachable, DDL error, malformed query)
"""

from __future__ import annotations


class ChatSearchError(Exception):
    """Base class for errors raised by the search core."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        entity_id: str | None = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.entity_id = entity_id


class ValidationError(ChatSearchError):
    """Raised when a query or pagination parameter is missing or malformed."""


class ConsistencyError(ChatSearchError):
    """Raised when an index write failed alongside a primary write."""


class StoreError(ChatSearchError):
    """Raised when the underlying store rejects or cannot run a statement."""
