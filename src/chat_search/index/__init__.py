"""FTS5 search index over conversation threads and messages.

This module provides:
- IndexManager: setup, rebuild, status, search and seeding
- Sync engine: atomic primary+index writes and consistency checks
- FTS5 ranked search with soft-delete and role visibility filtering
"""

from .manager import IndexManager, IndexStatus, SetupResult
from .search import MessageHit, ResultPage, SearchResults, ThreadHit
from .sync import ConsistencyReport, RebuildResult

__all__ = [
    "ConsistencyReport",
    "IndexManager",
    "IndexStatus",
    "MessageHit",
    "RebuildResult",
    "ResultPage",
    "SearchResults",
    "SetupResult",
    "ThreadHit",
]
