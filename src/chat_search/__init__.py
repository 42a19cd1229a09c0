"""chat-search - FTS5 keyword search over conversation threads and messages.

Features:
- SQLite FTS5 index kept in step with threads/messages by triggers
- Ranked, paginated search honouring soft deletes and hidden system messages
- MCP server and CLI for setup, search, status and index rebuilds

Usage:
    chat-search              # Run MCP server (default)
    chat-search setup        # Create tables, triggers and rebuild the index
    chat-search search story # Search threads and messages
    chat-search status       # Show row counts and run a smoke query
    chat-search rebuild      # Rebuild the index from the primary tables
"""

from .cli import main
from .server import mcp

__all__ = ["main", "mcp"]
