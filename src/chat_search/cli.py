"""Command-line interface for chat-search.

Provides commands for:
- setup: Create tables and triggers, rebuild the index
- search: Search threads and messages
- status: Show row counts and run a smoke-test query
- rebuild: Rebuild the index from the primary tables
- seed: Load sample conversations
- verify: Check every record against its index document
- serve: Run the MCP server (default)

Usage:
    chat-search                          # Run MCP server (default)
    chat-search setup                    # Initialize database
    chat-search search story -s threads  # Search thread titles
    chat-search status                   # Show index status
    chat-search rebuild                  # Force rebuild index
"""

import json
import logging
import sys
import time
from typing import Annotated, Literal, NoReturn

import cyclopts

from .config import get_db_path
from .errors import ChatSearchError, ValidationError

app = cyclopts.App(
    name="chat-search",
    help="FTS5 keyword search over conversation threads and messages.",
)

VerboseFlag = Annotated[
    bool,
    cyclopts.Parameter(
        name=["--verbose", "-v"],
        help="Enable verbose (debug) logging on stderr",
    ),
]


def _configure_logging(verbose: bool) -> None:
    """Route library logs to stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _format_size(size_mb: float) -> str:
    """Format file size for display."""
    if size_mb < 1:
        return f"{size_mb * 1024:.1f} KB"
    return f"{size_mb:.1f} MB"


def _format_time(seconds: float) -> str:
    """Format duration for display."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    secs = seconds % 60
    return f"{minutes}m {secs:.1f}s"


def _snippet(text: str, max_length: int = 80) -> str:
    """Collapse whitespace and truncate for one-line display."""
    text = " ".join((text or "").split())
    if len(text) <= max_length:
        return text
    return text[:max_length].rsplit(" ", 1)[0] + "..."


def _fail(error: ChatSearchError) -> NoReturn:
    """Print an error and exit (2 for bad input, 1 otherwise)."""
    print(f"\n✗ Error: {error}", file=sys.stderr)
    sys.exit(2 if isinstance(error, ValidationError) else 1)


def _run_serve() -> None:
    """Internal function to run the MCP server."""
    from .index import IndexManager
    from .server import mcp

    manager = IndexManager.get_instance()
    if not manager.has_index():
        print(
            "No database yet; it will be created on first use. "
            "Run 'chat-search setup' to initialize it explicitly.",
            file=sys.stderr,
        )

    mcp.run()


@app.command
def serve(verbose: VerboseFlag = False) -> None:
    """
    Run the MCP server.

    This is the default command when no subcommand is specified.
    """
    _configure_logging(verbose)
    _run_serve()


@app.command
def setup(verbose: VerboseFlag = False) -> None:
    """
    Initialize the database.

    Creates the thread and message tables if absent, recreates the FTS5
    index tables and sync triggers, and rebuilds the index from existing
    rows. Safe to run repeatedly.
    """
    _configure_logging(verbose)
    from .index import IndexManager

    print(f"Database location: {get_db_path()}")

    manager = IndexManager()
    start = time.time()
    try:
        result = manager.setup()
    except ChatSearchError as e:
        _fail(e)
    finally:
        manager.close()

    elapsed = time.time() - start
    print(f"✓ Setup complete in {_format_time(elapsed)}")
    print(f"  Tables:   {', '.join(result.tables_created)}")
    print(f"  Triggers: {len(result.triggers_created)}")
    print(
        f"  Indexed:  {result.fts_rebuilt['threads']:,} threads, "
        f"{result.fts_rebuilt['messages']:,} messages"
    )


@app.command
def search(
    query: str,
    scope: Annotated[
        Literal["threads", "messages", "all"],
        cyclopts.Parameter(
            name=["--scope", "-s"],
            help="Search thread titles, message content, or both",
        ),
    ] = "all",
    limit: Annotated[
        int | None,
        cyclopts.Parameter(
            name=["--limit", "-l"], help="Results per scope (default 10)"
        ),
    ] = None,
    offset: Annotated[
        int,
        cyclopts.Parameter(name=["--offset", "-o"], help="Results to skip"),
    ] = 0,
    as_json: Annotated[
        bool,
        cyclopts.Parameter(name=["--json"], help="Print raw JSON results"),
    ] = False,
    verbose: VerboseFlag = False,
) -> None:
    """
    Search threads and messages.

    Deleted threads, their messages and system messages are never shown.
    """
    _configure_logging(verbose)
    from .index import IndexManager

    manager = IndexManager()
    try:
        results = manager.search(
            query, scope=scope, limit=limit, offset=offset
        )
    except ChatSearchError as e:
        _fail(e)
    finally:
        manager.close()

    if as_json:
        print(json.dumps(results.to_dict(), indent=2))
        return

    if results.threads is not None:
        page = results.threads
        print(f"Threads ({page.count} of {page.total}):")
        for hit in page.data:
            print(f"  {hit.rank:8.3f}  {hit.title}  [{hit.id}]")
        print()

    if results.messages is not None:
        page = results.messages
        print(f"Messages ({page.count} of {page.total}):")
        for hit in page.data:
            print(f"  {hit.rank:8.3f}  {hit.thread_title} / {hit.role}")
            print(f"            {_snippet(hit.content)}")
        print()


@app.command
def status(
    as_json: Annotated[
        bool,
        cyclopts.Parameter(name=["--json"], help="Print raw JSON status"),
    ] = False,
    verbose: VerboseFlag = False,
) -> None:
    """
    Show index status.

    Displays:
    - Thread and message counts
    - Index document counts
    - Smoke-test query matches
    """
    _configure_logging(verbose)
    from .index import IndexManager

    manager = IndexManager()

    if not manager.has_index():
        print("No database found.")
        print(f"Expected location: {get_db_path()}")
        print()
        print("Run 'chat-search setup' to create it.")
        sys.exit(1)

    try:
        stats = manager.status()
    except ChatSearchError as e:
        _fail(e)
    finally:
        manager.close()

    if as_json:
        print(json.dumps(stats.to_dict(), indent=2))
        return

    smoke = stats.fts_smoke_test
    print("Chat Search Index Status")
    print("=" * 40)
    print(f"Location:        {get_db_path()}")
    print(f"Threads:         {stats.threads:,}")
    print(f"Messages:        {stats.messages:,}")
    print(f"Thread docs:     {stats.threads_index_count:,}")
    print(f"Message docs:    {stats.messages_index_count:,}")
    print(f"Database:        {_format_size(stats.db_size_mb)}")
    print(f"Smoke test:      '{smoke['query']}' → {smoke['matches']} matches")

    if not stats.consistent:
        print()
        print("⚠ Index is out of sync. Run 'chat-search rebuild' to fix it.")


@app.command
def rebuild(verbose: VerboseFlag = False) -> None:
    """
    Force rebuild the search index.

    Clears every index document and regenerates them from live threads
    and all messages.
    """
    _configure_logging(verbose)
    from .index import IndexManager

    print("Rebuilding search index...")

    manager = IndexManager()
    start = time.time()
    try:
        result = manager.rebuild()
    except ChatSearchError as e:
        _fail(e)
    finally:
        manager.close()

    elapsed = time.time() - start
    print(
        f"✓ Rebuilt {result.threads:,} threads and {result.messages:,} "
        f"messages in {_format_time(elapsed)}"
    )


@app.command
def seed(verbose: VerboseFlag = False) -> None:
    """Insert (or refresh) sample threads and messages."""
    _configure_logging(verbose)
    from .index import IndexManager

    manager = IndexManager()
    try:
        result = manager.seed()
    except ChatSearchError as e:
        _fail(e)
    finally:
        manager.close()

    print(
        f"✓ Seeded {result.threads_inserted} threads and "
        f"{result.messages_inserted} messages"
    )


@app.command
def verify(verbose: VerboseFlag = False) -> None:
    """
    Check every thread and message against its index document.

    Exits with status 1 when missing, stale, orphaned or duplicated
    documents are found.
    """
    _configure_logging(verbose)
    from .index import IndexManager

    manager = IndexManager()
    try:
        report = manager.check_consistency()
    except ChatSearchError as e:
        _fail(e)
    finally:
        manager.close()

    if report.is_consistent:
        print("✓ Index is consistent")
        return

    print(f"✗ Found {report.issue_count} problem(s):")
    for name, ids in vars(report).items():
        if ids:
            print(f"  {name.replace('_', ' ')}: {', '.join(ids[:5])}")
    print()
    print("Run 'chat-search rebuild' to regenerate the index.")
    sys.exit(1)


@app.default
def default_handler(verbose: VerboseFlag = False) -> None:
    """Run the MCP server (default when no command specified)."""
    _configure_logging(verbose)
    _run_serve()


def main() -> None:
    """Entry point for the CLI."""
    app()
