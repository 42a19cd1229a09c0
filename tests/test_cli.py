"""Tests for the chat-search command-line interface."""

from __future__ import annotations

import json

import pytest

from chat_search import cli
from chat_search.index import IndexManager


@pytest.fixture
def db_env(temp_db_path, monkeypatch):
    """Point the CLI at a temporary database."""
    monkeypatch.setenv("CHAT_SEARCH_DB_PATH", str(temp_db_path))
    yield temp_db_path
    IndexManager._instance = None


class TestFormatting:
    """Tests for display helpers."""

    @pytest.mark.parametrize(
        "size_mb, expected", [(0.5, "512.0 KB"), (2.5, "2.5 MB")]
    )
    def test_format_size(self, size_mb, expected):
        assert cli._format_size(size_mb) == expected

    @pytest.mark.parametrize(
        "seconds, expected", [(1.5, "1.5s"), (75, "1m 15.0s")]
    )
    def test_format_time(self, seconds, expected):
        assert cli._format_time(seconds) == expected

    def test_snippet_collapses_whitespace(self):
        assert cli._snippet("a\n\n  b") == "a b"

    def test_snippet_truncates_on_word_boundary(self):
        text = "word " * 30
        snippet = cli._snippet(text, max_length=12)
        assert snippet == "word word..."


class TestCommands:
    """Commands run against a temporary database."""

    def test_setup_seed_search(self, db_env, capsys):
        cli.setup()
        cli.seed()
        capsys.readouterr()

        cli.search("pasta", scope="messages", as_json=True)

        data = json.loads(capsys.readouterr().out)
        assert data["scope"] == "messages"
        assert data["results"]["messages"]["total"] == 2

    def test_search_text_output(self, db_env, capsys):
        cli.seed()
        capsys.readouterr()

        cli.search("story")

        out = capsys.readouterr().out
        assert "Threads (1 of 1):" in out
        assert "Tell me a story" in out

    def test_blank_search_exits_2(self, db_env):
        with pytest.raises(SystemExit) as exc_info:
            cli.search("   ")
        assert exc_info.value.code == 2

    def test_status_without_database_exits_1(self, db_env, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.status()
        assert exc_info.value.code == 1
        assert "No database found" in capsys.readouterr().out

    def test_status_json(self, db_env, capsys):
        cli.seed()
        capsys.readouterr()

        cli.status(as_json=True)

        data = json.loads(capsys.readouterr().out)
        assert data["threads"] == 4
        assert data["consistent"] is True

    def test_rebuild_and_verify(self, db_env, capsys):
        cli.seed()
        cli.rebuild()
        cli.verify()

        assert "Index is consistent" in capsys.readouterr().out
