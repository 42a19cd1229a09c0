"""Tests for FTS5 search functionality."""

from __future__ import annotations

import pytest

from chat_search.errors import ValidationError
from chat_search.index.search import (
    _escape_all_special,
    count_message_matches,
    count_thread_matches,
    normalize_pagination,
    normalize_scope,
    sanitize_fts_query,
    search,
    search_messages,
    search_threads,
    validate_query,
)
from chat_search.index.sync import (
    create_message,
    create_thread,
    restore_thread,
    soft_delete_thread,
    update_message,
)


class TestSanitizeFtsQuery:
    """Tests for FTS5 query sanitization."""

    def test_empty_query(self):
        assert sanitize_fts_query("") == ""
        assert sanitize_fts_query("   ") == ""

    def test_simple_query(self):
        assert sanitize_fts_query("brave knight") == "brave knight"

    def test_escapes_special_characters(self):
        # Hyphens (FTS5 treats -term as NOT) → quoted
        assert sanitize_fts_query("knight-errant") == '"knight-errant"'
        # Colons (FTS5 column filter) → quoted
        assert sanitize_fts_query("title:story") == '"title:story"'
        # Parentheses (FTS5 grouping) → quoted
        assert sanitize_fts_query("(group)") == '"(group)"'
        # Single quotes → quoted
        assert sanitize_fts_query("what's") == '"what\'s"'

    def test_preserves_phrase_search(self):
        assert sanitize_fts_query('"brave knight"') == '"brave knight"'

    def test_preserves_prefix_wildcard(self):
        assert sanitize_fts_query("kni*") == "kni*"
        assert sanitize_fts_query("half-kni*") == '"half-kni"*'

    def test_drops_unbalanced_quotes(self):
        result = sanitize_fts_query('story" OR pasta')
        assert result.count('"') % 2 == 0
        assert "story" in result
        assert "pasta" in result

    def test_preserves_boolean_operators(self):
        assert sanitize_fts_query("story OR pasta") == "story OR pasta"
        assert sanitize_fts_query("story NOT pasta") == "story NOT pasta"


class TestEscapeAllSpecial:
    """Tests for aggressive last-resort quoting."""

    def test_quotes_every_term(self):
        assert _escape_all_special("brave knight") == '"brave" "knight"'

    def test_quotes_operators_too(self):
        assert _escape_all_special("story AND") == '"story" "AND"'
        assert _escape_all_special("OR story") == '"OR" "story"'

    def test_doubles_embedded_quotes(self):
        assert _escape_all_special('say"hi') == '"say""hi"'


class TestValidateQuery:
    """A blank query never reaches the index."""

    @pytest.mark.parametrize("query", [None, "", "   ", '"'])
    def test_blank_query_rejected(self, query):
        with pytest.raises(ValidationError, match="Missing query"):
            validate_query(query)

    def test_strips_whitespace(self):
        assert validate_query("  story  ") == "story"


class TestNormalizePagination:
    """Tests for limit/offset defaults, validation and clamping."""

    def test_defaults(self):
        assert normalize_pagination(None, None) == (10, 0)

    def test_numeric_strings_accepted(self):
        assert normalize_pagination("5", "2") == (5, 2)

    def test_large_limit_clamped(self):
        assert normalize_pagination(500, 0) == (100, 0)

    def test_configurable_limits(self, monkeypatch):
        monkeypatch.setenv("CHAT_SEARCH_DEFAULT_LIMIT", "3")
        monkeypatch.setenv("CHAT_SEARCH_MAX_LIMIT", "20")
        assert normalize_pagination(None, None) == (3, 0)
        assert normalize_pagination(50, 0) == (20, 0)

    @pytest.mark.parametrize(
        "limit, offset",
        [(0, 0), (-1, 0), (5, -1), ("abc", 0), (5, "x"), (True, 0), (2.5, 0)],
    )
    def test_invalid_values_rejected(self, limit, offset):
        with pytest.raises(ValidationError):
            normalize_pagination(limit, offset)

    @pytest.mark.parametrize("offset", [2**63, 10**20])
    def test_offset_beyond_sqlite_integer_rejected(self, offset):
        with pytest.raises(ValidationError, match="offset"):
            normalize_pagination(5, offset)

    def test_largest_sqlite_offset_accepted(self):
        assert normalize_pagination(5, 2**63 - 1) == (5, 2**63 - 1)


class TestNormalizeScope:
    """Tests for scope validation."""

    @pytest.mark.parametrize(
        "scope, expected",
        [
            (None, "all"),
            ("all", "all"),
            ("both", "all"),
            ("threads", "threads"),
            ("MESSAGES", "messages"),
        ],
    )
    def test_valid_scopes(self, scope, expected):
        assert normalize_scope(scope) == expected

    def test_unknown_scope_rejected(self):
        with pytest.raises(ValidationError, match="scope"):
            normalize_scope("users")


class TestSearchThreads:
    """Tests for thread title search."""

    def test_finds_live_thread(self, populated_db):
        page = search_threads(populated_db, "story", 10, 0)

        assert [hit.id for hit in page.data] == ["t-story"]
        assert page.total == 1

    def test_hides_soft_deleted_thread(self, populated_db):
        page = search_threads(populated_db, "sailing", 10, 0)

        assert page.data == []
        assert page.total == 0

    def test_restored_thread_is_found_again(self, populated_db):
        restore_thread(populated_db, "t-deleted")

        page = search_threads(populated_db, "sailing", 10, 0)
        assert [hit.id for hit in page.data] == ["t-deleted"]

    def test_ties_ordered_by_recency_then_id(self, temp_db):
        for thread_id, updated_at in [
            ("b", "2024-01-01 00:00:00"),
            ("a", "2024-01-01 00:00:00"),
            ("c", "2024-03-01 00:00:00"),
        ]:
            create_thread(
                temp_db,
                {"id": thread_id, "title": "Quest", "updated_at": updated_at},
            )

        page = search_threads(temp_db, "quest", 10, 0)

        assert [hit.id for hit in page.data] == ["c", "a", "b"]

    def test_better_match_ranks_first(self, temp_db):
        create_thread(
            temp_db,
            {
                "id": "long",
                "title": "Dragon sightings across the northern kingdoms",
            },
        )
        create_thread(temp_db, {"id": "short", "title": "Dragon"})

        page = search_threads(temp_db, "dragon", 10, 0)

        assert [hit.id for hit in page.data] == ["short", "long"]
        assert page.data[0].rank <= page.data[1].rank


class TestSearchMessages:
    """Tests for message content search."""

    def test_finds_messages_with_thread_title(self, populated_db):
        page = search_messages(populated_db, "knight", 10, 0)

        ids = {hit.id for hit in page.data}
        assert ids == {"m-user", "m-assistant"}
        assert {hit.thread_title for hit in page.data} == {"Tell me a story"}

    def test_hides_system_messages(self, populated_db):
        page = search_messages(populated_db, "storyteller", 10, 0)

        assert page.data == []
        assert page.total == 0

    def test_hides_messages_of_deleted_threads(self, populated_db):
        page = search_messages(populated_db, "sea", 10, 0)

        assert page.data == []

    def test_content_update_is_searchable(self, populated_db):
        update_message(
            populated_db, "m-pasta", content="How long should rice boil?"
        )

        assert search_messages(populated_db, "pasta", 10, 0).total == 0
        page = search_messages(populated_db, "rice", 10, 0)
        assert [hit.id for hit in page.data] == ["m-pasta"]

    def test_total_ignores_pagination(self, temp_db):
        create_thread(temp_db, {"id": "t1", "title": "Tournament"})
        for i in range(15):
            create_message(
                temp_db,
                {
                    "id": f"m{i:02d}",
                    "thread_id": "t1",
                    "role": "user",
                    "content": f"Knight number {i} enters the lists",
                },
            )

        first = search_messages(temp_db, "knight", 5, 0)
        last = search_messages(temp_db, "knight", 5, 10)
        beyond = search_messages(temp_db, "knight", 5, 15)

        assert (first.count, first.total) == (5, 15)
        assert (last.count, last.total) == (5, 15)
        assert (beyond.count, beyond.total) == (0, 15)
        assert not {h.id for h in first.data} & {h.id for h in last.data}

    def test_count_helpers_match_pages(self, populated_db):
        assert count_thread_matches(populated_db, "story") == 1
        assert count_message_matches(populated_db, "knight") == 2


class TestSearch:
    """Tests for the top-level search entry point."""

    def test_scope_all_returns_both(self, populated_db):
        results = search(populated_db, "story")

        assert results.scope == "all"
        assert (results.limit, results.offset) == (10, 0)
        assert [hit.id for hit in results.threads.data] == ["t-story"]
        assert [hit.id for hit in results.messages.data] == ["m-user"]

    def test_scope_threads_only(self, populated_db):
        results = search(populated_db, "story", scope="threads")

        assert results.messages is None
        assert set(results.to_dict()["results"]) == {"threads"}

    def test_scope_messages_only(self, populated_db):
        results = search(populated_db, "story", scope="messages")

        assert results.threads is None
        assert results.messages.total == 1

    def test_soft_delete_hides_thread_and_messages(self, populated_db):
        soft_delete_thread(populated_db, "t-story")

        results = search(populated_db, "story")

        assert results.threads.total == 0
        assert results.messages.total == 0

    def test_special_characters_do_not_raise(self, populated_db):
        for query in ["knight-errant", "title:story", "(story", "story)"]:
            search(populated_db, query)

    def test_phrase_query(self, populated_db):
        results = search(populated_db, '"brave knight"', scope="messages")

        assert [hit.id for hit in results.messages.data] == ["m-user"]

    def test_prefix_query(self, populated_db):
        results = search(populated_db, "kni*", scope="messages")

        assert results.messages.total == 2

    def test_blank_query_rejected(self, populated_db):
        with pytest.raises(ValidationError):
            search(populated_db, "  ")

    def test_huge_offset_rejected(self, populated_db):
        with pytest.raises(ValidationError):
            search(populated_db, "story", offset=10**20)

    @pytest.mark.parametrize(
        "query", ["story AND", "OR story", "AND", "NOT", "story NOT"]
    )
    def test_dangling_operators_do_not_raise(self, populated_db, query):
        results = search(populated_db, query)

        assert results.threads.total >= 0
        assert results.messages.total >= 0

    def test_dangling_operator_retried_as_words(self, temp_db):
        create_thread(temp_db, {"id": "t1", "title": "Salt and pepper"})
        create_thread(temp_db, {"id": "t2", "title": "Story or song"})

        pepper = search(temp_db, "pepper AND", scope="threads").threads
        story = search(temp_db, "OR story", scope="threads").threads

        assert [hit.id for hit in pepper.data] == ["t1"]
        assert [hit.id for hit in story.data] == ["t2"]

    def test_invalid_pagination_rejected(self, populated_db):
        with pytest.raises(ValidationError):
            search(populated_db, "story", limit=0)

    def test_leaves_no_open_transaction(self, populated_db):
        search(populated_db, "story")

        assert not populated_db.in_transaction

    def test_to_dict_shape(self, populated_db):
        data = search(populated_db, "knight", scope="messages").to_dict()

        assert data["query"] == "knight"
        page = data["results"]["messages"]
        assert page["count"] == 2
        assert page["total"] == 2
        assert {"id", "thread_id", "role", "content", "rank"} <= set(
            page["data"][0]
        )


class TestStoryScenario:
    """One thread, one message, walked through its life cycle."""

    @pytest.fixture
    def story_db(self, temp_db):
        create_thread(temp_db, {"id": "T1", "title": "Tell me a story"})
        create_message(
            temp_db,
            {
                "id": "M1",
                "thread_id": "T1",
                "role": "user",
                "content": "Tell me a story about a brave knight",
            },
        )
        return temp_db

    def test_initial_matches(self, story_db):
        threads = search(story_db, "story", scope="threads").threads
        assert [hit.id for hit in threads.data] == ["T1"]
        assert (threads.count, threads.total) == (1, 1)

        story = search(story_db, "story", scope="messages").messages
        knight = search(story_db, "knight", scope="messages").messages
        assert [hit.id for hit in story.data] == ["M1"]
        assert [hit.id for hit in knight.data] == ["M1"]

        assert search(story_db, "knight", scope="threads").threads.total == 0

    def test_soft_delete_hides_thread_but_keeps_document(self, story_db):
        soft_delete_thread(story_db, "T1")

        threads = search(story_db, "story", scope="threads").threads
        assert (threads.count, threads.total) == (0, 0)
        assert story_db.execute(
            "SELECT COUNT(*) FROM threads_fts WHERE id = 'T1'"
        ).fetchone()[0] == 1

    def test_content_update_drops_old_term(self, story_db):
        update_message(story_db, "M1", content="Tell me a story about a cat")

        assert search(story_db, "knight", scope="messages").messages.data == []
        assert search(story_db, "cat", scope="messages").messages.total == 1
