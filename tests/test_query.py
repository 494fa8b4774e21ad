"""Tests for list, search, get and stats."""

from datetime import datetime, timezone

import pytest

from agent_history.errors import InvalidFilter, NotFound
from agent_history.index.query import build_match_query, normalize_scores, recency_score
from agent_history.models import GroupStats, SessionFilter

from conftest import claude_record, days_ago, write_jsonl


def write_codex(root, external_id, text, when="2025-01-15T10:00:00Z", cwd="/home/user/api"):
    return write_jsonl(root / f"rollout-{external_id}.jsonl", [
        {"timestamp": when, "type": "session_meta",
         "payload": {"id": external_id, "cwd": cwd, "timestamp": when}},
        {"timestamp": when, "type": "response_item",
         "payload": {"type": "message", "role": "user", "content": [{"type": "input_text", "text": text}]}},
    ])


class TestHelpers:
    """Tests for query helpers."""

    def test_build_match_query(self):
        """Test FTS quoting and prefix terms."""
        assert build_match_query("auth bug") == '"auth" "bug"'
        assert build_match_query("auth*") == '"auth"*'
        assert build_match_query('say "hi"') == '"say" """hi"""'
        assert build_match_query("  ") == ""

    def test_normalize_scores(self):
        """Test normalization to [0.5, 1.0]."""
        assert normalize_scores({}) == {}
        assert normalize_scores({"a": 3.0, "b": 3.0}) == {"a": 1.0, "b": 1.0}
        normalized = normalize_scores({"a": 1.0, "b": 3.0, "c": 2.0})
        assert normalized == {"a": 0.5, "b": 1.0, "c": 0.75}

    def test_recency_score(self):
        """Test exponential decay."""
        now = days_ago(0)
        assert recency_score(now, now, 30) == 1.0
        assert recency_score(days_ago(30), now, 30) == pytest.approx(0.5, abs=1e-3)
        assert recency_score(None, now, 30) == 0.0


class TestAuthScenario:
    """End-to-end check of one Claude Code session."""

    @pytest.fixture
    def indexed(self, engine, claude_project):
        write_jsonl(claude_project / "s1.jsonl", [
            claude_record("user", "fix auth bug"),
            claude_record("assistant", [
                {"type": "text", "text": "I'll update the token check."},
                {"type": "tool_use", "name": "Edit", "input": {"file_path": "auth.go"}},
            ]),
        ])
        engine.ingest()
        return engine

    def test_get(self, indexed):
        """Test that the session has both messages and the edit."""
        detail = indexed.get("claude-code:s1")
        assert len(detail.messages) == 2
        assert len(detail.tool_calls) == 1
        assert detail.tool_calls[0].kind == "edit"
        assert detail.tool_calls[0].target_path == "auth.go"
        assert detail.session.message_count == 2
        assert detail.session.tool_call_count == 1

    def test_get_by_external_id(self, indexed):
        """Test lookup with a bare agent-native id."""
        assert indexed.get("s1").id == "claude-code:s1"

    def test_search(self, indexed):
        """Test that a keyword finds the session with a highlighted snippet."""
        hits = indexed.search("auth")
        assert [h.session_id for h in hits] == ["claude-code:s1"]
        assert "[auth]" in hits[0].snippet.lower()
        assert 0 < hits[0].score <= 1.0

    def test_search_by_file(self, indexed):
        """Test lookup by touched file path."""
        assert [s.id for s in indexed.search_by_file("auth.go")] == ["claude-code:s1"]
        assert indexed.search_by_file("main.go") == []

    def test_search_by_file_escapes_wildcards(self, indexed):
        """Test that LIKE wildcards in the fragment are literal."""
        assert indexed.search_by_file("a%h") == []
        assert indexed.search_by_file("auth_go") == []


class TestSearch:
    """Tests for keyword search."""

    @pytest.fixture
    def indexed(self, engine, claude_project, agent_roots):
        write_jsonl(claude_project / "login.jsonl", [
            claude_record("user", "add authentication to the login page", session_id="login"),
        ])
        write_jsonl(claude_project / "db.jsonl", [
            claude_record("user", "refactor the database layer", session_id="db"),
        ])
        write_codex(agent_roots["codex"], "c1", "tune the database indexes")
        engine.ingest()
        return engine

    def test_exactly_one_match(self, indexed):
        """Test that a word present in one session returns only it."""
        hits = indexed.search("authentication")
        assert [h.session_id for h in hits] == ["claude-code:login"]

    def test_whole_words_unless_prefix(self, indexed, claude_project):
        """Test that related word forms only match through an explicit prefix."""
        write_jsonl(claude_project / "authd.jsonl", [
            claude_record("user", "the user is authenticated already", session_id="authd"),
        ])
        indexed.ingest()

        assert [h.session_id for h in indexed.search("authentication")] == ["claude-code:login"]
        assert [h.session_id for h in indexed.search("authenticated")] == ["claude-code:authd"]
        assert indexed.search("authentications") == []
        ids = [h.session_id for h in indexed.search("authent*")]
        assert sorted(ids) == ["claude-code:authd", "claude-code:login"]

    def test_one_hit_per_session(self, indexed):
        """Test that sessions matching in several places appear once."""
        ids = [h.session_id for h in indexed.search("database")]
        assert sorted(ids) == ["claude-code:db", "codex:c1"]

    def test_search_with_agent_filter(self, indexed):
        """Test that filters narrow search results."""
        hits = indexed.search("database", agent="codex")
        assert [h.session_id for h in hits] == ["codex:c1"]

    def test_search_metadata(self, indexed):
        """Test that project names are searchable."""
        hits = indexed.search("api")
        assert [h.session_id for h in hits] == ["codex:c1"]
        assert hits[0].matched == "session"

    def test_no_match(self, indexed):
        """Test a query with no hits."""
        assert indexed.search("kubernetes") == []
        assert indexed.search("   ") == []

    def test_search_limit(self, indexed):
        """Test result limits."""
        assert len(indexed.search("database", limit=1)) == 1

    def test_recency_breaks_relevance_ties(self, engine, claude_project):
        """Test that of two equally relevant sessions the newer ranks first."""
        write_jsonl(claude_project / "old.jsonl", [
            claude_record("user", "migrate the cache", session_id="old", when=days_ago(60)),
        ])
        write_jsonl(claude_project / "new.jsonl", [
            claude_record("user", "migrate the cache", session_id="new", when=days_ago(1)),
        ])
        engine.ingest()
        hits = engine.search("cache")
        assert [h.session_id for h in hits] == ["claude-code:new", "claude-code:old"]
        assert hits[0].recency > hits[1].recency

    def test_search_is_stable(self, indexed):
        """Test that repeated searches return the same order."""
        first = [h.session_id for h in indexed.search("the")]
        assert first == [h.session_id for h in indexed.search("the")]


class TestListSessions:
    """Tests for listing and filters."""

    @pytest.fixture
    def indexed(self, engine, claude_project, agent_roots):
        write_jsonl(claude_project / "recent.jsonl", [
            claude_record("user", "recent work", session_id="recent", when=days_ago(1)),
        ])
        write_jsonl(claude_project / "older.jsonl", [
            claude_record("user", "older work", session_id="older", when=days_ago(8)),
        ])
        write_codex(agent_roots["codex"], "c1", "codex work")
        engine.ingest()
        return engine

    def test_most_recent_first(self, indexed):
        """Test ordering by last activity."""
        ids = [s.id for s in indexed.list_sessions()]
        assert ids == ["claude-code:recent", "claude-code:older", "codex:c1"]

    def test_last_window(self, indexed):
        """Test relative time window filtering."""
        ids = [s.id for s in indexed.list_sessions(agent="claude-code", last="7d")]
        assert ids == ["claude-code:recent"]

    def test_agent_alias(self, indexed):
        """Test that agent filters accept aliases."""
        ids = [s.id for s in indexed.list_sessions(agent="claude")]
        assert ids == ["claude-code:recent", "claude-code:older"]

    def test_project_filter(self, indexed):
        """Test filtering by project name or path."""
        assert [s.id for s in indexed.list_sessions(project="api")] == ["codex:c1"]
        assert [s.id for s in indexed.list_sessions(project="/home/user/api")] == ["codex:c1"]
        assert len(indexed.list_sessions(project="WEBAPP")) == 2

    def test_tag_filter(self, indexed):
        """Test filtering by tag."""
        indexed.tag("claude-code:older", ["review"])
        sessions = indexed.list_sessions(tag="review")
        assert [s.id for s in sessions] == ["claude-code:older"]
        assert sessions[0].tags == ["review"]

    def test_limit(self, indexed):
        """Test list limits."""
        assert len(indexed.list_sessions(limit=2)) == 2

    def test_session_filter_object(self, indexed):
        """Test passing a SessionFilter instead of keywords."""
        sessions = indexed.list_sessions(SessionFilter(agent="codex"))
        assert [s.id for s in sessions] == ["codex:c1"]
        with pytest.raises(TypeError):
            indexed.list_sessions(SessionFilter(agent="codex"), limit=1)

    def test_invalid_filters(self, indexed):
        """Test that bad filters are rejected."""
        with pytest.raises(InvalidFilter):
            indexed.list_sessions(last="yesterday")
        with pytest.raises(InvalidFilter):
            indexed.list_sessions(agent="vim")

    def test_empty_store(self, engine):
        """Test queries before anything is indexed."""
        assert engine.list_sessions() == []
        assert engine.search("anything") == []
        assert engine.stats().total_sessions == 0


class TestGet:
    """Tests for session lookup."""

    def test_not_found(self, engine):
        """Test that unknown ids raise NotFound."""
        with pytest.raises(NotFound):
            engine.get("claude-code:nope")

    def test_ambiguous_external_id(self, engine, claude_project, agent_roots):
        """Test that a bare id shared by two agents is not guessed."""
        write_jsonl(claude_project / "s1.jsonl", [claude_record("user", "hi")])
        write_codex(agent_roots["codex"], "s1", "hello")
        engine.ingest()
        with pytest.raises(NotFound):
            engine.get("s1")
        assert engine.get("codex:s1").session.agent == "codex"

    def test_messages_in_order(self, engine, claude_project):
        """Test that messages come back in source order."""
        write_jsonl(claude_project / "s1.jsonl", [
            claude_record(role, text)
            for role, text in [("user", "one"), ("assistant", "two"), ("user", "three")]
        ])
        engine.ingest()
        detail = engine.get("claude-code:s1")
        assert [m.content for m in detail.messages] == ["one", "two", "three"]
        assert [m.ordinal for m in detail.messages] == [0, 1, 2]


class TestStats:
    """Tests for aggregate statistics."""

    @pytest.fixture
    def indexed(self, engine, claude_project, agent_roots):
        write_jsonl(claude_project / "s1.jsonl", [
            claude_record("user", "edit things"),
            claude_record("assistant", [
                {"type": "tool_use", "name": "Edit", "input": {"file_path": "a.py"}},
                {"type": "tool_use", "name": "Write", "input": {"file_path": "a.py"}},
                {"type": "tool_use", "name": "Bash", "input": {"command": "make"}},
            ]),
        ])
        write_codex(agent_roots["codex"], "c1", "hello", when="2025-02-03T09:00:00Z")
        engine.ingest()
        return engine

    def test_totals(self, indexed):
        """Test overall counts."""
        stats = indexed.stats()
        assert stats.total_sessions == 2
        assert stats.total_messages == 2
        assert stats.total_tool_calls == 3
        assert {k: g.sessions for k, g in stats.by_agent.items()} == {"claude-code": 1, "codex": 1}
        assert {k: g.sessions for k, g in stats.by_project.items()} == {"api": 1, "webapp": 1}

    def test_group_breakdowns(self, indexed):
        """Test that every group carries sessions, messages, tool calls and span."""
        stats = indexed.stats()
        jan = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)
        feb = datetime(2025, 2, 3, 9, 0, tzinfo=timezone.utc)
        assert stats.by_agent["claude-code"] == GroupStats(
            sessions=1, messages=1, tool_calls=3, first_activity=jan, last_activity=jan,
        )
        assert stats.by_project["api"] == GroupStats(
            sessions=1, messages=1, tool_calls=0, first_activity=feb, last_activity=feb,
        )

        by_month = indexed.stats(period="month").by_period
        assert by_month["2025-01"].tool_calls == 3
        assert by_month["2025-02"].messages == 1

    def test_periods(self, indexed):
        """Test grouping by day and month."""
        by_day = indexed.stats(period="day").by_period
        by_month = indexed.stats(period="month").by_period
        assert {k: g.sessions for k, g in by_day.items()} == {"2025-01-15": 1, "2025-02-03": 1}
        assert {k: g.sessions for k, g in by_month.items()} == {"2025-01": 1, "2025-02": 1}

    def test_tools_and_files(self, indexed):
        """Test tool kind counts and most changed files."""
        stats = indexed.stats()
        assert stats.tool_kinds == {"edit": 1, "shell": 1, "write": 1}
        assert stats.top_files == [("a.py", 2)]

    def test_filtered_stats(self, indexed):
        """Test that filters apply to stats."""
        stats = indexed.stats(agent="codex")
        assert stats.total_sessions == 1
        assert stats.tool_kinds == {}

    def test_invalid_period(self, indexed):
        """Test that unknown periods are rejected."""
        with pytest.raises(InvalidFilter):
            indexed.stats(period="decade")
