"""Tests for the HistoryEngine facade: prune and tags."""

import pytest

from agent_history.config import Settings
from agent_history.engine import HistoryEngine
from agent_history.errors import InvalidFilter, NotFound
from agent_history.models import PruneCriteria, SessionFilter

from conftest import claude_record, days_ago, write_jsonl


@pytest.fixture
def two_sessions(engine, claude_project):
    old = write_jsonl(claude_project / "old.jsonl", [
        claude_record("user", "old work", session_id="old", when=days_ago(120)),
    ])
    new = write_jsonl(claude_project / "new.jsonl", [
        claude_record("user", "new work", session_id="new", when=days_ago(2)),
    ])
    engine.ingest()
    return old, new


class TestPrune:
    """Tests for explicit pruning."""

    def test_requires_criteria(self, engine):
        """Test that an empty prune is refused."""
        with pytest.raises(InvalidFilter):
            engine.prune()

    def test_prune_missing(self, engine, two_sessions):
        """Test removing sessions whose source file is gone."""
        old, _ = two_sessions
        old.unlink()
        engine.ingest()
        assert len(engine.list_sessions()) == 2

        assert engine.prune(missing=True) == 1
        assert [s.id for s in engine.list_sessions()] == ["claude-code:new"]
        assert str(old) not in engine.db.get_index_states()
        assert engine.missing_sources() == []

    def test_prune_missing_nothing_to_do(self, engine, two_sessions):
        """Test that pruning with all sources present removes nothing."""
        assert engine.prune(missing=True) == 0
        assert len(engine.list_sessions()) == 2

    def test_prune_older_than(self, engine, two_sessions):
        """Test age-based pruning keeps the file tracked."""
        old, _ = two_sessions
        assert engine.prune(PruneCriteria(older_than="90d")) == 1
        assert [s.id for s in engine.list_sessions()] == ["claude-code:new"]
        assert str(old) in engine.db.get_index_states()

        # The unchanged file is not re-ingested
        assert engine.ingest().files_changed == 0

    def test_prune_by_agent(self, engine, two_sessions):
        """Test removing every session of one agent."""
        assert engine.prune(agent="claude") == 2
        assert engine.list_sessions() == []

    def test_prune_invalid_age(self, engine):
        """Test that an unreadable age is rejected."""
        with pytest.raises(InvalidFilter):
            engine.prune(older_than="a while")

    def test_prune_removes_tags(self, engine, two_sessions):
        """Test that pruned sessions lose their tags."""
        engine.tag("claude-code:old", ["x"])
        engine.prune(older_than="90d")
        assert engine.db.get_tags("claude-code:old") == []


class TestTags:
    """Tests for session tags."""

    def test_add_and_remove(self, engine, two_sessions):
        """Test tagging round trip."""
        assert engine.tag("claude-code:new", ["review", " bug ", ""]) == ["bug", "review"]
        assert engine.tag("claude-code:new", ["bug"], remove=True) == ["review"]
        assert engine.tags("claude-code:new") == ["review"]

    def test_tag_by_external_id(self, engine, two_sessions):
        """Test tagging with a bare agent-native id."""
        assert engine.tag("new", ["later"]) == ["later"]
        assert engine.get("claude-code:new").session.tags == ["later"]

    def test_tag_unknown_session(self, engine):
        """Test that tagging a missing session raises NotFound."""
        with pytest.raises(NotFound):
            engine.tag("claude-code:nope", ["x"])

    def test_tags_survive_reingest(self, engine, two_sessions, claude_project):
        """Test that a re-parse of a changed file keeps its tags."""
        _, new = two_sessions
        engine.tag("claude-code:new", ["keep"])
        with open(new, "a") as f:
            f.write('{"type": "user", "sessionId": "new", "message": {"role": "user", "content": "more"}}\n')
        assert engine.ingest().files_changed == 1
        assert engine.tags("claude-code:new") == ["keep"]


class TestEngineSetup:
    """Tests for engine construction."""

    def test_enabled_agents(self, tmp_path, agent_roots):
        """Test that only enabled agents get adapters."""
        settings = Settings(db_path=tmp_path / "i.db", agent_roots=agent_roots, enabled_agents=["claude", "codex"])
        with HistoryEngine(settings) as engine:
            assert sorted(a.name for a in engine.adapters) == ["claude-code", "codex"]
            with pytest.raises(InvalidFilter):
                engine.ingest(agents=["cursor"])

    def test_custom_roots(self, engine, agent_roots):
        """Test that configured data directories are used."""
        roots = {a.name: a.root for a in engine.adapters}
        assert roots == agent_roots

    def test_close_and_reopen(self, settings, claude_project):
        """Test that the index persists across engines."""
        write_jsonl(claude_project / "s1.jsonl", [claude_record("user", "persist me")])
        with HistoryEngine(settings) as engine:
            engine.ingest()
        with HistoryEngine(settings) as engine:
            assert [h.session_id for h in engine.search("persist")] == ["claude-code:s1"]
            assert engine.ingest().files_unchanged == 1


class TestFilters:
    """Tests for filter normalization."""

    def test_caller_filter_left_unchanged(self, engine, two_sessions):
        """Test that agent aliases are resolved on a copy of the caller's filter."""
        filters = SessionFilter(agent="claude")
        assert len(engine.list_sessions(filters)) == 2
        assert len(engine.stats(filters).by_agent) == 1
        assert filters.agent == "claude"
