"""Tests for change detection."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from agent_history.adapters.base import SourceFile
from agent_history.index.fingerprint import (
    Verdict,
    classify,
    compute_fingerprint,
    content_hash,
    missing_sources,
    needs_hash,
)
from agent_history.models import IndexState

MTIME_NS = 1_736_935_200_000_000_000  # 2025-01-15T10:00:00Z
MTIME = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)


def make_source(size=100, mtime_ns=MTIME_NS, path="/tmp/s.jsonl"):
    return SourceFile(agent="claude-code", path=Path(path), size=size, mtime_ns=mtime_ns)


def make_state(size=100, mtime_ns=MTIME_NS, digest="abc", parsed_at=None, partial=False):
    return IndexState(
        path="/tmp/s.jsonl",
        agent="claude-code",
        size=size,
        mtime_ns=mtime_ns,
        content_hash=digest,
        parsed_at=parsed_at or MTIME + timedelta(hours=1),
        session_ids=["claude-code:s1"],
        partial=partial,
    )


class TestClassify:
    """Tests for classify()."""

    def test_new_file(self):
        """Test that untracked files are new."""
        assert classify(make_source(), None) is Verdict.NEW

    def test_partial_is_retried(self):
        """Test that a partially parsed file is always re-parsed."""
        assert classify(make_source(), make_state(partial=True)) is Verdict.RETRY
        assert not needs_hash(make_source(), make_state(partial=True))

    def test_size_change(self):
        """Test that a size change needs no hash."""
        source = make_source(size=120)
        assert not needs_hash(source, make_state())
        assert classify(source, make_state()) is Verdict.CHANGED

    def test_auto_policy_hashes_same_size(self):
        """Test that the default policy always hashes when the size is unchanged."""
        source = make_source()
        assert needs_hash(source, make_state(), "auto")
        assert classify(source, make_state(digest="abc"), "abc", "auto") is Verdict.UNCHANGED
        assert classify(source, make_state(digest="abc"), "def", "auto") is Verdict.CHANGED

    def test_hash_required(self):
        """Test that classify refuses to guess without a needed hash."""
        with pytest.raises(ValueError):
            classify(make_source(), make_state(), None, "auto")

    def test_touched_file_unchanged(self):
        """Test that an mtime change with identical content is unchanged."""
        source = make_source(mtime_ns=MTIME_NS + 5_000_000_000)
        assert needs_hash(source, make_state(), "mtime")
        assert classify(source, make_state(digest="abc"), "abc", "mtime") is Verdict.UNCHANGED

    def test_mtime_policy_trusts_stat(self):
        """Test that the mtime policy skips hashing when stat matches and is not racy."""
        assert not needs_hash(make_source(), make_state(), "mtime")
        assert classify(make_source(), make_state(), None, "mtime") is Verdict.UNCHANGED

    def test_mtime_policy_racy(self):
        """Test that a write within the racy window forces a hash."""
        prior = make_state(parsed_at=MTIME + timedelta(seconds=1))
        assert needs_hash(make_source(), prior, "mtime", racy_window=2.0)
        assert classify(make_source(), prior, "zzz", "mtime", racy_window=2.0) is Verdict.CHANGED

    def test_needs_parse(self):
        """Test which verdicts trigger a parse."""
        assert Verdict.NEW.needs_parse
        assert Verdict.CHANGED.needs_parse
        assert Verdict.RETRY.needs_parse
        assert not Verdict.UNCHANGED.needs_parse


class TestFingerprint:
    """Tests for fingerprint helpers."""

    def test_compute_fingerprint(self, tmp_path):
        """Test fingerprint of a real file."""
        path = tmp_path / "s.jsonl"
        path.write_bytes(b'{"a": 1}\n')
        st = path.stat()
        source = SourceFile(agent="codex", path=path, size=st.st_size, mtime_ns=st.st_mtime_ns)
        fp = compute_fingerprint(source)
        assert fp.size == 9
        assert fp.content_hash == content_hash(b'{"a": 1}\n')

    def test_hash_differs_on_content(self):
        """Test that same-length content hashes differently."""
        assert content_hash(b"alpha") != content_hash(b"bravo")

    def test_missing_sources(self, tmp_path):
        """Test detection of tracked files that vanished."""
        present = tmp_path / "here.jsonl"
        present.write_text("{}")
        states = [
            IndexState(path=str(present), agent="codex", size=2, mtime_ns=0, content_hash="", parsed_at=MTIME),
            IndexState(path=str(tmp_path / "gone.jsonl"), agent="codex", size=2, mtime_ns=0,
                       content_hash="", parsed_at=MTIME),
            IndexState(path=str(tmp_path / "gone2.jsonl"), agent="cursor", size=2, mtime_ns=0,
                       content_hash="", parsed_at=MTIME),
        ]
        assert [s.path for s in missing_sources(states)] == [
            str(tmp_path / "gone.jsonl"), str(tmp_path / "gone2.jsonl"),
        ]
        assert [s.agent for s in missing_sources(states, {"cursor"})] == ["cursor"]
