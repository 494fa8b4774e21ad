"""Shared fixtures: temporary agent data directories and an engine over them."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from agent_history.config import Settings
from agent_history.engine import HistoryEngine


def iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def days_ago(days: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)


def write_jsonl(path: Path, records: list, trailing: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [json.dumps(r) for r in records]
    path.write_text("\n".join(lines) + "\n" + trailing)
    return path


def claude_record(role: str, content, session_id: str = "s1", when: datetime | None = None,
                  cwd: str = "/home/user/webapp") -> dict:
    when = when or datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)
    return {
        "type": role,
        "sessionId": session_id,
        "cwd": cwd,
        "timestamp": iso(when),
        "message": {"role": role, "content": content},
    }


@pytest.fixture
def agent_roots(tmp_path):
    roots = {
        "claude-code": tmp_path / "claude" / "projects",
        "codex": tmp_path / "codex" / "sessions",
        "cursor": tmp_path / "cursor",
    }
    for root in roots.values():
        root.mkdir(parents=True)
    return roots


@pytest.fixture
def claude_project(agent_roots):
    project_dir = agent_roots["claude-code"] / "-home-user-webapp"
    project_dir.mkdir()
    return project_dir


@pytest.fixture
def settings(tmp_path, agent_roots):
    return Settings(
        db_path=tmp_path / "index.db",
        workers=2,
        agent_roots=agent_roots,
    )


@pytest.fixture
def engine(settings):
    with HistoryEngine(settings) as engine:
        yield engine
