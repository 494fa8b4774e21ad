"""Canonical session model shared by adapters, the store and queries."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Optional

ROLES = ("user", "assistant", "system")
TOOL_KINDS = ("edit", "write", "read", "delete", "shell", "search", "other")

STATUS_ACTIVE = "active"
STATUS_RESUMED = "resumed"
STATUS_ARCHIVED = "archived"


def make_session_id(agent: str, external_id: str) -> str:
    """Build the store key for a session: ``<agent>:<external_id>``."""
    return f"{agent}:{external_id}"


@dataclass
class Session:
    """One conversation as reconstructed from a single source file."""

    # Identity
    agent: str  # adapter name: "claude-code", "codex", "cursor"
    external_id: str  # agent-native id, or the file stem

    # Project context
    project_path: str = ""
    project_name: str = ""

    # Content
    title: str = ""
    summary: str = ""  # first sentence of the first user message
    work_summary: str = ""  # what the last assistant message says was done

    # File changes recorded by tool calls
    files_created: int = 0
    files_modified: int = 0
    files_deleted: int = 0

    # Timing (timezone-aware, UTC)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    status: str = STATUS_ARCHIVED
    source_path: str = ""

    @property
    def id(self) -> str:
        return make_session_id(self.agent, self.external_id)

    @property
    def last_active_at(self) -> Optional[datetime]:
        return self.ended_at or self.started_at


@dataclass
class Message:
    ordinal: int
    role: str  # "user", "assistant" or "system"
    content: str
    timestamp: Optional[datetime] = None


@dataclass
class ToolCall:
    """A side effect recorded within a message: a file change or a command."""

    ordinal: int
    message_ordinal: Optional[int]
    kind: str  # one of TOOL_KINDS
    tool_name: str = ""
    target_path: Optional[str] = None
    summary: str = ""
    timestamp: Optional[datetime] = None


@dataclass
class ParsedSession:
    """Adapter output for one source file.

    ``partial`` marks a line-delimited file with lines that failed to
    parse. Such a file is re-parsed on every run until it reads cleanly.
    """

    session: Session
    messages: list[Message] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    partial: bool = False
    skipped_lines: int = 0


@dataclass
class IndexState:
    path: str
    agent: str
    size: int
    mtime_ns: int
    content_hash: str
    parsed_at: datetime
    session_ids: list[str] = field(default_factory=list)
    partial: bool = False


@dataclass
class SessionFilter:
    """Filters accepted by list, search and stats.

    ``last`` is a relative window such as ``7d`` or ``12h`` and wins over
    ``since`` when both are given.
    """

    agent: Optional[str] = None
    project: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    last: Optional[str] = None
    tag: Optional[str] = None
    limit: Optional[int] = None


@dataclass
class PruneCriteria:
    missing: bool = False  # sessions whose source file no longer exists
    older_than: Optional[str] = None  # duration ("90d") or date
    agent: Optional[str] = None

    def is_empty(self) -> bool:
        return not self.missing and not self.older_than and not self.agent


@dataclass
class SessionSummary:
    id: str
    agent: str
    external_id: str
    project_path: str
    project_name: str
    title: str
    summary: str
    started_at: Optional[datetime]
    ended_at: Optional[datetime]
    status: str
    message_count: int
    tool_call_count: int
    source_path: str
    work_summary: str = ""
    files_created: int = 0
    files_modified: int = 0
    files_deleted: int = 0
    tags: list[str] = field(default_factory=list)

    @property
    def last_active_at(self) -> Optional[datetime]:
        return self.ended_at or self.started_at


@dataclass
class SessionDetail:
    session: SessionSummary
    messages: list[Message] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.session.id


@dataclass
class SearchHit:
    session: SessionSummary
    score: float
    relevance: float
    recency: float
    snippet: str
    matched: str  # "message", "session" or "tool_call"
    message_ordinal: Optional[int] = None
    role: Optional[str] = None

    @property
    def session_id(self) -> str:
        return self.session.id


@dataclass
class GroupStats:
    """Totals for one agent, project or period bucket."""

    sessions: int = 0
    messages: int = 0
    tool_calls: int = 0
    first_activity: Optional[datetime] = None
    last_activity: Optional[datetime] = None


@dataclass
class Stats:
    total_sessions: int = 0
    total_messages: int = 0
    total_tool_calls: int = 0
    first_activity: Optional[datetime] = None
    last_activity: Optional[datetime] = None
    period: str = "day"
    by_agent: dict[str, GroupStats] = field(default_factory=dict)
    by_project: dict[str, GroupStats] = field(default_factory=dict)
    by_period: dict[str, GroupStats] = field(default_factory=dict)
    tool_kinds: dict[str, int] = field(default_factory=dict)
    top_files: list[tuple[str, int]] = field(default_factory=list)


@dataclass
class FileFailure:
    path: str
    agent: str
    kind: str  # "file_unreadable", "parse_failure" or "store_transaction_failure"
    message: str


@dataclass
class RunSummary:
    files_scanned: int = 0
    files_changed: int = 0
    files_unchanged: int = 0
    files_partial: int = 0
    files_failed: int = 0
    sessions_written: int = 0
    messages_written: int = 0
    missing_sources: int = 0
    cancelled: bool = False
    duration_ms: int = 0
    failures: list[FileFailure] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)
