"""Base class and shared parsing helpers for session format adapters."""

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from ..errors import FileUnreadable, ParseFailure
from ..models import Message, ParsedSession, Session, ToolCall

logger = logging.getLogger(__name__)

SUMMARY_MAX_CHARS = 120
TITLE_MAX_CHARS = 80
OPAQUE_SUMMARY_MAX_CHARS = 500

# Tool name (lowercased) -> canonical kind
TOOL_KIND_MAP = {
    "write": "write",
    "create": "write",
    "create_file": "write",
    "edit": "edit",
    "multiedit": "edit",
    "notebookedit": "edit",
    "str_replace_editor": "edit",
    "edit_file": "edit",
    "search_replace": "edit",
    "apply_patch": "edit",
    "read": "read",
    "read_file": "read",
    "view": "read",
    "delete": "delete",
    "delete_file": "delete",
    "bash": "shell",
    "shell": "shell",
    "shell_command": "shell",
    "exec_command": "shell",
    "local_shell": "shell",
    "run_terminal_cmd": "shell",
    "grep": "search",
    "glob": "search",
    "websearch": "search",
    "web_search": "search",
    "codebase_search": "search",
    "grep_search": "search",
    "file_search": "search",
}

SUMMARY_HEADERS = ("## summary", "## result", "## done")
WORK_KEYWORDS = (
    "complete", "implement", "added", "modified", "created", "fixed",
    "updated", "refactored", "removed", "resolved",
)

PATH_KEYS =("file_path", "path", "notebook_path", "target_file", "filePath", "file")
COMMAND_KEYS = ("command", "cmd")


@dataclass
class SourceFile:
    """A candidate session file found during enumeration."""

    agent: str
    path: Path
    size: int
    mtime_ns: int
    project_hint: str = ""

    @property
    def mtime(self) -> datetime:
        return datetime.fromtimestamp(self.mtime_ns / 1e9, tz=timezone.utc)

    def read_bytes(self) -> bytes:
        try:
            return self.path.read_bytes()
        except OSError as e:
            raise FileUnreadable(self.path, e.strerror or str(e)) from e


def tool_kind(tool_name: str) -> str:
    return TOOL_KIND_MAP.get((tool_name or "").lower(), "other")


def opaque_summary(payload) -> str:
    """Compact, stable JSON rendering of a tool payload we don't understand."""
    if payload is None:
        return ""
    if isinstance(payload, str):
        text = payload
    else:
        try:
            text = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
        except (TypeError, ValueError):
            text = str(payload)
    return text[:OPAQUE_SUMMARY_MAX_CHARS]


def target_path_from_input(tool_input) -> str | None:
    if not isinstance(tool_input, dict):
        return None
    for key in PATH_KEYS:
        value = tool_input.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def command_from_input(tool_input) -> str | None:
    if not isinstance(tool_input, dict):
        return None
    for key in COMMAND_KEYS:
        value = tool_input.get(key)
        if isinstance(value, list):
            return " ".join(str(v) for v in value)
        if isinstance(value, str) and value:
            return value
    return None


def extract_text_content(content, text_only: bool = False) -> str:
    """Extract text from message content (handles both string and list formats)."""
    if isinstance(content, str):
        # String content - return as-is (skip system reminders)
        if content.strip().startswith("<system-reminder>"):
            return ""
        return content
    if isinstance(content, list):
        texts = []
        for item in content:
            if isinstance(item, dict):
                if item.get("type") in ("text", "input_text", "output_text"):
                    text = item.get("text", "")
                    if text and not text.strip().startswith("<system-reminder>"):
                        texts.append(text)
                elif item.get("type") == "tool_result" and not text_only:
                    content_str = str(item.get('content', ''))[:50]
                    texts.append(f"(tool_result: {content_str}...)")
            elif isinstance(item, str):
                texts.append(item)
        return " ".join(texts)
    if content is None:
        return ""
    return str(content)


def first_sentence(text: str, limit: int = SUMMARY_MAX_CHARS) -> str:
    """Rule-based summary: the first sentence of the first content line.

    Blank lines and markdown headers are skipped. Capped at ``limit``.
    """
    line = ""
    for raw in text.splitlines():
        stripped = raw.strip()
        if stripped and not stripped.startswith("#"):
            line = " ".join(stripped.split())
            break
    if not line:
        return ""
    for i, ch in enumerate(line):
        if ch in ".!?" and (i + 1 == len(line) or line[i + 1] == " "):
            line = line[: i + 1]
            break
    if len(line) > limit:
        line = line[: limit - 3].rstrip() + "..."
    return line


def strip_markdown(line: str) -> str:
    """Drop bold/italic markers and a leading list marker."""
    text = line.replace("**", "").replace("__", "").strip()
    if text.startswith(("- ", "* ")):
        text = text[2:]
    else:
        match = re.match(r"\d+\. ", text)
        if match:
            text = text[match.end():]
    return text.strip()


def _meaningful_lines(text: str) -> list[str]:
    # Code blocks, tables, HTML comments and blank lines carry no summary
    lines = []
    in_code_block = False
    for raw in text.splitlines():
        line = raw.strip()
        if line.startswith("```"):
            in_code_block = not in_code_block
            continue
        if in_code_block or not line or line.startswith(("|", "<!--")):
            continue
        lines.append(line)
    return lines


def work_summary(text: str, limit: int = SUMMARY_MAX_CHARS) -> str:
    """Rule-based summary of what an assistant message reports as done.

    Tries the line after a summary header first, then the line matching
    the most completion keywords, then the first plain line.
    """
    lines = _meaningful_lines(text)

    for i, line in enumerate(lines):
        if line.lower().startswith(SUMMARY_HEADERS):
            for following in lines[i + 1:]:
                if following.startswith("#"):
                    break
                cleaned = strip_markdown(following)
                if len(cleaned) > 3:
                    return cleaned[:limit]

    best, best_score = "", 0
    for line in lines:
        if len(line) <= 5 or line.startswith("#"):
            continue
        lower = line.lower()
        score = sum(1 for keyword in WORK_KEYWORDS if keyword in lower)
        if score > best_score:
            best, best_score = line, score
    if best:
        return strip_markdown(best)[:limit]

    for line in lines:
        if len(line) > 5 and not line.startswith("#"):
            return strip_markdown(line)[:limit]
    return ""


def read_json_lines(data: bytes, path: Path) -> tuple[list[dict], int]:
    """Parse line-delimited JSON, skipping lines that fail.

    Returns the decoded records and the count of skipped lines. A file
    with content but not a single valid record raises ParseFailure.
    """
    records = []
    skipped = 0
    for raw in data.splitlines():
        line = raw.decode("utf-8", errors="replace").strip()
        if not line:
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            skipped += 1
            continue
        if not isinstance(record, dict):
            skipped += 1
            continue
        records.append(record)

    if skipped and not records:
        raise ParseFailure(path, f"no valid JSON lines ({skipped} malformed)")
    if skipped:
        logger.debug(f"Skipped {skipped} malformed lines in {path}")
    return records, skipped


def load_json_document(data: bytes, path: Path):
    """Parse a whole JSON document; any syntax error fails the file."""
    try:
        return json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ParseFailure(path, str(e)) from e


class SessionBuilder:
    """Accumulates messages and tool calls in file order.

    Ordinals are assigned as records are accepted, so they follow source
    order even when timestamps are missing or equal.
    """

    def __init__(self):
        self.messages: list[Message] = []
        self.tool_calls: list[ToolCall] = []
        self.timestamps: list[datetime] = []

    def add_message(self, role: str, content: str, timestamp: datetime | None = None) -> int | None:
        if role not in ("user", "assistant", "system"):
            return None
        if not content or not content.strip():
            return None
        ordinal = len(self.messages)
        self.messages.append(Message(ordinal=ordinal, role=role, content=content, timestamp=timestamp))
        if timestamp:
            self.timestamps.append(timestamp)
        return ordinal

    def add_tool_call(
        self,
        kind: str,
        tool_name: str = "",
        target_path: str | None = None,
        summary: str = "",
        timestamp: datetime | None = None,
        message_ordinal: int | None = None,
    ) -> ToolCall:
        if message_ordinal is None and self.messages:
            message_ordinal = self.messages[-1].ordinal
        call = ToolCall(
            ordinal=len(self.tool_calls),
            message_ordinal=message_ordinal,
            kind=kind,
            tool_name=tool_name,
            target_path=target_path,
            summary=summary,
            timestamp=timestamp,
        )
        self.tool_calls.append(call)
        if timestamp:
            self.timestamps.append(timestamp)
        return call

    def note_timestamp(self, timestamp: datetime | None):
        if timestamp:
            self.timestamps.append(timestamp)

    @property
    def first_user_prompt(self) -> str:
        for msg in self.messages:
            if msg.role == "user":
                return msg.content
        return ""

    @property
    def last_assistant_message(self) -> str:
        for msg in reversed(self.messages):
            if msg.role == "assistant":
                return msg.content
        return ""

    def build(
        self,
        source: "SourceFile",
        external_id: str,
        *,
        project_path: str = "",
        title: str = "",
        started_at: datetime | None = None,
        partial: bool = False,
        skipped_lines: int = 0,
    ) -> ParsedSession:
        first_prompt = self.first_user_prompt

        # Generate title from first prompt if not available
        if not title and first_prompt:
            first_line = first_prompt.strip().split('\n')[0].strip()
            title = first_line[:TITLE_MAX_CHARS]

        if self.timestamps:
            started_at = min([started_at, *self.timestamps] if started_at else self.timestamps)
            ended_at = max(self.timestamps)
        else:
            started_at = started_at or source.mtime
            ended_at = source.mtime

        project_path = project_path or ""
        project_name = Path(project_path).name if project_path else ""
        kinds = [call.kind for call in self.tool_calls]

        session = Session(
            agent=source.agent,
            external_id=external_id,
            project_path=project_path,
            project_name=project_name,
            title=title,
            summary=first_sentence(first_prompt),
            work_summary=work_summary(self.last_assistant_message),
            files_created=kinds.count("write"),
            files_modified=kinds.count("edit"),
            files_deleted=kinds.count("delete"),
            started_at=started_at,
            ended_at=ended_at,
            source_path=str(source.path),
        )
        return ParsedSession(
            session=session,
            messages=self.messages,
            tool_calls=self.tool_calls,
            partial=partial,
            skipped_lines=skipped_lines,
        )


class SessionAdapter(ABC):
    """Abstract base class for session format adapters.

    Each agent (Claude Code, Codex, Cursor) implements this interface to
    enumerate its session files and parse them into canonical records.
    ``parse`` must be a pure function of the file bytes so it can run in
    a worker pool.
    """

    # Adapter identity
    name: str = ""  # unique identifier: "claude-code", "codex", "cursor"
    display_name: str = ""  # human-readable: "Claude Code"
    aliases: tuple[str, ...] = ()
    suffixes: tuple[str, ...] = (".jsonl",)

    def __init__(self, root: Path | None = None):
        self.root = Path(root).expanduser() if root else self.default_root()

    @abstractmethod
    def default_root(self) -> Path:
        """Return the directory where this agent stores sessions."""
        ...

    def is_available(self) -> bool:
        """Check if this adapter's sessions directory exists."""
        return self.root.exists()

    @abstractmethod
    def discover_session_files(self, root: Path) -> list[Path]:
        """Discover all candidate session files below ``root``."""
        ...

    def project_hint(self, path: Path, root: Path) -> str:
        return ""

    def enumerate(self, root: Path | None = None) -> list[SourceFile]:
        """Describe every candidate file; files that vanish mid-scan are skipped."""
        root = Path(root).expanduser() if root else self.root
        if not root.exists():
            return []

        sources = []
        for path in self.discover_session_files(root):
            try:
                st = path.stat()
            except OSError as e:
                logger.debug(f"Skipping {path}: {e}")
                continue
            sources.append(SourceFile(
                agent=self.name,
                path=path,
                size=st.st_size,
                mtime_ns=st.st_mtime_ns,
                project_hint=self.project_hint(path, root),
            ))
        return sources

    def describe(self, path: Path) -> SourceFile:
        """Build a descriptor for a single file (raises FileUnreadable)."""
        try:
            st = path.stat()
        except OSError as e:
            raise FileUnreadable(path, e.strerror or str(e)) from e
        return SourceFile(
            agent=self.name,
            path=path,
            size=st.st_size,
            mtime_ns=st.st_mtime_ns,
            project_hint=self.project_hint(path, path.parent),
        )

    @abstractmethod
    def parse(self, source: SourceFile, data: bytes | None = None) -> ParsedSession:
        """Parse a source file into a session with ordered messages and tool calls.

        ``data`` is the file content when the caller already read it.
        Raises FileUnreadable or ParseFailure.
        """
        ...
