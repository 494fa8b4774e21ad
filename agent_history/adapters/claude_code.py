"""Claude Code session adapter."""

from pathlib import Path

from ..models import ParsedSession
from ..timeutil import parse_timestamp
from . import register_adapter
from .base import (
    SessionAdapter,
    SessionBuilder,
    SourceFile,
    command_from_input,
    extract_text_content,
    opaque_summary,
    read_json_lines,
    target_path_from_input,
    tool_kind,
)


SESSIONS_DIR = Path.home() / ".claude" / "projects"


def decode_path(encoded: str) -> str:
    """Decode directory name back to original path.

    ``/`` and ``-`` both encode as ``-``, so segments are joined greedily
    against directories that exist on disk (``-home-user-my-app`` resolves
    to ``/home/user/my-app`` when that directory exists). Falls back to
    reading every ``-`` as a separator.
    """
    naive = encoded.replace("-", "/")
    segments = encoded.lstrip("-").split("-")
    if not encoded.startswith("-") or not all(segments):
        return naive

    resolved = Path("/")
    current = ""
    for i, segment in enumerate(segments):
        current = f"{current}-{segment}" if current else segment
        if (resolved / current).exists() or i == len(segments) - 1:
            resolved = resolved / current
            current = ""

    return str(resolved) if resolved.exists() else naive


def is_sidechain_file(path: Path) -> bool:
    """Subagent transcripts share their parent's sessionId and are not indexed."""
    return path.stem.startswith("agent-") or "subagents" in path.parts


@register_adapter
class ClaudeCodeAdapter(SessionAdapter):
    """Adapter for Claude Code JSONL transcripts.

    Layout: ``projects/<encoded-project>/<session>.jsonl`` where the
    directory name is the project path with ``/`` replaced by ``-``.
    Older installs also keep transcripts in a ``sessions/`` subdirectory.
    """

    name = "claude-code"
    display_name = "Claude Code"
    aliases = ("claude", "claude_code", "claudecode")

    def default_root(self) -> Path:
        return SESSIONS_DIR

    def discover_session_files(self, root: Path) -> list[Path]:
        files = []
        for project_dir in sorted(root.iterdir()):
            if not project_dir.is_dir():
                continue
            files.extend(sorted(project_dir.glob("*.jsonl")))
            sessions_dir = project_dir / "sessions"
            if sessions_dir.is_dir():
                files.extend(sorted(sessions_dir.glob("*.jsonl")))
        return [path for path in files if not is_sidechain_file(path)]

    def project_hint(self, path: Path, root: Path) -> str:
        project_dir = path.parent
        if project_dir.name == "sessions":
            project_dir = project_dir.parent
        return project_dir.name

    def parse(self, source: SourceFile, data: bytes | None = None) -> ParsedSession:
        if data is None:
            data = source.read_bytes()
        records, skipped = read_json_lines(data, source.path)

        builder = SessionBuilder()
        external_id = ""
        cwd = ""
        title = ""

        for record in records:
            msg_type = record.get("type")

            if msg_type == "summary":
                if not title and isinstance(record.get("summary"), str):
                    title = record["summary"]
                continue

            # Skip bookkeeping records (file-history-snapshot, progress, system)
            if msg_type not in ("user", "assistant"):
                continue
            # Subagent turns logged inline belong to the subagent, not this session
            if record.get("isSidechain") is True:
                continue

            if not external_id and isinstance(record.get("sessionId"), str):
                external_id = record["sessionId"]
            if not cwd and isinstance(record.get("cwd"), str):
                cwd = record["cwd"]

            timestamp = parse_timestamp(record.get("timestamp"))
            msg = record.get("message")
            if not isinstance(msg, dict):
                msg = {}
            role = msg.get("role") or msg_type
            content = msg.get("content", record.get("content", ""))

            text = extract_text_content(content, text_only=(role == "user"))
            if "<system-reminder>" in text[:100]:
                text = ""

            ordinal = builder.add_message(role, text, timestamp)
            if ordinal is None:
                builder.note_timestamp(timestamp)

            if isinstance(content, list):
                for block in content:
                    if isinstance(block, dict) and block.get("type") == "tool_use":
                        self._add_tool_use(builder, block, timestamp, ordinal)

        project_path = cwd
        if not project_path and source.project_hint:
            project_path = decode_path(source.project_hint)

        return builder.build(
            source,
            external_id or source.path.stem,
            project_path=project_path,
            title=title,
            partial=skipped > 0,
            skipped_lines=skipped,
        )

    @staticmethod
    def _add_tool_use(builder: SessionBuilder, block: dict, timestamp, ordinal):
        tool_name = block.get("name") or ""
        tool_input = block.get("input")
        builder.add_tool_call(
            kind=tool_kind(tool_name),
            tool_name=tool_name,
            target_path=target_path_from_input(tool_input),
            summary=command_from_input(tool_input) or opaque_summary(tool_input),
            timestamp=timestamp,
            message_ordinal=ordinal,
        )
