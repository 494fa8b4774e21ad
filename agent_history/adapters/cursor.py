"""Cursor session adapter."""

import json
from pathlib import Path

from ..errors import ParseFailure
from ..models import ParsedSession
from ..timeutil import parse_timestamp
from . import register_adapter
from .base import (
    SessionAdapter,
    SessionBuilder,
    SourceFile,
    command_from_input,
    extract_text_content,
    load_json_document,
    opaque_summary,
    read_json_lines,
    target_path_from_input,
    tool_kind,
)


CURSOR_DATA_DIR = Path.home() / ".cursor"
SESSION_SUBDIRS = ("projects", "sessions")

# Cursor bubbles use numeric types: 1 = user, 2 = assistant
BUBBLE_ROLES = {1: "user", 2: "assistant", "1": "user", "2": "assistant", "ai": "assistant", "human": "user"}
MESSAGE_KEYS = ("messages", "conversation", "bubbles")


def extract_text_from_richtext(richtext) -> str:
    """Extract plain text from Cursor's Lexical richText format."""
    if isinstance(richtext, str):
        try:
            data = json.loads(richtext)
        except json.JSONDecodeError:
            return ""
    else:
        data = richtext
    if not isinstance(data, dict):
        return ""

    texts = []

    def extract_text_nodes(node):
        if isinstance(node, dict):
            if node.get("type") == "text":
                texts.append(node.get("text", ""))
            elif node.get("type") == "mention":
                texts.append(f"@{node.get('mentionName', '')}")
            children = node.get("children", [])
            for child in children:
                extract_text_nodes(child)
        elif isinstance(node, list):
            for item in node:
                extract_text_nodes(item)

    extract_text_nodes(data.get("root", {}))
    return " ".join(texts).strip()


def _entry_role(entry: dict) -> str:
    role = entry.get("role", entry.get("type"))
    if role in ("user", "assistant", "system"):
        return role
    if isinstance(role, (str, int)):
        return BUBBLE_ROLES.get(role, "")
    return ""


def _entry_text(entry: dict) -> str:
    for key in ("content", "text"):
        value = entry.get(key)
        if value:
            text = extract_text_content(value, text_only=True)
            if text:
                return text
    if entry.get("richText"):
        return extract_text_from_richtext(entry["richText"])
    return ""


def _entry_tools(entry: dict) -> list[tuple[str, object]]:
    tools = []
    for call in entry.get("toolCalls") or []:
        if isinstance(call, dict):
            name = call.get("name") or (call.get("function") or {}).get("name", "")
            args = call.get("arguments", call.get("params", call.get("input")))
            if args is None and isinstance(call.get("function"), dict):
                args = call["function"].get("arguments")
            tools.append((name, args))
    former = entry.get("toolFormerData")
    if isinstance(former, dict) and former.get("name"):
        tools.append((former["name"], former.get("rawArgs", former.get("params"))))
    return tools


@register_adapter
class CursorAdapter(SessionAdapter):
    """Adapter for Cursor chat exports under ``~/.cursor``.

    Sessions are whole JSON documents (a list of messages, or an object
    holding ``messages``/``conversation``/``bubbles``) or JSONL with one
    message per line.
    """

    name = "cursor"
    display_name = "Cursor"
    aliases = ("cursor-agent",)
    suffixes = (".json", ".jsonl")

    def default_root(self) -> Path:
        return CURSOR_DATA_DIR

    def discover_session_files(self, root: Path) -> list[Path]:
        files = []
        for subdir in SESSION_SUBDIRS:
            base = root / subdir
            if not base.is_dir():
                continue
            files.extend(p for p in base.rglob("*") if p.is_file() and p.suffix in self.suffixes)
        return sorted(files)

    def project_hint(self, path: Path, root: Path) -> str:
        try:
            parts = path.relative_to(root).parts
        except ValueError:
            return ""
        if len(parts) > 2 and parts[0] == "projects":
            return parts[1]
        return ""

    def parse(self, source: SourceFile, data: bytes | None = None) -> ParsedSession:
        if data is None:
            data = source.read_bytes()

        skipped = 0
        if source.path.suffix == ".json":
            document = load_json_document(data, source.path)
            if isinstance(document, list):
                meta, entries = {}, document
            elif isinstance(document, dict):
                meta = document
                entries = next((document[k] for k in MESSAGE_KEYS if isinstance(document.get(k), list)), [])
            else:
                raise ParseFailure(source.path, "expected a JSON array or object")
        else:
            records, skipped = read_json_lines(data, source.path)
            meta = {}
            entries = []
            for record in records:
                if _entry_role(record) or "richText" in record:
                    entries.append(record)
                elif not meta:
                    meta = record

        builder = SessionBuilder()
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            timestamp = parse_timestamp(entry.get("timestamp", entry.get("createdAt")))
            ordinal = builder.add_message(_entry_role(entry), _entry_text(entry), timestamp)
            if ordinal is None:
                builder.note_timestamp(timestamp)
            for tool_name, raw_args in _entry_tools(entry):
                tool_input = raw_args
                if isinstance(raw_args, str):
                    try:
                        tool_input = json.loads(raw_args)
                    except json.JSONDecodeError:
                        pass
                builder.add_tool_call(
                    kind=tool_kind(tool_name),
                    tool_name=tool_name,
                    target_path=target_path_from_input(tool_input),
                    summary=command_from_input(tool_input) or opaque_summary(tool_input),
                    timestamp=timestamp,
                    message_ordinal=ordinal,
                )

        builder.note_timestamp(parse_timestamp(meta.get("lastUpdatedAt")))

        external_id = ""
        for key in ("id", "composerId", "sessionId"):
            if isinstance(meta.get(key), str) and meta[key]:
                external_id = meta[key]
                break

        project_path = ""
        for key in ("workspace", "projectPath", "cwd"):
            if isinstance(meta.get(key), str) and meta[key]:
                project_path = meta[key]
                break
        if project_path.startswith("file://"):
            project_path = project_path[7:]
        if not project_path and source.project_hint:
            project_path = "/" + source.project_hint.strip("-").replace("-", "/")

        title = meta.get("title") or meta.get("name") or ""

        return builder.build(
            source,
            external_id or source.path.stem,
            project_path=project_path,
            title=title if isinstance(title, str) else "",
            started_at=parse_timestamp(meta.get("createdAt")),
            partial=skipped > 0,
            skipped_lines=skipped,
        )
