"""Codex CLI session adapter."""

import json
import re
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


SESSIONS_DIR = Path.home() / ".codex" / "sessions"

PATCH_FILE_PATTERN = re.compile(r'^\*\*\* (Add|Update|Delete) File: (.+)$', re.MULTILINE)
PATCH_KINDS = {"Add": "write", "Update": "edit", "Delete": "delete"}

CWD_PATTERN = re.compile(r'<cwd>(.*?)</cwd>', re.DOTALL)

# Context Codex injects as user turns
INJECTED_PREFIXES = ("<environment_context>", "<user_instructions>", "# AGENTS.md instructions")

ROLE_MAP = {"user": "user", "assistant": "assistant", "developer": "system", "system": "system"}


def parse_patch_files(patch: str) -> list[tuple[str, str]]:
    """Return (kind, path) for each file touched by an apply_patch body."""
    return [(PATCH_KINDS[op], path.strip()) for op, path in PATCH_FILE_PATTERN.findall(patch)]


def _decode_arguments(arguments):
    if isinstance(arguments, str):
        try:
            return json.loads(arguments)
        except json.JSONDecodeError:
            return arguments
    return arguments


def _patch_text(tool_name: str, tool_input) -> str | None:
    if isinstance(tool_input, str) and "*** Begin Patch" in tool_input:
        return tool_input
    if isinstance(tool_input, dict):
        if isinstance(tool_input.get("input"), str) and tool_name == "apply_patch":
            return tool_input["input"]
        command = tool_input.get("command")
        if isinstance(command, list) and command and command[0] == "apply_patch":
            return " ".join(str(part) for part in command[1:])
        if isinstance(command, list) and any("*** Begin Patch" in str(part) for part in command):
            return next(str(part) for part in command if "*** Begin Patch" in str(part))
    return None


@register_adapter
class CodexAdapter(SessionAdapter):
    """Adapter for Codex CLI rollouts.

    Current rollouts are JSONL with ``session_meta``, ``response_item``
    and ``event_msg`` records wrapped as ``{"type", "payload"}``. Older
    builds wrote bare items one per line, or a single JSON document with
    ``session`` and ``items`` keys.
    """

    name = "codex"
    display_name = "Codex"
    aliases = ("codex-cli", "openai-codex")
    suffixes = (".jsonl", ".json")

    def default_root(self) -> Path:
        return SESSIONS_DIR

    def discover_session_files(self, root: Path) -> list[Path]:
        files = [p for p in root.rglob("*") if p.is_file() and p.suffix in self.suffixes]
        return sorted(files)

    def parse(self, source: SourceFile, data: bytes | None = None) -> ParsedSession:
        if data is None:
            data = source.read_bytes()

        if source.path.suffix == ".json":
            document = load_json_document(data, source.path)
            if not isinstance(document, dict):
                raise ParseFailure(source.path, "expected a JSON object")
            session_info = document.get("session") or {}
            items = document.get("items") or []
            if not isinstance(session_info, dict) or not isinstance(items, list):
                raise ParseFailure(source.path, "unexpected document layout")
            records = [{"type": "session_meta", "payload": session_info}]
            records.extend(item for item in items if isinstance(item, dict))
            skipped = 0
        else:
            records, skipped = read_json_lines(data, source.path)

        state = {"external_id": "", "cwd": "", "started_at": None}
        builder = SessionBuilder()

        for record in records:
            record_type = record.get("type")
            timestamp = parse_timestamp(record.get("timestamp"))

            if record_type == "session_meta":
                self._read_meta(record.get("payload") or {}, state)
                continue
            if record_type == "response_item":
                payload = record.get("payload")
                if isinstance(payload, dict):
                    self._read_item(builder, payload, timestamp, state)
                continue
            if record_type in ("event_msg", "turn_context", "compacted"):
                payload = record.get("payload")
                if isinstance(payload, dict) and not state["cwd"] and isinstance(payload.get("cwd"), str):
                    state["cwd"] = payload["cwd"]
                builder.note_timestamp(timestamp)
                continue

            # Legacy layouts: a bare metadata line, then bare items
            if "role" in record or record_type in ("message", "function_call", "custom_tool_call", "local_shell_call"):
                self._read_item(builder, record, timestamp, state)
            elif not state["external_id"] and isinstance(record.get("id"), str):
                self._read_meta(record, state)

        return builder.build(
            source,
            state["external_id"] or source.path.stem,
            project_path=state["cwd"],
            started_at=state["started_at"],
            partial=skipped > 0,
            skipped_lines=skipped,
        )

    @staticmethod
    def _read_meta(meta: dict, state: dict):
        if not state["external_id"] and isinstance(meta.get("id"), str):
            state["external_id"] = meta["id"]
        if not state["cwd"] and isinstance(meta.get("cwd"), str):
            state["cwd"] = meta["cwd"]
        if state["started_at"] is None:
            state["started_at"] = parse_timestamp(meta.get("timestamp"))

    def _read_item(self, builder: SessionBuilder, item: dict, timestamp, state: dict):
        item_type = item.get("type", "message")
        timestamp = timestamp or parse_timestamp(item.get("timestamp"))

        if item_type == "message":
            role = ROLE_MAP.get(item.get("role", ""), "")
            text = extract_text_content(item.get("content", ""), text_only=True)
            if role == "user" and text.lstrip().startswith(INJECTED_PREFIXES):
                if not state["cwd"]:
                    match = CWD_PATTERN.search(text)
                    if match:
                        state["cwd"] = match.group(1).strip()
                role = "system"
            if builder.add_message(role, text, timestamp) is None:
                builder.note_timestamp(timestamp)
            return

        if item_type in ("function_call", "custom_tool_call", "local_shell_call"):
            tool_name = item.get("name") or ("shell" if item_type == "local_shell_call" else "")
            tool_input = _decode_arguments(item.get("arguments", item.get("input", item.get("action"))))
            self._add_tool_call(builder, tool_name, tool_input, timestamp)
            return

        # reasoning, *_output and unknown items only move the clock
        builder.note_timestamp(timestamp)

    @staticmethod
    def _add_tool_call(builder: SessionBuilder, tool_name: str, tool_input, timestamp):
        patch = _patch_text(tool_name, tool_input)
        if patch is not None:
            touched = parse_patch_files(patch)
            for kind, path in touched:
                builder.add_tool_call(
                    kind=kind,
                    tool_name="apply_patch",
                    target_path=path,
                    summary=f"{kind} {path}",
                    timestamp=timestamp,
                )
            if touched:
                return

        builder.add_tool_call(
            kind=tool_kind(tool_name),
            tool_name=tool_name,
            target_path=target_path_from_input(tool_input),
            summary=command_from_input(tool_input) or opaque_summary(tool_input),
            timestamp=timestamp,
        )
