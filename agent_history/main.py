#!/usr/bin/env python3
"""Agent History - unified history of AI coding agent sessions.

Entry point for the CLI application.
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

console = Console()


def _fmt_time(dt: datetime | None) -> str:
    if dt is None:
        return "-"
    return dt.astimezone().strftime("%Y-%m-%d %H:%M")


def _print_json(data):
    print(json.dumps(data, indent=2, default=str))


def _filters_from_args(args) -> dict:
    return {
        "agent": getattr(args, "agent", None),
        "project": getattr(args, "project", None),
        "last": getattr(args, "last", None),
        "tag": getattr(args, "tag", None),
        "limit": getattr(args, "limit", None),
    }


def _open_engine(args):
    from .config import load_settings
    from .engine import HistoryEngine

    settings = load_settings(Path(args.config).expanduser() if args.config else None)
    if args.db:
        settings.db_path = Path(args.db).expanduser()
    return HistoryEngine(settings)


def cmd_index(engine, args):
    """Scan agent session files and update the index."""
    def progress_callback(current, total, message):
        pct = (current / total * 100) if total > 0 else 0
        bar_width = 40
        filled = int(bar_width * current / total) if total > 0 else 0
        bar = "█" * filled + "░" * (bar_width - filled)
        console.print(f"\r[{bar}] {pct:3.0f}% ({current}/{total})", end="", markup=False, highlight=False)

    agents = [args.agent] if args.agent else None
    summary = engine.ingest(
        agents=agents,
        rebuild=args.rebuild,
        progress_callback=None if args.json else progress_callback,
    )

    if args.json:
        _print_json(summary.to_dict())
        return

    console.print()
    title = "Index cancelled" if summary.cancelled else "✓ Index complete"
    console.print(f"[bold]{title}[/bold] in {summary.duration_ms}ms")
    console.print(f"  Files scanned:   {summary.files_scanned}")
    console.print(f"  Files changed:   {summary.files_changed} ({summary.files_partial} still being written)")
    console.print(f"  Files unchanged: {summary.files_unchanged}")
    console.print(f"  Messages:        {summary.messages_written}")
    if summary.missing_sources:
        console.print(f"  [yellow]{summary.missing_sources} indexed files no longer exist (run 'prune --missing')[/yellow]")
    if summary.failures:
        console.print(f"  [red]Failed: {summary.files_failed}[/red]")
        for failure in summary.failures:
            console.print(f"    {failure.kind}: {failure.path}: {failure.message}", markup=False)


def cmd_list(engine, args):
    """List sessions, most recent first."""
    if args.file:
        sessions = engine.search_by_file(args.file, **_filters_from_args(args))
    else:
        sessions = engine.list_sessions(**_filters_from_args(args))

    if args.json:
        _print_json([asdict(s) for s in sessions])
        return

    if not sessions:
        console.print("No sessions found.")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Session")
    table.add_column("Agent")
    table.add_column("Project")
    table.add_column("Last Activity")
    table.add_column("Msgs", justify="right")
    table.add_column("Status")
    table.add_column("Title", overflow="ellipsis", max_width=50)
    for s in sessions:
        table.add_row(
            s.id, s.agent, escape(s.project_name or "-"), _fmt_time(s.last_active_at),
            str(s.message_count), s.status, escape(s.title),
        )
    console.print(table)


def cmd_search(engine, args):
    """Search sessions from CLI."""
    hits = engine.search(args.query, **_filters_from_args(args))

    if args.json:
        _print_json([asdict(h) for h in hits])
        return

    if not hits:
        console.print(f"No matches found for: {args.query}", markup=False)
        return

    console.print(f"Found {len(hits)} sessions:\n")
    for hit in hits:
        s = hit.session
        console.print(f"[bold]{escape(s.id)}[/bold]  {escape(s.project_name or '-')}  {_fmt_time(s.last_active_at)}")
        console.print(f"   {hit.snippet}", markup=False)
        console.print(f"   Score: {hit.score:.2f} ({hit.matched})")
        console.print()


def cmd_show(engine, args):
    """Show one session with its messages and tool calls."""
    detail = engine.get(args.session_id)

    if args.json:
        _print_json(asdict(detail))
        return

    s = detail.session
    console.print(f"[bold]{escape(s.title or s.id)}[/bold]")
    console.print(f"  ID: {s.id}  Agent: {s.agent}  Status: {s.status}")
    console.print(f"  Project: {s.project_path or '-'}", markup=False)
    console.print(f"  Started: {_fmt_time(s.started_at)}  Ended: {_fmt_time(s.ended_at)}")
    console.print(f"  Files: +{s.files_created} ~{s.files_modified} -{s.files_deleted}")
    if s.work_summary:
        console.print(f"  Done: {s.work_summary}", markup=False)
    if s.tags:
        console.print(f"  Tags: {', '.join(s.tags)}", markup=False)
    console.print()

    calls_by_message: dict = {}
    for call in detail.tool_calls:
        calls_by_message.setdefault(call.message_ordinal, []).append(call)

    for msg in detail.messages:
        style = "cyan" if msg.role == "user" else "green" if msg.role == "assistant" else "dim"
        console.print(f"[{style}]{msg.role}[/{style}] [dim]#{msg.ordinal} {_fmt_time(msg.timestamp)}[/dim]")
        console.print(msg.content, markup=False, highlight=False)
        for call in calls_by_message.get(msg.ordinal, []):
            target = call.target_path or call.summary[:80]
            console.print(f"  [yellow]↳ {call.kind}[/yellow] {escape(call.tool_name)} {escape(target)}", highlight=False)
        console.print()


def cmd_stats(engine, args):
    """Show session statistics."""
    stats = engine.stats(period=args.period, **_filters_from_args(args))

    if args.json:
        _print_json(asdict(stats))
        return

    console.print("[bold]Session Statistics[/bold]")
    console.print(f"  Sessions:   {stats.total_sessions}")
    console.print(f"  Messages:   {stats.total_messages}")
    console.print(f"  Tool calls: {stats.total_tool_calls}")
    console.print(f"  Span:       {_fmt_time(stats.first_activity)} → {_fmt_time(stats.last_activity)}")
    console.print()

    for title, groups in (
        ("By agent", stats.by_agent),
        ("By project", stats.by_project),
        (f"By {stats.period}", stats.by_period),
    ):
        if not groups:
            continue
        table = Table(title=title, title_justify="left")
        table.add_column("")
        table.add_column("Sessions", justify="right")
        table.add_column("Messages", justify="right")
        table.add_column("Tool calls", justify="right")
        table.add_column("First")
        table.add_column("Last")
        for key, group in groups.items():
            table.add_row(
                escape(key),
                str(group.sessions),
                str(group.messages),
                str(group.tool_calls),
                _fmt_time(group.first_activity),
                _fmt_time(group.last_activity),
            )
        console.print(table)

    if stats.tool_kinds:
        table = Table(title="Tool calls by kind", show_header=False, title_justify="left")
        table.add_column("Kind")
        table.add_column("Count", justify="right")
        for kind, count in stats.tool_kinds.items():
            table.add_row(escape(kind), str(count))
        console.print(table)

    if stats.top_files:
        table = Table(title="Most changed files", show_header=False, title_justify="left")
        table.add_column("File")
        table.add_column("Changes", justify="right")
        for path, count in stats.top_files:
            table.add_row(escape(path), str(count))
        console.print(table)


def cmd_tag(engine, args):
    """Add or remove tags on a session."""
    labels = engine.tag(args.session_id, args.labels, remove=args.remove)
    if args.json:
        _print_json({"session_id": args.session_id, "tags": labels})
        return
    console.print(f"{args.session_id}: {', '.join(labels) if labels else '(no tags)'}", markup=False)


def cmd_prune(engine, args):
    """Delete sessions by explicit criteria."""
    removed = engine.prune(missing=args.missing, older_than=args.older_than, agent=args.agent)
    if args.json:
        _print_json({"removed": removed})
        return
    console.print(f"Removed {removed} sessions.")


def cmd_agents(engine, args):
    """List supported agents and where their sessions are read from."""
    rows = [
        {"name": a.name, "display_name": a.display_name, "root": str(a.root), "available": a.is_available()}
        for a in engine.adapters
    ]
    if args.json:
        _print_json(rows)
        return
    for row in rows:
        status = "✓" if row["available"] else "✗"
        console.print(f"  {status} {row['display_name']:<12} ({row['name']})  {row['root']}", markup=False)


def _add_filter_args(parser, limit_default=None):
    parser.add_argument("--agent", "-a", help="Filter to one agent (claude-code, codex, cursor)")
    parser.add_argument("--project", "-p", help="Filter to a project path or name")
    parser.add_argument("--last", "-l", help="Relative time window, e.g. 24h, 7d, 2w, 1m")
    parser.add_argument("--tag", "-t", help="Filter to sessions with this tag")
    parser.add_argument("--limit", "-n", type=int, default=limit_default, help="Max sessions to show")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Index and search sessions from multiple AI coding agents",
        prog="agent-history",
    )
    parser.add_argument("--version", action="store_true", help="Show version")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    parser.add_argument("--json", action="store_true", help="Print JSON instead of tables")
    parser.add_argument("--db", help="Path to the index database")
    parser.add_argument("--config", help="Path to config.toml")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    index_parser = subparsers.add_parser("index", help="Scan session files and update the index")
    index_parser.add_argument("--agent", "-a", help="Only scan this agent")
    index_parser.add_argument("--rebuild", action="store_true", help="Drop indexed rows before scanning")

    list_parser = subparsers.add_parser("list", help="List sessions")
    _add_filter_args(list_parser, limit_default=20)
    list_parser.add_argument("--file", "-f", help="Only sessions that touched a matching file path")

    search_parser = subparsers.add_parser("search", help="Search sessions")
    search_parser.add_argument("query", help="Search query")
    _add_filter_args(search_parser, limit_default=10)

    show_parser = subparsers.add_parser("show", help="Show a session")
    show_parser.add_argument("session_id", help="Session id (agent:external_id or external id)")

    stats_parser = subparsers.add_parser("stats", help="Session statistics")
    _add_filter_args(stats_parser)
    stats_parser.add_argument("--period", choices=["day", "week", "month"], default="day")

    tag_parser = subparsers.add_parser("tag", help="Tag a session")
    tag_parser.add_argument("session_id")
    tag_parser.add_argument("labels", nargs="+")
    tag_parser.add_argument("--remove", "-r", action="store_true", help="Remove the labels instead")

    prune_parser = subparsers.add_parser("prune", help="Delete indexed sessions")
    prune_parser.add_argument("--missing", action="store_true", help="Sessions whose source file is gone")
    prune_parser.add_argument("--older-than", help="Sessions idle longer than this (e.g. 90d) or before a date")
    prune_parser.add_argument("--agent", "-a", help="Only this agent")

    subparsers.add_parser("agents", help="List supported agents")

    return parser


COMMANDS = {
    "index": cmd_index,
    "list": cmd_list,
    "search": cmd_search,
    "show": cmd_show,
    "stats": cmd_stats,
    "tag": cmd_tag,
    "prune": cmd_prune,
    "agents": cmd_agents,
}


def main(argv: list[str] | None = None) -> int:
    """Main entry point for agent-history CLI."""
    from .errors import AgentHistoryError

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        from . import __version__
        print(f"agent-history {__version__}")
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 1

    try:
        with _open_engine(args) as engine:
            COMMANDS[args.command](engine, args)
    except AgentHistoryError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}", highlight=False)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
