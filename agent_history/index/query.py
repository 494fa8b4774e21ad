"""Read-only queries over the session store: list, search, get and stats."""

import logging
import math
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterator, Optional

from ..config import Settings
from ..errors import InvalidFilter, NotFound
from ..models import GroupStats, SearchHit, SessionDetail, SessionFilter, SessionSummary, Stats
from ..timeutil import from_epoch, parse_duration, to_epoch, utc_now
from .database import (
    SessionDatabase,
    classify_store_error,
    row_to_message,
    row_to_summary,
    row_to_tool_call,
)

logger = logging.getLogger(__name__)

PERIOD_FORMATS = {
    "day": "%Y-%m-%d",
    "week": "%Y-W%W",
    "month": "%Y-%m",
}

SNIPPET_TOKENS = 12
TOP_FILES_LIMIT = 10


def build_match_query(keyword: str) -> str:
    """Quote each term for FTS5; a trailing ``*`` keeps prefix matching."""
    terms = []
    for term in keyword.split():
        prefix = term.endswith("*")
        term = term.rstrip("*")
        if not term:
            continue
        safe_term = term.replace('"', '""')
        terms.append(f'"{safe_term}"*' if prefix else f'"{safe_term}"')
    return " ".join(terms)


def recency_score(last_active: Optional[datetime], now: datetime, half_life_days: float) -> float:
    """Exponential decay in [0, 1]: 1.0 now, 0.5 after one half-life."""
    if last_active is None or half_life_days <= 0:
        return 0.0
    age_days = max(0.0, (now - last_active).total_seconds() / 86400)
    return math.pow(0.5, age_days / half_life_days)


def normalize_scores(scores: dict[str, float]) -> dict[str, float]:
    """Normalize scores to [FLOOR, 1.0].

    Uses a floor of 0.5 so even the weakest result in a set retains
    meaningful weight against recency.
    """
    if not scores:
        return {}

    values = list(scores.values())
    min_val = min(values)
    max_val = max(values)

    if max_val == min_val:
        return {k: 1.0 for k in scores}

    FLOOR = 0.5
    return {k: FLOOR + (1.0 - FLOOR) * (v - min_val) / (max_val - min_val) for k, v in scores.items()}


class QueryEngine:
    """Serve list/search/get/stats from a dedicated read connection.

    Each call runs inside one read transaction, so it sees a single
    committed snapshot even while an ingest is writing.
    """

    def __init__(self, db: SessionDatabase, settings: Optional[Settings] = None):
        self._db = db
        self._settings = settings or Settings()
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def close(self):
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None

    @contextmanager
    def _snapshot(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._connection is None:
                self._connection = self._db.connect_reader()
            conn = self._connection
            try:
                conn.execute("BEGIN")
                yield conn
            except sqlite3.Error as e:
                raise classify_store_error(e) from e
            finally:
                if conn.in_transaction:
                    conn.execute("COMMIT")

    def _filter_clause(
        self,
        filters: Optional[SessionFilter],
        now: datetime,
    ) -> tuple[list[str], list]:
        conditions: list[str] = []
        params: list = []
        if filters is None:
            return conditions, params

        if filters.agent:
            conditions.append("s.agent = ?")
            params.append(filters.agent)
        if filters.project:
            conditions.append("(s.project_path = ? OR s.project_name = ? COLLATE NOCASE)")
            params.extend([filters.project, filters.project])

        since = filters.since
        if filters.last:
            window = parse_duration(filters.last)
            if window is None:
                raise InvalidFilter(f"Invalid time window: {filters.last!r} (expected e.g. 24h, 7d, 2w, 1m)")
            since = now - window
        if since:
            conditions.append("s.last_active_at >= ?")
            params.append(to_epoch(since))
        if filters.until:
            conditions.append("s.last_active_at <= ?")
            params.append(to_epoch(filters.until))

        if filters.tag:
            conditions.append("EXISTS (SELECT 1 FROM tags t WHERE t.session_id = s.id AND t.label = ?)")
            params.append(filters.tag)

        return conditions, params

    def _idle_before(self, now: datetime) -> int:
        # Live sessions with no activity since this instant read as archived
        return to_epoch(now - timedelta(seconds=self._settings.active_window))

    @staticmethod
    def _where(conditions: list[str], prefix: str = "WHERE") -> str:
        if not conditions:
            return ""
        return f"{prefix} " + " AND ".join(conditions)

    def _limit(self, filters: Optional[SessionFilter], default: Optional[int] = None) -> int:
        limit = filters.limit if filters and filters.limit else default
        return limit if limit else -1  # sqlite: negative means no limit

    @staticmethod
    def _load_tags(conn: sqlite3.Connection, session_ids: list[str]) -> dict[str, list[str]]:
        tags: dict[str, list[str]] = {sid: [] for sid in session_ids}
        for i in range(0, len(session_ids), 500):
            batch = session_ids[i:i + 500]
            placeholders = ",".join("?" for _ in batch)
            rows = conn.execute(
                f"SELECT session_id, label FROM tags WHERE session_id IN ({placeholders}) "
                "ORDER BY session_id, label",
                batch,
            ).fetchall()
            for row in rows:
                tags[row["session_id"]].append(row["label"])
        return tags

    def _list(
        self,
        conn: sqlite3.Connection,
        filters: Optional[SessionFilter],
        extra_conditions: tuple[str, ...] = (),
        extra_params: tuple = (),
    ) -> list[SessionSummary]:
        now = utc_now()
        conditions, params = self._filter_clause(filters, now)
        conditions.extend(extra_conditions)
        params.extend(extra_params)
        params.append(self._limit(filters))

        rows = conn.execute(
            f"""
            SELECT s.* FROM sessions s
            {self._where(conditions)}
            ORDER BY s.last_active_at DESC, s.id ASC
            LIMIT ?
            """,
            params,
        ).fetchall()
        tags = self._load_tags(conn, [row["id"] for row in rows])
        return [row_to_summary(row, tags[row["id"]], self._idle_before(now)) for row in rows]

    def list_sessions(self, filters: Optional[SessionFilter] = None) -> list[SessionSummary]:
        """Sessions matching ``filters``, most recent first, ties broken by id."""
        with self._snapshot() as conn:
            return self._list(conn, filters)

    def search_by_file(
        self,
        path_fragment: str,
        filters: Optional[SessionFilter] = None,
    ) -> list[SessionSummary]:
        """Sessions with a tool call whose target path contains ``path_fragment``."""
        escaped = path_fragment.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        with self._snapshot() as conn:
            return self._list(
                conn,
                filters,
                ("EXISTS (SELECT 1 FROM tool_calls tc WHERE tc.session_id = s.id "
                 "AND tc.target_path LIKE ? ESCAPE '\\')",),
                (f"%{escaped}%",),
            )

    def search(self, keyword: str, filters: Optional[SessionFilter] = None) -> list[SearchHit]:
        """Rank sessions by text relevance combined with recency.

        Message text, session metadata and tool-call paths/summaries are
        searched; each session appears once, with the snippet of its best
        match.
        """
        match_query = build_match_query(keyword)
        if not match_query:
            return []

        now = utc_now()
        conditions, params = self._filter_clause(filters, now)
        filter_sql = self._where(conditions, prefix="AND")
        limit = self._limit(filters, self._settings.max_results)

        with self._snapshot() as conn:
            best: dict[str, dict] = {}

            def consider(session_id: str, bm25_score: float, **match):
                score = -bm25_score
                if session_id not in best or score > best[session_id]["raw"]:
                    best[session_id] = {"raw": score, **match}

            for row in conn.execute(
                f"""
                SELECT m.session_id, m.ordinal, m.role, bm25(messages_fts) AS score,
                       snippet(messages_fts, 0, '[', ']', '...', {SNIPPET_TOKENS}) AS snip
                FROM messages_fts
                JOIN messages m ON m.pk = messages_fts.rowid
                JOIN sessions s ON s.id = m.session_id
                WHERE messages_fts MATCH ? {filter_sql}
                ORDER BY score
                """,
                [match_query, *params],
            ):
                consider(row["session_id"], row["score"], matched="message",
                         snippet=row["snip"], ordinal=row["ordinal"], role=row["role"])

            for row in conn.execute(
                f"""
                SELECT s.id, bm25(sessions_fts) AS score,
                       snippet(sessions_fts, -1, '[', ']', '...', {SNIPPET_TOKENS}) AS snip
                FROM sessions_fts
                JOIN sessions s ON s.pk = sessions_fts.rowid
                WHERE sessions_fts MATCH ? {filter_sql}
                ORDER BY score
                """,
                [match_query, *params],
            ):
                consider(row["id"], row["score"], matched="session",
                         snippet=row["snip"], ordinal=None, role=None)

            for row in conn.execute(
                f"""
                SELECT tc.session_id, tc.message_ordinal, bm25(tool_calls_fts) AS score,
                       snippet(tool_calls_fts, -1, '[', ']', '...', {SNIPPET_TOKENS}) AS snip
                FROM tool_calls_fts
                JOIN tool_calls tc ON tc.pk = tool_calls_fts.rowid
                JOIN sessions s ON s.id = tc.session_id
                WHERE tool_calls_fts MATCH ? {filter_sql}
                ORDER BY score
                """,
                [match_query, *params],
            ):
                consider(row["session_id"], row["score"], matched="tool_call",
                         snippet=row["snip"], ordinal=row["message_ordinal"], role=None)

            if not best:
                return []

            session_ids = list(best)
            summaries: dict[str, SessionSummary] = {}
            tags = self._load_tags(conn, session_ids)
            for i in range(0, len(session_ids), 500):
                batch = session_ids[i:i + 500]
                placeholders = ",".join("?" for _ in batch)
                for row in conn.execute(
                    f"SELECT * FROM sessions WHERE id IN ({placeholders})", batch
                ).fetchall():
                    summaries[row["id"]] = row_to_summary(row, tags[row["id"]], self._idle_before(now))

        relevance = normalize_scores({sid: match["raw"] for sid, match in best.items()})
        hits = []
        for session_id, match in best.items():
            summary = summaries.get(session_id)
            if summary is None:
                continue
            recency = recency_score(summary.last_active_at, now, self._settings.recency_half_life_days)
            hits.append(SearchHit(
                session=summary,
                score=self._settings.relevance_weight * relevance[session_id]
                + self._settings.recency_weight * recency,
                relevance=relevance[session_id],
                recency=recency,
                snippet=match["snippet"] or "",
                matched=match["matched"],
                message_ordinal=match["ordinal"],
                role=match["role"],
            ))

        hits.sort(key=lambda h: (-h.score, -(to_epoch(h.session.last_active_at) or 0), h.session.id))
        logger.debug(f"Search {keyword!r}: {len(hits)} sessions")
        return hits if limit < 0 else hits[:limit]

    def get(self, session_id: str) -> SessionDetail:
        """Full session with messages and tool calls in order.

        Accepts ``agent:external_id`` or an external id that matches
        exactly one session. Raises NotFound otherwise.
        """
        with self._snapshot() as conn:
            row = conn.execute("SELECT * FROM sessions WHERE id = ?", (session_id,)).fetchone()
            if row is None:
                rows = conn.execute(
                    "SELECT * FROM sessions WHERE external_id = ? LIMIT 2", (session_id,)
                ).fetchall()
                if len(rows) == 1:
                    row = rows[0]
            if row is None:
                raise NotFound(session_id)

            resolved_id = row["id"]
            messages = conn.execute(
                "SELECT * FROM messages WHERE session_id = ? ORDER BY ordinal",
                (resolved_id,),
            ).fetchall()
            tool_calls = conn.execute(
                "SELECT * FROM tool_calls WHERE session_id = ? ORDER BY ordinal",
                (resolved_id,),
            ).fetchall()
            tags = self._load_tags(conn, [resolved_id])[resolved_id]

        return SessionDetail(
            session=row_to_summary(row, tags, self._idle_before(utc_now())),
            messages=[row_to_message(m) for m in messages],
            tool_calls=[row_to_tool_call(t) for t in tool_calls],
        )

    def _group_stats(
        self,
        conn: sqlite3.Connection,
        key_sql: str,
        key_params: list,
        conditions: list[str],
        params: list,
        order_by: str,
    ) -> dict[str, GroupStats]:
        groups = {}
        for row in conn.execute(
            f"""
            SELECT {key_sql} AS key,
                   COUNT(*) AS sessions,
                   COALESCE(SUM(s.message_count), 0) AS messages,
                   COALESCE(SUM(s.tool_call_count), 0) AS tool_calls,
                   MIN(COALESCE(s.started_at, s.last_active_at)) AS first_activity,
                   MAX(s.last_active_at) AS last_activity
            FROM sessions s
            {self._where(conditions)}
            GROUP BY key ORDER BY {order_by}
            """,
            [*key_params, *params],
        ):
            groups[row["key"]] = GroupStats(
                sessions=row["sessions"],
                messages=row["messages"],
                tool_calls=row["tool_calls"],
                first_activity=from_epoch(row["first_activity"]),
                last_activity=from_epoch(row["last_activity"]),
            )
        return groups

    def stats(self, filters: Optional[SessionFilter] = None, period: str = "day") -> Stats:
        """Aggregate counts per agent, project and period for matching sessions."""
        if period not in PERIOD_FORMATS:
            raise InvalidFilter(f"Invalid period: {period!r} (expected one of {', '.join(PERIOD_FORMATS)})")

        conditions, params = self._filter_clause(filters, utc_now())
        where_clause = self._where(conditions)
        stats = Stats(period=period)

        with self._snapshot() as conn:
            row = conn.execute(
                f"""
                SELECT COUNT(*) AS sessions,
                       COALESCE(SUM(s.message_count), 0) AS messages,
                       COALESCE(SUM(s.tool_call_count), 0) AS tool_calls,
                       MIN(COALESCE(s.started_at, s.last_active_at)) AS first_activity,
                       MAX(s.last_active_at) AS last_activity
                FROM sessions s
                {where_clause}
                """,
                params,
            ).fetchone()
            stats.total_sessions = row["sessions"]
            stats.total_messages = row["messages"]
            stats.total_tool_calls = row["tool_calls"]
            stats.first_activity = from_epoch(row["first_activity"])
            stats.last_activity = from_epoch(row["last_activity"])

            stats.by_agent = self._group_stats(
                conn, "s.agent", [], conditions, params, "sessions DESC, key"
            )
            stats.by_project = self._group_stats(
                conn, "COALESCE(NULLIF(s.project_name, ''), '(none)')", [],
                conditions, params, "sessions DESC, key",
            )
            stats.by_period = self._group_stats(
                conn, "strftime(?, s.last_active_at, 'unixepoch')", [PERIOD_FORMATS[period]],
                conditions + ["s.last_active_at IS NOT NULL"], params, "key",
            )

            for row in conn.execute(
                f"""
                SELECT tc.kind AS key, COUNT(*) AS c
                FROM tool_calls tc JOIN sessions s ON s.id = tc.session_id
                {where_clause}
                GROUP BY tc.kind ORDER BY c DESC, key
                """,
                params,
            ):
                stats.tool_kinds[row["key"]] = row["c"]

            file_conditions = conditions + [
                "tc.target_path IS NOT NULL",
                "tc.kind IN ('edit', 'write', 'delete')",
            ]
            rows = conn.execute(
                f"""
                SELECT tc.target_path AS key, COUNT(*) AS c
                FROM tool_calls tc JOIN sessions s ON s.id = tc.session_id
                {self._where(file_conditions)}
                GROUP BY tc.target_path ORDER BY c DESC, key
                LIMIT ?
                """,
                [*params, TOP_FILES_LIMIT],
            ).fetchall()
            stats.top_files = [(row["key"], row["c"]) for row in rows]

        return stats
