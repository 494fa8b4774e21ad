import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, Optional

from ..errors import StoreTransactionFailure, StoreUnavailable
from ..models import STATUS_ARCHIVED, IndexState, Message, ParsedSession, SessionSummary, ToolCall
from ..timeutil import from_epoch, to_epoch

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

# sqlite error messages that mean the database itself is unusable
_UNAVAILABLE_MARKERS = (
    "malformed",
    "not a database",
    "unable to open",
    "disk i/o error",
    "database or disk is full",
    "no such table",
)


def classify_store_error(error: sqlite3.Error) -> Exception:
    message = str(error).lower()
    if any(marker in message for marker in _UNAVAILABLE_MARKERS):
        return StoreUnavailable(str(error))
    return StoreTransactionFailure(str(error))


def effective_status(
    status: str,
    partial: bool,
    last_active_at: Optional[int],
    idle_before: Optional[int] = None,
) -> str:
    """Status as of now: a live session idle since before ``idle_before`` reads as archived.

    Sessions backed by a partially parsed file stay live.
    """
    if (
        idle_before is not None
        and status != STATUS_ARCHIVED
        and not partial
        and last_active_at is not None
        and last_active_at < idle_before
    ):
        return STATUS_ARCHIVED
    return status


def row_to_summary(
    row: sqlite3.Row,
    tags: Optional[list[str]] = None,
    idle_before: Optional[int] = None,
) -> SessionSummary:
    return SessionSummary(
        id=row["id"],
        agent=row["agent"],
        external_id=row["external_id"],
        project_path=row["project_path"] or "",
        project_name=row["project_name"] or "",
        title=row["title"] or "",
        summary=row["summary"] or "",
        started_at=from_epoch(row["started_at"]),
        ended_at=from_epoch(row["ended_at"]),
        status=effective_status(row["status"], bool(row["partial"]), row["last_active_at"], idle_before),
        message_count=row["message_count"],
        tool_call_count=row["tool_call_count"],
        source_path=row["source_path"] or "",
        work_summary=row["work_summary"] or "",
        files_created=row["files_created"],
        files_modified=row["files_modified"],
        files_deleted=row["files_deleted"],
        tags=tags or [],
    )


def row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        ordinal=row["ordinal"],
        role=row["role"],
        content=row["content"] or "",
        timestamp=from_epoch(row["timestamp"]),
    )


def row_to_tool_call(row: sqlite3.Row) -> ToolCall:
    return ToolCall(
        ordinal=row["ordinal"],
        message_ordinal=row["message_ordinal"],
        kind=row["kind"],
        tool_name=row["tool_name"] or "",
        target_path=row["target_path"],
        summary=row["summary"] or "",
        timestamp=from_epoch(row["timestamp"]),
    )


def row_to_index_state(row: sqlite3.Row) -> IndexState:
    return IndexState(
        path=row["path"],
        agent=row["agent"],
        size=row["size"],
        mtime_ns=row["mtime_ns"],
        content_hash=row["content_hash"] or "",
        parsed_at=datetime.fromtimestamp(row["parsed_at"], tz=timezone.utc),
        session_ids=json.loads(row["session_ids"]) if row["session_ids"] else [],
        partial=bool(row["partial"]),
    )


class SessionDatabase:
    """SQLite store for sessions, messages, tool calls, tags and index state.

    One connection is used for writes, serialized by a process-wide lock
    and ``BEGIN IMMEDIATE``. Readers open their own connections through
    ``connect_reader()`` and see committed snapshots (WAL mode).
    """

    def __init__(self, db_path: Path):
        self._db_path = Path(db_path)
        self._connection: Optional[sqlite3.Connection] = None
        self._initialized = False
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._db_path

    @property
    def total_changes(self) -> int:
        """Rows modified through the writer connection since it was opened."""
        self._ensure_schema()
        return self._get_connection().total_changes

    def _connect(self) -> sqlite3.Connection:
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self._db_path),
                check_same_thread=False,
                isolation_level=None,
                timeout=30,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys = ON")
            conn.execute("PRAGMA journal_mode = WAL")
        except (OSError, sqlite3.Error) as e:
            raise StoreUnavailable(f"Cannot open {self._db_path}: {e}") from e
        return conn

    def _get_connection(self) -> sqlite3.Connection:
        if self._connection is None:
            self._connection = self._connect()
        return self._connection

    def connect_reader(self) -> sqlite3.Connection:
        """Open a separate read-only connection for queries."""
        self._ensure_schema()
        conn = self._connect()
        conn.execute("PRAGMA query_only = ON")
        return conn

    def _ensure_schema(self):
        if self._initialized:
            return
        conn = self._get_connection()
        try:
            current_version = self._get_schema_version(conn)
            if current_version < SCHEMA_VERSION:
                if current_version:
                    # The index is derived data; the next ingest refills it
                    logger.info(f"Schema {current_version} -> {SCHEMA_VERSION}: dropping indexed rows")
                    conn.executescript(self._get_drop_sql())
                self._create_schema(conn)
                self._set_schema_version(conn, SCHEMA_VERSION)
        except sqlite3.DatabaseError as e:
            raise StoreUnavailable(f"Cannot initialize {self._db_path}: {e}") from e
        self._initialized = True

    def _get_schema_version(self, conn: sqlite3.Connection) -> int:
        try:
            row = conn.execute(
                "SELECT MAX(version) as v FROM schema_meta"
            ).fetchone()
            return row["v"] if row and row["v"] else 0
        except sqlite3.OperationalError as e:
            if "no such table" in str(e):
                return 0
            raise

    def _set_schema_version(self, conn: sqlite3.Connection, version: int):
        conn.execute(
            "INSERT INTO schema_meta (version, description) VALUES (?, ?)",
            (version, f"Schema version {version}"),
        )

    def _create_schema(self, conn: sqlite3.Connection):
        conn.executescript(self._get_schema_sql())
        conn.executescript(self._get_fts_sql())
        conn.executescript(self._get_triggers_sql())

    def _get_schema_sql(self) -> str:
        return """
            CREATE TABLE IF NOT EXISTS schema_meta (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER DEFAULT (strftime('%s', 'now')),
                description TEXT
            );

            CREATE TABLE IF NOT EXISTS sessions (
                pk INTEGER PRIMARY KEY,
                id TEXT NOT NULL UNIQUE,
                agent TEXT NOT NULL,
                external_id TEXT NOT NULL,
                project_path TEXT,
                project_name TEXT,
                title TEXT,
                summary TEXT,
                work_summary TEXT,
                started_at INTEGER,
                ended_at INTEGER,
                last_active_at INTEGER,
                status TEXT NOT NULL DEFAULT 'archived',
                partial INTEGER DEFAULT 0,
                message_count INTEGER DEFAULT 0,
                tool_call_count INTEGER DEFAULT 0,
                files_created INTEGER DEFAULT 0,
                files_modified INTEGER DEFAULT 0,
                files_deleted INTEGER DEFAULT 0,
                source_path TEXT,
                indexed_at INTEGER,
                UNIQUE (agent, external_id)
            );

            CREATE INDEX IF NOT EXISTS idx_sessions_agent ON sessions(agent);
            CREATE INDEX IF NOT EXISTS idx_sessions_project_path ON sessions(project_path);
            CREATE INDEX IF NOT EXISTS idx_sessions_last_active ON sessions(last_active_at DESC, id);
            CREATE INDEX IF NOT EXISTS idx_sessions_source_path ON sessions(source_path);

            CREATE TABLE IF NOT EXISTS messages (
                pk INTEGER PRIMARY KEY,
                session_id TEXT NOT NULL,
                ordinal INTEGER NOT NULL,
                role TEXT NOT NULL,
                content TEXT,
                timestamp INTEGER,
                UNIQUE (session_id, ordinal),
                FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS tool_calls (
                pk INTEGER PRIMARY KEY,
                session_id TEXT NOT NULL,
                ordinal INTEGER NOT NULL,
                message_ordinal INTEGER,
                kind TEXT NOT NULL,
                tool_name TEXT,
                target_path TEXT,
                summary TEXT,
                timestamp INTEGER,
                UNIQUE (session_id, ordinal),
                FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_tool_calls_target ON tool_calls(target_path);

            CREATE TABLE IF NOT EXISTS tags (
                session_id TEXT NOT NULL,
                label TEXT NOT NULL,
                created_at INTEGER DEFAULT (strftime('%s', 'now')),
                PRIMARY KEY (session_id, label),
                FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_tags_label ON tags(label);

            CREATE TABLE IF NOT EXISTS index_state (
                path TEXT PRIMARY KEY,
                agent TEXT NOT NULL,
                size INTEGER NOT NULL,
                mtime_ns INTEGER NOT NULL,
                content_hash TEXT,
                parsed_at REAL NOT NULL,
                partial INTEGER DEFAULT 0,
                session_ids TEXT
            );
        """

    def _get_fts_sql(self) -> str:
        return """
            CREATE VIRTUAL TABLE IF NOT EXISTS messages_fts USING fts5(
                content,
                content='messages',
                content_rowid='pk',
                tokenize='unicode61 remove_diacritics 1'
            );

            CREATE VIRTUAL TABLE IF NOT EXISTS sessions_fts USING fts5(
                title,
                summary,
                work_summary,
                project_name,
                project_path,
                agent,
                content='sessions',
                content_rowid='pk',
                tokenize='unicode61 remove_diacritics 1'
            );

            CREATE VIRTUAL TABLE IF NOT EXISTS tool_calls_fts USING fts5(
                tool_name,
                target_path,
                summary,
                content='tool_calls',
                content_rowid='pk',
                tokenize='unicode61 remove_diacritics 1'
            );
        """

    def _get_triggers_sql(self) -> str:
        return """
            CREATE TRIGGER IF NOT EXISTS messages_ai AFTER INSERT ON messages BEGIN
                INSERT INTO messages_fts(rowid, content)
                VALUES (NEW.pk, NEW.content);
            END;

            CREATE TRIGGER IF NOT EXISTS messages_ad AFTER DELETE ON messages BEGIN
                INSERT INTO messages_fts(messages_fts, rowid, content)
                VALUES ('delete', OLD.pk, OLD.content);
            END;

            CREATE TRIGGER IF NOT EXISTS messages_au AFTER UPDATE ON messages BEGIN
                INSERT INTO messages_fts(messages_fts, rowid, content)
                VALUES ('delete', OLD.pk, OLD.content);
                INSERT INTO messages_fts(rowid, content)
                VALUES (NEW.pk, NEW.content);
            END;

            CREATE TRIGGER IF NOT EXISTS sessions_ai AFTER INSERT ON sessions BEGIN
                INSERT INTO sessions_fts(rowid, title, summary, work_summary, project_name, project_path, agent)
                VALUES (NEW.pk, NEW.title, NEW.summary, NEW.work_summary, NEW.project_name,
                        NEW.project_path, NEW.agent);
            END;

            CREATE TRIGGER IF NOT EXISTS sessions_ad AFTER DELETE ON sessions BEGIN
                INSERT INTO sessions_fts(sessions_fts, rowid, title, summary, work_summary,
                                         project_name, project_path, agent)
                VALUES ('delete', OLD.pk, OLD.title, OLD.summary, OLD.work_summary, OLD.project_name,
                        OLD.project_path, OLD.agent);
            END;

            CREATE TRIGGER IF NOT EXISTS sessions_au AFTER UPDATE ON sessions BEGIN
                INSERT INTO sessions_fts(sessions_fts, rowid, title, summary, work_summary,
                                         project_name, project_path, agent)
                VALUES ('delete', OLD.pk, OLD.title, OLD.summary, OLD.work_summary, OLD.project_name,
                        OLD.project_path, OLD.agent);
                INSERT INTO sessions_fts(rowid, title, summary, work_summary, project_name, project_path, agent)
                VALUES (NEW.pk, NEW.title, NEW.summary, NEW.work_summary, NEW.project_name,
                        NEW.project_path, NEW.agent);
            END;

            CREATE TRIGGER IF NOT EXISTS tool_calls_ai AFTER INSERT ON tool_calls BEGIN
                INSERT INTO tool_calls_fts(rowid, tool_name, target_path, summary)
                VALUES (NEW.pk, NEW.tool_name, NEW.target_path, NEW.summary);
            END;

            CREATE TRIGGER IF NOT EXISTS tool_calls_ad AFTER DELETE ON tool_calls BEGIN
                INSERT INTO tool_calls_fts(tool_calls_fts, rowid, tool_name, target_path, summary)
                VALUES ('delete', OLD.pk, OLD.tool_name, OLD.target_path, OLD.summary);
            END;

            CREATE TRIGGER IF NOT EXISTS tool_calls_au AFTER UPDATE ON tool_calls BEGIN
                INSERT INTO tool_calls_fts(tool_calls_fts, rowid, tool_name, target_path, summary)
                VALUES ('delete', OLD.pk, OLD.tool_name, OLD.target_path, OLD.summary);
                INSERT INTO tool_calls_fts(rowid, tool_name, target_path, summary)
                VALUES (NEW.pk, NEW.tool_name, NEW.target_path, NEW.summary);
            END;
        """

    def _get_drop_sql(self) -> str:
        return """
            DROP TABLE IF EXISTS messages_fts;
            DROP TABLE IF EXISTS sessions_fts;
            DROP TABLE IF EXISTS tool_calls_fts;
            DROP TABLE IF EXISTS tags;
            DROP TABLE IF EXISTS messages;
            DROP TABLE IF EXISTS tool_calls;
            DROP TABLE IF EXISTS sessions;
            DROP TABLE IF EXISTS index_state;
        """

    def initialize(self):
        self._ensure_schema()

    def close(self):
        if self._connection:
            self._connection.close()
            self._connection = None
            self._initialized = False

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed writes as one unit under the writer lock."""
        self._ensure_schema()
        conn = self._get_connection()
        with self._lock:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise classify_store_error(e) from e
            try:
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                raise classify_store_error(e) from e
            except BaseException:
                self._rollback(conn)
                raise

    @staticmethod
    def _rollback(conn: sqlite3.Connection):
        if conn.in_transaction:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error as e:
                logger.warning(f"Rollback failed: {e}")

    # Writes

    def commit_file(
        self,
        state: IndexState,
        parsed: Optional[ParsedSession] = None,
        stale_session_ids: Iterable[str] = (),
        indexed_at: Optional[datetime] = None,
    ) -> None:
        """Write everything one source file produced in a single transaction.

        Sessions the file no longer yields are deleted, the parsed session
        (if any) replaces its previous rows, and the file's index state is
        updated. Nothing is written if any step fails. A stale session is
        only deleted while its rows still come from this file.
        """
        with self.transaction() as conn:
            stale = [sid for sid in stale_session_ids if not parsed or sid != parsed.session.id]
            owned = [
                sid for sid in stale
                if conn.execute(
                    "SELECT 1 FROM sessions WHERE id = ? AND source_path = ?", (sid, state.path)
                ).fetchone()
            ]
            if owned:
                self._delete_session_rows(conn, owned)
            if parsed is not None:
                self._replace_session_rows(conn, parsed, indexed_at)
            self._upsert_index_state(conn, state)

    def _replace_session_rows(
        self,
        conn: sqlite3.Connection,
        parsed: ParsedSession,
        indexed_at: Optional[datetime],
    ) -> None:
        session = parsed.session
        session_id = session.id

        # Delete all then insert the current set
        conn.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
        conn.execute("DELETE FROM tool_calls WHERE session_id = ?", (session_id,))

        conn.execute(
            """
            INSERT INTO sessions (
                id, agent, external_id, project_path, project_name, title, summary,
                work_summary, started_at, ended_at, last_active_at, status, partial,
                message_count, tool_call_count, files_created, files_modified,
                files_deleted, source_path, indexed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                project_path = excluded.project_path,
                project_name = excluded.project_name,
                title = excluded.title,
                summary = excluded.summary,
                work_summary = excluded.work_summary,
                started_at = excluded.started_at,
                ended_at = excluded.ended_at,
                last_active_at = excluded.last_active_at,
                status = excluded.status,
                partial = excluded.partial,
                message_count = excluded.message_count,
                tool_call_count = excluded.tool_call_count,
                files_created = excluded.files_created,
                files_modified = excluded.files_modified,
                files_deleted = excluded.files_deleted,
                source_path = excluded.source_path,
                indexed_at = excluded.indexed_at
            """,
            (
                session_id,
                session.agent,
                session.external_id,
                session.project_path,
                session.project_name,
                session.title,
                session.summary,
                session.work_summary,
                to_epoch(session.started_at),
                to_epoch(session.ended_at),
                to_epoch(session.last_active_at),
                session.status,
                1 if parsed.partial else 0,
                len(parsed.messages),
                len(parsed.tool_calls),
                session.files_created,
                session.files_modified,
                session.files_deleted,
                session.source_path,
                to_epoch(indexed_at),
            ),
        )

        conn.executemany(
            """
            INSERT INTO messages (session_id, ordinal, role, content, timestamp)
            VALUES (?, ?, ?, ?, ?)
            """,
            [
                (session_id, m.ordinal, m.role, m.content, to_epoch(m.timestamp))
                for m in parsed.messages
            ],
        )
        conn.executemany(
            """
            INSERT INTO tool_calls (
                session_id, ordinal, message_ordinal, kind, tool_name,
                target_path, summary, timestamp
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    session_id,
                    t.ordinal,
                    t.message_ordinal,
                    t.kind,
                    t.tool_name,
                    t.target_path,
                    t.summary,
                    to_epoch(t.timestamp),
                )
                for t in parsed.tool_calls
            ],
        )

    def _upsert_index_state(self, conn: sqlite3.Connection, state: IndexState) -> None:
        conn.execute(
            """
            INSERT INTO index_state (
                path, agent, size, mtime_ns, content_hash, parsed_at, partial, session_ids
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(path) DO UPDATE SET
                agent = excluded.agent,
                size = excluded.size,
                mtime_ns = excluded.mtime_ns,
                content_hash = excluded.content_hash,
                parsed_at = excluded.parsed_at,
                partial = excluded.partial,
                session_ids = excluded.session_ids
            """,
            (
                state.path,
                state.agent,
                state.size,
                state.mtime_ns,
                state.content_hash,
                state.parsed_at.timestamp(),
                1 if state.partial else 0,
                json.dumps(state.session_ids),
            ),
        )

    def record_index_state(self, state: IndexState) -> None:
        with self.transaction() as conn:
            self._upsert_index_state(conn, state)

    def _delete_session_rows(self, conn: sqlite3.Connection, session_ids: list[str]) -> int:
        removed = 0
        for session_id in session_ids:
            conn.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
            conn.execute("DELETE FROM tool_calls WHERE session_id = ?", (session_id,))
            conn.execute("DELETE FROM tags WHERE session_id = ?", (session_id,))
            cursor = conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            removed += cursor.rowcount
        return removed

    def delete_sessions(self, session_ids: list[str], index_paths: Iterable[str] = ()) -> int:
        """Delete sessions (and optionally index state rows); returns sessions removed."""
        with self.transaction() as conn:
            removed = self._delete_session_rows(conn, list(session_ids))
            for path in index_paths:
                conn.execute("DELETE FROM index_state WHERE path = ?", (path,))
        return removed

    def clear_all(self, agents: Optional[list[str]] = None) -> None:
        """Drop indexed rows (all agents, or only ``agents``) ahead of a rebuild."""
        with self.transaction() as conn:
            if agents is None:
                conn.execute("DELETE FROM tags")
                conn.execute("DELETE FROM messages")
                conn.execute("DELETE FROM tool_calls")
                conn.execute("DELETE FROM sessions")
                conn.execute("DELETE FROM index_state")
                return
            for agent in agents:
                rows = conn.execute("SELECT id FROM sessions WHERE agent = ?", (agent,)).fetchall()
                self._delete_session_rows(conn, [row["id"] for row in rows])
                conn.execute("DELETE FROM index_state WHERE agent = ?", (agent,))

    def add_tags(self, session_id: str, labels: list[str]) -> None:
        with self.transaction() as conn:
            conn.executemany(
                "INSERT OR IGNORE INTO tags (session_id, label) VALUES (?, ?)",
                [(session_id, label) for label in labels],
            )

    def remove_tags(self, session_id: str, labels: list[str]) -> None:
        with self.transaction() as conn:
            conn.executemany(
                "DELETE FROM tags WHERE session_id = ? AND label = ?",
                [(session_id, label) for label in labels],
            )

    # Reads used by the indexer and tag operations

    def get_index_states(self) -> dict[str, IndexState]:
        self._ensure_schema()
        conn = self._get_connection()
        rows = conn.execute("SELECT * FROM index_state").fetchall()
        return {row["path"]: row_to_index_state(row) for row in rows}

    def get_session_status(self, session_id: str, idle_before: Optional[datetime] = None) -> Optional[str]:
        """Stored status, or the effective one when ``idle_before`` is given."""
        self._ensure_schema()
        conn = self._get_connection()
        row = conn.execute(
            "SELECT status, partial, last_active_at FROM sessions WHERE id = ?", (session_id,)
        ).fetchone()
        if row is None:
            return None
        return effective_status(row["status"], bool(row["partial"]), row["last_active_at"], to_epoch(idle_before))

    def session_exists(self, session_id: str) -> bool:
        return self.get_session_status(session_id) is not None

    def get_tags(self, session_id: str) -> list[str]:
        self._ensure_schema()
        conn = self._get_connection()
        rows = conn.execute(
            "SELECT label FROM tags WHERE session_id = ? ORDER BY label",
            (session_id,),
        ).fetchall()
        return [row["label"] for row in rows]

    def find_sessions(
        self,
        *,
        agent: Optional[str] = None,
        before: Optional[datetime] = None,
    ) -> list[tuple[str, str]]:
        """Return (session_id, source_path) pairs matching prune criteria."""
        self._ensure_schema()
        conn = self._get_connection()
        conditions = []
        params: list = []

        if agent:
            conditions.append("agent = ?")
            params.append(agent)
        if before:
            conditions.append("last_active_at < ?")
            params.append(to_epoch(before))

        where_clause = ""
        if conditions:
            where_clause = "WHERE " + " AND ".join(conditions)

        rows = conn.execute(
            f"SELECT id, source_path FROM sessions {where_clause} ORDER BY id",
            params,
        ).fetchall()
        return [(row["id"], row["source_path"]) for row in rows]

    def count_sessions(self, agent: Optional[str] = None) -> int:
        self._ensure_schema()
        conn = self._get_connection()
        if agent:
            row = conn.execute(
                "SELECT COUNT(*) as c FROM sessions WHERE agent = ?", (agent,)
            ).fetchone()
        else:
            row = conn.execute("SELECT COUNT(*) as c FROM sessions").fetchone()
        return row["c"] if row else 0

    def count_messages(self) -> int:
        self._ensure_schema()
        conn = self._get_connection()
        row = conn.execute("SELECT COUNT(*) as c FROM messages").fetchone()
        return row["c"] if row else 0

    def check_fts_integrity(self) -> bool:
        """Verify every FTS index matches its content table."""
        self._ensure_schema()
        conn = self._get_connection()
        with self._lock:
            try:
                for table in ("messages_fts", "sessions_fts", "tool_calls_fts"):
                    conn.execute(f"INSERT INTO {table}({table}) VALUES ('integrity-check')")
            except sqlite3.DatabaseError as e:
                logger.warning(f"FTS integrity check failed: {e}")
                return False
        return True
