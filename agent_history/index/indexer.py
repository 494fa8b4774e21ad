"""Session indexer for full and incremental indexing."""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Optional

from ..adapters.base import SessionAdapter, SourceFile
from ..config import Settings
from ..errors import AgentHistoryError, ParseFailure, StoreTransactionFailure
from ..models import (
    STATUS_ACTIVE,
    STATUS_ARCHIVED,
    STATUS_RESUMED,
    FileFailure,
    IndexState,
    ParsedSession,
    RunSummary,
)
from ..timeutil import utc_now
from .database import SessionDatabase
from .fingerprint import Verdict, classify, content_hash, missing_sources, needs_hash

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]


@dataclass
class FileOutcome:
    """Result of examining one file in a worker thread."""

    adapter: str
    source: SourceFile
    verdict: Optional[Verdict] = None
    parsed: Optional[ParsedSession] = None
    content_hash: str = ""
    size: int = 0
    read_at: Optional[datetime] = None
    error: Optional[AgentHistoryError] = None


class SessionIndexer:
    """Index session files into SQLite, one transaction per changed file.

    Enumeration and parsing run on a thread pool; every store write happens
    on the calling thread.
    """

    def __init__(
        self,
        db: SessionDatabase,
        adapters: list[SessionAdapter],
        settings: Optional[Settings] = None,
    ):
        self.db = db
        self.adapters = adapters
        self.settings = settings or Settings()

    def ingest(
        self,
        agents: Optional[list[str]] = None,
        rebuild: bool = False,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> RunSummary:
        """
        Scan the selected agents and bring the store up to date.

        Args:
            agents: Registered adapter names to scan; None scans all.
            rebuild: Drop the selected agents' rows before scanning.
            cancel_event: Set to stop at the next file boundary.
            progress_callback: Optional callback(current, total, path) for progress

        Returns:
            RunSummary with file counts and per-file failures
        """
        start_time = time.time()
        summary = RunSummary()
        cancel_event = cancel_event or threading.Event()
        adapters = [a for a in self.adapters if agents is None or a.name in agents]
        selected = {a.name for a in adapters}

        if rebuild:
            logger.info(f"Rebuild: clearing indexed rows for {', '.join(sorted(selected)) or 'no agents'}")
            self.db.clear_all(None if agents is None else sorted(selected))

        prior_states = self.db.get_index_states()
        run_started = utc_now()

        pool = ThreadPoolExecutor(max_workers=max(1, self.settings.workers))
        futures: dict[Future, SourceFile] = {}
        try:
            sources = self._enumerate(pool, adapters, summary)
            summary.files_scanned = len(sources)
            total = len(sources)
            logger.info(f"Ingest: {total} files from {len(adapters)} adapters")

            for adapter, source in sources:
                future = pool.submit(self._examine, adapter, source, prior_states.get(str(source.path)))
                futures[future] = source

            for current, future in enumerate(as_completed(futures), start=1):
                if cancel_event.is_set():
                    break
                self._apply(future.result(), prior_states, run_started, summary)
                if progress_callback:
                    progress_callback(current, total, str(futures[future].path))
        except KeyboardInterrupt:
            logger.info("Ingest interrupted")
            cancel_event.set()
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

        if cancel_event.is_set():
            summary.cancelled = True

        summary.missing_sources = len(missing_sources(list(prior_states.values()), selected))
        summary.duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Ingest {'cancelled' if summary.cancelled else 'complete'}: "
            f"{summary.files_scanned} scanned, {summary.files_changed} changed, "
            f"{summary.files_failed} failed in {summary.duration_ms}ms"
        )
        return summary

    def _enumerate(
        self,
        pool: ThreadPoolExecutor,
        adapters: list[SessionAdapter],
        summary: RunSummary,
    ) -> list[tuple[SessionAdapter, SourceFile]]:
        futures = {pool.submit(adapter.enumerate): adapter for adapter in adapters}
        sources = []
        for future in as_completed(futures):
            adapter = futures[future]
            try:
                found = future.result()
            except OSError as e:
                logger.warning(f"Failed to enumerate {adapter.root}: {e}")
                summary.files_failed += 1
                summary.failures.append(FileFailure(
                    path=str(adapter.root),
                    agent=adapter.name,
                    kind="file_unreadable",
                    message=str(e),
                ))
                continue
            sources.extend((adapter, source) for source in found)
        sources.sort(key=lambda pair: (pair[0].name, str(pair[1].path)))
        return sources

    def _examine(
        self,
        adapter: SessionAdapter,
        source: SourceFile,
        prior: Optional[IndexState],
    ) -> FileOutcome:
        """Classify and, when needed, parse one file. Runs in a worker; never writes."""
        outcome = FileOutcome(adapter=adapter.name, source=source)
        try:
            data = None
            current_hash = None
            outcome.read_at = utc_now()
            if needs_hash(source, prior, self.settings.hash_policy, self.settings.racy_window):
                data = source.read_bytes()
                current_hash = content_hash(data)

            outcome.verdict = classify(
                source, prior, current_hash, self.settings.hash_policy, self.settings.racy_window
            )
            if not outcome.verdict.needs_parse:
                return outcome

            if data is None:
                data = source.read_bytes()
            outcome.content_hash = current_hash or content_hash(data)
            outcome.size = len(data)
            outcome.parsed = adapter.parse(source, data)
        except AgentHistoryError as e:
            outcome.error = e
        except Exception as e:
            logger.exception(f"Unexpected error parsing {source.path}")
            outcome.error = ParseFailure(source.path, f"{type(e).__name__}: {e}")
        return outcome

    def _apply(
        self,
        outcome: FileOutcome,
        prior_states: dict[str, IndexState],
        run_started: datetime,
        summary: RunSummary,
    ) -> None:
        source = outcome.source
        path = str(source.path)
        prior = prior_states.get(path)

        if outcome.error is not None:
            self._record_failure(summary, outcome.source, outcome.error.kind, str(outcome.error))
            return

        if outcome.verdict is Verdict.UNCHANGED:
            summary.files_unchanged += 1
            if prior and prior.mtime_ns != source.mtime_ns:
                # Touched without content change
                touched = replace(prior, mtime_ns=source.mtime_ns)
                self._commit(lambda: self.db.record_index_state(touched), source, summary)
            return

        parsed = outcome.parsed
        session = parsed.session
        idle_before = run_started - timedelta(seconds=self.settings.active_window)
        existing_status = self.db.get_session_status(session.id, idle_before=idle_before)

        to_write: Optional[ParsedSession] = parsed
        if not parsed.messages and existing_status is None:
            logger.debug(f"No messages in {path}")
            to_write = None

        if to_write is not None:
            session.status = self._status(parsed, outcome.verdict, existing_status, prior, outcome.size, run_started)

        state = IndexState(
            path=path,
            agent=outcome.adapter,
            size=outcome.size,
            mtime_ns=source.mtime_ns,
            content_hash=outcome.content_hash,
            parsed_at=outcome.read_at,
            session_ids=[session.id] if to_write is not None else [],
            partial=parsed.partial,
        )
        stale = prior.session_ids if prior else []

        committed = self._commit(
            lambda: self.db.commit_file(state, to_write, stale, indexed_at=run_started),
            source,
            summary,
        )
        if not committed:
            return

        summary.files_changed += 1
        if parsed.partial:
            summary.files_partial += 1
            logger.debug(f"Partial parse of {path}: {parsed.skipped_lines} lines skipped")
        if to_write is not None:
            summary.sessions_written += 1
            summary.messages_written += len(to_write.messages)

    def _status(
        self,
        parsed: ParsedSession,
        verdict: Verdict,
        existing_status: Optional[str],
        prior: Optional[IndexState],
        size: int,
        now: datetime,
    ) -> str:
        grew = prior is not None and size > prior.size
        if existing_status == STATUS_ARCHIVED and verdict is not Verdict.NEW and grew:
            return STATUS_RESUMED
        if parsed.partial:
            return STATUS_ACTIVE
        last_active = parsed.session.last_active_at
        if last_active and now - last_active <= timedelta(seconds=self.settings.active_window):
            return STATUS_ACTIVE
        return STATUS_ARCHIVED

    def _commit(self, write: Callable[[], None], source: SourceFile, summary: RunSummary) -> bool:
        """Run one file's transaction, retrying once on a rejected commit."""
        for attempt in (1, 2):
            try:
                write()
                return True
            except StoreTransactionFailure as e:
                if attempt == 1:
                    logger.warning(f"Retrying commit for {source.path}: {e}")
                    continue
                self._record_failure(summary, source, e.kind, str(e))
        return False

    @staticmethod
    def _record_failure(summary: RunSummary, source: SourceFile, kind: str, message: str):
        logger.warning(f"Failed to index {source.path}: {message}")
        summary.files_failed += 1
        summary.failures.append(FileFailure(
            path=str(source.path),
            agent=source.agent,
            kind=kind,
            message=message,
        ))
