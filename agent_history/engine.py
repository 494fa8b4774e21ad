"""Engine facade: the API front ends use to ingest and query session history."""

import logging
import threading
from dataclasses import replace
from pathlib import Path
from typing import Optional

from .adapters import get_all_adapters, normalize_agent_name
from .adapters.base import SessionAdapter
from .config import Settings, load_settings
from .errors import InvalidFilter
from .index.database import SessionDatabase
from .index.fingerprint import missing_sources
from .index.indexer import ProgressCallback, SessionIndexer
from .index.query import QueryEngine
from .models import (
    PruneCriteria,
    RunSummary,
    SearchHit,
    SessionDetail,
    SessionFilter,
    SessionSummary,
    Stats,
)
from .timeutil import parse_date_value

logger = logging.getLogger(__name__)


class HistoryEngine:
    """Ingest agent session files and answer queries over them.

    Front ends (CLI, TUI, query servers) call these methods and never
    touch the store directly. Usable as a context manager.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        adapters: Optional[list[SessionAdapter]] = None,
    ):
        self.settings = settings or load_settings()
        if adapters is None:
            adapters = get_all_adapters(self.settings.agent_roots)
            if self.settings.enabled_agents:
                enabled = {normalize_agent_name(a) or a for a in self.settings.enabled_agents}
                adapters = [a for a in adapters if a.name in enabled]
        self.adapters = adapters
        self.db = SessionDatabase(self.settings.db_path)
        self.indexer = SessionIndexer(self.db, self.adapters, self.settings)
        self.query = QueryEngine(self.db, self.settings)

    def __enter__(self) -> "HistoryEngine":
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self.query.close()
        self.db.close()

    def _resolve_agent(self, name: str) -> str:
        canonical = normalize_agent_name(name)
        if canonical is None or canonical not in {a.name for a in self.adapters}:
            known = ", ".join(a.name for a in self.adapters)
            raise InvalidFilter(f"Unknown agent: {name!r} (known: {known})")
        return canonical

    def _filters(self, filters: Optional[SessionFilter], overrides: dict) -> SessionFilter:
        if filters is None:
            filters = SessionFilter(**overrides)
        elif overrides:
            raise TypeError("pass either a SessionFilter or keyword filters, not both")
        if filters.agent:
            filters = replace(filters, agent=self._resolve_agent(filters.agent))
        return filters

    # Ingestion

    def ingest(
        self,
        agents: Optional[list[str]] = None,
        rebuild: bool = False,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> RunSummary:
        """Scan source files and index what changed. Returns the run summary."""
        selected = None if agents is None else [self._resolve_agent(a) for a in agents]
        return self.indexer.ingest(
            agents=selected,
            rebuild=rebuild,
            cancel_event=cancel_event,
            progress_callback=progress_callback,
        )

    # Queries

    def list_sessions(self, filters: Optional[SessionFilter] = None, **kwargs) -> list[SessionSummary]:
        return self.query.list_sessions(self._filters(filters, kwargs))

    def search(self, keyword: str, filters: Optional[SessionFilter] = None, **kwargs) -> list[SearchHit]:
        return self.query.search(keyword, self._filters(filters, kwargs))

    def search_by_file(self, path_fragment: str, filters: Optional[SessionFilter] = None, **kwargs) -> list[SessionSummary]:
        return self.query.search_by_file(path_fragment, self._filters(filters, kwargs))

    def get(self, session_id: str) -> SessionDetail:
        return self.query.get(session_id)

    def stats(self, filters: Optional[SessionFilter] = None, period: str = "day", **kwargs) -> Stats:
        return self.query.stats(self._filters(filters, kwargs), period=period)

    # Maintenance

    def missing_sources(self) -> list[str]:
        """Tracked files that no longer exist; they stay indexed until pruned."""
        states = self.db.get_index_states()
        return sorted(state.path for state in missing_sources(list(states.values())))

    def prune(self, criteria: Optional[PruneCriteria] = None, **kwargs) -> int:
        """Delete sessions matching every given criterion. Returns the count removed."""
        criteria = criteria or PruneCriteria(**kwargs)
        if criteria.is_empty():
            raise InvalidFilter("prune needs at least one criterion (missing, older_than or agent)")

        agent = self._resolve_agent(criteria.agent) if criteria.agent else None
        before = None
        if criteria.older_than:
            before = parse_date_value(criteria.older_than)
            if before is None:
                raise InvalidFilter(f"Invalid age: {criteria.older_than!r}")

        candidates = self.db.find_sessions(agent=agent, before=before)
        if criteria.missing:
            candidates = [(sid, src) for sid, src in candidates if not src or not Path(src).exists()]
        session_ids = [sid for sid, _ in candidates]

        # Forget vanished files once none of their sessions remain
        index_paths: list[str] = []
        if criteria.missing:
            removed_ids = set(session_ids)
            states = self.db.get_index_states()
            index_paths = [
                state.path
                for state in missing_sources(list(states.values()), {agent} if agent else None)
                if set(state.session_ids) <= removed_ids
            ]

        if not session_ids and not index_paths:
            return 0

        removed = self.db.delete_sessions(session_ids, index_paths)
        logger.info(f"Pruned {removed} sessions")
        return removed

    def tag(self, session_id: str, labels: list[str], remove: bool = False) -> list[str]:
        """Add (or remove) labels on a session. Returns its labels afterwards."""
        resolved = self.query.get(session_id).id if not self.db.session_exists(session_id) else session_id
        cleaned = sorted({label.strip() for label in labels if label and label.strip()})
        if cleaned:
            if remove:
                self.db.remove_tags(resolved, cleaned)
            else:
                self.db.add_tags(resolved, cleaned)
        return self.db.get_tags(resolved)

    def tags(self, session_id: str) -> list[str]:
        resolved = self.query.get(session_id).id if not self.db.session_exists(session_id) else session_id
        return self.db.get_tags(resolved)
