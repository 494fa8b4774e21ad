"""Error taxonomy for ingestion, storage and queries.

Per-file errors (``FileUnreadable``, ``ParseFailure``) are caught by the
indexer and reported in the run summary. ``StoreTransactionFailure`` is
retried once per file. ``StoreUnavailable`` aborts an ingestion run.
A truncated, still-growing file is not an error: adapters flag it with
``ParsedSession.partial`` instead.
"""

from pathlib import Path


class AgentHistoryError(Exception):
    """Base class for all agent-history errors."""

    kind = "error"


class ConfigError(AgentHistoryError):
    kind = "config_error"


class FileUnreadable(AgentHistoryError):
    """A source file could not be read (permissions, I/O, vanished)."""

    kind = "file_unreadable"

    def __init__(self, path, reason: str = ""):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Cannot read {self.path}: {reason}" if reason else f"Cannot read {self.path}")


class ParseFailure(AgentHistoryError):
    """A source file's content is malformed beyond best-effort recovery."""

    kind = "parse_failure"

    def __init__(self, path, reason: str = ""):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Cannot parse {self.path}: {reason}" if reason else f"Cannot parse {self.path}")


class StoreError(AgentHistoryError):
    kind = "store_error"


class StoreTransactionFailure(StoreError):
    """The store rejected one transaction; other files are unaffected."""

    kind = "store_transaction_failure"


class StoreUnavailable(StoreError):
    """The store is corrupt or its medium is unavailable."""

    kind = "store_unavailable"


class InvalidFilter(AgentHistoryError):
    """A query filter (agent, time window, period) could not be understood."""

    kind = "invalid_filter"


class NotFound(AgentHistoryError):
    kind = "not_found"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")
