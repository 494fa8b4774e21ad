"""Change detection for tracked source files.

Size and mtime decide first. A content hash is only consulted when they
cannot: the size is unchanged but the mtime moved, or (under the default
"auto" policy) whenever the size is unchanged, so a same-size rewrite
within one mtime tick is still caught.
"""

import hashlib
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from pathlib import Path

from ..adapters.base import SourceFile
from ..models import IndexState


class Verdict(str, Enum):
    NEW = "new"
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    RETRY = "retry"  # previous parse was partial

    @property
    def needs_parse(self) -> bool:
        return self is not Verdict.UNCHANGED


@dataclass(frozen=True)
class Fingerprint:
    size: int
    mtime_ns: int
    content_hash: str


def content_hash(data: bytes) -> str:
    return hashlib.md5(data).hexdigest()


def compute_fingerprint(source: SourceFile, data: bytes | None = None) -> Fingerprint:
    if data is None:
        data = source.read_bytes()
    return Fingerprint(size=source.size, mtime_ns=source.mtime_ns, content_hash=content_hash(data))


def _is_racy(source: SourceFile, prior: IndexState, racy_window: float) -> bool:
    """The file was written so close to the last parse that the mtime can't be trusted."""
    return source.mtime >= prior.parsed_at - timedelta(seconds=racy_window)


def needs_hash(
    source: SourceFile,
    prior: IndexState | None,
    hash_policy: str = "auto",
    racy_window: float = 2.0,
) -> bool:
    """Whether size and mtime alone cannot classify ``source``."""
    if prior is None or prior.partial:
        return False
    if source.size != prior.size:
        return False
    if source.mtime_ns != prior.mtime_ns:
        return True
    if hash_policy == "auto":
        return True
    return _is_racy(source, prior, racy_window)


def classify(
    source: SourceFile,
    prior: IndexState | None,
    current_hash: str | None = None,
    hash_policy: str = "auto",
    racy_window: float = 2.0,
) -> Verdict:
    """Decide whether ``source`` must be re-parsed.

    ``current_hash`` is required when needs_hash() is true for the same
    arguments.
    """
    if prior is None:
        return Verdict.NEW
    if prior.partial:
        return Verdict.RETRY
    if source.size != prior.size:
        return Verdict.CHANGED

    if needs_hash(source, prior, hash_policy, racy_window):
        if current_hash is None:
            raise ValueError(f"content hash required to classify {source.path}")
        return Verdict.UNCHANGED if current_hash == prior.content_hash else Verdict.CHANGED

    return Verdict.UNCHANGED


def missing_sources(states: list[IndexState], agents: set[str] | None = None) -> list[IndexState]:
    """Tracked files that no longer exist on disk (prune candidates)."""
    missing = []
    for state in states:
        if agents is not None and state.agent not in agents:
            continue
        if not Path(state.path).exists():
            missing.append(state)
    return missing
