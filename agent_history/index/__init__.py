"""SQLite index: change detection, storage, ingestion and queries."""

from .database import SessionDatabase
from .fingerprint import Fingerprint, Verdict, classify, compute_fingerprint
from .indexer import SessionIndexer
from .query import QueryEngine

__all__ = [
    "SessionDatabase",
    "SessionIndexer",
    "QueryEngine",
    "Fingerprint",
    "Verdict",
    "classify",
    "compute_fingerprint",
]
