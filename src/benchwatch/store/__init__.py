"""History store for benchwatch.

This module provides the append-only, per-tool benchmark history and
its persisted document format.

Example:
    >>> from benchwatch.store import HistoryStore, JSONFileBackend
    >>>
    >>> store = await HistoryStore.open(JSONFileBackend("dev/bench/data.json"))
    >>> await store.ingest(entry, timeout=10.0)
    >>> store.history("Rust Benchmark", "voxel_planet", limit=20)
"""

from __future__ import annotations

from benchwatch.store.backends import JSONFileBackend, MemoryBackend, PersistenceBackend
from benchwatch.store.codec import SCHEMA_VERSION, decode_document, document_token, encode_document
from benchwatch.store.history import HistoryStore
from benchwatch.store.models import AppendResult, IngestResult, SeriesPoint
from benchwatch.store.snapshot import StoreSnapshot

__all__ = [
    "SCHEMA_VERSION",
    "AppendResult",
    "HistoryStore",
    "IngestResult",
    "JSONFileBackend",
    "MemoryBackend",
    "PersistenceBackend",
    "SeriesPoint",
    "StoreSnapshot",
    "decode_document",
    "document_token",
    "encode_document",
]
