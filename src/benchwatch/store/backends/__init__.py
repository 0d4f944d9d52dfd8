"""Persistence backends for the history store.

Example:
    >>> from benchwatch.store.backends import JSONFileBackend
    >>> backend = JSONFileBackend("dev/bench/data.js")
"""

from __future__ import annotations

from benchwatch.store.backends.base import PersistenceBackend
from benchwatch.store.backends.json_file import JSONFileBackend
from benchwatch.store.backends.memory import MemoryBackend

__all__ = [
    "JSONFileBackend",
    "MemoryBackend",
    "PersistenceBackend",
]
