"""Serialization of the store to its persisted document.

Document format (schema version 1)::

    {
      "schemaVersion": 1,
      "revision": 3,
      "lastUpdate": 1614622177979,
      "repoUrl": "https://github.com/owner/repo",
      "entries": {
        "Rust Benchmark": [
          {"commit": {...}, "date": 1614622177532, "tool": "cargo",
           "benches": [{"name": "...", "value": 1, "range": "± 0.1", "unit": "ns/iter"}]}
        ]
      }
    }

``revision`` counts the writes of the document, so a writer can tell
whether someone else replaced it since it was read. Readers ignore
unknown fields. Documents without ``schemaVersion`` are read as
version 1, documents without ``revision`` as revision 0.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from benchwatch.core.exceptions import PersistenceFormatError
from benchwatch.entries.models import BenchmarkEntry
from benchwatch.store.snapshot import StoreSnapshot

SCHEMA_VERSION = 1

# (revision, lastUpdate) of a stored document
DocumentToken = tuple[int, int]


def document_token(document: dict[str, Any] | None) -> DocumentToken | None:
    """Identify a stored document, or None if nothing is stored."""
    if document is None:
        return None
    revision = document.get("revision", 0)
    last_update = document.get("lastUpdate", 0)
    return (
        revision if isinstance(revision, int) else 0,
        last_update if isinstance(last_update, int) else 0,
    )


def encode_document(snapshot: StoreSnapshot, *, revision: int = 0) -> dict[str, Any]:
    """Convert a snapshot to its document form.

    Args:
        snapshot: The store version to serialize.
        revision: Write counter stored with the document.

    Returns:
        JSON-serializable document.
    """
    return {
        "schemaVersion": SCHEMA_VERSION,
        "revision": revision,
        "lastUpdate": snapshot.last_update,
        "repoUrl": snapshot.repo_url,
        "entries": {
            tool: [entry.to_dict() for entry in entries] for tool, entries in snapshot.entries.items()
        },
    }


def decode_document(data: Any, *, version: int = 0) -> StoreSnapshot:
    """Create a snapshot from its document form.

    Entries of a tool are ordered by ``date``; ties keep document order.

    Args:
        data: Decoded document.
        version: Version number given to the loaded snapshot.

    Returns:
        StoreSnapshot holding every entry of the document.

    Raises:
        PersistenceFormatError: If the document does not match the format.
    """
    if not isinstance(data, dict):
        raise PersistenceFormatError(f"Store document must be an object, got {type(data).__name__}")

    schema = data.get("schemaVersion", SCHEMA_VERSION)
    if not isinstance(schema, int) or schema > SCHEMA_VERSION:
        raise PersistenceFormatError(f"Unsupported store schema version: {schema!r}")

    raw_entries = data.get("entries", {})
    if not isinstance(raw_entries, dict):
        raise PersistenceFormatError("Store document 'entries' must map tool names to entry lists")

    entries: dict[str, tuple[BenchmarkEntry, ...]] = {}
    for tool, items in raw_entries.items():
        if not isinstance(items, list):
            raise PersistenceFormatError(f"Entries of tool '{tool}' must be a list")
        try:
            decoded = [BenchmarkEntry.from_dict(item, tool) for item in items]
        except (ValidationError, KeyError, TypeError) as e:
            raise PersistenceFormatError(f"Malformed entry for tool '{tool}': {e}") from e
        if decoded:
            entries[tool] = tuple(sorted(decoded, key=lambda entry: entry.recorded_at))

    last_update = data.get("lastUpdate", 0)
    return StoreSnapshot(
        entries,
        repo_url=data.get("repoUrl") or "",
        version=version,
        last_update=last_update if isinstance(last_update, int) else 0,
    )
