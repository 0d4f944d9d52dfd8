"""In-memory persistence backend."""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from benchwatch.core.exceptions import PersistenceFormatError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


class MemoryBackend:
    """In-memory backend holding the last written document.

    Documents go through a JSON round trip, so anything the file backend
    would reject is rejected here too. Stores sharing one instance share
    its document and its lock. Data is lost when the process exits.

    Example:
        >>> backend = MemoryBackend()
        >>> store = await HistoryStore.open(backend)
    """

    def __init__(self, document: dict[str, Any] | None = None) -> None:
        """Initialize the memory backend.

        Args:
            document: Initial stored document, if any.
        """
        self._content: str | None = None
        self._lock = asyncio.Lock()
        self.writes = 0
        if document is not None:
            self._content = self._dumps(document)

    @staticmethod
    def _dumps(document: dict[str, Any]) -> str:
        try:
            return json.dumps(document, allow_nan=False, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise PersistenceFormatError(f"Store document is not serializable: {e}") from e

    async def read(self) -> dict[str, Any] | None:
        """Read the stored document."""
        if self._content is None:
            return None
        data: dict[str, Any] = json.loads(self._content)
        return data

    async def write(self, document: dict[str, Any]) -> None:
        """Replace the stored document."""
        self._content = self._dumps(document)
        self.writes += 1

    @asynccontextmanager
    async def locked(self) -> AsyncIterator[None]:
        """Hold the document lock."""
        async with self._lock:
            yield
