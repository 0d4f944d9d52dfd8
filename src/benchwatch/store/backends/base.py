"""Base protocol for persistence backends.

This module defines the PersistenceBackend protocol the history store
writes its document through.
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class PersistenceBackend(Protocol):
    """Protocol for durable storage of the store document.

    ``write`` must be atomic from a reader's point of view: a concurrent
    ``read`` sees either the previous or the new document, never a mix.
    ``locked`` excludes every other writer of the same document, including
    writers in other processes, for a read-modify-write cycle.

    Backends raise TransientPersistenceError for failures worth retrying
    and PersistenceFormatError for documents they cannot (de)serialize.

    Example:
        >>> class MyBackend:
        ...     async def read(self) -> dict[str, Any] | None: ...
        ...     async def write(self, document: dict[str, Any]) -> None: ...
        ...     def locked(self) -> AbstractAsyncContextManager[None]: ...
        >>> isinstance(MyBackend(), PersistenceBackend)
        True
    """

    async def read(self) -> dict[str, Any] | None:
        """Read the stored document.

        Returns:
            The decoded document, or None if nothing was stored yet.
        """
        ...

    async def write(self, document: dict[str, Any]) -> None:
        """Replace the stored document.

        Args:
            document: JSON-serializable store document.
        """
        ...

    def locked(self) -> AbstractAsyncContextManager[None]:
        """Hold the exclusive write lock of the document.

        Raises:
            TransientPersistenceError: If the lock cannot be acquired.
        """
        ...
