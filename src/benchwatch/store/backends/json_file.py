"""JSON file persistence backend.

This module stores the history document in a single JSON file, or in a
``.js`` file assigning it to ``window.BENCHMARK_DATA`` so a static
dashboard can load it with a script tag.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from benchwatch.core.exceptions import LockTimeoutError, PersistenceFormatError, TransientPersistenceError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)

JS_PREFIX = "window.BENCHMARK_DATA = "

# Lock acquisition defaults, in seconds
DEFAULT_LOCK_TIMEOUT = 10.0
DEFAULT_STALE_LOCK_AFTER = 120.0
LOCK_POLL_INTERVAL = 0.05


class JSONFileBackend:
    """JSON file backend for the history store.

    Uses atomic writes (temp file + rename) so readers never observe a
    partially written document. Writers exclude each other through a
    sibling ``<name>.lock`` file created with ``O_EXCL``, which works
    across processes sharing the file system.

    Example:
        >>> backend = JSONFileBackend("dev/bench/data.js")
        >>> store = await HistoryStore.open(backend)
    """

    def __init__(
        self,
        path: str | Path = "dev/bench/data.json",
        indent: int | None = 2,
        *,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
        stale_lock_after: float = DEFAULT_STALE_LOCK_AFTER,
    ) -> None:
        """Initialize the JSON file backend.

        Args:
            path: Path to the document. A ``.js`` suffix selects the dashboard wrapper.
            indent: JSON indentation level. Use None for compact output.
            lock_timeout: Seconds to wait for the write lock.
            stale_lock_after: Age in seconds after which a left-over lock is taken over.
        """
        self._path = Path(path)
        self._indent = indent
        self._lock_timeout = lock_timeout
        self._stale_lock_after = stale_lock_after

    @property
    def path(self) -> Path:
        return self._path

    @property
    def lock_path(self) -> Path:
        return self._path.with_name(self._path.name + ".lock")

    @property
    def is_script(self) -> bool:
        return self._path.suffix == ".js"

    def _decode(self, content: str) -> dict[str, Any] | None:
        content = content.strip()
        if self.is_script and content.startswith(JS_PREFIX):
            content = content[len(JS_PREFIX) :].rstrip().rstrip(";")
        if not content:
            return None
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise PersistenceFormatError(f"Failed to parse benchmark data in {self._path}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceFormatError(f"Benchmark data in {self._path} is not an object")
        return data

    def _encode(self, document: dict[str, Any]) -> str:
        try:
            content = json.dumps(document, indent=self._indent, allow_nan=False, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise PersistenceFormatError(f"Store document is not serializable: {e}") from e
        if self.is_script:
            return f"{JS_PREFIX}{content}\n"
        return content + "\n"

    def _read_sync(self) -> dict[str, Any] | None:
        if not self._path.exists():
            return None
        try:
            content = self._path.read_text(encoding="utf-8")
        except OSError as e:
            raise TransientPersistenceError(f"Failed to read {self._path}: {e}") from e
        return self._decode(content)

    def _write_sync(self, content: str) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            temp_fd, temp_path = tempfile.mkstemp(
                dir=self._path.parent,
                prefix=f".{self._path.stem}_",
                suffix=".tmp",
            )
        except OSError as e:
            raise TransientPersistenceError(f"Failed to prepare write of {self._path}: {e}") from e

        try:
            with os.fdopen(temp_fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            # Atomic rename
            Path(temp_path).replace(self._path)
        except OSError as e:
            Path(temp_path).unlink(missing_ok=True)
            raise TransientPersistenceError(f"Failed to write {self._path}: {e}") from e
        except BaseException:
            Path(temp_path).unlink(missing_ok=True)
            raise

    def _try_lock(self) -> bool:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.lock_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            self._break_stale_lock()
            return False
        except OSError as e:
            raise TransientPersistenceError(f"Failed to create lock {self.lock_path}: {e}") from e
        try:
            os.write(fd, str(os.getpid()).encode())
        finally:
            os.close(fd)
        return True

    def _break_stale_lock(self) -> None:
        try:
            age = time.time() - self.lock_path.stat().st_mtime
        except FileNotFoundError:
            return
        if age > self._stale_lock_after:
            # Holder died without releasing the lock
            logger.warning(f"Removing stale lock {self.lock_path} ({age:.0f}s old)")
            self.lock_path.unlink(missing_ok=True)

    async def read(self) -> dict[str, Any] | None:
        """Read the stored document.

        Returns:
            The decoded document, or None if the file is missing or empty.

        Raises:
            TransientPersistenceError: If the file cannot be read.
            PersistenceFormatError: If the file content is not a JSON object.
        """
        return await asyncio.to_thread(self._read_sync)

    async def write(self, document: dict[str, Any]) -> None:
        """Atomically replace the stored document.

        Raises:
            TransientPersistenceError: If the file cannot be written.
            PersistenceFormatError: If the document is not serializable.
        """
        content = self._encode(document)
        await asyncio.to_thread(self._write_sync, content)
        logger.debug(f"Wrote {len(content)} bytes to {self._path}")

    @asynccontextmanager
    async def locked(self) -> AsyncIterator[None]:
        """Hold the write lock of the document.

        Raises:
            LockTimeoutError: If another writer keeps the lock past ``lock_timeout``.
            TransientPersistenceError: If the lock file cannot be created.
        """
        deadline = time.monotonic() + self._lock_timeout
        while not await asyncio.to_thread(self._try_lock):
            if time.monotonic() >= deadline:
                raise LockTimeoutError(f"Timed out after {self._lock_timeout}s waiting for lock {self.lock_path}")
            await asyncio.sleep(LOCK_POLL_INTERVAL)
        try:
            yield
        finally:
            self.lock_path.unlink(missing_ok=True)
