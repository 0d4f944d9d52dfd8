"""Append-only history store for benchmark entries.

This module provides HistoryStore, the explicit store handle every
ingestion and query goes through. Its lifecycle is
``open`` -> ``append``/``persist``/``ingest`` -> ``close``.

Concurrency model (single asyncio event loop):
    - Appends to the same tool serialize on a per-tool lock; different
      tools never contend.
    - Each append swaps in a new immutable StoreSnapshot, so readers never
      need a lock and never observe a partial version.
    - Persisting runs under its own lock and always writes the newest
      version; an older version is never written after a newer one.

Other stores, possibly in other processes, may write the same document.
Each write happens under the backend's lock: the store re-reads the
document and, if it changed since this store last saw it, folds its own
not yet durable entries into the stored history instead of overwriting it.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import TYPE_CHECKING

from benchwatch.core.exceptions import (
    OutOfOrderError,
    PersistenceError,
    PersistTimeoutError,
    StoreClosedError,
    TransientPersistenceError,
)
from benchwatch.entries.normalize import validate_entry
from benchwatch.store.backends.memory import MemoryBackend
from benchwatch.store.codec import DocumentToken, decode_document, document_token, encode_document
from benchwatch.store.models import AppendResult, IngestResult
from benchwatch.store.snapshot import StoreSnapshot

if TYPE_CHECKING:
    from benchwatch.core.config import RetentionPolicy
    from benchwatch.entries.models import BenchmarkEntry, Measurement
    from benchwatch.store.backends.base import PersistenceBackend
    from benchwatch.store.models import SeriesPoint

logger = logging.getLogger(__name__)


class HistoryStore:
    """Per-tool, append-only benchmark history with durable persistence.

    Attributes:
        retention: Optional growth limits applied after each append.

    Example:
        >>> store = await HistoryStore.open(JSONFileBackend("dev/bench/data.json"))
        >>> result = await store.ingest(entry, timeout=10.0)
        >>> if not result.durable:
        ...     await store.persist()
        >>> await store.close()
    """

    def __init__(
        self,
        backend: PersistenceBackend | None = None,
        *,
        snapshot: StoreSnapshot | None = None,
        repo_url: str = "",
        retention: RetentionPolicy | None = None,
        max_retries: int = 3,
        retry_delay: float = 0.5,
    ) -> None:
        """Initialize the store.

        Use ``HistoryStore.open`` to start from the backend's stored document.

        Args:
            backend: Persistence backend (default: MemoryBackend).
            snapshot: Initial, already durable version.
            repo_url: Provenance URL used when the snapshot has none.
            retention: Optional retention policy.
            max_retries: Retries for transient persistence failures.
            retry_delay: Initial backoff delay in seconds, doubled per retry.
        """
        self._backend: PersistenceBackend = backend or MemoryBackend()
        if snapshot is None:
            snapshot = StoreSnapshot(repo_url=repo_url)
        elif repo_url and not snapshot.repo_url:
            snapshot = snapshot.with_repo_url(repo_url)
        self._snapshot = snapshot
        self._durable_version = snapshot.version
        # Document this store last read or wrote, and entries not yet in it
        self._base_token: DocumentToken | None = None
        self._pending: list[BenchmarkEntry] = []
        self.retention = retention
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._tool_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._persist_lock = asyncio.Lock()
        self._inflight: set[asyncio.Task[int]] = set()
        # Persists whose caller stopped waiting
        self._detached: set[asyncio.Task[int]] = set()
        self._closed = False

    @classmethod
    async def open(
        cls,
        backend: PersistenceBackend,
        *,
        repo_url: str = "",
        retention: RetentionPolicy | None = None,
        max_retries: int = 3,
        retry_delay: float = 0.5,
    ) -> HistoryStore:
        """Load the full store from a backend.

        Args:
            backend: Persistence backend to read from and write to.
            repo_url: Provenance URL used when the document has none.
            retention: Optional retention policy.
            max_retries: Retries for transient persistence failures.
            retry_delay: Initial backoff delay in seconds.

        Returns:
            An open HistoryStore.

        Raises:
            PersistenceError: If the stored document cannot be read or parsed.
        """
        document = await backend.read()
        snapshot = decode_document(document) if document is not None else None
        store = cls(
            backend,
            snapshot=snapshot,
            repo_url=repo_url,
            retention=retention,
            max_retries=max_retries,
            retry_delay=retry_delay,
        )
        store._base_token = document_token(document)
        counts = {tool: len(entries) for tool, entries in store.snapshot.entries.items()}
        logger.info(f"Loaded benchmark history: {counts}")
        return store

    @property
    def snapshot(self) -> StoreSnapshot:
        """The current, complete store version."""
        return self._snapshot

    @property
    def version(self) -> int:
        return self._snapshot.version

    @property
    def durable_version(self) -> int:
        """Newest version acknowledged by durable storage."""
        return self._durable_version

    @property
    def closed(self) -> bool:
        return self._closed

    def is_durable(self, version: int) -> bool:
        """Check whether a version has been durably persisted."""
        return version <= self._durable_version

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreClosedError("History store is closed")

    def _append_locked(self, entry: BenchmarkEntry) -> AppendResult:
        snapshot = self._snapshot
        last = snapshot.last_entry(entry.tool_name)

        if last is not None and last.fingerprint() == entry.fingerprint():
            logger.debug(f"Ignoring re-delivered run of {entry.commit.short_id} for '{entry.tool_name}'")
            return AppendResult(version=snapshot.version, appended=False, entry=last)

        if last is not None and entry.recorded_at < last.recorded_at:
            raise OutOfOrderError(
                f"Entry for '{entry.tool_name}' recorded at {entry.recorded_at} "
                f"precedes the latest entry recorded at {last.recorded_at}"
            )

        new_snapshot, evicted = snapshot.appended(entry, self.retention)
        self._snapshot = new_snapshot
        self._pending.append(entry)

        if evicted:
            logger.warning(f"Retention evicted {evicted} oldest entries of '{entry.tool_name}'")
        logger.info(
            f"Appended {len(entry.measurements)} measurements of {entry.commit.short_id} "
            f"to '{entry.tool_name}' (version {new_snapshot.version})"
        )
        return AppendResult(version=new_snapshot.version, appended=True, entry=entry, evicted=evicted)

    async def append(self, entry: BenchmarkEntry) -> AppendResult:
        """Append an entry to the end of its tool's history, in memory.

        Re-delivery of the tool's last entry (same commit, names and values)
        is a no-op returning the existing version.

        Args:
            entry: Entry to append.

        Returns:
            AppendResult describing the new (or existing) version.

        Raises:
            EntryValidationError: If the entry is invalid or out of order.
            StoreClosedError: If the store is closed.
        """
        self._ensure_open()
        validate_entry(entry)
        async with self._tool_locks[entry.tool_name]:
            return self._append_locked(entry)

    async def _write_once(
        self,
        snapshot: StoreSnapshot,
        batch: list[BenchmarkEntry],
    ) -> tuple[StoreSnapshot | None, DocumentToken]:
        """Write one version under the backend lock.

        Returns:
            The rebased snapshot if the stored document had changed since
            this store last saw it (None otherwise), and the new document token.
        """
        async with self._backend.locked():
            document = await self._backend.read()
            token = document_token(document)
            rebased: StoreSnapshot | None = None
            if document is not None and token != self._base_token:
                stored = decode_document(document)
                if not stored.repo_url and snapshot.repo_url:
                    stored = stored.with_repo_url(snapshot.repo_url)
                rebased = stored.merged(batch, self.retention)
                logger.warning(
                    f"Benchmark history was changed by another writer; "
                    f"merging {len(batch)} pending entries into the stored document"
                )

            revision = token[0] + 1 if token is not None else 1
            written = encode_document(rebased or snapshot, revision=revision)
            await self._backend.write(written)
            return rebased, (revision, written["lastUpdate"])

    async def _write_with_retry(
        self,
        snapshot: StoreSnapshot,
        batch: list[BenchmarkEntry],
    ) -> tuple[StoreSnapshot | None, DocumentToken]:
        delay = self._retry_delay
        attempt = 0
        while True:
            try:
                return await self._write_once(snapshot, batch)
            except TransientPersistenceError as e:
                if attempt == self._max_retries:
                    raise
                attempt += 1
                logger.debug(f"Persist attempt {attempt} failed ({e}), retrying in {delay:.2f}s")
                await asyncio.sleep(delay)
                delay *= 2

    async def _persist(self) -> int:
        async with self._persist_lock:
            snapshot = self._snapshot
            if snapshot.version <= self._durable_version:
                return self._durable_version

            batch = list(self._pending)
            rebased, token = await self._write_with_retry(snapshot, batch)
            self._base_token = token
            # Appends made while writing stay pending
            flushed = {id(entry) for entry in batch}
            self._pending = [entry for entry in self._pending if id(entry) not in flushed]

            if rebased is None:
                self._durable_version = snapshot.version
            else:
                self._snapshot = rebased.merged(self._pending, self.retention, version=self._snapshot.version + 1)
                self._durable_version = snapshot.version if self._pending else self._snapshot.version
            logger.info(f"Persisted benchmark history version {self._durable_version}")
            return self._durable_version

    def _on_persist_done(self, task: asyncio.Task[int]) -> None:
        self._inflight.discard(task)
        detached = task in self._detached
        self._detached.discard(task)
        if task.cancelled() or task.exception() is None:
            return
        if detached:
            logger.warning(
                f"Background persist failed after its caller stopped waiting; "
                f"version {self.version} is not durable: {task.exception()}"
            )
        else:
            logger.debug(f"Persist finished with error: {task.exception()}")

    async def persist(self, timeout: float | None = None) -> int:
        """Durably write the current version.

        On timeout the write keeps running in the background and the
        version is acknowledged once it completes (see ``durable_version``).

        Args:
            timeout: Maximum seconds to wait, None to wait indefinitely.

        Returns:
            The durable version after writing.

        Raises:
            PersistTimeoutError: If the write did not finish in time.
            TransientPersistenceError: If retries were exhausted.
            PersistenceFormatError: If the document cannot be serialized.
        """
        task = asyncio.ensure_future(self._persist())
        self._inflight.add(task)
        task.add_done_callback(self._on_persist_done)
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except asyncio.TimeoutError:
            if task in self._inflight:
                self._detached.add(task)
            logger.warning(f"Persist of version {self.version} did not finish within {timeout}s")
            raise PersistTimeoutError(f"Persist timed out after {timeout}s") from None

    async def ingest(self, entry: BenchmarkEntry, *, timeout: float | None = None) -> IngestResult:
        """Append an entry and persist it, as one critical section per tool.

        A retryable persistence failure keeps the entry in memory, flagged
        not yet durable; the caller retries ``persist``. A fatal one rolls
        the append back and is raised.

        Args:
            entry: Entry to ingest.
            timeout: Maximum seconds to wait for persistence.

        Returns:
            IngestResult with the version and its durability.

        Raises:
            EntryValidationError: If the entry is invalid or out of order.
            PersistenceError: If the document cannot be persisted at all.
            StoreClosedError: If the store is closed.
        """
        self._ensure_open()
        validate_entry(entry)
        tool = entry.tool_name

        async with self._tool_locks[tool]:
            previous = self._snapshot.entries.get(tool, ())
            result = self._append_locked(entry)
            try:
                await self.persist(timeout=timeout)
            except PersistenceError as e:
                if e.retryable:
                    logger.warning(f"Version {result.version} of '{tool}' is not yet durable: {e}")
                    return IngestResult(
                        version=result.version,
                        appended=result.appended,
                        durable=self.is_durable(result.version),
                        error=e,
                    )
                if result.appended:
                    self._snapshot = self._snapshot.replaced(tool, previous)
                    self._pending = [pending for pending in self._pending if pending is not entry]
                    logger.warning(f"Rolled back entry {entry.commit.short_id} of '{tool}' after fatal error: {e}")
                raise

        return IngestResult(
            version=result.version,
            appended=result.appended,
            durable=self.is_durable(result.version),
        )

    def history(self, tool_name: str, measurement_name: str, limit: int | None = None) -> list[SeriesPoint]:
        """Get a measurement's series from the current version, oldest first.

        Raises:
            NotFoundError: If the tool or measurement was never recorded.
        """
        return self._snapshot.series(tool_name, measurement_name, limit=limit)

    def latest(self, tool_name: str, measurement_name: str) -> Measurement:
        """Get the most recent measurement with the given name.

        Raises:
            NotFoundError: If the tool or measurement was never recorded.
        """
        return self._snapshot.latest(tool_name, measurement_name)

    async def close(self) -> None:
        """Wait for in-flight persists and reject further ingestion."""
        self._closed = True
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        if self._durable_version < self._snapshot.version:
            logger.warning(f"Closing with version {self._snapshot.version} not durably persisted")

    async def __aenter__(self) -> HistoryStore:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
