"""Unit tests for the history store module."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from typing import TYPE_CHECKING, Any

import pytest

if TYPE_CHECKING:
    from pathlib import Path

from benchwatch.core.config import RetentionPolicy
from benchwatch.core.exceptions import (
    LockTimeoutError,
    MeasurementNotFoundError,
    NotFoundError,
    OutOfOrderError,
    PersistenceFormatError,
    PersistTimeoutError,
    StoreClosedError,
    ToolNotFoundError,
    TransientPersistenceError,
)
from benchwatch.entries import BenchmarkEntry, normalize
from benchwatch.store import (
    HistoryStore,
    JSONFileBackend,
    MemoryBackend,
    PersistenceBackend,
    StoreSnapshot,
    decode_document,
    encode_document,
)

# ============================================================================
# Helpers
# ============================================================================


def commit_id(n: int) -> str:
    return f"{n:040x}"


def make_entry(
    tool: str = "X",
    commit: int = 1,
    recorded_at: int = 100,
    measurements: list[tuple[str, float, float]] | None = None,
) -> BenchmarkEntry:
    """Create a validated entry with (name, value, range) measurements."""
    measurements = measurements or [("op", 1000.0, 50.0)]
    return normalize(
        [{"name": n, "value": v, "range": r, "unit": "ns"} for n, v, r in measurements],
        {"id": commit_id(commit), "message": f"commit {commit}"},
        tool,
        recorded_at=recorded_at,
    )


class FlakyBackend(MemoryBackend):
    """Backend failing transiently a given number of times."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    async def write(self, document: dict[str, Any]) -> None:
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise TransientPersistenceError("storage unavailable")
        await super().write(document)


class GatedBackend(MemoryBackend):
    """Backend whose writes block until the gate opens."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = asyncio.Event()
        self.started = asyncio.Event()

    async def write(self, document: dict[str, Any]) -> None:
        self.started.set()
        await self.gate.wait()
        await super().write(document)


class BrokenBackend(MemoryBackend):
    """Backend failing permanently."""

    async def write(self, document: dict[str, Any]) -> None:
        raise PersistenceFormatError("format mismatch")


class FailingGatedBackend(GatedBackend):
    """Backend whose writes fail once the gate opens."""

    async def write(self, document: dict[str, Any]) -> None:
        self.started.set()
        await self.gate.wait()
        raise TransientPersistenceError("storage unavailable")


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def store() -> HistoryStore:
    """Create an in-memory store."""
    return HistoryStore(MemoryBackend(), repo_url="https://github.com/example/project")


# ============================================================================
# StoreSnapshot Tests
# ============================================================================


class TestStoreSnapshot:
    """Tests for StoreSnapshot."""

    def test_empty(self) -> None:
        """An empty snapshot has no tools."""
        snapshot = StoreSnapshot()

        assert snapshot.tools() == frozenset()
        assert snapshot.last_update == 0
        with pytest.raises(ToolNotFoundError):
            snapshot.tool_entries("X")

    def test_appended_shares_other_tools(self) -> None:
        """Appending to one tool reuses the other tools' sequences."""
        a, b = make_entry("A"), make_entry("B")
        snapshot, _ = StoreSnapshot().appended(a)
        snapshot, _ = snapshot.appended(b)

        next_snapshot, evicted = snapshot.appended(make_entry("A", commit=2, recorded_at=200))

        assert evicted == 0
        assert next_snapshot.version == snapshot.version + 1
        assert next_snapshot.tool_entries("B") is snapshot.tool_entries("B")
        assert len(snapshot.tool_entries("A")) == 1

    def test_series_filters(self) -> None:
        """series() honors limit, cutoff and before."""
        snapshot = StoreSnapshot()
        for i in range(5):
            snapshot, _ = snapshot.appended(make_entry(commit=i, recorded_at=100 * i, measurements=[("op", i, 0)]))

        assert [p.value for p in snapshot.series("X", "op")] == [0, 1, 2, 3, 4]
        assert [p.value for p in snapshot.series("X", "op", limit=2)] == [3, 4]
        assert [p.value for p in snapshot.series("X", "op", cutoff=250)] == [0, 1, 2]
        assert [p.value for p in snapshot.series("X", "op", before=3, limit=2)] == [1, 2]

    def test_series_skips_entries_without_measurement(self) -> None:
        """Series only contain entries that recorded the measurement."""
        snapshot, _ = StoreSnapshot().appended(make_entry(commit=1, recorded_at=1, measurements=[("a", 1, 0)]))
        snapshot, _ = snapshot.appended(make_entry(commit=2, recorded_at=2, measurements=[("b", 2, 0)]))
        snapshot, _ = snapshot.appended(make_entry(commit=3, recorded_at=3, measurements=[("a", 3, 0), ("b", 4, 0)]))

        assert [p.commit_id for p in snapshot.series("X", "a")] == [commit_id(1), commit_id(3)]
        assert snapshot.latest("X", "b").value == 4
        assert snapshot.measurement_names("X") == frozenset({"a", "b"})

    def test_retention_max_entries(self) -> None:
        """Retention keeps the newest max_entries whole entries."""
        policy = RetentionPolicy(max_entries=2)
        snapshot = StoreSnapshot()
        evictions = []
        for i in range(4):
            snapshot, evicted = snapshot.appended(make_entry(commit=i, recorded_at=i, measurements=[("op", i, 0)]), policy)
            evictions.append(evicted)

        assert evictions == [0, 0, 1, 1]
        assert [p.value for p in snapshot.series("X", "op")] == [2, 3]

    def test_retention_max_age(self) -> None:
        """Retention drops entries older than max_age_ms before the newest entry."""
        policy = RetentionPolicy(max_age_ms=100)
        snapshot = StoreSnapshot()
        for t in (0, 50, 120, 200):
            snapshot, _ = snapshot.appended(make_entry(commit=t + 1, recorded_at=t, measurements=[("op", t, 0)]), policy)

        assert [p.recorded_at for p in snapshot.series("X", "op")] == [120, 200]

    def test_merged_places_entries_by_recorded_at(self) -> None:
        """Merged entries land in recorded_at order, after equal timestamps."""
        snapshot = StoreSnapshot()
        for c, t in ((1, 100), (2, 300)):
            snapshot, _ = snapshot.appended(make_entry(commit=c, recorded_at=t, measurements=[("op", c, 0)]))

        merged = snapshot.merged(
            [
                make_entry(commit=3, recorded_at=200, measurements=[("op", 3, 0)]),
                make_entry("Y", commit=4, recorded_at=50),
                make_entry(commit=5, recorded_at=300, measurements=[("op", 5, 0)]),
            ]
        )

        assert [p.value for p in merged.series("X", "op")] == [1, 3, 2, 5]
        assert merged.tools() == frozenset({"X", "Y"})
        assert merged.version == snapshot.version + 1
        assert len(snapshot.tool_entries("X")) == 2

    def test_merged_skips_redelivered_entry(self) -> None:
        """An entry already stored right before its position is not added twice."""
        snapshot, _ = StoreSnapshot().appended(make_entry(commit=1, recorded_at=100))

        merged = snapshot.merged([make_entry(commit=1, recorded_at=150)], version=7)

        assert len(merged.tool_entries("X")) == 1
        assert merged.version == 7

    def test_merged_applies_retention(self) -> None:
        """Retention is applied to tools that received entries."""
        snapshot = StoreSnapshot()
        for i in range(3):
            snapshot, _ = snapshot.appended(make_entry(commit=i + 1, recorded_at=i, measurements=[("op", i, 0)]))

        merged = snapshot.merged(
            [make_entry(commit=9, recorded_at=10, measurements=[("op", 9, 0)])], RetentionPolicy(max_entries=2)
        )

        assert [p.value for p in merged.series("X", "op")] == [2, 9]

    def test_with_repo_url_copies(self) -> None:
        """with_repo_url leaves the original snapshot untouched."""
        snapshot, _ = StoreSnapshot().appended(make_entry())

        copy = snapshot.with_repo_url("https://example.com/r")

        assert copy.repo_url == "https://example.com/r"
        assert snapshot.repo_url == ""
        assert copy.version == snapshot.version
        assert copy.tool_entries("X") == snapshot.tool_entries("X")


# ============================================================================
# HistoryStore Tests
# ============================================================================


class TestHistoryStore:
    """Tests for HistoryStore append and reads."""

    @pytest.mark.asyncio
    async def test_ingest_then_query(self, store: HistoryStore) -> None:
        """An ingested measurement is the latest and has a one-point history."""
        entry = make_entry(recorded_at=100, measurements=[("op", 1000, 50)])

        result = await store.ingest(entry)

        assert result.appended is True
        assert result.durable is True
        latest = store.latest("X", "op")
        assert (latest.value, latest.range, latest.unit) == (1000.0, 50.0, "ns")
        points = store.history("X", "op")
        assert len(points) == 1
        assert points[0].recorded_at == 100
        assert points[0].commit_id == commit_id(1)

    @pytest.mark.asyncio
    async def test_append_only(self, store: HistoryStore) -> None:
        """Appending never changes or reorders previous entries."""
        entries = [make_entry(commit=i, recorded_at=i * 10, measurements=[("op", i, 0)]) for i in range(5)]
        for entry in entries[:4]:
            await store.append(entry)
        before = store.snapshot.tool_entries("X")

        await store.append(entries[4])

        after = store.snapshot.tool_entries("X")
        assert after[: len(before)] == before
        assert list(after) == entries

    @pytest.mark.asyncio
    async def test_redelivery_of_last_entry_is_noop(self, store: HistoryStore) -> None:
        """The same run delivered twice in a row is stored once."""
        entry = make_entry(recorded_at=100)
        first = await store.append(entry)

        second = await store.append(make_entry(recorded_at=150))

        assert second.appended is False
        assert second.version == first.version
        assert second.entry == entry
        assert len(store.snapshot.tool_entries("X")) == 1

    @pytest.mark.asyncio
    async def test_non_consecutive_redelivery_is_kept(self, store: HistoryStore) -> None:
        """Re-benchmarking a commit after another run is a new entry."""
        await store.append(make_entry(commit=1, recorded_at=100))
        await store.append(make_entry(commit=2, recorded_at=200))

        result = await store.append(make_entry(commit=1, recorded_at=300))

        assert result.appended is True
        assert [e.commit.id for e in store.snapshot.tool_entries("X")] == [commit_id(1), commit_id(2), commit_id(1)]

    @pytest.mark.asyncio
    async def test_same_commit_different_values_is_kept(self, store: HistoryStore) -> None:
        """A re-run of the last commit with new values is appended."""
        await store.append(make_entry(commit=1, recorded_at=100, measurements=[("op", 1000, 5)]))

        result = await store.append(make_entry(commit=1, recorded_at=100, measurements=[("op", 1010, 5)]))

        assert result.appended is True
        assert [p.value for p in store.history("X", "op")] == [1000, 1010]

    @pytest.mark.asyncio
    async def test_out_of_order_rejected(self, store: HistoryStore) -> None:
        """An entry recorded before the tool's latest entry is rejected."""
        await store.append(make_entry(commit=1, recorded_at=200))
        version = store.version

        with pytest.raises(OutOfOrderError):
            await store.append(make_entry(commit=2, recorded_at=100))

        assert store.version == version
        assert len(store.snapshot.tool_entries("X")) == 1

    @pytest.mark.asyncio
    async def test_recorded_at_ties_keep_insertion_order(self, store: HistoryStore) -> None:
        """Entries with equal recorded_at stay in insertion order."""
        for i in range(3):
            await store.append(make_entry(commit=i + 1, recorded_at=100, measurements=[("op", i, 0)]))

        assert [p.value for p in store.history("X", "op")] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_not_found(self, store: HistoryStore) -> None:
        """Unknown tools and measurements raise NotFoundError subclasses."""
        await store.append(make_entry())

        with pytest.raises(ToolNotFoundError):
            store.history("missing", "op")
        with pytest.raises(MeasurementNotFoundError):
            store.latest("X", "missing")
        with pytest.raises(NotFoundError):
            store.history("X", "missing")

    @pytest.mark.asyncio
    async def test_history_limit(self, store: HistoryStore) -> None:
        """history() returns at most limit most recent points."""
        for i in range(10):
            await store.append(make_entry(commit=i, recorded_at=i, measurements=[("op", i, 0)]))

        assert [p.value for p in store.history("X", "op", limit=3)] == [7, 8, 9]

    @pytest.mark.asyncio
    async def test_readers_keep_their_version(self, store: HistoryStore) -> None:
        """A snapshot taken before an append never changes."""
        await store.append(make_entry(commit=1, recorded_at=1))
        snapshot = store.snapshot

        await store.append(make_entry(commit=2, recorded_at=2))

        assert len(snapshot.tool_entries("X")) == 1
        assert len(store.snapshot.tool_entries("X")) == 2

    def test_initial_snapshot_is_not_mutated(self) -> None:
        """repo_url fills in a copy; the caller's snapshot stays unchanged."""
        snapshot, _ = StoreSnapshot().appended(make_entry())

        store = HistoryStore(snapshot=snapshot, repo_url="https://github.com/example/project")

        assert snapshot.repo_url == ""
        assert store.snapshot is not snapshot
        assert store.snapshot.repo_url == "https://github.com/example/project"
        assert store.snapshot.version == snapshot.version
        assert store.is_durable(snapshot.version)

    @pytest.mark.asyncio
    async def test_retention_applies_on_append(self) -> None:
        """The store's retention policy evicts the oldest entries."""
        store = HistoryStore(retention=RetentionPolicy(max_entries=3))
        results = [
            await store.append(make_entry(commit=i, recorded_at=i, measurements=[("op", i, 0)])) for i in range(5)
        ]

        assert results[-1].evicted == 1
        assert [p.value for p in store.history("X", "op")] == [2, 3, 4]

    @pytest.mark.asyncio
    async def test_closed_store_rejects_ingestion(self, store: HistoryStore) -> None:
        """A closed store accepts reads but no appends."""
        await store.ingest(make_entry())
        await store.close()

        assert store.closed is True
        assert store.latest("X", "op").value == 1000
        with pytest.raises(StoreClosedError):
            await store.append(make_entry(commit=2, recorded_at=200))


# ============================================================================
# Persistence Tests
# ============================================================================


class TestPersistence:
    """Tests for persist, reload and failure handling."""

    def test_backends_satisfy_protocol(self, tmp_path: Path) -> None:
        """Bundled backends implement PersistenceBackend."""
        assert isinstance(MemoryBackend(), PersistenceBackend)
        assert isinstance(JSONFileBackend(tmp_path / "data.json"), PersistenceBackend)

    @pytest.mark.asyncio
    async def test_round_trip(self) -> None:
        """Reloading a persisted store yields identical data."""
        backend = MemoryBackend()
        store = HistoryStore(backend, repo_url="https://github.com/example/project")
        await store.ingest(make_entry("A", commit=1, recorded_at=10, measurements=[("op", 0.1 + 0.2, 1e-9)]))
        await store.ingest(make_entry("A", commit=2, recorded_at=20, measurements=[("op", 1 / 3, 0.0)]))
        await store.ingest(make_entry("B", commit=3, recorded_at=30, measurements=[("x", 123456789.123, 7.5)]))

        reloaded = await HistoryStore.open(backend)

        assert reloaded.snapshot.tools() == store.snapshot.tools()
        assert reloaded.snapshot.repo_url == "https://github.com/example/project"
        assert reloaded.snapshot.last_update == 30
        for tool in ("A", "B"):
            assert reloaded.snapshot.tool_entries(tool) == store.snapshot.tool_entries(tool)
        assert reloaded.history("A", "op")[0].value == 0.1 + 0.2

    @pytest.mark.asyncio
    async def test_durability_tracking(self, store: HistoryStore) -> None:
        """Appends are not durable until persisted."""
        result = await store.append(make_entry())

        assert store.is_durable(result.version) is False
        durable = await store.persist()

        assert durable == result.version
        assert store.is_durable(result.version) is True

    @pytest.mark.asyncio
    async def test_persist_without_changes_skips_write(self) -> None:
        """Persisting an already durable version does not write again."""
        backend = MemoryBackend()
        store = HistoryStore(backend)
        await store.ingest(make_entry())

        await store.persist()

        assert backend.writes == 1

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self) -> None:
        """Transient write errors are retried with backoff."""
        backend = FlakyBackend(failures=2)
        store = HistoryStore(backend, max_retries=3, retry_delay=0)

        result = await store.ingest(make_entry())

        assert result.durable is True
        assert backend.attempts == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_keep_entry_not_durable(self) -> None:
        """When retries run out the entry stays queryable but not durable."""
        backend = FlakyBackend(failures=5)
        store = HistoryStore(backend, max_retries=1, retry_delay=0)

        result = await store.ingest(make_entry())

        assert result.appended is True
        assert result.durable is False
        assert isinstance(result.error, TransientPersistenceError)
        assert store.latest("X", "op").value == 1000

        backend.failures = 0
        assert await store.persist() == result.version
        assert store.is_durable(result.version)

    @pytest.mark.asyncio
    async def test_timeout_flags_not_durable(self) -> None:
        """A slow write times out; the entry is acknowledged once it lands."""
        backend = GatedBackend()
        store = HistoryStore(backend)

        result = await store.ingest(make_entry(), timeout=0.01)

        assert result.durable is False
        assert isinstance(result.error, PersistTimeoutError)
        assert store.latest("X", "op").value == 1000

        backend.gate.set()
        await store.close()

        assert store.is_durable(result.version)
        assert backend.writes == 1

    @pytest.mark.asyncio
    async def test_background_failure_after_timeout_is_warned(self, caplog: pytest.LogCaptureFixture) -> None:
        """A write failing after its caller timed out is logged as a warning."""
        caplog.set_level(logging.DEBUG, logger="benchwatch.store.history")
        backend = FailingGatedBackend()
        store = HistoryStore(backend, max_retries=0)

        result = await store.ingest(make_entry(), timeout=0.01)
        backend.gate.set()
        await store.close()
        await asyncio.sleep(0)

        assert isinstance(result.error, PersistTimeoutError)
        assert not store.is_durable(result.version)
        failures = [r for r in caplog.records if "Background persist failed" in r.getMessage()]
        assert len(failures) == 1
        assert failures[0].levelno == logging.WARNING
        assert "storage unavailable" in failures[0].getMessage()

    @pytest.mark.asyncio
    async def test_persist_timeout_raises(self) -> None:
        """persist() raises PersistTimeoutError on timeout."""
        backend = GatedBackend()
        store = HistoryStore(backend)
        await store.append(make_entry())

        with pytest.raises(PersistTimeoutError):
            await store.persist(timeout=0.01)

        backend.gate.set()
        await store.close()

    @pytest.mark.asyncio
    async def test_fatal_error_rolls_back(self) -> None:
        """A permanent persistence error rejects the whole append."""
        store = HistoryStore(BrokenBackend())

        with pytest.raises(PersistenceFormatError):
            await store.ingest(make_entry())

        assert store.snapshot.tools() == frozenset()

    @pytest.mark.asyncio
    async def test_fatal_error_keeps_previous_entries(self) -> None:
        """Rollback restores exactly the tool's previous sequence."""
        backend = MemoryBackend()
        store = HistoryStore(backend, retention=RetentionPolicy(max_entries=1))
        await store.ingest(make_entry(commit=1, recorded_at=1))
        before = store.snapshot.tool_entries("X")
        store._backend = BrokenBackend()

        with pytest.raises(PersistenceFormatError):
            await store.ingest(make_entry(commit=2, recorded_at=2))

        assert store.snapshot.tool_entries("X") == before


# ============================================================================
# Concurrency Tests
# ============================================================================


class TestConcurrency:
    """Tests for per-tool mutual exclusion and non-blocking reads."""

    @pytest.mark.asyncio
    async def test_same_tool_serializes(self) -> None:
        """A second append to a tool waits for the in-flight ingest."""
        backend = GatedBackend()
        store = HistoryStore(backend)
        first = asyncio.create_task(store.ingest(make_entry(commit=1, recorded_at=1)))
        await backend.started.wait()

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(store.append(make_entry(commit=2, recorded_at=2)), timeout=0.05)

        backend.gate.set()
        first_result = await first
        second_result = await store.append(make_entry(commit=2, recorded_at=2))

        assert second_result.version > first_result.version
        assert [e.commit.id for e in store.snapshot.tool_entries("X")] == [commit_id(1), commit_id(2)]

    @pytest.mark.asyncio
    async def test_other_tools_do_not_wait(self) -> None:
        """Appends to another tool proceed while one tool is persisting."""
        backend = GatedBackend()
        store = HistoryStore(backend)
        pending = asyncio.create_task(store.ingest(make_entry("A")))
        await backend.started.wait()

        result = await asyncio.wait_for(store.append(make_entry("B")), timeout=1.0)

        assert result.appended is True
        # In-flight entry is already queryable
        assert store.latest("A", "op").value == 1000

        backend.gate.set()
        assert (await pending).durable is True

    @pytest.mark.asyncio
    async def test_concurrent_ingests_all_land(self) -> None:
        """Racing ingests to one tool are all stored, none torn."""
        backend = MemoryBackend()
        store = HistoryStore(backend)

        results = await asyncio.gather(
            *(store.ingest(make_entry(commit=i + 1, recorded_at=1, measurements=[("op", i, 0)])) for i in range(5))
        )

        assert all(r.appended and r.durable for r in results)
        assert len({r.version for r in results}) == 5
        reloaded = await HistoryStore.open(backend)
        assert len(reloaded.snapshot.tool_entries("X")) == 5


# ============================================================================
# Shared Document Tests
# ============================================================================


def stored_commits(path: Path) -> list[str]:
    """Commit ids of tool X as stored in the file."""
    document = json.loads(path.read_text())
    return [entry["commit"]["id"] for entry in document["entries"]["X"]]


class TestSharedDocument:
    """Tests for several stores writing one document."""

    @pytest.mark.asyncio
    async def test_two_stores_on_one_file_keep_both_entries(self, tmp_path: Path) -> None:
        """A store writing after another one merges instead of overwriting."""
        path = tmp_path / "data.json"
        first = await HistoryStore.open(JSONFileBackend(path))
        second = await HistoryStore.open(JSONFileBackend(path))

        a = await first.ingest(make_entry(commit=1, recorded_at=100, measurements=[("op", 1, 0)]))
        b = await second.ingest(make_entry(commit=2, recorded_at=200, measurements=[("op", 2, 0)]))

        assert a.durable and b.durable
        assert stored_commits(path) == [commit_id(1), commit_id(2)]
        # The second store now sees the first store's entry too
        assert [p.value for p in second.history("X", "op")] == [1, 2]
        assert second.is_durable(second.version)

        c = await first.ingest(make_entry(commit=3, recorded_at=300, measurements=[("op", 3, 0)]))

        assert c.durable
        assert stored_commits(path) == [commit_id(1), commit_id(2), commit_id(3)]
        assert not JSONFileBackend(path).lock_path.exists()

    @pytest.mark.asyncio
    async def test_foreign_entries_keep_recorded_at_order(self, tmp_path: Path) -> None:
        """Entries from different writers are stored in recorded_at order."""
        path = tmp_path / "data.json"
        first = await HistoryStore.open(JSONFileBackend(path))
        second = await HistoryStore.open(JSONFileBackend(path))

        await first.ingest(make_entry(commit=1, recorded_at=300))
        await second.ingest(make_entry(commit=2, recorded_at=200))

        assert stored_commits(path) == [commit_id(2), commit_id(1)]
        reloaded = await HistoryStore.open(JSONFileBackend(path))
        assert [p.recorded_at for p in reloaded.history("X", "op")] == [200, 300]

    @pytest.mark.asyncio
    async def test_redelivery_by_another_writer_is_stored_once(self, tmp_path: Path) -> None:
        """The same run ingested by two writers is recorded once."""
        path = tmp_path / "data.json"
        first = await HistoryStore.open(JSONFileBackend(path))
        second = await HistoryStore.open(JSONFileBackend(path))

        await first.ingest(make_entry(commit=1, recorded_at=100))
        result = await second.ingest(make_entry(commit=1, recorded_at=150))

        assert result.durable is True
        assert stored_commits(path) == [commit_id(1)]
        assert len(second.snapshot.tool_entries("X")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_stores_lose_nothing(self, tmp_path: Path) -> None:
        """Stores ingesting at the same time all end up in the file."""
        path = tmp_path / "data.json"
        stores = [await HistoryStore.open(JSONFileBackend(path)) for _ in range(3)]

        results = await asyncio.gather(
            *(
                s.ingest(make_entry(commit=i + 1, recorded_at=(i + 1) * 10, measurements=[("op", i, 0)]))
                for i, s in enumerate(stores)
            )
        )

        assert all(r.durable for r in results)
        reloaded = await HistoryStore.open(JSONFileBackend(path))
        assert [p.value for p in reloaded.history("X", "op")] == [0, 1, 2]
        assert json.loads(path.read_text())["revision"] == 3

    @pytest.mark.asyncio
    async def test_stores_sharing_memory_backend(self) -> None:
        """Stores sharing one in-memory backend merge the same way."""
        backend = MemoryBackend()
        first = HistoryStore(backend)
        second = HistoryStore(backend)

        await first.ingest(make_entry("A"))
        await second.ingest(make_entry("B"))

        reloaded = await HistoryStore.open(backend)
        assert reloaded.snapshot.tools() == frozenset({"A", "B"})

    @pytest.mark.asyncio
    async def test_held_lock_times_out_not_durable(self, tmp_path: Path) -> None:
        """A lock held by another writer leaves the entry in memory, not durable."""
        path = tmp_path / "data.json"
        backend = JSONFileBackend(path, lock_timeout=0.1)
        backend.lock_path.write_text("12345")
        store = await HistoryStore.open(backend, max_retries=0)

        result = await store.ingest(make_entry())

        assert result.durable is False
        assert isinstance(result.error, LockTimeoutError)
        assert not path.exists()
        assert backend.lock_path.exists()

        backend.lock_path.unlink()
        assert await store.persist() == result.version
        assert stored_commits(path) == [commit_id(1)]

    @pytest.mark.asyncio
    async def test_stale_lock_is_taken_over(self, tmp_path: Path) -> None:
        """A lock left behind by a dead writer does not block forever."""
        path = tmp_path / "data.json"
        backend = JSONFileBackend(path, stale_lock_after=60)
        backend.lock_path.write_text("12345")
        old = time.time() - 600
        os.utime(backend.lock_path, (old, old))
        store = await HistoryStore.open(backend)

        result = await store.ingest(make_entry())

        assert result.durable is True
        assert not backend.lock_path.exists()


# ============================================================================
# Document Format Tests
# ============================================================================


class TestDocumentFormat:
    """Tests for the persisted document and the file backend."""

    def test_encode_document(self) -> None:
        """Encoded documents carry schema, lastUpdate, repoUrl and entries."""
        snapshot, _ = StoreSnapshot(repo_url="https://example.com/r").appended(make_entry(recorded_at=1234))

        document = encode_document(snapshot)

        assert document["schemaVersion"] == 1
        assert document["lastUpdate"] == 1234
        assert document["repoUrl"] == "https://example.com/r"
        assert document["entries"]["X"][0]["benches"][0]["name"] == "op"

    def test_decode_legacy_dashboard_data(self) -> None:
        """Documents without schemaVersion and with textual ranges load."""
        data = {
            "lastUpdate": 1614622177979,
            "repoUrl": "https://github.com/example/project",
            "entries": {
                "Rust Benchmark": [
                    {
                        "commit": {"id": commit_id(7), "message": "m", "distinct": True},
                        "date": 1614622177532,
                        "tool": "cargo",
                        "benches": [{"name": "heightmap_planet", "value": 6884535, "range": "± 33220", "unit": "ns/iter"}],
                    }
                ]
            },
        }

        snapshot = decode_document(data)

        assert snapshot.last_update == 1614622177979
        assert snapshot.latest("Rust Benchmark", "heightmap_planet").range == 33220.0

    def test_decode_sorts_by_date(self) -> None:
        """Out-of-order documents are ordered by date, ties kept stable."""
        entries = [make_entry(commit=c, recorded_at=t).to_dict() for c, t in ((1, 30), (2, 10), (3, 30))]

        snapshot = decode_document({"entries": {"X": entries}})

        assert [e.commit.id for e in snapshot.tool_entries("X")] == [commit_id(2), commit_id(1), commit_id(3)]

    def test_decode_rejects_newer_schema(self) -> None:
        """Documents from a newer schema are a format error."""
        with pytest.raises(PersistenceFormatError):
            decode_document({"schemaVersion": 99, "entries": {}})

    def test_decode_rejects_malformed_entries(self) -> None:
        """Malformed entries are a format error."""
        with pytest.raises(PersistenceFormatError):
            decode_document({"entries": {"X": [{"benches": []}]}})
        with pytest.raises(PersistenceFormatError):
            decode_document({"entries": []})

    @pytest.mark.asyncio
    async def test_json_file_round_trip(self, tmp_path: Path) -> None:
        """JSON file backend persists and reloads the store."""
        path = tmp_path / "bench" / "data.json"
        store = await HistoryStore.open(JSONFileBackend(path))
        await store.ingest(make_entry(measurements=[("op", 1000, 50), ("op2", 0.1, 0.01)]))

        reloaded = await HistoryStore.open(JSONFileBackend(path))

        assert json.loads(path.read_text())["schemaVersion"] == 1
        assert reloaded.snapshot.tool_entries("X") == store.snapshot.tool_entries("X")
        assert [p.name for p in path.parent.iterdir()] == ["data.json"]

    @pytest.mark.asyncio
    async def test_js_file_uses_dashboard_wrapper(self, tmp_path: Path) -> None:
        """A .js path is written as window.BENCHMARK_DATA assignment."""
        path = tmp_path / "data.js"
        store = await HistoryStore.open(JSONFileBackend(path))
        await store.ingest(make_entry())

        content = path.read_text()
        reloaded = await HistoryStore.open(JSONFileBackend(path))

        assert content.startswith("window.BENCHMARK_DATA = {")
        assert reloaded.latest("X", "op").value == 1000

    @pytest.mark.asyncio
    async def test_missing_or_empty_file_is_empty_store(self, tmp_path: Path) -> None:
        """Missing and empty files load as an empty store."""
        empty = tmp_path / "empty.json"
        empty.write_text("")

        assert (await HistoryStore.open(JSONFileBackend(tmp_path / "none.json"))).snapshot.tools() == frozenset()
        assert (await HistoryStore.open(JSONFileBackend(empty))).snapshot.tools() == frozenset()

    @pytest.mark.asyncio
    async def test_corrupt_file_is_format_error(self, tmp_path: Path) -> None:
        """A corrupt file is never silently treated as empty."""
        path = tmp_path / "data.json"
        path.write_text("{ not json")

        with pytest.raises(PersistenceFormatError):
            await HistoryStore.open(JSONFileBackend(path))

    @pytest.mark.asyncio
    async def test_dashboard_file_keeps_original_entries(self, tmp_path: Path) -> None:
        """Appending to an existing dashboard data.js leaves its entries unchanged."""
        original_id = "c57b8175923d0b8171cddc8cec17c7a4eb75d54b"
        person = {"email": "dev@example.com", "name": "dev", "username": "dev"}
        original_entry = {
            "commit": {
                "author": person,
                "committer": person,
                "distinct": True,
                "id": original_id,
                "message": "changed token",
                "timestamp": "2021-03-01T19:02:38+01:00",
                "tree_id": "f52d0da97c92352d767b5d44ff205d7bd3e50fd0",
                "url": f"https://github.com/example/project/commit/{original_id}",
            },
            "date": 1614622177532,
            "tool": "cargo",
            "benches": [
                {"name": "heightmap_large_checkerboard", "value": 797115, "range": "± 72642", "unit": "ns/iter"},
                {"name": "heightmap_planet", "value": 6884535, "range": "± 33220", "unit": "ns/iter"},
                {"name": "heightmap_small_checkerboard", "value": 1163, "range": "± 29", "unit": "ns/iter"},
            ],
        }
        data = {
            "lastUpdate": 1614622177979,
            "repoUrl": "https://github.com/example/project",
            "entries": {"Rust Benchmark": [original_entry]},
        }
        path = tmp_path / "data.js"
        path.write_text("window.BENCHMARK_DATA = " + json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        store = await HistoryStore.open(JSONFileBackend(path))

        result = await store.ingest(make_entry("Rust Benchmark", commit=2, recorded_at=1614622200000))

        content = path.read_text(encoding="utf-8")
        document = json.loads(content[len("window.BENCHMARK_DATA = ") :])
        assert result.durable is True
        assert document["entries"]["Rust Benchmark"][0] == original_entry
        assert json.dumps(document["entries"]["Rust Benchmark"][0]) == json.dumps(original_entry)
        assert '"range": "± 72642"' in content
        assert store.latest("Rust Benchmark", "heightmap_planet").range == 33220.0
