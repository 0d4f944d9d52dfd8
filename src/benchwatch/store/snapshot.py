"""Immutable versions of the benchmark history.

Every successful append produces a new StoreSnapshot. Partitions of
tools that did not change are shared between versions, and readers
always hold a complete version.
"""

from __future__ import annotations

import bisect
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING

from benchwatch.core.exceptions import MeasurementNotFoundError, ToolNotFoundError
from benchwatch.store.models import SeriesPoint

if TYPE_CHECKING:
    from benchwatch.core.config import RetentionPolicy
    from benchwatch.entries.models import BenchmarkEntry, Measurement

# tool -> measurement name -> positions of entries holding it
_ToolIndex = Mapping[str, tuple[int, ...]]


def _index_entries(entries: tuple[BenchmarkEntry, ...]) -> dict[str, tuple[int, ...]]:
    positions: dict[str, list[int]] = {}
    for pos, entry in enumerate(entries):
        for m in entry.measurements:
            positions.setdefault(m.name, []).append(pos)
    return {name: tuple(p) for name, p in positions.items()}


def _apply_retention(
    entries: tuple[BenchmarkEntry, ...],
    retention: RetentionPolicy,
) -> tuple[BenchmarkEntry, ...]:
    """Drop the oldest whole entries exceeding the retention policy."""
    start = 0
    if retention.max_age_ms is not None and entries:
        horizon = entries[-1].recorded_at - retention.max_age_ms
        while start < len(entries) and entries[start].recorded_at < horizon:
            start += 1
    if retention.max_entries is not None:
        start = max(start, len(entries) - retention.max_entries)
    return entries[start:]


class StoreSnapshot:
    """An immutable, complete version of the store.

    Attributes:
        version: Monotonic version number within the owning store.
        repo_url: Provenance URL of the monitored repository.

    Example:
        >>> snapshot = store.snapshot
        >>> points = snapshot.series("Rust Benchmark", "voxel_planet", limit=10)
    """

    def __init__(
        self,
        entries: Mapping[str, tuple[BenchmarkEntry, ...]] | None = None,
        *,
        repo_url: str = "",
        version: int = 0,
        last_update: int = 0,
        _index: Mapping[str, _ToolIndex] | None = None,
    ) -> None:
        self._entries: dict[str, tuple[BenchmarkEntry, ...]] = dict(entries or {})
        if _index is None:
            _index = {tool: _index_entries(items) for tool, items in self._entries.items()}
        self._index: dict[str, _ToolIndex] = dict(_index)
        self.repo_url = repo_url
        self.version = version
        self._last_update = last_update

    @property
    def entries(self) -> Mapping[str, tuple[BenchmarkEntry, ...]]:
        """Read-only view of tool -> ordered entries."""
        return MappingProxyType(self._entries)

    @property
    def last_update(self) -> int:
        """Latest recorded_at over all entries, epoch ms."""
        latest = [items[-1].recorded_at for items in self._entries.values() if items]
        return max([self._last_update, *latest])

    def _derive(
        self,
        tool_name: str,
        entries: tuple[BenchmarkEntry, ...],
        index: _ToolIndex,
    ) -> StoreSnapshot:
        new_entries = dict(self._entries)
        new_index = dict(self._index)
        if entries:
            new_entries[tool_name] = entries
            new_index[tool_name] = index
        else:
            new_entries.pop(tool_name, None)
            new_index.pop(tool_name, None)
        return StoreSnapshot(
            new_entries,
            repo_url=self.repo_url,
            version=self.version + 1,
            last_update=self._last_update,
            _index=new_index,
        )

    def appended(
        self,
        entry: BenchmarkEntry,
        retention: RetentionPolicy | None = None,
    ) -> tuple[StoreSnapshot, int]:
        """Build the next version with ``entry`` at the end of its tool.

        Args:
            entry: Entry to append.
            retention: Optional policy applied to the tool afterwards.

        Returns:
            The new snapshot and the number of evicted entries.
        """
        tool = entry.tool_name
        current = self._entries.get(tool, ())
        entries = (*current, entry)

        if retention is not None and not retention.is_unbounded:
            kept = _apply_retention(entries, retention)
            evicted = len(entries) - len(kept)
            if evicted:
                return self._derive(tool, kept, _index_entries(kept)), evicted

        pos = len(current)
        index = dict(self._index.get(tool, {}))
        for m in entry.measurements:
            index[m.name] = (*index.get(m.name, ()), pos)
        return self._derive(tool, entries, index), 0

    def replaced(self, tool_name: str, entries: tuple[BenchmarkEntry, ...]) -> StoreSnapshot:
        """Build the next version with a tool's whole sequence replaced."""
        return self._derive(tool_name, entries, _index_entries(entries))

    def with_repo_url(self, repo_url: str) -> StoreSnapshot:
        """Copy of this version with another provenance URL."""
        return StoreSnapshot(
            self._entries,
            repo_url=repo_url,
            version=self.version,
            last_update=self._last_update,
            _index=self._index,
        )

    def merged(
        self,
        entries: Iterable[BenchmarkEntry],
        retention: RetentionPolicy | None = None,
        *,
        version: int | None = None,
    ) -> StoreSnapshot:
        """Build a version with entries written by another store folded in.

        Each entry is placed by ``recorded_at``, after entries with the same
        timestamp. An entry whose fingerprint matches the entry right before
        its position is skipped, as ``append`` does for re-delivered runs.

        Args:
            entries: Entries to fold in, in the order they were appended.
            retention: Optional policy applied to the tools that changed.
            version: Version number of the result; defaults to the next one.

        Returns:
            The merged snapshot.
        """
        new_entries = dict(self._entries)
        touched: set[str] = set()
        for entry in entries:
            tool = entry.tool_name
            current = new_entries.get(tool, ())
            pos = bisect.bisect_right(current, entry.recorded_at, key=lambda e: e.recorded_at)
            if pos and current[pos - 1].fingerprint() == entry.fingerprint():
                continue
            new_entries[tool] = (*current[:pos], entry, *current[pos:])
            touched.add(tool)

        new_index = dict(self._index)
        for tool in touched:
            if retention is not None and not retention.is_unbounded:
                new_entries[tool] = _apply_retention(new_entries[tool], retention)
            new_index[tool] = _index_entries(new_entries[tool])
        return StoreSnapshot(
            new_entries,
            repo_url=self.repo_url,
            version=self.version + 1 if version is None else version,
            last_update=self._last_update,
            _index=new_index,
        )

    def tools(self) -> frozenset[str]:
        return frozenset(self._entries)

    def tool_entries(self, tool_name: str) -> tuple[BenchmarkEntry, ...]:
        """Get a tool's ordered entries.

        Raises:
            ToolNotFoundError: If the tool was never recorded.
        """
        try:
            return self._entries[tool_name]
        except KeyError:
            raise ToolNotFoundError(f"No benchmark history for tool '{tool_name}'") from None

    def last_entry(self, tool_name: str) -> BenchmarkEntry | None:
        entries = self._entries.get(tool_name)
        return entries[-1] if entries else None

    def measurement_names(self, tool_name: str) -> frozenset[str]:
        self.tool_entries(tool_name)
        return frozenset(self._index[tool_name])

    def _positions(self, tool_name: str, name: str) -> tuple[int, ...]:
        self.tool_entries(tool_name)
        try:
            return self._index[tool_name][name]
        except KeyError:
            raise MeasurementNotFoundError(f"Tool '{tool_name}' has no measurement named '{name}'") from None

    def series(
        self,
        tool_name: str,
        name: str,
        *,
        limit: int | None = None,
        cutoff: int | None = None,
        before: int | None = None,
    ) -> list[SeriesPoint]:
        """Get the time series of one measurement, oldest first.

        Args:
            tool_name: Tool the measurement belongs to.
            name: Measurement name.
            limit: Keep only the most recent ``limit`` points.
            cutoff: Keep only points recorded at or before this time (epoch ms).
            before: Keep only points of entries positioned before this index.

        Returns:
            Ordered list of SeriesPoint.

        Raises:
            ToolNotFoundError: If the tool was never recorded.
            MeasurementNotFoundError: If the measurement was never recorded.
        """
        entries = self._entries.get(tool_name, ())
        positions = self._positions(tool_name, name)

        end = len(positions)
        if before is not None:
            end = bisect.bisect_left(positions, before)
        if cutoff is not None:
            end = min(end, bisect.bisect_right(positions, cutoff, key=lambda p: entries[p].recorded_at))
        start = 0
        if limit is not None:
            start = max(0, end - limit)

        points: list[SeriesPoint] = []
        for pos in positions[start:end]:
            entry = entries[pos]
            m = entry.measurement(name)
            if m is None:
                continue
            points.append(SeriesPoint(entry.recorded_at, entry.commit.id, m.value, m.range, m.unit))
        return points

    def latest(self, tool_name: str, name: str) -> Measurement:
        """Get the most recent measurement with the given name.

        Raises:
            NotFoundError: If the tool or measurement was never recorded.
        """
        positions = self._positions(tool_name, name)
        entry = self._entries[tool_name][positions[-1]]
        for m in entry.measurements:
            if m.name == name:
                return m
        raise MeasurementNotFoundError(f"Tool '{tool_name}' has no measurement named '{name}'")

    def __repr__(self) -> str:
        counts = ", ".join(f"{tool}={len(items)}" for tool, items in sorted(self._entries.items()))
        return f"StoreSnapshot(version={self.version}, {counts or 'empty'})"
