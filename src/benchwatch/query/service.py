"""Read-side API over the benchmark history.

This module provides BenchmarkQuery, the interface served to dashboard
renderers and alert notifiers. Every call reads one complete store
version and never takes the store's write locks.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from benchwatch.core.exceptions import ConfigurationError

if TYPE_CHECKING:
    from benchwatch.entries.models import BenchmarkEntry, Measurement
    from benchwatch.regression.detector import RegressionDetector
    from benchwatch.regression.models import RegressionReport
    from benchwatch.store.history import HistoryStore
    from benchwatch.store.models import SeriesPoint
    from benchwatch.store.snapshot import StoreSnapshot


class BenchmarkQuery:
    """Query and export interface of the benchmark history.

    Example:
        >>> query = BenchmarkQuery(store, detector=RegressionDetector(config))
        >>> query.list_tools()
        frozenset({'Rust Benchmark'})
        >>> report = query.check_latest("Rust Benchmark")
    """

    def __init__(self, store: HistoryStore, detector: RegressionDetector | None = None) -> None:
        """Initialize with a store handle.

        Args:
            store: History store to read from.
            detector: Detector used by ``check`` and ``check_latest``.
        """
        self._store = store
        self._detector = detector

    @property
    def snapshot(self) -> StoreSnapshot:
        return self._store.snapshot

    def list_tools(self) -> frozenset[str]:
        """Get the names of all recorded tools."""
        return self.snapshot.tools()

    def list_measurements(self, tool_name: str) -> frozenset[str]:
        """Get every measurement name ever recorded for a tool.

        Raises:
            ToolNotFoundError: If the tool was never recorded.
        """
        return self.snapshot.measurement_names(tool_name)

    def history(self, tool_name: str, measurement_name: str, limit: int | None = None) -> list[SeriesPoint]:
        """Get a measurement's series, oldest first.

        Args:
            tool_name: Tool name.
            measurement_name: Measurement name.
            limit: Keep only the most recent points.

        Raises:
            NotFoundError: If the tool or measurement was never recorded.
        """
        return self.snapshot.series(tool_name, measurement_name, limit=limit)

    def series_as_of(
        self,
        tool_name: str,
        measurement_name: str,
        cutoff: int | None = None,
        limit: int | None = None,
    ) -> list[SeriesPoint]:
        """Get a measurement's series as it stood at ``cutoff``.

        Args:
            tool_name: Tool name.
            measurement_name: Measurement name.
            cutoff: Only points recorded at or before this epoch-ms time.
            limit: Keep only the most recent points up to the cutoff.

        Raises:
            NotFoundError: If the tool or measurement was never recorded.
        """
        return self.snapshot.series(tool_name, measurement_name, cutoff=cutoff, limit=limit)

    def latest(self, tool_name: str, measurement_name: str) -> Measurement:
        """Get the most recent measurement with the given name.

        Raises:
            NotFoundError: If the tool or measurement was never recorded.
        """
        return self.snapshot.latest(tool_name, measurement_name)

    def _require_detector(self) -> RegressionDetector:
        if self._detector is None:
            raise ConfigurationError("No regression detector configured")
        return self._detector

    def _baselines(self, snapshot: StoreSnapshot, entry: BenchmarkEntry) -> dict[str, list[SeriesPoint]]:
        entries = snapshot.entries.get(entry.tool_name, ())

        # A stored entry is compared only with what precedes it
        before = len(entries)
        for pos in range(len(entries) - 1, -1, -1):
            if entries[pos] == entry:
                before = pos
                break

        known = snapshot.measurement_names(entry.tool_name) if entries else frozenset()
        return {
            m.name: snapshot.series(entry.tool_name, m.name, before=before)
            for m in entry.measurements
            if m.name in known
        }

    def check(self, entry: BenchmarkEntry) -> RegressionReport:
        """Check an entry against the history preceding it.

        The entry may already be stored or not yet ingested.

        Raises:
            ConfigurationError: If no detector is configured.
        """
        detector = self._require_detector()
        snapshot = self.snapshot
        return detector.check(entry, self._baselines(snapshot, entry))

    def check_latest(self, tool_name: str) -> RegressionReport:
        """Check the most recent entry of a tool against its history.

        Raises:
            ToolNotFoundError: If the tool was never recorded.
            ConfigurationError: If no detector is configured.
        """
        detector = self._require_detector()
        snapshot = self.snapshot
        entries = snapshot.tool_entries(tool_name)
        return detector.check(entries[-1], self._baselines(snapshot, entries[-1]))

    def export_chart_data(self, tool_name: str, max_items: int | None = None) -> dict[str, list[dict[str, Any]]]:
        """Export a tool's history grouped per benchmark for chart rendering.

        Args:
            tool_name: Tool name.
            max_items: Keep only the most recent entries.

        Returns:
            Benchmark name -> points with commit details, oldest first.

        Raises:
            ToolNotFoundError: If the tool was never recorded.
        """
        entries = self.snapshot.tool_entries(tool_name)
        if max_items is not None:
            entries = entries[-max_items:] if max_items > 0 else ()

        charts: dict[str, list[dict[str, Any]]] = {}
        for entry in entries:
            commit = {
                "id": entry.commit.id,
                "message": entry.commit.message,
                "timestamp": entry.commit.timestamp,
                "url": entry.commit.url,
            }
            for m in entry.measurements:
                charts.setdefault(m.name, []).append(
                    {
                        "commit": commit,
                        "date": entry.recorded_at,
                        "value": m.value,
                        "range": m.range,
                        "unit": m.unit,
                    }
                )
        return charts
