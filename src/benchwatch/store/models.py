"""Result and projection types of the history store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from benchwatch.entries.models import BenchmarkEntry


@dataclass(frozen=True)
class SeriesPoint:
    """One point of a measurement's time series.

    Attributes:
        recorded_at: Ingestion time of the entry, epoch ms.
        commit_id: Commit the run was made for.
        value: Measured value.
        range: Uncertainty around value.
        unit: Unit label of value.
    """

    recorded_at: int
    commit_id: str
    value: float
    range: float
    unit: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "recordedAt": self.recorded_at,
            "commitId": self.commit_id,
            "value": self.value,
            "range": self.range,
            "unit": self.unit,
        }


@dataclass(frozen=True)
class AppendResult:
    """Outcome of an in-memory append.

    Attributes:
        version: Store version containing the entry.
        appended: False when the run was a re-delivery of the last entry.
        entry: The stored entry.
        evicted: Entries dropped by the retention policy.
    """

    version: int
    appended: bool
    entry: BenchmarkEntry
    evicted: int = 0


@dataclass(frozen=True)
class IngestResult:
    """Outcome of append plus persist.

    Attributes:
        version: Store version containing the entry.
        appended: False when the run was a re-delivery of the last entry.
        durable: Whether that version is acknowledged by durable storage.
        error: Retryable persistence error that left the version not yet durable.
    """

    version: int
    appended: bool
    durable: bool
    error: Exception | None = None
