"""Validation and normalization of harness output into entries.

This is the ingestion boundary: a run either becomes one valid
BenchmarkEntry or is rejected as a whole.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from benchwatch.core.exceptions import (
    DuplicateNameError,
    EmptyMeasurementsError,
    EntryValidationError,
    NegativeRangeError,
)
from benchwatch.entries.models import BenchmarkEntry, Commit, Measurement


def validate_entry(entry: BenchmarkEntry) -> BenchmarkEntry:
    """Check the invariants every stored entry satisfies.

    Args:
        entry: Entry to check.

    Returns:
        The same entry, for chaining.

    Raises:
        EmptyMeasurementsError: If the entry has no measurements.
        DuplicateNameError: If two measurements share a name.
        NegativeRangeError: If any range is negative.
    """
    if not entry.measurements:
        raise EmptyMeasurementsError(f"Run for tool '{entry.tool_name}' produced no measurements")

    seen: set[str] = set()
    for m in entry.measurements:
        if m.name in seen:
            raise DuplicateNameError(f"Duplicate measurement name: '{m.name}'", name=m.name)
        seen.add(m.name)
        if not (math.isfinite(m.value) and math.isfinite(m.range)):
            raise EntryValidationError(f"Measurement '{m.name}' has a non-finite value or range")
        if m.range < 0:
            raise NegativeRangeError(f"Measurement '{m.name}' has negative range {m.range}")

    return entry


def normalize(
    raw: Iterable[Mapping[str, Any] | Measurement],
    commit: Commit | Mapping[str, Any],
    tool_name: str,
    *,
    recorded_at: int,
    harness: str | None = None,
) -> BenchmarkEntry:
    """Turn harness output and commit metadata into a validated entry.

    Pure transformation: ``recorded_at`` comes from the caller's clock,
    never from the commit timestamp.

    Args:
        raw: Measurements in harness emission order.
        commit: Commit provenance from the CI system.
        tool_name: Benchmark suite the run belongs to.
        recorded_at: Ingestion time in epoch milliseconds.
        harness: Kind of harness that produced the run.

    Returns:
        A validated BenchmarkEntry.

    Raises:
        EntryValidationError: If any field is malformed or an invariant is broken.

    Example:
        >>> entry = normalize(
        ...     [{"name": "op", "value": 1000, "range": 50, "unit": "ns"}],
        ...     {"id": "c57b8175923d0b8171cddc8cec17c7a4eb75d54b"},
        ...     "X",
        ...     recorded_at=100,
        ... )
    """
    try:
        measurements = tuple(m if isinstance(m, Measurement) else Measurement.model_validate(m) for m in raw)
        entry = BenchmarkEntry(
            tool_name=tool_name,
            recorded_at=recorded_at,
            commit=commit if isinstance(commit, Commit) else Commit.model_validate(commit),
            measurements=measurements,
            harness=harness,
        )
    except ValidationError as e:
        raise EntryValidationError(f"Invalid benchmark run for tool '{tool_name}': {e}") from e

    return validate_entry(entry)
