"""Entry model for benchwatch.

This module provides the canonical representation of a benchmark run
and the ingestion boundary that validates harness output.

Example:
    >>> from benchwatch.entries import normalize, parse_cargo_bench
    >>>
    >>> raw = parse_cargo_bench(cargo_output)
    >>> entry = normalize(raw, commit, "Rust Benchmark", recorded_at=now_ms)
"""

from __future__ import annotations

from benchwatch.entries.models import BenchmarkEntry, Commit, Measurement, Person, parse_range
from benchwatch.entries.normalize import normalize, validate_entry
from benchwatch.entries.parsing import parse_cargo_bench, parse_measurements_json

__all__ = [
    "BenchmarkEntry",
    "Commit",
    "Measurement",
    "Person",
    "normalize",
    "parse_cargo_bench",
    "parse_measurements_json",
    "parse_range",
    "validate_entry",
]
