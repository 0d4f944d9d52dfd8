"""Query and export interface for benchwatch.

Example:
    >>> from benchwatch.query import BenchmarkQuery
    >>> query = BenchmarkQuery(store, detector=detector)
    >>> query.latest("Rust Benchmark", "voxel_planet")
"""

from __future__ import annotations

from benchwatch.query.service import BenchmarkQuery

__all__ = ["BenchmarkQuery"]
