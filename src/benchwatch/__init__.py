"""benchwatch: Benchmark history store and regression detection for CI pipelines."""

from __future__ import annotations

from benchwatch.core.config import DetectorConfig, RetentionPolicy, Settings, SpreadMethod
from benchwatch.core.exceptions import BenchwatchError
from benchwatch.entries import BenchmarkEntry, Commit, Measurement, normalize
from benchwatch.query import BenchmarkQuery
from benchwatch.regression import RegressionDetector, RegressionReport, Verdict
from benchwatch.store import HistoryStore, JSONFileBackend, MemoryBackend

__version__ = "0.3.0"
__all__ = [
    # Entries
    "BenchmarkEntry",
    "Commit",
    "Measurement",
    "normalize",
    # Store
    "HistoryStore",
    "JSONFileBackend",
    "MemoryBackend",
    # Detection
    "RegressionDetector",
    "RegressionReport",
    "Verdict",
    # Query
    "BenchmarkQuery",
    # Configuration
    "DetectorConfig",
    "RetentionPolicy",
    "Settings",
    "SpreadMethod",
    # Errors
    "BenchwatchError",
    # Version
    "__version__",
]
