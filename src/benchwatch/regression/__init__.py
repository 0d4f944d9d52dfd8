"""Regression detection module for benchwatch.

This module compares the measurements of a new benchmark entry against
a rolling baseline window of their history.

Example:
    >>> from benchwatch.core.config import DetectorConfig
    >>> from benchwatch.regression import RegressionDetector
    >>>
    >>> detector = RegressionDetector(DetectorConfig(baseline_window=5, threshold_ratio=0.1))
    >>> report = detector.check(entry, history)
    >>> if report.has_critical:
    ...     print("Critical regressions detected!")
"""

from __future__ import annotations

from benchwatch.regression.detector import HIGHER_IS_BETTER_UNITS, RegressionDetector, is_higher_better
from benchwatch.regression.models import MeasurementVerdict, RegressionReport, Verdict

__all__ = [
    "HIGHER_IS_BETTER_UNITS",
    "MeasurementVerdict",
    "RegressionDetector",
    "RegressionReport",
    "Verdict",
    "is_higher_better",
]
