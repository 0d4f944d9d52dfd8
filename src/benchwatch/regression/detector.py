"""Regression detector for benchmark entries.

This module provides the RegressionDetector class, which compares each
measurement of a new entry against a rolling baseline window of its
history.

For every measurement:
    1. Take the last ``baseline_window`` historical points with the same unit.
    2. Fewer than ``min_history`` points -> Insufficient.
    3. B = mean of the window values; S = mean of the window ranges, or the
       standard deviation of the window values.
    4. d = (value - B) / B.
    5. Regressed when d exceeds the threshold in the "worse" direction and
       the confidence bands [value ± range] and [B ± S] are disjoint;
       Improved symmetrically; Stable otherwise.
"""

from __future__ import annotations

import statistics
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Literal

from benchwatch.core.config import SpreadMethod
from benchwatch.regression.models import MeasurementVerdict, RegressionReport, Verdict

if TYPE_CHECKING:
    from benchwatch.core.config import DetectorConfig
    from benchwatch.entries.models import BenchmarkEntry, Measurement
    from benchwatch.store.models import SeriesPoint

# Units where higher is better (decrease = regression)
HIGHER_IS_BETTER_UNITS: set[str] = {
    "ops/sec",
    "ops/s",
    "op/s",
    "iter/sec",
    "iter/s",
    "req/s",
    "B/s",
    "KB/s",
    "MB/s",
    "GB/s",
    "MiB/s",
    "GiB/s",
}


def is_higher_better(unit: str) -> bool:
    """Check whether larger values of a unit are improvements."""
    return unit in HIGHER_IS_BETTER_UNITS


class RegressionDetector:
    """Detect regressions of a new entry against its history.

    The detector is pure: the same entry, history and configuration
    always yield the same verdicts.

    Attributes:
        config: Detector configuration.

    Example:
        >>> detector = RegressionDetector(DetectorConfig(baseline_window=5, threshold_ratio=0.1))
        >>> report = detector.check(entry, {"voxel_planet": points})
        >>> report["voxel_planet"].verdict
        <Verdict.REGRESSED: 'regressed'>
    """

    def __init__(self, config: DetectorConfig) -> None:
        """Initialize detector with its configuration.

        Args:
            config: Validated detector configuration.
        """
        self.config = config

    def _spread(self, window: Sequence[SeriesPoint]) -> float:
        if self.config.spread_method is SpreadMethod.STDDEV:
            if len(window) < 2:
                return 0.0
            return statistics.stdev(p.value for p in window)
        return statistics.fmean(p.range for p in window)

    def _severity(self, delta: float) -> Literal["warning", "critical"]:
        critical = self.config.threshold_ratio * self.config.critical_multiplier
        return "critical" if abs(delta) > critical else "warning"

    def check_measurement(
        self,
        measurement: Measurement,
        history: Sequence[SeriesPoint],
    ) -> MeasurementVerdict:
        """Compare one measurement against its historical points.

        Args:
            measurement: The new measurement.
            history: Points preceding the new entry, oldest first.

        Returns:
            MeasurementVerdict for the measurement.
        """
        comparable = [p for p in history if p.unit == measurement.unit]
        window = comparable[-self.config.baseline_window :]

        if len(window) < self.config.min_history:
            return MeasurementVerdict(
                name=measurement.name,
                verdict=Verdict.INSUFFICIENT,
                current_value=measurement.value,
                current_range=measurement.range,
                unit=measurement.unit,
                window_size=len(window),
            )

        baseline = statistics.fmean(p.value for p in window)
        spread = self._spread(window)
        threshold = self.config.threshold_ratio

        verdict = Verdict.STABLE
        delta: float | None = None
        severity: Literal["warning", "critical"] | None = None
        if baseline != 0:
            delta = (measurement.value - baseline) / baseline
            slower = delta > threshold and measurement.value - measurement.range > baseline + spread
            faster = delta < -threshold and measurement.value + measurement.range < baseline - spread
            if is_higher_better(measurement.unit):
                slower, faster = faster, slower
            if slower:
                verdict = Verdict.REGRESSED
            elif faster:
                verdict = Verdict.IMPROVED
            if verdict is not Verdict.STABLE:
                severity = self._severity(delta)

        return MeasurementVerdict(
            name=measurement.name,
            verdict=verdict,
            current_value=measurement.value,
            current_range=measurement.range,
            unit=measurement.unit,
            window_size=len(window),
            baseline_mean=baseline,
            baseline_spread=spread,
            delta=delta,
            threshold_ratio=threshold,
            severity=severity,
        )

    def check(
        self,
        entry: BenchmarkEntry,
        history: Mapping[str, Sequence[SeriesPoint]],
    ) -> RegressionReport:
        """Check every measurement of an entry against its history.

        Args:
            entry: The new entry.
            history: Measurement name -> points preceding the entry, oldest first.
                Names absent from the mapping have no history.

        Returns:
            RegressionReport with one verdict per measurement, in entry order.
        """
        report = RegressionReport(tool_name=entry.tool_name, commit_id=entry.commit.id)
        for m in entry.measurements:
            report.verdicts[m.name] = self.check_measurement(m, history.get(m.name, ()))
        return report
