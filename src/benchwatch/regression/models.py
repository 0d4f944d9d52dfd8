"""Models for regression detection.

This module provides the verdict types returned by the regression
detector, per measurement and per checked entry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal


class Verdict(str, Enum):
    """Outcome of comparing a measurement to its baseline."""

    REGRESSED = "regressed"
    IMPROVED = "improved"
    STABLE = "stable"
    INSUFFICIENT = "insufficient"


@dataclass(frozen=True)
class MeasurementVerdict:
    """Verdict for one measurement of a checked entry.

    Attributes:
        name: Measurement name.
        verdict: Categorical outcome.
        current_value: Value of the checked measurement.
        current_range: Range of the checked measurement.
        unit: Unit of the checked measurement.
        window_size: Historical points the baseline was computed from.
        baseline_mean: Baseline central tendency B (None when insufficient).
        baseline_spread: Baseline spread S (None when insufficient).
        delta: Relative change (value - B) / B (None when undefined).
        threshold_ratio: Threshold the delta was compared to.
        severity: "warning" or "critical" for regressions and improvements.

    Example:
        >>> v = MeasurementVerdict(
        ...     name="op", verdict=Verdict.REGRESSED, current_value=1600.0, current_range=20.0,
        ...     unit="ns", window_size=1, baseline_mean=1000.0, baseline_spread=50.0,
        ...     delta=0.6, threshold_ratio=0.2, severity="critical",
        ... )
        >>> v.message
        'op regressed by 60.0% (1000 ns -> 1600 ns, threshold: 20.0%)'
    """

    name: str
    verdict: Verdict
    current_value: float
    current_range: float
    unit: str
    window_size: int
    baseline_mean: float | None = None
    baseline_spread: float | None = None
    delta: float | None = None
    threshold_ratio: float | None = None
    severity: Literal["warning", "critical"] | None = None

    @property
    def ratio(self) -> float | None:
        """Current value divided by the baseline mean."""
        if not self.baseline_mean:
            return None
        return self.current_value / self.baseline_mean

    @property
    def message(self) -> str:
        """Human-readable description of the verdict."""
        if self.verdict is Verdict.INSUFFICIENT:
            return f"{self.name}: insufficient history ({self.window_size} points)"
        if self.delta is None or self.baseline_mean is None:
            return f"{self.name} {self.verdict.value}"

        unit = f" {self.unit}" if self.unit else ""
        threshold = f", threshold: {self.threshold_ratio * 100:.1f}%" if self.threshold_ratio is not None else ""
        return (
            f"{self.name} {self.verdict.value} by {abs(self.delta) * 100:.1f}% "
            f"({self.baseline_mean:g}{unit} -> {self.current_value:g}{unit}{threshold})"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "verdict": self.verdict.value,
            "currentValue": self.current_value,
            "currentRange": self.current_range,
            "unit": self.unit,
            "windowSize": self.window_size,
            "baselineMean": self.baseline_mean,
            "baselineSpread": self.baseline_spread,
            "delta": self.delta,
            "severity": self.severity,
        }


@dataclass
class RegressionReport:
    """Verdicts for every measurement of one checked entry.

    Attributes:
        tool_name: Tool the entry belongs to.
        commit_id: Commit of the checked entry.
        verdicts: Measurement name -> verdict, in entry order.

    Example:
        >>> report = query.check_latest("Rust Benchmark")
        >>> report["voxel_planet"].verdict
        <Verdict.STABLE: 'stable'>
        >>> if report.has_regressions:
        ...     print(report.summary())
    """

    tool_name: str
    commit_id: str
    verdicts: dict[str, MeasurementVerdict] = field(default_factory=dict)

    def __getitem__(self, name: str) -> MeasurementVerdict:
        return self.verdicts[name]

    def __contains__(self, name: object) -> bool:
        return name in self.verdicts

    def __len__(self) -> int:
        return len(self.verdicts)

    def as_mapping(self) -> dict[str, Verdict]:
        """Measurement name -> categorical verdict."""
        return {name: v.verdict for name, v in self.verdicts.items()}

    @property
    def regressions(self) -> list[MeasurementVerdict]:
        return [v for v in self.verdicts.values() if v.verdict is Verdict.REGRESSED]

    @property
    def improvements(self) -> list[MeasurementVerdict]:
        return [v for v in self.verdicts.values() if v.verdict is Verdict.IMPROVED]

    @property
    def has_regressions(self) -> bool:
        return bool(self.regressions)

    @property
    def has_critical(self) -> bool:
        return any(v.severity == "critical" for v in self.regressions)

    def summary(self) -> str:
        """Generate a human-readable summary.

        Returns:
            Multi-line summary string.
        """
        if not self.has_regressions and not self.improvements:
            return f"No significant changes for {self.tool_name} at {self.commit_id[:7]}."

        lines = [
            f"Regression check for {self.tool_name} at {self.commit_id[:7]}",
            f"  Regressed: {len(self.regressions)}, Improved: {len(self.improvements)}",
            "",
        ]
        for v in self.regressions:
            marker = "[CRITICAL]" if v.severity == "critical" else "[WARNING]"
            lines.append(f"  {marker} {v.message}")
        for v in self.improvements:
            lines.append(f"  [IMPROVED] {v.message}")
        return "\n".join(lines)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool_name,
            "commitId": self.commit_id,
            "verdicts": {name: v.to_dict() for name, v in self.verdicts.items()},
        }
