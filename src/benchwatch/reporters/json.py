"""JSON reporter for benchwatch.

This module provides JSON output for regression reports and chart
exports, suitable for CI/CD pipelines and machine processing.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from benchwatch.regression.models import RegressionReport


class JSONReporter:
    """Reporter that outputs regression reports as JSON.

    Attributes:
        indent: JSON indentation level (None for compact).

    Example:
        >>> reporter = JSONReporter()
        >>> print(reporter.report(report))
        {
          "timestamp": "2024-01-15T10:30:00+00:00",
          "status": "fail",
          "tool": "Rust Benchmark",
          ...
        }
    """

    def __init__(self, indent: int | None = 2) -> None:
        """Initialize JSONReporter.

        Args:
            indent: JSON indentation level. Defaults to 2. Use None for compact output.
        """
        self.indent = indent

    def _get_timestamp(self) -> str:
        """Get current timestamp in ISO 8601 format."""
        return datetime.now(timezone.utc).isoformat(timespec="seconds")

    def _report_to_dict(
        self,
        report: RegressionReport,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return {
            "timestamp": self._get_timestamp(),
            "status": "fail" if report.has_regressions else "pass",
            **report.to_dict(),
            "regressed": [v.name for v in report.regressions],
            "improved": [v.name for v in report.improvements],
            "metadata": metadata or {},
        }

    def report(
        self,
        report: RegressionReport,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Generate JSON for a regression report.

        Args:
            report: The regression report.
            metadata: Optional metadata to include.

        Returns:
            JSON string.
        """
        return json.dumps(self._report_to_dict(report, metadata), indent=self.indent)

    def report_to_file(
        self,
        report: RegressionReport,
        path: Path | str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Write a regression report as JSON to a file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.report(report, metadata))

    def export(self, data: Any) -> str:
        """Serialize exported data (series, chart data) as JSON."""
        return json.dumps(data, indent=self.indent)
