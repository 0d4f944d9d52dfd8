"""Markdown reporter for benchwatch.

This module renders regression reports as a performance alert suitable
for a commit or pull request comment.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from benchwatch.regression.models import Verdict

if TYPE_CHECKING:
    from benchwatch.regression.models import MeasurementVerdict, RegressionReport


def _format_value(value: float | None, unit: str) -> str:
    if value is None:
        return "-"
    return f"`{value:g}` {unit}".rstrip()


class MarkdownReporter:
    """Reporter that renders a performance alert in Markdown.

    Attributes:
        include_all: List every measurement instead of only regressions.

    Example:
        >>> reporter = MarkdownReporter()
        >>> comment = reporter.report(report, commit_url="https://github.com/o/r/commit/abc")
    """

    def __init__(self, include_all: bool = False) -> None:
        self.include_all = include_all

    def _row(self, v: MeasurementVerdict) -> str:
        ratio = f"`{v.ratio:.2f}`" if v.ratio is not None else "-"
        marker = {
            Verdict.REGRESSED: ":x:",
            Verdict.IMPROVED: ":rocket:",
            Verdict.STABLE: ":white_check_mark:",
            Verdict.INSUFFICIENT: ":grey_question:",
        }[v.verdict]
        current = f"{_format_value(v.current_value, v.unit)} (`± {v.current_range:g}`)"
        return (
            f"| `{v.name}` | {current} | {_format_value(v.baseline_mean, v.unit)} "
            f"| {ratio} | {marker} {v.verdict.value} |"
        )

    def report(self, report: RegressionReport, commit_url: str | None = None) -> str:
        """Render a regression report.

        Args:
            report: The regression report.
            commit_url: Link to the checked commit.

        Returns:
            Markdown text; a one-line note when nothing regressed and
            ``include_all`` is off.
        """
        rows = list(report.verdicts.values()) if self.include_all else report.regressions
        commit = f"[{report.commit_id[:7]}]({commit_url})" if commit_url else f"`{report.commit_id[:7]}`"

        if not rows:
            return f"No performance regressions in **{report.tool_name}** for commit {commit}."

        if report.has_regressions:
            title = "# :warning: **Performance Alert** :warning:"
            intro = f"Possible performance regression in **{report.tool_name}** for commit {commit}."
        else:
            title = f"# Benchmark results: {report.tool_name}"
            intro = f"Results for commit {commit}."

        lines = [
            title,
            "",
            intro,
            "",
            "| Benchmark | Current | Baseline | Ratio | Verdict |",
            "|-|-|-|-|-|",
        ]
        lines.extend(self._row(v) for v in rows)
        return "\n".join(lines) + "\n"
