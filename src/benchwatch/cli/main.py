"""Main CLI entry point for benchwatch.

This module defines the Typer application and all CLI commands.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import time
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any, NoReturn

import typer
from pydantic import ValidationError

from benchwatch import __version__
from benchwatch.core.config import Settings
from benchwatch.core.exceptions import (
    ConfigurationError,
    EntryValidationError,
    NotFoundError,
    PersistenceError,
)

if TYPE_CHECKING:
    from benchwatch.query import BenchmarkQuery
    from benchwatch.regression import RegressionDetector
    from benchwatch.regression.models import RegressionReport
    from benchwatch.store import HistoryStore

logger = logging.getLogger(__name__)

# Create the main Typer app
app = typer.Typer(
    name="benchwatch",
    help="benchwatch: Benchmark history store and regression detection for CI.",
    add_completion=False,
    no_args_is_help=True,
)

# Global state for options
state: dict[str, Any] = {
    "json": False,
    "data": None,
    "settings": None,
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"benchwatch v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[  # noqa: ARG001
        bool | None,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            help="Output results in JSON format.",
        ),
    ] = False,
    data: Annotated[
        str | None,
        typer.Option(
            "--data",
            "-d",
            help="Path of the benchmark data file (.json or .js). Overrides BENCHWATCH_DATA_PATH.",
        ),
    ] = None,
) -> None:
    """benchwatch: Benchmark history store and regression detection.

    Record CI benchmark runs and flag significant performance changes.
    """
    state["json"] = json_output
    state["data"] = data
    state["settings"] = None


def _settings() -> Settings:
    settings = state["settings"]
    if settings is None:
        try:
            settings = Settings()
        except ValidationError as e:
            _fail(f"Invalid configuration: {e}", code=2)
        logging.basicConfig(
            level=settings.log_level.upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )
        state["settings"] = settings
    return settings


def _fail(message: str, code: int = 1) -> NoReturn:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(code)


def _emit(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2))


async def _open_store() -> HistoryStore:
    from benchwatch.store import HistoryStore, JSONFileBackend

    settings = _settings()
    backend = JSONFileBackend(state["data"] or settings.data_path)
    return await HistoryStore.open(
        backend,
        repo_url=settings.repo_url,
        retention=settings.retention_policy(),
        max_retries=settings.persist_max_retries,
        retry_delay=settings.persist_retry_delay,
    )


def _detector() -> RegressionDetector:
    from benchwatch.regression import RegressionDetector

    try:
        return RegressionDetector(_settings().detector_config())
    except ConfigurationError as e:
        _fail(str(e), code=2)


def _query(store: HistoryStore, detector: RegressionDetector | None = None) -> BenchmarkQuery:
    from benchwatch.query import BenchmarkQuery

    return BenchmarkQuery(store, detector=detector)


def _run(coro: Any) -> Any:
    """Run a coroutine, mapping library errors to exit codes."""
    try:
        return asyncio.run(coro)
    except (EntryValidationError, ConfigurationError) as e:
        _fail(str(e), code=2)
    except (NotFoundError, PersistenceError) as e:
        _fail(str(e), code=1)


def _read_text(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    try:
        return Path(path).read_text(encoding="utf-8")
    except OSError as e:
        _fail(f"Cannot read {path}: {e}", code=2)


def _print_report(report: RegressionReport) -> None:
    if state["json"]:
        from benchwatch.reporters import JSONReporter

        typer.echo(JSONReporter().report(report))
        return

    typer.echo(report.summary())
    insufficient = [v.name for v in report.verdicts.values() if v.verdict.value == "insufficient"]
    if insufficient:
        typer.echo(f"  Insufficient history: {len(insufficient)} measurement(s)")


def _write_comment(report: RegressionReport, path: str, commit_url: str | None) -> None:
    from benchwatch.reporters import MarkdownReporter

    Path(path).write_text(MarkdownReporter().report(report, commit_url=commit_url), encoding="utf-8")


@app.command()
def version() -> None:
    """Show the current version."""
    typer.echo(f"benchwatch v{__version__}")


@app.command()
def ingest(
    tool: Annotated[str, typer.Option("--tool", "-t", help="Benchmark suite (tool) name.")],
    commit: Annotated[str, typer.Option("--commit", "-c", help="Path to the commit metadata JSON.")],
    input_path: Annotated[
        str | None,
        typer.Option("--input", "-i", help="Path to harness output as JSON ('-' for stdin)."),
    ] = None,
    cargo: Annotated[
        str | None,
        typer.Option("--cargo", help="Path to 'cargo bench' output ('-' for stdin)."),
    ] = None,
    harness: Annotated[
        str | None,
        typer.Option("--harness", help="Harness kind stored with the entry, e.g. 'cargo'."),
    ] = None,
    recorded_at: Annotated[
        int | None,
        typer.Option("--recorded-at", help="Ingestion time in epoch ms (default: now)."),
    ] = None,
    timeout: Annotated[
        float | None,
        typer.Option("--timeout", help="Persist timeout in seconds (default: BENCHWATCH_PERSIST_TIMEOUT_SECONDS)."),
    ] = None,
    check: Annotated[
        bool,
        typer.Option("--check/--no-check", help="Check the new entry for regressions."),
    ] = True,
    fail_on_alert: Annotated[
        bool,
        typer.Option("--fail-on-alert", help="Exit with code 1 if a regression is detected."),
    ] = False,
    comment: Annotated[
        str | None,
        typer.Option("--comment", help="Write a Markdown performance alert to this path."),
    ] = None,
) -> None:
    """Record one benchmark run and check it for regressions.

    Examples:
        benchwatch ingest -t "Rust Benchmark" -c commit.json --cargo output.txt
        benchwatch --json ingest -t suite -c commit.json -i results.json --fail-on-alert
    """
    from benchwatch.entries import normalize, parse_cargo_bench, parse_measurements_json

    if (input_path is None) == (cargo is None):
        _fail("Exactly one of --input or --cargo is required.", code=2)

    if cargo is not None:
        raw = parse_cargo_bench(_read_text(cargo))
        harness = harness or "cargo"
    else:
        try:
            raw = parse_measurements_json(_read_text(input_path or "-"))
        except EntryValidationError as e:
            _fail(str(e), code=2)

    try:
        commit_data = json.loads(_read_text(commit))
    except json.JSONDecodeError as e:
        _fail(f"Commit metadata is not valid JSON: {e}", code=2)

    settings = _settings()
    detector = _detector() if check else None
    now_ms = recorded_at if recorded_at is not None else int(time.time() * 1000)

    async def run() -> tuple[Any, RegressionReport | None]:
        entry = normalize(raw, commit_data, tool, recorded_at=now_ms, harness=harness)
        async with await _open_store() as store:
            result = await store.ingest(entry, timeout=timeout or settings.persist_timeout_seconds)
            checked = entry if result.appended else store.snapshot.last_entry(tool) or entry
            report = _query(store, detector).check(checked) if detector else None
            return result, report

    result, report = _run(run())

    if state["json"]:
        _emit(
            {
                "tool": tool,
                "version": result.version,
                "appended": result.appended,
                "durable": result.durable,
                "error": str(result.error) if result.error else None,
                "report": report.to_dict() if report else None,
            }
        )
    else:
        status = "Appended" if result.appended else "Already recorded (re-delivery)"
        typer.echo(f"{status}: {tool} @ {commit_data.get('id', '')[:7]} (version {result.version})")
        if not result.durable:
            typer.echo(f"Warning: not yet durable: {result.error}", err=True)
        if report is not None:
            _print_report(report)

    if report is not None and comment:
        _write_comment(report, comment, commit_data.get("url"))

    if not result.durable:
        raise typer.Exit(1)
    if report is not None and fail_on_alert and report.has_regressions:
        raise typer.Exit(1)


@app.command()
def tools() -> None:
    """List recorded benchmark tools."""

    async def run() -> list[str]:
        async with await _open_store() as store:
            return sorted(_query(store).list_tools())

    names = _run(run())
    if state["json"]:
        _emit(names)
    else:
        for name in names:
            typer.echo(name)


@app.command()
def measurements(tool: Annotated[str, typer.Argument(help="Benchmark tool name.")]) -> None:
    """List the measurement names recorded for a tool."""

    async def run() -> list[str]:
        async with await _open_store() as store:
            return sorted(_query(store).list_measurements(tool))

    names = _run(run())
    if state["json"]:
        _emit(names)
    else:
        for name in names:
            typer.echo(name)


@app.command()
def history(
    tool: Annotated[str, typer.Argument(help="Benchmark tool name.")],
    name: Annotated[str, typer.Argument(help="Measurement name.")],
    limit: Annotated[int | None, typer.Option("--limit", "-n", help="Most recent points only.")] = None,
    as_of: Annotated[int | None, typer.Option("--as-of", help="Only points recorded at or before this epoch ms.")] = None,
) -> None:
    """Show the time series of one measurement."""

    async def run() -> list[Any]:
        async with await _open_store() as store:
            return _query(store).series_as_of(tool, name, cutoff=as_of, limit=limit)

    points = _run(run())
    if state["json"]:
        _emit([p.to_dict() for p in points])
        return
    for p in points:
        typer.echo(f"{p.recorded_at}  {p.commit_id[:7]}  {p.value:g} ± {p.range:g} {p.unit}".rstrip())


@app.command()
def latest(
    tool: Annotated[str, typer.Argument(help="Benchmark tool name.")],
    name: Annotated[str, typer.Argument(help="Measurement name.")],
) -> None:
    """Show the most recent value of one measurement."""

    async def run() -> Any:
        async with await _open_store() as store:
            return _query(store).latest(tool, name)

    measurement = _run(run())
    if state["json"]:
        _emit(measurement.to_dict())
    else:
        typer.echo(f"{measurement.name}: {measurement.value:g} ± {measurement.range:g} {measurement.unit}".rstrip())


@app.command()
def check(
    tool: Annotated[str, typer.Argument(help="Benchmark tool name.")],
    fail_on_alert: Annotated[
        bool,
        typer.Option("--fail-on-alert", help="Exit with code 1 if a regression is detected."),
    ] = False,
    comment: Annotated[
        str | None,
        typer.Option("--comment", help="Write a Markdown performance alert to this path."),
    ] = None,
) -> None:
    """Check the latest entry of a tool against its history."""

    detector = _detector()

    async def run() -> tuple[RegressionReport, str | None]:
        async with await _open_store() as store:
            query = _query(store, detector)
            last = store.snapshot.last_entry(tool)
            return query.check_latest(tool), last.commit.url if last else None

    report, commit_url = _run(run())
    _print_report(report)
    if comment:
        _write_comment(report, comment, commit_url)
    if fail_on_alert and report.has_regressions:
        raise typer.Exit(1)


@app.command()
def export(
    tool: Annotated[str, typer.Argument(help="Benchmark tool name.")],
    max_items: Annotated[
        int | None,
        typer.Option("--max-items", help="Most recent entries only."),
    ] = None,
    output: Annotated[
        str | None,
        typer.Option("--output", "-o", help="Write chart data to this file instead of stdout."),
    ] = None,
) -> None:
    """Export a tool's history as per-benchmark chart data."""
    from benchwatch.reporters import JSONReporter

    async def run() -> dict[str, Any]:
        async with await _open_store() as store:
            return _query(store).export_chart_data(tool, max_items=max_items)

    content = JSONReporter().export(_run(run()))
    if output:
        Path(output).write_text(content, encoding="utf-8")
        if not state["json"]:
            typer.echo(f"Chart data written to: {output}")
    else:
        typer.echo(content)


if __name__ == "__main__":
    app()
