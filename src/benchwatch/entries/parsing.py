"""Parsers for raw benchmark harness output.

This module turns the text or JSON a harness writes into the plain
measurement dictionaries accepted by ``normalize``.
"""

from __future__ import annotations

import json
import re
from typing import Any

from benchwatch.core.exceptions import EntryValidationError

# test heightmap_planet ... bench:   6,884,535 ns/iter (+/- 33,220)
_CARGO_BENCH_LINE = re.compile(
    r"^test\s+(?P<name>\S+)\s+\.\.\.\s+bench:\s+(?P<value>[0-9,.]+)\s+(?P<unit>\S+)\s+\(\+/-\s*(?P<range>[0-9,.]+)\)\s*$"
)


def _to_number(text: str) -> float:
    return float(text.replace(",", ""))


def parse_cargo_bench(text: str) -> list[dict[str, Any]]:
    """Parse the output of ``cargo bench`` (libtest bench format).

    Lines that are not benchmark results are skipped. Ranges are kept in
    the dashboard's textual ``"± N"`` form.

    Args:
        text: Raw harness output.

    Returns:
        Measurement dicts in emission order.

    Example:
        >>> parse_cargo_bench("test voxel_planet ... bench:   1,163 ns/iter (+/- 29)")
        [{'name': 'voxel_planet', 'value': 1163.0, 'range': '± 29', 'unit': 'ns/iter'}]
    """
    measurements: list[dict[str, Any]] = []
    for line in text.splitlines():
        match = _CARGO_BENCH_LINE.match(line.strip())
        if match is None:
            continue
        measurements.append(
            {
                "name": match.group("name"),
                "value": _to_number(match.group("value")),
                "range": f"± {match.group('range').replace(',', '')}",
                "unit": match.group("unit"),
            }
        )
    return measurements


def parse_measurements_json(data: str | list[Any] | dict[str, Any]) -> list[dict[str, Any]]:
    """Parse measurements from JSON harness output.

    Accepts a list of ``{name, value, range, unit}`` objects, or an object
    holding such a list under ``benches``.

    Args:
        data: JSON text or already decoded data.

    Returns:
        Measurement dicts in emission order.

    Raises:
        EntryValidationError: If the data has the wrong shape.
    """
    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise EntryValidationError(f"Harness output is not valid JSON: {e}") from e

    if isinstance(data, dict):
        data = data.get("benches", [])

    if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
        raise EntryValidationError("Harness output must be a list of measurement objects")

    return list(data)
