"""Models for benchmark entries.

This module defines the canonical representation of one benchmark run:
commit provenance plus the ordered measurements the harness emitted.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

# Textual ranges emitted by harnesses, e.g. "± 72642" or "+/- 56"
_RANGE_PREFIX = re.compile(r"^\s*(?:±|\+/-|\+-)\s*")


def parse_range(raw: Any) -> float:
    """Parse a measurement range into a float.

    Args:
        raw: A number, or text such as ``"± 1,234"`` or ``"+/- 56"``.

    Returns:
        The numeric range (sign preserved; validation happens at ingestion).

    Raises:
        ValueError: If the text holds no number.

    Example:
        >>> parse_range("± 72642")
        72642.0
    """
    if raw is None:
        return 0.0
    if isinstance(raw, bool):
        raise ValueError(f"Invalid range: {raw!r}")
    if isinstance(raw, (int, float)):
        return float(raw)
    text = _RANGE_PREFIX.sub("", str(raw)).replace(",", "").strip()
    if not text:
        raise ValueError(f"Invalid range: {raw!r}")
    return float(text)


def _json_number(value: float) -> int | float:
    # Integral values are written back the way harnesses emit them
    if value.is_integer() and abs(value) < 2**53:
        return int(value)
    return value


class Person(BaseModel):
    """Author or committer of a commit.

    Attributes:
        name: Display name.
        email: Email address.
        username: Handle on the hosting service.
    """

    model_config = {"frozen": True}

    email: str | None = Field(default=None, description="Email address")
    name: str = Field(..., description="Display name")
    username: str | None = Field(default=None, description="Handle on the hosting service")


class Commit(BaseModel):
    """Provenance of a benchmark run, supplied by the CI system.

    Example:
        >>> commit = Commit(
        ...     id="c57b8175923d0b8171cddc8cec17c7a4eb75d54b",
        ...     message="changed token",
        ...     timestamp="2021-03-01T19:02:38+01:00",
        ... )
    """

    model_config = {"frozen": True}

    # Field order follows the dashboard document's key order
    author: Person | None = Field(default=None, description="Commit author")
    committer: Person | None = Field(default=None, description="Commit committer")
    distinct: bool | None = Field(default=None, description="Whether the commit is distinct in its push")
    id: str = Field(..., pattern=r"^[0-9a-f]{40}(?:[0-9a-f]{24})?$", description="Commit hash")
    message: str = Field(default="", description="Commit message")
    timestamp: str | None = Field(default=None, description="RFC3339 commit timestamp")
    tree_id: str | None = Field(default=None, description="Tree hash")
    url: str | None = Field(default=None, description="Source URL of the commit")

    @field_validator("id", "tree_id", mode="before")
    @classmethod
    def _lowercase_hash(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @property
    def short_id(self) -> str:
        return self.id[:7]

    def to_dict(self) -> dict[str, Any]:
        """Convert commit to its document form."""
        return self.model_dump(exclude_none=True)


class Measurement(BaseModel):
    """One named benchmark result.

    Attributes:
        name: Stable identifier of the benchmark across runs.
        value: Central estimate (mean or median).
        range: Non-negative uncertainty around value.
        unit: Descriptive unit label, e.g. "ns/iter".
        extra: Free-form text the harness attached.
        range_text: Range as the harness wrote it, when it was text.

    Example:
        >>> m = Measurement(name="op", value=1000, range="± 50", unit="ns/iter")
        >>> m.range, m.range_text
        (50.0, '± 50')
    """

    model_config = {"frozen": True}

    name: str = Field(..., min_length=1, description="Benchmark name")
    value: float = Field(..., description="Central estimate")
    range: float = Field(default=0.0, description="Uncertainty around value")
    unit: str = Field(default="", description="Unit label of value")
    extra: str | None = Field(default=None, description="Free-form harness annotation")
    range_text: str | None = Field(default=None, description="Original textual range")

    @model_validator(mode="before")
    @classmethod
    def _keep_range_text(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("range"), str) and data.get("range_text") is None:
            data = {**data, "range_text": data["range"]}
        return data

    @field_validator("range", mode="before")
    @classmethod
    def _parse_range(cls, value: Any) -> float:
        return parse_range(value)

    def to_dict(self) -> dict[str, Any]:
        """Convert measurement to its document form.

        A textual range is written back verbatim so documents produced by
        other tools keep their shape.
        """
        data: dict[str, Any] = {
            "name": self.name,
            "value": _json_number(self.value),
            "range": self.range_text if self.range_text is not None else _json_number(self.range),
            "unit": self.unit,
        }
        if self.extra is not None:
            data["extra"] = self.extra
        return data


class BenchmarkEntry(BaseModel):
    """One benchmark run: commit provenance plus ordered measurements.

    Entries are immutable once created.

    Attributes:
        tool_name: Partition key of the store (benchmark suite name).
        recorded_at: Ingestion time in epoch milliseconds.
        commit: Commit provenance.
        measurements: Measurements in harness emission order.
        harness: Kind of harness that produced the run, e.g. "cargo".
    """

    model_config = {"frozen": True}

    tool_name: str = Field(..., min_length=1, description="Benchmark suite name")
    recorded_at: int = Field(..., ge=0, description="Ingestion time in epoch ms")
    commit: Commit
    measurements: tuple[Measurement, ...] = Field(default=(), description="Ordered measurements")
    harness: str | None = Field(default=None, description="Producing harness kind")

    @property
    def names(self) -> list[str]:
        return [m.name for m in self.measurements]

    def measurement(self, name: str) -> Measurement | None:
        """Get a measurement by name, or None if absent."""
        for m in self.measurements:
            if m.name == name:
                return m
        return None

    def fingerprint(self) -> tuple[Any, ...]:
        """Identity used to detect re-delivery of the same run.

        Covers the commit id, tool and the ordered measurement names and values.
        """
        return (
            self.commit.id,
            self.tool_name,
            tuple((m.name, m.value) for m in self.measurements),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert entry to its document form.

        The tool name is not included; documents key entries by tool.
        """
        data: dict[str, Any] = {
            "commit": self.commit.to_dict(),
            "date": self.recorded_at,
        }
        if self.harness is not None:
            data["tool"] = self.harness
        data["benches"] = [m.to_dict() for m in self.measurements]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], tool_name: str) -> BenchmarkEntry:
        """Create entry from its document form.

        Args:
            data: Dictionary with entry fields; unknown fields are ignored.
            tool_name: Tool the entry is stored under.

        Returns:
            BenchmarkEntry instance.
        """
        return cls(
            tool_name=tool_name,
            recorded_at=data["date"],
            commit=Commit.model_validate(data["commit"]),
            measurements=tuple(Measurement.model_validate(b) for b in data.get("benches", [])),
            harness=data.get("tool"),
        )
