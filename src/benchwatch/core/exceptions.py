"""Custom exceptions for benchwatch.

This module defines the exception hierarchy used throughout the library.
All exceptions inherit from BenchwatchError for easy catching.
"""

from __future__ import annotations


class BenchwatchError(Exception):
    """Base exception for all benchwatch errors.

    Example:
        >>> try:
        ...     await store.ingest(entry)
        ... except BenchwatchError as e:
        ...     print(f"benchwatch error: {e}")
    """


class EntryValidationError(BenchwatchError):
    """Raised when a benchmark run is rejected at the ingestion boundary.

    The whole run is rejected; no measurement of it is ever stored.
    """


class EmptyMeasurementsError(EntryValidationError):
    """Raised when the harness produced zero measurements."""


class DuplicateNameError(EntryValidationError):
    """Raised when two measurements of the same run share a name.

    Example:
        >>> raise DuplicateNameError("Duplicate measurement name: 'voxel_planet'")
    """

    def __init__(self, message: str, name: str | None = None) -> None:
        super().__init__(message)
        self.name = name


class NegativeRangeError(EntryValidationError):
    """Raised when a measurement carries a negative uncertainty range."""


class OutOfOrderError(EntryValidationError):
    """Raised when an entry was recorded before the tool's latest entry."""


class NotFoundError(BenchwatchError):
    """Raised by read operations on an unknown tool or measurement.

    Recoverable: callers usually treat it as "no history yet".
    """


class ToolNotFoundError(NotFoundError):
    """Raised when no entry was ever recorded for a tool."""


class MeasurementNotFoundError(NotFoundError):
    """Raised when a tool never recorded a measurement with the given name."""


class PersistenceError(BenchwatchError):
    """Raised when the store cannot be written to or read from durable storage.

    Attributes:
        retryable: Whether retrying the same operation may succeed.
    """

    retryable: bool = False


class TransientPersistenceError(PersistenceError):
    """Raised on storage or network failures that may succeed on retry.

    Example:
        >>> raise TransientPersistenceError("Disk full while writing data.json")
    """

    retryable = True


class LockTimeoutError(TransientPersistenceError):
    """Raised when another writer holds the document lock for too long."""


class PersistenceFormatError(PersistenceError):
    """Raised when a stored document cannot be serialized or parsed.

    Requires manual intervention; never retried.
    """


class PersistTimeoutError(PersistenceError):
    """Raised when persisting did not finish within the caller's timeout."""

    retryable = True


class ConfigurationError(BenchwatchError):
    """Raised when configuration is invalid or missing.

    Example:
        >>> raise ConfigurationError("baseline_window must be >= 2, got 1")
    """


class StoreClosedError(BenchwatchError):
    """Raised when a closed store is used for ingestion."""
