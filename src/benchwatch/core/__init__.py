"""Core building blocks of benchwatch: configuration and errors."""

from __future__ import annotations

from benchwatch.core.config import DetectorConfig, RetentionPolicy, Settings, SpreadMethod
from benchwatch.core.exceptions import (
    BenchwatchError,
    ConfigurationError,
    DuplicateNameError,
    EmptyMeasurementsError,
    EntryValidationError,
    LockTimeoutError,
    MeasurementNotFoundError,
    NegativeRangeError,
    NotFoundError,
    OutOfOrderError,
    PersistenceError,
    PersistenceFormatError,
    PersistTimeoutError,
    StoreClosedError,
    ToolNotFoundError,
    TransientPersistenceError,
)

__all__ = [
    "BenchwatchError",
    "ConfigurationError",
    "DetectorConfig",
    "DuplicateNameError",
    "EmptyMeasurementsError",
    "EntryValidationError",
    "LockTimeoutError",
    "MeasurementNotFoundError",
    "NegativeRangeError",
    "NotFoundError",
    "OutOfOrderError",
    "PersistTimeoutError",
    "PersistenceError",
    "PersistenceFormatError",
    "RetentionPolicy",
    "Settings",
    "SpreadMethod",
    "StoreClosedError",
    "ToolNotFoundError",
    "TransientPersistenceError",
]
