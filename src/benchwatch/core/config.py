"""Configuration management for benchwatch.

This module provides the environment-driven Settings (pydantic-settings)
and the validated configuration objects consumed by the store and the
regression detector.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from benchwatch.core.exceptions import ConfigurationError

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class SpreadMethod(str, Enum):
    """How the baseline spread S is computed from the window."""

    MEAN_RANGE = "mean-range"
    STDDEV = "stddev"


@dataclass(frozen=True)
class DetectorConfig:
    """Configuration of the regression detector.

    A baseline needs at least ``min_history`` points before any comparison is
    made, so ``baseline_window`` may never be smaller than ``min_history``.

    Attributes:
        baseline_window: Number of most recent historical points compared against.
        threshold_ratio: Relative change that counts as significant (0.2 = 20%).
        spread_method: Baseline spread, mean of ranges or stddev of values.
        min_history: Points required before a verdict other than Insufficient.
        critical_multiplier: Multiple of threshold_ratio marking critical severity.

    Example:
        >>> config = DetectorConfig(baseline_window=5, threshold_ratio=0.1)
        >>> config.spread_method
        <SpreadMethod.MEAN_RANGE: 'mean-range'>
    """

    baseline_window: int
    threshold_ratio: float
    spread_method: SpreadMethod = SpreadMethod.MEAN_RANGE
    min_history: int = 2
    critical_multiplier: float = 2.0

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "spread_method", SpreadMethod(self.spread_method))
        except ValueError:
            choices = ", ".join(m.value for m in SpreadMethod)
            raise ConfigurationError(
                f"spread_method must be one of {choices}, got {self.spread_method!r}"
            ) from None

        if self.min_history < 1:
            raise ConfigurationError(f"min_history must be >= 1, got {self.min_history}")
        if self.baseline_window < self.min_history:
            raise ConfigurationError(
                f"baseline_window must be >= {self.min_history}, got {self.baseline_window}"
            )
        if not self.threshold_ratio > 0:
            raise ConfigurationError(f"threshold_ratio must be > 0, got {self.threshold_ratio}")
        if self.critical_multiplier < 1:
            raise ConfigurationError(f"critical_multiplier must be >= 1, got {self.critical_multiplier}")


@dataclass(frozen=True)
class RetentionPolicy:
    """Optional growth limits of a tool's history.

    Attributes:
        max_entries: Keep at most this many entries per tool.
        max_age_ms: Drop entries older than this, measured from the newest entry.
    """

    max_entries: int | None = None
    max_age_ms: int | None = None

    def __post_init__(self) -> None:
        if self.max_entries is not None and self.max_entries < 1:
            raise ConfigurationError(f"retention max_entries must be >= 1, got {self.max_entries}")
        if self.max_age_ms is not None and self.max_age_ms < 0:
            raise ConfigurationError(f"retention max_age_ms must be >= 0, got {self.max_age_ms}")

    @property
    def is_unbounded(self) -> bool:
        return self.max_entries is None and self.max_age_ms is None


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be configured via environment variables with
    the BENCHWATCH_ prefix.

    Example:
        >>> # export BENCHWATCH_THRESHOLD_RATIO=0.5
        >>> settings = Settings()
        >>> settings.detector_config().threshold_ratio
        0.5

    Environment Variables:
        BENCHWATCH_DATA_PATH: Store document path (default: dev/bench/data.json)
        BENCHWATCH_REPO_URL: Provenance URL of the monitored repository
        BENCHWATCH_LOG_LEVEL: Logging level (default: INFO)
        BENCHWATCH_BASELINE_WINDOW: Baseline window size (default: 5)
        BENCHWATCH_THRESHOLD_RATIO: Regression threshold ratio (default: 0.2)
        BENCHWATCH_SPREAD_METHOD: mean-range or stddev (default: mean-range)
        BENCHWATCH_RETENTION_MAX_ENTRIES: Max entries per tool (optional)
        BENCHWATCH_RETENTION_MAX_AGE_MS: Max entry age in ms (optional)
        BENCHWATCH_PERSIST_TIMEOUT_SECONDS: Persist timeout (default: 30.0)
    """

    model_config = SettingsConfigDict(
        env_prefix="BENCHWATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage settings
    data_path: str = Field(
        default="dev/bench/data.json",
        description="Path of the persisted store document (.json or .js)",
    )
    repo_url: str = Field(
        default="",
        description="Provenance URL of the monitored repository",
    )

    # Detector settings
    baseline_window: int = Field(
        default=5,
        description="Number of historical points in the baseline window",
    )
    threshold_ratio: float = Field(
        default=0.2,
        description="Relative change considered significant",
    )
    spread_method: str = Field(
        default=SpreadMethod.MEAN_RANGE.value,
        description="Baseline spread: mean-range or stddev",
    )
    min_history: int = Field(
        default=2,
        description="Historical points required before comparing",
    )

    # Retention settings
    retention_max_entries: int | None = Field(
        default=None,
        description="Maximum entries kept per tool (None = unbounded)",
    )
    retention_max_age_ms: int | None = Field(
        default=None,
        description="Maximum entry age in milliseconds (None = unbounded)",
    )

    # Persistence settings
    persist_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Timeout for one persist operation in seconds",
    )
    persist_max_retries: int = Field(
        default=3,
        ge=0,
        description="Retries for transient persistence failures",
    )
    persist_retry_delay: float = Field(
        default=0.5,
        ge=0,
        description="Initial backoff delay between persist retries in seconds",
    )

    # General settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {value!r}")
        return level

    def detector_config(self) -> DetectorConfig:
        """Build the validated detector configuration.

        Raises:
            ConfigurationError: If any detector setting is invalid.
        """
        return DetectorConfig(
            baseline_window=self.baseline_window,
            threshold_ratio=self.threshold_ratio,
            spread_method=self.spread_method,  # type: ignore[arg-type]
            min_history=self.min_history,
        )

    def retention_policy(self) -> RetentionPolicy:
        """Build the validated retention policy."""
        return RetentionPolicy(
            max_entries=self.retention_max_entries,
            max_age_ms=self.retention_max_age_ms,
        )
