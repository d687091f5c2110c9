"""
Runtime configuration, error types and logging setup.

Configuration is an explicit value object passed into the retrieval and
reconciliation calls; nothing reads the environment behind the caller's back.

Environment variables (all optional):
    SCRAPE_CONCURRENCY      parallel catalog fetches (default 6, must be >= 1)
    WEIGHT_TOL_PCT          allowed weight deviation in percent (default 0 = exact)
    FETCH_TIMEOUT_SECONDS   HTTP timeout of the default fetcher (default 20)
    LOG_LEVEL               logging level name (default INFO)
"""

import logging
import math
import os
from dataclasses import dataclass, replace
from typing import Optional

DEFAULT_CONCURRENCY = 6
DEFAULT_WEIGHT_TOLERANCE_PCT = 0.0
DEFAULT_FETCH_TIMEOUT_SECONDS = 20.0
DEFAULT_LOG_LEVEL = 'INFO'

ENV_CONCURRENCY = 'SCRAPE_CONCURRENCY'
ENV_WEIGHT_TOLERANCE = 'WEIGHT_TOL_PCT'
ENV_FETCH_TIMEOUT = 'FETCH_TIMEOUT_SECONDS'
ENV_LOG_LEVEL = 'LOG_LEVEL'


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ReconcileError(RuntimeError):
    """Base class for errors raised by the reconciliation tool."""


class ConfigurationError(ReconcileError):
    """Raised when configuration values are invalid."""


class InvalidProductKeyError(ReconcileError, ValueError):
    """Raised when a product key does not carry the required prefix."""

    def __init__(self, key: str, prefix: str) -> None:
        super().__init__(f"Only {prefix} article numbers are allowed, got {key!r}")
        self.key = key
        self.prefix = prefix


class WorkbookLoadError(ReconcileError):
    """Raised when an uploaded workbook cannot be read."""


class FetchError(ReconcileError):
    """Raised by a fetch capability when a product page cannot be retrieved."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def _env_value(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _validate_concurrency(value) -> int:
    try:
        concurrency = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Concurrency must be an integer, got {value!r}") from None
    if concurrency < 1 or concurrency != float(value):
        raise ConfigurationError(f"Concurrency must be a positive integer, got {value!r}")
    return concurrency


def _validate_non_negative(value, label: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{label} must be a number, got {value!r}") from None
    if not math.isfinite(number):
        raise ConfigurationError(f"{label} must be a finite number, got {value!r}")
    if number < 0:
        raise ConfigurationError(f"{label} must not be negative, got {value!r}")
    return number


@dataclass(frozen=True)
class ReconcileConfig:
    """Settings for one reconciliation run."""

    concurrency: int = DEFAULT_CONCURRENCY
    weight_tolerance_pct: float = DEFAULT_WEIGHT_TOLERANCE_PCT
    fetch_timeout_seconds: float = DEFAULT_FETCH_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        object.__setattr__(self, 'concurrency', _validate_concurrency(self.concurrency))
        object.__setattr__(
            self, 'weight_tolerance_pct',
            _validate_non_negative(self.weight_tolerance_pct, 'Weight tolerance'),
        )
        timeout = _validate_non_negative(self.fetch_timeout_seconds, 'Fetch timeout')
        if timeout == 0:
            raise ConfigurationError("Fetch timeout must be greater than zero")
        object.__setattr__(self, 'fetch_timeout_seconds', timeout)

    @classmethod
    def from_environment(cls) -> 'ReconcileConfig':
        """Build a config from the environment; unset or blank variables use the defaults."""
        concurrency = _env_value(ENV_CONCURRENCY)
        tolerance = _env_value(ENV_WEIGHT_TOLERANCE)
        timeout = _env_value(ENV_FETCH_TIMEOUT)
        return cls(
            concurrency=concurrency if concurrency is not None else DEFAULT_CONCURRENCY,
            weight_tolerance_pct=tolerance if tolerance is not None else DEFAULT_WEIGHT_TOLERANCE_PCT,
            fetch_timeout_seconds=timeout if timeout is not None else DEFAULT_FETCH_TIMEOUT_SECONDS,
        )

    def with_overrides(
        self,
        concurrency: Optional[int] = None,
        weight_tolerance_pct: Optional[float] = None,
    ) -> 'ReconcileConfig':
        """Return a copy with request-time values applied (None keeps the current value)."""
        changes = {}
        if concurrency is not None:
            changes['concurrency'] = concurrency
        if weight_tolerance_pct is not None:
            changes['weight_tolerance_pct'] = weight_tolerance_pct
        return replace(self, **changes)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

def log_level_from_environment() -> int:
    name = (_env_value(ENV_LOG_LEVEL) or DEFAULT_LOG_LEVEL).upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        raise ConfigurationError(f"Unknown log level {name!r}")
    return level


def configure_logging(*, level: Optional[int] = None, force: bool = False) -> None:
    """Initialise the root logger once.

    The level defaults to LOG_LEVEL from the environment (INFO if unset). Pass
    ``force=True`` to reconfigure, e.g. on a Streamlit rerun with a new level.
    """
    logging.basicConfig(
        level=level if level is not None else log_level_from_environment(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
