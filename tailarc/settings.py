from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from .constants import (
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_WAIT_SECONDS,
    RETRY_ATTEMPTS_MAX,
    RETRY_ATTEMPTS_MIN,
    RETRY_WAIT_MAX,
    RETRY_WAIT_MIN,
)
from .errors import SettingsError
from .fileaccess import RetryPolicy


def _check_range(label: str, value, lo: int, hi: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise SettingsError(f"The {label} must be an integer, got {value!r}")
    if value < lo or value > hi:
        raise SettingsError(f"The {label} must be within {lo} and {hi} (including borders), got {value}")


@dataclass(frozen=True)
class ArchiverSettings:
    """Validated engine configuration.

    Values are checked once, here; an instance that exists is always in range.
    """

    compression_enabled: bool = False
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    retry_wait_seconds: int = DEFAULT_RETRY_WAIT_SECONDS

    def __post_init__(self):
        if not isinstance(self.compression_enabled, bool):
            raise SettingsError(f"compression_enabled must be a bool, got {self.compression_enabled!r}")
        _check_range("number of retry attempts", self.retry_attempts, RETRY_ATTEMPTS_MIN, RETRY_ATTEMPTS_MAX)
        _check_range("wait time between retry attempts", self.retry_wait_seconds, RETRY_WAIT_MIN, RETRY_WAIT_MAX)

    def retry_policy(self, sleep: Optional[Callable[[float], None]] = None) -> RetryPolicy:
        if sleep is None:
            return RetryPolicy(attempts=self.retry_attempts, wait_seconds=self.retry_wait_seconds)
        return RetryPolicy(attempts=self.retry_attempts, wait_seconds=self.retry_wait_seconds, sleep=sleep)
