from __future__ import annotations

import contextlib
import os
import sys
import time
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Optional

from .constants import (
    ACCESS_READ,
    ACCESS_READ_WRITE,
    ACCESS_WRITE,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_WAIT_SECONDS,
    MODE_CREATE_NEW,
    MODE_OPEN_EXISTING,
)
from .errors import ArchiveIOError, SettingsError, ValidationError

try:
    import fcntl
except ImportError:  # pragma: no cover
    fcntl = None


# (mode, access) -> builtin open() mode; nothing here truncates an existing file
_OPEN_MODES = {
    (MODE_CREATE_NEW, ACCESS_WRITE): "xb",
    (MODE_CREATE_NEW, ACCESS_READ_WRITE): "xb+",
    (MODE_OPEN_EXISTING, ACCESS_READ): "rb",
    (MODE_OPEN_EXISTING, ACCESS_WRITE): "rb+",
    (MODE_OPEN_EXISTING, ACCESS_READ_WRITE): "rb+",
}

_MODE_VERBS = {
    MODE_CREATE_NEW: "create",
    MODE_OPEN_EXISTING: "open",
}


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with a fixed wait between attempts.

    ``attempts`` is the total number of open attempts. ``sleep`` is called with
    ``wait_seconds`` between two attempts and can be replaced in tests.
    """

    attempts: int = DEFAULT_RETRY_ATTEMPTS
    wait_seconds: int = DEFAULT_RETRY_WAIT_SECONDS
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    def __post_init__(self):
        if self.attempts < 1:
            raise SettingsError("Retry policy needs at least one attempt")
        if isinstance(self.wait_seconds, bool) or not isinstance(self.wait_seconds, int):
            raise SettingsError(f"Retry wait must be a whole number of seconds, got {self.wait_seconds!r}")
        if self.wait_seconds < 0:
            raise SettingsError("Retry wait cannot be negative")


def print_warning(message: str) -> None:
    print(f"Warning: {message}", file=sys.stderr)


def _open_exclusive(path: str, open_mode: str) -> BinaryIO:
    fh = open(path, open_mode)
    if fcntl is None:
        return fh
    try:
        fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        fh.close()
        if open_mode.startswith("x"):
            # we created it; leave nothing behind for the next attempt
            with contextlib.suppress(OSError):
                os.remove(path)
        raise
    return fh


def acquire(
    path: str,
    mode: str,
    access: str,
    policy: Optional[RetryPolicy] = None,
    *,
    warn: Optional[Callable[[str], None]] = None,
) -> BinaryIO:
    """Open ``path`` exclusively, retrying failed attempts per ``policy``.

    Args:
        path: File to open.
        mode: ``create_new`` or ``open_existing``.
        access: ``read``, ``write`` or ``read_write``.
        policy: Retry policy; defaults to a single attempt.
        warn: Receives one line per failed attempt (stderr by default).

    Returns:
        A binary file object holding an exclusive lock until closed.

    Raises:
        ValidationError: If the mode/access combination is not supported.
        ArchiveIOError: If every attempt failed.
    """
    try:
        open_mode = _OPEN_MODES[(mode, access)]
    except KeyError:
        raise ValidationError(f"Unsupported open request: mode={mode} access={access}") from None
    policy = policy or RetryPolicy()
    warn = warn or print_warning
    verb = _MODE_VERBS[mode]
    last_exc: Optional[OSError] = None
    for attempt in range(1, policy.attempts + 1):
        try:
            return _open_exclusive(path, open_mode)
        except OSError as exc:
            last_exc = exc
            msg = f"Failed to {verb} file {path} (attempt {attempt}/{policy.attempts}): {exc}"
            if attempt < policy.attempts:
                msg += f"; waiting {policy.wait_seconds} second(s) until next attempt"
            warn(msg)
            if attempt < policy.attempts:
                policy.sleep(policy.wait_seconds)
    raise ArchiveIOError(f"Could not {verb} ({access}) using the path: {path}") from last_exc
