from __future__ import annotations

from .constants import RLE_MAX_RUN


def encode(data: bytes) -> bytes:
    """Run-length encode ``data`` into ``(count, value)`` byte pairs.

    Runs are capped at 255 repeats; longer runs are split into several pairs.
    Empty input is returned unchanged.
    """
    if not data:
        return bytes(data)
    out = bytearray()
    n = len(data)
    i = 0
    while i < n:
        value = data[i]
        run = 1
        while i + run < n and run < RLE_MAX_RUN and data[i + run] == value:
            run += 1
        out.append(run)
        out.append(value)
        i += run
    return bytes(out)


def decode(pairs: bytes) -> bytes:
    """Expand ``(count, value)`` pairs produced by :func:`encode`.

    Empty or odd-length input yields ``b""`` rather than an error. This mirrors
    the archives written so far; a truncated payload therefore extracts as an
    empty file instead of failing.
    """
    if not pairs or len(pairs) % 2:
        return b""
    out = bytearray()
    for i in range(0, len(pairs), 2):
        out += bytes((pairs[i + 1],)) * pairs[i]
    return bytes(out)


class RleCodec:
    """Per-archive payload codec; identity when compression is disabled."""

    def __init__(self, enabled: bool):
        self.enabled = enabled

    def compress(self, data: bytes) -> bytes:
        if not self.enabled:
            return data
        return encode(data)

    def decompress(self, data: bytes) -> bytes:
        if not self.enabled:
            return data
        return decode(data)
