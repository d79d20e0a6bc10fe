from __future__ import annotations

import hashlib
import os
from typing import BinaryIO

from .constants import HEADER_SIZE, HEADER_STRUCT, MAX_META_PAYLOAD, META_FRAME_STRUCT, META_MAGIC
from .errors import CorruptArchiveError


def reserve_header(fh: BinaryIO) -> None:
    """Write a zeroed header; the real offset is backpatched on finish."""
    fh.seek(0)
    fh.write(HEADER_STRUCT.pack(0))


def read_header(fh: BinaryIO) -> int:
    fh.seek(0)
    raw = fh.read(HEADER_SIZE)
    if len(raw) != HEADER_SIZE:
        raise CorruptArchiveError("Archive too short to contain a header")
    (offset,) = HEADER_STRUCT.unpack(raw)
    return offset


def backpatch_header(fh: BinaryIO, meta_offset: int) -> None:
    fh.seek(0)
    fh.write(HEADER_STRUCT.pack(meta_offset))
    fh.flush()
    os.fsync(fh.fileno())


def write_metadata_block(fh: BinaryIO, payload: bytes) -> int:
    """Write a framed metadata block at the current position.

    Frame: magic[8] || payload_len u64 || blake2s-256(payload) || payload.

    Returns:
        The absolute offset the block starts at.
    """
    meta_offset = fh.tell()
    digest = hashlib.blake2s(payload, digest_size=32).digest()
    fh.write(META_FRAME_STRUCT.pack(META_MAGIC, len(payload), digest))
    fh.write(payload)
    return meta_offset


def read_metadata_block(fh: BinaryIO, meta_offset: int) -> bytes:
    """Read and check the framed metadata block at ``meta_offset``."""
    size = os.fstat(fh.fileno()).st_size
    if meta_offset < HEADER_SIZE or meta_offset + META_FRAME_STRUCT.size > size:
        raise CorruptArchiveError(f"Metadata offset {meta_offset} out of range (archive size {size})")
    fh.seek(meta_offset)
    magic, payload_len, digest = META_FRAME_STRUCT.unpack(fh.read(META_FRAME_STRUCT.size))
    if magic != META_MAGIC:
        raise CorruptArchiveError("Bad metadata block magic")
    if payload_len > MAX_META_PAYLOAD:
        raise CorruptArchiveError("Metadata block size exceeds safety bound")
    payload = fh.read(payload_len)
    if len(payload) != payload_len:
        raise CorruptArchiveError("Metadata block truncated")
    if hashlib.blake2s(payload, digest_size=32).digest() != digest:
        raise CorruptArchiveError("Metadata block hash mismatch")
    return payload
