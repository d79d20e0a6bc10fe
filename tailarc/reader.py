from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import BinaryIO, Callable, List, Optional, Tuple

from . import tlv
from .constants import ACCESS_READ, ACCESS_WRITE, BUFFER_SIZE, HEADER_SIZE, MODE_CREATE_NEW, MODE_OPEN_EXISTING
from .errors import CorruptArchiveError, FormatError, ValidationError
from .fileaccess import RetryPolicy, acquire
from .model import Archive, FileEntry
from .pathutil import destination_path
from .rle import RleCodec
from .settings import ArchiverSettings
from .trailer import read_header, read_metadata_block


@dataclass(frozen=True)
class FileInfo:
    name: str
    relative_path: str
    uncompressed_size: int
    compressed_size: Optional[int]


@dataclass(frozen=True)
class ArchiveInfo:
    creation_date: datetime
    compression_enabled: bool
    file_count: int
    total_stored_size: int
    files: Tuple[FileInfo, ...]


@dataclass
class ExtractResult:
    extracted: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def retrieve(
    archive_path: str,
    policy: Optional[RetryPolicy] = None,
    *,
    warn: Optional[Callable[[str], None]] = None,
) -> Archive:
    """Load the metadata of an existing archive without modifying it.

    Raises:
        CorruptArchiveError: If the file is missing, shorter than the header,
            or the bytes at the recorded offset are not a valid metadata block.
        ArchiveIOError: If the file could not be opened after all retries.
    """
    if not os.path.isfile(archive_path):
        raise CorruptArchiveError(f"Failed to load archive, no such file: {archive_path}")
    with acquire(archive_path, MODE_OPEN_EXISTING, ACCESS_READ, policy, warn=warn) as fh:
        try:
            meta_offset = read_header(fh)
            payload = read_metadata_block(fh, meta_offset)
            archive = Archive.from_index(tlv.loads_metadata(payload))
        except CorruptArchiveError:
            raise
        except (FormatError, ValueError, KeyError) as exc:
            raise CorruptArchiveError(
                f"Failed to load archive, perhaps the given file is corrupted: {archive_path} ({exc})"
            ) from exc
    if HEADER_SIZE + archive.total_stored_size > meta_offset:
        raise CorruptArchiveError(
            f"Recorded payload size exceeds payload region of {archive_path}"
        )
    return archive


def info(archive: Archive) -> ArchiveInfo:
    return ArchiveInfo(
        creation_date=archive.creation_date,
        compression_enabled=archive.compression_enabled,
        file_count=archive.file_count,
        total_stored_size=archive.total_stored_size,
        files=tuple(
            FileInfo(
                name=e.name,
                relative_path=e.relative_path,
                uncompressed_size=e.uncompressed_size,
                compressed_size=e.compressed_size if archive.compression_enabled else None,
            )
            for e in archive.files
        ),
    )


def list_names(archive: Archive) -> List[str]:
    return [e.name for e in archive.files]


def _read_exact(fh: BinaryIO, n: int) -> bytes:
    b = fh.read(n)
    if len(b) != n:
        raise CorruptArchiveError("Unexpected end of archive payload")
    return b


def _copy_payload(src: BinaryIO, dst: BinaryIO, stored: int, codec: RleCodec) -> None:
    # BUFFER_SIZE is even, so every RLE buffer ends on a pair boundary
    remaining = stored
    while remaining > 0:
        chunk = _read_exact(src, min(BUFFER_SIZE, remaining))
        dst.write(codec.decompress(chunk))
        remaining -= len(chunk)


class ArchiveReader:
    """Sequential reader for tailarc archives.

    There is no offset table: payloads are read strictly in the order of
    ``Archive.files``, each for exactly its stored size.
    """

    def __init__(
        self,
        settings: Optional[ArchiverSettings] = None,
        *,
        progress: Optional[Callable[[str], None]] = None,
        warn: Optional[Callable[[str], None]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.settings = settings or ArchiverSettings()
        self.policy = self.settings.retry_policy(sleep=sleep)
        self.progress = progress
        self.warn = warn

    def _report(self, line: str) -> None:
        if self.progress is not None:
            self.progress(line)

    def retrieve(self, archive_path: str) -> Archive:
        return retrieve(archive_path, self.policy, warn=self.warn)

    def extract(self, archive_path: str, destination_dir: str) -> ExtractResult:
        """Recreate the archived files below ``destination_dir``.

        Existing destination files are never overwritten; their payload is
        skipped so the following entries stay aligned. Recorded folders are
        not recreated.
        """
        if not os.path.isfile(archive_path):
            raise ValidationError(f"The archive file must exist to extract its content: {archive_path}")
        archive = self.retrieve(archive_path)
        codec = RleCodec(archive.compression_enabled)
        dest_root = os.path.abspath(destination_dir)
        result = ExtractResult()
        with acquire(archive_path, MODE_OPEN_EXISTING, ACCESS_READ, self.policy, warn=self.warn) as fh:
            fh.seek(HEADER_SIZE)
            for entry in archive.files:
                self._extract_entry(fh, archive, entry, dest_root, codec, result)
        return result

    def _extract_entry(
        self,
        fh: BinaryIO,
        archive: Archive,
        entry: FileEntry,
        dest_root: str,
        codec: RleCodec,
        result: ExtractResult,
    ) -> None:
        stored = archive.stored_size(entry)
        try:
            dst = destination_path(dest_root, entry.relative_path)
        except ValueError as exc:
            raise FormatError(f"Unsafe path in archive: {entry.relative_path!r}") from exc
        if os.path.lexists(dst):
            self._report(f"Skipping {entry.name} (exists)")
            fh.seek(stored, os.SEEK_CUR)
            result.skipped.append(entry.relative_path)
            return
        self._report(f"Extracting {entry.name} ...")
        os.makedirs(os.path.dirname(dst), exist_ok=True)
        with acquire(dst, MODE_CREATE_NEW, ACCESS_WRITE, self.policy, warn=self.warn) as out:
            _copy_payload(fh, out, stored, codec)
        result.extracted.append(entry.relative_path)


def extract_archive(
    archive_path: str,
    destination_dir: str,
    settings: Optional[ArchiverSettings] = None,
    *,
    progress: Optional[Callable[[str], None]] = None,
) -> ExtractResult:
    return ArchiveReader(settings, progress=progress).extract(archive_path, destination_dir)
