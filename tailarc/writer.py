from __future__ import annotations

import os
from typing import BinaryIO, Callable, List, Optional

from . import tlv
from .constants import ACCESS_READ, ACCESS_READ_WRITE, BUFFER_SIZE, MODE_CREATE_NEW, MODE_OPEN_EXISTING
from .errors import CompressionMismatchError, ValidationError
from .fileaccess import acquire
from .model import Archive, FileEntry
from .reader import retrieve
from .rle import RleCodec
from .settings import ArchiverSettings
from .trailer import backpatch_header, read_header, reserve_header, write_metadata_block


class ArchiveWriter:
    """Creates archives and appends directory trees to existing ones.

    Every write ends the same way: the metadata block for the whole archive is
    written after the last payload and the 8-byte header is backpatched with
    its offset. Until then the header points at stale (or no) metadata.
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
        self.codec = RleCodec(self.settings.compression_enabled)
        self.progress = progress
        self.warn = warn
        self.last_added: List[FileEntry] = []

    def _report(self, line: str) -> None:
        if self.progress is not None:
            self.progress(line)

    def create(self, source_dir: str, archive_path: str) -> Archive:
        """Pack ``source_dir`` into a new archive at ``archive_path``."""
        if not os.path.isdir(source_dir):
            raise ValidationError(f"The source directory must exist: {source_dir}")
        if os.path.lexists(archive_path):
            raise ValidationError(f"The target archive file cannot be an existing one: {archive_path}")
        archive = Archive.new(self.settings.compression_enabled)
        archive.scan_folders(source_dir)
        archive.scan_files(source_dir)
        with acquire(archive_path, MODE_CREATE_NEW, ACCESS_READ_WRITE, self.policy, warn=self.warn) as fh:
            reserve_header(fh)
            self._write_payloads(fh, archive, 0)
            self._finish(fh, archive)
        return archive

    def append(self, archive_path: str, source_dir: str) -> Archive:
        """Add the files of ``source_dir`` not yet present in the archive.

        Payloads of the new files overwrite the old metadata block, followed by
        a fresh block describing the entire archive.
        """
        if not os.path.isfile(archive_path):
            raise ValidationError(f"The target archive file must exist: {archive_path}")
        if not os.path.isdir(source_dir):
            raise ValidationError(f"The source directory must exist: {source_dir}")
        archive = retrieve(archive_path, self.policy, warn=self.warn)
        if archive.compression_enabled != self.settings.compression_enabled:
            raise CompressionMismatchError(
                "Cannot use a run-length-encoding setting different to the one set in the archive "
                f"(archive: {archive.compression_enabled}, requested: {self.settings.compression_enabled})"
            )
        archive.scan_folders(source_dir)
        start = archive.file_count
        archive.scan_files(source_dir, exclude=archive_path)
        with acquire(archive_path, MODE_OPEN_EXISTING, ACCESS_READ_WRITE, self.policy, warn=self.warn) as fh:
            fh.seek(read_header(fh))
            self._write_payloads(fh, archive, start)
            self._finish(fh, archive)
        return archive

    # internals
    def _write_payloads(self, fh: BinaryIO, archive: Archive, start: int) -> None:
        for index in range(start, archive.file_count):
            entry = archive.files[index]
            if self.codec.enabled:
                self._report(f"Archiving run-length-encoded {entry.source_path} ...")
            else:
                self._report(f"Archiving uncompressed {entry.source_path} ...")
            raw_len, stored_len = self._write_file(fh, entry.source_path)
            archive.record_sizes(index, raw_len, stored_len if self.codec.enabled else 0)
        self.last_added = archive.files[start:]

    def _write_file(self, fh: BinaryIO, fs_path: str):
        raw_len = 0
        stored_len = 0
        with acquire(fs_path, MODE_OPEN_EXISTING, ACCESS_READ, self.policy, warn=self.warn) as src:
            while True:
                buf = src.read(BUFFER_SIZE)
                if not buf:
                    break
                out = self.codec.compress(buf)
                fh.write(out)
                raw_len += len(buf)
                stored_len += len(out)
        return raw_len, stored_len

    def _finish(self, fh: BinaryIO, archive: Archive) -> None:
        meta_offset = write_metadata_block(fh, tlv.dumps_metadata(archive.to_index()))
        fh.truncate()
        backpatch_header(fh, meta_offset)


def create_archive(
    source_dir: str,
    archive_path: str,
    settings: Optional[ArchiverSettings] = None,
    *,
    progress: Optional[Callable[[str], None]] = None,
) -> Archive:
    return ArchiveWriter(settings, progress=progress).create(source_dir, archive_path)


def append_to_archive(
    archive_path: str,
    source_dir: str,
    settings: Optional[ArchiverSettings] = None,
    *,
    progress: Optional[Callable[[str], None]] = None,
) -> Archive:
    return ArchiveWriter(settings, progress=progress).append(archive_path, source_dir)
