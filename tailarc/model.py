from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from .errors import ValidationError
from .pathutil import norm_path, relative_archive_path


@dataclass(frozen=True)
class FileEntry:
    name: str
    relative_path: str
    uncompressed_size: int = 0
    compressed_size: int = 0
    # filesystem source during create/append; never persisted
    source_path: Optional[str] = field(default=None, compare=False)

    def __post_init__(self):
        if not self.name:
            raise ValidationError("File entry name cannot be empty")
        if not self.relative_path:
            raise ValidationError("File entry relative path cannot be empty")
        if self.uncompressed_size < 0 or self.compressed_size < 0:
            raise ValidationError(f"Negative size for {self.relative_path}")

    @classmethod
    def from_source(cls, fs_path: str, root: str) -> "FileEntry":
        return cls(
            name=os.path.basename(fs_path),
            relative_path=relative_archive_path(fs_path, root),
            uncompressed_size=os.path.getsize(fs_path),
            source_path=fs_path,
        )


def _walk_sorted(root: str):
    for cur, dirnames, filenames in os.walk(root):
        # deterministic order; never descend into symlinked directories
        dirnames[:] = sorted(d for d in dirnames if not os.path.islink(os.path.join(cur, d)))
        filenames.sort()
        yield cur, dirnames, filenames


@dataclass
class Archive:
    """Bookkeeping of one container: settings, folders and the ordered file list.

    ``files`` is the single source of payload order. The writer streams
    payloads in this order and the reader consumes them in this order, so
    entries are only ever appended through :meth:`add_file`.
    """

    creation_date: datetime
    compression_enabled: bool = False
    folders: List[str] = field(default_factory=list)
    files: List[FileEntry] = field(default_factory=list)
    _paths: Set[str] = field(default_factory=set, init=False, repr=False, compare=False)
    _folder_set: Set[str] = field(default_factory=set, init=False, repr=False, compare=False)

    def __post_init__(self):
        self._folder_set.update(self.folders)
        for e in self.files:
            if e.relative_path in self._paths:
                raise ValidationError(f"Duplicate relative path: {e.relative_path}")
            self._paths.add(e.relative_path)

    @classmethod
    def new(cls, compression_enabled: bool) -> "Archive":
        return cls(creation_date=datetime.now(timezone.utc), compression_enabled=compression_enabled)

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def total_stored_size(self) -> int:
        return sum(self.stored_size(e) for e in self.files)

    def stored_size(self, entry: FileEntry) -> int:
        return entry.compressed_size if self.compression_enabled else entry.uncompressed_size

    def contains(self, relative_path: str) -> bool:
        return relative_path in self._paths

    def add_folder(self, relative_path: str) -> bool:
        if relative_path in self._folder_set:
            return False
        self._folder_set.add(relative_path)
        self.folders.append(relative_path)
        return True

    def add_file(self, entry: FileEntry) -> bool:
        """Append ``entry`` unless its relative path is already present."""
        if entry.relative_path in self._paths:
            return False
        self._paths.add(entry.relative_path)
        self.files.append(entry)
        return True

    def record_sizes(self, index: int, uncompressed_size: int, compressed_size: int) -> FileEntry:
        """Replace entry ``index`` with the sizes observed while streaming it."""
        entry = replace(self.files[index], uncompressed_size=uncompressed_size, compressed_size=compressed_size)
        self.files[index] = entry
        return entry

    def scan_folders(self, source_dir: str) -> List[str]:
        """Record every subdirectory of ``source_dir``; returns the new ones."""
        added: List[str] = []
        for cur, dirnames, _ in _walk_sorted(source_dir):
            for d in dirnames:
                rel = relative_archive_path(os.path.join(cur, d), source_dir)
                if self.add_folder(rel):
                    added.append(rel)
        return added

    def scan_files(self, source_dir: str, *, exclude: Optional[str] = None) -> List[FileEntry]:
        """Record every regular file below ``source_dir``; returns the new ones.

        ``exclude`` names a file to leave out (the archive itself when it lives
        inside the source tree).
        """
        skip = os.path.realpath(exclude) if exclude else None
        added: List[FileEntry] = []
        for cur, _, filenames in _walk_sorted(source_dir):
            for f in filenames:
                full = os.path.join(cur, f)
                if not os.path.isfile(full):
                    continue
                if skip is not None and os.path.realpath(full) == skip:
                    continue
                entry = FileEntry.from_source(full, source_dir)
                if self.add_file(entry):
                    added.append(entry)
        return added

    # persisted form, see tlv.dumps_metadata
    def to_index(self) -> Dict:
        ts = self.creation_date.astimezone(timezone.utc)
        sec = int(ts.replace(microsecond=0).timestamp())
        return {
            "created": {"sec": sec, "nsec": ts.microsecond * 1000},
            "compression_enabled": self.compression_enabled,
            "file_count": self.file_count,
            "total_stored_size": self.total_stored_size,
            "folders": list(self.folders),
            "files": [
                {
                    "name": e.name,
                    "relative_path": e.relative_path,
                    "uncompressed_size": e.uncompressed_size,
                    "compressed_size": e.compressed_size,
                }
                for e in self.files
            ],
        }

    @classmethod
    def from_index(cls, idx: Dict) -> "Archive":
        created = idx.get("created")
        if not created:
            raise ValueError("Metadata has no creation date")
        try:
            creation_date = datetime.fromtimestamp(created["sec"], tz=timezone.utc)
        except (OverflowError, OSError) as exc:
            raise ValueError(f"Creation date out of range: {exc}") from exc
        creation_date = creation_date.replace(microsecond=created.get("nsec", 0) // 1000)
        files = [
            FileEntry(
                name=f["name"],
                relative_path=norm_path(f["relative_path"]),
                uncompressed_size=f.get("uncompressed_size", 0),
                compressed_size=f.get("compressed_size", 0),
            )
            for f in idx.get("files", [])
        ]
        archive = cls(
            creation_date=creation_date,
            compression_enabled=bool(idx.get("compression_enabled", False)),
            folders=[norm_path(p) for p in idx.get("folders", [])],
            files=files,
        )
        if idx.get("file_count", 0) != archive.file_count:
            raise ValueError("Metadata file count does not match its file list")
        if idx.get("total_stored_size", 0) != archive.total_stored_size:
            raise ValueError("Metadata total size does not match its file list")
        return archive
