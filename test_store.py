from __future__ import annotations

import hashlib
import os
import tempfile
import unittest
from pathlib import Path

from tailarc import tlv
from tailarc.constants import (
    ACCESS_READ_WRITE,
    HEADER_SIZE,
    HEADER_STRUCT,
    META_FRAME_STRUCT,
    META_MAGIC,
    MODE_OPEN_EXISTING,
)
from tailarc.errors import CompressionMismatchError, CorruptArchiveError, ValidationError
from tailarc.fileaccess import acquire
from tailarc.model import Archive
from tailarc.reader import ArchiveReader, extract_archive, info, list_names, retrieve
from tailarc.settings import ArchiverSettings
from tailarc.writer import ArchiveWriter, append_to_archive, create_archive


def _create_sample_files(base: Path) -> Path:
    src = base / "src"
    (src / "docs").mkdir(parents=True)
    (src / "docs" / "a.txt").write_text("hello world\n" * 50, encoding="utf-8")
    (src / "docs" / "b.bin").write_bytes(os.urandom(4096))
    (src / "notes.md").write_text("# Title\nSome content\n", encoding="utf-8")
    (src / "empty").mkdir()
    return src


def _header_offset(path: Path) -> int:
    with open(path, "rb") as f:
        (off,) = HEADER_STRUCT.unpack(f.read(HEADER_SIZE))
    return off


class ArchiveStoreTests(unittest.TestCase):
    def run_with_tmpdir(self, func):
        with tempfile.TemporaryDirectory() as tmp:
            func(Path(tmp))

    def assert_released(self, path: Path):
        # an exclusive lock only succeeds once every earlier handle is closed
        with acquire(str(path), MODE_OPEN_EXISTING, ACCESS_READ_WRITE, warn=self.fail):
            pass

    def test_create_and_retrieve_plain(self):
        def scenario(tmp_path: Path):
            src = _create_sample_files(tmp_path)
            arc = tmp_path / "out.tar1"
            lines = []
            created = ArchiveWriter(progress=lines.append).create(str(src), str(arc))
            self.assertEqual(created.file_count, 3)
            self.assertEqual(created.total_stored_size, 600 + 4096 + 21)
            self.assertEqual(len(lines), 3)
            self.assertTrue(all(line.startswith("Archiving uncompressed ") for line in lines))

            loaded = retrieve(str(arc))
            self.assertFalse(loaded.compression_enabled)
            self.assertEqual(loaded.file_count, 3)
            self.assertEqual(loaded.total_stored_size, created.total_stored_size)
            self.assertEqual([f.relative_path for f in loaded.files], ["notes.md", "docs/a.txt", "docs/b.bin"])
            self.assertEqual(sorted(loaded.folders), ["docs", "empty"])
            self.assertTrue(all(f.compressed_size == 0 for f in loaded.files))
            self.assertEqual(_header_offset(arc), HEADER_SIZE + loaded.total_stored_size)

        self.run_with_tmpdir(scenario)

    def test_rle_end_to_end_layout(self):
        def scenario(tmp_path: Path):
            src = tmp_path / "src"
            (src / "sub").mkdir(parents=True)
            (src / "a.txt").write_bytes(b"AAAABBB")
            arc = tmp_path / "x.arc"
            ArchiveWriter(ArchiverSettings(compression_enabled=True)).create(str(src), str(arc))

            raw = arc.read_bytes()
            self.assertEqual(raw[HEADER_SIZE:HEADER_SIZE + 4], bytes([4, 65, 3, 66]))
            self.assertEqual(_header_offset(arc), HEADER_SIZE + 4)
            self.assertEqual(raw[HEADER_SIZE + 4:HEADER_SIZE + 12], META_MAGIC)

            loaded = retrieve(str(arc))
            self.assertTrue(loaded.compression_enabled)
            self.assertEqual(loaded.file_count, 1)
            self.assertEqual(loaded.total_stored_size, 4)
            self.assertEqual(loaded.folders, ["sub"])
            entry = loaded.files[0]
            self.assertEqual((entry.name, entry.uncompressed_size, entry.compressed_size), ("a.txt", 7, 4))

            out = tmp_path / "out"
            res = ArchiveReader().extract(str(arc), str(out))
            self.assertEqual(res.extracted, ["a.txt"])
            self.assertEqual((out / "a.txt").read_bytes(), b"AAAABBB")
            self.assertFalse((out / "sub").exists())

        self.run_with_tmpdir(scenario)

    def test_rle_roundtrip_long_runs_and_random(self):
        def scenario(tmp_path: Path):
            src = tmp_path / "src"
            (src / "deep" / "er").mkdir(parents=True)
            runs = b"\x00" * 20000 + b"\x01" * 300 + b"xyz" * 1000
            noise = os.urandom(9000)
            (src / "deep" / "runs.bin").write_bytes(runs)
            (src / "deep" / "er" / "noise.bin").write_bytes(noise)
            (src / "empty.txt").write_bytes(b"")
            arc = tmp_path / "r.arc"
            created = ArchiveWriter(ArchiverSettings(compression_enabled=True)).create(str(src), str(arc))
            by_path = {f.relative_path: f for f in created.files}
            self.assertLess(by_path["deep/runs.bin"].compressed_size, len(runs))
            self.assertEqual(by_path["deep/er/noise.bin"].uncompressed_size, len(noise))
            self.assertEqual(by_path["empty.txt"].compressed_size, 0)

            out = tmp_path / "out"
            ArchiveReader().extract(str(arc), str(out))
            self.assertEqual((out / "deep" / "runs.bin").read_bytes(), runs)
            self.assertEqual((out / "deep" / "er" / "noise.bin").read_bytes(), noise)
            self.assertEqual((out / "empty.txt").read_bytes(), b"")

        self.run_with_tmpdir(scenario)

    def test_empty_source_directory(self):
        def scenario(tmp_path: Path):
            src = tmp_path / "src"
            src.mkdir()
            arc = tmp_path / "e.arc"
            ArchiveWriter().create(str(src), str(arc))
            loaded = retrieve(str(arc))
            self.assertEqual(loaded.file_count, 0)
            self.assertEqual(loaded.total_stored_size, 0)
            self.assertEqual(_header_offset(arc), HEADER_SIZE)

        self.run_with_tmpdir(scenario)

    def test_create_preconditions(self):
        def scenario(tmp_path: Path):
            src = _create_sample_files(tmp_path)
            existing = tmp_path / "exists.arc"
            existing.write_bytes(b"keep")
            with self.assertRaises(ValidationError):
                ArchiveWriter().create(str(src), str(existing))
            self.assertEqual(existing.read_bytes(), b"keep")
            with self.assertRaises(ValidationError):
                ArchiveWriter().create(str(tmp_path / "nope"), str(tmp_path / "new.arc"))
            self.assertFalse((tmp_path / "new.arc").exists())

        self.run_with_tmpdir(scenario)

    def test_append_adds_only_new_files(self):
        def scenario(tmp_path: Path):
            src = _create_sample_files(tmp_path)
            arc = tmp_path / "a.arc"
            writer = ArchiveWriter(ArchiverSettings(compression_enabled=True))
            writer.create(str(src), str(arc))

            extra = tmp_path / "extra"
            (extra / "docs").mkdir(parents=True)
            (extra / "docs" / "a.txt").write_text("different content", encoding="utf-8")
            (extra / "docs" / "c.txt").write_bytes(b"C" * 1000)
            (extra / "fresh").mkdir()

            updated = writer.append(str(arc), str(extra))
            self.assertEqual([e.relative_path for e in writer.last_added], ["docs/c.txt"])
            self.assertEqual(updated.file_count, 4)
            self.assertIn("fresh", updated.folders)

            loaded = retrieve(str(arc))
            self.assertEqual(loaded.file_count, 4)
            self.assertEqual(_header_offset(arc), HEADER_SIZE + loaded.total_stored_size)

            # nothing new the second time
            size_before = arc.stat().st_size
            again = writer.append(str(arc), str(extra))
            self.assertEqual(writer.last_added, [])
            self.assertEqual(again.file_count, 4)
            self.assertEqual(arc.stat().st_size, size_before)

            out = tmp_path / "out"
            ArchiveReader().extract(str(arc), str(out))
            self.assertEqual((out / "docs" / "a.txt").read_text(encoding="utf-8"), "hello world\n" * 50)
            self.assertEqual((out / "docs" / "c.txt").read_bytes(), b"C" * 1000)
            self.assertEqual((out / "docs" / "b.bin").read_bytes(), (src / "docs" / "b.bin").read_bytes())

        self.run_with_tmpdir(scenario)

    def test_append_skips_archive_inside_source(self):
        def scenario(tmp_path: Path):
            src = tmp_path / "src"
            src.mkdir()
            (src / "one.txt").write_bytes(b"1")
            arc = tmp_path / "a.arc"
            ArchiveWriter().create(str(src), str(arc))
            inner = src / "self.arc"
            os.replace(arc, inner)
            (src / "two.txt").write_bytes(b"22")
            ArchiveWriter().append(str(inner), str(src))
            self.assertEqual(list_names(retrieve(str(inner))), ["one.txt", "two.txt"])

        self.run_with_tmpdir(scenario)

    def test_append_compression_mismatch_leaves_file_untouched(self):
        def scenario(tmp_path: Path):
            src = _create_sample_files(tmp_path)
            arc = tmp_path / "m.arc"
            ArchiveWriter().create(str(src), str(arc))
            before = arc.read_bytes()
            extra = tmp_path / "extra"
            extra.mkdir()
            (extra / "new.txt").write_bytes(b"new")
            with self.assertRaises(CompressionMismatchError):
                ArchiveWriter(ArchiverSettings(compression_enabled=True)).append(str(arc), str(extra))
            self.assertEqual(arc.read_bytes(), before)

        self.run_with_tmpdir(scenario)

    def test_extract_skips_existing_and_keeps_alignment(self):
        def scenario(tmp_path: Path):
            src = tmp_path / "src"
            src.mkdir()
            (src / "a.txt").write_bytes(b"a" * 100)
            (src / "b.txt").write_bytes(b"bb" * 70)
            (src / "c.txt").write_bytes(b"cdef" * 9)
            for rle in (False, True):
                arc = tmp_path / f"s{int(rle)}.arc"
                ArchiveWriter(ArchiverSettings(compression_enabled=rle)).create(str(src), str(arc))
                out = tmp_path / f"out{int(rle)}"
                out.mkdir()
                (out / "a.txt").write_bytes(b"local")
                lines = []
                res = ArchiveReader(progress=lines.append).extract(str(arc), str(out))
                self.assertEqual(res.skipped, ["a.txt"])
                self.assertEqual(res.extracted, ["b.txt", "c.txt"])
                self.assertEqual(lines[0], "Skipping a.txt (exists)")
                self.assertEqual((out / "a.txt").read_bytes(), b"local")
                self.assertEqual((out / "b.txt").read_bytes(), b"bb" * 70)
                self.assertEqual((out / "c.txt").read_bytes(), b"cdef" * 9)

        self.run_with_tmpdir(scenario)

    def test_extract_requires_existing_archive(self):
        def scenario(tmp_path: Path):
            with self.assertRaises(ValidationError):
                ArchiveReader().extract(str(tmp_path / "missing.arc"), str(tmp_path / "out"))

        self.run_with_tmpdir(scenario)

    def test_retrieve_detects_corruption(self):
        def scenario(tmp_path: Path):
            src = _create_sample_files(tmp_path)
            arc = tmp_path / "c.arc"
            ArchiveWriter().create(str(src), str(arc))
            good = arc.read_bytes()
            off = _header_offset(arc)

            with self.assertRaises(CorruptArchiveError):
                retrieve(str(tmp_path / "missing.arc"))

            short = tmp_path / "short.arc"
            short.write_bytes(b"\x01\x02\x03")
            with self.assertRaises(CorruptArchiveError):
                retrieve(str(short))
            self.assert_released(short)

            bad_header = tmp_path / "bad_header.arc"
            bad_header.write_bytes(HEADER_STRUCT.pack(len(good) + 1000) + good[HEADER_SIZE:])
            with self.assertRaises(CorruptArchiveError):
                retrieve(str(bad_header))
            self.assert_released(bad_header)

            bad_magic = tmp_path / "bad_magic.arc"
            bad_magic.write_bytes(good[:off] + b"GARBAGE!" + good[off + 8:])
            with self.assertRaises(CorruptArchiveError):
                retrieve(str(bad_magic))
            self.assert_released(bad_magic)

            flipped = bytearray(good)
            flipped[-1] ^= 0xFF
            bad_digest = tmp_path / "bad_digest.arc"
            bad_digest.write_bytes(bytes(flipped))
            with self.assertRaises(CorruptArchiveError):
                retrieve(str(bad_digest))
            self.assert_released(bad_digest)

            truncated = tmp_path / "truncated.arc"
            truncated.write_bytes(good[:-5])
            with self.assertRaises(CorruptArchiveError):
                retrieve(str(truncated))
            self.assert_released(truncated)

        self.run_with_tmpdir(scenario)

    def test_retrieve_rejects_inconsistent_metadata(self):
        def scenario(tmp_path: Path):
            src = tmp_path / "src"
            src.mkdir()
            (src / "f.txt").write_bytes(b"0123456789")
            arc = tmp_path / "i.arc"
            archive = ArchiveWriter().create(str(src), str(arc))

            # metadata claiming more payload bytes than the region holds
            idx = archive.to_index()
            idx["files"][0]["uncompressed_size"] = 11
            idx["total_stored_size"] = 11
            payload = tlv.dumps_metadata(idx)
            frame = META_FRAME_STRUCT.pack(META_MAGIC, len(payload), hashlib.blake2s(payload).digest())
            raw = arc.read_bytes()
            off = _header_offset(arc)
            arc.write_bytes(raw[:off] + frame + payload)
            with self.assertRaises(CorruptArchiveError):
                retrieve(str(arc))
            self.assert_released(arc)

        self.run_with_tmpdir(scenario)

    def test_info_and_list_projections(self):
        def scenario(tmp_path: Path):
            src = tmp_path / "src"
            (src / "d").mkdir(parents=True)
            (src / "top.txt").write_bytes(b"zzzzzzzz")
            (src / "d" / "inner.txt").write_bytes(b"ab")
            for rle in (False, True):
                arc = tmp_path / f"p{int(rle)}.arc"
                ArchiveWriter(ArchiverSettings(compression_enabled=rle)).create(str(src), str(arc))
                loaded = retrieve(str(arc))
                self.assertEqual(list_names(loaded), ["top.txt", "inner.txt"])
                ai = info(loaded)
                self.assertEqual(ai.compression_enabled, rle)
                self.assertEqual(ai.file_count, 2)
                self.assertEqual([f.uncompressed_size for f in ai.files], [8, 2])
                if rle:
                    self.assertEqual([f.compressed_size for f in ai.files], [2, 4])
                    self.assertEqual(ai.total_stored_size, 6)
                else:
                    self.assertEqual([f.compressed_size for f in ai.files], [None, None])
                    self.assertEqual(ai.total_stored_size, 10)
                self.assertEqual(ai.creation_date, loaded.creation_date)

        self.run_with_tmpdir(scenario)

    def test_folder_set_rejects_repeats(self):
        archive = Archive.new(False)
        self.assertTrue(archive.add_folder("docs"))
        self.assertTrue(archive.add_folder("docs/notes"))
        self.assertFalse(archive.add_folder("docs"))
        self.assertEqual(archive.folders, ["docs", "docs/notes"])
        reloaded = Archive.from_index(archive.to_index())
        self.assertFalse(reloaded.add_folder("docs/notes"))
        self.assertTrue(reloaded.add_folder("fresh"))
        self.assertEqual(reloaded.folders, ["docs", "docs/notes", "fresh"])

    @unittest.skipUnless(os.sep == "/", "backslash is a separator on this platform")
    def test_backslash_name_is_not_a_separator(self):
        def scenario(tmp_path: Path):
            src = tmp_path / "src"
            (src / "a").mkdir(parents=True)
            (src / "a\\b.txt").write_bytes(b"TOP")
            (src / "a" / "b.txt").write_bytes(b"NESTED")
            arc = tmp_path / "bs.arc"
            ArchiveWriter().create(str(src), str(arc))

            loaded = retrieve(str(arc))
            self.assertEqual(loaded.file_count, 2)
            self.assertEqual(
                [(f.name, f.relative_path) for f in loaded.files],
                [("a\\b.txt", "a\\b.txt"), ("b.txt", "a/b.txt")],
            )

            out = tmp_path / "out"
            res = ArchiveReader().extract(str(arc), str(out))
            self.assertEqual(res.extracted, ["a\\b.txt", "a/b.txt"])
            self.assertEqual((out / "a\\b.txt").read_bytes(), b"TOP")
            self.assertEqual((out / "a" / "b.txt").read_bytes(), b"NESTED")

        self.run_with_tmpdir(scenario)

    def test_failed_extract_releases_archive(self):
        def scenario(tmp_path: Path):
            src = _create_sample_files(tmp_path)
            arc = tmp_path / "x.arc"
            ArchiveWriter().create(str(src), str(arc))
            out = tmp_path / "out"
            out.mkdir()
            # a regular file where the docs/ directory has to go
            (out / "docs").write_bytes(b"in the way")
            with self.assertRaises(OSError):
                ArchiveReader().extract(str(arc), str(out))
            self.assertEqual((out / "notes.md").read_text(encoding="utf-8"), "# Title\nSome content\n")
            self.assert_released(arc)

        self.run_with_tmpdir(scenario)

    def test_functional_wrappers(self):
        def scenario(tmp_path: Path):
            src = tmp_path / "src"
            src.mkdir()
            (src / "one.txt").write_bytes(b"11111")
            arc = tmp_path / "f.arc"
            settings = ArchiverSettings(compression_enabled=True)
            lines = []
            create_archive(str(src), str(arc), settings, progress=lines.append)
            (src / "two.txt").write_bytes(b"2")
            updated = append_to_archive(str(arc), str(src), settings, progress=lines.append)
            self.assertEqual(list_names(updated), ["one.txt", "two.txt"])
            self.assertEqual(len(lines), 2)
            res = extract_archive(str(arc), str(tmp_path / "out"), progress=lines.append)
            self.assertEqual(res.extracted, ["one.txt", "two.txt"])
            self.assertEqual(lines[-1], "Extracting two.txt ...")
            self.assertEqual((tmp_path / "out" / "one.txt").read_bytes(), b"11111")

        self.run_with_tmpdir(scenario)


if __name__ == "__main__":
    unittest.main()
