from __future__ import annotations

import argparse
import os
import sys
import time
from typing import List, Optional

from tailarc.constants import DEFAULT_RETRY_ATTEMPTS, DEFAULT_RETRY_WAIT_SECONDS
from tailarc.errors import TailarcError
from tailarc.reader import ArchiveReader, info, list_names
from tailarc.settings import ArchiverSettings
from tailarc.writer import ArchiveWriter


def _progress(quiet: bool):
    if quiet:
        return None
    return lambda line: print(line, flush=True)


def cmd_create(
    source: str,
    archive: str,
    *,
    rle: bool = False,
    retry: int = DEFAULT_RETRY_ATTEMPTS,
    wait: int = DEFAULT_RETRY_WAIT_SECONDS,
    quiet: bool = False,
) -> bool:
    """Create a new archive from a directory tree.

    Args:
        source: Existing directory to archive.
        archive: Path of the archive file to write; must not exist.
        rle: Run-length-encode file contents.
        retry: Number of attempts for each file open (1-10).
        wait: Seconds to wait between attempts (1-10).
        quiet: Suppress per-file progress lines.
    """
    if not os.path.isdir(source):
        raise ValueError("The specified source directory must exist.")
    if os.path.exists(archive):
        raise ValueError("The specified target archive file cannot be an existing one.")
    settings = ArchiverSettings(compression_enabled=rle, retry_attempts=retry, retry_wait_seconds=wait)
    t0 = time.time()
    a = ArchiveWriter(settings, progress=_progress(quiet)).create(source, archive)
    dt = max(0.000001, time.time() - t0)
    print(f"Done: {a.file_count} files, {len(a.folders)} dirs; {a.total_stored_size} bytes stored in {dt:.1f}s")
    print("Finished creating.")
    return True


def cmd_append(
    archive: str,
    source: str,
    *,
    rle: bool = False,
    retry: int = DEFAULT_RETRY_ATTEMPTS,
    wait: int = DEFAULT_RETRY_WAIT_SECONDS,
    quiet: bool = False,
) -> bool:
    """Append the new files of a directory tree to an existing archive.

    The RLE flag must match the one the archive was created with.
    """
    if not os.path.isdir(source):
        raise ValueError("The specified source directory must exist.")
    if not os.path.isfile(archive):
        raise ValueError("The specified target archive file must exist.")
    settings = ArchiverSettings(compression_enabled=rle, retry_attempts=retry, retry_wait_seconds=wait)
    w = ArchiveWriter(settings, progress=_progress(quiet))
    a = w.append(archive, source)
    print(f"Done: appended {len(w.last_added)} files; archive now holds {a.file_count} files")
    print("Finished appending.")
    return True


def cmd_extract(
    archive: str,
    *,
    outdir: str = ".",
    retry: int = DEFAULT_RETRY_ATTEMPTS,
    wait: int = DEFAULT_RETRY_WAIT_SECONDS,
    quiet: bool = False,
) -> bool:
    """Extract all files of an archive below ``outdir``; existing files are kept."""
    if not os.path.isfile(archive):
        raise ValueError("The specified archive file must exist to extract its content.")
    settings = ArchiverSettings(retry_attempts=retry, retry_wait_seconds=wait)
    res = ArchiveReader(settings, progress=_progress(quiet)).extract(archive, outdir)
    print(f"Done: extracted {len(res.extracted)} files; skipped={len(res.skipped)}")
    print("Finished extracting.")
    return True


def cmd_info(archive: str, *, retry: int = DEFAULT_RETRY_ATTEMPTS, wait: int = DEFAULT_RETRY_WAIT_SECONDS) -> bool:
    """Show archive meta information."""
    if not os.path.isfile(archive):
        raise ValueError("The specified archive file must exist to show its meta information.")
    settings = ArchiverSettings(retry_attempts=retry, retry_wait_seconds=wait)
    ai = info(ArchiveReader(settings).retrieve(archive))
    print(f"Archive: {archive}")
    print(f"  UTC creation date: {ai.creation_date.strftime('%Y-%m-%d %H:%M:%S')}")
    print(f"  Run-length-encoding enabled: {ai.compression_enabled}")
    print(f"  Number of files archived: {ai.file_count}")
    print(f"  Size of all files archived: {ai.total_stored_size}")
    for f in ai.files:
        if f.compressed_size is not None:
            print(f"  File: {f.name}, uncompressed size: {f.uncompressed_size} bytes, compressed size: {f.compressed_size} bytes")
        else:
            print(f"  File: {f.name}, uncompressed size: {f.uncompressed_size} bytes")
    print("Finished printing info.")
    return True


def cmd_list(archive: str, *, retry: int = DEFAULT_RETRY_ATTEMPTS, wait: int = DEFAULT_RETRY_WAIT_SECONDS) -> bool:
    """List the names of all archived files."""
    if not os.path.isfile(archive):
        raise ValueError("The specified archive file must exist to list its content.")
    settings = ArchiverSettings(retry_attempts=retry, retry_wait_seconds=wait)
    for name in list_names(ArchiveReader(settings).retrieve(archive)):
        print(name)
    print("Finished printing list.")
    return True


def _add_retry_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--retry", "-r", type=int, default=DEFAULT_RETRY_ATTEMPTS,
                   help="Attempts per file open in case of failed file access (1-10, default 1)")
    p.add_argument("--wait", "-w", type=int, default=DEFAULT_RETRY_WAIT_SECONDS,
                   help="Seconds to wait between attempts (1-10, default 1)")


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="tailarc",
        description="tailarc archive tool",
        epilog="Only one operation per invocation. The RLE setting of an archive is fixed at creation.",
    )
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_create = sub.add_parser("create", help="Create a new archive from a directory")
    ap_create.add_argument("source", help="Source directory")
    ap_create.add_argument("archive", help="Archive file to create")
    ap_create.add_argument("--rle", action="store_true", help="Run-length-encode file contents")
    ap_create.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")
    _add_retry_args(ap_create)

    ap_append = sub.add_parser("append", help="Append a directory to an existing archive")
    ap_append.add_argument("archive", help="Existing archive file")
    ap_append.add_argument("source", help="Source directory")
    ap_append.add_argument("--rle", action="store_true", help="Must match the archive's RLE setting")
    ap_append.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")
    _add_retry_args(ap_append)

    ap_extract = sub.add_parser("extract", help="Extract files (existing files are never overwritten)")
    ap_extract.add_argument("archive", help="Archive path")
    ap_extract.add_argument("--outdir", default=".", help="Output directory")
    ap_extract.add_argument("--quiet", help="limit outputs to summaries only", action="store_true")
    _add_retry_args(ap_extract)

    ap_info = sub.add_parser("info", help="Show archive meta information")
    ap_info.add_argument("archive", help="Archive path")
    _add_retry_args(ap_info)

    ap_list = sub.add_parser("list", help="List archived file names")
    ap_list.add_argument("archive", help="Archive path")
    _add_retry_args(ap_list)

    args = ap.parse_args(argv)
    try:
        if args.cmd == "create":
            cmd_create(args.source, args.archive, rle=args.rle, retry=args.retry, wait=args.wait, quiet=args.quiet)
        elif args.cmd == "append":
            cmd_append(args.archive, args.source, rle=args.rle, retry=args.retry, wait=args.wait, quiet=args.quiet)
        elif args.cmd == "extract":
            cmd_extract(args.archive, outdir=args.outdir, retry=args.retry, wait=args.wait, quiet=args.quiet)
        elif args.cmd == "info":
            cmd_info(args.archive, retry=args.retry, wait=args.wait)
        elif args.cmd == "list":
            cmd_list(args.archive, retry=args.retry, wait=args.wait)
        else:
            raise RuntimeError("Unknown command")
    except (TailarcError, OSError, ValueError, RuntimeError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
