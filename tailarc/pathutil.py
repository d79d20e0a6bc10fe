from __future__ import annotations

import os


def norm_path(p: str) -> str:
    """Normalize archive paths to a canonical forward-slash form.

    Rules:
    - '/' is the only separator; a backslash is an ordinary name character
    - Strip leading/trailing slashes
    - Remove empty and '.' segments
    - Reject '..' segments
    """
    parts = [q for q in p.strip("/").split("/") if q not in ("", ".")]
    for q in parts:
        if q == "..":
            raise ValueError("Path may not contain '..'")
    return "/".join(parts)


def relative_archive_path(path: str, root: str) -> str:
    """Archive path of ``path`` relative to the source directory ``root``."""
    rel = os.path.relpath(path, start=root)
    return norm_path("/".join(rel.split(os.sep)))


def destination_path(dest_root: str, arc_path: str) -> str:
    """Filesystem path for ``arc_path`` below ``dest_root``."""
    rel = norm_path(arc_path)
    if not rel:
        raise ValueError("Empty archive path")
    parts = rel.split("/")
    for q in parts:
        # a name holding this platform's separator would land in another directory
        if os.sep in q or (os.altsep and os.altsep in q):
            raise ValueError(f"Path segment not representable on this platform: {q!r}")
    return os.path.join(dest_root, *parts)
