from __future__ import annotations

"""
Minimal TLV encoder/decoder for the tailarc metadata block.

Encoding
- TLV: varint(tag) || varint(length) || payload
- Integers: unsigned LEB128 varint
- Strings: UTF-8 bytes (length provided by TLV len)

Top-level tags
- 1: created (payload: varint sec || varint nsec, UTC)
- 2: compression_enabled (varint 0/1)
- 3: file_count (varint)
- 4: total_stored_size (varint)
- 5: folders (container; tag=1 utf8 per folder)
- 6: files (container; contains file TLVs, tag=1 per file, in payload order)

File (within files container; tag=1)
- 1: name (utf8)
- 2: relative_path (utf8)
- 3: uncompressed_size (varint)
- 4: compressed_size (varint)

Unknown tags are skipped.
"""

from typing import Dict, List, Optional, Tuple


def _varint_encode(n: int) -> bytes:
    if n < 0:
        raise ValueError("varint: negative not supported")
    out = bytearray()
    while True:
        b = n & 0x7F
        n >>= 7
        if n:
            out.append(b | 0x80)
        else:
            out.append(b)
            break
    return bytes(out)


def _varint_decode(data: bytes, pos: int) -> Tuple[int, int]:
    shift = 0
    result = 0
    while True:
        if pos >= len(data):
            raise ValueError("varint: truncated")
        b = data[pos]
        pos += 1
        result |= (b & 0x7F) << shift
        if not (b & 0x80):
            return result, pos
        shift += 7
        if shift > 63:
            raise ValueError("varint: too large")


def _tlv(tag: int, payload: bytes) -> bytes:
    return _varint_encode(tag) + _varint_encode(len(payload)) + payload


def _iter_tlvs(data: bytes) -> List[Tuple[int, bytes]]:
    items: List[Tuple[int, bytes]] = []
    pos = 0
    n = len(data)
    while pos < n:
        tag, pos = _varint_decode(data, pos)
        ln, pos = _varint_decode(data, pos)
        if pos + ln > n:
            raise ValueError("TLV length out of range")
        items.append((tag, data[pos : pos + ln]))
        pos += ln
    return items


def dumps_metadata(meta: Dict) -> bytes:
    out = bytearray()
    created = meta["created"]
    out += _tlv(1, _varint_encode(int(created["sec"])) + _varint_encode(int(created.get("nsec", 0))))
    out += _tlv(2, _varint_encode(1 if meta.get("compression_enabled") else 0))
    out += _tlv(3, _varint_encode(int(meta.get("file_count", 0))))
    out += _tlv(4, _varint_encode(int(meta.get("total_stored_size", 0))))

    folders_payload = bytearray()
    for folder in meta.get("folders", []):
        folders_payload += _tlv(1, str(folder).encode("utf-8"))
    out += _tlv(5, bytes(folders_payload))

    files_payload = bytearray()
    for f in meta.get("files", []):
        fp = bytearray()
        fp += _tlv(1, str(f["name"]).encode("utf-8"))
        fp += _tlv(2, str(f["relative_path"]).encode("utf-8"))
        fp += _tlv(3, _varint_encode(int(f.get("uncompressed_size", 0))))
        fp += _tlv(4, _varint_encode(int(f.get("compressed_size", 0))))
        files_payload += _tlv(1, bytes(fp))
    out += _tlv(6, bytes(files_payload))
    return bytes(out)


def loads_metadata(data: bytes, *, max_files: Optional[int] = None) -> Dict:
    """Parse a metadata payload; raises ValueError on malformed input."""
    limit = 10_000_000 if max_files is None else int(max_files)
    meta: Dict = {}
    folders: List[str] = []
    files: List[Dict] = []
    for tag, payload in _iter_tlvs(data):
        if tag == 1:
            sec, pos = _varint_decode(payload, 0)
            nsec, pos = _varint_decode(payload, pos)
            meta["created"] = {"sec": sec, "nsec": nsec}
        elif tag == 2:
            v, _ = _varint_decode(payload, 0)
            meta["compression_enabled"] = bool(v)
        elif tag == 3:
            meta["file_count"], _ = _varint_decode(payload, 0)
        elif tag == 4:
            meta["total_stored_size"], _ = _varint_decode(payload, 0)
        elif tag == 5:
            for ft, fv in _iter_tlvs(payload):
                if ft == 1:
                    folders.append(fv.decode("utf-8"))
        elif tag == 6:
            for ftag, fpl in _iter_tlvs(payload):
                if ftag != 1:
                    continue
                if len(files) >= limit:
                    raise ValueError("Metadata exceeds max files limit")
                f: Dict = {}
                for ft, fv in _iter_tlvs(fpl):
                    if ft == 1:
                        f["name"] = fv.decode("utf-8")
                    elif ft == 2:
                        f["relative_path"] = fv.decode("utf-8")
                    elif ft == 3:
                        f["uncompressed_size"], _ = _varint_decode(fv, 0)
                    elif ft == 4:
                        f["compressed_size"], _ = _varint_decode(fv, 0)
                if "name" not in f or "relative_path" not in f:
                    raise ValueError("File record without name or path")
                files.append(f)
    meta["folders"] = folders
    meta["files"] = files
    return meta
