"""
tailarc: append-friendly archive container.

An archive is a single file laid out as

- an 8-byte little-endian header holding the offset of the metadata block,
- the payloads of all archived files (raw or run-length-encoded), back to back,
  in the order of the archive's file list,
- a framed, self-describing metadata block (TLV, see tailarc.tlv).

Appending writes the new payloads over the old metadata block, writes a fresh
block for the whole archive and backpatches the header. There is no offset
table; extraction reads payloads sequentially in file-list order.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "rle",
    "fileaccess",
    "model",
    "writer",
    "reader",
    "settings",
]

# Importable programmatic API is available via tailarc.writer/tailarc.reader and
# the CLI functions in tailarc.cli (cmd_create/cmd_extract) which take normal parameters.
