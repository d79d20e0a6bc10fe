import struct


# Metadata block magic
META_MAGIC = b"TAILMETA"   # 8 bytes: "TAILMETA"

# Header: absolute offset of the metadata block (u64, little endian)
HEADER_STRUCT = struct.Struct("<Q")
HEADER_SIZE = HEADER_STRUCT.size  # 8

# Metadata frame header: magic[8], payload_len u64, blake2s-256 of payload
META_FRAME_STRUCT = struct.Struct("<8sQ32s")

# Safety bound on the metadata payload size (64 MiB)
MAX_META_PAYLOAD = 64 * 1024 * 1024

# Run-length codec
RLE_MAX_RUN = 255

# Streaming buffer used for payload copy and per-buffer RLE
BUFFER_SIZE = 8192

# Retry configuration bounds and defaults
RETRY_ATTEMPTS_MIN = 1
RETRY_ATTEMPTS_MAX = 10
RETRY_WAIT_MIN = 1
RETRY_WAIT_MAX = 10
DEFAULT_RETRY_ATTEMPTS = 1
DEFAULT_RETRY_WAIT_SECONDS = 1

# Open modes and access rights understood by fileaccess.acquire
MODE_CREATE_NEW = "create_new"
MODE_OPEN_EXISTING = "open_existing"

ACCESS_READ = "read"
ACCESS_WRITE = "write"
ACCESS_READ_WRITE = "read_write"
