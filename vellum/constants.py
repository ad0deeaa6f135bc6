# Magic and version
HAMMING_MAGIC = b"VLMHAMM\x00"     # 8 bytes: "VLMHAMM\0"
COMPRESSED_MAGIC = b"VLMCOMP\x00"  # 8 bytes: "VLMCOMP\0"
ENVELOPE_MAGIC = b"VLMLOCK\x00"    # 8 bytes: "VLMLOCK\0"

VERSION_MAJOR = 1
VERSION_MINOR = 0

# Protection strength s selects r = HAMMING_PARITY_BASE - s parity bits
MIN_STRENGTH = 1
MAX_STRENGTH = 6
HAMMING_PARITY_BASE = 8
DEFAULT_STRENGTH = 3


# Codec IDs (0=none, 1=deflate/zlib, 2=zstd)
CODEC_NONE = 0
CODEC_DEFLATE = 1
CODEC_ZSTD = 2

CODEC_NAMES = {
    "none": CODEC_NONE,
    "deflate": CODEC_DEFLATE,
    "zstd": CODEC_ZSTD,
}

# Short tags used in output file extensions
CODEC_TAGS = {
    CODEC_NONE: "raw",
    CODEC_DEFLATE: "dfl",
    CODEC_ZSTD: "zst",
}

DEFAULT_CODEC = "deflate"


# Envelope flags
ENV_FLAG_TIME_RESTRICTED = 1 << 0

# Envelope content tags (which forward layers sit under the lock)
LAYER_COMPRESSED = 1 << 0
LAYER_PROTECTED = 1 << 1


# Argon2id parameters for deriving the time lock key from the unlock instant
ARGON_TIME_COST = 2
ARGON_MEMORY_COST_KIB = 19 * 1024  # 19 MiB
ARGON_PARALLELISM = 1
# Upper bounds accepted when reading an envelope
ARGON_MAX_TIME_COST = 16
ARGON_MAX_MEMORY_COST_KIB = 1024 * 1024  # 1 GiB
ARGON_MAX_PARALLELISM = 16

TIMELOCK_KEY_SIZE = 32
TIMELOCK_SALT_SIZE = 16
TIMELOCK_NONCE_SIZE = 24
TIMELOCK_TAG_SIZE = 16
