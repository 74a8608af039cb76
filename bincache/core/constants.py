"""
System-Wide Constants for the S3 Binary Cache Transport

All magic numbers and configuration defaults centralized here.
"""

from typing import Final

# =============================================================================
# SIZE AND TIME UNITS
# =============================================================================
KB: Final[int] = 1024
MB: Final[int] = 1024 * KB
GB: Final[int] = 1024 * MB

SECOND_MS: Final[int] = 1000
MINUTE_MS: Final[int] = 60 * SECOND_MS

NS_PER_MS: Final[int] = 1_000_000

# =============================================================================
# PIPELINED FETCH
# =============================================================================
FETCH_CHUNK_SIZE: Final[int] = 32 * MB

# At least 2 so that downloading carries on while the sink is written
FETCH_MAX_TRANSFERS: Final[int] = 3

# Caps memory at FETCH_CHUNK_SIZE * FETCH_MAX_BUFFERED_CHUNKS
FETCH_MAX_BUFFERED_CHUNKS: Final[int] = 5

# =============================================================================
# UPLOAD
# =============================================================================
MULTIPART_MIN_PART_SIZE: Final[int] = 5 * MB
MULTIPART_DEFAULT_PART_SIZE: Final[int] = 5 * MB
DEFAULT_MIME_TYPE: Final[str] = "application/octet-stream"

# =============================================================================
# CLIENT TIMEOUTS
# =============================================================================
CONNECT_TIMEOUT_MS: Final[int] = 5 * SECOND_MS
REQUEST_TIMEOUT_MS: Final[int] = 600 * SECOND_MS

# =============================================================================
# RELIABILITY
# =============================================================================
RETRY_BASE_MS: Final[int] = 25
RETRY_MAX_MS: Final[int] = 20 * SECOND_MS
RETRY_MAX_ATTEMPTS: Final[int] = 10

# =============================================================================
# BINARY CACHE LAYOUT
# =============================================================================
DEFAULT_REGION: Final[str] = "us-east-1"
DEFAULT_STORE_DIR: Final[str] = "/nix/store"
NARINFO_SUFFIX: Final[str] = ".narinfo"
LS_SUFFIX: Final[str] = ".ls"
LOG_PREFIX: Final[str] = "log/"
HASH_PART_LENGTH: Final[int] = 32
NARINFO_KEY_LENGTH: Final[int] = HASH_PART_LENGTH + len(NARINFO_SUFFIX)
MISSING_NAME: Final[str] = "x"
LISTING_DELIMITER: Final[str] = "/"
CACHE_INFO_FILE: Final[str] = "nix-cache-info"
CACHE_INFO_MIME_TYPE: Final[str] = "text/x-nix-cache-info"
NARINFO_MIME_TYPE: Final[str] = "text/x-nix-narinfo"
