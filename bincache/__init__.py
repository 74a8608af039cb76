"""
bincache: S3 Binary Cache Transport

Moves binary cache files (`.narinfo` records, NAR archives, listings,
build logs) between a client and an S3-compatible bucket:
- Bounded pipelined range fetches streamed to a sink in order
- Per-category compression with single or multipart uploads
- Existence checks that treat not-found and forbidden as absence
- Marker-based enumeration of every cached store path
- One retry policy with exponential backoff for all control requests
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from bincache.core.types import (
    Result,
    Ok,
    Err,
    ObjectHandle,
    ObjectMetadata,
    ByteRange,
    StorePath,
    FetchOutcome,
    FetchResult,
    UploadStats,
)
from bincache.core.errors import (
    CacheStoreError,
    ObjectNotFoundError,
    PermissionDeniedError,
    TransportError,
    NoSuchCacheFileError,
    TransferFailedError,
    ConfigurationError,
    CodecError,
)
from bincache.core.config import S3StoreConfig
from bincache.observability.metrics import StoreStats
from bincache.storage.binary_cache import S3BinaryCacheStore
from bincache.storage.disk_cache import InMemoryDiskCache, SqliteDiskCache

__all__ = [
    "__version__",
    "Result",
    "Ok",
    "Err",
    "ObjectHandle",
    "ObjectMetadata",
    "ByteRange",
    "StorePath",
    "FetchOutcome",
    "FetchResult",
    "UploadStats",
    "CacheStoreError",
    "ObjectNotFoundError",
    "PermissionDeniedError",
    "TransportError",
    "NoSuchCacheFileError",
    "TransferFailedError",
    "ConfigurationError",
    "CodecError",
    "S3StoreConfig",
    "StoreStats",
    "S3BinaryCacheStore",
    "InMemoryDiskCache",
    "SqliteDiskCache",
]
