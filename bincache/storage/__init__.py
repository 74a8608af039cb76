"""
Storage module: S3 access, codecs, local metadata cache and the store facade.
"""

from bincache.storage.binary_cache import (
    S3BinaryCacheStore,
    parse_cache_info,
    parse_narinfo_key,
)
from bincache.storage.compression import compress, decompress, decompressor
from bincache.storage.disk_cache import (
    CacheInfo,
    DiskCache,
    InMemoryDiskCache,
    SqliteDiskCache,
)
from bincache.storage.s3_helper import (
    FileTransferResult,
    ListingPage,
    S3Helper,
    make_boto_config,
    make_client,
)

__all__ = [
    "S3BinaryCacheStore",
    "parse_cache_info",
    "parse_narinfo_key",
    "compress",
    "decompress",
    "decompressor",
    "CacheInfo",
    "DiskCache",
    "InMemoryDiskCache",
    "SqliteDiskCache",
    "FileTransferResult",
    "ListingPage",
    "S3Helper",
    "make_boto_config",
    "make_client",
]
