"""
Core module: Type definitions, error hierarchy, and configuration.

This module provides the foundational abstractions for the cache transport:
- Result/Either monads for zero-exception control flow
- Error hierarchy carrying remote error codes
- Store configuration with validation
"""

from bincache.core.types import (
    Result,
    Ok,
    Err,
    Timestamp,
    ObjectHandle,
    ByteRange,
    ObjectMetadata,
    StorePath,
    FetchOutcome,
    FetchResult,
    UploadSpec,
    UploadStats,
)
from bincache.core.errors import (
    ErrorCode,
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

__all__ = [
    "Result",
    "Ok",
    "Err",
    "Timestamp",
    "ObjectHandle",
    "ByteRange",
    "ObjectMetadata",
    "StorePath",
    "FetchOutcome",
    "FetchResult",
    "UploadSpec",
    "UploadStats",
    "ErrorCode",
    "CacheStoreError",
    "ObjectNotFoundError",
    "PermissionDeniedError",
    "TransportError",
    "NoSuchCacheFileError",
    "TransferFailedError",
    "ConfigurationError",
    "CodecError",
    "S3StoreConfig",
]
