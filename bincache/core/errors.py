"""
Errors raised by the binary cache transport.

Transfer layers return them inside `Err`; `S3BinaryCacheStore` raises them.
A missing object on the read path is an outcome, never one of these.
Remote failures keep the S3 error code and message in `context`.

Usage:
    result = helper.head(handle)
    match result:
        case Ok(metadata):
            use(metadata)
        case Err(ObjectNotFoundError()):
            treat_as_miss()
        case Err(error):
            raise error
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from bincache.core.types import Timestamp


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """Stable codes: 1xxx remote objects, 2xxx transfers, 9xxx local setup."""

    # Remote object errors (1xxx)
    OBJECT_NOT_FOUND = 1001
    OBJECT_FORBIDDEN = 1002
    OBJECT_TRANSPORT = 1003
    OBJECT_NO_SUCH_CACHE_FILE = 1004

    # Transfer errors (2xxx)
    TRANSFER_FAILED = 2001
    TRANSFER_CHUNK_FAILED = 2002
    TRANSFER_RETRY_EXHAUSTED = 2003

    # Internal errors (9xxx)
    INTERNAL_CONFIGURATION_ERROR = 9002
    INTERNAL_CODEC_ERROR = 9003


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class CacheStoreError(Exception):
    """
    Root of the hierarchy. `error_id` ties a raised error to its log lines;
    `cause` is chained as `__cause__`.
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: Timestamp = field(default_factory=Timestamp.now)
    cause: Optional[BaseException] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if self.cause is not None:
            self.__cause__ = self.cause

    def to_dict(self) -> dict[str, Any]:
        """Fields for a JSON log line."""
        return {
            "error_id": self.error_id,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "timestamp_nanos": self.timestamp.nanos,
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# REMOTE OBJECT ERRORS
# =============================================================================
@dataclass
class ObjectNotFoundError(CacheStoreError):
    """The remote object (or bucket) does not exist."""

    @classmethod
    def for_object(
        cls,
        uri: str,
        remote_code: str = "",
        remote_message: str = "",
        cause: Optional[BaseException] = None,
    ) -> ObjectNotFoundError:
        return cls(
            code=ErrorCode.OBJECT_NOT_FOUND,
            message=f"object '{uri}' does not exist",
            cause=cause,
            context={"uri": uri, "remote_code": remote_code, "remote_message": remote_message},
        )


@dataclass
class PermissionDeniedError(CacheStoreError):
    """
    The store refused the request.

    On reads this is indistinguishable from not-found when bucket listing
    is disabled; on writes it is always fatal.
    """

    @classmethod
    def for_object(
        cls,
        uri: str,
        remote_code: str = "",
        remote_message: str = "",
        cause: Optional[BaseException] = None,
    ) -> PermissionDeniedError:
        return cls(
            code=ErrorCode.OBJECT_FORBIDDEN,
            message=f"access denied to '{uri}': {remote_message or remote_code}",
            cause=cause,
            context={"uri": uri, "remote_code": remote_code, "remote_message": remote_message},
        )


@dataclass
class TransportError(CacheStoreError):
    """
    Network or protocol failure talking to the store.

    `remote_code` and `remote_message` hold what the service (or botocore)
    reported.
    """

    @property
    def remote_code(self) -> str:
        return str(self.context.get("remote_code", ""))

    @property
    def remote_message(self) -> str:
        return str(self.context.get("remote_message", ""))

    @classmethod
    def from_remote(
        cls,
        operation: str,
        uri: str,
        remote_code: str,
        remote_message: str,
        cause: Optional[BaseException] = None,
    ) -> TransportError:
        return cls(
            code=ErrorCode.OBJECT_TRANSPORT,
            message=f"AWS error {operation} '{uri}': {remote_code}: {remote_message}",
            cause=cause,
            context={
                "operation": operation,
                "uri": uri,
                "remote_code": remote_code,
                "remote_message": remote_message,
            },
        )

    @classmethod
    def retry_exhausted(
        cls,
        operation: str,
        uri: str,
        attempts: int,
        remote_code: str,
        remote_message: str,
        cause: Optional[BaseException] = None,
    ) -> TransportError:
        return cls(
            code=ErrorCode.TRANSFER_RETRY_EXHAUSTED,
            message=(
                f"AWS error {operation} '{uri}' after {attempts} attempts: "
                f"{remote_code}: {remote_message}"
            ),
            cause=cause,
            context={
                "operation": operation,
                "uri": uri,
                "attempts": attempts,
                "remote_code": remote_code,
                "remote_message": remote_message,
            },
        )

    @classmethod
    def chunk_failed(
        cls,
        uri: str,
        index: int,
        range_header: str,
        cause: BaseException,
        remote_code: str = "",
        remote_message: str = "",
    ) -> TransportError:
        """A range download inside a pipelined fetch failed."""
        return cls(
            code=ErrorCode.TRANSFER_CHUNK_FAILED,
            message=f"error downloading chunk {index} ({range_header}) of '{uri}': {cause}",
            cause=cause,
            context={
                "uri": uri,
                "chunk_index": index,
                "range": range_header,
                "remote_code": remote_code or type(cause).__name__,
                "remote_message": remote_message or str(cause),
            },
        )


@dataclass
class NoSuchCacheFileError(CacheStoreError):
    """A requested file does not exist in the binary cache."""

    @classmethod
    def for_path(cls, path: str, cache_uri: str) -> NoSuchCacheFileError:
        return cls(
            code=ErrorCode.OBJECT_NO_SUCH_CACHE_FILE,
            message=f"file '{path}' does not exist in binary cache '{cache_uri}'",
            context={"path": path, "cache_uri": cache_uri},
        )


# =============================================================================
# TRANSFER & CONFIGURATION ERRORS
# =============================================================================
@dataclass
class TransferFailedError(CacheStoreError):
    """A multi-part transfer ended FAILED."""

    @classmethod
    def failed(cls, uri: str, reason: str, cause: Optional[BaseException] = None) -> TransferFailedError:
        return cls(
            code=ErrorCode.TRANSFER_FAILED,
            message=f"AWS error: failed to upload '{uri}': {reason}",
            cause=cause,
            context={"uri": uri, "reason": reason},
        )


@dataclass
class ConfigurationError(CacheStoreError):
    """Invalid combination of options, detected before any network call."""

    @classmethod
    def invalid(cls, option: str, reason: str) -> ConfigurationError:
        return cls(
            code=ErrorCode.INTERNAL_CONFIGURATION_ERROR,
            message=f"invalid configuration for '{option}': {reason}",
            context={"option": option, "reason": reason},
        )


@dataclass
class CodecError(CacheStoreError):
    """Unknown compression method or corrupt compressed payload."""

    @classmethod
    def unknown(cls, codec: str) -> CodecError:
        return cls(
            code=ErrorCode.INTERNAL_CODEC_ERROR,
            message=f"unknown compression method '{codec}'",
            context={"codec": codec},
        )

    @classmethod
    def corrupt(cls, codec: str, cause: BaseException) -> CodecError:
        return cls(
            code=ErrorCode.INTERNAL_CODEC_ERROR,
            message=f"cannot decompress '{codec}' data: {cause}",
            cause=cause,
            context={"codec": codec},
        )
