"""
Value types shared by the transfer and storage layers.

`Ok`/`Err` carry the outcome of remote calls below the store facade; the
facade unwraps them and raises. A missing object is a `FetchOutcome`, not
an `Err`.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import (
    Any,
    Callable,
    Generic,
    Literal,
    Optional,
    TypeVar,
    Union,
)

T = TypeVar("T")
E = TypeVar("E")
U = TypeVar("U")


# =============================================================================
# RESULT
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """A remote call that produced `value`."""

    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        return Ok(fn(self.value))

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """A remote call that failed with `error` (normally a CacheStoreError)."""

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> Any:
        """Raise the carried exception."""
        if isinstance(self.error, BaseException):
            raise self.error
        raise RuntimeError(f"unwrap() on Err: {self.error}")

    def map(self, fn: Callable[[Any], U]) -> Err[E]:
        return self

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Union[Ok[T], Err[E]]


@dataclass(frozen=True, slots=True, order=True)
class Timestamp:
    """Wall clock time in nanoseconds, stamped on every error."""

    nanos: int

    @classmethod
    def now(cls) -> Timestamp:
        return cls(nanos=time.time_ns())

    @property
    def millis(self) -> int:
        return self.nanos // 1_000_000


# =============================================================================
# OBJECT ADDRESSING
# =============================================================================
@dataclass(frozen=True, slots=True)
class ObjectHandle:
    """Bucket and key of one remote object. Built per call."""

    bucket: str
    key: str

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"

    def __str__(self) -> str:
        return self.uri


@dataclass(frozen=True, slots=True)
class ByteRange:
    """
    Inclusive byte span `[start, end]` of an object, as sent in a `Range`
    header.
    """

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0:
            raise ValueError(f"start must be >= 0, got {self.start}")
        if self.end < self.start:
            raise ValueError(f"end ({self.end}) must be >= start ({self.start})")

    @classmethod
    def of_length(cls, start: int, length: int) -> ByteRange:
        if length <= 0:
            raise ValueError(f"length must be > 0, got {length}")
        return cls(start=start, end=start + length - 1)

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def to_http_header(self) -> str:
        return f"bytes={self.start}-{self.end}"

    def __repr__(self) -> str:
        return f"ByteRange({self.start}-{self.end})"


@dataclass(frozen=True, slots=True, order=True)
class StorePath:
    """
    Domain identifier of a binary cache entry.

    `hash_part` is the fixed-length hash that keys the `.narinfo` record;
    `name` is the descriptive suffix, which is a placeholder when the path
    was recovered from a bucket listing.
    """

    hash_part: str
    name: str

    def base_name(self) -> str:
        return f"{self.hash_part}-{self.name}"

    def to_string(self, store_dir: str) -> str:
        return f"{store_dir.rstrip('/')}/{self.base_name()}"

    @property
    def narinfo_key(self) -> str:
        return f"{self.hash_part}.narinfo"

    def __str__(self) -> str:
        return self.base_name()


@dataclass(frozen=True, slots=True)
class ObjectMetadata:
    """HEAD result of one object."""

    key: str
    size_bytes: int
    content_type: str = ""
    content_encoding: str = ""
    etag: str = ""

    @classmethod
    def from_head(cls, key: str, response: dict[str, Any]) -> ObjectMetadata:
        """Build from a `head_object` response."""
        return cls(
            key=key,
            size_bytes=int(response.get("ContentLength", 0)),
            content_type=response.get("ContentType") or "",
            content_encoding=response.get("ContentEncoding") or "",
            etag=response.get("ETag") or "",
        )


# =============================================================================
# TRANSFER OUTCOMES
# =============================================================================
class FetchOutcome(Enum):
    """Terminal outcome of a fetch."""
    NOT_FOUND = auto()
    FORBIDDEN = auto()
    FOUND = auto()

    @property
    def is_absent(self) -> bool:
        """NOT_FOUND and FORBIDDEN both mean absent on the read path."""
        return self is not FetchOutcome.FOUND


@dataclass(frozen=True, slots=True)
class FetchResult:
    """
    Result of one fetch. Bytes are never carried here; they were pushed
    to the sink while streaming.
    """

    outcome: FetchOutcome
    bytes_delivered: int = 0
    duration_ms: int = 0

    @property
    def found(self) -> bool:
        return self.outcome is FetchOutcome.FOUND


@dataclass(frozen=True, slots=True)
class UploadSpec:
    """Per-upload parameters derived once from the path and configuration."""

    path: str
    mime_type: str
    content_encoding: Optional[str] = None
    size_hint: int = 0


@dataclass(frozen=True, slots=True)
class UploadStats:
    """Bytes moved and wall time spent in the transfer call."""

    bytes: int
    duration_ms: int


# Sink receiving contiguous byte spans in offset order
Sink = Callable[[bytes], Any]
