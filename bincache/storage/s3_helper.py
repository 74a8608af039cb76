"""
S3 Helper: Client Factory and Retried Object Operations
========================================================

Thin layer over a boto3 S3 client used by the binary cache store.

Operations:
| Operation          | Retried | Absent object          |
|--------------------|---------|------------------------|
| head               | yes     | Err(NotFound/Forbidden)|
| exists             | yes     | Ok(False)              |
| size               | yes     | Err(NotFound/Forbidden)|
| get_object         | yes     | Ok(data=None)          |
| get_object_to_sink | HEAD    | Ok(FetchResult absent) |
| put_object         | yes     | n/a                    |
| list_objects       | yes     | n/a                    |

Every method returns a Result; nothing here raises for remote failures.

The client is built with botocore's own retry loop disabled so that
`call_with_retry` is the only retry authority, with explicit connect and
read timeouts, and with path-style addressing when an endpoint override
points at an S3-compatible service.
"""

from __future__ import annotations

import io
import logging
import time
from dataclasses import dataclass
from typing import Any, BinaryIO, Optional, Union

import boto3
from botocore.config import Config as BotoConfig

from bincache.core import constants as C
from bincache.core.config import S3StoreConfig
from bincache.core.errors import (
    CacheStoreError,
    CodecError,
    ObjectNotFoundError,
    PermissionDeniedError,
)
from bincache.core.types import (
    Err,
    FetchResult,
    ObjectHandle,
    ObjectMetadata,
    Ok,
    Result,
    Sink,
)
from bincache.reliability.retry import RetryHook, RetryPolicy, call_with_retry
from bincache.storage import compression
from bincache.transfer.executor import default_pool_size
from bincache.transfer.fetch import PipelinedFetcher, head_object

logger = logging.getLogger(__name__)


def make_boto_config(config: S3StoreConfig) -> BotoConfig:
    """Build the botocore client configuration for a store."""
    kwargs: dict[str, Any] = {
        "connect_timeout": config.connect_timeout_ms / C.SECOND_MS,
        "read_timeout": config.request_timeout_ms / C.SECOND_MS,
        # One attempt per call; retries happen in call_with_retry
        "retries": {"total_max_attempts": 1, "mode": "standard"},
        "max_pool_connections": max(2 * default_pool_size(), 10),
    }
    if config.endpoint:
        kwargs["s3"] = {"addressing_style": "path"}
    return BotoConfig(**kwargs)


def make_client(config: S3StoreConfig) -> Any:
    """Create a boto3 S3 client for `config` (profile, region, endpoint, TLS)."""
    session = boto3.session.Session(profile_name=config.profile or None)
    return session.client(
        "s3",
        config=make_boto_config(config),
        **config.get_client_kwargs(),
    )


@dataclass(frozen=True, slots=True)
class ListingPage:
    """One page of a delimiter listing."""

    keys: tuple[str, ...]
    next_marker: Optional[str] = None

    @classmethod
    def from_response(cls, response: dict[str, Any]) -> ListingPage:
        keys = tuple(obj["Key"] for obj in response.get("Contents", []) or [])
        next_marker = response.get("NextMarker") or None
        if next_marker is None and response.get("IsTruncated"):
            # V1 listings only return NextMarker when a delimiter is given
            # and the page ended on a common prefix; else the last key is it
            prefixes = [p["Prefix"] for p in response.get("CommonPrefixes", []) or []]
            candidates = [c for c in (keys[-1:] + tuple(prefixes[-1:])) if c]
            next_marker = max(candidates) if candidates else None
        return cls(keys=keys, next_marker=next_marker)


@dataclass(frozen=True, slots=True)
class FileTransferResult:
    """Whole-object read: `data` is None when the object is absent."""

    data: Optional[bytes]
    duration_ms: int = 0

    @property
    def found(self) -> bool:
        return self.data is not None


class S3Helper:
    """
    Retried object operations against one bucket.

    Thread-safe: the boto3 client is thread-safe and the helper holds no
    mutable state.
    """

    def __init__(
        self,
        config: S3StoreConfig,
        client: Any,
        fetcher: PipelinedFetcher,
        on_retry: Optional[RetryHook] = None,
    ) -> None:
        self._config = config
        self._client = client
        self._fetcher = fetcher
        self._policy = RetryPolicy.from_config(config)
        self._on_retry = on_retry

    @property
    def client(self) -> Any:
        return self._client

    @property
    def bucket(self) -> str:
        return self._config.bucket_name

    def handle(self, key: str) -> ObjectHandle:
        return ObjectHandle(self._config.bucket_name, key)

    # -------------------------------------------------------------------------
    # Existence and size
    # -------------------------------------------------------------------------
    def head(self, handle: ObjectHandle) -> Result[ObjectMetadata, CacheStoreError]:
        return head_object(self._client, handle, self._policy, self._on_retry)

    def exists(self, handle: ObjectHandle) -> Result[bool, CacheStoreError]:
        """Not-found and forbidden are benign: Ok(False)."""
        result = self.head(handle)
        if result.is_ok():
            return Ok(True)
        if isinstance(result.error, (ObjectNotFoundError, PermissionDeniedError)):
            return Ok(False)
        return Err(result.error)

    def size(self, handle: ObjectHandle) -> Result[int, CacheStoreError]:
        return self.head(handle).map(lambda meta: meta.size_bytes)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------
    def get_object(self, handle: ObjectHandle) -> Result[FileTransferResult, CacheStoreError]:
        """
        Read a small object in one request, decoded by its content encoding.

        Used where a HEAD-then-GET round trip would be wasted, e.g.
        probing `.narinfo` records.
        """
        start = time.perf_counter()

        def _get() -> tuple[str, bytes]:
            response = self._client.get_object(Bucket=handle.bucket, Key=handle.key)
            body = response["Body"]
            try:
                return response.get("ContentEncoding") or "", body.read()
            finally:
                body.close()

        result = call_with_retry(
            _get,
            operation="get",
            uri=handle.uri,
            policy=self._policy,
            on_retry=self._on_retry,
        )
        duration_ms = int((time.perf_counter() - start) * 1000)

        if result.is_err():
            if isinstance(result.error, (ObjectNotFoundError, PermissionDeniedError)):
                return Ok(FileTransferResult(None, duration_ms))
            return Err(result.error)

        encoding, raw = result.value
        try:
            data = compression.decompress(encoding, raw)
        except CodecError as e:
            return Err(e)
        return Ok(FileTransferResult(data, duration_ms))

    def get_object_to_sink(
        self,
        handle: ObjectHandle,
        sink: Sink,
        metadata: Optional[ObjectMetadata] = None,
    ) -> Result[FetchResult, CacheStoreError]:
        """Stream raw (still encoded) bytes through the pipelined fetcher."""
        return self._fetcher.fetch(handle, sink, metadata)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------
    def put_object(
        self,
        handle: ObjectHandle,
        body: Union[bytes, BinaryIO],
        content_type: str,
        content_encoding: Optional[str] = None,
    ) -> Result[dict[str, Any], CacheStoreError]:
        """Single-request upload. Seekable streams are rewound per attempt."""
        if not isinstance(body, (bytes, bytearray)) and not _seekable(body):
            body = io.BytesIO(body.read())

        origin = 0 if isinstance(body, (bytes, bytearray)) else body.tell()
        kwargs: dict[str, Any] = {
            "Bucket": handle.bucket,
            "Key": handle.key,
            "ContentType": content_type,
        }
        if content_encoding:
            kwargs["ContentEncoding"] = content_encoding

        def _put() -> dict[str, Any]:
            if not isinstance(body, (bytes, bytearray)):
                body.seek(origin)
            return self._client.put_object(Body=body, **kwargs)

        return call_with_retry(
            _put,
            operation="put",
            uri=handle.uri,
            policy=self._policy,
            on_retry=self._on_retry,
        )

    # -------------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------------
    def list_objects(
        self,
        marker: str = "",
        delimiter: str = C.LISTING_DELIMITER,
        prefix: str = "",
    ) -> Result[ListingPage, CacheStoreError]:
        kwargs: dict[str, Any] = {"Bucket": self.bucket, "Delimiter": delimiter}
        if marker:
            kwargs["Marker"] = marker
        if prefix:
            kwargs["Prefix"] = prefix

        return call_with_retry(
            lambda: self._client.list_objects(**kwargs),
            operation="list",
            uri=self._config.uri,
            policy=self._policy,
            on_retry=self._on_retry,
        ).map(ListingPage.from_response)


def _seekable(stream: Any) -> bool:
    seekable = getattr(stream, "seekable", None)
    return bool(seekable and seekable())
