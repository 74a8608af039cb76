"""
Configuration for the S3 Binary Cache Store
============================================

Type-safe, immutable configuration for one store instance.

Design:
- Immutable after validation (frozen dataclass)
- Fail-fast on invalid configuration (ValueError in __post_init__)
- Three sources: keyword arguments, environment, store URI

Store URI parameters use the binary cache setting names:

    s3://my-cache?region=eu-west-1&endpoint=minio.local:9000&scheme=http
        &narinfo-compression=xz&multipart-upload=true&buffer-size=8388608
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlsplit

from bincache.core import constants as C


_TRUE_VALUES = ("true", "1", "yes")
_FALSE_VALUES = ("false", "0", "no")


def _parse_bool(value: str, default: bool) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return default


@dataclass(frozen=True, slots=True)
class S3StoreConfig:
    """
    S3 binary cache store configuration.

    Attributes:
        bucket_name: Bucket holding the cache (required).
        profile: AWS configuration profile; empty uses the default chain.
        region: AWS region.
        scheme: "http" or "https"; empty means https.
        endpoint: Endpoint override for S3-compatible services.
        narinfo_compression: Codec for `.narinfo` files (empty = none).
        ls_compression: Codec for `.ls` files (empty = none).
        log_compression: Codec for `log/*` files (empty = none).
        multipart_upload: Use the multi-part transfer manager for uploads.
        buffer_size: Part size in bytes for multi-part uploads.
        ca_file: CA bundle used to verify TLS.
        store_dir: Logical store directory used to render store paths.
        want_mass_query: Default for the cache's mass-query flag.
        priority: Default cache priority.
        chunk_size: Range size for pipelined fetches.
        max_transfers: Concurrent range downloads per fetch (>= 2).
        max_buffered_chunks: Completed-but-undelivered chunks per fetch.
        connect_timeout_ms: TCP connect timeout.
        request_timeout_ms: Whole-request (read) timeout.
        retry_max_attempts: Retries after the first attempt.
        retry_base_ms: Base delay for exponential backoff.
        retry_max_ms: Cap for a single backoff delay.
    """
    bucket_name: str
    profile: str = ""
    region: str = C.DEFAULT_REGION
    scheme: str = ""
    endpoint: str = ""
    narinfo_compression: str = ""
    ls_compression: str = ""
    log_compression: str = ""
    multipart_upload: bool = False
    buffer_size: int = C.MULTIPART_DEFAULT_PART_SIZE
    ca_file: Optional[str] = None
    store_dir: str = C.DEFAULT_STORE_DIR
    want_mass_query: bool = False
    priority: int = 50

    chunk_size: int = C.FETCH_CHUNK_SIZE
    max_transfers: int = C.FETCH_MAX_TRANSFERS
    max_buffered_chunks: int = C.FETCH_MAX_BUFFERED_CHUNKS

    connect_timeout_ms: int = C.CONNECT_TIMEOUT_MS
    request_timeout_ms: int = C.REQUEST_TIMEOUT_MS
    retry_max_attempts: int = C.RETRY_MAX_ATTEMPTS
    retry_base_ms: int = C.RETRY_BASE_MS
    retry_max_ms: int = C.RETRY_MAX_MS

    def __post_init__(self) -> None:
        """
        Validate configuration invariants.

        Raises:
            ValueError: If any invariant is violated.
        """
        if not self.bucket_name:
            raise ValueError("bucket_name must not be empty")

        if self.scheme not in ("", "http", "https"):
            raise ValueError(f"scheme must be 'http' or 'https', got {self.scheme!r}")

        if self.buffer_size < C.MULTIPART_MIN_PART_SIZE:
            raise ValueError(
                f"buffer_size must be >= {C.MULTIPART_MIN_PART_SIZE}, "
                f"got {self.buffer_size}"
            )

        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be > 0, got {self.chunk_size}")
        if self.max_transfers < 2:
            raise ValueError(f"max_transfers must be >= 2, got {self.max_transfers}")
        if self.max_buffered_chunks < 1:
            raise ValueError(
                f"max_buffered_chunks must be >= 1, got {self.max_buffered_chunks}"
            )

        if self.connect_timeout_ms <= 0 or self.request_timeout_ms <= 0:
            raise ValueError("timeouts must be > 0")
        if self.retry_max_attempts < 0:
            raise ValueError(f"retry_max_attempts must be >= 0, got {self.retry_max_attempts}")

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket_name}"

    def with_overrides(self, **changes: Any) -> S3StoreConfig:
        """Copy with some fields replaced (validated again)."""
        return replace(self, **changes)

    @classmethod
    def from_env(cls, prefix: str = "BINCACHE") -> S3StoreConfig:
        """
        Construct configuration from environment variables.

        Environment Variables:
        - {prefix}_BUCKET: Bucket name (required)
        - {prefix}_PROFILE, {prefix}_REGION, {prefix}_SCHEME, {prefix}_ENDPOINT
        - {prefix}_NARINFO_COMPRESSION, {prefix}_LS_COMPRESSION,
          {prefix}_LOG_COMPRESSION
        - {prefix}_MULTIPART_UPLOAD, {prefix}_BUFFER_SIZE
        - {prefix}_CA_FILE (falls back to AWS_CA_BUNDLE)

        Raises:
            ValueError: If the bucket is missing or a value is invalid.
        """
        def _get(key: str, default: str = "") -> str:
            return os.environ.get(f"{prefix}_{key}", default)

        def _get_int(key: str, default: int) -> int:
            val = _get(key)
            return int(val) if val else default

        def _get_bool(key: str, default: bool) -> bool:
            return _parse_bool(_get(key), default)

        bucket = _get("BUCKET")
        if not bucket:
            raise ValueError(f"Environment variable {prefix}_BUCKET is required")

        return cls(
            bucket_name=bucket,
            profile=_get("PROFILE"),
            region=_get("REGION") or os.environ.get("AWS_REGION", C.DEFAULT_REGION),
            scheme=_get("SCHEME"),
            endpoint=_get("ENDPOINT"),
            narinfo_compression=_get("NARINFO_COMPRESSION"),
            ls_compression=_get("LS_COMPRESSION"),
            log_compression=_get("LOG_COMPRESSION"),
            multipart_upload=_get_bool("MULTIPART_UPLOAD", False),
            buffer_size=_get_int("BUFFER_SIZE", C.MULTIPART_DEFAULT_PART_SIZE),
            ca_file=_get("CA_FILE") or os.environ.get("AWS_CA_BUNDLE") or None,
            store_dir=_get("STORE_DIR", C.DEFAULT_STORE_DIR),
        )

    @classmethod
    def from_uri(cls, uri: str, **overrides: Any) -> S3StoreConfig:
        """
        Parse an `s3://bucket?param=value&...` store URI.

        Unknown parameters raise ValueError so typos are not silently ignored.
        """
        parts = urlsplit(uri)
        if parts.scheme != "s3":
            raise ValueError(f"not an s3:// store URI: {uri!r}")
        if not parts.netloc:
            raise ValueError(f"store URI has no bucket: {uri!r}")

        known = {f.name: f for f in fields(cls)}
        kwargs: Dict[str, Any] = {"bucket_name": parts.netloc}
        for raw_name, value in parse_qsl(parts.query, keep_blank_values=True):
            name = _URI_ALIASES.get(raw_name, raw_name.replace("-", "_"))
            if name not in known or name == "bucket_name":
                raise ValueError(f"unknown store setting {raw_name!r}")
            kwargs[name] = _coerce(known[name].default, value)

        kwargs.update(overrides)
        return cls(**kwargs)

    def get_client_kwargs(self) -> Dict[str, Any]:
        """
        Generate keyword arguments for `session.client("s3", ...)`.

        The botocore `Config` object is built by the caller; this only
        covers the endpoint and TLS parameters.
        """
        kwargs: Dict[str, Any] = {
            "region_name": self.region,
            "use_ssl": self.scheme != "http",
        }

        if self.endpoint:
            endpoint = self.endpoint
            if "://" not in endpoint:
                endpoint = f"{self.scheme or 'https'}://{endpoint}"
            kwargs["endpoint_url"] = endpoint

        if self.ca_file:
            kwargs["verify"] = self.ca_file

        return kwargs


_URI_ALIASES = {
    "aws-region": "region",
    "bucket": "bucket_name",
}


def _coerce(default: Any, value: str) -> Any:
    """Convert a URI/env string to the type of the field's default."""
    if isinstance(default, bool):
        if value.strip().lower() not in _TRUE_VALUES + _FALSE_VALUES:
            raise ValueError(f"expected a boolean, got {value!r}")
        return _parse_bool(value, False)
    if isinstance(default, int):
        return int(value)
    return value
