"""
S3 Binary Cache Store
=====================

Public facade of the package. Maps binary cache files onto objects of one
bucket and raises typed `CacheStoreError`s; the layers below return
Results.

Files:
| Path pattern   | Content             | Codec setting         |
|----------------|---------------------|-----------------------|
| `*.narinfo`    | path metadata       | narinfo_compression   |
| `*.ls`         | NAR listings        | ls_compression        |
| `log/*`        | build logs          | log_compression       |
| anything else  | NARs, cache info    | stored as given       |

Compressed files are materialised in memory, uploaded with a
`Content-Encoding` and decoded transparently on read. Multipart uploads
cannot carry a content encoding, so that combination is rejected before
any request is made.

Usage:
    config = S3StoreConfig.from_uri("s3://my-cache?region=eu-west-1")
    with S3BinaryCacheStore(config) as store:
        store.init()
        store.upsert_file("abc.narinfo", narinfo_bytes, "text/x-nix-narinfo")
        data = store.get_file_bytes("abc.narinfo")
"""

from __future__ import annotations

import io
import logging
import time
from typing import Any, BinaryIO, Optional, Union

from bincache.core import constants as C
from bincache.core.config import S3StoreConfig
from bincache.core.errors import (
    ConfigurationError,
    NoSuchCacheFileError,
    ObjectNotFoundError,
    PermissionDeniedError,
    TransferFailedError,
)
from bincache.core.types import Sink, StorePath, UploadSpec, UploadStats
from bincache.observability.metrics import StoreStats, bytes_counter, transfer_histogram
from bincache.reliability.retry import RetryEvent, RetryPolicy
from bincache.storage import compression
from bincache.storage.disk_cache import DiskCache, InMemoryDiskCache
from bincache.storage.s3_helper import S3Helper, make_client
from bincache.transfer.executor import FETCH_POOL, UPLOAD_POOL, SharedExecutor
from bincache.transfer.fetch import PipelinedFetcher
from bincache.transfer.manager import TransferManager, TransferStatus

logger = logging.getLogger(__name__)

Payload = Union[bytes, bytearray, BinaryIO]


def parse_narinfo_key(key: str) -> Optional[StorePath]:
    """Decode `<32-char hash>.narinfo`; anything else is not a store path."""
    if len(key) != C.NARINFO_KEY_LENGTH or not key.endswith(C.NARINFO_SUFFIX):
        return None
    return StorePath(hash_part=key[: -len(C.NARINFO_SUFFIX)], name=C.MISSING_NAME)


def parse_cache_info(text: str) -> dict[str, str]:
    """Parse `Key: value` lines of a cache info file."""
    fields: dict[str, str] = {}
    for line in text.splitlines():
        name, sep, value = line.partition(":")
        if sep:
            fields[name.strip()] = value.strip()
    return fields


class S3BinaryCacheStore:
    """
    Binary cache store backed by one S3 bucket.

    Thread-safe for concurrent reads and writes, including the `stats`
    counters.
    """

    def __init__(
        self,
        config: S3StoreConfig,
        *,
        client: Any = None,
        disk_cache: Optional[DiskCache] = None,
    ) -> None:
        self._config = config
        self._client = client if client is not None else make_client(config)
        self._disk_cache = disk_cache if disk_cache is not None else InMemoryDiskCache()
        self._stats = StoreStats()
        self._closed = False

        self.want_mass_query = config.want_mass_query
        self.priority = config.priority

        self._fetch_pool = SharedExecutor.acquire(FETCH_POOL)
        self._upload_pool = SharedExecutor.acquire(UPLOAD_POOL)

        fetcher = PipelinedFetcher.from_config(
            self._client, self._fetch_pool, config, on_retry=self._count_retry,
        )
        self._helper = S3Helper(config, self._client, fetcher, on_retry=self._count_retry)
        self._transfer_manager: Optional[TransferManager] = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    @property
    def uri(self) -> str:
        return self._config.uri

    @property
    def config(self) -> S3StoreConfig:
        return self._config

    @property
    def stats(self) -> StoreStats:
        """Copy of the operation counters."""
        return self._stats.copy()

    def init(self) -> None:
        """
        Load cache settings.

        The local metadata cache answers when it knows this store; otherwise
        the bucket's cache info file is read (or created) and the result is
        remembered locally.
        """
        info = self._disk_cache.cache_exists(self.uri)
        if info is not None:
            self.want_mass_query = info.want_mass_query
            self.priority = info.priority
            return

        self._init_from_remote()
        self._disk_cache.create_cache(
            self.uri, self._config.store_dir, self.want_mass_query, self.priority,
        )

    def _init_from_remote(self) -> None:
        handle = self._helper.handle(C.CACHE_INFO_FILE)
        result = self._helper.get_object(handle).unwrap()
        if not result.found:
            self.upsert_file(
                C.CACHE_INFO_FILE,
                f"StoreDir: {self._config.store_dir}\n".encode(),
                C.CACHE_INFO_MIME_TYPE,
            )
            return

        fields = parse_cache_info(result.data.decode("utf-8", errors="replace"))
        store_dir = fields.get("StoreDir")
        if store_dir and store_dir != self._config.store_dir:
            raise ConfigurationError.invalid(
                "store-dir",
                f"binary cache '{self.uri}' is for stores with prefix "
                f"'{store_dir}', not '{self._config.store_dir}'",
            )
        if "WantMassQuery" in fields:
            self.want_mass_query = fields["WantMassQuery"] == "1"
        if "Priority" in fields:
            try:
                self.priority = int(fields["Priority"])
            except ValueError:
                logger.warning(
                    "ignoring invalid priority %r in '%s'", fields["Priority"], handle.uri,
                )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        SharedExecutor.release(FETCH_POOL)
        SharedExecutor.release(UPLOAD_POOL)

    def __enter__(self) -> S3BinaryCacheStore:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------
    def file_exists(self, path: str) -> bool:
        """Benign negatives (not found, forbidden) are False; other errors raise."""
        self._ensure_open()
        self._stats.incr("head")
        return self._helper.exists(self._helper.handle(path)).unwrap()

    def get_file(self, path: str, sink: Sink) -> None:
        """
        Stream a file into `sink`, decoding its content encoding.

        Raises:
            NoSuchCacheFileError: The file does not exist (or is not readable).
            TransportError: The download failed.
        """
        self._ensure_open()
        handle = self._helper.handle(path)

        self._stats.incr("head")
        head = self._helper.head(handle)
        if head.is_err():
            if isinstance(head.error, (ObjectNotFoundError, PermissionDeniedError)):
                raise NoSuchCacheFileError.for_path(path, self.uri)
            raise head.error
        metadata = head.value

        decoder = compression.decompressor(metadata.content_encoding)

        def _decode(data: bytes) -> None:
            out = decoder.feed(data)
            if out:
                sink(out)

        self._stats.incr("get")
        result = self._helper.get_object_to_sink(handle, _decode, metadata).unwrap()
        if not result.found:
            raise NoSuchCacheFileError.for_path(path, self.uri)

        tail = decoder.finish()
        if tail:
            sink(tail)
        self._stats.record_get(result.bytes_delivered, result.duration_ms)

    def get_file_bytes(self, path: str) -> bytes:
        pieces: list[bytes] = []
        self.get_file(path, pieces.append)
        return b"".join(pieces)

    def get_narinfo(self, store_path: StorePath) -> Optional[bytes]:
        """Read a `.narinfo` record in one GET; None when absent."""
        self._ensure_open()
        self._stats.incr("get")
        result = self._helper.get_object(self._helper.handle(store_path.narinfo_key)).unwrap()
        if result.found:
            self._stats.record_get(len(result.data), result.duration_ms)
        return result.data

    def is_valid_path(self, store_path: StorePath) -> bool:
        # GET straight away: valid paths are the common case, so HEAD first
        # would cost a second round trip
        return self.get_narinfo(store_path) is not None

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------
    def upsert_file(self, path: str, data: Payload, mime_type: str) -> UploadStats:
        """
        Create or replace a file, compressing it when its category has a codec.

        Raises:
            ConfigurationError: Compression configured together with multipart.
            PermissionDeniedError: The bucket refused the write.
            TransferFailedError: A multipart transfer did not complete.
        """
        self._ensure_open()
        codec = self.codec_for(path)
        if codec and self._config.multipart_upload:
            raise ConfigurationError.invalid(
                "multipart-upload",
                "setting a content encoding is not supported with S3 multi-part uploads",
            )

        if codec:
            raw = bytes(data) if isinstance(data, (bytes, bytearray)) else data.read()
            return self._upload_file(path, compression.compress(codec, raw), mime_type, codec)
        return self._upload_file(path, data, mime_type, None)

    def codec_for(self, path: str) -> str:
        """Configured codec of the file category `path` belongs to ("" = none)."""
        if path.endswith(C.NARINFO_SUFFIX):
            codec = self._config.narinfo_compression
        elif path.endswith(C.LS_SUFFIX):
            codec = self._config.ls_compression
        elif path.startswith(C.LOG_PREFIX):
            codec = self._config.log_compression
        else:
            return ""
        return "" if compression.is_identity(codec) else codec

    def _upload_file(
        self,
        path: str,
        data: Payload,
        mime_type: str,
        content_encoding: Optional[str],
    ) -> UploadStats:
        stream = _as_stream(data)
        spec = UploadSpec(
            path=path,
            mime_type=mime_type,
            content_encoding=content_encoding,
            size_hint=_remaining(stream),
        )

        handle = self._helper.handle(path)
        start = time.perf_counter()

        if self._config.multipart_upload:
            self._upload_multipart(spec, stream)
        else:
            self._helper.put_object(
                handle, stream, spec.mime_type, spec.content_encoding,
            ).unwrap()
            bytes_counter().inc(spec.size_hint, direction="upload")

        elapsed = time.perf_counter() - start
        duration_ms = int(elapsed * 1000)
        transfer_histogram().observe(elapsed, direction="put")
        self._stats.record_put(spec.size_hint, duration_ms)

        logger.info("uploaded '%s' (%d bytes) in %d ms", handle.uri, spec.size_hint, duration_ms)
        return UploadStats(bytes=spec.size_hint, duration_ms=duration_ms)

    def _upload_multipart(self, spec: UploadSpec, stream: BinaryIO) -> None:
        handle = self._helper.handle(spec.path)
        transfer = self._get_transfer_manager().upload(
            stream, handle, spec.mime_type, bytes_total=spec.size_hint,
        )
        status = transfer.wait_until_finished()
        if status is TransferStatus.COMPLETED:
            return

        error = transfer.last_error
        if isinstance(error, PermissionDeniedError):
            raise error
        raise TransferFailedError.failed(handle.uri, str(error), cause=error)

    def _get_transfer_manager(self) -> TransferManager:
        if self._transfer_manager is None:
            self._transfer_manager = TransferManager(
                self._client,
                self._upload_pool,
                part_size=self._config.buffer_size,
                max_parts_in_flight=SharedExecutor.pool_size(UPLOAD_POOL),
                policy=RetryPolicy.from_config(self._config),
            )
        return self._transfer_manager

    # -------------------------------------------------------------------------
    # Listing
    # -------------------------------------------------------------------------
    def query_all_valid_paths(self) -> set[StorePath]:
        """
        Enumerate every store path with a `.narinfo` at the bucket root.

        Names are not recoverable from keys; decoded paths carry a
        placeholder name.
        """
        self._ensure_open()
        paths: set[StorePath] = set()
        marker = ""

        while True:
            page = self._helper.list_objects(marker=marker).unwrap()
            self._stats.incr("lists")
            logger.debug(
                "got %d keys, next marker '%s'", len(page.keys), page.next_marker or "",
            )

            for key in page.keys:
                store_path = parse_narinfo_key(key)
                if store_path is not None:
                    paths.add(store_path)

            if not page.next_marker or page.next_marker == marker:
                break
            marker = page.next_marker

        return paths

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------
    def _count_retry(self, event: RetryEvent) -> None:
        self._stats.incr("retries")

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"store '{self.uri}' is closed")


def _as_stream(data: Payload) -> BinaryIO:
    if isinstance(data, (bytes, bytearray)):
        return io.BytesIO(bytes(data))
    seekable = getattr(data, "seekable", None)
    if seekable is not None and seekable():
        return data
    return io.BytesIO(data.read())


def _remaining(stream: BinaryIO) -> int:
    """Bytes between the current position and the end of a seekable stream."""
    position = stream.tell()
    end = stream.seek(0, io.SEEK_END)
    stream.seek(position)
    return end - position
