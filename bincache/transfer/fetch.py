"""
Bounded Pipelined Fetch Engine
==============================

Streams one object to a sink as a sequence of ranged GETs running on the
shared "fetch" pool.

Algorithm:
1. HEAD the object (retried). Not-found and forbidden end the fetch with
   the matching outcome before any range work.
2. Split [0, size) into `chunk_size` ranges, scheduled lazily through a
   `TransferWindow` under two caps (`max_transfers` concurrent downloads,
   `max_buffered_chunks` scheduled-but-undelivered chunks).
3. The caller's thread waits on the oldest chunk only, hands its bytes to
   the sink, releases the slot and schedules more work. Completions
   schedule more work too.
4. The first failing chunk fails the fetch. Queued downloads are cancelled,
   running ones finish and are dropped, nothing after the failing chunk is
   delivered.

Range reads are not retried; the caller may retry the whole fetch.

Memory: at most `chunk_size * max_buffered_chunks` bytes buffered.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

from bincache.core import constants as C
from bincache.core.config import S3StoreConfig
from bincache.core.errors import (
    CacheStoreError,
    ObjectNotFoundError,
    PermissionDeniedError,
    TransportError,
)
from bincache.core.types import (
    ByteRange,
    Err,
    FetchOutcome,
    FetchResult,
    ObjectHandle,
    ObjectMetadata,
    Ok,
    Result,
    Sink,
)
from bincache.observability.metrics import (
    bytes_counter,
    inflight_gauge,
    transfer_histogram,
)
from bincache.reliability.classifier import REMOTE_EXCEPTIONS, classify
from bincache.reliability.retry import RetryHook, RetryPolicy, call_with_retry
from bincache.transfer.window import Chunk, TransferWindow

# (size, chunk_size, max_transfers, max_buffered_chunks) -> window
WindowFactory = Callable[[int, int, int, int], TransferWindow]

logger = logging.getLogger(__name__)


def head_object(
    client: Any,
    handle: ObjectHandle,
    policy: Optional[RetryPolicy] = None,
    on_retry: Optional[RetryHook] = None,
) -> Result[ObjectMetadata, CacheStoreError]:
    """HEAD one object through the retry policy."""
    return call_with_retry(
        lambda: client.head_object(Bucket=handle.bucket, Key=handle.key),
        operation="head",
        uri=handle.uri,
        policy=policy,
        on_retry=on_retry,
    ).map(lambda response: ObjectMetadata.from_head(handle.key, response))


class PipelinedFetcher:
    """
    Range-parallel streaming downloader.

    Thread-safe: every `fetch()` call owns a private window, built by
    `window_factory`; only the client and the worker pool are shared.
    """

    def __init__(
        self,
        client: Any,
        executor: ThreadPoolExecutor,
        *,
        chunk_size: int = C.FETCH_CHUNK_SIZE,
        max_transfers: int = C.FETCH_MAX_TRANSFERS,
        max_buffered_chunks: int = C.FETCH_MAX_BUFFERED_CHUNKS,
        policy: Optional[RetryPolicy] = None,
        on_retry: Optional[RetryHook] = None,
        window_factory: WindowFactory = TransferWindow,
    ) -> None:
        if max_transfers < 2:
            raise ValueError(f"max_transfers must be >= 2, got {max_transfers}")
        self._client = client
        self._executor = executor
        self._chunk_size = chunk_size
        self._max_transfers = max_transfers
        self._max_buffered = max_buffered_chunks
        self._policy = policy or RetryPolicy.default()
        self._on_retry = on_retry
        self._window_factory = window_factory

    @classmethod
    def from_config(
        cls,
        client: Any,
        executor: ThreadPoolExecutor,
        config: S3StoreConfig,
        on_retry: Optional[RetryHook] = None,
    ) -> PipelinedFetcher:
        return cls(
            client,
            executor,
            chunk_size=config.chunk_size,
            max_transfers=config.max_transfers,
            max_buffered_chunks=config.max_buffered_chunks,
            policy=RetryPolicy.from_config(config),
            on_retry=on_retry,
        )

    def fetch(
        self,
        handle: ObjectHandle,
        sink: Sink,
        metadata: Optional[ObjectMetadata] = None,
    ) -> Result[FetchResult, CacheStoreError]:
        """
        Stream `handle` into `sink`.

        Args:
            handle: Object to read
            sink: Called once per chunk, in offset order
            metadata: HEAD result the caller already holds; skips the HEAD

        Returns:
            Ok(FetchResult) for found and absent objects, Err on transport
            failures. Exceptions raised by the sink propagate.
        """
        start = time.perf_counter()
        logger.debug("fetching '%s'...", handle.uri)

        if metadata is None:
            head = head_object(self._client, handle, self._policy, self._on_retry)
            if head.is_err():
                return _absent_or_error(head.error)
            metadata = head.value

        window = self._window_factory(
            metadata.size_bytes,
            self._chunk_size,
            self._max_transfers,
            self._max_buffered,
        )

        delivered = 0
        finished = False
        try:
            self._schedule(handle, window, metadata.etag)
            while True:
                chunk = window.oldest()
                if chunk is None:
                    break
                try:
                    chunk.slot.result()
                except REMOTE_EXCEPTIONS:
                    failure = window.failure or chunk
                    cause = failure.error or chunk.slot.exception()
                    classification = classify(cause)
                    return Err(TransportError.chunk_failed(
                        handle.uri,
                        failure.index,
                        failure.byte_range.to_http_header(),
                        cause,
                        classification.code,
                        classification.message,
                    ))

                sink(chunk.data)
                delivered += chunk.range_len
                bytes_counter().inc(chunk.range_len, direction="download")
                window.delivered(chunk)
                self._schedule(handle, window, metadata.etag)
            finished = True
        finally:
            if not finished:
                self._abandon(handle, window)

        elapsed = time.perf_counter() - start
        transfer_histogram().observe(elapsed, direction="get")
        return Ok(FetchResult(
            FetchOutcome.FOUND,
            bytes_delivered=delivered,
            duration_ms=int(elapsed * 1000),
        ))

    # -------------------------------------------------------------------------
    # Scheduling
    # -------------------------------------------------------------------------
    def _schedule(self, handle: ObjectHandle, window: TransferWindow, etag: str) -> None:
        for chunk in window.reserve():
            try:
                chunk.task = self._executor.submit(self._run_chunk, handle, window, chunk, etag)
            except RuntimeError as e:
                # Pool shut down underneath us
                window.fail(chunk, TransportError.from_remote(
                    "get", handle.uri, "ExecutorShutdown", str(e), cause=e,
                ))
                return

    def _run_chunk(
        self,
        handle: ObjectHandle,
        window: TransferWindow,
        chunk: Chunk,
        etag: str,
    ) -> None:
        gauge = inflight_gauge()
        gauge.inc()
        try:
            data = self._read_range(handle, chunk.byte_range, etag)
        except Exception as e:  # surfaced to the consumer through the slot
            if window.fail(chunk, e):
                logger.debug(
                    "chunk %d of '%s' failed: %s", chunk.index, handle.uri, e,
                )
            return
        else:
            window.complete(chunk, data)
        finally:
            gauge.dec()

        self._schedule(handle, window, etag)

    def _read_range(self, handle: ObjectHandle, byte_range: ByteRange, etag: str) -> bytes:
        header = byte_range.to_http_header()
        params: dict[str, Any] = {
            "Bucket": handle.bucket,
            "Key": handle.key,
            "Range": header,
        }
        if etag:
            params["IfMatch"] = etag

        response = self._client.get_object(**params)
        body = response["Body"]
        try:
            data = body.read()
        finally:
            body.close()

        if len(data) != byte_range.length:
            raise TransportError.from_remote(
                "get",
                handle.uri,
                "IncompleteBody",
                f"range {header} returned {len(data)} bytes, expected {byte_range.length}",
            )
        return data

    def _abandon(self, handle: ObjectHandle, window: TransferWindow) -> None:
        cancelled = 0
        for chunk in window.abort():
            if chunk.task is not None and chunk.task.cancel():
                cancelled += 1
        logger.debug(
            "abandoned fetch of '%s' (%d queued downloads cancelled)",
            handle.uri,
            cancelled,
        )


def _absent_or_error(error: CacheStoreError) -> Result[FetchResult, CacheStoreError]:
    if isinstance(error, ObjectNotFoundError):
        return Ok(FetchResult(FetchOutcome.NOT_FOUND))
    if isinstance(error, PermissionDeniedError):
        return Ok(FetchResult(FetchOutcome.FORBIDDEN))
    return Err(error)
