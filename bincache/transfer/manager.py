"""
Multi-part Transfer Manager
===========================

Uploads a stream as an S3 multipart upload:

    create_multipart_upload
        -> upload_part x N   (shared "upload" pool, bounded in flight)
        -> complete_multipart_upload

Parts are `part_size` bytes (the last one may be shorter) read
sequentially from the stream, so at most `part_size * max_parts_in_flight`
bytes are held in memory (`max_parts_in_flight` defaults to
`default_pool_size()`). Any part failure stops reading, waits for the
parts already running, aborts the upload server-side and leaves the handle
FAILED. Control requests and part uploads go through the retry policy.

`upload()` blocks the calling thread until the transfer reaches a terminal
state; the returned `TransferHandle` reports it.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from enum import Enum, auto
from typing import Any, BinaryIO, Callable, Optional

from bincache.core import constants as C
from bincache.core.errors import CacheStoreError
from bincache.core.types import ObjectHandle
from bincache.observability.metrics import bytes_counter
from bincache.reliability.retry import RetryPolicy, call_with_retry
from bincache.transfer.executor import default_pool_size

logger = logging.getLogger(__name__)

ProgressCallback = Callable[["TransferHandle"], None]


class TransferStatus(Enum):
    NOT_STARTED = auto()
    IN_PROGRESS = auto()
    COMPLETED = auto()
    FAILED = auto()

    @property
    def is_terminal(self) -> bool:
        return self not in (TransferStatus.NOT_STARTED, TransferStatus.IN_PROGRESS)


class TransferHandle:
    """Progress and terminal state of one multipart upload."""

    def __init__(self, handle: ObjectHandle, bytes_total: int = 0) -> None:
        self.handle = handle
        self.bytes_total = bytes_total
        self.upload_id: Optional[str] = None
        self._status = TransferStatus.NOT_STARTED
        self._bytes_transferred = 0
        self._last_error: Optional[CacheStoreError] = None
        self._lock = threading.Lock()
        self._finished = threading.Event()

    @property
    def status(self) -> TransferStatus:
        with self._lock:
            return self._status

    @property
    def bytes_transferred(self) -> int:
        with self._lock:
            return self._bytes_transferred

    @property
    def last_error(self) -> Optional[CacheStoreError]:
        with self._lock:
            return self._last_error

    def wait_until_finished(self, timeout: Optional[float] = None) -> TransferStatus:
        self._finished.wait(timeout)
        return self.status

    def _start(self) -> None:
        with self._lock:
            self._status = TransferStatus.IN_PROGRESS

    def _add_progress(self, nbytes: int) -> None:
        with self._lock:
            self._bytes_transferred += nbytes

    def _finish(self, status: TransferStatus, error: Optional[CacheStoreError] = None) -> None:
        with self._lock:
            self._status = status
            if error is not None:
                self._last_error = error
        self._finished.set()


class TransferManager:
    """
    Multipart uploader bound to one client and one worker pool.

    Usage:
        manager = TransferManager(client, pool, part_size=8 * MB)
        handle = manager.upload(stream, ObjectHandle(bucket, key), "text/plain")
        if handle.wait_until_finished() is not TransferStatus.COMPLETED:
            raise handle.last_error
    """

    def __init__(
        self,
        client: Any,
        executor: ThreadPoolExecutor,
        *,
        part_size: int = C.MULTIPART_DEFAULT_PART_SIZE,
        max_parts_in_flight: int = 0,
        policy: Optional[RetryPolicy] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        if part_size < C.MULTIPART_MIN_PART_SIZE:
            raise ValueError(
                f"part_size must be >= {C.MULTIPART_MIN_PART_SIZE}, got {part_size}"
            )
        self._client = client
        self._executor = executor
        self._part_size = part_size
        self._max_in_flight = max_parts_in_flight or default_pool_size()
        self._policy = policy or RetryPolicy.default()
        self._progress_callback = progress_callback or _log_progress

    def upload(
        self,
        stream: BinaryIO,
        handle: ObjectHandle,
        content_type: str,
        bytes_total: int = 0,
    ) -> TransferHandle:
        """Upload `stream` to `handle`; returns once the transfer is terminal."""
        transfer = TransferHandle(handle, bytes_total)
        transfer._start()

        first = stream.read(self._part_size)
        if not first:
            # S3 rejects multipart uploads without parts
            self._put_empty(transfer, content_type)
            return transfer

        created = call_with_retry(
            lambda: self._client.create_multipart_upload(
                Bucket=handle.bucket, Key=handle.key, ContentType=content_type,
            ),
            operation="create_multipart_upload",
            uri=handle.uri,
            policy=self._policy,
        )
        if created.is_err():
            transfer._finish(TransferStatus.FAILED, created.error)
            return transfer
        transfer.upload_id = created.value["UploadId"]

        parts, error = self._upload_parts(stream, first, transfer)
        if error is not None:
            self._abort(transfer)
            transfer._finish(TransferStatus.FAILED, error)
            return transfer

        self._complete(transfer, parts)
        return transfer

    # -------------------------------------------------------------------------
    # Parts
    # -------------------------------------------------------------------------
    def _upload_parts(
        self,
        stream: BinaryIO,
        first: bytes,
        transfer: TransferHandle,
    ) -> tuple[list[dict[str, Any]], Optional[CacheStoreError]]:
        slots = threading.BoundedSemaphore(self._max_in_flight)
        futures: list[Future] = []
        failed = threading.Event()

        def release(_: Future) -> None:
            slots.release()

        part_number = 1
        data = first
        try:
            while data and not failed.is_set():
                slots.acquire()
                future = self._executor.submit(
                    self._upload_part, transfer, part_number, data, failed,
                )
                future.add_done_callback(release)
                futures.append(future)
                part_number += 1
                data = stream.read(self._part_size)
        finally:
            wait(futures)

        parts: list[dict[str, Any]] = []
        error: Optional[CacheStoreError] = None
        for future in futures:
            outcome = future.result()
            if isinstance(outcome, CacheStoreError):
                error = error or outcome
            elif outcome is not None:
                parts.append(outcome)
        return parts, error

    def _upload_part(
        self,
        transfer: TransferHandle,
        part_number: int,
        data: bytes,
        failed: threading.Event,
    ) -> Any:
        if failed.is_set():
            return None

        handle = transfer.handle
        result = call_with_retry(
            lambda: self._client.upload_part(
                Bucket=handle.bucket,
                Key=handle.key,
                UploadId=transfer.upload_id,
                PartNumber=part_number,
                Body=data,
            ),
            operation="upload_part",
            uri=handle.uri,
            policy=self._policy,
        )
        if result.is_err():
            failed.set()
            return result.error

        transfer._add_progress(len(data))
        bytes_counter().inc(len(data), direction="upload")
        self._progress_callback(transfer)
        return {"PartNumber": part_number, "ETag": result.value["ETag"]}

    # -------------------------------------------------------------------------
    # Control requests
    # -------------------------------------------------------------------------
    def _complete(self, transfer: TransferHandle, parts: list[dict[str, Any]]) -> None:
        handle = transfer.handle
        parts = sorted(parts, key=lambda p: p["PartNumber"])
        completed = call_with_retry(
            lambda: self._client.complete_multipart_upload(
                Bucket=handle.bucket,
                Key=handle.key,
                UploadId=transfer.upload_id,
                MultipartUpload={"Parts": parts},
            ),
            operation="complete_multipart_upload",
            uri=handle.uri,
            policy=self._policy,
        )
        if completed.is_err():
            self._abort(transfer)
            transfer._finish(TransferStatus.FAILED, completed.error)
            return
        transfer._finish(TransferStatus.COMPLETED)

    def _abort(self, transfer: TransferHandle) -> None:
        handle = transfer.handle
        aborted = call_with_retry(
            lambda: self._client.abort_multipart_upload(
                Bucket=handle.bucket, Key=handle.key, UploadId=transfer.upload_id,
            ),
            operation="abort_multipart_upload",
            uri=handle.uri,
            policy=self._policy,
        )
        if aborted.is_err():
            logger.warning(
                "could not abort multipart upload of '%s': %s",
                handle.uri,
                aborted.error,
            )

    def _put_empty(self, transfer: TransferHandle, content_type: str) -> None:
        handle = transfer.handle
        put = call_with_retry(
            lambda: self._client.put_object(
                Bucket=handle.bucket, Key=handle.key, Body=b"", ContentType=content_type,
            ),
            operation="put",
            uri=handle.uri,
            policy=self._policy,
        )
        if put.is_err():
            transfer._finish(TransferStatus.FAILED, put.error)
        else:
            transfer._finish(TransferStatus.COMPLETED)


def _log_progress(transfer: TransferHandle) -> None:
    logger.debug(
        "upload progress ('%s'): '%d' of '%d' bytes",
        transfer.handle.uri,
        transfer.bytes_transferred,
        transfer.bytes_total,
    )
