"""
Transfer Window: Bookkeeping for a Bounded Pipelined Fetch
===========================================================

Tracks which byte ranges of one object have been scheduled, which are in
flight and which are waiting to be delivered. Every scheduled chunk gets a
dedicated `Future` slot, appended in scheduling order; the consumer only
ever waits on the oldest slot, so completion order never affects delivery
order.

Two caps hold at every instant:
    in_flight              <= max_transfers
    scheduled - delivered  <= max_buffered_chunks

All state sits behind one lock held for O(1) bookkeeping. Network I/O
never happens under it: `reserve()` only hands out chunks, the caller
starts the downloads after the lock is released.
"""

from __future__ import annotations

import threading
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Deque, Optional

from bincache.core.types import ByteRange


class ChunkState(Enum):
    PENDING = auto()
    COMPLETED = auto()
    FAILED = auto()


@dataclass
class Chunk:
    """One contiguous byte range of the object."""

    index: int
    byte_range: ByteRange
    slot: Future = field(default_factory=Future, repr=False)
    data: Optional[bytes] = field(default=None, repr=False)
    state: ChunkState = ChunkState.PENDING
    error: Optional[BaseException] = None
    # Executor future of the running download, used for cancellation
    task: Optional[Future] = field(default=None, repr=False)

    @property
    def range_start(self) -> int:
        return self.byte_range.start

    @property
    def range_len(self) -> int:
        return self.byte_range.length


class TransferWindow:
    """
    Scheduling state of one fetch.

    Not reusable: a window covers exactly one object, once.
    """

    def __init__(
        self,
        object_size: int,
        chunk_size: int,
        max_transfers: int,
        max_buffered_chunks: int,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be > 0, got {chunk_size}")
        if max_transfers < 1 or max_buffered_chunks < 1:
            raise ValueError("window caps must be >= 1")

        self._object_size = object_size
        self._chunk_size = chunk_size
        self._max_transfers = max_transfers
        self._max_buffered = max_buffered_chunks

        self._lock = threading.Lock()
        self._next_offset = 0
        self._next_index = 0
        self._in_flight = 0
        self._pending: Deque[Chunk] = deque()
        self._failed = False
        self._delivered = 0
        self.failure: Optional[Chunk] = None

        self.peak_in_flight = 0
        self.peak_outstanding = 0

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------
    def reserve(self) -> list[Chunk]:
        """
        Claim every chunk that may start now.

        The caller must start a download for each returned chunk.
        """
        started: list[Chunk] = []
        with self._lock:
            while (
                not self._failed
                and self._next_offset < self._object_size
                and self._in_flight < self._max_transfers
                and len(self._pending) < self._max_buffered
            ):
                length = min(self._chunk_size, self._object_size - self._next_offset)
                chunk = Chunk(
                    index=self._next_index,
                    byte_range=ByteRange.of_length(self._next_offset, length),
                )
                self._next_offset += length
                self._next_index += 1
                self._in_flight += 1
                self._pending.append(chunk)
                started.append(chunk)

            self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
            self.peak_outstanding = max(self.peak_outstanding, len(self._pending))
        return started

    def complete(self, chunk: Chunk, data: bytes) -> None:
        """Record a successful download. Ignored once the window failed."""
        with self._lock:
            self._in_flight -= 1
            if self._failed:
                return
            chunk.data = data
            chunk.state = ChunkState.COMPLETED
            chunk.slot.set_result(chunk)

    def fail(self, chunk: Chunk, error: BaseException) -> bool:
        """
        Record a failed download and fail every undelivered slot.

        Returns False when the window had already failed.
        """
        with self._lock:
            self._in_flight -= 1
            chunk.state = ChunkState.FAILED
            chunk.error = error
            if self._failed:
                return False
            self._failed = True
            self.failure = chunk
            for pending in self._pending:
                if not pending.slot.done():
                    pending.slot.set_exception(error)
        return True

    def abort(self) -> list[Chunk]:
        """
        Stop scheduling and drop buffered data.

        Returns the chunks whose downloads may still be queued or running.
        """
        with self._lock:
            self._failed = True
            dropped = list(self._pending)
            self._pending.clear()

        for chunk in dropped:
            chunk.data = None
        return dropped

    # -------------------------------------------------------------------------
    # Consumer side
    # -------------------------------------------------------------------------
    def oldest(self) -> Optional[Chunk]:
        """Oldest undelivered chunk, or None when nothing is outstanding."""
        with self._lock:
            return self._pending[0] if self._pending else None

    def delivered(self, chunk: Chunk) -> None:
        """Release the oldest slot after its bytes reached the sink."""
        with self._lock:
            if not self._pending or self._pending[0] is not chunk:
                raise RuntimeError(f"chunk {chunk.index} delivered out of order")
            self._pending.popleft()
            self._delivered += 1
        chunk.data = None

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------
    @property
    def failed(self) -> bool:
        with self._lock:
            return self._failed

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def outstanding(self) -> int:
        with self._lock:
            return len(self._pending)

    @property
    def delivered_count(self) -> int:
        with self._lock:
            return self._delivered

    @property
    def exhausted(self) -> bool:
        """Every byte has been scheduled."""
        with self._lock:
            return self._next_offset >= self._object_size
