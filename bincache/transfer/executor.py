"""
Shared worker pools.

One lazily created `ThreadPoolExecutor` per purpose ("fetch", "upload"),
sized to the CPU count and reference counted across store instances. The
last `release()` shuts the pool down without waiting; running tasks finish
on their own.
"""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from typing import ClassVar, Iterator, Optional

logger = logging.getLogger(__name__)

FETCH_POOL = "fetch"
UPLOAD_POOL = "upload"


def default_pool_size() -> int:
    # Range downloads overlap with the consumer, so never fewer than two.
    return max(os.cpu_count() or 1, 2)


@dataclass
class _PoolEntry:
    executor: ThreadPoolExecutor
    workers: int
    refcount: int = 0


class SharedExecutor:
    """
    Process-wide registry of reference-counted thread pools.

    Usage:
        pool = SharedExecutor.acquire(FETCH_POOL)
        try:
            pool.submit(work)
        finally:
            SharedExecutor.release(FETCH_POOL)
    """

    _pools: ClassVar[dict[str, _PoolEntry]] = {}
    _lock: ClassVar[threading.Lock] = threading.Lock()

    @classmethod
    def acquire(cls, name: str, max_workers: Optional[int] = None) -> ThreadPoolExecutor:
        """Return the pool for `name`, creating it on first use."""
        with cls._lock:
            entry = cls._pools.get(name)
            if entry is None:
                workers = max_workers or default_pool_size()
                entry = _PoolEntry(
                    ThreadPoolExecutor(
                        max_workers=workers,
                        thread_name_prefix=f"bincache-{name}",
                    ),
                    workers,
                )
                cls._pools[name] = entry
                logger.debug("created '%s' worker pool with %d threads", name, workers)
            entry.refcount += 1
            return entry.executor

    @classmethod
    def release(cls, name: str) -> None:
        with cls._lock:
            entry = cls._pools.get(name)
            if entry is None:
                return
            entry.refcount -= 1
            if entry.refcount > 0:
                return
            del cls._pools[name]

        entry.executor.shutdown(wait=False)
        logger.debug("shut down '%s' worker pool", name)

    @classmethod
    def pool_size(cls, name: str) -> int:
        """Thread count of the live pool `name`, or the default for a new one."""
        with cls._lock:
            entry = cls._pools.get(name)
            return entry.workers if entry else default_pool_size()

    @classmethod
    def refcount(cls, name: str) -> int:
        with cls._lock:
            entry = cls._pools.get(name)
            return entry.refcount if entry else 0

    @classmethod
    @contextmanager
    def lease(cls, name: str) -> Iterator[ThreadPoolExecutor]:
        pool = cls.acquire(name)
        try:
            yield pool
        finally:
            cls.release(name)
