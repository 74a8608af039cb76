"""
Local metadata cache for binary caches.

Remembers, per cache URI, the settings a client adopts without asking the
remote (`want_mass_query`, `priority`). Two implementations:

- InMemoryDiskCache: process-local dict, for tests and one-shot tools
- SqliteDiskCache: persistent SQLite database shared between processes
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CacheInfo:
    want_mass_query: bool
    priority: int
    store_dir: str = ""


class DiskCache(Protocol):
    def cache_exists(self, uri: str) -> Optional[CacheInfo]: ...

    def create_cache(
        self,
        uri: str,
        store_dir: str,
        want_mass_query: bool,
        priority: int,
    ) -> None: ...


class InMemoryDiskCache:
    def __init__(self) -> None:
        self._entries: dict[str, CacheInfo] = {}
        self._lock = threading.Lock()

    def cache_exists(self, uri: str) -> Optional[CacheInfo]:
        with self._lock:
            return self._entries.get(uri)

    def create_cache(
        self,
        uri: str,
        store_dir: str,
        want_mass_query: bool,
        priority: int,
    ) -> None:
        with self._lock:
            self._entries[uri] = CacheInfo(want_mass_query, priority, store_dir)


class SqliteDiskCache:
    """
    SQLite-backed metadata cache.

    One row per cache URI; `create_cache` upserts.
    """

    PRAGMAS = [
        "PRAGMA journal_mode = WAL",
        "PRAGMA synchronous = NORMAL",
        "PRAGMA busy_timeout = 5000",
    ]

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS binary_caches (
            uri             TEXT PRIMARY KEY NOT NULL,
            timestamp       INTEGER NOT NULL,
            store_dir       TEXT NOT NULL,
            want_mass_query INTEGER NOT NULL,
            priority        INTEGER NOT NULL
        )
    """

    def __init__(self, db_path: Union[str, Path]) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        self._conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # autocommit
        )
        self._conn.row_factory = sqlite3.Row
        for pragma in self.PRAGMAS:
            self._conn.execute(pragma)
        self._conn.execute(self.SCHEMA)
        logger.debug("metadata cache opened", extra={"db_path": str(self._db_path)})

    def cache_exists(self, uri: str) -> Optional[CacheInfo]:
        with self._write_lock:
            row = self._conn.execute(
                "SELECT store_dir, want_mass_query, priority FROM binary_caches WHERE uri = ?",
                (uri,),
            ).fetchone()
        if row is None:
            return None
        return CacheInfo(
            want_mass_query=bool(row["want_mass_query"]),
            priority=int(row["priority"]),
            store_dir=row["store_dir"],
        )

    def create_cache(
        self,
        uri: str,
        store_dir: str,
        want_mass_query: bool,
        priority: int,
    ) -> None:
        with self._write_lock:
            self._conn.execute(
                """
                INSERT INTO binary_caches (uri, timestamp, store_dir, want_mass_query, priority)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(uri) DO UPDATE SET
                    timestamp = excluded.timestamp,
                    store_dir = excluded.store_dir,
                    want_mass_query = excluded.want_mass_query,
                    priority = excluded.priority
                """,
                (uri, int(time.time()), store_dir, int(want_mass_query), priority),
            )

    def close(self) -> None:
        with self._write_lock:
            self._conn.close()
