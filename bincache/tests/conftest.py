"""Shared fixtures."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Iterator

import pytest

from bincache.core.config import S3StoreConfig
from bincache.reliability.retry import RetryPolicy
from bincache.storage.binary_cache import S3BinaryCacheStore
from bincache.storage.disk_cache import InMemoryDiskCache
from bincache.tests.fakes import FakeS3Client

BUCKET = "cache"


@pytest.fixture
def fake_s3() -> FakeS3Client:
    return FakeS3Client(BUCKET)


@pytest.fixture
def pool() -> Iterator[ThreadPoolExecutor]:
    executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="test-fetch")
    yield executor
    executor.shutdown(wait=True)


@pytest.fixture
def fast_policy() -> RetryPolicy:
    return RetryPolicy(max_retries=3, base_delay_ms=0, max_delay_ms=0)


@pytest.fixture
def config() -> S3StoreConfig:
    return S3StoreConfig(bucket_name=BUCKET, retry_base_ms=1, retry_max_ms=2)


@pytest.fixture
def disk_cache() -> InMemoryDiskCache:
    return InMemoryDiskCache()


@pytest.fixture
def make_store(fake_s3: FakeS3Client, config: S3StoreConfig, disk_cache: InMemoryDiskCache):
    """Factory building stores over the fake client; closed after the test."""
    stores: list[S3BinaryCacheStore] = []

    def _make(**overrides) -> S3BinaryCacheStore:
        store = S3BinaryCacheStore(
            config.with_overrides(**overrides) if overrides else config,
            client=fake_s3,
            disk_cache=disk_cache,
        )
        stores.append(store)
        return store

    yield _make
    for store in stores:
        store.close()


@pytest.fixture
def store(make_store) -> S3BinaryCacheStore:
    return make_store()
