"""
Retry Policy: Exponential Backoff for Remote Calls

Implements the retry strategy wrapped around every control-plane call
(HEAD, whole-object GET, PUT, LIST, multipart control requests):
- Exponential backoff: base × 2^n, capped at max_delay_ms
- Optional full jitter: random(0, backoff)
- Non-retryable classifications (not-found, forbidden, malformed request)
  return immediately

Range downloads inside a pipelined fetch are not wrapped; a failing chunk
fails the fetch. botocore's own retry loop is disabled by the client
factory so this module is the only retry authority.

Every retry emits one warning log line, one metric increment and one
optional `on_retry` callback carrying the computed delay.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from bincache.core import constants as C
from bincache.core.config import S3StoreConfig
from bincache.core.errors import CacheStoreError, TransportError
from bincache.core.types import Err, Ok, Result
from bincache.observability.metrics import retries_counter
from bincache.reliability.classifier import (
    Classification,
    REMOTE_EXCEPTIONS,
    classify,
    to_error,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration."""

    max_retries: int = C.RETRY_MAX_ATTEMPTS
    base_delay_ms: int = C.RETRY_BASE_MS
    max_delay_ms: int = C.RETRY_MAX_MS
    exponential_base: float = 2.0
    jitter: bool = False

    @classmethod
    def default(cls) -> RetryPolicy:
        return cls()

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        return cls(max_retries=0)

    @classmethod
    def from_config(cls, config: S3StoreConfig) -> RetryPolicy:
        return cls(
            max_retries=config.retry_max_attempts,
            base_delay_ms=config.retry_base_ms,
            max_delay_ms=config.retry_max_ms,
        )


@dataclass(frozen=True)
class RetryEvent:
    """Observability event emitted once per retry attempt."""
    operation: str
    uri: str
    attempt: int
    delay_ms: float
    classification: Classification


RetryHook = Callable[[RetryEvent], None]


def calculate_backoff(
    attempt: int,
    base_delay_ms: int,
    max_delay_ms: int,
    exponential_base: float,
    jitter: bool,
) -> float:
    """
    Calculate backoff delay with optional jitter.

    Full jitter: random(0, min(cap, base * 2^attempt))
    """
    delay = min(max_delay_ms, base_delay_ms * (exponential_base ** attempt))

    if jitter:
        delay = random.uniform(0, delay)

    return delay


def call_with_retry(
    func: Callable[[], T],
    *,
    operation: str,
    uri: str,
    policy: Optional[RetryPolicy] = None,
    on_retry: Optional[RetryHook] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Result[T, CacheStoreError]:
    """
    Execute a remote call with retry and exponential backoff.

    Args:
        func: Zero-argument callable issuing the remote request
        operation: Short verb for logs and errors ("head", "put", ...)
        uri: Object or bucket URI the call targets
        policy: Retry configuration (default if None)
        on_retry: Hook invoked before each backoff sleep
        sleep: Sleep function (seconds), replaceable in tests

    Returns:
        Ok with the call's result, or Err with the classified error.
        Exceptions that are not remote outcomes propagate unchanged.
    """
    if policy is None:
        policy = RetryPolicy.default()

    attempt = 0
    while True:
        try:
            return Ok(func())
        except REMOTE_EXCEPTIONS as e:
            classification = classify(e)

            if not classification.retryable:
                return Err(to_error(classification, operation, uri, e))

            if attempt >= policy.max_retries:
                return Err(TransportError.retry_exhausted(
                    operation,
                    uri,
                    attempt + 1,
                    classification.code,
                    classification.message,
                    cause=e,
                ))

            delay = calculate_backoff(
                attempt=attempt,
                base_delay_ms=policy.base_delay_ms,
                max_delay_ms=policy.max_delay_ms,
                exponential_base=policy.exponential_base,
                jitter=policy.jitter,
            )

            logger.warning(
                "AWS error '%s' (%s), will retry in %d ms",
                classification.code,
                classification.message,
                delay,
                extra={"operation": operation, "uri": uri, "attempt": attempt + 1},
            )
            retries_counter().inc(operation=operation)
            if on_retry is not None:
                on_retry(RetryEvent(operation, uri, attempt + 1, delay, classification))

            sleep(delay / 1000)
            attempt += 1
