"""
Reliability module: error classification and retry with backoff.
"""

from bincache.reliability.classifier import (
    Classification,
    ErrorKind,
    classify,
    classify_code,
)
from bincache.reliability.retry import (
    RetryEvent,
    RetryPolicy,
    calculate_backoff,
    call_with_retry,
)

__all__ = [
    "Classification",
    "ErrorKind",
    "classify",
    "classify_code",
    "RetryEvent",
    "RetryPolicy",
    "calculate_backoff",
    "call_with_retry",
]
