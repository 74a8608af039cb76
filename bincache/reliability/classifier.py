"""
Error Classifier: Remote Outcomes to Not-Found / Forbidden / Transport

S3 reports failures through a large vendor taxonomy of error codes. The
transfer layers only need three buckets:

- NOT_FOUND:  the object does not exist
- FORBIDDEN:  the request was refused; on reads this is what a missing key
              looks like when bucket listing is disabled (404s become 403s)
- TRANSPORT:  everything else, split into retryable (throttling, transient
              server and connection failures) and non-retryable (malformed
              request and other client errors)

The code tables below are the whole policy; anything not listed falls into
the non-retryable TRANSPORT bucket.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Final

from botocore import exceptions as boto_exc

from bincache.core.errors import (
    CacheStoreError,
    ObjectNotFoundError,
    PermissionDeniedError,
    TransportError,
)


class ErrorKind(Enum):
    """Classification bucket of a failed remote call."""
    NOT_FOUND = auto()
    FORBIDDEN = auto()
    TRANSPORT = auto()


@dataclass(frozen=True, slots=True)
class Classification:
    """Classified remote failure."""
    kind: ErrorKind
    code: str
    message: str
    retryable: bool = False

    @property
    def is_absent(self) -> bool:
        """Benign negative result on the read path."""
        return self.kind in (ErrorKind.NOT_FOUND, ErrorKind.FORBIDDEN)


# =============================================================================
# CODE TABLES
# =============================================================================
NOT_FOUND_CODES: Final[frozenset[str]] = frozenset({
    "NoSuchKey",
    "NotFound",
    "ResourceNotFound",
    "404",
})

FORBIDDEN_CODES: Final[frozenset[str]] = frozenset({
    "AccessDenied",
    "Forbidden",
    "403",
})

RETRYABLE_CODES: Final[frozenset[str]] = frozenset({
    # Throttling
    "SlowDown",
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestThrottled",
    "RequestLimitExceeded",
    "TooManyRequestsException",
    "BandwidthLimitExceeded",
    "429",
    # Transient service failures
    "RequestTimeout",
    "RequestTimeoutException",
    "InternalError",
    "ServiceUnavailable",
    "500",
    "502",
    "503",
    "504",
})

# Exceptions raised by the transport itself (no service response)
RETRYABLE_TRANSPORT_EXCEPTIONS: Final[tuple[type[BaseException], ...]] = (
    boto_exc.ConnectionError,
    boto_exc.HTTPClientError,
    boto_exc.IncompleteReadError,
    ConnectionError,
    TimeoutError,
)

# Everything a remote call may raise that is a remote outcome rather than a bug
REMOTE_EXCEPTIONS: Final[tuple[type[BaseException], ...]] = (
    boto_exc.ClientError,
    boto_exc.BotoCoreError,
    OSError,
    CacheStoreError,
)


def classify_code(code: str, message: str = "") -> Classification:
    """
    Classify a service error code.

    Complexity: O(1) set lookups.
    """
    if code in NOT_FOUND_CODES:
        return Classification(ErrorKind.NOT_FOUND, code, message)
    if code in FORBIDDEN_CODES:
        return Classification(ErrorKind.FORBIDDEN, code, message)
    return Classification(
        ErrorKind.TRANSPORT,
        code,
        message,
        retryable=code in RETRYABLE_CODES,
    )


def classify(error: BaseException) -> Classification:
    """Classify any exception raised by a remote call."""
    if isinstance(error, boto_exc.ClientError):
        details = error.response.get("Error", {}) or {}
        code = str(details.get("Code") or "")
        if not code:
            status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            code = str(status or "Unknown")
        return classify_code(code, str(details.get("Message") or error))

    if isinstance(error, ObjectNotFoundError):
        return Classification(ErrorKind.NOT_FOUND, error.code.name, error.message)
    if isinstance(error, PermissionDeniedError):
        return Classification(ErrorKind.FORBIDDEN, error.code.name, error.message)
    if isinstance(error, TransportError):
        return classify_code(error.remote_code, error.remote_message)

    if isinstance(error, RETRYABLE_TRANSPORT_EXCEPTIONS):
        return Classification(
            ErrorKind.TRANSPORT,
            type(error).__name__,
            str(error),
            retryable=True,
        )

    return Classification(ErrorKind.TRANSPORT, type(error).__name__, str(error))


def to_error(
    classification: Classification,
    operation: str,
    uri: str,
    cause: BaseException | None = None,
) -> CacheStoreError:
    """Build the typed error for a classification."""
    if isinstance(cause, CacheStoreError):
        return cause
    if classification.kind is ErrorKind.NOT_FOUND:
        return ObjectNotFoundError.for_object(
            uri, classification.code, classification.message, cause=cause,
        )
    if classification.kind is ErrorKind.FORBIDDEN:
        return PermissionDeniedError.for_object(
            uri, classification.code, classification.message, cause=cause,
        )
    return TransportError.from_remote(
        operation, uri, classification.code, classification.message, cause=cause,
    )
