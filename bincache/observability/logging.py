"""
Logging setup for applications embedding the cache transport.

Library modules only call `logging.getLogger(__name__)`. Applications (and
`python -m bincache`) call `setup_logging()` once to choose plain or JSON
lines. Fields bound with `StructuredLogger.context(...)` (bucket, command)
are attached to every JSON line emitted inside the block, including lines
from worker threads started there.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Optional, TextIO

from bincache.core.errors import CacheStoreError


class LogLevel(IntEnum):
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50


_log_context: ContextVar[dict[str, Any]] = ContextVar("bincache_log_context", default={})

# Attributes every LogRecord has; anything else came in through `extra=`
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}

# Loggers that flood DEBUG output with wire traces
_AWS_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3")


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line.

    A `CacheStoreError` in `exc_info` is emitted as structured fields under
    `"error"` next to the formatted traceback.
    """

    def format(self, record: logging.LogRecord) -> str:
        data: dict[str, Any] = {
            "@timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
        }
        data.update(_log_context.get())
        data.update(
            (key, value) for key, value in vars(record).items() if key not in _RECORD_ATTRS
        )

        if record.exc_info:
            error = record.exc_info[1]
            if isinstance(error, CacheStoreError):
                data["error"] = error.to_dict()
            data["exception"] = self.formatException(record.exc_info)

        return json.dumps(data, default=str)


class StructuredLogger:
    """
    Logger taking fields as keyword arguments.

    Usage:
        log = StructuredLogger("bincache.cli").with_extra(component="cli")

        with log.context(bucket="my-cache"):
            log.info("listing bucket", page=1)
    """

    __slots__ = ("_logger", "_fields")

    def __init__(self, name: str, **fields: Any) -> None:
        self._logger = logging.getLogger(name)
        self._fields = fields

    def debug(self, message: str, **fields: Any) -> None:
        self.log(LogLevel.DEBUG, message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self.log(LogLevel.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self.log(LogLevel.WARNING, message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        self.log(LogLevel.ERROR, message, **fields)

    def log(self, level: LogLevel, message: str, **fields: Any) -> None:
        if self._logger.isEnabledFor(level):
            self._logger.log(level, message, extra={**self._fields, **fields})

    def with_extra(self, **fields: Any) -> StructuredLogger:
        return StructuredLogger(self._logger.name, **{**self._fields, **fields})

    @staticmethod
    def context(**fields: Any) -> _BoundFields:
        """Bind `fields` to every line logged until the block exits."""
        return _BoundFields(fields)


class _BoundFields:
    __slots__ = ("_fields", "_token")

    def __init__(self, fields: dict[str, Any]) -> None:
        self._fields = fields
        self._token = None

    def __enter__(self) -> _BoundFields:
        self._token = _log_context.set({**_log_context.get(), **self._fields})
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None


def setup_logging(
    level: LogLevel = LogLevel.INFO,
    json_output: bool = True,
    stream: Optional[TextIO] = None,
    aws_debug: bool = False,
) -> None:
    """
    Replace the root handlers with one stream handler.

    Args:
        level: Minimum level for bincache (and the root logger)
        json_output: JSON lines instead of the plain format
        stream: Output stream (default: stderr)
        aws_debug: Let botocore/urllib3 log at `level` instead of WARNING
    """
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    aws_level = level if aws_debug else max(level, LogLevel.WARNING)
    for name in _AWS_LOGGERS:
        logging.getLogger(name).setLevel(aws_level)
