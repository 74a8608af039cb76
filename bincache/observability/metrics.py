"""
Transfer metrics and per-store counters.

Process-wide metrics live in `MetricsCollector.get_instance()` and are
rendered in the Prometheus text format (`bincache <store> stats
--prometheus`). They are updated from fetch and upload worker threads, so
every metric guards its samples with a lock.

`StoreStats` holds one set of counters per `S3BinaryCacheStore`, guarded by
its own lock.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field, fields, replace
from typing import Any, ClassVar, Iterator, Optional, Sequence

# Sorted (name, value) pairs; the key of one sample
LabelKey = tuple[tuple[str, str], ...]


def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else repr(value)


def _render_labels(key: LabelKey, *leading: tuple[str, str]) -> str:
    pairs = list(leading) + list(key)
    if not pairs:
        return ""
    return "{" + ",".join(f'{name}="{value}"' for name, value in pairs) + "}"


class _Metric:
    kind: ClassVar[str] = "untyped"

    __slots__ = ("name", "help_text", "_label_names", "_lock")

    def __init__(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> None:
        self.name = name
        self.help_text = help_text
        self._label_names = tuple(sorted(label_names))
        self._lock = threading.Lock()

    def _key(self, labels: dict[str, str]) -> LabelKey:
        # Unknown labels are dropped, missing ones are empty
        return tuple((name, str(labels.get(name, ""))) for name in self._label_names)

    def _header(self) -> Iterator[str]:
        if self.help_text:
            yield f"# HELP {self.name} {self.help_text}"
        yield f"# TYPE {self.name} {self.kind}"

    def render(self) -> Iterator[str]:
        raise NotImplementedError


class Counter(_Metric):
    """
    Value that only goes up.

    Usage:
        retries = Counter("bincache_retries_total", ["operation"])
        retries.inc(operation="head")
    """

    kind = "counter"

    __slots__ = ("_values",)

    def __init__(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> None:
        super().__init__(name, label_names, help_text)
        self._values: dict[LabelKey, float] = {}

    def inc(self, value: float = 1.0, **labels: str) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value

    def get(self, **labels: str) -> float:
        key = self._key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def collect(self) -> list[tuple[dict[str, str], float]]:
        with self._lock:
            return [(dict(key), value) for key, value in self._values.items()]

    def render(self) -> Iterator[str]:
        yield from self._header()
        with self._lock:
            samples = sorted(self._values.items())
        for key, value in samples:
            yield f"{self.name}{_render_labels(key)} {_fmt(value)}"


class Gauge(Counter):
    """Counter that may also go down or be set, e.g. downloads in flight."""

    kind = "gauge"

    __slots__ = ()

    def dec(self, value: float = 1.0, **labels: str) -> None:
        self.inc(-value, **labels)

    def set(self, value: float, **labels: str) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = value


class Histogram(_Metric):
    """
    Observations counted into cumulative buckets.

    Usage:
        seconds = Histogram("bincache_transfer_seconds", ["direction"])

        with seconds.time(direction="get"):
            fetch()
    """

    kind = "histogram"

    DEFAULT_BUCKETS: ClassVar[tuple[float, ...]] = (
        0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 1800.0,
    )

    __slots__ = ("_bounds", "_series")

    def __init__(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
        buckets: Optional[Sequence[float]] = None,
    ) -> None:
        super().__init__(name, label_names, help_text)
        bounds = sorted(set(buckets or self.DEFAULT_BUCKETS))
        if bounds[-1] != float("inf"):
            bounds.append(float("inf"))
        self._bounds = tuple(bounds)
        # key -> [bucket counts..., sum, count]
        self._series: dict[LabelKey, list[float]] = {}

    def observe(self, value: float, **labels: str) -> None:
        key = self._key(labels)
        with self._lock:
            series = self._series.setdefault(key, [0] * len(self._bounds) + [0.0, 0])
            for i, bound in enumerate(self._bounds):
                if value <= bound:
                    series[i] += 1
            series[-2] += value
            series[-1] += 1

    def time(self, **labels: str) -> HistogramTimer:
        return HistogramTimer(self, labels)

    def count(self, **labels: str) -> int:
        key = self._key(labels)
        with self._lock:
            series = self._series.get(key)
            return int(series[-1]) if series else 0

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            snapshot = [(key, list(series)) for key, series in self._series.items()]
        return [
            {
                "labels": dict(key),
                "buckets": list(zip(self._bounds, series[:-2])),
                "sum": series[-2],
                "count": int(series[-1]),
            }
            for key, series in snapshot
        ]

    def render(self) -> Iterator[str]:
        yield from self._header()
        with self._lock:
            snapshot = sorted((key, list(series)) for key, series in self._series.items())
        for key, series in snapshot:
            for bound, hits in zip(self._bounds, series[:-2]):
                le = "+Inf" if bound == float("inf") else _fmt(bound)
                yield f"{self.name}_bucket{_render_labels(key, ('le', le))} {_fmt(hits)}"
            yield f"{self.name}_sum{_render_labels(key)} {_fmt(series[-2])}"
            yield f"{self.name}_count{_render_labels(key)} {_fmt(series[-1])}"


class HistogramTimer:
    """Observes the wall time of a `with` block."""

    __slots__ = ("_histogram", "_labels", "_start")

    def __init__(self, histogram: Histogram, labels: dict[str, str]) -> None:
        self._histogram = histogram
        self._labels = labels
        self._start = 0.0

    def __enter__(self) -> HistogramTimer:
        self._start = time.perf_counter()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self._histogram.observe(time.perf_counter() - self._start, **self._labels)


class MetricsCollector:
    """
    Registry of named metrics. Asking twice for a name returns the same
    metric; asking for it as a different kind is a ValueError.
    """

    _instance: ClassVar[Optional[MetricsCollector]] = None
    _instance_lock: ClassVar[threading.Lock] = threading.Lock()

    __slots__ = ("_metrics", "_lock")

    def __init__(self) -> None:
        self._metrics: dict[str, _Metric] = {}
        self._lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> MetricsCollector:
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    def _register(self, kind: type, name: str, *args: Any) -> Any:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = self._metrics[name] = kind(name, *args)
            elif type(metric) is not kind:
                raise ValueError(f"metric {name!r} is already a {metric.kind}")
            return metric

    def counter(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> Counter:
        return self._register(Counter, name, label_names, help_text)

    def gauge(self, name: str, label_names: Sequence[str] = (), help_text: str = "") -> Gauge:
        return self._register(Gauge, name, label_names, help_text)

    def histogram(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
        buckets: Optional[Sequence[float]] = None,
    ) -> Histogram:
        return self._register(Histogram, name, label_names, help_text, buckets)

    def export_prometheus(self) -> str:
        with self._lock:
            metrics = sorted(self._metrics.values(), key=lambda m: m.name)
        return "\n".join(line for metric in metrics for line in metric.render())


# =============================================================================
# TRANSFER METRICS
# =============================================================================
def retries_counter() -> Counter:
    return MetricsCollector.get_instance().counter(
        "bincache_retries_total", ["operation"], "Remote calls re-issued after a retryable error",
    )


def bytes_counter() -> Counter:
    return MetricsCollector.get_instance().counter(
        "bincache_bytes_total", ["direction"], "Bytes moved to or from the store",
    )


def inflight_gauge() -> Gauge:
    return MetricsCollector.get_instance().gauge(
        "bincache_fetch_inflight_chunks", (), "Range downloads currently in flight",
    )


def transfer_histogram() -> Histogram:
    return MetricsCollector.get_instance().histogram(
        "bincache_transfer_seconds", ["direction"], "Wall time of get/put transfers",
    )


# =============================================================================
# PER-STORE STATISTICS
# =============================================================================
@dataclass
class StoreStats:
    """
    Operation counters of one store instance.

    `put`/`get` count calls, `*_bytes` payload bytes, `*_time_ms` wall
    time; `head` and `lists` count requests, `retries` re-issued calls.
    Updates go through the methods below, which serialise on one lock.
    """
    put: int = 0
    put_bytes: int = 0
    put_time_ms: int = 0
    get: int = 0
    get_bytes: int = 0
    get_time_ms: int = 0
    head: int = 0
    lists: int = 0
    retries: int = 0
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False,
    )

    def incr(self, name: str, amount: int = 1) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + amount)

    def record_put(self, size_bytes: int, duration_ms: int) -> None:
        with self._lock:
            self.put += 1
            # Unknown sizes (-1) add nothing
            self.put_bytes += max(size_bytes, 0)
            self.put_time_ms += duration_ms

    def record_get(self, size_bytes: int, duration_ms: int) -> None:
        with self._lock:
            self.get_bytes += size_bytes
            self.get_time_ms += duration_ms

    def copy(self) -> StoreStats:
        """Consistent point-in-time copy with its own lock."""
        with self._lock:
            return replace(self)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {f.name: getattr(self, f.name) for f in fields(self) if f.init}
