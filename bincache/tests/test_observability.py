"""
Unit Tests: Metrics Registry and Structured Logging
"""

import io
import json
import logging
import threading

from bincache.core.errors import NoSuchCacheFileError
from bincache.observability.logging import JsonFormatter, StructuredLogger
from bincache.observability.metrics import (
    Counter,
    Gauge,
    Histogram,
    MetricsCollector,
    StoreStats,
)


class TestMetrics:
    def test_counter_by_label(self):
        counter = Counter("t_requests_total", ["operation"])
        counter.inc(operation="head")
        counter.inc(2, operation="head")
        counter.inc(operation="list")
        assert counter.get(operation="head") == 3
        assert counter.get(operation="list") == 1
        assert counter.get(operation="get") == 0

    def test_gauge_inc_dec(self):
        gauge = Gauge("t_inflight")
        gauge.inc()
        gauge.inc()
        gauge.dec()
        assert gauge.get() == 1

    def test_histogram_timer(self):
        histogram = Histogram("t_seconds", ["direction"], buckets=[1.0])
        with histogram.time(direction="get"):
            pass
        histogram.observe(5.0, direction="get")
        assert histogram.count(direction="get") == 2

        (data,) = histogram.collect()
        assert data["buckets"] == [(1.0, 1), (float("inf"), 2)]

    def test_prometheus_export(self):
        collector = MetricsCollector()
        collector.counter("t_bytes_total", ["direction"]).inc(10, direction="upload")
        collector.histogram("t_transfer_seconds", [], buckets=[0.5]).observe(0.1)

        text = collector.export_prometheus()
        assert "# TYPE t_bytes_total counter" in text
        assert 't_bytes_total{direction="upload"} 10' in text
        assert 't_transfer_seconds_bucket{le="0.5"} 1' in text
        assert 't_transfer_seconds_bucket{le="+Inf"} 1' in text
        assert "t_transfer_seconds_count 1" in text

    def test_registry_reuses_metrics(self):
        collector = MetricsCollector()
        assert collector.counter("t_same") is collector.counter("t_same")


class TestStoreStats:
    def test_put_ignores_unknown_size(self):
        stats = StoreStats()
        stats.record_put(-1, 12)
        stats.record_put(100, 3)
        assert stats.put == 2
        assert stats.put_bytes == 100
        assert stats.put_time_ms == 15

    def test_snapshot(self):
        stats = StoreStats(head=2)
        snapshot = stats.snapshot()
        assert snapshot["head"] == 2
        assert set(snapshot) >= {"put", "get", "lists", "retries"}
        assert "_lock" not in snapshot

    def test_concurrent_updates_are_not_lost(self):
        stats = StoreStats()

        def hammer():
            for _ in range(2000):
                stats.incr("head")
                stats.record_get(3, 1)

        threads = [threading.Thread(target=hammer) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert stats.head == 16000
        assert stats.get_bytes == 48000
        assert stats.get_time_ms == 16000

    def test_copy_is_detached(self):
        stats = StoreStats(lists=1)
        copy = stats.copy()
        stats.incr("lists")
        assert copy.lists == 1
        assert stats.lists == 2


class TestStructuredLogging:
    def _capture(self, name):
        stream = io.StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(JsonFormatter())
        target = logging.getLogger(name)
        target.addHandler(handler)
        target.setLevel(logging.DEBUG)
        target.propagate = False
        return stream, handler

    def test_context_and_extra_fields(self):
        stream, handler = self._capture("bincache.test.json")
        try:
            log = StructuredLogger("bincache.test.json").with_extra(component="cli")
            with log.context(bucket="my-cache"):
                log.info("listing bucket", page=3)
            log.info("outside")
        finally:
            logging.getLogger("bincache.test.json").removeHandler(handler)

        first, second = (json.loads(line) for line in stream.getvalue().splitlines())
        assert first["message"] == "listing bucket"
        assert first["level"] == "INFO"
        assert first["bucket"] == "my-cache"
        assert first["component"] == "cli"
        assert first["page"] == 3
        assert "bucket" not in second

    def test_store_error_fields(self):
        stream, handler = self._capture("bincache.test.error")
        log = logging.getLogger("bincache.test.error")
        try:
            try:
                raise NoSuchCacheFileError.for_path("nar/x.nar", "s3://cache")
            except NoSuchCacheFileError:
                log.exception("read failed")
        finally:
            log.removeHandler(handler)

        line = json.loads(stream.getvalue())
        assert line["error"]["code"] == "OBJECT_NO_SUCH_CACHE_FILE"
        assert "Traceback" in line["exception"]
