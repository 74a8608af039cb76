"""
Unit Tests: Transfer Window

Tests:
    - Lazy partitioning into ascending ranges
    - In-flight and buffered caps
    - Completion, failure and ordered delivery bookkeeping
"""

import pytest

from bincache.transfer.window import ChunkState, TransferWindow


class TestReserve:
    """Tests for scheduling under the two caps."""

    def test_partitions_ascending(self):
        window = TransferWindow(10, 4, max_transfers=5, max_buffered_chunks=5)
        chunks = window.reserve()
        assert [(c.range_start, c.range_len) for c in chunks] == [(0, 4), (4, 4), (8, 2)]
        assert [c.index for c in chunks] == [0, 1, 2]
        assert window.exhausted

    def test_in_flight_cap(self):
        window = TransferWindow(100, 10, max_transfers=3, max_buffered_chunks=8)
        assert len(window.reserve()) == 3
        assert window.reserve() == []
        assert window.in_flight == 3

    def test_buffered_cap(self):
        window = TransferWindow(100, 10, max_transfers=4, max_buffered_chunks=2)
        first = window.reserve()
        assert len(first) == 2

        # Completing frees a transfer slot but not a buffer slot
        window.complete(first[0], b"x" * 10)
        assert window.reserve() == []

        window.delivered(first[0])
        assert len(window.reserve()) == 1
        assert window.outstanding == 2

    def test_empty_object_schedules_nothing(self):
        window = TransferWindow(0, 10, max_transfers=3, max_buffered_chunks=5)
        assert window.reserve() == []
        assert window.oldest() is None

    def test_rejects_bad_caps(self):
        with pytest.raises(ValueError):
            TransferWindow(10, 0, 3, 5)
        with pytest.raises(ValueError):
            TransferWindow(10, 4, 3, 0)


class TestCompletion:
    """Tests for completion, failure and delivery."""

    def test_complete_resolves_slot(self):
        window = TransferWindow(8, 4, 2, 2)
        first, second = window.reserve()
        window.complete(second, b"bbbb")

        assert second.slot.done()
        assert not first.slot.done()
        assert second.state is ChunkState.COMPLETED
        assert window.in_flight == 1

    def test_failure_fails_every_pending_slot(self):
        window = TransferWindow(12, 4, 3, 3)
        first, second, third = window.reserve()
        error = OSError("reset")

        assert window.fail(second, error)
        assert window.failed
        assert window.failure is second
        for chunk in (first, second, third):
            assert chunk.slot.exception() is error

    def test_completions_after_failure_are_ignored(self):
        window = TransferWindow(8, 4, 2, 2)
        first, second = window.reserve()
        window.fail(first, OSError("reset"))
        window.complete(second, b"late")

        assert second.data is None
        assert window.reserve() == []

    def test_second_failure_reports_false(self):
        window = TransferWindow(8, 4, 2, 2)
        first, second = window.reserve()
        assert window.fail(first, OSError("a"))
        assert not window.fail(second, OSError("b"))
        assert window.failure is first

    def test_delivery_must_follow_scheduling_order(self):
        window = TransferWindow(8, 4, 2, 2)
        first, second = window.reserve()
        window.complete(second, b"bbbb")
        with pytest.raises(RuntimeError):
            window.delivered(second)

    def test_delivery_drops_data(self):
        window = TransferWindow(4, 4, 2, 2)
        (only,) = window.reserve()
        window.complete(only, b"aaaa")
        window.delivered(only)
        assert only.data is None
        assert window.delivered_count == 1
        assert window.oldest() is None

    def test_abort_returns_outstanding_chunks(self):
        window = TransferWindow(12, 4, 3, 3)
        chunks = window.reserve()
        assert window.abort() == chunks
        assert window.outstanding == 0
        assert window.reserve() == []

    def test_peaks_tracked(self):
        window = TransferWindow(40, 4, 3, 5)
        window.reserve()
        assert window.peak_in_flight == 3
        assert window.peak_outstanding == 3
