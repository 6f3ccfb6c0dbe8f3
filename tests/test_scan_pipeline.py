"""
Tests for the batch scan pipeline and its background runner.

Tests cover:
- Counting processed/matched/failed entries
- Cooperative cancellation between entries
- Progress reporting
- Entries vanishing mid-scan
- ScanJob result and error propagation
"""

import threading
from types import SimpleNamespace

import pytest

from yolo_curator.core.exceptions import DecodeError
from yolo_curator.core.scan import CancelToken, ScanJob, run_scan


class TestRunScan:
    """Test suite for run_scan."""

    def test_counts_matches(self):
        summary = run_scan(list(range(10)), lambda item, _: item % 2 == 0)

        assert summary.total == 10
        assert summary.processed == 10
        assert summary.matched == 5
        assert summary.matches == [0, 2, 4, 6, 8]
        assert not summary.cancelled

    def test_custom_matcher(self):
        summary = run_scan(
            [1, 2, 3], lambda item, _: item * 10, matcher=lambda r: r > 15
        )
        assert summary.matched == 2
        assert summary.results == [(2, 20), (3, 30)]

    def test_progress_after_every_entry(self):
        events = []
        run_scan(
            ["a", "b", "c"],
            lambda item, _: True,
            progress_callback=lambda p, t: events.append((p, t)),
        )
        assert events == [(1, 3), (2, 3), (3, 3)]

    def test_cancel_after_n_entries(self):
        """Cancelling after N of T entries stops with processed == N."""
        token = CancelToken()
        seen = []

        def visitor(item, _):
            seen.append(item)
            if len(seen) == 4:
                token.cancel()
            return False

        summary = run_scan(list(range(10)), visitor, cancel_token=token)

        assert summary.cancelled
        assert summary.processed == 4
        assert summary.processed <= summary.total
        assert seen == [0, 1, 2, 3]

    def test_cancelled_before_start(self):
        token = CancelToken()
        token.cancel()
        summary = run_scan([1, 2], lambda item, _: True, cancel_token=token)
        assert summary.cancelled
        assert summary.processed == 0

    def test_decode_error_is_counted_and_skipped(self, tmp_path):
        entries = []
        for name in ("a.png", "b.png", "c.png"):
            path = tmp_path / name
            path.write_bytes(b"x")
            entries.append(SimpleNamespace(image_path=path))

        def loader(entry):
            if entry.image_path.name == "b.png":
                raise DecodeError(entry.image_path)
            return "pixels"

        summary = run_scan(
            entries, lambda entry, payload: payload == "pixels", loader=loader
        )

        assert summary.processed == 2
        assert summary.failed == 1
        assert summary.matched == 2
        assert summary.errors[0][0] == tmp_path / "b.png"

    def test_vanished_entry_is_skipped(self, tmp_path):
        present = tmp_path / "present.png"
        present.write_bytes(b"x")
        entries = [
            SimpleNamespace(image_path=tmp_path / "gone.png"),
            SimpleNamespace(image_path=present),
        ]

        summary = run_scan(entries, lambda entry, _: True, loader=lambda entry: None)

        assert summary.skipped == 1
        assert summary.processed == 1
        assert summary.visited == 2

    def test_keep_results_false(self):
        summary = run_scan([1, 2], lambda item, _: True, keep_results=False)
        assert summary.matched == 2
        assert summary.results == []


class TestScanJob:
    def test_returns_result(self):
        job = ScanJob(run_scan, [1, 2, 3], lambda item, _: item > 1)
        job.start()
        summary = job.wait(timeout=5)
        assert summary.matched == 2

    def test_cancel_from_another_thread(self):
        started = threading.Event()
        release = threading.Event()

        def visitor(item, _):
            started.set()
            release.wait(timeout=5)
            return True

        job = ScanJob(run_scan, list(range(100)), visitor)
        job.start()
        assert started.wait(timeout=5)
        job.cancel()
        release.set()
        summary = job.wait(timeout=5)

        assert summary.cancelled
        assert summary.processed == 1

    def test_progress_callback_is_forwarded(self):
        events = []
        job = ScanJob(
            run_scan,
            [1, 2],
            lambda item, _: True,
            progress_callback=lambda p, t: events.append(p),
        )
        job.start()
        job.wait(timeout=5)
        assert events == [1, 2]

    def test_worker_exception_is_reraised(self):
        def boom(item, _):
            raise ValueError("bad visitor")

        job = ScanJob(run_scan, [1], boom)
        job.start()
        with pytest.raises(RuntimeError) as exc_info:
            job.wait(timeout=5)
        assert isinstance(exc_info.value.__cause__, ValueError)
