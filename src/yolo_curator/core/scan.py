"""
Batch scan pipeline.

`run_scan` walks a snapshot of entries in stored order, optionally decodes
each one with a loader, hands it to a visitor and accumulates counts. The
cancel token is checked between entries only, so everything processed before a
cancellation is complete and consistent.

`ScanJob` runs the same loop on a background thread so a UI thread stays free
to issue commands and cancel.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .exceptions import DecodeError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class CancelToken:
    """Shared, thread-safe cancellation flag."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __bool__(self):
        return self.cancelled


@dataclass
class ScanSummary:
    total: int = 0
    processed: int = 0
    matched: int = 0
    failed: int = 0  # decode errors
    skipped: int = 0  # entries that vanished while the scan ran
    cancelled: bool = False
    elapsed: float = 0.0
    results: List[Tuple[Any, Any]] = field(default_factory=list)
    errors: List[Tuple[Path, str]] = field(default_factory=list)

    @property
    def visited(self) -> int:
        return self.processed + self.failed + self.skipped

    @property
    def matches(self) -> List[Any]:
        """Entries whose result counted as a match, in scan order."""
        return [entry for entry, _ in self.results]


def _entry_vanished(entry) -> bool:
    image_path = getattr(entry, "image_path", None)
    return image_path is not None and not Path(image_path).exists()


def run_scan(
    entries: Sequence[Any],
    visitor: Callable[[Any, Any], Any],
    cancel_token: Optional[CancelToken] = None,
    progress_callback: Optional[ProgressCallback] = None,
    loader: Optional[Callable[[Any], Any]] = None,
    matcher: Optional[Callable[[Any], bool]] = None,
    keep_results: bool = True,
) -> ScanSummary:
    """
    Drive `entries` through `visitor`.

    Args:
        entries: Snapshot of entries, visited in order.
        visitor: `visitor(entry, payload) -> result` where payload is the
            loader output (or None without a loader).
        cancel_token: Checked before each entry.
        progress_callback: `(visited, total)` after each entry.
        loader: Decodes an entry (e.g. reads its image). A DecodeError marks
            the entry as failed and the scan continues.
        matcher: Decides whether a result counts towards `matched`.
            Defaults to truthiness of the result.
        keep_results: Store `(entry, result)` pairs of matched entries.

    Returns:
        ScanSummary
    """
    matcher = matcher or bool
    summary = ScanSummary(total=len(entries))
    start = time.perf_counter()

    for entry in entries:
        if cancel_token is not None and cancel_token.cancelled:
            summary.cancelled = True
            logger.warning(
                f"Scan cancelled by user at entry {summary.visited + 1}/{summary.total}"
            )
            break

        payload = None
        if loader is not None:
            if _entry_vanished(entry):
                summary.skipped += 1
                logger.warning(f"Entry vanished during scan, skipping: {entry.image_path}")
                _report(progress_callback, summary)
                continue
            try:
                payload = loader(entry)
            except DecodeError as e:
                summary.failed += 1
                summary.errors.append((e.path, str(e)))
                logger.warning(str(e))
                _report(progress_callback, summary)
                continue

        result = visitor(entry, payload)
        summary.processed += 1
        if matcher(result):
            summary.matched += 1
            if keep_results:
                summary.results.append((entry, result))

        _report(progress_callback, summary)

    summary.elapsed = time.perf_counter() - start
    logger.info(
        "Scan finished: %d/%d processed, %d matched, %d failed, %d skipped%s",
        summary.processed,
        summary.total,
        summary.matched,
        summary.failed,
        summary.skipped,
        " (cancelled)" if summary.cancelled else "",
    )
    return summary


def _report(progress_callback: Optional[ProgressCallback], summary: ScanSummary):
    if progress_callback is not None:
        progress_callback(summary.visited, summary.total)


class ScanJob(threading.Thread):
    """
    Background runner for a scan-like callable.

    The callable must accept `cancel_token` and `progress_callback` keyword
    arguments. Its return value (or exception) is collected for `wait()`.

    Example:
        job = ScanJob(run_scan, entries, visitor)
        job.start()
        ...
        job.cancel()
        summary = job.wait()
    """

    def __init__(
        self,
        fn: Callable[..., Any],
        *args: Any,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
        **kwargs: Any,
    ):
        super().__init__(daemon=True)
        self.fn = fn
        self.args = args
        self.kwargs = kwargs
        self.cancel_token = cancel_token or CancelToken()
        self.progress_callback = progress_callback
        self.exception: Optional[BaseException] = None
        self._result = None

    def run(self) -> None:
        try:
            self._result = self.fn(
                *self.args,
                cancel_token=self.cancel_token,
                progress_callback=self.progress_callback,
                **self.kwargs,
            )
        except Exception as e:
            self.exception = e
            logger.error("Exception in scan thread: %s", e, exc_info=True)

    def cancel(self) -> None:
        """Request cancellation; takes effect at the next entry boundary."""
        self.cancel_token.cancel()

    def wait(self, timeout: Optional[float] = None):
        """Join the thread and return its result, re-raising worker errors."""
        self.join(timeout)
        if self.is_alive():
            raise TimeoutError("Scan job still running")
        if self.exception is not None:
            raise RuntimeError("Scan job failed") from self.exception
        return self._result
