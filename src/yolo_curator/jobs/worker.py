import sys
import traceback
from typing import Any, Callable

from PySide6.QtCore import QObject, QRunnable, Signal, Slot

from ..core.scan import CancelToken


class WorkerSignals(QObject):
    """
    Defines the signals available from a running scan worker.
    Supported signals are:
    finished
        No data
    error
        tuple (exctype, value, traceback.str)
    result
        object returned by the scan (ScanSummary, BalanceReport, ...)
    progress
        (processed, total) after every entry
    """

    finished = Signal()
    error = Signal(tuple)
    result = Signal(object)
    progress = Signal(int, int)


class Worker(QRunnable):
    """
    Runs a scan callable on the Qt thread pool.

    The callable receives `cancel_token` and `progress_callback` keyword
    arguments; progress is forwarded through `signals.progress` so the UI
    thread can update without polling.

    :param fn: Scan callable, e.g. `session.scan_near_black`.
    """

    def __init__(self, fn: Callable, *args: Any, **kwargs: Any):
        super(Worker, self).__init__()
        self.fn = fn
        self.args = args
        self.kwargs = kwargs
        self.signals = WorkerSignals()
        self.cancel_token = kwargs.pop("cancel_token", None) or CancelToken()

    def cancel(self):
        """Stop at the next entry boundary; the partial result is still emitted."""
        self.cancel_token.cancel()

    @Slot()
    def run(self):
        try:
            result = self.fn(
                *self.args,
                cancel_token=self.cancel_token,
                progress_callback=self.signals.progress.emit,
                **self.kwargs,
            )
        except Exception:
            traceback.print_exc()
            exctype, value = sys.exc_info()[:2]
            self.signals.error.emit((exctype, value, traceback.format_exc()))
        else:
            self.signals.result.emit(result)
        finally:
            self.signals.finished.emit()
