"""Qt background workers for long-running scans."""

from .worker import Worker, WorkerSignals

__all__ = ["Worker", "WorkerSignals"]
