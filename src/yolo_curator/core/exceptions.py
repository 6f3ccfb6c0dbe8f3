"""
Error taxonomy for the curation engine.

Per-entry problems (parse warnings, undecodable images) are recovered locally and
never reach these classes' callers as raised exceptions during batch work. File
mutations (delete/undo/redo/finalize) raise FileOperationError, and the one
condition that can leave the dataset inconsistent raises AtomicityViolation.
"""

from pathlib import Path
from typing import Optional


class CuratorError(RuntimeError):
    """Base class for all engine errors."""


class DecodeError(CuratorError):
    """An image could not be read or decoded."""

    def __init__(self, path, message: str = "could not decode image"):
        self.path = Path(path)
        super().__init__(f"{message}: {self.path}")


class FileOperationError(CuratorError):
    """A filesystem operation on an entry failed; repository state is unchanged."""

    def __init__(self, message: str, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else None
        super().__init__(message)


class AtomicityViolation(FileOperationError):
    """
    Half of a paired move succeeded, the other half failed, and rolling back
    the completed half failed too. The files need manual inspection.
    """

    def __init__(self, message: str, completed_path: Path, stranded_path: Path):
        self.completed_path = Path(completed_path)
        self.stranded_path = Path(stranded_path)
        super().__init__(
            f"{message} (completed: {self.completed_path}, "
            f"stranded: {self.stranded_path})",
            path=completed_path,
        )


class EntryNotFoundError(CuratorError, KeyError):
    """The referenced entry is not held by the repository or staging area."""

    def __str__(self):
        return RuntimeError.__str__(self)
