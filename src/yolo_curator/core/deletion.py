"""
Reversible deletion with unlimited undo/redo.

An entry moves Active -> Staged on delete, then either back to Active (undo)
or to Finalized (purge). Image and label always move as a pair: if the second
move fails the first one is rolled back, and only a failed rollback is allowed
to escape as AtomicityViolation. Every operation either completes or leaves the
repository and both stacks exactly as they were.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from ..data.repository import DatasetEntry, DatasetRepository
from ..utils.file_ops import move_file
from .exceptions import (
    AtomicityViolation,
    EntryNotFoundError,
    FileOperationError,
)
from .staging import StagedRecord, StagingArea

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UndoEntry:
    """Self-contained snapshot of one delete."""

    entry: DatasetEntry
    record: StagedRecord

    @property
    def original_index(self) -> int:
        return self.entry.original_index

    @property
    def staged_image_path(self) -> Path:
        return self.record.staged_image_path

    @property
    def staged_label_path(self) -> Optional[Path]:
        return self.record.staged_label_path


class HistoryStatus(Enum):
    DONE = "done"
    NOTHING_TO_UNDO = "nothing_to_undo"
    NOTHING_TO_REDO = "nothing_to_redo"


@dataclass(frozen=True)
class HistoryOutcome:
    status: HistoryStatus
    entry: Optional[DatasetEntry] = None

    def __bool__(self):
        return self.status == HistoryStatus.DONE


def move_pair(moves: List[Tuple[Path, Path]], action: str) -> None:
    """
    Apply one or two moves as a unit.

    If the second move fails the first is reversed and the original
    FileOperationError propagates. If reversing fails too, AtomicityViolation.
    """
    done = []
    for src, dest in moves:
        try:
            move_file(src, dest)
        except FileOperationError as e:
            logger.error(f"{action} failed: {e}")
            for done_src, done_dest in reversed(done):
                try:
                    move_file(done_dest, done_src)
                except FileOperationError as rollback_error:
                    logger.critical(
                        f"{action}: rollback failed, {done_dest} and {src} "
                        "need manual inspection"
                    )
                    raise AtomicityViolation(
                        f"{action} left the pair split: {rollback_error}",
                        completed_path=done_dest,
                        stranded_path=src,
                    ) from e
            raise
        done.append((src, dest))


def _stage_moves(record: StagedRecord) -> List[Tuple[Path, Path]]:
    moves = [(record.image_path, record.staged_image_path)]
    if record.staged_label_path is not None:
        moves.append((record.label_path, record.staged_label_path))
    return moves


def _restore_moves(record: StagedRecord) -> List[Tuple[Path, Path]]:
    return [(dest, src) for src, dest in _stage_moves(record)]


def _staged_files_intact(record: StagedRecord) -> bool:
    return all(dest.is_file() for _, dest in _stage_moves(record))


class DeletionManager:
    """
    Sole writer of the active split directories and the staging area.

    All mutations hold the repository lock, so scans and filters working on
    `repository.entries()` snapshots never see a half-applied change.
    """

    def __init__(self, repository: DatasetRepository, staging: StagingArea):
        self.repository = repository
        self.staging = staging
        self._undo_stack: List[UndoEntry] = []
        self._redo_stack: List[UndoEntry] = []

    @property
    def can_undo(self) -> bool:
        return bool(self._undo_stack)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo_stack)

    @property
    def undo_depth(self) -> int:
        return len(self._undo_stack)

    @property
    def redo_depth(self) -> int:
        return len(self._redo_stack)

    def staged_entries(self) -> List[DatasetEntry]:
        """Entries currently staged and undoable, oldest first."""
        with self.repository.lock:
            return [item.entry for item in self._undo_stack]

    def delete(self, entry: DatasetEntry) -> UndoEntry:
        """Move an entry's image and label into staging and drop it from the repository."""
        with self.repository.lock:
            if self.repository.position_of(entry) is None:
                raise EntryNotFoundError(
                    f"{entry.split.value}/{entry.name} is not an active entry"
                )

            record = self.staging.reserve(entry, include_label=entry.label_path.exists())
            self.staging.write_sidecar(record)
            try:
                move_pair(_stage_moves(record), f"Delete {entry.name}")
            except AtomicityViolation:
                # Keep the sidecar: it records where the stranded files belong.
                raise
            except FileOperationError:
                self.staging.discard_sidecar(record)
                raise

            self.repository.remove(entry)
            item = UndoEntry(entry, record)
            self._undo_stack.append(item)
            if self._redo_stack:
                logger.debug(f"Discarding {len(self._redo_stack)} redo entries")
                self._redo_stack.clear()

        logger.info(f"Deleted {entry.split.value}/{entry.name} (staged)")
        return item

    def undo(self) -> HistoryOutcome:
        with self.repository.lock:
            if not self._undo_stack:
                return HistoryOutcome(HistoryStatus.NOTHING_TO_UNDO)

            item = self._undo_stack[-1]
            entry = item.entry
            if self.repository.get(entry.split, entry.original_index) is not None:
                raise FileOperationError(
                    f"Cannot restore {entry.name}: position {entry.original_index} "
                    f"in {entry.split.value} is occupied",
                    entry.image_path,
                )
            move_pair(_restore_moves(item.record), f"Undo {entry.name}")

            self._undo_stack.pop()
            self.repository.insert(entry)
            self.staging.discard_sidecar(item.record)
            self._redo_stack.append(item)

        logger.info(f"Restored {entry.split.value}/{entry.name}")
        return HistoryOutcome(HistoryStatus.DONE, entry)

    def redo(self) -> HistoryOutcome:
        with self.repository.lock:
            if not self._redo_stack:
                return HistoryOutcome(HistoryStatus.NOTHING_TO_REDO)

            item = self._redo_stack[-1]
            entry = item.entry
            if self.repository.position_of(entry) is None:
                raise EntryNotFoundError(
                    f"{entry.split.value}/{entry.name} is no longer active"
                )

            self.staging.write_sidecar(item.record)
            try:
                move_pair(_stage_moves(item.record), f"Redo {entry.name}")
            except AtomicityViolation:
                raise
            except FileOperationError:
                self.staging.discard_sidecar(item.record)
                raise

            self._redo_stack.pop()
            self.repository.remove(entry)
            self._undo_stack.append(item)

        logger.info(f"Re-deleted {entry.split.value}/{entry.name} (staged)")
        return HistoryOutcome(HistoryStatus.DONE, entry)

    def finalize(self, entry: Optional[DatasetEntry] = None) -> int:
        """
        Permanently purge staged files.

        Args:
            entry: Purge only this staged entry; None purges everything on the
                undo stack.

        Returns:
            Number of entries purged.

        Raises:
            FileOperationError: If any staged file could not be removed. An
                entry that lost any of its staged files leaves the undo stack
                anyway, so older entries stay undoable.
        """
        with self.repository.lock:
            if entry is None:
                targets = list(self._undo_stack)
            else:
                targets = [item for item in self._undo_stack if item.entry == entry]
                if not targets:
                    raise EntryNotFoundError(
                        f"{entry.split.value}/{entry.name} is not staged"
                    )

            purged = 0
            errors: List[FileOperationError] = []
            for item in targets:
                try:
                    self.staging.purge(item.record)
                except FileOperationError as e:
                    errors.append(e)
                    if _staged_files_intact(item.record):
                        continue
                    logger.error(
                        f"Partially finalized {item.entry.name}, dropping it from "
                        f"the undo history: {e}"
                    )
                else:
                    purged += 1
                self._undo_stack.remove(item)

        if purged:
            logger.info(f"Finalized {purged} staged entr{'y' if purged == 1 else 'ies'}")
        if errors:
            raise FileOperationError(
                f"Failed to finalize {len(errors)} staged "
                f"entr{'y' if len(errors) == 1 else 'ies'}: {errors[0]}",
                errors[0].path,
            )
        return purged
