"""
Tests for reversible deletion with undo/redo.

Tests cover:
- delete/undo round trip and delete/undo/redo compound inverse
- Linear history: a new delete discards the redo branch
- Rollback of a half-completed pair move
- AtomicityViolation when the rollback fails too
- Finalization
"""

import pytest

from tests.helpers.datasets import build_split, snapshot
from yolo_curator.core import deletion as deletion_module
from yolo_curator.core.deletion import DeletionManager, HistoryStatus
from yolo_curator.core.exceptions import (
    AtomicityViolation,
    EntryNotFoundError,
    FileOperationError,
)
from yolo_curator.core.staging import StagingArea
from yolo_curator.data.repository import DatasetRepository
from yolo_curator.utils import file_ops


@pytest.fixture
def manager(tmp_path):
    root = tmp_path / "dataset"
    build_split(root, "train", {"a": [0], "b": [1], "c": [0, 1], "d": None})
    repo = DatasetRepository.open(root, ["train"])
    return DeletionManager(repo, StagingArea(tmp_path / "staging"))


def entry_named(manager, name):
    return next(e for e in manager.repository.entries("train") if e.image_path.stem == name)


class TestDeleteUndoRedo:
    def test_delete_moves_pair_to_staging(self, manager):
        entry = entry_named(manager, "b")
        item = manager.delete(entry)

        assert not entry.image_path.exists()
        assert not entry.label_path.exists()
        assert item.staged_image_path.exists()
        assert item.staged_label_path.exists()
        assert item.original_index == 1
        assert manager.repository.position_of(entry) is None
        assert manager.can_undo and not manager.can_redo

    def test_delete_then_undo_restores_state(self, manager):
        before = snapshot(manager.repository, "train")
        entry = entry_named(manager, "b")

        manager.delete(entry)
        outcome = manager.undo()

        assert outcome.status == HistoryStatus.DONE
        assert outcome.entry == entry
        assert snapshot(manager.repository, "train") == before
        assert entry.image_path.exists()
        assert entry.label_path.exists()
        assert manager.redo_depth == 1

    def test_delete_undo_redo_equals_delete(self, manager):
        entry = entry_named(manager, "c")
        manager.delete(entry)
        after_delete = snapshot(manager.repository, "train")

        manager.undo()
        outcome = manager.redo()

        assert outcome
        assert snapshot(manager.repository, "train") == after_delete
        assert not entry.image_path.exists()
        assert manager.undo_depth == 1 and manager.redo_depth == 0

    def test_new_delete_discards_redo_branch(self, manager):
        manager.delete(entry_named(manager, "a"))
        manager.delete(entry_named(manager, "b"))
        manager.undo()
        manager.delete(entry_named(manager, "c"))

        outcome = manager.redo()

        assert outcome.status == HistoryStatus.NOTHING_TO_REDO
        assert not outcome

    def test_empty_stacks_report_nothing(self, manager):
        assert manager.undo().status == HistoryStatus.NOTHING_TO_UNDO
        assert manager.redo().status == HistoryStatus.NOTHING_TO_REDO

    def test_multiple_undos_restore_original_order(self, manager):
        before = snapshot(manager.repository, "train")
        for name in ("c", "a", "d"):
            manager.delete(entry_named(manager, name))
        assert manager.repository.count("train") == 1

        while manager.can_undo:
            manager.undo()

        assert snapshot(manager.repository, "train") == before
        assert manager.redo_depth == 3

    def test_entry_without_label_file(self, manager):
        entry = entry_named(manager, "d")
        item = manager.delete(entry)

        assert item.staged_label_path is None
        manager.undo()
        assert entry.image_path.exists()
        assert not entry.label_path.exists()

    def test_delete_inactive_entry(self, manager):
        entry = entry_named(manager, "a")
        manager.delete(entry)
        with pytest.raises(EntryNotFoundError):
            manager.delete(entry)

    def test_same_name_deleted_twice_does_not_collide(self, manager):
        entry = entry_named(manager, "a")
        first = manager.delete(entry)
        manager.undo()
        manager.redo()
        manager.undo()
        manager.delete(entry)
        assert manager.undo_depth == 1
        assert first.staged_image_path.name.endswith("_train_a.png")


class TestFailureSafety:
    def test_label_failure_rolls_back_image(self, manager, monkeypatch):
        before = snapshot(manager.repository, "train")
        entry = entry_named(manager, "b")
        real_move = file_ops.move_file

        def flaky_move(src, dest):
            if str(src).endswith(".txt"):
                raise FileOperationError("label is locked", src)
            return real_move(src, dest)

        monkeypatch.setattr(deletion_module, "move_file", flaky_move)

        with pytest.raises(FileOperationError) as exc_info:
            manager.delete(entry)

        assert not isinstance(exc_info.value, AtomicityViolation)
        assert entry.image_path.exists()
        assert entry.label_path.exists()
        assert snapshot(manager.repository, "train") == before
        assert not manager.can_undo
        assert manager.staging.pending_records() == []

    def test_failed_rollback_raises_atomicity_violation(self, manager, monkeypatch):
        entry = entry_named(manager, "b")
        real_move = file_ops.move_file
        calls = []

        def broken_move(src, dest):
            calls.append((src, dest))
            if len(calls) == 1:
                return real_move(src, dest)
            raise FileOperationError("disk went away", src)

        monkeypatch.setattr(deletion_module, "move_file", broken_move)

        with pytest.raises(AtomicityViolation) as exc_info:
            manager.delete(entry)

        assert exc_info.value.stranded_path == entry.label_path
        assert exc_info.value.completed_path.exists()
        assert manager.repository.position_of(entry) is not None
        assert len(manager.staging.pending_records()) == 1

    def test_failed_undo_leaves_stacks_unchanged(self, manager, monkeypatch):
        entry = entry_named(manager, "a")
        manager.delete(entry)
        after_delete = snapshot(manager.repository, "train")

        def failing_move(src, dest):
            raise FileOperationError("permission denied", src)

        monkeypatch.setattr(deletion_module, "move_file", failing_move)

        with pytest.raises(FileOperationError):
            manager.undo()

        assert snapshot(manager.repository, "train") == after_delete
        assert manager.undo_depth == 1 and manager.redo_depth == 0

    def test_undo_refuses_to_overwrite(self, manager):
        entry = entry_named(manager, "a")
        manager.delete(entry)
        entry.image_path.write_bytes(b"reappeared")

        with pytest.raises(FileOperationError):
            manager.undo()
        assert manager.undo_depth == 1


class TestFinalize:
    def test_finalize_all(self, manager):
        items = [manager.delete(entry_named(manager, n)) for n in ("a", "b")]

        assert manager.finalize() == 2

        assert not manager.can_undo
        for item in items:
            assert not item.staged_image_path.exists()
            assert not item.staged_label_path.exists()
        assert manager.staging.pending_records() == []

    def test_finalize_one_entry(self, manager):
        a = entry_named(manager, "a")
        b = entry_named(manager, "b")
        manager.delete(a)
        manager.delete(b)

        assert manager.finalize(a) == 1

        assert manager.staged_entries() == [b]
        assert manager.undo().entry == b
        assert manager.undo().status == HistoryStatus.NOTHING_TO_UNDO
        assert not a.image_path.exists()

    def test_finalize_unknown_entry(self, manager):
        with pytest.raises(EntryNotFoundError):
            manager.finalize(entry_named(manager, "a"))

    def test_finalize_nothing(self, manager):
        assert manager.finalize() == 0

    def test_partial_purge_leaves_older_entries_undoable(self, manager):
        """An entry whose staged image is gone never blocks the undo history."""
        a = entry_named(manager, "a")
        b = entry_named(manager, "b")
        manager.delete(a)
        item_b = manager.delete(b)
        # The image purges fine, the label (now a directory) does not.
        item_b.staged_label_path.unlink()
        item_b.staged_label_path.mkdir()

        with pytest.raises(FileOperationError):
            manager.finalize(b)

        assert not item_b.staged_image_path.exists()
        assert manager.undo_depth == 1
        assert manager.staged_entries() == [a]
        assert manager.undo().entry == a
        assert a.image_path.exists()
        assert manager.undo().status == HistoryStatus.NOTHING_TO_UNDO

    def test_failed_purge_with_intact_files_stays_undoable(self, manager, monkeypatch):
        a = entry_named(manager, "a")
        manager.delete(a)

        def failing_purge(record):
            raise FileOperationError("read-only staging", record.staged_image_path)

        monkeypatch.setattr(manager.staging, "purge", failing_purge)

        with pytest.raises(FileOperationError):
            manager.finalize()

        assert manager.undo_depth == 1
        monkeypatch.undo()
        assert manager.undo().entry == a
