"""
Command surface for a UI or CLI driving the curation engine.

A session owns one opened dataset: its repository, staging area and deletion
history. Long scans can be started on a ScanJob and cancelled from the calling
thread; everything else completes synchronously. One session-wide RLock
serializes mutations and snapshot reads.
"""

import dataclasses
import logging
import threading
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from ..config.schemas import CuratorConfig
from ..data import integrity
from ..data.layout import Split, detect_splits, read_class_names
from ..data.repository import DatasetEntry, DatasetRepository
from . import balance, rebalance
from .color import ColorClassifier
from .deletion import DeletionManager, HistoryOutcome
from .exceptions import AtomicityViolation, FileOperationError
from .filtering import FilterCriteria, FilterResult, TeamClasses, apply_filter
from .scan import CancelToken, ProgressCallback, ScanJob, ScanSummary, run_scan
from .staging import StagingArea

logger = logging.getLogger(__name__)


class CurationSession:
    """
    Example:
        with CurationSession(config) as session:
            session.open_dataset("/data/cs2")
            summary = session.scan_near_black("train")
            session.delete_near_black(summary)
            session.undo()
    """

    def __init__(self, config: Optional[CuratorConfig] = None):
        self.config = config or CuratorConfig()
        self.classes = TeamClasses.from_config(self.config)
        self.lock = threading.RLock()
        self.root_dir: Optional[Path] = None
        self.repository: Optional[DatasetRepository] = None
        self.staging: Optional[StagingArea] = None
        self.deletion: Optional[DeletionManager] = None
        self.splits: List[Split] = []
        self.last_rebalance: Optional[rebalance.RebalanceResult] = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    # ------------------------------------------------------------------
    # Dataset
    # ------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self.repository is not None

    def _require_open(self) -> DatasetRepository:
        if self.repository is None:
            raise RuntimeError("No dataset is open")
        return self.repository

    def open_dataset(self, root_dir, splits: Optional[Iterable] = None) -> List[Split]:
        """
        Load a dataset root. Any previously opened dataset is closed first,
        which finalizes its staged deletions.

        Returns:
            The splits that were loaded.
        """
        root_dir = Path(root_dir)
        found = detect_splits(root_dir)
        wanted = [Split.parse(s) for s in splits] if splits else list(found)
        missing = [s.value for s in wanted if s not in found]
        if missing:
            raise RuntimeError(f"Split(s) not found in {root_dir}: {', '.join(missing)}")

        with self.lock:
            if self.is_open:
                self.close()

            class_names = read_class_names(root_dir)
            if class_names:
                self.config = dataclasses.replace(self.config, class_names=class_names)
                logger.info(f"Using class names from dataset: {class_names}")

            self.root_dir = root_dir
            self.splits = wanted
            self.repository = DatasetRepository.open(root_dir, wanted, lock=self.lock)
            self.staging = StagingArea(self.config.staging_dir_for(root_dir))
            self.deletion = DeletionManager(self.repository, self.staging)

        total = sum(self.repository.count(s) for s in wanted)
        logger.info(f"Opened dataset {root_dir}: {total} images in {len(wanted)} split(s)")

        pending = self.staging.pending_records()
        if pending:
            logger.warning(
                f"{len(pending)} staged entr{'y' if len(pending) == 1 else 'ies'} "
                "left from a previous session; call recover_staged() to restore them"
            )
        return wanted

    def entries(self, split) -> List[DatasetEntry]:
        return self._require_open().entries(split)

    def class_name(self, class_id: int) -> str:
        return self.config.class_name(class_id)

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------

    def scan_near_black(
        self,
        split,
        cancel_token: Optional[CancelToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> ScanSummary:
        """Classify every image of a split; near-black entries are the matches."""
        entries = self.entries(split)
        classifier = ColorClassifier(self.config.color)
        logger.info(
            f"Scanning {len(entries)} {Split.parse(split).value} images for near-black frames"
        )
        return run_scan(
            entries,
            classifier,
            cancel_token=cancel_token,
            progress_callback=progress_callback,
            loader=classifier.load,
            matcher=ColorClassifier.matched,
        )

    def start_near_black_scan(
        self, split, progress_callback: Optional[ProgressCallback] = None
    ) -> ScanJob:
        job = ScanJob(self.scan_near_black, split, progress_callback=progress_callback)
        job.start()
        return job

    def filter(self, split, criteria: FilterCriteria) -> FilterResult:
        return apply_filter(self.entries(split), criteria, self.classes)

    def analyze_balance(
        self,
        split,
        cancel_token: Optional[CancelToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> balance.BalanceReport:
        return balance.analyze_balance(
            self.entries(split),
            self.config.balance,
            self.classes,
            cancel_token=cancel_token,
            progress_callback=progress_callback,
        )

    def start_balance_analysis(
        self, split, progress_callback: Optional[ProgressCallback] = None
    ) -> ScanJob:
        job = ScanJob(self.analyze_balance, split, progress_callback=progress_callback)
        job.start()
        return job

    def analyze_integrity(
        self,
        split,
        cancel_token: Optional[CancelToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> integrity.IntegrityReport:
        self._require_open()
        return integrity.analyze_integrity(
            self.root_dir,
            split,
            cancel_token=cancel_token,
            progress_callback=progress_callback,
        )

    def remove_orphans(
        self, issues: Iterable[integrity.IntegrityIssue]
    ) -> Tuple[int, List[Tuple[Path, str]]]:
        """
        Permanently delete orphaned files. Orphaned images are active entries,
        so they are dropped from the repository as well.
        """
        repository = self._require_open()
        issues = list(issues)
        with self.lock:
            removed, errors = integrity.remove_orphans(issues)
            for issue in issues:
                if issue.kind != integrity.IntegrityIssueKind.IMAGE_WITHOUT_LABEL:
                    continue
                entry = repository.find(issue.path)
                if entry is not None and not entry.image_path.exists():
                    repository.remove(entry)
        return removed, errors

    # ------------------------------------------------------------------
    # Rebalancing
    # ------------------------------------------------------------------

    def plan_rebalance(self, from_split, to_split, category) -> rebalance.RebalancePlan:
        """Plan moving the excess of one category out of `from_split`."""
        return rebalance.calculate_rebalance_plan(
            self.entries(from_split),
            from_split,
            to_split,
            category,
            self.config.balance,
            self.config.rebalance,
            self.classes,
        )

    def plan_global_rebalance(self) -> rebalance.GlobalRebalancePlan:
        """Plan moves between all splits toward the configured split ratios."""
        self._require_open()
        unloaded = [s.value for s in detect_splits(self.root_dir) if s not in self.splits]
        if unloaded:
            raise RuntimeError(
                f"Open every split before a global rebalance (not loaded: "
                f"{', '.join(unloaded)})"
            )
        return rebalance.calculate_global_rebalance_plan(
            {split: self.entries(split) for split in self.splits},
            self.config.balance,
            self.config.rebalance,
            self.classes,
        )

    def _require_empty_history(self, action: str) -> None:
        if self.can_undo or self.can_redo:
            raise RuntimeError(f"Finalize or undo deletions before {action}")

    def _reload_splits(self, splits) -> None:
        for split in Split:
            if split not in splits:
                continue
            if split not in self.splits:
                self.splits = [s for s in Split if s in self.splits or s == split]
            self.repository.load_split(split)

    def execute_rebalance(
        self,
        plan,
        cancel_token: Optional[CancelToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> rebalance.RebalanceResult:
        """
        Apply a rebalance plan and reload the splits it changed.

        Moving files renumbers the affected splits, so the deletion history
        must be empty. The result is kept for `undo_rebalance()`.

        Raises:
            AtomicityViolation: A pair could not be rolled back; the batch
                stopped there and `last_rebalance` holds the partial result.
        """
        self._require_open()
        with self.lock:
            self._require_empty_history("rebalancing")
            result = rebalance.execute_rebalance_plan(
                self.root_dir,
                plan,
                cancel_token=cancel_token,
                progress_callback=progress_callback,
            )
            self._reload_splits(result.touched_splits)
            self.last_rebalance = result
        if result.violation is not None:
            raise result.violation
        return result

    def start_rebalance(
        self, plan, progress_callback: Optional[ProgressCallback] = None
    ) -> ScanJob:
        job = ScanJob(self.execute_rebalance, plan, progress_callback=progress_callback)
        job.start()
        return job

    def undo_rebalance(
        self,
        result: Optional[rebalance.RebalanceResult] = None,
        cancel_token: Optional[CancelToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> rebalance.RebalanceResult:
        """Move the files of a rebalance (default: the last one) back."""
        self._require_open()
        with self.lock:
            if result is None:
                result = self.last_rebalance
            if result is None:
                raise RuntimeError("No rebalance to undo")
            self._require_empty_history("undoing a rebalance")

            undone = rebalance.undo_rebalance(
                result, cancel_token=cancel_token, progress_callback=progress_callback
            )
            self._reload_splits(undone.touched_splits)
            complete = not undone.cancelled and undone.failed == 0
            if result is self.last_rebalance and complete:
                self.last_rebalance = None
        if undone.violation is not None:
            raise undone.violation
        return undone

    # ------------------------------------------------------------------
    # Deletion history
    # ------------------------------------------------------------------

    def _require_history(self) -> DeletionManager:
        self._require_open()
        return self.deletion

    def delete(self, entry: DatasetEntry):
        return self._require_history().delete(entry)

    def delete_near_black(
        self, summary: ScanSummary
    ) -> Tuple[int, List[Tuple[Path, str]]]:
        """
        Stage every near-black match of a scan. Each delete is its own undo
        step. Entries that are no longer active are skipped.

        Returns:
            (deleted_count, [(image path, error message), ...])
        """
        manager = self._require_history()
        deleted = 0
        errors = []
        with self.lock:
            for entry, result in summary.results:
                if not getattr(result, "is_near_black", False):
                    continue
                if self.repository.position_of(entry) is None:
                    continue
                try:
                    manager.delete(entry)
                    deleted += 1
                except AtomicityViolation:
                    raise
                except FileOperationError as e:
                    errors.append((entry.image_path, str(e)))

        logger.info(f"Staged {deleted} near-black images ({len(errors)} failed)")
        return deleted, errors

    def undo(self) -> HistoryOutcome:
        return self._require_history().undo()

    def redo(self) -> HistoryOutcome:
        return self._require_history().redo()

    def finalize(self, entry: Optional[DatasetEntry] = None) -> int:
        return self._require_history().finalize(entry)

    @property
    def can_undo(self) -> bool:
        return self.deletion is not None and self.deletion.can_undo

    @property
    def can_redo(self) -> bool:
        return self.deletion is not None and self.deletion.can_redo

    @property
    def undo_depth(self) -> int:
        return self.deletion.undo_depth if self.deletion is not None else 0

    @property
    def redo_depth(self) -> int:
        return self.deletion.redo_depth if self.deletion is not None else 0

    def recover_staged(self) -> int:
        """
        Restore staged files left behind by an earlier session and reload the
        affected splits. Only allowed while this session's history is empty,
        since reloading renumbers entries.
        """
        repository = self._require_open()
        with self.lock:
            if self.can_undo or self.can_redo:
                raise RuntimeError("Recover staged files before deleting anything")

            restored = 0
            splits = set()
            for record in self.staging.pending_records():
                try:
                    self.staging.restore_record(record)
                except FileOperationError as e:
                    logger.error(f"Could not recover {record.image_path}: {e}")
                    # The image may already be back even though the label failed.
                    if not record.staged_image_path.exists():
                        splits.add(Split.parse(record.split))
                    continue
                restored += 1
                splits.add(Split.parse(record.split))

            for split in splits & set(self.splits):
                repository.load_split(split)

        logger.info(f"Recovered {restored} staged entries")
        return restored

    def close(self) -> int:
        """Finalize everything still staged and release the dataset."""
        with self.lock:
            if not self.is_open:
                return 0
            purged = self.deletion.finalize()
            logger.info(f"Closed dataset {self.root_dir}")
            self.repository = None
            self.staging = None
            self.deletion = None
            self.root_dir = None
            self.splits = []
            self.last_rebalance = None
        return purged
