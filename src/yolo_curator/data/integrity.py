"""
Orphan detection for a split: images with no label file and label files
with no image. Runs on the scan pipeline so it can be cancelled and report
progress like the other batch analyses.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from ..core.exceptions import FileOperationError
from ..core.scan import CancelToken, ProgressCallback, run_scan
from ..utils.file_ops import remove_file
from .layout import LABEL_EXTENSION, collect_images, collect_labels, split_dirs

logger = logging.getLogger(__name__)


class IntegrityIssueKind(Enum):
    IMAGE_WITHOUT_LABEL = "ImageWithoutLabel"
    LABEL_WITHOUT_IMAGE = "LabelWithoutImage"


@dataclass(frozen=True)
class IntegrityIssue:
    kind: IntegrityIssueKind
    path: Path
    expected_counterpart: Path  # for display; image counterparts are guessed as .png


@dataclass
class IntegrityReport:
    images_without_labels: List[IntegrityIssue] = field(default_factory=list)
    labels_without_images: List[IntegrityIssue] = field(default_factory=list)
    total: int = 0
    processed: int = 0
    cancelled: bool = False

    @property
    def total_issues(self) -> int:
        return len(self.images_without_labels) + len(self.labels_without_images)

    @property
    def issues(self) -> List[IntegrityIssue]:
        return self.images_without_labels + self.labels_without_images


def analyze_integrity(
    root_dir,
    split,
    cancel_token: Optional[CancelToken] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> IntegrityReport:
    images_dir, labels_dir = split_dirs(root_dir, split)
    logger.info(f"Checking integrity of {images_dir.parent}")

    image_paths = collect_images(images_dir)
    label_paths = collect_labels(labels_dir)
    image_stems = {p.stem for p in image_paths}
    label_stems = {p.stem for p in label_paths}

    def check(path: Path, _payload) -> Optional[IntegrityIssue]:
        if path.suffix.lower() == LABEL_EXTENSION:
            if path.stem not in image_stems:
                return IntegrityIssue(
                    IntegrityIssueKind.LABEL_WITHOUT_IMAGE,
                    path,
                    images_dir / f"{path.stem}.png",
                )
        elif path.stem not in label_stems:
            return IntegrityIssue(
                IntegrityIssueKind.IMAGE_WITHOUT_LABEL,
                path,
                labels_dir / f"{path.stem}{LABEL_EXTENSION}",
            )
        return None

    summary = run_scan(
        image_paths + label_paths,
        check,
        cancel_token=cancel_token,
        progress_callback=progress_callback,
    )

    report = IntegrityReport(
        total=summary.total, processed=summary.processed, cancelled=summary.cancelled
    )
    for _, issue in summary.results:
        if issue.kind == IntegrityIssueKind.IMAGE_WITHOUT_LABEL:
            report.images_without_labels.append(issue)
        else:
            report.labels_without_images.append(issue)

    logger.info(
        "Integrity check: %d images without labels, %d labels without images",
        len(report.images_without_labels),
        len(report.labels_without_images),
    )
    return report


def remove_orphans(issues: Sequence[IntegrityIssue]) -> Tuple[int, List[Tuple[Path, str]]]:
    """
    Permanently delete orphaned files.

    Returns:
        (removed_count, [(path, error message), ...])
    """
    removed = 0
    errors = []
    for issue in issues:
        try:
            if remove_file(issue.path):
                removed += 1
        except FileOperationError as e:
            logger.error(str(e))
            errors.append((issue.path, str(e)))

    logger.info(f"Removed {removed} orphaned file(s), {len(errors)} failure(s)")
    return removed, errors
