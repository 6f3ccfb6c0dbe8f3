"""
Staging area for soft-deleted image/label pairs.

Each staged pair gets a JSON sidecar describing where its files came from.
The sidecar is written before any file moves and removed only once the pair
is restored or purged, so after a crash `pending_records()` still knows how
to put every staged file back.
"""

import itertools
import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ..utils.file_ops import move_file, remove_file
from .exceptions import FileOperationError

logger = logging.getLogger(__name__)

SIDECAR_SUFFIX = ".json"


@dataclass(frozen=True)
class StagedRecord:
    split: str
    original_index: int
    image_path: Path
    label_path: Optional[Path]  # None when the image had no label file
    staged_image_path: Path
    staged_label_path: Optional[Path]
    sidecar_path: Path

    def to_json(self) -> dict:
        return {
            "split": self.split,
            "original_index": self.original_index,
            "image_path": str(self.image_path),
            "label_path": str(self.label_path) if self.label_path else None,
            "staged_image_path": str(self.staged_image_path),
            "staged_label_path": (
                str(self.staged_label_path) if self.staged_label_path else None
            ),
        }

    @classmethod
    def from_json(cls, data: dict, sidecar_path: Path) -> "StagedRecord":
        label = data.get("label_path")
        staged_label = data.get("staged_label_path")
        return cls(
            split=data["split"],
            original_index=int(data["original_index"]),
            image_path=Path(data["image_path"]),
            label_path=Path(label) if label else None,
            staged_image_path=Path(data["staged_image_path"]),
            staged_label_path=Path(staged_label) if staged_label else None,
            sidecar_path=Path(sidecar_path),
        )


class StagingArea:
    """Directory holding staged pairs, outside the active split tree."""

    def __init__(self, root):
        self.root = Path(root)
        self._counter = itertools.count()

    def _slot_prefix(self) -> str:
        return f"{int(time.time() * 1000)}_{next(self._counter):05d}"

    def reserve(self, entry, include_label: bool) -> StagedRecord:
        """Choose staged paths for an entry's files (nothing is written)."""
        self.root.mkdir(parents=True, exist_ok=True)
        while True:
            prefix = f"{self._slot_prefix()}_{entry.split.value}"
            staged_image = self.root / f"{prefix}_{entry.image_path.name}"
            staged_label = (
                self.root / f"{prefix}_{entry.label_path.name}" if include_label else None
            )
            sidecar = self.root / f"{prefix}_{entry.image_path.stem}{SIDECAR_SUFFIX}"
            taken = [p for p in (staged_image, staged_label, sidecar) if p and p.exists()]
            if not taken:
                break
        return StagedRecord(
            split=entry.split.value,
            original_index=entry.original_index,
            image_path=entry.image_path,
            label_path=entry.label_path if include_label else None,
            staged_image_path=staged_image,
            staged_label_path=staged_label,
            sidecar_path=sidecar,
        )

    def write_sidecar(self, record: StagedRecord) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            with open(record.sidecar_path, "w", encoding="utf-8") as f:
                json.dump(record.to_json(), f, indent=2)
        except OSError as e:
            raise FileOperationError(
                f"Failed to write staging record {record.sidecar_path}: {e}",
                record.sidecar_path,
            ) from e

    def discard_sidecar(self, record: StagedRecord) -> None:
        try:
            remove_file(record.sidecar_path)
        except FileOperationError as e:
            # Files already moved correctly; a stale sidecar only affects recovery listing.
            logger.warning(str(e))

    def purge(self, record: StagedRecord) -> None:
        """Permanently delete a staged pair and its sidecar."""
        remove_file(record.staged_image_path)
        if record.staged_label_path is not None:
            remove_file(record.staged_label_path)
        remove_file(record.sidecar_path)
        logger.info(f"Purged staged files for {record.image_path.name}")

    def pending_records(self) -> List[StagedRecord]:
        """Staged pairs found on disk, oldest first."""
        if not self.root.is_dir():
            return []
        records = []
        for sidecar in sorted(self.root.glob(f"*{SIDECAR_SUFFIX}")):
            try:
                with open(sidecar, "r", encoding="utf-8") as f:
                    records.append(StagedRecord.from_json(json.load(f), sidecar))
            except (OSError, ValueError, KeyError) as e:
                logger.warning(f"Skipping unreadable staging record {sidecar}: {e}")
        return records

    def restore_record(self, record: StagedRecord) -> None:
        """Move a pending pair back to its original location (crash recovery)."""
        if record.staged_image_path.exists():
            move_file(record.staged_image_path, record.image_path)
        if record.staged_label_path is not None and record.staged_label_path.exists():
            move_file(record.staged_label_path, record.label_path)
        self.discard_sidecar(record)
        logger.info(f"Recovered staged image {record.image_path}")
