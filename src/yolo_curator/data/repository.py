"""
In-memory dataset repository.

Holds, per split, the ordered list of active entries (image path, label path,
parsed label). The list is ordered by `original_index`, the position an entry
had when its split was scanned, so a removed entry can be reinserted exactly
where it was. Only the DeletionManager mutates a loaded repository.
"""

import bisect
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..core.exceptions import EntryNotFoundError
from .labels import ParsedLabel, parse_label_file
from .layout import Split, collect_images, label_path_for_image, split_dirs

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DatasetEntry:
    split: Split
    image_path: Path
    label_path: Path
    parsed_label: ParsedLabel
    original_index: int

    @property
    def name(self) -> str:
        return self.image_path.name

    @property
    def detections(self):
        return self.parsed_label.detections


class DatasetRepository:
    """Ordered entries per split, guarded by a re-entrant lock."""

    def __init__(self, root_dir: Optional[Path] = None, lock=None):
        self.root_dir = Path(root_dir) if root_dir is not None else None
        self.lock = lock if lock is not None else threading.RLock()
        self._entries: Dict[Split, List[DatasetEntry]] = {s: [] for s in Split}

    @classmethod
    def open(
        cls, root_dir, splits: Optional[Iterable] = None, lock=None
    ) -> "DatasetRepository":
        """Scan `root_dir` and load every split (or only `splits`)."""
        repo = cls(root_dir, lock=lock)
        for split in splits or list(Split):
            repo.load_split(split)
        return repo

    def load_split(self, split) -> int:
        """(Re)scan one split from disk, replacing its entries. Returns the count."""
        if self.root_dir is None:
            raise RuntimeError("Repository has no dataset root to scan")
        split = Split.parse(split)
        images_dir, labels_dir = split_dirs(self.root_dir, split)

        entries = []
        warned = 0
        for idx, image_path in enumerate(collect_images(images_dir)):
            label_path = label_path_for_image(image_path, labels_dir)
            parsed = parse_label_file(label_path)
            if parsed.warnings:
                warned += 1
            entries.append(
                DatasetEntry(
                    split=split,
                    image_path=image_path,
                    label_path=label_path,
                    parsed_label=parsed,
                    original_index=idx,
                )
            )

        with self.lock:
            self._entries[split] = entries

        if images_dir.is_dir():
            logger.info(f"Found {len(entries)} images in {images_dir}")
        else:
            logger.warning(f"Split directory missing: {images_dir}")
        if warned:
            logger.warning(f"{warned} label file(s) in {split.value} have parse warnings")
        return len(entries)

    def entries(self, split) -> List[DatasetEntry]:
        """Snapshot of the active entries of a split."""
        split = Split.parse(split)
        with self.lock:
            return list(self._entries[split])

    def count(self, split) -> int:
        with self.lock:
            return len(self._entries[Split.parse(split)])

    def find(self, image_path) -> Optional[DatasetEntry]:
        """Active entry whose image is `image_path`, if any."""
        image_path = Path(image_path)
        with self.lock:
            for items in self._entries.values():
                for entry in items:
                    if entry.image_path == image_path:
                        return entry
        return None

    def loaded_splits(self) -> List[Split]:
        with self.lock:
            return [s for s in Split if self._entries[s]]

    def _position(self, split: Split, original_index: int) -> int:
        return bisect.bisect_left(
            self._entries[split], original_index, key=lambda e: e.original_index
        )

    def position_of(self, entry: DatasetEntry) -> Optional[int]:
        """Current position of `entry` in its split, or None if not active."""
        with self.lock:
            items = self._entries[entry.split]
            pos = self._position(entry.split, entry.original_index)
            if pos < len(items) and items[pos] == entry:
                return pos
            return None

    def get(self, split, original_index: int) -> Optional[DatasetEntry]:
        split = Split.parse(split)
        with self.lock:
            items = self._entries[split]
            pos = self._position(split, original_index)
            if pos < len(items) and items[pos].original_index == original_index:
                return items[pos]
            return None

    def remove(self, entry: DatasetEntry) -> int:
        """Remove an active entry and return the position it held."""
        with self.lock:
            pos = self.position_of(entry)
            if pos is None:
                raise EntryNotFoundError(
                    f"{entry.split.value}/{entry.name} is not an active entry"
                )
            del self._entries[entry.split][pos]
            return pos

    def insert(self, entry: DatasetEntry) -> int:
        """Insert an entry at the position given by its original_index."""
        with self.lock:
            items = self._entries[entry.split]
            pos = self._position(entry.split, entry.original_index)
            if pos < len(items) and items[pos].original_index == entry.original_index:
                raise ValueError(
                    f"{entry.split.value} already holds an entry with "
                    f"original_index {entry.original_index}"
                )
            items.insert(pos, entry)
            return pos
