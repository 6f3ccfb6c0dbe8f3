"""Utilities to locate splits, pair images with labels and read class tables.

Expected layout::

    <dataset_root>/{train,val,test}/images/*.{png,jpg,jpeg}
    <dataset_root>/{train,val,test}/labels/*.txt
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg"}
LABEL_EXTENSION = ".txt"


class Split(Enum):
    TRAIN = "train"
    VAL = "val"
    TEST = "test"

    @classmethod
    def parse(cls, value) -> "Split":
        if isinstance(value, Split):
            return value
        text = str(value).strip().lower()
        aliases = {"validation": "val", "valid": "val"}
        return cls(aliases.get(text, text))


def _read_dataset_yaml(yaml_path):
    import yaml

    with open(yaml_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def split_dirs(root_dir, split) -> tuple[Path, Path]:
    """Return `(images_dir, labels_dir)` for a split."""
    split = Split.parse(split)
    base = Path(root_dir) / split.value
    return base / "images", base / "labels"


def detect_splits(root_dir) -> Dict[Split, tuple[Path, Path]]:
    """Return the splits whose `images/` directory exists.

    Raises:
        RuntimeError: If no split directory is found under the root.
    """
    root_dir = Path(root_dir)
    if not root_dir.is_dir():
        raise RuntimeError(f"Dataset root is not a directory: {root_dir}")

    found = {}
    for split in Split:
        images_dir, labels_dir = split_dirs(root_dir, split)
        if images_dir.is_dir():
            found[split] = (images_dir, labels_dir)

    if not found:
        raise RuntimeError(f"No valid dataset layout found in {root_dir}")
    return found


def collect_images(img_dir) -> List[Path]:
    """List image files directly inside `img_dir`, sorted by path."""
    img_dir = Path(img_dir)
    if not img_dir.is_dir():
        return []
    files = [
        p
        for p in img_dir.iterdir()
        if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
    ]
    return sorted(files)


def collect_labels(lbl_dir) -> List[Path]:
    lbl_dir = Path(lbl_dir)
    if not lbl_dir.is_dir():
        return []
    return sorted(
        p for p in lbl_dir.iterdir() if p.is_file() and p.suffix.lower() == LABEL_EXTENSION
    )


def label_path_for_image(image_path, labels_dir=None) -> Path:
    """Map an image path to its label path (same stem, `.txt`).

    Without an explicit `labels_dir` the nearest `images` path component is
    swapped for `labels`, as in the common YOLO layout.
    """
    image_path = Path(image_path)
    if labels_dir is not None:
        return Path(labels_dir) / f"{image_path.stem}{LABEL_EXTENSION}"

    parts = list(image_path.parts)
    for idx in range(len(parts) - 2, -1, -1):
        if parts[idx] == "images":
            parts[idx] = "labels"
            return Path(*parts).with_suffix(LABEL_EXTENSION)
    return image_path.parent.parent / "labels" / f"{image_path.stem}{LABEL_EXTENSION}"


def read_class_names(root_dir) -> Optional[Dict[int, str]]:
    """Read the class table from `dataset.yaml` (`names`) or `classes.txt`."""
    root_dir = Path(root_dir)
    yaml_path = root_dir / "dataset.yaml"
    if yaml_path.exists():
        try:
            names = _read_dataset_yaml(yaml_path).get("names")
        except Exception as e:
            logger.warning(f"Could not parse {yaml_path}: {e}")
            names = None
        if isinstance(names, dict) and names:
            return {int(k): str(v) for k, v in names.items()}
        if isinstance(names, list) and names:
            return {i: str(n) for i, n in enumerate(names)}

    classes_path = root_dir / "classes.txt"
    if classes_path.exists():
        with open(classes_path, "r", encoding="utf-8") as f:
            lines = [line.strip() for line in f]
        names = {i: n for i, n in enumerate(lines) if n}
        return names or None
    return None
