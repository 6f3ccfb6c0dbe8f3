"""
YOLO Dataset Curator

Curation engine for YOLO-format detection datasets captured from game footage
(two tracked teams, T and CT).

Key Features:
- Tolerant label parsing with per-line warnings and optional capture metadata
- Near-black frame detection by dominant color (k-means in Lab space)
- Team / player-count filtering that preserves dataset order
- Balance analysis against target category ratios, with recommendations
- Reversible deletion through a staging area with unlimited undo/redo
- Orphaned image/label detection
"""

__version__ = "0.1.0"

from .core import CancelToken, FilterCriteria, PlayerCountFilter, TeamFilter
from .core.session import CurationSession
from .config import CuratorConfig, load_config
from .data import DatasetEntry, DatasetRepository, Split

__all__ = [
    "CancelToken",
    "CurationSession",
    "CuratorConfig",
    "DatasetEntry",
    "DatasetRepository",
    "FilterCriteria",
    "PlayerCountFilter",
    "Split",
    "TeamFilter",
    "load_config",
]
