"""
Configuration schemas for the curator.

All settings are plain dataclasses handed explicitly to each component.
A YAML file with the same nested keys can be loaded with `load_config`.
"""

from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


def _parse_member(enum_cls, value):
    """Accept a member, its value ("Hard Case") or its name ("HARD_CASE")."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        key = str(value).strip().upper().replace(" ", "_").replace("-", "_")
        if key in enum_cls.__members__:
            return enum_cls[key]
        raise ValueError(f"Unknown {enum_cls.__name__}: {value!r}") from None


class BalanceCategory(Enum):
    CT_ONLY = "CT Only"
    T_ONLY = "T Only"
    MULTIPLE = "Multiple"
    BACKGROUND = "Background"
    HARD_CASE = "Hard Case"

    @property
    def label(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value) -> "BalanceCategory":
        return _parse_member(cls, value)


PLAYER_CATEGORIES = (
    BalanceCategory.CT_ONLY,
    BalanceCategory.T_ONLY,
    BalanceCategory.MULTIPLE,
)


@dataclass
class ColorConfig:
    n_clusters: int = 3
    max_iter: int = 20
    tolerance: float = 1.0  # max centroid displacement in Lab units
    sample_stride: Optional[int] = None  # None: derived from max_samples
    max_samples: int = 100_000
    near_black_threshold: float = 10.0

    def __post_init__(self):
        if self.n_clusters < 1:
            raise ValueError(f"n_clusters must be >= 1, got {self.n_clusters}")
        if self.max_iter < 1:
            raise ValueError(f"max_iter must be >= 1, got {self.max_iter}")
        if self.sample_stride is not None and self.sample_stride < 1:
            raise ValueError(f"sample_stride must be >= 1, got {self.sample_stride}")
        if self.max_samples < 1:
            raise ValueError(f"max_samples must be >= 1, got {self.max_samples}")


@dataclass
class TargetRatios:
    player: float = 0.85
    background: float = 0.10
    hard_case: float = 0.05


@dataclass
class CategoryPolicy:
    """How detections map onto balance categories."""

    mixed_teams_category: BalanceCategory = BalanceCategory.HARD_CASE
    untracked_only_category: BalanceCategory = BalanceCategory.BACKGROUND
    # When set, this many same-team detections count as a hard case.
    hard_case_min_same_team: Optional[int] = None

    def __post_init__(self):
        self.mixed_teams_category = BalanceCategory.parse(self.mixed_teams_category)
        self.untracked_only_category = BalanceCategory.parse(self.untracked_only_category)
        if self.hard_case_min_same_team is not None and self.hard_case_min_same_team < 2:
            raise ValueError("hard_case_min_same_team must be >= 2 when set")


@dataclass
class BalanceConfig:
    target_ratios: TargetRatios = field(default_factory=TargetRatios)
    policy: CategoryPolicy = field(default_factory=CategoryPolicy)
    skew_margin: int = 100


class SelectionStrategy(Enum):
    """Order in which rebalancing picks images to move."""

    RANDOM = "Random"
    FEWEST_DETECTIONS = "Fewest Detections"
    OLDEST_FIRST = "Oldest First"  # by file name, assuming timestamped names
    NEWEST_FIRST = "Newest First"

    @classmethod
    def parse(cls, value) -> "SelectionStrategy":
        return _parse_member(cls, value)


@dataclass
class SplitRatios:
    """Share of all images each split should hold."""

    train: float = 0.70
    val: float = 0.20
    test: float = 0.10

    def __post_init__(self):
        if any(r < 0 for r in (self.train, self.val, self.test)):
            raise ValueError("Split ratios must be non-negative")
        if abs(self.train + self.val + self.test - 1.0) > 1e-6:
            raise ValueError(
                f"Split ratios must sum to 1.0, got "
                f"{self.train + self.val + self.test:.3f}"
            )


@dataclass
class RebalanceConfig:
    split_ratios: SplitRatios = field(default_factory=SplitRatios)
    selection_strategy: SelectionStrategy = SelectionStrategy.RANDOM
    # Moving player images draws CT, T and Multiple in turn.
    preserve_ct_t_balance: bool = True
    ct_t_ratio: float = 0.5  # desired CT share among single-team player images
    tolerance: float = 0.02  # fraction of all images a split may be off by
    max_iterations: int = 10
    seed: Optional[int] = None  # RANDOM strategy seed

    def __post_init__(self):
        self.selection_strategy = SelectionStrategy.parse(self.selection_strategy)
        if not 0.0 <= self.ct_t_ratio <= 1.0:
            raise ValueError(f"ct_t_ratio must be within [0, 1], got {self.ct_t_ratio}")
        if self.tolerance < 0:
            raise ValueError(f"tolerance must be >= 0, got {self.tolerance}")
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {self.max_iterations}")


@dataclass
class CuratorConfig:
    class_names: Dict[int, str] = field(default_factory=lambda: {0: "T", 1: "CT"})
    t_class_id: int = 0
    ct_class_id: int = 1
    color: ColorConfig = field(default_factory=ColorConfig)
    balance: BalanceConfig = field(default_factory=BalanceConfig)
    rebalance: RebalanceConfig = field(default_factory=RebalanceConfig)
    staging_dir: Optional[Path] = None

    def __post_init__(self):
        if self.t_class_id == self.ct_class_id:
            raise ValueError("t_class_id and ct_class_id must differ")
        if self.staging_dir is not None:
            self.staging_dir = Path(self.staging_dir)
        if isinstance(self.class_names, (list, tuple)):
            self.class_names = dict(enumerate(self.class_names))
        self.class_names = {int(k): str(v) for k, v in self.class_names.items()}

    def class_name(self, class_id: int) -> str:
        return self.class_names.get(class_id, "Unknown")

    def staging_dir_for(self, dataset_root: Path) -> Path:
        if self.staging_dir is not None:
            return self.staging_dir
        return Path(dataset_root) / ".curator_staging"


def _build(cls, data: Dict[str, Any]):
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping for {cls.__name__}, got {type(data).__name__}")
    known = {f.name: f for f in fields(cls)}
    unknown = set(data) - set(known)
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {sorted(unknown)}")

    kwargs = {}
    for name, value in data.items():
        factory = known[name].default_factory
        nested = factory() if factory is not MISSING else None
        if is_dataclass(nested) and isinstance(value, dict):
            kwargs[name] = _build(type(nested), value)
        else:
            kwargs[name] = value
    return cls(**kwargs)


def config_from_dict(data: Optional[Dict[str, Any]]) -> CuratorConfig:
    """Build a CuratorConfig from a nested mapping (e.g. parsed YAML)."""
    return _build(CuratorConfig, data or {})


def load_config(path) -> CuratorConfig:
    """Load a CuratorConfig from a YAML file."""
    import yaml

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    return config_from_dict(data)
