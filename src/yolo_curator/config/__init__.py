"""Configuration dataclasses and YAML loading."""

from .schemas import (
    PLAYER_CATEGORIES,
    BalanceCategory,
    BalanceConfig,
    CategoryPolicy,
    ColorConfig,
    CuratorConfig,
    RebalanceConfig,
    SelectionStrategy,
    SplitRatios,
    TargetRatios,
    config_from_dict,
    load_config,
)

__all__ = [
    "PLAYER_CATEGORIES",
    "BalanceCategory",
    "BalanceConfig",
    "CategoryPolicy",
    "ColorConfig",
    "CuratorConfig",
    "RebalanceConfig",
    "SelectionStrategy",
    "SplitRatios",
    "TargetRatios",
    "config_from_dict",
    "load_config",
]
