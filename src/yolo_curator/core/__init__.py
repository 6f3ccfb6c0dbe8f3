"""
Curation engine: colour classification, batch scans, filtering, balance
analysis, cross-split rebalancing and reversible deletion.
"""

from .balance import BalanceReport, analyze_balance, categorize, get_recommendations
from .color import ClassificationResult, ColorClassifier, classify
from .deletion import DeletionManager, HistoryOutcome, HistoryStatus, UndoEntry
from .exceptions import (
    AtomicityViolation,
    CuratorError,
    DecodeError,
    EntryNotFoundError,
    FileOperationError,
)
from .filtering import (
    FilterCriteria,
    FilterResult,
    PlayerCountFilter,
    TeamClasses,
    TeamFilter,
    apply_filter,
    count_matches,
    evaluate,
)
from .rebalance import (
    GlobalRebalancePlan,
    MoveAction,
    MoveResult,
    RebalancePlan,
    RebalanceResult,
    calculate_global_rebalance_plan,
    calculate_rebalance_plan,
    execute_rebalance_plan,
    undo_rebalance,
)
from .scan import CancelToken, ScanJob, ScanSummary, run_scan
from .staging import StagedRecord, StagingArea

__all__ = [
    "AtomicityViolation",
    "BalanceReport",
    "CancelToken",
    "ClassificationResult",
    "ColorClassifier",
    "CuratorError",
    "DecodeError",
    "DeletionManager",
    "EntryNotFoundError",
    "FileOperationError",
    "FilterCriteria",
    "FilterResult",
    "GlobalRebalancePlan",
    "HistoryOutcome",
    "HistoryStatus",
    "MoveAction",
    "MoveResult",
    "PlayerCountFilter",
    "RebalancePlan",
    "RebalanceResult",
    "ScanJob",
    "ScanSummary",
    "StagedRecord",
    "StagingArea",
    "TeamClasses",
    "TeamFilter",
    "UndoEntry",
    "analyze_balance",
    "apply_filter",
    "calculate_global_rebalance_plan",
    "calculate_rebalance_plan",
    "categorize",
    "classify",
    "count_matches",
    "evaluate",
    "execute_rebalance_plan",
    "get_recommendations",
    "run_scan",
    "undo_rebalance",
]
