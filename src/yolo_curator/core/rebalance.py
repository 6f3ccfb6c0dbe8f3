"""
Moving images between splits toward the target ratios.

Two planners work on categorized entries and never touch the disk:

* `calculate_rebalance_plan` moves the excess of one balance category out of a
  source split into a destination split.
* `calculate_global_rebalance_plan` moves images between train/val/test until
  every split holds its configured share of the dataset, preferring the
  single-team player type the destination is short of.

`execute_rebalance_plan` applies a plan. Image and label move as a pair with
rollback, the same way deletion stages them. `undo_rebalance` moves every
successful move back. Both stop at the next image when cancelled.
"""

import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from ..config.schemas import (
    PLAYER_CATEGORIES,
    BalanceCategory,
    BalanceConfig,
    RebalanceConfig,
    SelectionStrategy,
    SplitRatios,
    TargetRatios,
)
from ..data.layout import Split, split_dirs
from .balance import categorize
from .deletion import move_pair
from .exceptions import AtomicityViolation, FileOperationError
from .filtering import TeamClasses
from .scan import CancelToken, ProgressCallback

logger = logging.getLogger(__name__)

CategoryCounts = Dict[BalanceCategory, int]


@dataclass(frozen=True)
class MoveCandidate:
    """An entry together with its balance category."""

    entry: object
    category: BalanceCategory

    @property
    def image_path(self) -> Path:
        return self.entry.image_path

    @property
    def detection_count(self) -> int:
        return self.entry.parsed_label.detection_count


@dataclass(frozen=True)
class MoveAction:
    image_path: Path
    label_path: Optional[Path]  # None when the image has no label file
    category: BalanceCategory
    from_split: Split
    to_split: Split

    def destination(self, root_dir) -> Tuple[Path, Optional[Path]]:
        """Paths the image and label get in the destination split."""
        images_dir, labels_dir = split_dirs(root_dir, self.to_split)
        new_label = labels_dir / self.label_path.name if self.label_path else None
        return images_dir / self.image_path.name, new_label


@dataclass
class MoveResult:
    action: MoveAction
    success: bool
    error: Optional[str] = None
    new_image_path: Optional[Path] = None
    new_label_path: Optional[Path] = None


@dataclass
class RebalancePlan:
    """Moves of one category from one split to another."""

    from_split: Split
    to_split: Split
    category: BalanceCategory
    count_to_move: int = 0
    actions: List[MoveAction] = field(default_factory=list)
    current_counts: CategoryCounts = field(default_factory=dict)
    projected_counts: CategoryCounts = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.actions

    def __len__(self):
        return len(self.actions)


@dataclass
class MoveGroup:
    from_split: Split
    to_split: Split
    actions: List[MoveAction] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.actions)


@dataclass
class GlobalRebalancePlan:
    """Moves across all splits toward the configured split sizes."""

    groups: List[MoveGroup] = field(default_factory=list)
    current_counts: Dict[Split, CategoryCounts] = field(default_factory=dict)
    projected_counts: Dict[Split, CategoryCounts] = field(default_factory=dict)
    target_sizes: Dict[Split, int] = field(default_factory=dict)
    iterations_used: int = 0

    @property
    def actions(self) -> List[MoveAction]:
        return [action for group in self.groups for action in group.actions]

    @property
    def total_moves(self) -> int:
        return sum(group.count for group in self.groups)

    @property
    def is_empty(self) -> bool:
        return not self.groups

    def _add(self, from_split: Split, to_split: Split, actions: List[MoveAction]):
        for group in self.groups:
            if group.from_split == from_split and group.to_split == to_split:
                group.actions.extend(actions)
                return
        self.groups.append(MoveGroup(from_split, to_split, list(actions)))


@dataclass
class RebalanceResult:
    results: List[MoveResult] = field(default_factory=list)
    total: int = 0
    cancelled: bool = False
    # Set when a pair could not be rolled back; the batch stopped there.
    violation: Optional[AtomicityViolation] = None

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded

    @property
    def touched_splits(self) -> Set[Split]:
        """Splits whose directories changed (or may have changed)."""
        splits = set()
        for r in self.results:
            if r.success or self.violation is not None:
                splits.update((r.action.from_split, r.action.to_split))
        return splits


# ----------------------------------------------------------------------
# Counting
# ----------------------------------------------------------------------


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def empty_counts() -> CategoryCounts:
    return {c: 0 for c in BalanceCategory}


def categorize_entries(
    entries: Sequence,
    config: Optional[BalanceConfig] = None,
    classes: TeamClasses = TeamClasses(),
) -> List[MoveCandidate]:
    policy = (config or BalanceConfig()).policy
    return [MoveCandidate(e, categorize(e, policy, classes)) for e in entries]


def count_categories(candidates: Sequence[MoveCandidate]) -> CategoryCounts:
    counts = empty_counts()
    for c in candidates:
        counts[c.category] += 1
    return counts


def calculate_move_count(
    counts: CategoryCounts, category: BalanceCategory, target_ratios: TargetRatios
) -> int:
    """
    Images of `category` above (positive) or below (negative) the target.

    Player categories are measured together against the player ratio.
    """
    total = sum(counts.values())
    if total == 0:
        return 0

    if category == BalanceCategory.BACKGROUND:
        current = counts.get(category, 0)
        target = total * target_ratios.background
    elif category in PLAYER_CATEGORIES:
        current = sum(counts.get(c, 0) for c in PLAYER_CATEGORIES)
        target = total * target_ratios.player
    else:
        current = counts.get(BalanceCategory.HARD_CASE, 0)
        target = total * target_ratios.hard_case
    return _round_half_away(current - target)


def find_best_destination_split(
    counts_by_split: Dict[Split, CategoryCounts],
    source_split: Split,
    category: BalanceCategory,
    target_ratios: TargetRatios,
) -> Optional[Tuple[Split, int]]:
    """The other split that lacks the most images of `category`, and how many."""
    best = None
    for split in Split:
        if split == source_split or split not in counts_by_split:
            continue
        needed = -calculate_move_count(counts_by_split[split], category, target_ratios)
        if needed > 0 and (best is None or needed > best[1]):
            best = (split, needed)
    return best


def split_target_sizes(total: int, ratios: SplitRatios) -> Dict[Split, int]:
    """Image count per split; test takes the rounding remainder."""
    train = _round_half_away(total * ratios.train)
    val = _round_half_away(total * ratios.val)
    return {
        Split.TRAIN: train,
        Split.VAL: val,
        Split.TEST: max(0, total - train - val),
    }


# ----------------------------------------------------------------------
# Planning
# ----------------------------------------------------------------------


def order_candidates(
    candidates: Sequence[MoveCandidate],
    strategy: SelectionStrategy,
    rng: Optional[np.random.Generator] = None,
) -> List[MoveCandidate]:
    """Order candidates by selection strategy (RANDOM uses `rng`)."""
    strategy = SelectionStrategy.parse(strategy)
    if strategy == SelectionStrategy.RANDOM:
        rng = rng if rng is not None else np.random.default_rng()
        return [candidates[i] for i in rng.permutation(len(candidates))]
    if strategy == SelectionStrategy.FEWEST_DETECTIONS:
        return sorted(candidates, key=lambda c: c.detection_count)
    return sorted(
        candidates,
        key=lambda c: str(c.image_path),
        reverse=strategy == SelectionStrategy.NEWEST_FIRST,
    )


def _interleave_players(candidates: List[MoveCandidate]) -> List[MoveCandidate]:
    # CT, T, Multiple in turn, each keeping its strategy order.
    queues = [[c for c in candidates if c.category == cat] for cat in PLAYER_CATEGORIES]
    interleaved = []
    for i in range(max((len(q) for q in queues), default=0)):
        interleaved.extend(q[i] for q in queues if i < len(q))
    return interleaved


def _action(candidate: MoveCandidate, from_split: Split, to_split: Split) -> MoveAction:
    label = candidate.entry.label_path
    return MoveAction(
        image_path=candidate.image_path,
        label_path=label if label is not None and label.exists() else None,
        category=candidate.category,
        from_split=from_split,
        to_split=to_split,
    )


def calculate_rebalance_plan(
    entries: Sequence,
    from_split,
    to_split,
    category,
    balance_config: Optional[BalanceConfig] = None,
    rebalance_config: Optional[RebalanceConfig] = None,
    classes: TeamClasses = TeamClasses(),
) -> RebalancePlan:
    """
    Plan moving the excess of `category` in `from_split` to `to_split`.

    Args:
        entries: Active entries of the source split.
        category: Category to reduce. A player category moves CT, T and
            Multiple images in turn when `preserve_ct_t_balance` is set.

    Returns:
        RebalancePlan, empty when the source has no excess.
    """
    from_split, to_split = Split.parse(from_split), Split.parse(to_split)
    if from_split == to_split:
        raise ValueError("Source and destination split must differ")
    category = BalanceCategory.parse(category)
    balance_config = balance_config or BalanceConfig()
    rebalance_config = rebalance_config or RebalanceConfig()

    candidates = categorize_entries(entries, balance_config, classes)
    counts = count_categories(candidates)
    plan = RebalancePlan(
        from_split,
        to_split,
        category,
        current_counts=counts,
        projected_counts=dict(counts),
    )

    excess = calculate_move_count(counts, category, balance_config.target_ratios)
    if excess <= 0:
        logger.info(f"No excess {category.label} images to move in {from_split.value}")
        return plan
    plan.count_to_move = excess

    balance_players = (
        category in PLAYER_CATEGORIES and rebalance_config.preserve_ct_t_balance
    )
    wanted = set(PLAYER_CATEGORIES) if balance_players else {category}
    pool = order_candidates(
        [c for c in candidates if c.category in wanted],
        rebalance_config.selection_strategy,
        np.random.default_rng(rebalance_config.seed),
    )
    if balance_players:
        pool = _interleave_players(pool)

    for candidate in pool[:excess]:
        plan.actions.append(_action(candidate, from_split, to_split))
        plan.projected_counts[candidate.category] -= 1

    logger.info(
        f"Rebalance plan: move {len(plan.actions)} {category.label} images "
        f"from {from_split.value} to {to_split.value}"
    )
    return plan


def _prefers_ct(counts: CategoryCounts, ct_t_ratio: float) -> bool:
    ct = counts[BalanceCategory.CT_ONLY]
    t = counts[BalanceCategory.T_ONLY]
    if ct + t == 0:
        return True
    return ct / (ct + t) < ct_t_ratio


def _move_priority(category: BalanceCategory, prefer_ct: bool) -> int:
    if category == BalanceCategory.CT_ONLY:
        return 0 if prefer_ct else 1
    if category == BalanceCategory.T_ONLY:
        return 1 if prefer_ct else 0
    return {
        BalanceCategory.MULTIPLE: 2,
        BalanceCategory.BACKGROUND: 3,
        BalanceCategory.HARD_CASE: 4,
    }[category]


def calculate_global_rebalance_plan(
    entries_by_split: Dict[Split, Sequence],
    balance_config: Optional[BalanceConfig] = None,
    rebalance_config: Optional[RebalanceConfig] = None,
    classes: TeamClasses = TeamClasses(),
) -> GlobalRebalancePlan:
    """
    Plan moves so each split approaches its share of all images.

    Each iteration moves from the split with the largest excess to the one
    with the largest deficit, until every split is within the tolerance or
    `max_iterations` is reached.
    """
    balance_config = balance_config or BalanceConfig()
    config = rebalance_config or RebalanceConfig()
    rng = np.random.default_rng(config.seed)

    candidates = {
        split: categorize_entries(entries_by_split.get(split, ()), balance_config, classes)
        for split in Split
    }
    current = {split: count_categories(candidates[split]) for split in Split}
    plan = GlobalRebalancePlan(
        current_counts=current,
        projected_counts={split: dict(counts) for split, counts in current.items()},
    )
    projected = plan.projected_counts

    sizes = {split: len(candidates[split]) for split in Split}
    total = sum(sizes.values())
    if total == 0:
        logger.info("No images found in dataset")
        return plan

    targets = split_target_sizes(total, config.split_ratios)
    plan.target_sizes = targets
    tolerance_count = int(total * config.tolerance)
    logger.info(
        "Split balancing: total %d, current %s, target %s",
        total,
        {s.value: n for s, n in sizes.items()},
        {s.value: n for s, n in targets.items()},
    )
    if all(abs(sizes[s] - targets[s]) <= tolerance_count for s in Split):
        logger.info(
            f"Splits already balanced within {config.tolerance * 100:.0f}% tolerance"
        )
        return plan

    pools = {
        split: order_candidates(candidates[split], config.selection_strategy, rng)
        for split in Split
    }

    for iteration in range(1, config.max_iterations + 1):
        plan.iterations_used = iteration
        excess = {s: sizes[s] - targets[s] for s in Split}
        from_split = max(Split, key=lambda s: excess[s])
        to_split = min(Split, key=lambda s: excess[s])
        if excess[from_split] <= tolerance_count or -excess[to_split] <= tolerance_count:
            break

        move_count = min(excess[from_split], -excess[to_split])
        prefer_ct = _prefers_ct(projected[to_split], config.ct_t_ratio)
        # Stable sort: the strategy order survives within each priority.
        pool = sorted(
            pools[from_split], key=lambda c: _move_priority(c.category, prefer_ct)
        )
        chosen, pools[from_split] = pool[:move_count], pool[move_count:]
        if not chosen:
            break

        actions = []
        for candidate in chosen:
            actions.append(_action(candidate, from_split, to_split))
            projected[from_split][candidate.category] -= 1
            projected[to_split][candidate.category] += 1
        sizes[from_split] -= len(chosen)
        sizes[to_split] += len(chosen)
        plan._add(from_split, to_split, actions)

    logger.info(
        f"Split rebalance plan: {plan.total_moves} moves in {len(plan.groups)} "
        f"groups, {plan.iterations_used} iterations"
    )
    return plan


# ----------------------------------------------------------------------
# Execution
# ----------------------------------------------------------------------


def _report(progress_callback: Optional[ProgressCallback], done: int, total: int):
    if progress_callback is not None:
        progress_callback(done, total)


def _run_moves(
    jobs: List[Tuple[MoveAction, List[Tuple[Path, Path]], Path, Optional[Path]]],
    label: str,
    cancel_token: Optional[CancelToken],
    progress_callback: Optional[ProgressCallback],
) -> RebalanceResult:
    result = RebalanceResult(total=len(jobs))
    for action, moves, new_image, new_label in jobs:
        if cancel_token is not None and cancel_token.cancelled:
            result.cancelled = True
            logger.warning(f"{label} cancelled at {len(result.results)}/{result.total}")
            break
        try:
            move_pair(moves, f"{label} {action.image_path.name}")
        except AtomicityViolation as e:
            result.results.append(MoveResult(action, False, str(e)))
            result.violation = e
            break
        except FileOperationError as e:
            result.results.append(MoveResult(action, False, str(e)))
        else:
            result.results.append(MoveResult(action, True, None, new_image, new_label))
        _report(progress_callback, len(result.results), result.total)

    logger.info(
        f"{label} complete: {result.succeeded} succeeded, {result.failed} failed"
        f"{' (cancelled)' if result.cancelled else ''}"
    )
    return result


def execute_rebalance_plan(
    root_dir,
    plan,
    cancel_token: Optional[CancelToken] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> RebalanceResult:
    """
    Move the files of a RebalancePlan or GlobalRebalancePlan.

    A failed move is recorded and the batch continues. A pair that could not
    be rolled back stops the batch and is reported in `result.violation`.
    Existing files in the destination are never overwritten.
    """
    jobs = []
    for action in plan.actions:
        new_image, new_label = action.destination(root_dir)
        moves = [(action.image_path, new_image)]
        if action.label_path is not None:
            moves.append((action.label_path, new_label))
        jobs.append((action, moves, new_image, new_label))
    return _run_moves(jobs, "Rebalance", cancel_token, progress_callback)


def undo_rebalance(
    result: RebalanceResult,
    cancel_token: Optional[CancelToken] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> RebalanceResult:
    """Move every successfully moved pair back, most recent first."""
    jobs = []
    for moved in reversed([r for r in result.results if r.success]):
        action = moved.action
        moves = [(moved.new_image_path, action.image_path)]
        if moved.new_label_path is not None:
            moves.append((moved.new_label_path, action.label_path))
        label_back = action.label_path if moved.new_label_path is not None else None
        jobs.append((action, moves, action.image_path, label_back))
    return _run_moves(jobs, "Rebalance undo", cancel_token, progress_callback)
