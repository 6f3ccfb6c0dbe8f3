"""
Dataset balance analysis.

Every entry falls into exactly one BalanceCategory. The analysis runs on the
scan pipeline (visitor = categorizer) so it shares its progress reporting and
cooperative cancellation; a cancelled run reports counts for the processed
entries only.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..config.schemas import (
    PLAYER_CATEGORIES,
    BalanceCategory,
    BalanceConfig,
    CategoryPolicy,
    TargetRatios,
)
from ..data.labels import ParsedLabel
from .filtering import TeamClasses
from .scan import CancelToken, ProgressCallback, run_scan

logger = logging.getLogger(__name__)


@dataclass
class BalanceReport:
    counts: Dict[BalanceCategory, int]
    percentages: Dict[BalanceCategory, float]
    target_ratios: TargetRatios
    recommendations: List[str]
    total: int = 0
    processed: int = 0
    cancelled: bool = False
    elapsed: float = 0.0
    categories: List[BalanceCategory] = field(default_factory=list)

    @property
    def player_count(self) -> int:
        return sum(self.counts[c] for c in PLAYER_CATEGORIES)

    @property
    def player_percentage(self) -> float:
        return sum(self.percentages[c] for c in PLAYER_CATEGORIES)


def categorize(
    item,
    policy: CategoryPolicy = CategoryPolicy(),
    classes: TeamClasses = TeamClasses(),
) -> BalanceCategory:
    """
    Assign one category, in priority order:

    1. no detections -> BACKGROUND
    2. both tracked classes -> policy.mixed_teams_category (HARD_CASE)
    3. one tracked detection -> T_ONLY / CT_ONLY
    4. two or more, one team -> MULTIPLE (or HARD_CASE past the policy limit)

    Detections of untracked classes are ignored; an entry holding only those
    gets policy.untracked_only_category.
    """
    label = item if isinstance(item, ParsedLabel) else item.parsed_label
    if label.detection_count == 0:
        return BalanceCategory.BACKGROUND

    counts = label.class_counts()
    n_t = counts.get(classes.t, 0)
    n_ct = counts.get(classes.ct, 0)

    if n_t and n_ct:
        return policy.mixed_teams_category
    tracked = n_t + n_ct
    if tracked == 0:
        return policy.untracked_only_category
    if tracked == 1:
        return BalanceCategory.T_ONLY if n_t else BalanceCategory.CT_ONLY
    if (
        policy.hard_case_min_same_team is not None
        and tracked >= policy.hard_case_min_same_team
    ):
        return BalanceCategory.HARD_CASE
    return BalanceCategory.MULTIPLE


def _percent(count: int, total: int) -> float:
    return count * 100.0 / total if total else 0.0


def get_recommendations(
    counts: Dict[BalanceCategory, int],
    target_ratios: TargetRatios,
    skew_margin: int = 100,
) -> List[str]:
    """Deterministic suggestions comparing counts with target ratios."""
    total = sum(counts.values())
    if total == 0:
        return ["No images found in dataset."]

    recommendations = []

    player = sum(counts.get(c, 0) for c in PLAYER_CATEGORIES)
    background = counts.get(BalanceCategory.BACKGROUND, 0)
    hard_case = counts.get(BalanceCategory.HARD_CASE, 0)

    player_pct = _percent(player, total)
    bg_pct = _percent(background, total)
    hc_pct = _percent(hard_case, total)

    player_diff = player - int(total * target_ratios.player)
    target_pct = target_ratios.player * 100.0
    if player_diff > 0:
        recommendations.append(
            f"Remove approximately {player_diff} player images "
            f"(currently {player_pct:.1f}%, target {target_pct:.1f}%)"
        )
        ct = counts.get(BalanceCategory.CT_ONLY, 0)
        t = counts.get(BalanceCategory.T_ONLY, 0)
        multi = counts.get(BalanceCategory.MULTIPLE, 0)
        if ct > t + skew_margin:
            recommendations.append(
                f"  -> Consider removing more CT-only images ({ct} available)"
            )
        elif t > ct + skew_margin:
            recommendations.append(
                f"  -> Consider removing more T-only images ({t} available)"
            )
        else:
            recommendations.append(
                f"  -> Balance removals across CT ({ct}), T ({t}), and Multiple ({multi})"
            )
    elif player_diff < 0:
        recommendations.append(
            f"Collect approximately {-player_diff} more player images "
            f"(currently {player_pct:.1f}%, target {target_pct:.1f}%)"
        )
    else:
        recommendations.append(f"Player images are balanced ({player_pct:.1f}%)")

    bg_diff = background - int(total * target_ratios.background)
    target_pct = target_ratios.background * 100.0
    if bg_diff > 0:
        recommendations.append(
            f"Remove approximately {bg_diff} background images "
            f"(currently {bg_pct:.1f}%, target {target_pct:.1f}%)"
        )
    elif bg_diff < 0:
        recommendations.append(
            f"Add approximately {-bg_diff} more background images "
            f"(currently {bg_pct:.1f}%, target {target_pct:.1f}%)"
        )
    else:
        recommendations.append(f"Background images are balanced ({bg_pct:.1f}%)")

    hc_diff = hard_case - int(total * target_ratios.hard_case)
    target_pct = target_ratios.hard_case * 100.0
    if hc_diff > 0:
        recommendations.append(
            f"Manually review {hard_case} hard cases and reduce them by {hc_diff} "
            f"(currently {hc_pct:.1f}%, target {target_pct:.1f}%)"
        )
    elif hard_case > 0 and hc_diff == 0:
        recommendations.append(f"Hard cases are balanced ({hc_pct:.1f}%)")

    return recommendations


def build_report(
    categories: Sequence[BalanceCategory],
    config: Optional[BalanceConfig] = None,
    total: Optional[int] = None,
) -> BalanceReport:
    config = config or BalanceConfig()
    counts = {c: 0 for c in BalanceCategory}
    for category in categories:
        counts[category] += 1
    processed = len(categories)
    percentages = {c: _percent(n, processed) for c, n in counts.items()}

    return BalanceReport(
        counts=counts,
        percentages=percentages,
        target_ratios=config.target_ratios,
        recommendations=get_recommendations(
            counts, config.target_ratios, config.skew_margin
        ),
        total=processed if total is None else total,
        processed=processed,
        categories=list(categories),
    )


def analyze_balance(
    entries: Sequence,
    config: Optional[BalanceConfig] = None,
    classes: TeamClasses = TeamClasses(),
    cancel_token: Optional[CancelToken] = None,
    progress_callback: Optional[ProgressCallback] = None,
) -> BalanceReport:
    """Categorize every entry and compare the distribution with target ratios."""
    config = config or BalanceConfig()

    summary = run_scan(
        entries,
        lambda entry, _payload: categorize(entry, config.policy, classes),
        cancel_token=cancel_token,
        progress_callback=progress_callback,
        matcher=lambda _category: True,
    )

    report = build_report([category for _, category in summary.results], config, summary.total)
    report.cancelled = summary.cancelled
    report.elapsed = summary.elapsed

    logger.info(
        "Balance analysis: %d/%d entries (%d player, %d background, %d hard cases)%s",
        report.processed,
        report.total,
        report.player_count,
        report.counts[BalanceCategory.BACKGROUND],
        report.counts[BalanceCategory.HARD_CASE],
        " (cancelled)" if report.cancelled else "",
    )
    return report
