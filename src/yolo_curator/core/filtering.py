"""
Predicate filtering over parsed annotations.

Filtering is a pure function of (entries, criteria): it never reorders, only
drops, and returns the indices of the matching entries in the input sequence.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, NamedTuple, Sequence

from ..data.labels import ParsedLabel


class TeamFilter(Enum):
    ALL = "all"
    T_ONLY = "t-only"
    CT_ONLY = "ct-only"
    BOTH = "both"
    T_EXCLUSIVE = "t-exclusive"
    CT_EXCLUSIVE = "ct-exclusive"


class PlayerCountFilter(Enum):
    ANY = "any"
    SINGLE = "single"
    MULTIPLE = "multiple"
    BACKGROUND = "background"


@dataclass(frozen=True)
class FilterCriteria:
    team: TeamFilter = TeamFilter.ALL
    player_count: PlayerCountFilter = PlayerCountFilter.ANY

    @property
    def is_active(self) -> bool:
        return self.team != TeamFilter.ALL or self.player_count != PlayerCountFilter.ANY


class TeamClasses(NamedTuple):
    t: int = 0
    ct: int = 1

    @classmethod
    def from_config(cls, config) -> "TeamClasses":
        return cls(config.t_class_id, config.ct_class_id)


class FilterResult(NamedTuple):
    indices: List[int]
    count: int


def _label_of(item) -> ParsedLabel:
    return item if isinstance(item, ParsedLabel) else item.parsed_label


def _matches_team(label: ParsedLabel, team: TeamFilter, classes: TeamClasses) -> bool:
    if team == TeamFilter.ALL:
        return True

    counts = label.class_counts()
    n_t = counts.get(classes.t, 0)
    n_ct = counts.get(classes.ct, 0)
    total = label.detection_count

    if team == TeamFilter.T_ONLY:
        return n_t > 0 and n_ct == 0
    if team == TeamFilter.CT_ONLY:
        return n_ct > 0 and n_t == 0
    if team == TeamFilter.BOTH:
        return n_t > 0 and n_ct > 0
    if team == TeamFilter.T_EXCLUSIVE:
        return total > 0 and n_t == total
    if team == TeamFilter.CT_EXCLUSIVE:
        return total > 0 and n_ct == total
    raise ValueError(f"Unknown team filter: {team}")


def _matches_count(label: ParsedLabel, player_count: PlayerCountFilter) -> bool:
    n = label.detection_count
    if player_count == PlayerCountFilter.ANY:
        return True
    if player_count == PlayerCountFilter.SINGLE:
        return n == 1
    if player_count == PlayerCountFilter.MULTIPLE:
        return n >= 2
    if player_count == PlayerCountFilter.BACKGROUND:
        return n == 0
    raise ValueError(f"Unknown player count filter: {player_count}")


def matches(item, criteria: FilterCriteria, classes: TeamClasses = TeamClasses()) -> bool:
    """True when one entry (or ParsedLabel) satisfies both filters."""
    label = _label_of(item)
    return _matches_count(label, criteria.player_count) and _matches_team(
        label, criteria.team, classes
    )


def evaluate(
    entries: Sequence, criteria: FilterCriteria, classes: TeamClasses = TeamClasses()
) -> List[int]:
    """Indices of matching entries, strictly increasing."""
    if not criteria.is_active:
        return list(range(len(entries)))
    return [i for i, item in enumerate(entries) if matches(item, criteria, classes)]


def count_matches(
    entries: Sequence, criteria: FilterCriteria, classes: TeamClasses = TeamClasses()
) -> int:
    """Number of matching entries; always equals `len(evaluate(...))`."""
    if not criteria.is_active:
        return len(entries)
    return sum(1 for item in entries if matches(item, criteria, classes))


def apply_filter(
    entries: Sequence, criteria: FilterCriteria, classes: TeamClasses = TeamClasses()
) -> FilterResult:
    indices = evaluate(entries, criteria, classes)
    return FilterResult(indices, len(indices))
