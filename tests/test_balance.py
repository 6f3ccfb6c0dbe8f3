"""
Tests for balance categorization, reports and recommendations.
"""

import pytest

from yolo_curator.config.schemas import (
    BalanceCategory,
    BalanceConfig,
    CategoryPolicy,
    TargetRatios,
)
from yolo_curator.core.balance import analyze_balance, categorize, get_recommendations
from yolo_curator.core.filtering import TeamClasses
from yolo_curator.core.scan import CancelToken
from yolo_curator.data.labels import parse_label_text


def label(*class_ids):
    return parse_label_text("".join(f"{c} 0.5 0.5 0.1 0.1\n" for c in class_ids))


class TestCategorize:
    @pytest.mark.parametrize(
        "class_ids, expected",
        [
            ((), BalanceCategory.BACKGROUND),
            ((0,), BalanceCategory.T_ONLY),
            ((1,), BalanceCategory.CT_ONLY),
            ((0, 0), BalanceCategory.MULTIPLE),
            ((1, 1, 1), BalanceCategory.MULTIPLE),
            ((0, 1), BalanceCategory.HARD_CASE),
            ((1, 0, 0), BalanceCategory.HARD_CASE),
            ((2,), BalanceCategory.BACKGROUND),
            ((0, 2), BalanceCategory.T_ONLY),
        ],
    )
    def test_default_policy(self, class_ids, expected):
        assert categorize(label(*class_ids)) == expected

    def test_policy_overrides(self):
        policy = CategoryPolicy(
            mixed_teams_category=BalanceCategory.MULTIPLE,
            untracked_only_category=BalanceCategory.HARD_CASE,
            hard_case_min_same_team=3,
        )
        assert categorize(label(0, 1), policy) == BalanceCategory.MULTIPLE
        assert categorize(label(4), policy) == BalanceCategory.HARD_CASE
        assert categorize(label(1, 1), policy) == BalanceCategory.MULTIPLE
        assert categorize(label(1, 1, 1), policy) == BalanceCategory.HARD_CASE

    def test_policy_accepts_category_names(self):
        policy = CategoryPolicy(mixed_teams_category="Multiple")
        assert policy.mixed_teams_category == BalanceCategory.MULTIPLE

    def test_custom_team_classes(self):
        classes = TeamClasses(t=3, ct=4)
        assert categorize(label(4), classes=classes) == BalanceCategory.CT_ONLY


class TestAnalyzeBalance:
    def test_ten_entry_scenario(self):
        """6 background, 2 T-only, 1 CT-only, 1 hard case."""
        entries = [label() for _ in range(6)]
        entries += [label(0), label(0), label(1), label(0, 1)]

        report = analyze_balance(entries)

        assert report.counts == {
            BalanceCategory.BACKGROUND: 6,
            BalanceCategory.T_ONLY: 2,
            BalanceCategory.CT_ONLY: 1,
            BalanceCategory.MULTIPLE: 0,
            BalanceCategory.HARD_CASE: 1,
        }
        assert report.percentages[BalanceCategory.BACKGROUND] == pytest.approx(60.0)
        assert report.percentages[BalanceCategory.T_ONLY] == pytest.approx(20.0)
        assert report.percentages[BalanceCategory.CT_ONLY] == pytest.approx(10.0)
        assert report.percentages[BalanceCategory.MULTIPLE] == pytest.approx(0.0)
        assert report.percentages[BalanceCategory.HARD_CASE] == pytest.approx(10.0)
        assert report.player_count == 3

    def test_percentages_sum_to_100(self):
        entries = [label(*ids) for ids in [(), (0,), (1,), (0, 0), (0, 1), (1, 1), (5,)]]
        report = analyze_balance(entries)

        assert sum(report.percentages.values()) == pytest.approx(100.0)
        assert sum(report.counts.values()) == len(entries)
        assert len(report.categories) == len(entries)

    def test_empty_dataset(self):
        report = analyze_balance([])
        assert report.total == 0
        assert all(p == 0.0 for p in report.percentages.values())
        assert report.recommendations == ["No images found in dataset."]

    def test_cancelled_report_is_partial(self):
        token = CancelToken()
        progress = []

        def on_progress(processed, total):
            progress.append(processed)
            if processed == 3:
                token.cancel()

        entries = [label(0) for _ in range(10)]
        report = analyze_balance(entries, cancel_token=token, progress_callback=on_progress)

        assert report.cancelled
        assert report.processed == 3
        assert report.total == 10
        assert report.counts[BalanceCategory.T_ONLY] == 3
        assert progress == [1, 2, 3]


class TestRecommendations:
    def test_surplus_background_suggests_removal(self):
        counts = {
            BalanceCategory.BACKGROUND: 60,
            BalanceCategory.T_ONLY: 20,
            BalanceCategory.CT_ONLY: 20,
        }
        recs = get_recommendations(counts, TargetRatios())

        assert any(r.startswith("Collect approximately 45 more player images") for r in recs)
        assert any(r.startswith("Remove approximately 50 background images") for r in recs)

    def test_surplus_players_names_the_skewed_team(self):
        counts = {BalanceCategory.CT_ONLY: 900, BalanceCategory.T_ONLY: 100}
        recs = get_recommendations(counts, TargetRatios())

        assert recs[0].startswith("Remove approximately 150 player images")
        assert "CT-only" in recs[1]
        assert any(r.startswith("Add approximately 100 more background images") for r in recs)

    def test_surplus_hard_cases_suggest_review(self):
        counts = {BalanceCategory.HARD_CASE: 30, BalanceCategory.MULTIPLE: 70}
        recs = get_recommendations(counts, TargetRatios())

        assert any(r.startswith("Manually review 30 hard cases") for r in recs)

    def test_balanced_dataset(self):
        counts = {
            BalanceCategory.MULTIPLE: 85,
            BalanceCategory.BACKGROUND: 10,
            BalanceCategory.HARD_CASE: 5,
        }
        recs = get_recommendations(counts, TargetRatios())

        assert recs == [
            "Player images are balanced (85.0%)",
            "Background images are balanced (10.0%)",
            "Hard cases are balanced (5.0%)",
        ]

    def test_deterministic(self):
        counts = {BalanceCategory.BACKGROUND: 3, BalanceCategory.T_ONLY: 7}
        config = BalanceConfig()
        assert get_recommendations(
            counts, config.target_ratios, config.skew_margin
        ) == get_recommendations(dict(counts), config.target_ratios, config.skew_margin)
