from __future__ import annotations

import sys
from datetime import date, timedelta
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.score_service import ScoreStreakResult, compute_score_and_streak, format_money  # noqa: E402


TODAY = date(2025, 10, 10)


def test_walkthrough_with_one_failure_mid_run():
    result = compute_score_and_streak({"2025-10-08": True}, date(2025, 10, 6), TODAY)
    assert result == ScoreStreakResult(score=2, current_streak=2)


def test_start_after_today_scores_nothing():
    assert compute_score_and_streak({}, TODAY + timedelta(days=1), TODAY) == ScoreStreakResult(0, 0)


def test_start_equal_to_today_counts_one_day():
    assert compute_score_and_streak({}, TODAY, TODAY) == ScoreStreakResult(score=0, current_streak=1)


@pytest.mark.parametrize("k", [1, 2, 5, 30, 365])
def test_unbroken_run_is_triangular(k):
    start = TODAY - timedelta(days=k - 1)
    result = compute_score_and_streak({}, start, TODAY)
    assert result.current_streak == k
    assert result.score == k * (k - 1) // 2


def test_run_after_failure_adds_its_own_triangle():
    # 3 successes (0+1+2), a failure, then 4 successes ending today (0+1+2+3)
    start = TODAY - timedelta(days=7)
    failed = {(TODAY - timedelta(days=4)).isoformat(): True}
    result = compute_score_and_streak(failed, start, TODAY)
    assert result == ScoreStreakResult(score=3 + 6, current_streak=4)


def test_failure_today_resets_streak_but_keeps_score():
    result = compute_score_and_streak({"2025-10-10": True}, date(2025, 10, 6), TODAY)
    assert result == ScoreStreakResult(score=0 + 1 + 2 + 3, current_streak=0)


def test_failed_days_outside_range_are_ignored():
    failed = {"2025-10-01": True, "2025-10-11": True}
    assert compute_score_and_streak(failed, date(2025, 10, 6), TODAY) == compute_score_and_streak({}, date(2025, 10, 6), TODAY)


def test_falsy_markers_do_not_count_as_failures():
    assert compute_score_and_streak({"2025-10-08": False}, date(2025, 10, 6), TODAY).current_streak == 5


def test_is_pure():
    failed = {"2025-10-07": True}
    first = compute_score_and_streak(failed, date(2025, 10, 1), TODAY)
    second = compute_score_and_streak(failed, date(2025, 10, 1), TODAY)
    assert first == second
    assert failed == {"2025-10-07": True}


def test_runs_across_month_and_year_boundaries():
    result = compute_score_and_streak({}, date(2024, 12, 30), date(2025, 1, 2))
    assert result == ScoreStreakResult(score=6, current_streak=4)


def test_format_money_uses_two_decimals():
    assert format_money(0) == "0.00 EUR"
    assert format_money(2) == "0.02 EUR"
    assert format_money(12345, "USD") == "123.45 USD"
