from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Mapping

from utils.date_utils import format_date

CENTS_PER_UNIT = 100


@dataclass(frozen=True)
class ScoreStreakResult:
    score: int  # cents
    current_streak: int


def compute_score_and_streak(
    failed_days: Mapping[str, object],
    start_date: date,
    today: date,
) -> ScoreStreakResult:
    """
    Replay every day from `start_date` to `today` (inclusive).

    A successful day earns the length of the streak before it, so the first
    success of a run is worth 0 and an unbroken run of k days yields
    k(k-1)/2. A failed day earns nothing and resets the streak. The streak
    reported is the one left after today's evaluation.
    """
    if start_date > today:
        return ScoreStreakResult(score=0, current_streak=0)

    total_score = 0
    consecutive_days = 0
    current_streak = 0

    current = start_date
    while current <= today:
        if failed_days.get(format_date(current)):
            consecutive_days = 0
        else:
            total_score += consecutive_days
            consecutive_days += 1

        if current == today:
            current_streak = consecutive_days
        current += timedelta(days=1)

    return ScoreStreakResult(score=total_score, current_streak=current_streak)


def format_money(cents: int, currency: str = "EUR") -> str:
    amount = (Decimal(int(cents)) / CENTS_PER_UNIT).quantize(Decimal("0.01"))
    return f"{amount} {currency}".strip()
