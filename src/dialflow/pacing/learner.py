"""
Predictive pacing learner.

Turns recent answer/abandonment history into an advisory concurrency ceiling
and calls-per-minute rate. The abandonment ceiling always dominates the
utilization goal.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from dialflow.pacing.estimator import ConcurrencySettings

DECREASE_FACTOR = 0.8
INCREASE_FACTOR = 1.1


class PacingAdjustment(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"
    MAINTAIN = "maintain"


@dataclass(frozen=True)
class HistoricalStat:
    """One completed interval of dialing metrics; rates are fractions in [0, 1]."""

    timestamp: datetime
    answer_rate: float
    abandonment_rate: float
    concurrent_calls: int


@dataclass(frozen=True)
class PacingRecommendation:
    avg_answer_rate: float
    avg_abandonment_rate: float
    avg_concurrent_calls: float
    recommended_concurrency: int
    recommended_calls_per_minute: int
    adjustment: PacingAdjustment
    sample_size: int


def _increase(value: int, ceiling: int) -> int:
    # round first: 10 * 1.1 is 11.000000000000002 in binary floating point
    return min(ceiling, max(value + 1, math.ceil(round(value * INCREASE_FACTOR, 6))))


def _decrease(value: int, floor: int) -> int:
    return max(floor, math.floor(round(value * DECREASE_FACTOR, 6)))


def learn_from_history(
    stats: Sequence[HistoricalStat],
    settings: ConcurrencySettings,
    *,
    seed_calls_per_minute: int | None = None,
    window: int = 20,
) -> PacingRecommendation:
    """Recommend concurrency and pacing from recent history.

    Args:
        stats: Historical stats in any order; only the newest ``window`` are used.
        settings: Tenant concurrency settings.
        seed_calls_per_minute: Cold-start rate (the broadcast's configured rate).
        window: Number of most recent stats to average.

    Returns:
        Advisory recommendation; never below one call or the minimum rate.
    """
    seed_rate = seed_calls_per_minute or settings.calls_per_minute
    seed_rate = min(max(seed_rate, settings.min_calls_per_minute), settings.max_calls_per_minute)
    base_concurrency = settings.max_concurrent_calls

    recent = sorted(stats, key=lambda s: s.timestamp, reverse=True)[: max(window, 1)]
    if not recent:
        return PacingRecommendation(
            avg_answer_rate=0.0,
            avg_abandonment_rate=0.0,
            avg_concurrent_calls=0.0,
            recommended_concurrency=base_concurrency,
            recommended_calls_per_minute=seed_rate,
            adjustment=PacingAdjustment.MAINTAIN,
            sample_size=0,
        )

    n = len(recent)
    avg_answer = sum(s.answer_rate for s in recent) / n
    avg_abandonment = sum(s.abandonment_rate for s in recent) / n
    avg_concurrent = sum(s.concurrent_calls for s in recent) / n
    observed_concurrency = max(1, round(avg_concurrent)) if avg_concurrent else base_concurrency
    utilization = avg_concurrent / settings.max_concurrent_calls

    if avg_abandonment > settings.target_abandonment_rate:
        adjustment = PacingAdjustment.DECREASE
        concurrency = _decrease(min(observed_concurrency, base_concurrency), 1)
        rate = _decrease(seed_rate, settings.min_calls_per_minute)
    elif utilization < settings.target_utilization:
        adjustment = PacingAdjustment.INCREASE
        concurrency = _increase(observed_concurrency, base_concurrency)
        rate = _increase(seed_rate, settings.max_calls_per_minute)
    else:
        adjustment = PacingAdjustment.MAINTAIN
        concurrency = min(observed_concurrency, base_concurrency)
        rate = seed_rate

    return PacingRecommendation(
        avg_answer_rate=avg_answer,
        avg_abandonment_rate=avg_abandonment,
        avg_concurrent_calls=avg_concurrent,
        recommended_concurrency=max(1, concurrency),
        recommended_calls_per_minute=rate,
        adjustment=adjustment,
        sample_size=n,
    )
