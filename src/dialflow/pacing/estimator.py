"""
Concurrency estimator.

Pure functions of (live active-call count, settings, learner output); no I/O,
so the dispatcher can call them every tick.
"""

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dialflow.pacing.learner import PacingRecommendation

LOW_UTILIZATION = 0.5
HIGH_UTILIZATION = 0.9
LOW_UTILIZATION_BOOST = 1.5
HIGH_UTILIZATION_BRAKE = 0.7


@dataclass(frozen=True)
class ConcurrencySettings:
    """Tenant (or per-broadcast) concurrency configuration."""

    max_concurrent_calls: int = 50
    calls_per_minute: int = 60
    target_abandonment_rate: float = 0.03
    target_utilization: float = 0.8
    enable_adaptive_pacing: bool = True
    min_calls_per_minute: int = 5
    max_calls_per_minute: int = 100

    def __post_init__(self) -> None:
        if self.max_concurrent_calls < 1:
            raise ValueError("max_concurrent_calls must be >= 1")
        if not 0 <= self.target_abandonment_rate <= 1:
            raise ValueError("target_abandonment_rate must be within [0, 1]")
        if not 0 < self.target_utilization <= 1:
            raise ValueError("target_utilization must be within (0, 1]")
        if self.min_calls_per_minute < 1:
            raise ValueError("min_calls_per_minute must be >= 1")
        if self.min_calls_per_minute > self.max_calls_per_minute:
            raise ValueError("min_calls_per_minute must be <= max_calls_per_minute")


@dataclass(frozen=True)
class DialingRateMetrics:
    current_concurrency: int
    max_concurrency: int
    concurrency_ceiling: int
    utilization_rate: int
    recommended_rate: int
    available_slots: int


def compute_dialing_rate(
    active_calls: int,
    settings: ConcurrencySettings,
    recommendation: "PacingRecommendation | None" = None,
) -> DialingRateMetrics:
    """Compute headroom and pacing for the next dispatch tick.

    Args:
        active_calls: Live count of calling/in_progress items.
        settings: Concurrency settings; ``max_concurrent_calls`` is the hard ceiling.
        recommendation: Learner output, if any.

    Returns:
        Metrics with ``available_slots`` never pushing active calls past the ceiling.
    """
    active_calls = max(0, active_calls)
    max_concurrency = settings.max_concurrent_calls

    ceiling = max_concurrency
    base_rate = settings.calls_per_minute
    if recommendation is not None and settings.enable_adaptive_pacing:
        ceiling = min(max_concurrency, max(1, recommendation.recommended_concurrency))
        base_rate = recommendation.recommended_calls_per_minute

    utilization = active_calls / max_concurrency
    utilization_rate = min(100, max(0, round(utilization * 100)))
    available_slots = max(0, ceiling - active_calls)

    if utilization < LOW_UTILIZATION:
        rate = math.floor(round(base_rate * LOW_UTILIZATION_BOOST, 6))
    elif utilization > HIGH_UTILIZATION:
        rate = math.floor(round(base_rate * HIGH_UTILIZATION_BRAKE, 6))
    else:
        rate = base_rate
    rate = min(max(rate, settings.min_calls_per_minute), settings.max_calls_per_minute)

    return DialingRateMetrics(
        current_concurrency=active_calls,
        max_concurrency=max_concurrency,
        concurrency_ceiling=ceiling,
        utilization_rate=utilization_rate,
        recommended_rate=rate if available_slots > 0 else 0,
        available_slots=available_slots,
    )


def tick_budget(metrics: DialingRateMetrics, interval_seconds: float) -> int:
    """Number of calls one tick may start: the paced share, bounded by free slots."""
    if metrics.available_slots <= 0 or metrics.recommended_rate <= 0:
        return 0
    paced = math.ceil(metrics.recommended_rate * interval_seconds / 60)
    return max(1, min(metrics.available_slots, paced))
