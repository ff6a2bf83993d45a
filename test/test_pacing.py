"""
Unit tests for the concurrency estimator and the predictive pacing learner.
"""

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import NOW, OTHER_TENANT_ID, TENANT_ID, Factory
from dialflow.pacing.estimator import (
    ConcurrencySettings,
    DialingRateMetrics,
    compute_dialing_rate,
    tick_budget,
)
from dialflow.pacing.learner import (
    HistoricalStat,
    PacingAdjustment,
    PacingRecommendation,
    learn_from_history,
)
from dialflow.pacing.repository import PacingRepository


def _stats(count: int, abandonment: float, concurrent: int, answer: float = 0.4) -> list[HistoricalStat]:
    return [
        HistoricalStat(
            timestamp=NOW - timedelta(minutes=i),
            answer_rate=answer,
            abandonment_rate=abandonment,
            concurrent_calls=concurrent,
        )
        for i in range(count)
    ]


class TestConcurrencySettings:
    def test_defaults(self) -> None:
        settings = ConcurrencySettings()
        assert settings.max_concurrent_calls == 50
        assert settings.target_abandonment_rate == 0.03
        assert settings.enable_adaptive_pacing is True

    @pytest.mark.parametrize(
        "overrides",
        [
            {"max_concurrent_calls": 0},
            {"target_abandonment_rate": 1.5},
            {"target_utilization": 0},
            {"min_calls_per_minute": 50, "max_calls_per_minute": 10},
        ],
    )
    def test_invalid_values_rejected(self, overrides: dict) -> None:
        with pytest.raises(ValueError):
            ConcurrencySettings(**overrides)


class TestComputeDialingRate:
    """Tests for the concurrency estimator."""

    def test_available_slots_never_exceed_ceiling(self) -> None:
        settings = ConcurrencySettings(max_concurrent_calls=10, enable_adaptive_pacing=False)
        for active in range(0, 15):
            metrics = compute_dialing_rate(active, settings)
            assert active + metrics.available_slots <= max(active, 10)
            assert metrics.available_slots >= 0

    def test_low_utilization_boosts_rate(self) -> None:
        settings = ConcurrencySettings(
            max_concurrent_calls=10, calls_per_minute=40, enable_adaptive_pacing=False
        )
        metrics = compute_dialing_rate(2, settings)
        assert metrics.utilization_rate == 20
        assert metrics.recommended_rate == 60
        assert metrics.available_slots == 8

    def test_high_utilization_brakes_rate(self) -> None:
        settings = ConcurrencySettings(
            max_concurrent_calls=10, calls_per_minute=40, enable_adaptive_pacing=False
        )
        metrics = compute_dialing_rate(10, settings)
        assert metrics.available_slots == 0
        assert metrics.recommended_rate == 0

        metrics = compute_dialing_rate(95, ConcurrencySettings(
            max_concurrent_calls=100, calls_per_minute=40, enable_adaptive_pacing=False
        ))
        assert metrics.recommended_rate == 28

    def test_rate_clamped_to_bounds(self) -> None:
        settings = ConcurrencySettings(
            max_concurrent_calls=10,
            calls_per_minute=90,
            max_calls_per_minute=100,
            enable_adaptive_pacing=False,
        )
        assert compute_dialing_rate(0, settings).recommended_rate == 100

    def test_recommendation_lowers_ceiling(self) -> None:
        settings = ConcurrencySettings(max_concurrent_calls=10, calls_per_minute=30)
        recommendation = PacingRecommendation(
            avg_answer_rate=0.4,
            avg_abandonment_rate=0.05,
            avg_concurrent_calls=5,
            recommended_concurrency=4,
            recommended_calls_per_minute=24,
            adjustment=PacingAdjustment.DECREASE,
            sample_size=10,
        )
        metrics = compute_dialing_rate(3, settings, recommendation)
        assert metrics.concurrency_ceiling == 4
        assert metrics.available_slots == 1

    def test_recommendation_ignored_without_adaptive_pacing(self) -> None:
        settings = ConcurrencySettings(max_concurrent_calls=10, enable_adaptive_pacing=False)
        recommendation = learn_from_history(_stats(5, 0.10, 5), settings)
        metrics = compute_dialing_rate(3, settings, recommendation)
        assert metrics.concurrency_ceiling == 10


class TestTickBudget:
    def _metrics(self, slots: int, rate: int) -> DialingRateMetrics:
        return DialingRateMetrics(
            current_concurrency=0,
            max_concurrency=10,
            concurrency_ceiling=10,
            utilization_rate=0,
            recommended_rate=rate,
            available_slots=slots,
        )

    def test_paced_share_of_rate(self) -> None:
        assert tick_budget(self._metrics(slots=10, rate=60), interval_seconds=5) == 5

    def test_bounded_by_slots(self) -> None:
        assert tick_budget(self._metrics(slots=2, rate=60), interval_seconds=5) == 2

    def test_at_least_one_when_slots_free(self) -> None:
        assert tick_budget(self._metrics(slots=3, rate=5), interval_seconds=1) == 1

    def test_zero_without_slots(self) -> None:
        assert tick_budget(self._metrics(slots=0, rate=60), interval_seconds=5) == 0


class TestLearnFromHistory:
    """Tests for the predictive pacing learner."""

    def test_cold_start_uses_configuration(self) -> None:
        settings = ConcurrencySettings(max_concurrent_calls=20, calls_per_minute=30)
        rec = learn_from_history([], settings, seed_calls_per_minute=45)
        assert rec.sample_size == 0
        assert rec.recommended_concurrency == 20
        assert rec.recommended_calls_per_minute == 45
        assert rec.adjustment is PacingAdjustment.MAINTAIN

    def test_abandonment_above_target_reduces_even_when_underutilized(self) -> None:
        """5% abandonment against a 3% target wins over low utilization."""
        settings = ConcurrencySettings(
            max_concurrent_calls=50, calls_per_minute=60, target_abandonment_rate=0.03
        )
        rec = learn_from_history(_stats(10, abandonment=0.05, concurrent=10), settings)
        assert rec.adjustment is PacingAdjustment.DECREASE
        assert rec.recommended_concurrency < 10
        assert rec.recommended_calls_per_minute < 60
        assert rec.avg_abandonment_rate == pytest.approx(0.05)

    def test_low_utilization_increases(self) -> None:
        settings = ConcurrencySettings(max_concurrent_calls=50, calls_per_minute=60)
        rec = learn_from_history(_stats(10, abandonment=0.01, concurrent=10), settings)
        assert rec.adjustment is PacingAdjustment.INCREASE
        assert rec.recommended_concurrency == 11
        assert rec.recommended_calls_per_minute == 66

    def test_increase_capped_at_max(self) -> None:
        settings = ConcurrencySettings(
            max_concurrent_calls=10, calls_per_minute=100, max_calls_per_minute=100
        )
        rec = learn_from_history(_stats(5, abandonment=0.0, concurrent=7), settings)
        assert rec.recommended_concurrency <= 10
        assert rec.recommended_calls_per_minute == 100

    def test_on_target_maintains(self) -> None:
        settings = ConcurrencySettings(max_concurrent_calls=10, calls_per_minute=30)
        rec = learn_from_history(_stats(5, abandonment=0.01, concurrent=9), settings)
        assert rec.adjustment is PacingAdjustment.MAINTAIN
        assert rec.recommended_concurrency == 9
        assert rec.recommended_calls_per_minute == 30

    def test_only_most_recent_window_counts(self) -> None:
        settings = ConcurrencySettings(max_concurrent_calls=50)
        recent = _stats(3, abandonment=0.0, concurrent=10)
        old = [
            HistoricalStat(
                timestamp=NOW - timedelta(days=1, minutes=i),
                answer_rate=0.1,
                abandonment_rate=0.5,
                concurrent_calls=40,
            )
            for i in range(10)
        ]
        rec = learn_from_history(old + recent, settings, window=3)
        assert rec.sample_size == 3
        assert rec.avg_abandonment_rate == 0.0

    def test_decrease_never_below_one(self) -> None:
        settings = ConcurrencySettings(max_concurrent_calls=5, min_calls_per_minute=5)
        rec = learn_from_history(_stats(4, abandonment=0.2, concurrent=1), settings)
        assert rec.recommended_concurrency == 1
        assert rec.recommended_calls_per_minute >= 5


class TestPacingRepository:
    """Settings resolution and history reads."""

    @pytest.mark.asyncio
    async def test_defaults_when_nothing_stored(self, session: AsyncSession) -> None:
        settings = await PacingRepository(session).get_settings(TENANT_ID)
        assert settings.max_concurrent_calls == 50
        assert settings.calls_per_minute == 60

    @pytest.mark.asyncio
    async def test_broadcast_override_then_tenant_row(
        self, session: AsyncSession, factory: Factory
    ) -> None:
        broadcast = await factory.broadcast()
        other = await factory.broadcast(name="Other")
        await factory.concurrency(max_concurrent_calls=20)
        await factory.concurrency(broadcast.id, max_concurrent_calls=4)

        repository = PacingRepository(session)
        assert (await repository.get_settings(TENANT_ID, broadcast.id)).max_concurrent_calls == 4
        assert (await repository.get_settings(TENANT_ID, other.id)).max_concurrent_calls == 20
        assert (await repository.get_settings(OTHER_TENANT_ID)).max_concurrent_calls == 50

    @pytest.mark.asyncio
    async def test_partial_update_keeps_other_fields(
        self, session: AsyncSession, factory: Factory
    ) -> None:
        await factory.concurrency(max_concurrent_calls=20, calls_per_minute=25)
        updated = await factory.concurrency(target_abandonment_rate=0.05)

        assert updated.max_concurrent_calls == 20
        assert updated.calls_per_minute == 25
        assert updated.target_abandonment_rate == 0.05

    @pytest.mark.asyncio
    async def test_recent_stats_newest_first_within_window(
        self, session: AsyncSession, factory: Factory
    ) -> None:
        broadcast = await factory.broadcast()
        other = await factory.broadcast(name="Other")
        repository = PacingRepository(session)
        for stat in _stats(5, abandonment=0.01, concurrent=3):
            await repository.append_stat(TENANT_ID, stat, broadcast_id=broadcast.id)
        await repository.append_stat(
            TENANT_ID,
            HistoricalStat(NOW + timedelta(minutes=1), 0.5, 0.2, 9),
            broadcast_id=other.id,
        )

        stats = await repository.recent_stats(TENANT_ID, 3, broadcast_id=broadcast.id)

        assert len(stats) == 3
        assert stats[0].timestamp == NOW
        assert all(s.concurrent_calls == 3 for s in stats)
