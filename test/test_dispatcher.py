"""
Tests for the dispatcher tick: claiming, pacing, failures and auto-pause.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import NOW, Factory, FrozenClock, calling_window
from dialflow.broadcasts.models import BroadcastStatus, IvrMode
from dialflow.broadcasts.repository import BroadcastRepository
from dialflow.config import Settings
from dialflow.dispatch.dispatcher import Dispatcher
from dialflow.queue.models import WorkItemStatus
from dialflow.queue.repository import WorkItemRepository
from dialflow.readiness.models import AlertSeverity, PhoneNumber, SystemAlert
from dialflow.telephony.mock_adapter import MockCallInitiationService


@pytest.fixture
def dispatcher(
    session: AsyncSession,
    call_service: MockCallInitiationService,
    clock: FrozenClock,
    test_settings: Settings,
) -> Dispatcher:
    return Dispatcher(session, call_service, clock=clock, settings=test_settings)


async def _statuses(session: AsyncSession, broadcast_id) -> dict[WorkItemStatus, int]:
    return await WorkItemRepository(session).count_by_status(broadcast_id)


class TestConcurrencyCeiling:
    """Active calls never exceed the configured ceiling."""

    @pytest.mark.asyncio
    async def test_claims_up_to_ceiling_then_stops(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
        call_service: MockCallInitiationService,
    ) -> None:
        """Max 2 concurrent with 5 pending: first tick dials 2, second tick dials none."""
        broadcast = await factory.running_broadcast()
        await factory.concurrency(max_concurrent_calls=2)
        await factory.items(broadcast, 5)

        first = await dispatcher.tick(broadcast.id)

        assert first.claimed == 2
        assert first.initiated == 2
        statuses = await _statuses(session, broadcast.id)
        assert statuses[WorkItemStatus.CALLING] == 2
        assert statuses[WorkItemStatus.PENDING] == 3

        second = await dispatcher.tick(broadcast.id)

        assert second.claimed == 0
        assert second.skipped_reason == "no_available_slots"
        assert len(call_service.calls) == 2

    @pytest.mark.asyncio
    async def test_broadcast_override_wins_over_tenant_settings(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
    ) -> None:
        broadcast = await factory.running_broadcast()
        await factory.concurrency(max_concurrent_calls=10)
        await factory.concurrency(broadcast.id, max_concurrent_calls=1)
        await factory.items(broadcast, 3)

        result = await dispatcher.tick(broadcast.id)

        assert result.claimed == 1
        assert result.metrics is not None
        assert result.metrics.concurrency_ceiling == 1

    @pytest.mark.asyncio
    async def test_existing_active_calls_use_up_slots(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
    ) -> None:
        broadcast = await factory.running_broadcast()
        await factory.concurrency(max_concurrent_calls=3)
        await factory.items(broadcast, 2, status=WorkItemStatus.IN_PROGRESS, attempts=1)
        await factory.items(broadcast, 4)

        result = await dispatcher.tick(broadcast.id)

        assert result.claimed == 1
        assert (await WorkItemRepository(session).count_active(broadcast.id)) == 3


class TestClaiming:
    @pytest.mark.asyncio
    async def test_claim_increments_attempts_and_stores_call_id(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
        call_service: MockCallInitiationService,
    ) -> None:
        broadcast = await factory.running_broadcast()
        item = await factory.item(broadcast)

        await dispatcher.tick(broadcast.id)

        stored = await WorkItemRepository(session).get(item.id)
        assert stored is not None
        assert stored.status is WorkItemStatus.CALLING
        assert stored.attempts == 1
        assert stored.call_id == "MOCK_CALL_000001"

        request = call_service.get_last_call()
        assert request is not None
        assert request.work_item_id == item.id
        assert request.callback_url == "http://testserver/webhooks/calls/status"
        assert request.metadata["attempt"] == 1

    @pytest.mark.asyncio
    async def test_priority_then_queue_order(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
        call_service: MockCallInitiationService,
    ) -> None:
        broadcast = await factory.running_broadcast()
        await factory.concurrency(max_concurrent_calls=1)
        await factory.item(broadcast, "+14155550001")
        await factory.item(broadcast, "+14155550002", priority=10)

        await dispatcher.tick(broadcast.id)

        assert [c.phone_number for c in call_service.calls] == ["+14155550002"]

    @pytest.mark.asyncio
    async def test_future_scheduled_items_wait(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
    ) -> None:
        broadcast = await factory.running_broadcast()
        await factory.item(broadcast, scheduled_at=NOW + timedelta(hours=1))

        result = await dispatcher.tick(broadcast.id)

        assert result.claimed == 0
        assert result.skipped_reason == "no_pending_items"
        assert result.completed is False

    @pytest.mark.asyncio
    async def test_exhausted_pending_items_are_not_claimed(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
    ) -> None:
        broadcast = await factory.running_broadcast()
        await factory.item(broadcast, attempts=3, max_attempts=3)

        result = await dispatcher.tick(broadcast.id)

        assert result.claimed == 0


class TestInitiationFailure:
    """Provider errors return the item to pending or fail it once exhausted."""

    @pytest.mark.asyncio
    async def test_failure_with_budget_left_requeues(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
        call_service: MockCallInitiationService,
    ) -> None:
        broadcast = await factory.running_broadcast()
        item = await factory.item(broadcast)
        call_service.configure_failure(error_message="Carrier rejected number")

        result = await dispatcher.tick(broadcast.id)

        assert result.claimed == 1
        assert result.requeued == 1
        stored = await WorkItemRepository(session).get(item.id)
        assert stored is not None
        assert stored.status is WorkItemStatus.PENDING
        assert stored.attempts == 1
        assert stored.last_error == "Carrier rejected number"

    @pytest.mark.asyncio
    async def test_failure_on_last_attempt_fails_item(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
        call_service: MockCallInitiationService,
    ) -> None:
        broadcast = await factory.running_broadcast(max_attempts=1)
        item = await factory.item(broadcast)
        call_service.configure_failure()

        result = await dispatcher.tick(broadcast.id)

        assert result.failed == 1
        stored = await WorkItemRepository(session).get(item.id)
        assert stored is not None
        assert stored.status is WorkItemStatus.FAILED
        assert stored.attempts == 1

    @pytest.mark.asyncio
    async def test_one_bad_number_does_not_block_others(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
        call_service: MockCallInitiationService,
    ) -> None:
        broadcast = await factory.running_broadcast()
        await factory.item(broadcast, "+14155550001")
        await factory.item(broadcast, "+14155550002")
        call_service.configure_failure(phone_numbers={"+14155550001"})

        result = await dispatcher.tick(broadcast.id)

        assert result.initiated == 1
        assert result.requeued == 1


class TestTickGuards:
    @pytest.mark.asyncio
    async def test_non_running_broadcast_skipped(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
    ) -> None:
        broadcast = await factory.broadcast(status=BroadcastStatus.PAUSED)
        await factory.item(broadcast)

        result = await dispatcher.tick(broadcast.id)

        assert result.skipped_reason == "broadcast_paused"
        assert result.claimed == 0

    @pytest.mark.asyncio
    async def test_outside_calling_hours_skipped(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
    ) -> None:
        broadcast = await factory.running_broadcast(**calling_window("09:00", "12:00"))
        await factory.item(broadcast)

        result = await dispatcher.tick(broadcast.id)

        assert result.skipped_reason == "outside_calling_hours"

    @pytest.mark.asyncio
    async def test_bypass_ignores_calling_hours(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
    ) -> None:
        broadcast = await factory.running_broadcast(
            bypass_calling_hours=True, **calling_window("09:00", "12:00")
        )
        await factory.item(broadcast)

        result = await dispatcher.tick(broadcast.id)

        assert result.claimed == 1

    @pytest.mark.asyncio
    async def test_window_evaluated_in_broadcast_timezone(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
    ) -> None:
        """15:00 UTC is 10:00 in New York in March."""
        broadcast = await factory.running_broadcast(
            timezone="America/New_York", **calling_window("09:00", "17:00")
        )
        await factory.item(broadcast)

        result = await dispatcher.tick(broadcast.id)

        assert result.claimed == 1


class TestErrorRateGuard:
    @pytest.mark.asyncio
    async def test_high_error_rate_pauses_broadcast(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
        call_service: MockCallInitiationService,
    ) -> None:
        broadcast = await factory.running_broadcast()
        await factory.items(broadcast, 10, status=WorkItemStatus.FAILED, attempts=3)
        await factory.item(broadcast)

        result = await dispatcher.tick(broadcast.id)

        assert result.paused is True
        assert result.skipped_reason == "error_rate_paused"
        assert call_service.calls == []

        refreshed = await BroadcastRepository(session).get(broadcast.id)
        assert refreshed is not None
        assert refreshed.status is BroadcastStatus.PAUSED
        assert refreshed.last_error == "Auto-paused: 100.0% error rate in last 10 calls"

        alerts = (await session.execute(select(SystemAlert))).scalars().all()
        assert [(a.alert_type, a.severity) for a in alerts] == [
            ("high_error_rate", AlertSeverity.CRITICAL)
        ]

    @pytest.mark.asyncio
    async def test_small_sample_does_not_pause(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
    ) -> None:
        broadcast = await factory.running_broadcast()
        await factory.items(broadcast, 5, status=WorkItemStatus.FAILED, attempts=3)
        await factory.item(broadcast)

        result = await dispatcher.tick(broadcast.id)

        assert result.paused is False
        assert result.claimed == 1

    @pytest.mark.asyncio
    async def test_elevated_error_rate_warns_once(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
    ) -> None:
        broadcast = await factory.running_broadcast()
        await factory.items(broadcast, 2, status=WorkItemStatus.FAILED, attempts=3)
        await factory.items(broadcast, 8, status=WorkItemStatus.COMPLETED, attempts=1)
        await factory.items(broadcast, 2)

        first = await dispatcher.tick(broadcast.id)
        await dispatcher.tick(broadcast.id)

        assert first.paused is False
        assert first.claimed > 0
        alerts = (await session.execute(select(SystemAlert))).scalars().all()
        assert len(alerts) == 1
        assert alerts[0].alert_type == "error_rate_warning"
        assert alerts[0].severity is AlertSeverity.WARNING


class TestAutoComplete:
    @pytest.mark.asyncio
    async def test_drained_broadcast_completes(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
    ) -> None:
        broadcast = await factory.running_broadcast()
        await factory.items(broadcast, 3, status=WorkItemStatus.COMPLETED, attempts=1)

        result = await dispatcher.tick(broadcast.id)

        assert result.completed is True
        assert result.skipped_reason == "completed"
        refreshed = await BroadcastRepository(session).get(broadcast.id)
        assert refreshed is not None
        assert refreshed.status is BroadcastStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_active_calls_keep_broadcast_running(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
    ) -> None:
        broadcast = await factory.running_broadcast()
        await factory.item(broadcast, status=WorkItemStatus.CALLING, attempts=1)
        await factory.item(broadcast, status=WorkItemStatus.COMPLETED, attempts=1)

        result = await dispatcher.tick(broadcast.id)

        assert result.completed is False
        refreshed = await BroadcastRepository(session).get(broadcast.id)
        assert refreshed is not None
        assert refreshed.status is BroadcastStatus.RUNNING

    @pytest.mark.asyncio
    async def test_empty_broadcast_is_not_completed(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
    ) -> None:
        broadcast = await factory.running_broadcast()

        result = await dispatcher.tick(broadcast.id)

        assert result.completed is False
        assert result.skipped_reason == "no_pending_items"


class TestCallerIdSelection:
    @pytest.mark.asyncio
    async def test_fixed_caller_id_used(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
        call_service: MockCallInitiationService,
    ) -> None:
        broadcast = await factory.running_broadcast(caller_id="+18005550199")
        await factory.phone_number("+14155550100")
        await factory.item(broadcast)

        await dispatcher.tick(broadcast.id)

        request = call_service.get_last_call()
        assert request is not None
        assert request.caller_id == "+18005550199"

    @pytest.mark.asyncio
    async def test_local_presence_preferred_and_usage_recorded(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
        call_service: MockCallInitiationService,
    ) -> None:
        broadcast = await factory.running_broadcast()
        await factory.phone_number("+12125550100")
        local = await factory.phone_number("+14155550100")
        await factory.item(broadcast, "+14155557777")

        await dispatcher.tick(broadcast.id)

        request = call_service.get_last_call()
        assert request is not None
        assert request.caller_id == "+14155550100"

        stmt = (
            select(PhoneNumber)
            .where(PhoneNumber.id == local.id)
            .execution_options(populate_existing=True)
        )
        stored = (await session.execute(stmt)).scalar_one()
        assert stored.daily_calls == 1

    @pytest.mark.asyncio
    async def test_agent_only_numbers_excluded_for_recorded_audio(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
        call_service: MockCallInitiationService,
    ) -> None:
        broadcast = await factory.running_broadcast(ivr_mode=IvrMode.DTMF)
        await factory.phone_number("+14155550100", agent_only=True)
        await factory.phone_number("+12125550100")
        await factory.item(broadcast, "+14155557777")

        await dispatcher.tick(broadcast.id)

        request = call_service.get_last_call()
        assert request is not None
        assert request.caller_id == "+12125550100"

    @pytest.mark.asyncio
    async def test_spam_and_quarantined_numbers_never_used(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
        call_service: MockCallInitiationService,
    ) -> None:
        """A worn-out clean number beats local numbers that are flagged or quarantined."""
        broadcast = await factory.running_broadcast()
        await factory.phone_number("+14155550100", is_spam=True)
        await factory.phone_number("+14155550101", quarantine_until=NOW + timedelta(days=1))
        await factory.phone_number("+12125550100", daily_calls=80)
        await factory.item(broadcast, "+14155557777")

        await dispatcher.tick(broadcast.id)

        request = call_service.get_last_call()
        assert request is not None
        assert request.caller_id == "+12125550100"

    @pytest.mark.asyncio
    async def test_no_caller_id_when_only_ineligible_numbers(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
        call_service: MockCallInitiationService,
    ) -> None:
        broadcast = await factory.running_broadcast()
        await factory.phone_number("+14155550100", is_spam=True)
        await factory.phone_number("+14155550101", quarantine_until=NOW + timedelta(hours=2))
        await factory.item(broadcast, "+14155557777")

        await dispatcher.tick(broadcast.id)

        request = call_service.get_last_call()
        assert request is not None
        assert request.caller_id is None

    @pytest.mark.asyncio
    async def test_expired_quarantine_number_is_eligible_again(
        self,
        session: AsyncSession,
        factory: Factory,
        dispatcher: Dispatcher,
        call_service: MockCallInitiationService,
    ) -> None:
        broadcast = await factory.running_broadcast()
        await factory.phone_number("+14155550101", quarantine_until=NOW - timedelta(minutes=1))
        await factory.item(broadcast, "+14155557777")

        await dispatcher.tick(broadcast.id)

        request = call_service.get_last_call()
        assert request is not None
        assert request.caller_id == "+14155550101"


class TestClaimCompareAndSwap:
    """WorkItemRepository.claim is the only path from pending to calling."""

    @pytest.mark.asyncio
    async def test_second_claim_on_same_item_is_lost(
        self, session: AsyncSession, factory: Factory
    ) -> None:
        broadcast = await factory.running_broadcast()
        item = await factory.item(broadcast)
        repository = WorkItemRepository(session)

        first = await repository.claim(item.id, broadcast.id, NOW, concurrency_ceiling=5)
        second = await repository.claim(item.id, broadcast.id, NOW, concurrency_ceiling=5)

        assert first == 1
        assert second is None
        stored = await repository.get(item.id)
        assert stored is not None
        assert stored.attempts == 1

    @pytest.mark.asyncio
    async def test_claim_rejected_once_ceiling_reached(
        self, session: AsyncSession, factory: Factory
    ) -> None:
        broadcast = await factory.running_broadcast()
        await factory.item(broadcast, status=WorkItemStatus.CALLING, attempts=1)
        await factory.item(broadcast, status=WorkItemStatus.IN_PROGRESS, attempts=1)
        item = await factory.item(broadcast)
        repository = WorkItemRepository(session)

        assert await repository.claim(item.id, broadcast.id, NOW, concurrency_ceiling=2) is None

        stored = await repository.get(item.id)
        assert stored is not None
        assert stored.status is WorkItemStatus.PENDING
        assert stored.attempts == 0
        assert await repository.claim(item.id, broadcast.id, NOW, concurrency_ceiling=3) == 1

    @pytest.mark.asyncio
    async def test_exhausted_item_cannot_be_claimed(
        self, session: AsyncSession, factory: Factory
    ) -> None:
        broadcast = await factory.running_broadcast()
        item = await factory.item(broadcast, attempts=3, max_attempts=3)

        claimed = await WorkItemRepository(session).claim(
            item.id, broadcast.id, NOW, concurrency_ceiling=5
        )

        assert claimed is None

    @pytest.mark.asyncio
    async def test_interleaved_claimers_with_stale_pending_lists_respect_ceiling(
        self, session: AsyncSession, factory: Factory
    ) -> None:
        """Two claimers read the same pending list, then race for every item."""
        broadcast = await factory.running_broadcast()
        await factory.items(broadcast, 5)
        first = WorkItemRepository(session)
        second = WorkItemRepository(session)

        seen_by_first = await first.list_pending(broadcast.id, NOW, limit=5)
        seen_by_second = await second.list_pending(broadcast.id, NOW, limit=5)
        outcomes = []
        for mine, theirs in zip(seen_by_first, seen_by_second):
            outcomes.append(await first.claim(mine.id, broadcast.id, NOW, concurrency_ceiling=2))
            outcomes.append(await second.claim(theirs.id, broadcast.id, NOW, concurrency_ceiling=2))

        assert sum(1 for o in outcomes if o is not None) == 2
        assert await first.count_active(broadcast.id) == 2

    @pytest.mark.asyncio
    async def test_two_dispatchers_share_one_ceiling(
        self,
        session: AsyncSession,
        factory: Factory,
        clock: FrozenClock,
        test_settings: Settings,
    ) -> None:
        broadcast = await factory.running_broadcast()
        await factory.concurrency(max_concurrent_calls=3)
        await factory.items(broadcast, 8)
        first_service = MockCallInitiationService()
        second_service = MockCallInitiationService()
        first = Dispatcher(session, first_service, clock=clock, settings=test_settings)
        second = Dispatcher(session, second_service, clock=clock, settings=test_settings)

        results = [
            await first.tick(broadcast.id),
            await second.tick(broadcast.id),
            await first.tick(broadcast.id),
            await second.tick(broadcast.id),
        ]

        assert sum(r.claimed for r in results) == 3
        assert len(first_service.calls) + len(second_service.calls) == 3
        assert await WorkItemRepository(session).count_active(broadcast.id) == 3
