"""
Provider status callbacks applied to work items.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from dialflow.broadcasts.repository import BroadcastRepository
from dialflow.dnc.models import DncSource
from dialflow.dnc.service import DoNotCallRegistry
from dialflow.queue.models import (
    CALLBACK_TARGETS,
    WorkItem,
    WorkItemStatus,
    ensure_transition,
)
from dialflow.queue.repository import WorkItemRepository
from dialflow.shared.clock import Clock, utcnow
from dialflow.shared.exceptions import ValidationError, WorkItemNotFoundError
from dialflow.shared.logging import get_logger

logger = get_logger(__name__)

# Provider spellings mapped onto the closed status set.
STATUS_ALIASES: dict[str, WorkItemStatus] = {
    "no-answer": WorkItemStatus.NO_ANSWER,
    "in-progress": WorkItemStatus.IN_PROGRESS,
    "ringing": WorkItemStatus.IN_PROGRESS,
    "canceled": WorkItemStatus.FAILED,
    "cancelled": WorkItemStatus.FAILED,
    "voicemail": WorkItemStatus.COMPLETED,
}

DNC_ACTION = "dnc"


def parse_status(raw: str) -> WorkItemStatus:
    """Map a provider status string to a WorkItemStatus.

    Raises:
        ValidationError: If the string is not a known status.
    """
    value = raw.strip().lower()
    if value in STATUS_ALIASES:
        return STATUS_ALIASES[value]
    try:
        return WorkItemStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown call status: {raw}") from None


@dataclass
class CallbackResult:
    work_item_id: UUID
    applied: bool
    previous_status: WorkItemStatus
    status: WorkItemStatus


class StatusCallbackHandler:
    """Applies provider status updates through the transition table."""

    def __init__(self, session: AsyncSession, clock: Clock = utcnow) -> None:
        self._session = session
        self._clock = clock
        self._items = WorkItemRepository(session)
        self._broadcasts = BroadcastRepository(session)
        self._dnc = DoNotCallRegistry(session)

    async def apply(
        self,
        status: str,
        *,
        work_item_id: UUID | None = None,
        call_id: str | None = None,
        dtmf: str | None = None,
    ) -> CallbackResult:
        """Apply a status callback to the item it refers to.

        Args:
            status: Provider status string.
            work_item_id: Item id echoed back by the provider.
            call_id: Provider call id, used when no item id is given.
            dtmf: Digit pressed by the callee, if any.

        Returns:
            The previous and resulting status, and whether anything changed.

        Raises:
            ValidationError: If the status is unknown, is not a call outcome, or no
                item reference is given.
            WorkItemNotFoundError: If the referenced item does not exist.
            InvalidStatusTransitionError: If the transition is not allowed.
        """
        target = parse_status(status)
        if target not in CALLBACK_TARGETS:
            raise ValidationError(f"Call status '{target.value}' cannot be set by a callback")
        item = await self._load(work_item_id, call_id)
        now = self._clock()
        previous = item.status

        if dtmf:
            await self._items.update_fields(item.id, dtmf_pressed=dtmf[:8])
            if await self._digit_requests_dnc(item, dtmf):
                target = WorkItemStatus.DNC

        if target is previous:
            return CallbackResult(item.id, applied=False, previous_status=previous, status=previous)

        ensure_transition(previous, target)
        applied = await self._items.transition(item.id, expected=previous, target=target, now=now)
        if not applied:
            # Lost the race; report what the row holds now.
            current = await self._items.get(item.id)
            return CallbackResult(
                item.id,
                applied=False,
                previous_status=previous,
                status=current.status if current else previous,
            )

        if target is WorkItemStatus.DNC:
            await self._register_dnc(item)

        logger.info(
            "Applied status callback",
            extra={
                "work_item_id": str(item.id),
                "broadcast_id": str(item.broadcast_id),
                "previous_status": previous.value,
                "status": target.value,
            },
        )
        return CallbackResult(item.id, applied=True, previous_status=previous, status=target)

    async def _load(self, work_item_id: UUID | None, call_id: str | None) -> WorkItem:
        if work_item_id is not None:
            item = await self._items.get(work_item_id)
            if item is None:
                raise WorkItemNotFoundError(work_item_id)
            return item
        if call_id:
            item = await self._items.get_by_call_id(call_id)
            if item is None:
                raise WorkItemNotFoundError(call_id)
            return item
        raise ValidationError("Either work_item_id or call_id is required")

    async def _digit_requests_dnc(self, item: WorkItem, digit: str) -> bool:
        broadcast = await self._broadcasts.get(item.broadcast_id)
        if broadcast is None or not broadcast.ivr_enabled:
            return False
        for action in broadcast.dtmf_actions or []:
            if str(action.get("digit")) == digit and action.get("action") == DNC_ACTION:
                return True
        return False

    async def _register_dnc(self, item: WorkItem) -> None:
        broadcast = await self._broadcasts.get(item.broadcast_id)
        if broadcast is None:
            return
        await self._dnc.add(
            broadcast.tenant_id,
            item.phone_number,
            source=DncSource.CALLBACK,
            reason="Requested during broadcast call",
        )
        if item.lead_id is not None:
            await self._dnc.mark_lead(item.lead_id)
