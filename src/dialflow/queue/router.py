"""
API router for a broadcast's work-item queue.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from dialflow.broadcasts.repository import BroadcastRepository
from dialflow.dependencies import TenantId
from dialflow.dispatch.retry import QueueManager
from dialflow.dispatch.sweeper import Sweeper
from dialflow.queue.admission import AdmissionFilter, Candidate, EnqueueResult
from dialflow.queue.schemas import (
    CountResponse,
    EnqueueLeadsRequest,
    EnqueueNumbersRequest,
    EnqueueResponse,
    QueueStatsResponse,
    RemoveItemsRequest,
    SweepResponse,
)
from dialflow.shared.database import get_db_session

router = APIRouter(prefix="/api/broadcasts/{broadcast_id}/queue", tags=["queue"])


def get_queue_manager(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> QueueManager:
    """Dependency for queue manager."""
    return QueueManager(session=session)


def get_admission_filter(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> AdmissionFilter:
    return AdmissionFilter(session=session)


def _enqueue_response(result: EnqueueResult) -> EnqueueResponse:
    return EnqueueResponse(
        added=result.added,
        skipped=result.skipped,
        dnc_filtered=result.dnc_filtered,
        invalid=result.invalid,
        duplicates=result.duplicates,
        total_items=result.total_items,
        reason=result.reason,
        message=result.describe() if result.added == 0 else f"{result.added} numbers added",
    )


@router.post(
    "/numbers",
    response_model=EnqueueResponse,
    status_code=status.HTTP_200_OK,
    summary="Enqueue phone numbers",
)
async def enqueue_numbers(
    broadcast_id: UUID,
    request: EnqueueNumbersRequest,
    tenant_id: TenantId,
    admission: Annotated[AdmissionFilter, Depends(get_admission_filter)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> EnqueueResponse:
    candidates: list[str | Candidate] = list(request.phone_numbers)
    candidates.extend(
        Candidate(
            phone_number=c.phone_number,
            lead_id=c.lead_id,
            name=c.name,
            priority=c.priority,
        )
        for c in request.candidates
    )
    result = await admission.enqueue(broadcast_id, candidates, tenant_id=tenant_id)
    await session.commit()
    return _enqueue_response(result)


@router.post(
    "/leads",
    response_model=EnqueueResponse,
    status_code=status.HTTP_200_OK,
    summary="Enqueue CRM leads",
)
async def enqueue_leads(
    broadcast_id: UUID,
    request: EnqueueLeadsRequest,
    tenant_id: TenantId,
    admission: Annotated[AdmissionFilter, Depends(get_admission_filter)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> EnqueueResponse:
    result = await admission.enqueue_leads(broadcast_id, request.lead_ids, tenant_id=tenant_id)
    await session.commit()
    return _enqueue_response(result)


@router.delete(
    "/pending",
    response_model=CountResponse,
    summary="Delete pending items",
)
async def clear_queue(
    broadcast_id: UUID,
    tenant_id: TenantId,
    manager: Annotated[QueueManager, Depends(get_queue_manager)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> CountResponse:
    removed = await manager.clear_queue(broadcast_id, tenant_id)
    await session.commit()
    return CountResponse(count=removed)


@router.post(
    "/remove",
    response_model=CountResponse,
    summary="Delete selected items",
)
async def remove_items(
    broadcast_id: UUID,
    request: RemoveItemsRequest,
    tenant_id: TenantId,
    manager: Annotated[QueueManager, Depends(get_queue_manager)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> CountResponse:
    removed = await manager.remove_items(broadcast_id, request.item_ids, tenant_id)
    await session.commit()
    return CountResponse(count=removed)


@router.post(
    "/reset",
    response_model=CountResponse,
    summary="Reset every item to pending",
)
async def reset_queue(
    broadcast_id: UUID,
    tenant_id: TenantId,
    manager: Annotated[QueueManager, Depends(get_queue_manager)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> CountResponse:
    result = await manager.reset_queue(broadcast_id, tenant_id)
    await session.commit()
    return CountResponse(count=result.reset)


@router.post(
    "/retry-failed",
    response_model=CountResponse,
    summary="Retry failed items",
)
async def retry_failed(
    broadcast_id: UUID,
    tenant_id: TenantId,
    manager: Annotated[QueueManager, Depends(get_queue_manager)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> CountResponse:
    result = await manager.retry_failed(broadcast_id, tenant_id)
    await session.commit()
    return CountResponse(count=result.retried)


@router.post(
    "/sweep",
    response_model=SweepResponse,
    summary="Reclaim stuck items now",
)
async def sweep_queue(
    broadcast_id: UUID,
    tenant_id: TenantId,
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> SweepResponse:
    await BroadcastRepository(session).get_or_raise(broadcast_id, tenant_id)
    result = await Sweeper(session).sweep(broadcast_id)
    await session.commit()
    return SweepResponse.model_validate(result)


@router.get(
    "/stats",
    response_model=QueueStatsResponse,
    summary="Queue statistics",
)
async def queue_stats(
    broadcast_id: UUID,
    tenant_id: TenantId,
    manager: Annotated[QueueManager, Depends(get_queue_manager)],
) -> QueueStatsResponse:
    stats = await manager.queue_stats(broadcast_id, tenant_id)
    return QueueStatsResponse.model_validate(stats)
