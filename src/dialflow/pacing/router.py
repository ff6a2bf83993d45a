"""
API router for tenant concurrency settings and pacing history.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from dialflow.dependencies import TenantId
from dialflow.pacing.learner import HistoricalStat
from dialflow.pacing.repository import PacingRepository
from dialflow.pacing.schemas import (
    ConcurrencySettingsResponse,
    ConcurrencySettingsUpdate,
    HistoricalStatRequest,
    HistoricalStatResponse,
)
from dialflow.shared.clock import utcnow
from dialflow.shared.database import get_db_session
from dialflow.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/pacing", tags=["pacing"])


def get_pacing_repository(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> PacingRepository:
    return PacingRepository(session)


@router.get(
    "/settings",
    response_model=ConcurrencySettingsResponse,
    summary="Effective concurrency settings",
)
async def get_concurrency_settings(
    tenant_id: TenantId,
    repository: Annotated[PacingRepository, Depends(get_pacing_repository)],
    broadcast_id: Annotated[UUID | None, Query(description="Resolve a broadcast override")] = None,
) -> ConcurrencySettingsResponse:
    settings = await repository.get_settings(tenant_id, broadcast_id)
    return ConcurrencySettingsResponse.model_validate(settings)


@router.put(
    "/settings",
    response_model=ConcurrencySettingsResponse,
    summary="Update concurrency settings",
)
async def update_concurrency_settings(
    request: ConcurrencySettingsUpdate,
    tenant_id: TenantId,
    repository: Annotated[PacingRepository, Depends(get_pacing_repository)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> ConcurrencySettingsResponse:
    values = request.model_dump(exclude_unset=True, exclude_none=True, exclude={"broadcast_id"})
    try:
        settings = await repository.save_settings(
            tenant_id, values, broadcast_id=request.broadcast_id
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e
    await session.commit()

    logger.info(
        "Concurrency settings updated",
        extra={
            "tenant_id": str(tenant_id),
            "broadcast_id": str(request.broadcast_id) if request.broadcast_id else None,
            "fields": sorted(values),
        },
    )
    return ConcurrencySettingsResponse.model_validate(settings)


@router.post(
    "/stats",
    response_model=HistoricalStatResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Record a pacing sample",
)
async def append_stat(
    request: HistoricalStatRequest,
    tenant_id: TenantId,
    repository: Annotated[PacingRepository, Depends(get_pacing_repository)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> HistoricalStatResponse:
    stat = HistoricalStat(
        timestamp=request.timestamp or utcnow(),
        answer_rate=request.answer_rate,
        abandonment_rate=request.abandonment_rate,
        concurrent_calls=request.concurrent_calls,
    )
    record = await repository.append_stat(tenant_id, stat, broadcast_id=request.broadcast_id)
    await session.commit()
    return HistoricalStatResponse.model_validate(record)
