"""
API router for broadcast lifecycle, readiness and manual dispatch.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from dialflow.broadcasts.schemas import (
    BroadcastCreateRequest,
    BroadcastResponse,
    ReadinessResponse,
    StartResponse,
)
from dialflow.broadcasts.service import BroadcastService
from dialflow.dependencies import TenantId, get_call_initiation_service
from dialflow.dispatch.dispatcher import Dispatcher
from dialflow.dispatch.schemas import DispatchResponse
from dialflow.pacing.schemas import (
    ConcurrencySettingsResponse,
    DialingRateResponse,
    PacingResponse,
    RecommendationResponse,
)
from dialflow.readiness.service import ReadinessPreflight
from dialflow.shared.database import get_db_session
from dialflow.telephony.interface import CallInitiationService

router = APIRouter(prefix="/api/broadcasts", tags=["broadcasts"])


def get_broadcast_service(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> BroadcastService:
    """Dependency for broadcast service."""
    return BroadcastService(session=session)


def get_dispatcher(
    session: Annotated[AsyncSession, Depends(get_db_session)],
    call_service: Annotated[CallInitiationService, Depends(get_call_initiation_service)],
) -> Dispatcher:
    return Dispatcher(session, call_service)


@router.post(
    "",
    response_model=BroadcastResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create broadcast",
)
async def create_broadcast(
    request: BroadcastCreateRequest,
    tenant_id: TenantId,
    service: Annotated[BroadcastService, Depends(get_broadcast_service)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> BroadcastResponse:
    broadcast = await service.create(tenant_id, **request.model_dump())
    await session.commit()
    return BroadcastResponse.model_validate(broadcast)


@router.get(
    "/{broadcast_id}",
    response_model=BroadcastResponse,
    summary="Get broadcast",
)
async def get_broadcast(
    broadcast_id: UUID,
    tenant_id: TenantId,
    service: Annotated[BroadcastService, Depends(get_broadcast_service)],
) -> BroadcastResponse:
    broadcast = await service.get(broadcast_id, tenant_id)
    return BroadcastResponse.model_validate(broadcast)


@router.get(
    "/{broadcast_id}/readiness",
    response_model=ReadinessResponse,
    summary="Run the readiness preflight",
)
async def check_readiness(
    broadcast_id: UUID,
    tenant_id: TenantId,
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> ReadinessResponse:
    result = await ReadinessPreflight(session).check_readiness(broadcast_id, tenant_id)
    return ReadinessResponse.model_validate(result)


@router.post(
    "/{broadcast_id}/start",
    response_model=StartResponse,
    summary="Start or resume broadcast",
    description="Runs the readiness preflight; a failing preflight returns started=false.",
)
async def start_broadcast(
    broadcast_id: UUID,
    tenant_id: TenantId,
    service: Annotated[BroadcastService, Depends(get_broadcast_service)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> StartResponse:
    result = await service.start(broadcast_id, tenant_id)
    await session.commit()
    return StartResponse.model_validate(result)


@router.post(
    "/{broadcast_id}/stop",
    response_model=BroadcastResponse,
    summary="Pause broadcast",
)
async def stop_broadcast(
    broadcast_id: UUID,
    tenant_id: TenantId,
    service: Annotated[BroadcastService, Depends(get_broadcast_service)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> BroadcastResponse:
    broadcast = await service.stop(broadcast_id, tenant_id)
    await session.commit()
    return BroadcastResponse.model_validate(broadcast)


@router.post(
    "/{broadcast_id}/dispatch",
    response_model=DispatchResponse,
    summary="Run one dispatcher tick",
)
async def dispatch_broadcast(
    broadcast_id: UUID,
    tenant_id: TenantId,
    service: Annotated[BroadcastService, Depends(get_broadcast_service)],
    dispatcher: Annotated[Dispatcher, Depends(get_dispatcher)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> DispatchResponse:
    await service.get(broadcast_id, tenant_id)
    result = await dispatcher.tick(broadcast_id)
    await session.commit()
    return DispatchResponse.model_validate(result)


@router.get(
    "/{broadcast_id}/pacing",
    response_model=PacingResponse,
    summary="Live pacing metrics",
)
async def get_pacing(
    broadcast_id: UUID,
    tenant_id: TenantId,
    service: Annotated[BroadcastService, Depends(get_broadcast_service)],
    dispatcher: Annotated[Dispatcher, Depends(get_dispatcher)],
) -> PacingResponse:
    broadcast = await service.get(broadcast_id, tenant_id)
    settings, recommendation, metrics = await dispatcher.pacing_for(broadcast)
    return PacingResponse(
        settings=ConcurrencySettingsResponse.model_validate(settings),
        metrics=DialingRateResponse.model_validate(metrics),
        recommendation=RecommendationResponse.model_validate(recommendation),
    )
