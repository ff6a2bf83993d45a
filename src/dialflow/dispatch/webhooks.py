"""
Webhook endpoint receiving call status updates from the telephony provider.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from dialflow.dispatch.callbacks import StatusCallbackHandler
from dialflow.dispatch.schemas import CallStatusResponse, CallStatusWebhook
from dialflow.shared.database import get_db_session

router = APIRouter(prefix="/webhooks/calls", tags=["webhooks"])


@router.post(
    "/status",
    response_model=CallStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Apply a call status update",
)
async def call_status(
    payload: CallStatusWebhook,
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> CallStatusResponse:
    result = await StatusCallbackHandler(session).apply(
        payload.status,
        work_item_id=payload.work_item_id,
        call_id=payload.call_id,
        dtmf=payload.dtmf,
    )
    await session.commit()
    return CallStatusResponse.model_validate(result)
