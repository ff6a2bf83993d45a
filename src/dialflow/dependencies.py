"""
Shared FastAPI dependencies.
"""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status

from dialflow.telephony.factory import get_call_service
from dialflow.telephony.interface import CallInitiationService


async def get_tenant_id(
    x_tenant_id: Annotated[str | None, Header(alias="X-Tenant-ID")] = None,
) -> UUID:
    """Resolve the calling tenant from the ``X-Tenant-ID`` header."""
    if not x_tenant_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Tenant-ID header",
        )
    try:
        return UUID(x_tenant_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID must be a UUID",
        ) from None


def get_call_initiation_service() -> CallInitiationService:
    """Dependency returning the process-wide call initiation service."""
    return get_call_service()


TenantId = Annotated[UUID, Depends(get_tenant_id)]
