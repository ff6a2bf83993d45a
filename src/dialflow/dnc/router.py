"""
API router for the tenant do-not-call list.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from dialflow.dependencies import TenantId
from dialflow.dnc.models import DncSource
from dialflow.dnc.schemas import (
    DncCreateRequest,
    DncEntryResponse,
    DncImportResponse,
    DncListResponse,
)
from dialflow.dnc.service import DoNotCallRegistry
from dialflow.shared.database import get_db_session
from dialflow.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/dnc", tags=["dnc"])


def get_dnc_registry(
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> DoNotCallRegistry:
    """Dependency for the DNC registry."""
    return DoNotCallRegistry(session=session)


@router.post(
    "/import",
    response_model=DncImportResponse,
    status_code=status.HTTP_200_OK,
    summary="Import DNC numbers from CSV",
    description="CSV must have a 'phone_number' or 'phone' column; 'reason' is optional.",
)
async def import_dnc(
    file: Annotated[UploadFile, File(description="CSV file with phone numbers")],
    tenant_id: TenantId,
    registry: Annotated[DoNotCallRegistry, Depends(get_dnc_registry)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    reason: Annotated[
        str | None,
        Query(description="Default reason for rows without one"),
    ] = None,
) -> DncImportResponse:
    if not file.filename or not file.filename.lower().endswith(".csv"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="File must be a CSV file",
        )

    content = await file.read()
    if not content:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="File is empty",
        )

    result = await registry.import_csv(tenant_id, content, reason=reason)
    await session.commit()
    return result


@router.post(
    "",
    response_model=DncEntryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add phone number to the DNC list",
)
async def create_dnc_entry(
    request: DncCreateRequest,
    tenant_id: TenantId,
    registry: Annotated[DoNotCallRegistry, Depends(get_dnc_registry)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> DncEntryResponse:
    entry = await registry.add(
        tenant_id,
        request.phone_number,
        source=DncSource.API,
        reason=request.reason,
    )
    await session.commit()
    return DncEntryResponse.model_validate(entry)


@router.get(
    "",
    response_model=DncListResponse,
    summary="List DNC entries",
)
async def list_dnc_entries(
    tenant_id: TenantId,
    registry: Annotated[DoNotCallRegistry, Depends(get_dnc_registry)],
    page: Annotated[int, Query(ge=1, description="Page number")] = 1,
    page_size: Annotated[int, Query(ge=1, le=100, description="Items per page")] = 50,
) -> DncListResponse:
    entries, total = await registry.list_entries(tenant_id, page=page, page_size=page_size)
    total_pages = (total + page_size - 1) // page_size
    return DncListResponse(
        items=[DncEntryResponse.model_validate(e) for e in entries],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
    )


@router.delete(
    "/{entry_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove DNC entry",
)
async def delete_dnc_entry(
    entry_id: UUID,
    tenant_id: TenantId,
    registry: Annotated[DoNotCallRegistry, Depends(get_dnc_registry)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> None:
    deleted = await registry.remove(tenant_id, entry_id)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="DNC entry not found",
        )
    await session.commit()
