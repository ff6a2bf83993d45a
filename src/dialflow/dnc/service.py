"""
Service layer for the do-not-call registry.
"""

import csv
import io
from typing import Sequence
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from dialflow.dnc.models import DncEntry, DncSource
from dialflow.dnc.repository import DncRepository
from dialflow.dnc.schemas import DncImportError, DncImportResponse
from dialflow.leads.models import Lead
from dialflow.queue.phone import normalize_phone_number
from dialflow.shared.exceptions import ValidationError
from dialflow.shared.logging import get_logger

logger = get_logger(__name__)


class DoNotCallRegistry:
    """Tenant-scoped do-not-call registry."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize registry with database session.

        Args:
            session: Async database session.
        """
        self._session = session
        self._repository = DncRepository(session)

    async def is_listed(self, tenant_id: UUID, phone_number: str) -> bool:
        """Check if a phone number is on the tenant's DNC list.

        Args:
            tenant_id: Owning tenant.
            phone_number: Phone number in any accepted format.

        Returns:
            True if listed.
        """
        normalized = normalize_phone_number(phone_number) or phone_number
        return await self._repository.get_by_phone(tenant_id, normalized) is not None

    async def listed_bulk(self, tenant_id: UUID, phone_numbers: Sequence[str]) -> set[str]:
        """Return which of the given E.164 numbers are listed."""
        return await self._repository.exists_bulk(tenant_id, phone_numbers)

    async def add(
        self,
        tenant_id: UUID,
        phone_number: str,
        source: DncSource = DncSource.API,
        reason: str | None = None,
    ) -> DncEntry:
        """Add a number to the DNC list; adding a listed number returns the existing entry.

        Args:
            tenant_id: Owning tenant.
            phone_number: Phone number in any accepted format.
            source: Where the request came from.
            reason: Optional reason.

        Returns:
            The DNC entry for the number.

        Raises:
            ValidationError: If the number cannot be normalized.
        """
        normalized = normalize_phone_number(phone_number)
        if not normalized:
            raise ValidationError(f"Invalid phone number format: {phone_number}")

        existing = await self._repository.get_by_phone(tenant_id, normalized)
        if existing is not None:
            return existing

        entry = await self._repository.create(
            tenant_id=tenant_id,
            phone_number=normalized,
            source=source,
            reason=reason,
        )
        logger.info(
            "Added number to DNC list",
            extra={
                "tenant_id": str(tenant_id),
                "dnc_entry_id": str(entry.id),
                "source": source.value,
            },
        )
        return entry

    async def remove(self, tenant_id: UUID, entry_id: UUID) -> bool:
        """Remove a DNC entry.

        Returns:
            True if deleted, False if not found.
        """
        deleted = await self._repository.delete(tenant_id, entry_id)
        if deleted:
            logger.info(
                "Removed DNC entry",
                extra={"tenant_id": str(tenant_id), "dnc_entry_id": str(entry_id)},
            )
        return deleted

    async def list_entries(
        self,
        tenant_id: UUID,
        page: int = 1,
        page_size: int = 50,
    ) -> tuple[Sequence[DncEntry], int]:
        return await self._repository.list_all(tenant_id, page=page, page_size=page_size)

    async def mark_lead(self, lead_id: UUID) -> None:
        """Flag the CRM lead as do-not-call."""
        await self._session.execute(
            update(Lead).where(Lead.id == lead_id).values(do_not_call=True)
        )

    async def import_csv(
        self,
        tenant_id: UUID,
        csv_content: str | bytes,
        reason: str | None = None,
    ) -> DncImportResponse:
        """Import DNC entries from CSV content.

        CSV format: phone_number or phone (required), reason (optional).

        Args:
            tenant_id: Owning tenant.
            csv_content: CSV file content as string or bytes.
            reason: Default reason to apply if not in CSV.

        Returns:
            Import result with counts and errors.
        """
        if isinstance(csv_content, bytes):
            csv_content = csv_content.decode("utf-8-sig")

        reader = csv.DictReader(io.StringIO(csv_content))
        if not reader.fieldnames:
            return _header_error("CSV file is empty or has no header")

        fieldnames = [f.lower().strip() for f in reader.fieldnames]
        if "phone_number" not in fieldnames and "phone" not in fieldnames:
            return _header_error("CSV must have 'phone_number' or 'phone' column")

        phone_col = "phone_number" if "phone_number" in fieldnames else "phone"
        reason_col = "reason" if "reason" in fieldnames else None

        errors: list[DncImportError] = []
        valid_entries: list[tuple[str, DncSource, str | None]] = []
        seen_phones: set[str] = set()

        for line_num, row in enumerate(reader, start=2):
            row = {(k or "").lower().strip(): (v or "") for k, v in row.items()}

            raw_phone = row.get(phone_col, "").strip()
            if not raw_phone:
                errors.append(
                    DncImportError(
                        line_number=line_num,
                        phone_number=None,
                        error="Phone number is required",
                    )
                )
                continue

            normalized = normalize_phone_number(raw_phone)
            if not normalized:
                errors.append(
                    DncImportError(
                        line_number=line_num,
                        phone_number=raw_phone,
                        error="Invalid phone number format (must be E.164)",
                    )
                )
                continue

            if normalized in seen_phones:
                errors.append(
                    DncImportError(
                        line_number=line_num,
                        phone_number=raw_phone,
                        error="Duplicate phone number in file",
                    )
                )
                continue
            seen_phones.add(normalized)

            row_reason = row.get(reason_col, "").strip() if reason_col else ""
            valid_entries.append((normalized, DncSource.IMPORT, row_reason or reason))

        inserted_count = await self._repository.create_bulk(tenant_id, valid_entries)
        duplicate_count = len(valid_entries) - inserted_count

        logger.info(
            "DNC CSV import completed",
            extra={
                "tenant_id": str(tenant_id),
                "accepted_count": inserted_count,
                "rejected_count": len(errors),
                "duplicate_count": duplicate_count,
            },
        )

        return DncImportResponse(
            accepted_count=inserted_count,
            rejected_count=len(errors),
            duplicate_count=duplicate_count,
            errors=errors,
        )


def _header_error(message: str) -> DncImportResponse:
    return DncImportResponse(
        accepted_count=0,
        rejected_count=0,
        duplicate_count=0,
        errors=[DncImportError(line_number=1, phone_number=None, error=message)],
    )
