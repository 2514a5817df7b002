"""Read-only view of resident data the engine consumes (allergies, active medications)."""

from __future__ import annotations

import uuid
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medsafe.models.allergy import AllergyRecord
from medsafe.models.prescription import Prescription, PrescriptionStatus


async def list_allergies(
    session: AsyncSession, *, resident_id: uuid.UUID
) -> Sequence[AllergyRecord]:
    stmt = (
        select(AllergyRecord)
        .where(AllergyRecord.resident_id == resident_id, AllergyRecord.active.is_(True))
        .order_by(AllergyRecord.allergen)
    )
    result = await session.execute(stmt)
    return result.scalars().all()


async def list_active_prescriptions(
    session: AsyncSession,
    *,
    resident_id: uuid.UUID,
    exclude_prescription_id: uuid.UUID | None = None,
) -> Sequence[Prescription]:
    """Active prescriptions of the resident, each with its medication loaded."""
    stmt = select(Prescription).where(
        Prescription.resident_id == resident_id,
        Prescription.status == PrescriptionStatus.ACTIVE,
    )
    if exclude_prescription_id is not None:
        stmt = stmt.where(Prescription.id != exclude_prescription_id)
    result = await session.execute(stmt.order_by(Prescription.created_at))
    return result.scalars().unique().all()


async def record_allergy(
    session: AsyncSession,
    *,
    resident_id: uuid.UUID,
    allergen: str,
    severity,
    actor_id: uuid.UUID,
    reaction: str | None = None,
) -> AllergyRecord:
    """Store an allergy on behalf of the resident service (seeding and tests)."""
    record = AllergyRecord(
        resident_id=resident_id,
        allergen=allergen,
        severity=severity,
        reaction=reaction,
        created_by=actor_id,
    )
    session.add(record)
    await session.commit()
    await session.refresh(record)
    return record
