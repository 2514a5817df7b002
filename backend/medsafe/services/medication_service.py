"""Formulary management: publishing medication versions and screening rules."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from medsafe.core.errors import ConflictError, NotFoundError, ValidationError
from medsafe.db.types import utcnow
from medsafe.models.allergy import AllergySeverity
from medsafe.models.medication import (
    ContraindicationRule,
    ControlledSchedule,
    InteractionRule,
    InteractionSeverity,
    MedicationRecord,
    normalise_agent,
)
from medsafe.services import audit_service

logger = logging.getLogger(__name__)

_FORCEABLE_SEVERITIES = {item.value for item in InteractionSeverity} | {
    item.value for item in AllergySeverity
}


def _clean_ingredients(ingredients: list[str] | None) -> list[str]:
    cleaned: list[str] = []
    for item in ingredients or []:
        value = normalise_agent(item)
        if value and value not in cleaned:
            cleaned.append(value)
    return cleaned


async def get_medication(
    session: AsyncSession, *, medication_id: uuid.UUID
) -> MedicationRecord:
    medication = await session.get(MedicationRecord, medication_id)
    if medication is None:
        raise NotFoundError("Medication not found", medication_id=str(medication_id))
    return medication


async def list_versions(
    session: AsyncSession, *, lineage_id: uuid.UUID
) -> Sequence[MedicationRecord]:
    result = await session.execute(
        select(MedicationRecord)
        .where(MedicationRecord.lineage_id == lineage_id)
        .order_by(MedicationRecord.version)
    )
    return result.scalars().all()


async def publish_medication(
    session: AsyncSession,
    *,
    code: str,
    name: str,
    actor_id: uuid.UUID,
    strength: str | None = None,
    active_ingredients: list[str] | None = None,
    therapeutic_class: str | None = None,
    controlled_schedule: ControlledSchedule = ControlledSchedule.NONE,
) -> MedicationRecord:
    """Publish version 1 of a new medication lineage."""
    if not code.strip() or not name.strip():
        raise ValidationError("Medication code and name are required")
    existing = await session.execute(
        select(MedicationRecord.id).where(MedicationRecord.code == code.strip()).limit(1)
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError(
            "A medication with this code is already published; supersede it instead",
            code=code.strip(),
        )
    medication = MedicationRecord(
        code=code.strip(),
        name=name.strip(),
        strength=strength,
        active_ingredients=_clean_ingredients(active_ingredients),
        therapeutic_class=therapeutic_class,
        controlled_schedule=controlled_schedule,
        published_at=utcnow(),
        created_by=actor_id,
    )
    session.add(medication)
    await session.flush()
    await audit_service.record_event(
        session,
        event_type="medication.published",
        actor_id=actor_id,
        subject_type="medication",
        subject_id=medication.id,
        payload={"code": medication.code, "version": medication.version},
    )
    await session.commit()
    await session.refresh(medication)
    logger.info("Published medication %s v%s", medication.code, medication.version)
    return medication


async def supersede_medication(
    session: AsyncSession,
    *,
    medication_id: uuid.UUID,
    actor_id: uuid.UUID,
    name: str | None = None,
    strength: str | None = None,
    active_ingredients: list[str] | None = None,
    therapeutic_class: str | None = None,
    controlled_schedule: ControlledSchedule | None = None,
) -> MedicationRecord:
    """Publish a new version of a medication; the previous row is left untouched apart from its superseded stamp."""
    current = await get_medication(session, medication_id=medication_id)
    if not current.is_current:
        raise ConflictError(
            "Only the current version of a medication can be superseded",
            medication_id=str(medication_id),
        )
    now = utcnow()
    replacement = MedicationRecord(
        lineage_id=current.lineage_id,
        version=current.version + 1,
        code=current.code,
        name=(name or current.name).strip(),
        strength=strength if strength is not None else current.strength,
        active_ingredients=(
            _clean_ingredients(active_ingredients)
            if active_ingredients is not None
            else list(current.active_ingredients)
        ),
        therapeutic_class=(
            therapeutic_class if therapeutic_class is not None else current.therapeutic_class
        ),
        controlled_schedule=controlled_schedule or current.controlled_schedule,
        published_at=now,
        supersedes_id=current.id,
        created_by=actor_id,
    )
    current.superseded_at = now
    current.updated_by = actor_id
    session.add(replacement)
    try:
        await session.flush()
    except IntegrityError as exc:
        await session.rollback()
        raise ConflictError(
            "Medication was superseded concurrently", medication_id=str(medication_id)
        ) from exc
    await audit_service.record_event(
        session,
        event_type="medication.superseded",
        actor_id=actor_id,
        subject_type="medication",
        subject_id=replacement.id,
        payload={"supersedes_id": str(current.id), "version": replacement.version},
    )
    await session.commit()
    await session.refresh(replacement)
    logger.info(
        "Medication %s superseded by v%s", current.code, replacement.version
    )
    return replacement


async def add_interaction_rule(
    session: AsyncSession,
    *,
    agent_a: str,
    agent_b: str,
    severity: InteractionSeverity,
    evidence: str,
    actor_id: uuid.UUID,
) -> InteractionRule:
    left, right = sorted([normalise_agent(agent_a), normalise_agent(agent_b)])
    if not left or not right:
        raise ValidationError("Both interaction agents are required")
    if left == right:
        raise ValidationError("An interaction rule needs two different agents")
    rule = InteractionRule(
        agent_a=left, agent_b=right, severity=severity, evidence=evidence, created_by=actor_id
    )
    session.add(rule)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ConflictError("Interaction rule already exists") from exc
    await session.refresh(rule)
    return rule


async def add_contraindication_rule(
    session: AsyncSession,
    *,
    allergen: str,
    agent: str,
    evidence: str,
    actor_id: uuid.UUID,
    severity: str | None = None,
) -> ContraindicationRule:
    if severity is not None and severity not in _FORCEABLE_SEVERITIES:
        raise ValidationError(f"Unknown severity {severity!r}")
    rule = ContraindicationRule(
        allergen=normalise_agent(allergen),
        agent=normalise_agent(agent),
        severity=severity,
        evidence=evidence,
        created_by=actor_id,
    )
    session.add(rule)
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ConflictError("Contraindication rule already exists") from exc
    await session.refresh(rule)
    return rule


async def list_interaction_rules(session: AsyncSession) -> Sequence[InteractionRule]:
    result = await session.execute(select(InteractionRule))
    return result.scalars().all()


async def list_contraindication_rules(
    session: AsyncSession,
) -> Sequence[ContraindicationRule]:
    result = await session.execute(select(ContraindicationRule))
    return result.scalars().all()
