"""Administration slot generation, due/missed sweeps and slot resolution."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from contextlib import AsyncExitStack
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from medsafe.core.errors import (
    ClinicalSafetyError,
    ConflictError,
    CustodyError,
    NotFoundError,
    SchedulingInconsistency,
    ValidationError,
)
from medsafe.core.locks import prescription_locks, stock_item_locks
from medsafe.core.settings import EngineConfig
from medsafe.db.types import coerce_utc, utcnow
from medsafe.models.administration import (
    UNRESOLVED_SLOT_STATUSES,
    AdministrationSlot,
    SlotOutcome,
    SlotStatus,
)
from medsafe.models.custody import CustodyEntryType
from medsafe.models.medication import MedicationRecord
from medsafe.models.prescription import Prescription, PrescriptionStatus
from medsafe.models.screening import ScreeningPurpose
from medsafe.services import (
    alert_service,
    audit_service,
    custody_service,
    screening_service,
)
from medsafe.services.frequency import Cadence, expand_dose_times, parse_frequency

logger = logging.getLogger(__name__)

_OUTCOME_STATUS = {
    SlotOutcome.ADMINISTERED: SlotStatus.ADMINISTERED,
    SlotOutcome.REFUSED: SlotStatus.REFUSED,
    SlotOutcome.BLOCKED: SlotStatus.BLOCKED,
}


def _now(now: datetime | None) -> datetime:
    return coerce_utc(now) if now else utcnow()


async def get_slot(session: AsyncSession, *, slot_id: uuid.UUID) -> AdministrationSlot:
    slot = await session.get(AdministrationSlot, slot_id)
    if slot is None:
        raise NotFoundError("Administration slot not found", slot_id=str(slot_id))
    return slot


async def list_slots(
    session: AsyncSession,
    *,
    prescription_id: uuid.UUID,
    statuses: set[SlotStatus] | None = None,
) -> Sequence[AdministrationSlot]:
    stmt = select(AdministrationSlot).where(
        AdministrationSlot.prescription_id == prescription_id
    )
    if statuses:
        stmt = stmt.where(AdministrationSlot.status.in_(list(statuses)))
    result = await session.execute(stmt.order_by(AdministrationSlot.scheduled_at))
    return result.scalars().all()


async def _assert_no_duplicates(session: AsyncSession, prescription_id: uuid.UUID) -> None:
    stmt = (
        select(AdministrationSlot.scheduled_at, func.count())
        .where(AdministrationSlot.prescription_id == prescription_id)
        .group_by(AdministrationSlot.scheduled_at)
        .having(func.count() > 1)
    )
    duplicates = (await session.execute(stmt)).all()
    if duplicates:
        raise SchedulingInconsistency(
            f"Duplicate slots for prescription {prescription_id}",
            prescription_id=str(prescription_id),
            scheduled_at=[str(row[0]) for row in duplicates],
        )


async def generate_slots(
    session: AsyncSession,
    *,
    prescription: Prescription,
    config: EngineConfig,
    not_before: datetime | None = None,
    now: datetime | None = None,
) -> list[AdministrationSlot]:
    """Create the missing slots for an active prescription; existing times are skipped.

    The caller owns the transaction and holds the prescription lock.
    """
    if prescription.status is not PrescriptionStatus.ACTIVE:
        raise ValidationError(
            "Slots are only generated for active prescriptions",
            prescription_id=str(prescription.id),
        )
    current = _now(now)
    floor = coerce_utc(not_before) if not_before else None
    cadence = parse_frequency(prescription.frequency, config)

    existing_rows = await session.execute(
        select(AdministrationSlot.scheduled_at).where(
            AdministrationSlot.prescription_id == prescription.id
        )
    )
    existing = {coerce_utc(value) for value in existing_rows.scalars().all()}

    if cadence is Cadence.PRN:
        return []
    if cadence is Cadence.STAT:
        if existing:
            return []
        times = [floor or current]
    else:
        times = expand_dose_times(
            prescription.frequency,
            start_date=prescription.start_date,
            end_date=prescription.end_date,
            config=config,
            horizon_end=(floor or current) + config.open_ended_horizon,
            not_before=floor,
        )

    created: list[AdministrationSlot] = []
    for scheduled_at in times:
        if scheduled_at in existing:
            continue
        existing.add(scheduled_at)
        slot = AdministrationSlot(
            prescription_id=prescription.id,
            scheduled_at=scheduled_at,
            status=SlotStatus.DUE if cadence is Cadence.STAT else SlotStatus.PENDING,
        )
        session.add(slot)
        created.append(slot)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise SchedulingInconsistency(
            f"Duplicate slot insert for prescription {prescription.id}",
            prescription_id=str(prescription.id),
        ) from exc
    await _assert_no_duplicates(session, prescription.id)
    if created:
        logger.info(
            "Generated %s slot(s) for prescription %s (%s)",
            len(created),
            prescription.id,
            prescription.frequency,
        )
    return created


async def report_inconsistency(
    session: AsyncSession, *, prescription_id: uuid.UUID, error: SchedulingInconsistency
) -> None:
    """Log and alert a scheduling defect after the failed transaction rolled back."""
    logger.error("Scheduling inconsistency on %s: %s", prescription_id, error.message)
    await alert_service.raise_scheduling_inconsistency(
        session, prescription_id=prescription_id, detail=error.message
    )


async def cancel_pending_slots(
    session: AsyncSession,
    *,
    prescription_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
    after: datetime | None = None,
    statuses: frozenset[SlotStatus] = UNRESOLVED_SLOT_STATUSES,
) -> int:
    """Mark unresolved slots cancelled; resolved slots are never touched. No commit."""
    stmt = select(AdministrationSlot).where(
        AdministrationSlot.prescription_id == prescription_id,
        AdministrationSlot.status.in_(list(statuses)),
    )
    if after is not None:
        stmt = stmt.where(AdministrationSlot.scheduled_at >= coerce_utc(after))
    slots = (await session.execute(stmt)).scalars().all()
    for slot in slots:
        slot.status = SlotStatus.CANCELLED
        slot.updated_by = actor_id
    await session.flush()
    return len(slots)


async def extend_open_ended_schedules(
    session: AsyncSession, *, config: EngineConfig, now: datetime | None = None
) -> int:
    """Top up the rolling horizon of active prescriptions without an end date."""
    current = _now(now)
    result = await session.execute(
        select(Prescription.id).where(
            Prescription.status == PrescriptionStatus.ACTIVE,
            Prescription.end_date.is_(None),
        )
    )
    total = 0
    for prescription_id in result.scalars().all():
        async with prescription_locks.hold(prescription_id):
            prescription = await session.get(Prescription, prescription_id)
            if prescription is None:
                continue
            await session.refresh(prescription)
            if prescription.status is not PrescriptionStatus.ACTIVE:
                continue
            try:
                created = await generate_slots(
                    session,
                    prescription=prescription,
                    config=config,
                    not_before=current,
                    now=current,
                )
                await session.commit()
            except SchedulingInconsistency as exc:
                await session.rollback()
                await report_inconsistency(
                    session, prescription_id=prescription_id, error=exc
                )
                continue
            total += len(created)
    return total


async def promote_due_slots(session: AsyncSession, *, now: datetime | None = None) -> int:
    """Move pending slots whose time has arrived to due."""
    current = _now(now)
    result = await session.execute(
        update(AdministrationSlot)
        .where(
            AdministrationSlot.status == SlotStatus.PENDING,
            AdministrationSlot.scheduled_at <= current,
        )
        .values(status=SlotStatus.DUE, updated_at=current)
        .execution_options(synchronize_session="fetch")
    )
    await session.commit()
    promoted = result.rowcount or 0
    if promoted:
        logger.info("Promoted %s slot(s) to due", promoted)
    return promoted


async def mark_missed_slots(
    session: AsyncSession, *, config: EngineConfig, now: datetime | None = None
) -> list[AdministrationSlot]:
    """Mark unresolved slots past the grace window as missed and alert on each."""
    current = _now(now)
    cutoff = current - config.missed_grace
    result = await session.execute(
        select(AdministrationSlot.id, AdministrationSlot.prescription_id)
        .where(
            AdministrationSlot.status.in_(list(UNRESOLVED_SLOT_STATUSES)),
            AdministrationSlot.scheduled_at <= cutoff,
        )
        .order_by(AdministrationSlot.scheduled_at)
    )
    missed: list[AdministrationSlot] = []
    for slot_id, prescription_id in result.all():
        async with prescription_locks.hold(prescription_id):
            slot = await session.get(AdministrationSlot, slot_id)
            if slot is None:
                continue
            await session.refresh(slot)
            if slot.status not in UNRESOLVED_SLOT_STATUSES:
                continue
            slot.status = SlotStatus.MISSED
            await alert_service.raise_missed_dose(
                session,
                slot_id=slot.id,
                prescription_id=prescription_id,
                scheduled_at=slot.scheduled_at,
                commit=False,
                now=current,
            )
            await alert_service.commit_and_dispatch(session)
            missed.append(slot)
    if missed:
        logger.warning("Marked %s slot(s) missed", len(missed))
    return missed


def _check_resolvable(
    slot: AdministrationSlot, *, now: datetime, config: EngineConfig
) -> None:
    if slot.status in {SlotStatus.DUE, SlotStatus.MISSED}:
        return
    if slot.status is SlotStatus.PENDING:
        if slot.scheduled_at - now <= config.early_window:
            return
        raise ValidationError(
            "Slot is not yet within the administration window",
            slot_id=str(slot.id),
            scheduled_at=slot.scheduled_at.isoformat(),
        )
    raise ConflictError(
        f"Slot is already {slot.status.value}", slot_id=str(slot.id)
    )


async def _screen_for_administration(
    session: AsyncSession,
    *,
    prescription: Prescription,
    slot_id: uuid.UUID | None,
    actor_id: uuid.UUID,
    override_reason: str | None,
) -> screening_service.ScreeningOutcome:
    """Screen before any lock; a block without override is alerted and raised."""
    outcome = await screening_service.screen_candidate(
        session,
        resident_id=prescription.resident_id,
        medication_id=prescription.medication_id,
        actor_id=actor_id,
        purpose=ScreeningPurpose.ADMINISTRATION,
        prescription_id=prescription.id,
        exclude_prescription_id=prescription.id,
        slot_id=slot_id,
    )
    if outcome.blocking and not override_reason:
        alert = await alert_service.raise_safety_block(
            session,
            subject_type="slot" if slot_id else "prescription",
            subject_id=slot_id or prescription.id,
            summary=outcome.summary(),
            screening_id=outcome.screening_id,
        )
        logger.warning(
            "Administration on prescription %s blocked: %s",
            prescription.id,
            outcome.summary(),
        )
        raise ClinicalSafetyError(
            "Administration blocked by a contraindicated-or-worse finding",
            findings=list(outcome.findings),
            screening_id=outcome.screening_id,
            alert_id=alert.id,
        )
    return outcome


async def _apply_administration(
    session: AsyncSession,
    *,
    slot: AdministrationSlot,
    prescription: Prescription,
    medication: MedicationRecord,
    screening: screening_service.ScreeningOutcome,
    actor_id: uuid.UUID,
    config: EngineConfig,
    now: datetime,
    override_reason: str | None,
    witnesses: dict[str, object],
) -> None:
    if screening.blocking and override_reason:
        await screening_service.mark_overridden(
            session, screening_id=screening.screening_id, reason=override_reason
        )
        slot.override_reason = override_reason
        await audit_service.record_event(
            session,
            event_type="administration.contraindicated_override",
            actor_id=actor_id,
            subject_type="slot",
            subject_id=slot.id,
            description=override_reason,
            payload={
                "prescription_id": str(prescription.id),
                "screening_id": str(screening.screening_id),
                "findings": [finding.to_payload() for finding in screening.findings],
            },
        )
        logger.warning(
            "Contraindicated administration overridden on slot %s by %s", slot.id, actor_id
        )
    if medication.is_controlled:
        if prescription.stock_item_id is None:
            raise CustodyError(
                "Controlled prescription has no stock item", reason="stock_item_missing"
            )
        entry = await custody_service.append_entry_in_transaction(
            session,
            stock_item_id=prescription.stock_item_id,
            entry_type=CustodyEntryType.ADMINISTRATION,
            quantity_delta=-Decimal(prescription.dose_quantity),
            actor_id=actor_id,
            config=config,
            slot_id=slot.id,
            recorded_at=now,
            note=f"Administration of prescription {prescription.id}",
            **witnesses,
        )
        slot.custody_entry_id = entry.id


async def resolve_slot(
    session: AsyncSession,
    *,
    slot_id: uuid.UUID,
    outcome: SlotOutcome,
    actor_id: uuid.UUID,
    config: EngineConfig,
    note: str | None = None,
    override_reason: str | None = None,
    witness1_id: uuid.UUID | None = None,
    witness1_attested_at: datetime | None = None,
    witness2_id: uuid.UUID | None = None,
    witness2_attested_at: datetime | None = None,
    now: datetime | None = None,
) -> AdministrationSlot:
    """Record the outcome of a slot, atomically with any custody entry it requires."""
    outcome = SlotOutcome(outcome)
    current = _now(now)
    slot = await get_slot(session, slot_id=slot_id)
    _check_resolvable(slot, now=current, config=config)
    prescription = await session.get(Prescription, slot.prescription_id)
    if prescription is None:
        raise SchedulingInconsistency(
            "Slot references a missing prescription", slot_id=str(slot_id)
        )
    medication = await session.get(MedicationRecord, prescription.medication_id)
    stock_item_id = prescription.stock_item_id

    screening: screening_service.ScreeningOutcome | None = None
    if outcome is SlotOutcome.ADMINISTERED:
        screening = await _screen_for_administration(
            session,
            prescription=prescription,
            slot_id=slot.id,
            actor_id=actor_id,
            override_reason=override_reason,
        )
    elif outcome is SlotOutcome.BLOCKED:
        if override_reason:
            raise ValidationError("A blocked outcome cannot carry a clinical override")
        screening = await screening_service.screen_candidate(
            session,
            resident_id=prescription.resident_id,
            medication_id=prescription.medication_id,
            actor_id=actor_id,
            purpose=ScreeningPurpose.ADMINISTRATION,
            prescription_id=prescription.id,
            exclude_prescription_id=prescription.id,
            slot_id=slot.id,
        )
        if not screening.blocking:
            raise ValidationError(
                "A slot can only be blocked when screening finds a contraindicated-or-worse risk",
                screening_id=str(screening.screening_id),
            )

    controlled = outcome is SlotOutcome.ADMINISTERED and medication.is_controlled
    async with AsyncExitStack() as stack:
        await stack.enter_async_context(prescription_locks.hold(prescription.id))
        if controlled and prescription.stock_item_id is not None:
            await stack.enter_async_context(
                stock_item_locks.hold(prescription.stock_item_id)
            )
        await session.refresh(slot)
        _check_resolvable(slot, now=current, config=config)
        prior_status = slot.status
        try:
            if outcome is SlotOutcome.ADMINISTERED:
                await _apply_administration(
                    session,
                    slot=slot,
                    prescription=prescription,
                    medication=medication,
                    screening=screening,
                    actor_id=actor_id,
                    config=config,
                    now=current,
                    override_reason=override_reason,
                    witnesses={
                        "witness1_id": witness1_id,
                        "witness1_attested_at": witness1_attested_at,
                        "witness2_id": witness2_id,
                        "witness2_attested_at": witness2_attested_at,
                    },
                )
                slot.administered_late = (
                    prior_status is SlotStatus.MISSED
                    or current > slot.scheduled_at + config.missed_grace
                )
            elif outcome is SlotOutcome.BLOCKED:
                await alert_service.raise_safety_block(
                    session,
                    subject_type="slot",
                    subject_id=slot.id,
                    summary=screening.summary(),
                    screening_id=screening.screening_id,
                    commit=False,
                )
            slot.status = _OUTCOME_STATUS[outcome]
            slot.resolved_at = current
            slot.resolved_by = actor_id
            slot.updated_by = actor_id
            slot.note = note
            if screening is not None:
                slot.screening_id = screening.screening_id
            await audit_service.record_event(
                session,
                event_type="slot.resolved",
                actor_id=actor_id,
                subject_type="slot",
                subject_id=slot.id,
                description=note,
                payload={
                    "outcome": outcome.value,
                    "prior_status": prior_status.value,
                    "prescription_id": str(prescription.id),
                    "administered_late": slot.administered_late,
                    "custody_entry_id": (
                        str(slot.custody_entry_id) if slot.custody_entry_id else None
                    ),
                },
            )
            await alert_service.commit_and_dispatch(session)
        except CustodyError as exc:
            await session.rollback()
            if stock_item_id is not None:
                await custody_service.record_rejection(
                    session, stock_item_id=stock_item_id, error=exc
                )
            raise
        except IntegrityError as exc:
            await session.rollback()
            raise ConflictError(
                "Concurrent update while resolving slot; retry", slot_id=str(slot_id)
            ) from exc
    logger.info(
        "Slot %s resolved %s by %s%s",
        slot.id,
        slot.status.value,
        actor_id,
        " (late)" if slot.administered_late else "",
    )
    return slot


async def _last_prn_administration(
    session: AsyncSession, prescription_id: uuid.UUID
) -> datetime | None:
    result = await session.execute(
        select(func.max(AdministrationSlot.scheduled_at)).where(
            AdministrationSlot.prescription_id == prescription_id,
            AdministrationSlot.is_prn.is_(True),
            AdministrationSlot.status == SlotStatus.ADMINISTERED,
        )
    )
    value = result.scalar_one_or_none()
    return coerce_utc(value) if value else None


async def _check_prn_interval(
    session: AsyncSession, *, prescription_id: uuid.UUID, now: datetime, config: EngineConfig
) -> None:
    last = await _last_prn_administration(session, prescription_id)
    if last is not None and now - last < config.prn_min_interval:
        raise ValidationError(
            "Minimum interval between as-needed doses has not elapsed",
            prescription_id=str(prescription_id),
            last_dose_at=last.isoformat(),
            next_allowed_at=(last + config.prn_min_interval).isoformat(),
        )


async def record_prn_administration(
    session: AsyncSession,
    *,
    prescription_id: uuid.UUID,
    actor_id: uuid.UUID,
    config: EngineConfig,
    note: str | None = None,
    override_reason: str | None = None,
    witness1_id: uuid.UUID | None = None,
    witness1_attested_at: datetime | None = None,
    witness2_id: uuid.UUID | None = None,
    witness2_attested_at: datetime | None = None,
    now: datetime | None = None,
) -> AdministrationSlot:
    """Record an as-needed dose as an ad-hoc slot resolved at the time it was given."""
    current = _now(now)
    prescription = await session.get(Prescription, prescription_id)
    if prescription is None:
        raise NotFoundError("Prescription not found", prescription_id=str(prescription_id))
    if prescription.status is not PrescriptionStatus.ACTIVE:
        raise ValidationError("Prescription is not active", prescription_id=str(prescription_id))
    if parse_frequency(prescription.frequency, config) is not Cadence.PRN:
        raise ValidationError(
            "Ad-hoc doses are only recorded against as-needed prescriptions",
            prescription_id=str(prescription_id),
        )
    await _check_prn_interval(
        session, prescription_id=prescription_id, now=current, config=config
    )
    medication = await session.get(MedicationRecord, prescription.medication_id)
    stock_item_id = prescription.stock_item_id
    screening = await _screen_for_administration(
        session,
        prescription=prescription,
        slot_id=None,
        actor_id=actor_id,
        override_reason=override_reason,
    )

    async with AsyncExitStack() as stack:
        await stack.enter_async_context(prescription_locks.hold(prescription.id))
        if medication.is_controlled and prescription.stock_item_id is not None:
            await stack.enter_async_context(
                stock_item_locks.hold(prescription.stock_item_id)
            )
        await _check_prn_interval(
            session, prescription_id=prescription_id, now=current, config=config
        )
        slot = AdministrationSlot(
            prescription_id=prescription.id,
            scheduled_at=current,
            status=SlotStatus.DUE,
            is_prn=True,
        )
        session.add(slot)
        try:
            await session.flush()
            await _apply_administration(
                session,
                slot=slot,
                prescription=prescription,
                medication=medication,
                screening=screening,
                actor_id=actor_id,
                config=config,
                now=current,
                override_reason=override_reason,
                witnesses={
                    "witness1_id": witness1_id,
                    "witness1_attested_at": witness1_attested_at,
                    "witness2_id": witness2_id,
                    "witness2_attested_at": witness2_attested_at,
                },
            )
            slot.status = SlotStatus.ADMINISTERED
            slot.resolved_at = current
            slot.resolved_by = actor_id
            slot.updated_by = actor_id
            slot.note = note
            slot.screening_id = screening.screening_id
            await audit_service.record_event(
                session,
                event_type="slot.prn_administered",
                actor_id=actor_id,
                subject_type="slot",
                subject_id=slot.id,
                description=note,
                payload={"prescription_id": str(prescription.id)},
            )
            await session.commit()
        except CustodyError as exc:
            await session.rollback()
            if stock_item_id is not None:
                await custody_service.record_rejection(
                    session, stock_item_id=stock_item_id, error=exc
                )
            raise
        except IntegrityError as exc:
            await session.rollback()
            raise ConflictError(
                "An as-needed dose was already recorded at this time",
                prescription_id=str(prescription_id),
            ) from exc
    logger.info("As-needed dose recorded on prescription %s by %s", prescription.id, actor_id)
    return slot
