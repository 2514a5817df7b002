"""Prescription lifecycle: draft, activation, modification, expiry, discontinuation."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from medsafe.core.errors import (
    ConflictError,
    NotFoundError,
    SchedulingInconsistency,
    ValidationError,
)
from medsafe.core.locks import prescription_locks
from medsafe.core.settings import EngineConfig
from medsafe.db.types import coerce_utc, utcnow
from medsafe.models.administration import SlotStatus
from medsafe.models.custody import ControlledStockItem
from medsafe.models.medication import MedicationRecord
from medsafe.models.prescription import (
    TERMINAL_STATUSES,
    Prescription,
    PrescriptionStatus,
    PrescriptionTransition,
)
from medsafe.models.screening import ScreeningPurpose
from medsafe.services import audit_service, scheduling_service, screening_service
from medsafe.services.frequency import normalise_frequency, parse_frequency
from medsafe.services.identifier_service import normalise_identifier, validate_identifier

logger = logging.getLogger(__name__)

_ALLOWED_STATUS_TRANSITIONS: dict[PrescriptionStatus, set[PrescriptionStatus]] = {
    PrescriptionStatus.DRAFT: {PrescriptionStatus.ACTIVE},
    PrescriptionStatus.ACTIVE: {
        PrescriptionStatus.EXPIRED,
        PrescriptionStatus.DISCONTINUED,
        PrescriptionStatus.SUPERSEDED,
    },
    PrescriptionStatus.EXPIRED: set(),
    PrescriptionStatus.DISCONTINUED: set(),
    PrescriptionStatus.SUPERSEDED: set(),
}


def _validate_status_transition(
    current: PrescriptionStatus, target: PrescriptionStatus
) -> None:
    allowed = _ALLOWED_STATUS_TRANSITIONS.get(current, set())
    if target not in allowed:
        raise ValidationError(
            f"Invalid status transition from {current.value} to {target.value}",
            current=current.value,
            target=target.value,
        )


def _validate_window(start_date: date, end_date: date | None) -> None:
    if end_date is not None and end_date < start_date:
        raise ValidationError(
            "Prescription end date must not be before its start date",
            start_date=start_date.isoformat(),
            end_date=end_date.isoformat(),
        )


def _validate_resident_identifier(identifier: str | None) -> str | None:
    if identifier is None or not identifier.strip():
        return None
    if not validate_identifier(identifier):
        raise ValidationError("Resident clinical identifier failed its checksum")
    return normalise_identifier(identifier)


async def _validate_medication(
    session: AsyncSession,
    *,
    medication_id: uuid.UUID,
    stock_item_id: uuid.UUID | None,
    dose_quantity: Decimal,
) -> MedicationRecord:
    medication = await session.get(MedicationRecord, medication_id)
    if medication is None:
        raise ValidationError("Unknown medication", medication_id=str(medication_id))
    if not medication.is_current:
        raise ValidationError(
            "Medication version has been superseded; prescribe the current version",
            medication_id=str(medication_id),
        )
    if dose_quantity <= 0:
        raise ValidationError("Dose quantity must be positive")
    if medication.is_controlled:
        if stock_item_id is None:
            raise ValidationError(
                "Controlled medications must be prescribed against a stock item",
                medication_id=str(medication_id),
            )
        item = await session.get(ControlledStockItem, stock_item_id)
        if item is None:
            raise ValidationError("Unknown stock item", stock_item_id=str(stock_item_id))
        stock_medication = await session.get(MedicationRecord, item.medication_id)
        if stock_medication is None or stock_medication.lineage_id != medication.lineage_id:
            raise ValidationError(
                "Stock item holds a different medication", stock_item_id=str(stock_item_id)
            )
    elif stock_item_id is not None:
        raise ValidationError("Only controlled medications carry a stock item")
    return medication


def _validate_text(**fields: str | None) -> None:
    for name, value in fields.items():
        if value is None or not value.strip():
            raise ValidationError(f"{name} is required", field=name)


async def _record_transition(
    session: AsyncSession,
    *,
    prescription: Prescription,
    from_status: PrescriptionStatus | None,
    to_status: PrescriptionStatus,
    actor_id: uuid.UUID | None,
    reason: str,
    payload: dict[str, Any] | None = None,
) -> None:
    session.add(
        PrescriptionTransition(
            prescription_id=prescription.id,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            reason=reason[:1024],
        )
    )
    await audit_service.record_event(
        session,
        event_type=f"prescription.{to_status.value}",
        actor_id=actor_id,
        subject_type="prescription",
        subject_id=prescription.id,
        description=reason[:1024],
        payload={
            "from_status": from_status.value if from_status else None,
            "to_status": to_status.value,
            **(payload or {}),
        },
    )


async def _transition(
    session: AsyncSession,
    *,
    prescription: Prescription,
    target: PrescriptionStatus,
    actor_id: uuid.UUID | None,
    reason: str,
    now: datetime,
    payload: dict[str, Any] | None = None,
) -> None:
    current = prescription.status
    _validate_status_transition(current, target)
    prescription.status = target
    prescription.status_reason = reason[:1024]
    prescription.updated_by = actor_id
    if target is PrescriptionStatus.ACTIVE:
        prescription.activated_at = now
    elif target in TERMINAL_STATUSES:
        prescription.closed_at = now
    await _record_transition(
        session,
        prescription=prescription,
        from_status=current,
        to_status=target,
        actor_id=actor_id,
        reason=reason,
        payload=payload,
    )
    logger.info(
        "Prescription %s %s -> %s by %s", prescription.id, current.value, target.value, actor_id
    )


async def get_prescription(
    session: AsyncSession, *, prescription_id: uuid.UUID
) -> Prescription:
    prescription = await session.get(Prescription, prescription_id)
    if prescription is None:
        raise NotFoundError("Prescription not found", prescription_id=str(prescription_id))
    return prescription


async def list_prescription_history(
    session: AsyncSession, *, prescription_id: uuid.UUID
) -> Sequence[PrescriptionTransition]:
    await get_prescription(session, prescription_id=prescription_id)
    result = await session.execute(
        select(PrescriptionTransition)
        .where(PrescriptionTransition.prescription_id == prescription_id)
        .order_by(PrescriptionTransition.created_at)
    )
    return result.scalars().all()


async def create_prescription(
    session: AsyncSession,
    *,
    resident_id: uuid.UUID,
    medication_id: uuid.UUID,
    dosage: str,
    route: str,
    frequency: str,
    start_date: date,
    prescriber_id: uuid.UUID,
    actor_id: uuid.UUID,
    config: EngineConfig,
    end_date: date | None = None,
    resident_identifier: str | None = None,
    dose_quantity: Decimal | int | str = Decimal("1"),
    stock_item_id: uuid.UUID | None = None,
) -> Prescription:
    """Validate and store a draft prescription."""
    _validate_text(dosage=dosage, route=route)
    parse_frequency(frequency, config)
    _validate_window(start_date, end_date)
    identifier = _validate_resident_identifier(resident_identifier)
    quantity = Decimal(str(dose_quantity))
    await _validate_medication(
        session,
        medication_id=medication_id,
        stock_item_id=stock_item_id,
        dose_quantity=quantity,
    )

    prescription = Prescription(
        resident_id=resident_id,
        resident_identifier=identifier,
        medication_id=medication_id,
        dosage=dosage.strip(),
        route=route.strip(),
        frequency=normalise_frequency(frequency),
        start_date=start_date,
        end_date=end_date,
        prescriber_id=prescriber_id,
        status=PrescriptionStatus.DRAFT,
        dose_quantity=quantity,
        stock_item_id=stock_item_id,
        created_by=actor_id,
    )
    session.add(prescription)
    await session.flush()
    await _record_transition(
        session,
        prescription=prescription,
        from_status=None,
        to_status=PrescriptionStatus.DRAFT,
        actor_id=actor_id,
        reason="Prescription drafted",
    )
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise
    await session.refresh(prescription)
    return prescription


def _check_acknowledgement(
    outcome: screening_service.ScreeningOutcome,
    *,
    acknowledge_findings: bool,
    acknowledgement_note: str | None,
) -> None:
    if outcome.is_clean:
        return
    context = {
        "screening_id": str(outcome.screening_id),
        "findings": [finding.to_payload() for finding in outcome.findings],
    }
    if not acknowledge_findings:
        raise ValidationError(
            "Screening findings must be acknowledged before activation", **context
        )
    if outcome.blocking and not (acknowledgement_note and acknowledgement_note.strip()):
        raise ValidationError(
            "A contraindicated-or-worse finding needs a recorded clinical justification",
            **context,
        )


async def _acknowledge_screening(
    session: AsyncSession,
    *,
    prescription: Prescription,
    outcome: screening_service.ScreeningOutcome,
    actor_id: uuid.UUID,
    acknowledgement_note: str | None,
) -> None:
    if outcome.is_clean:
        return
    note = (acknowledgement_note or "Findings acknowledged").strip()
    if outcome.blocking:
        await screening_service.mark_overridden(
            session, screening_id=outcome.screening_id, reason=note
        )
    await audit_service.record_event(
        session,
        event_type="prescription.findings_acknowledged",
        actor_id=actor_id,
        subject_type="prescription",
        subject_id=prescription.id,
        description=note,
        payload={
            "screening_id": str(outcome.screening_id),
            "max_severity": outcome.max_severity,
            "blocking": outcome.blocking,
        },
    )


def _check_version(prescription: Prescription, expected_version: int | None) -> None:
    if expected_version is not None and prescription.version != expected_version:
        raise ConflictError(
            "Prescription was modified by someone else; reload and retry",
            prescription_id=str(prescription.id),
            expected_version=expected_version,
            current_version=prescription.version,
        )


async def _commit_or_conflict(session: AsyncSession, prescription_id: uuid.UUID) -> None:
    try:
        await session.commit()
    except (StaleDataError, IntegrityError) as exc:
        await session.rollback()
        raise ConflictError(
            "Prescription was modified concurrently; reload and retry",
            prescription_id=str(prescription_id),
        ) from exc


async def activate_prescription(
    session: AsyncSession,
    *,
    prescription_id: uuid.UUID,
    actor_id: uuid.UUID,
    config: EngineConfig,
    acknowledge_findings: bool = False,
    acknowledgement_note: str | None = None,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> Prescription:
    """Move a draft to active after identifier, frequency and safety checks, then schedule it."""
    current = coerce_utc(now) if now else utcnow()
    prescription = await get_prescription(session, prescription_id=prescription_id)
    _validate_status_transition(prescription.status, PrescriptionStatus.ACTIVE)
    _check_version(prescription, expected_version)
    if prescription.resident_identifier and not validate_identifier(
        prescription.resident_identifier
    ):
        raise ValidationError("Resident clinical identifier failed its checksum")
    parse_frequency(prescription.frequency, config)
    await _validate_medication(
        session,
        medication_id=prescription.medication_id,
        stock_item_id=prescription.stock_item_id,
        dose_quantity=prescription.dose_quantity,
    )

    outcome = await screening_service.screen_candidate(
        session,
        resident_id=prescription.resident_id,
        medication_id=prescription.medication_id,
        actor_id=actor_id,
        purpose=ScreeningPurpose.PRESCRIBING,
        prescription_id=prescription.id,
        exclude_prescription_id=prescription.id,
    )
    _check_acknowledgement(
        outcome,
        acknowledge_findings=acknowledge_findings,
        acknowledgement_note=acknowledgement_note,
    )

    async with prescription_locks.hold(prescription_id):
        await session.refresh(prescription)
        _validate_status_transition(prescription.status, PrescriptionStatus.ACTIVE)
        _check_version(prescription, expected_version)
        try:
            await _transition(
                session,
                prescription=prescription,
                target=PrescriptionStatus.ACTIVE,
                actor_id=actor_id,
                reason=acknowledgement_note or "Prescription activated",
                now=current,
                payload={"screening_id": str(outcome.screening_id)},
            )
            await _acknowledge_screening(
                session,
                prescription=prescription,
                outcome=outcome,
                actor_id=actor_id,
                acknowledgement_note=acknowledgement_note,
            )
            await scheduling_service.generate_slots(
                session, prescription=prescription, config=config, not_before=current, now=current
            )
        except SchedulingInconsistency as exc:
            await session.rollback()
            await scheduling_service.report_inconsistency(
                session, prescription_id=prescription_id, error=exc
            )
            raise
        except StaleDataError as exc:
            await session.rollback()
            raise ConflictError(
                "Prescription was modified concurrently; reload and retry",
                prescription_id=str(prescription_id),
            ) from exc
        await _commit_or_conflict(session, prescription_id)
    return prescription


async def discontinue_prescription(
    session: AsyncSession,
    *,
    prescription_id: uuid.UUID,
    reason: str,
    actor_id: uuid.UUID,
    expected_version: int | None = None,
    now: datetime | None = None,
) -> Prescription:
    """Stop an active prescription and cancel every slot not yet resolved."""
    current = coerce_utc(now) if now else utcnow()
    if not reason or not reason.strip():
        raise ValidationError("A reason is required to discontinue a prescription")
    prescription = await get_prescription(session, prescription_id=prescription_id)
    async with prescription_locks.hold(prescription_id):
        await session.refresh(prescription)
        _check_version(prescription, expected_version)
        await _transition(
            session,
            prescription=prescription,
            target=PrescriptionStatus.DISCONTINUED,
            actor_id=actor_id,
            reason=reason.strip(),
            now=current,
        )
        cancelled = await scheduling_service.cancel_pending_slots(
            session, prescription_id=prescription_id, actor_id=actor_id
        )
        await _commit_or_conflict(session, prescription_id)
    logger.info("Prescription %s discontinued; %s slot(s) cancelled", prescription_id, cancelled)
    return prescription


def _end_boundary(end_date: date, config: EngineConfig) -> datetime:
    return coerce_utc(datetime.combine(end_date, time.min, tzinfo=config.tz))


async def expire_prescriptions(
    session: AsyncSession, *, config: EngineConfig, now: datetime | None = None
) -> list[Prescription]:
    """Expire active prescriptions whose end date has begun in the care home's time zone."""
    current = coerce_utc(now) if now else utcnow()
    local_today = current.astimezone(config.tz).date()
    result = await session.execute(
        select(Prescription.id).where(
            Prescription.status == PrescriptionStatus.ACTIVE,
            Prescription.end_date.is_not(None),
            Prescription.end_date <= local_today,
        )
    )
    expired: list[Prescription] = []
    for prescription_id in result.scalars().all():
        async with prescription_locks.hold(prescription_id):
            prescription = await session.get(Prescription, prescription_id)
            if prescription is None:
                continue
            await session.refresh(prescription)
            if prescription.status is not PrescriptionStatus.ACTIVE:
                continue
            if current < _end_boundary(prescription.end_date, config):
                continue
            await _transition(
                session,
                prescription=prescription,
                target=PrescriptionStatus.EXPIRED,
                actor_id=None,
                now=current,
                reason=f"End date {prescription.end_date.isoformat()} reached",
            )
            try:
                await _commit_or_conflict(session, prescription_id)
            except ConflictError:
                logger.warning("Expiry of %s lost a concurrent update; will retry", prescription_id)
                continue
            expired.append(prescription)
    return expired


_UNSET: Any = object()


async def modify_prescription(
    session: AsyncSession,
    *,
    prescription_id: uuid.UUID,
    expected_version: int,
    actor_id: uuid.UUID,
    config: EngineConfig,
    reason: str | None = None,
    dosage: str | None = None,
    route: str | None = None,
    frequency: str | None = None,
    start_date: date | None = None,
    end_date: date | None = _UNSET,
    dose_quantity: Decimal | int | str | None = None,
    stock_item_id: uuid.UUID | None = _UNSET,
    acknowledge_findings: bool = False,
    acknowledgement_note: str | None = None,
    now: datetime | None = None,
) -> Prescription:
    """Change a prescription under optimistic concurrency.

    Drafts are edited in place. An active prescription is superseded by a new
    revision, which is screened, activated and scheduled from ``now`` onward in
    the same transaction that cancels the old revision's future pending slots.
    """
    current = coerce_utc(now) if now else utcnow()
    prescription = await get_prescription(session, prescription_id=prescription_id)
    _check_version(prescription, expected_version)
    if prescription.status in TERMINAL_STATUSES:
        raise ValidationError(
            f"A {prescription.status.value} prescription cannot be modified",
            prescription_id=str(prescription_id),
        )

    new_dosage = dosage if dosage is not None else prescription.dosage
    new_route = route if route is not None else prescription.route
    new_frequency = normalise_frequency(frequency) if frequency is not None else prescription.frequency
    new_start = start_date if start_date is not None else prescription.start_date
    new_end = prescription.end_date if end_date is _UNSET else end_date
    new_quantity = (
        Decimal(str(dose_quantity)) if dose_quantity is not None else prescription.dose_quantity
    )
    new_stock = prescription.stock_item_id if stock_item_id is _UNSET else stock_item_id

    _validate_text(dosage=new_dosage, route=new_route)
    parse_frequency(new_frequency, config)
    _validate_window(new_start, new_end)
    await _validate_medication(
        session,
        medication_id=prescription.medication_id,
        stock_item_id=new_stock,
        dose_quantity=new_quantity,
    )
    changes = {
        "dosage": new_dosage.strip(),
        "route": new_route.strip(),
        "frequency": new_frequency,
        "start_date": new_start,
        "end_date": new_end,
        "dose_quantity": new_quantity,
        "stock_item_id": new_stock,
    }

    if prescription.status is PrescriptionStatus.DRAFT:
        async with prescription_locks.hold(prescription_id):
            await session.refresh(prescription)
            _check_version(prescription, expected_version)
            if prescription.status is not PrescriptionStatus.DRAFT:
                raise ConflictError(
                    "Prescription left draft while being edited",
                    prescription_id=str(prescription_id),
                )
            for field, value in changes.items():
                setattr(prescription, field, value)
            prescription.updated_by = actor_id
            await audit_service.record_event(
                session,
                event_type="prescription.draft_modified",
                actor_id=actor_id,
                subject_type="prescription",
                subject_id=prescription.id,
                description=reason,
                payload={key: str(value) if value is not None else None for key, value in changes.items()},
            )
            await _commit_or_conflict(session, prescription_id)
        await session.refresh(prescription)
        return prescription

    if not reason or not reason.strip():
        raise ValidationError("A reason is required to change an active prescription")

    outcome = await screening_service.screen_candidate(
        session,
        resident_id=prescription.resident_id,
        medication_id=prescription.medication_id,
        actor_id=actor_id,
        purpose=ScreeningPurpose.PRESCRIBING,
        prescription_id=prescription.id,
        exclude_prescription_id=prescription.id,
    )
    _check_acknowledgement(
        outcome,
        acknowledge_findings=acknowledge_findings,
        acknowledgement_note=acknowledgement_note,
    )

    async with prescription_locks.hold(prescription_id):
        await session.refresh(prescription)
        _check_version(prescription, expected_version)
        try:
            replacement = Prescription(
                resident_id=prescription.resident_id,
                resident_identifier=prescription.resident_identifier,
                medication_id=prescription.medication_id,
                prescriber_id=prescription.prescriber_id,
                status=PrescriptionStatus.ACTIVE,
                status_reason=reason.strip(),
                revision=prescription.revision + 1,
                supersedes_id=prescription.id,
                activated_at=current,
                created_by=actor_id,
                **changes,
            )
            session.add(replacement)
            await _transition(
                session,
                prescription=prescription,
                target=PrescriptionStatus.SUPERSEDED,
                actor_id=actor_id,
                now=current,
                reason=reason.strip(),
            )
            await session.flush()
            await _record_transition(
                session,
                prescription=replacement,
                from_status=None,
                to_status=PrescriptionStatus.ACTIVE,
                actor_id=actor_id,
                reason=f"Supersedes revision {prescription.revision}: {reason.strip()}",
                payload={
                    "supersedes_id": str(prescription.id),
                    "screening_id": str(outcome.screening_id),
                },
            )
            await _acknowledge_screening(
                session,
                prescription=replacement,
                outcome=outcome,
                actor_id=actor_id,
                acknowledgement_note=acknowledgement_note,
            )
            cancelled = await scheduling_service.cancel_pending_slots(
                session,
                prescription_id=prescription.id,
                actor_id=actor_id,
                after=current,
                statuses=frozenset({SlotStatus.PENDING}),
            )
            await scheduling_service.generate_slots(
                session, prescription=replacement, config=config, not_before=current, now=current
            )
        except SchedulingInconsistency as exc:
            await session.rollback()
            await scheduling_service.report_inconsistency(
                session, prescription_id=prescription_id, error=exc
            )
            raise
        except StaleDataError as exc:
            await session.rollback()
            raise ConflictError(
                "Prescription was modified concurrently; reload and retry",
                prescription_id=str(prescription_id),
            ) from exc
        await _commit_or_conflict(session, prescription_id)
    await session.refresh(replacement)
    logger.info(
        "Prescription %s superseded by %s (revision %s); %s pending slot(s) cancelled",
        prescription.id,
        replacement.id,
        replacement.revision,
        cancelled,
    )
    return replacement
