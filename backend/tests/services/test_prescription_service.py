"""Tests for the prescription lifecycle."""

from __future__ import annotations

import asyncio
import uuid
from datetime import UTC, date, datetime, timedelta

import pytest
from sqlalchemy import select

from medsafe.core.errors import ConflictError, NotFoundError, ValidationError
from medsafe.db.session import get_sessionmaker
from medsafe.models import (
    AuditEvent,
    Prescription,
    PrescriptionStatus,
    ScreeningRecord,
    SlotOutcome,
    SlotStatus,
)
from medsafe.services import (
    custody_service,
    medication_service,
    prescription_service,
    scheduling_service,
)

pytestmark = pytest.mark.asyncio

START = datetime(2030, 1, 1, 0, 0, tzinfo=UTC)


async def test_activation_generates_daily_slots(
    session, formulary, resident_id, prescribe
) -> None:
    draft = await prescribe(formulary["paracetamol"], resident_id=resident_id, activate=False)
    assert draft.status is PrescriptionStatus.DRAFT
    assert draft.version == 1

    active = await prescribe(formulary["paracetamol"], resident_id=resident_id)
    assert active.status is PrescriptionStatus.ACTIVE
    slots = await scheduling_service.list_slots(session, prescription_id=active.id)
    assert len(slots) == 10
    assert all(slot.status is SlotStatus.PENDING for slot in slots)

    history = await prescription_service.list_prescription_history(
        session, prescription_id=active.id
    )
    assert [(item.from_status, item.to_status) for item in history] == [
        (None, PrescriptionStatus.DRAFT),
        (PrescriptionStatus.DRAFT, PrescriptionStatus.ACTIVE),
    ]


async def test_twice_daily_over_three_days(session, formulary, resident_id, prescribe) -> None:
    prescription = await prescribe(
        formulary["paracetamol"],
        resident_id=resident_id,
        frequency="BD",
        end_date=date(2030, 1, 4),
    )
    slots = await scheduling_service.list_slots(session, prescription_id=prescription.id)
    assert len(slots) == 6


@pytest.mark.parametrize(
    "overrides",
    [
        {"frequency": "HOURLY"},
        {"end_date": date(2029, 12, 31)},
        {"resident_identifier": "9434765918"},
        {"dose_quantity": 0},
        {"dosage": "  "},
    ],
)
async def test_create_rejects_invalid_input(
    formulary, resident_id, prescribe, overrides
) -> None:
    with pytest.raises(ValidationError):
        await prescribe(
            formulary["paracetamol"], resident_id=resident_id, activate=False, **overrides
        )


async def test_create_stores_normalised_identifier(formulary, resident_id, prescribe) -> None:
    draft = await prescribe(
        formulary["paracetamol"],
        resident_id=resident_id,
        activate=False,
        resident_identifier="943 476 5919",
    )
    assert draft.resident_identifier == "9434765919"


async def test_superseded_medication_cannot_be_prescribed(
    session, formulary, resident_id, actor_id, prescribe
) -> None:
    newer = await medication_service.supersede_medication(
        session,
        medication_id=formulary["paracetamol"].id,
        actor_id=actor_id,
        strength="1 g tablet",
    )
    assert newer.version == 2
    assert newer.lineage_id == formulary["paracetamol"].lineage_id
    with pytest.raises(ValidationError):
        await prescribe(formulary["paracetamol"], resident_id=resident_id, activate=False)
    draft = await prescribe(newer, resident_id=resident_id, activate=False)
    assert draft.medication_id == newer.id


async def test_controlled_drug_needs_matching_stock_item(
    session, formulary, resident_id, actor_id, prescribe
) -> None:
    with pytest.raises(ValidationError):
        await prescribe(formulary["morphine"], resident_id=resident_id, activate=False)

    item = await custody_service.register_stock_item(
        session, medication_id=formulary["morphine"].id, label="CD cabinet A", actor_id=actor_id
    )
    with pytest.raises(ValidationError):
        await prescribe(
            formulary["paracetamol"],
            resident_id=resident_id,
            activate=False,
            stock_item_id=item.id,
        )
    draft = await prescribe(
        formulary["morphine"], resident_id=resident_id, activate=False, stock_item_id=item.id
    )
    assert draft.stock_item_id == item.id


async def test_activation_requires_acknowledged_findings(
    session, formulary, resident_id, actor_id, engine_config, prescribe
) -> None:
    await prescribe(formulary["warfarin"], resident_id=resident_id)
    draft = await prescribe(formulary["aspirin"], resident_id=resident_id, activate=False)

    with pytest.raises(ValidationError) as excinfo:
        await prescription_service.activate_prescription(
            session, prescription_id=draft.id, actor_id=actor_id, config=engine_config, now=START
        )
    assert excinfo.value.context["findings"]

    with pytest.raises(ValidationError):
        await prescription_service.activate_prescription(
            session,
            prescription_id=draft.id,
            actor_id=actor_id,
            config=engine_config,
            acknowledge_findings=True,
            now=START,
        )

    refreshed = await prescription_service.get_prescription(session, prescription_id=draft.id)
    assert refreshed.status is PrescriptionStatus.DRAFT
    assert await scheduling_service.list_slots(session, prescription_id=draft.id) == []

    active = await prescription_service.activate_prescription(
        session,
        prescription_id=draft.id,
        actor_id=actor_id,
        config=engine_config,
        acknowledge_findings=True,
        acknowledgement_note="Cardiology aware; INR monitored twice weekly",
        now=START,
    )
    assert active.status is PrescriptionStatus.ACTIVE

    overridden = (
        await session.execute(
            select(ScreeningRecord).where(
                ScreeningRecord.prescription_id == draft.id,
                ScreeningRecord.overridden.is_(True),
            )
        )
    ).scalars().all()
    assert len(overridden) == 1
    assert overridden[0].override_reason.startswith("Cardiology aware")


async def test_activation_is_only_from_draft(
    session, formulary, resident_id, actor_id, engine_config, prescribe
) -> None:
    active = await prescribe(formulary["paracetamol"], resident_id=resident_id)
    with pytest.raises(ValidationError):
        await prescription_service.activate_prescription(
            session, prescription_id=active.id, actor_id=actor_id, config=engine_config
        )


async def test_discontinue_cancels_unresolved_and_keeps_resolved(
    session, formulary, resident_id, actor_id, engine_config, prescribe
) -> None:
    prescription = await prescribe(
        formulary["paracetamol"], resident_id=resident_id, end_date=date(2030, 1, 4)
    )
    first, second, third = await scheduling_service.list_slots(
        session, prescription_id=prescription.id
    )
    await scheduling_service.resolve_slot(
        session,
        slot_id=first.id,
        outcome=SlotOutcome.ADMINISTERED,
        actor_id=actor_id,
        config=engine_config,
        now=first.scheduled_at + timedelta(minutes=5),
    )
    await scheduling_service.promote_due_slots(session, now=second.scheduled_at)

    with pytest.raises(ValidationError):
        await prescription_service.discontinue_prescription(
            session, prescription_id=prescription.id, reason=" ", actor_id=actor_id
        )

    stopped = await prescription_service.discontinue_prescription(
        session,
        prescription_id=prescription.id,
        reason="Resident declined further doses",
        actor_id=actor_id,
    )
    assert stopped.status is PrescriptionStatus.DISCONTINUED
    assert stopped.closed_at is not None

    statuses = {
        slot.id: slot.status
        for slot in await scheduling_service.list_slots(session, prescription_id=prescription.id)
    }
    assert statuses[first.id] is SlotStatus.ADMINISTERED
    assert statuses[second.id] is SlotStatus.CANCELLED
    assert statuses[third.id] is SlotStatus.CANCELLED


async def test_stale_version_is_rejected(
    session, formulary, resident_id, actor_id, engine_config, prescribe
) -> None:
    draft = await prescribe(formulary["paracetamol"], resident_id=resident_id, activate=False)
    stale_version = draft.version
    await prescription_service.modify_prescription(
        session,
        prescription_id=draft.id,
        expected_version=stale_version,
        actor_id=actor_id,
        config=engine_config,
        dosage="2 tablets",
    )
    with pytest.raises(ConflictError):
        await prescription_service.modify_prescription(
            session,
            prescription_id=draft.id,
            expected_version=stale_version,
            actor_id=actor_id,
            config=engine_config,
            dosage="3 tablets",
        )
    with pytest.raises(ConflictError):
        await prescription_service.activate_prescription(
            session,
            prescription_id=draft.id,
            actor_id=actor_id,
            config=engine_config,
            expected_version=stale_version,
        )


async def test_draft_is_modified_in_place(
    session, formulary, resident_id, actor_id, engine_config, prescribe
) -> None:
    draft = await prescribe(formulary["paracetamol"], resident_id=resident_id, activate=False)
    updated = await prescription_service.modify_prescription(
        session,
        prescription_id=draft.id,
        expected_version=draft.version,
        actor_id=actor_id,
        config=engine_config,
        frequency="tds",
        end_date=None,
    )
    assert updated.id == draft.id
    assert updated.frequency == "TDS"
    assert updated.end_date is None
    assert updated.revision == 1
    assert updated.status is PrescriptionStatus.DRAFT


async def test_modifying_active_prescription_supersedes_it(
    session, formulary, resident_id, actor_id, engine_config, prescribe
) -> None:
    original = await prescribe(formulary["paracetamol"], resident_id=resident_id)
    change_at = datetime(2030, 1, 3, 12, 0, tzinfo=UTC)

    with pytest.raises(ValidationError):
        await prescription_service.modify_prescription(
            session,
            prescription_id=original.id,
            expected_version=original.version,
            actor_id=actor_id,
            config=engine_config,
            frequency="BD",
            now=change_at,
        )

    replacement = await prescription_service.modify_prescription(
        session,
        prescription_id=original.id,
        expected_version=original.version,
        actor_id=actor_id,
        config=engine_config,
        frequency="BD",
        reason="Pain poorly controlled",
        now=change_at,
    )
    assert replacement.id != original.id
    assert replacement.revision == 2
    assert replacement.supersedes_id == original.id
    assert replacement.status is PrescriptionStatus.ACTIVE

    old = await prescription_service.get_prescription(session, prescription_id=original.id)
    assert old.status is PrescriptionStatus.SUPERSEDED

    old_slots = await scheduling_service.list_slots(session, prescription_id=original.id)
    for slot in old_slots:
        if slot.scheduled_at >= change_at:
            assert slot.status is SlotStatus.CANCELLED
        else:
            assert slot.status is SlotStatus.PENDING

    new_slots = await scheduling_service.list_slots(session, prescription_id=replacement.id)
    assert new_slots
    assert all(slot.scheduled_at >= change_at for slot in new_slots)
    # Jan 3 20:00 then two doses a day through Jan 10
    assert len(new_slots) == 1 + 2 * 7

    with pytest.raises(ValidationError):
        await prescription_service.modify_prescription(
            session,
            prescription_id=original.id,
            expected_version=old.version,
            actor_id=actor_id,
            config=engine_config,
            dosage="2 tablets",
            reason="Too late",
        )


async def test_expiry_follows_end_date(
    session, formulary, resident_id, engine_config, prescribe
) -> None:
    prescription = await prescribe(
        formulary["paracetamol"], resident_id=resident_id, end_date=date(2030, 1, 4)
    )
    before = await prescription_service.expire_prescriptions(
        session, config=engine_config, now=datetime(2030, 1, 3, 23, 59, tzinfo=UTC)
    )
    assert before == []

    expired = await prescription_service.expire_prescriptions(
        session, config=engine_config, now=datetime(2030, 1, 4, 0, 0, tzinfo=UTC)
    )
    assert [item.id for item in expired] == [prescription.id]
    assert expired[0].status is PrescriptionStatus.EXPIRED

    again = await prescription_service.expire_prescriptions(
        session, config=engine_config, now=datetime(2030, 1, 5, tzinfo=UTC)
    )
    assert again == []

    events = (
        await session.execute(
            select(AuditEvent.event_type).where(AuditEvent.subject_id == prescription.id)
        )
    ).scalars().all()
    assert "prescription.expired" in events


async def test_unknown_prescription_is_not_found(session) -> None:
    with pytest.raises(NotFoundError):
        await prescription_service.get_prescription(session, prescription_id=uuid.uuid4())


async def test_concurrent_changes_to_active_prescription(
    session, db_url, formulary, resident_id, actor_id, engine_config, prescribe
) -> None:
    active = await prescribe(formulary["paracetamol"], resident_id=resident_id)
    sessionmaker = get_sessionmaker(db_url)

    async def _change(dosage: str):
        async with sessionmaker() as other:
            return await prescription_service.modify_prescription(
                other,
                prescription_id=active.id,
                expected_version=active.version,
                actor_id=actor_id,
                config=engine_config,
                reason=f"Dose review to {dosage}",
                dosage=dosage,
                now=START + timedelta(days=1),
            )

    results = await asyncio.gather(
        _change("2 tablets"), _change("3 tablets"), return_exceptions=True
    )
    replacements = [result for result in results if not isinstance(result, BaseException)]
    conflicts = [result for result in results if isinstance(result, ConflictError)]
    assert len(replacements) == 1
    assert len(conflicts) == 1
    assert replacements[0].supersedes_id == active.id

    await session.refresh(active)
    assert active.status is PrescriptionStatus.SUPERSEDED
    result = await session.execute(
        select(Prescription).where(
            Prescription.resident_id == resident_id,
            Prescription.status == PrescriptionStatus.ACTIVE,
        )
    )
    assert [item.id for item in result.scalars().all()] == [replacements[0].id]


async def test_lifecycle_timestamps_follow_supplied_clock(
    session, formulary, resident_id, actor_id, prescribe
) -> None:
    prescription = await prescribe(formulary["paracetamol"], resident_id=resident_id)
    assert prescription.activated_at == START

    stopped_at = START + timedelta(days=2, hours=3)
    stopped = await prescription_service.discontinue_prescription(
        session,
        prescription_id=prescription.id,
        reason="Course reviewed",
        actor_id=actor_id,
        now=stopped_at,
    )
    assert stopped.closed_at == stopped_at
