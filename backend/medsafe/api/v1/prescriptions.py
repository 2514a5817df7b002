"""Prescription lifecycle endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, status

from medsafe.api.deps import ActorDep, ConfigDep, SessionDep
from medsafe.schemas.administration import PrnDoseCreate, SlotRead
from medsafe.schemas.prescription import (
    PrescriptionActivate,
    PrescriptionCreate,
    PrescriptionDiscontinue,
    PrescriptionModify,
    PrescriptionRead,
    PrescriptionTransitionRead,
)
from medsafe.services import prescription_service, scheduling_service

router = APIRouter()


@router.post(
    "",
    response_model=PrescriptionRead,
    status_code=status.HTTP_201_CREATED,
    summary="Draft a prescription",
)
async def create_prescription(
    payload: PrescriptionCreate,
    session: SessionDep,
    actor_id: ActorDep,
    config: ConfigDep,
) -> PrescriptionRead:
    prescription = await prescription_service.create_prescription(
        session, actor_id=actor_id, config=config, **payload.model_dump()
    )
    return PrescriptionRead.model_validate(prescription)


@router.get("/{prescription_id}", response_model=PrescriptionRead, summary="Get a prescription")
async def get_prescription(
    prescription_id: uuid.UUID, session: SessionDep, _actor: ActorDep
) -> PrescriptionRead:
    prescription = await prescription_service.get_prescription(
        session, prescription_id=prescription_id
    )
    return PrescriptionRead.model_validate(prescription)


@router.post(
    "/{prescription_id}/activate",
    response_model=PrescriptionRead,
    summary="Activate a draft prescription",
)
async def activate_prescription(
    prescription_id: uuid.UUID,
    payload: PrescriptionActivate,
    session: SessionDep,
    actor_id: ActorDep,
    config: ConfigDep,
) -> PrescriptionRead:
    prescription = await prescription_service.activate_prescription(
        session,
        prescription_id=prescription_id,
        actor_id=actor_id,
        config=config,
        **payload.model_dump(),
    )
    return PrescriptionRead.model_validate(prescription)


@router.patch(
    "/{prescription_id}",
    response_model=PrescriptionRead,
    summary="Modify a prescription (supersedes active prescriptions)",
)
async def modify_prescription(
    prescription_id: uuid.UUID,
    payload: PrescriptionModify,
    session: SessionDep,
    actor_id: ActorDep,
    config: ConfigDep,
) -> PrescriptionRead:
    # unset fields stay untouched; an explicit null clears end_date or stock_item_id
    changes = payload.model_dump(exclude_unset=True)
    prescription = await prescription_service.modify_prescription(
        session,
        prescription_id=prescription_id,
        actor_id=actor_id,
        config=config,
        **changes,
    )
    return PrescriptionRead.model_validate(prescription)


@router.post(
    "/{prescription_id}/discontinue",
    response_model=PrescriptionRead,
    summary="Discontinue an active prescription",
)
async def discontinue_prescription(
    prescription_id: uuid.UUID,
    payload: PrescriptionDiscontinue,
    session: SessionDep,
    actor_id: ActorDep,
) -> PrescriptionRead:
    prescription = await prescription_service.discontinue_prescription(
        session,
        prescription_id=prescription_id,
        reason=payload.reason,
        actor_id=actor_id,
        expected_version=payload.expected_version,
    )
    return PrescriptionRead.model_validate(prescription)


@router.get(
    "/{prescription_id}/history",
    response_model=list[PrescriptionTransitionRead],
    summary="Lifecycle transitions of a prescription",
)
async def prescription_history(
    prescription_id: uuid.UUID, session: SessionDep, _actor: ActorDep
) -> list[PrescriptionTransitionRead]:
    transitions = await prescription_service.list_prescription_history(
        session, prescription_id=prescription_id
    )
    return [PrescriptionTransitionRead.model_validate(item) for item in transitions]


@router.get(
    "/{prescription_id}/slots",
    response_model=list[SlotRead],
    summary="Administration slots of a prescription",
)
async def prescription_slots(
    prescription_id: uuid.UUID, session: SessionDep, _actor: ActorDep
) -> list[SlotRead]:
    await prescription_service.get_prescription(session, prescription_id=prescription_id)
    slots = await scheduling_service.list_slots(session, prescription_id=prescription_id)
    return [SlotRead.model_validate(slot) for slot in slots]


@router.post(
    "/{prescription_id}/prn-doses",
    response_model=SlotRead,
    status_code=status.HTTP_201_CREATED,
    summary="Record an as-needed dose",
)
async def record_prn_dose(
    prescription_id: uuid.UUID,
    payload: PrnDoseCreate,
    session: SessionDep,
    actor_id: ActorDep,
    config: ConfigDep,
) -> SlotRead:
    slot = await scheduling_service.record_prn_administration(
        session,
        prescription_id=prescription_id,
        actor_id=actor_id,
        config=config,
        **payload.model_dump(),
    )
    return SlotRead.model_validate(slot)
