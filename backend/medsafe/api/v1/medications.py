"""Formulary endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, status

from medsafe.api.deps import ActorDep, SessionDep
from medsafe.schemas.medication import (
    ContraindicationRuleCreate,
    ContraindicationRuleRead,
    InteractionRuleCreate,
    InteractionRuleRead,
    MedicationCreate,
    MedicationRead,
    MedicationVersionCreate,
)
from medsafe.services import medication_service

router = APIRouter()


@router.post(
    "",
    response_model=MedicationRead,
    status_code=status.HTTP_201_CREATED,
    summary="Publish a medication",
)
async def publish_medication(
    payload: MedicationCreate, session: SessionDep, actor_id: ActorDep
) -> MedicationRead:
    medication = await medication_service.publish_medication(
        session, actor_id=actor_id, **payload.model_dump()
    )
    return MedicationRead.model_validate(medication)


@router.get("/{medication_id}", response_model=MedicationRead, summary="Get a medication version")
async def get_medication(
    medication_id: uuid.UUID, session: SessionDep, _actor: ActorDep
) -> MedicationRead:
    medication = await medication_service.get_medication(session, medication_id=medication_id)
    return MedicationRead.model_validate(medication)


@router.post(
    "/{medication_id}/versions",
    response_model=MedicationRead,
    status_code=status.HTTP_201_CREATED,
    summary="Supersede a medication with a new version",
)
async def supersede_medication(
    medication_id: uuid.UUID,
    payload: MedicationVersionCreate,
    session: SessionDep,
    actor_id: ActorDep,
) -> MedicationRead:
    medication = await medication_service.supersede_medication(
        session, medication_id=medication_id, actor_id=actor_id, **payload.model_dump()
    )
    return MedicationRead.model_validate(medication)


@router.post(
    "/interaction-rules",
    response_model=InteractionRuleRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add an interaction rule",
)
async def add_interaction_rule(
    payload: InteractionRuleCreate, session: SessionDep, actor_id: ActorDep
) -> InteractionRuleRead:
    rule = await medication_service.add_interaction_rule(
        session, actor_id=actor_id, **payload.model_dump()
    )
    return InteractionRuleRead.model_validate(rule)


@router.post(
    "/contraindication-rules",
    response_model=ContraindicationRuleRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add an allergen contraindication rule",
)
async def add_contraindication_rule(
    payload: ContraindicationRuleCreate, session: SessionDep, actor_id: ActorDep
) -> ContraindicationRuleRead:
    rule = await medication_service.add_contraindication_rule(
        session, actor_id=actor_id, **payload.model_dump()
    )
    return ContraindicationRuleRead.model_validate(rule)
