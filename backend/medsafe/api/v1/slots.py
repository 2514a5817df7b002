"""Administration slot endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter

from medsafe.api.deps import ActorDep, ConfigDep, SessionDep
from medsafe.schemas.administration import SlotRead, SlotResolve
from medsafe.services import scheduling_service

router = APIRouter()


@router.get("/{slot_id}", response_model=SlotRead, summary="Get an administration slot")
async def get_slot(slot_id: uuid.UUID, session: SessionDep, _actor: ActorDep) -> SlotRead:
    slot = await scheduling_service.get_slot(session, slot_id=slot_id)
    return SlotRead.model_validate(slot)


@router.post(
    "/{slot_id}/resolve",
    response_model=SlotRead,
    summary="Record the outcome of an administration slot",
)
async def resolve_slot(
    slot_id: uuid.UUID,
    payload: SlotResolve,
    session: SessionDep,
    actor_id: ActorDep,
    config: ConfigDep,
) -> SlotRead:
    slot = await scheduling_service.resolve_slot(
        session,
        slot_id=slot_id,
        actor_id=actor_id,
        config=config,
        **payload.model_dump(),
    )
    return SlotRead.model_validate(slot)
