"""Ad-hoc clinical safety screening endpoint."""

from __future__ import annotations

from fastapi import APIRouter, status

from medsafe.api.deps import ActorDep, SessionDep
from medsafe.schemas.screening import FindingRead, ScreeningRequest, ScreeningResultRead
from medsafe.services import screening_service

router = APIRouter()


@router.post(
    "",
    response_model=ScreeningResultRead,
    status_code=status.HTTP_201_CREATED,
    summary="Screen a candidate medication for a resident",
)
async def screen_candidate(
    payload: ScreeningRequest, session: SessionDep, actor_id: ActorDep
) -> ScreeningResultRead:
    outcome = await screening_service.screen_candidate(
        session,
        resident_id=payload.resident_id,
        medication_id=payload.medication_id,
        actor_id=actor_id,
    )
    return ScreeningResultRead(
        screening_id=outcome.screening_id,
        findings=[FindingRead(**finding.to_payload()) for finding in outcome.findings],
        max_severity=outcome.max_severity,
        blocking=outcome.blocking,
    )
