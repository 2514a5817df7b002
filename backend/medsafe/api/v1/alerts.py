"""Alert query and acknowledgement endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Query

from medsafe.api.deps import ActorDep, SessionDep
from medsafe.models.alert import AlertSeverity
from medsafe.schemas.alert import AlertRead, AlertResolve
from medsafe.services import alert_service

router = APIRouter()


@router.get("", response_model=list[AlertRead], summary="List alerts")
async def list_alerts(
    session: SessionDep,
    _actor: ActorDep,
    open_only: bool = False,
    severity: AlertSeverity | None = None,
    subject_type: str | None = None,
    subject_id: uuid.UUID | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
) -> list[AlertRead]:
    alerts = await alert_service.list_alerts(
        session,
        open_only=open_only,
        severity=severity,
        subject_type=subject_type,
        subject_id=subject_id,
        skip=skip,
        limit=limit,
    )
    return [AlertRead.model_validate(alert) for alert in alerts]


@router.get("/{alert_id}", response_model=AlertRead, summary="Get an alert")
async def get_alert(alert_id: uuid.UUID, session: SessionDep, _actor: ActorDep) -> AlertRead:
    alert = await alert_service.get_alert(session, alert_id=alert_id)
    return AlertRead.model_validate(alert)


@router.post(
    "/{alert_id}/acknowledge", response_model=AlertRead, summary="Acknowledge an alert"
)
async def acknowledge_alert(
    alert_id: uuid.UUID, session: SessionDep, actor_id: ActorDep
) -> AlertRead:
    alert = await alert_service.acknowledge_alert(
        session, alert_id=alert_id, actor_id=actor_id
    )
    return AlertRead.model_validate(alert)


@router.post("/{alert_id}/resolve", response_model=AlertRead, summary="Resolve an alert")
async def resolve_alert(
    alert_id: uuid.UUID,
    payload: AlertResolve,
    session: SessionDep,
    actor_id: ActorDep,
) -> AlertRead:
    alert = await alert_service.resolve_alert(
        session, alert_id=alert_id, actor_id=actor_id, note=payload.note
    )
    return AlertRead.model_validate(alert)
