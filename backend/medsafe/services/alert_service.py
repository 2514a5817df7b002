"""Alert sinks, escalation re-fire and the alert query surface."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import inspect, select
from sqlalchemy.ext.asyncio import AsyncSession

from medsafe.core.errors import ConflictError, NotFoundError
from medsafe.core.settings import EngineConfig
from medsafe.db.types import coerce_utc, utcnow
from medsafe.models.alert import (
    ESCALATING_SEVERITIES,
    Alert,
    AlertKind,
    AlertSeverity,
    AlertSource,
)
from medsafe.services import audit_service, notification_service

logger = logging.getLogger(__name__)

SEVERITY_BY_KIND: dict[AlertKind, AlertSeverity] = {
    AlertKind.CUSTODY_DISCREPANCY: AlertSeverity.CRITICAL,
    AlertKind.SAFETY_BLOCK: AlertSeverity.CRITICAL,
    AlertKind.MISSED_DOSE: AlertSeverity.HIGH,
    AlertKind.CUSTODY_REJECTION: AlertSeverity.HIGH,
    AlertKind.SCHEDULING_INCONSISTENCY: AlertSeverity.HIGH,
    AlertKind.CAUTION_FINDING: AlertSeverity.LOW,
}

ESCALATION_TARGETS: dict[AlertSeverity, str] = {
    AlertSeverity.HIGH: "supervisor",
    AlertSeverity.CRITICAL: "manager",
}

# alerts raised with commit=False wait here until their transaction commits
_PENDING_KEY = "medsafe.pending_alerts"


async def _raise(
    session: AsyncSession,
    *,
    source: AlertSource,
    kind: AlertKind,
    subject_type: str,
    subject_id: uuid.UUID,
    message: str,
    payload: dict[str, Any] | None = None,
    commit: bool = True,
    now: datetime | None = None,
) -> Alert:
    now = coerce_utc(now) if now else utcnow()
    alert = Alert(
        source=source,
        kind=kind,
        subject_type=subject_type,
        subject_id=subject_id,
        severity=SEVERITY_BY_KIND[kind],
        message=message[:1024],
        created_at=now,
        last_fired_at=now,
        fire_count=1,
    )
    session.add(alert)
    await session.flush()
    await audit_service.record_event(
        session,
        event_type="alert.raised",
        subject_type="alert",
        subject_id=alert.id,
        description=message[:1024],
        payload={
            "kind": kind.value,
            "severity": alert.severity.value,
            "subject_type": subject_type,
            "subject_id": str(subject_id),
            **(payload or {}),
        },
    )
    session.info.setdefault(_PENDING_KEY, []).append(alert)
    if commit:
        await commit_and_dispatch(session)
    return alert


def dispatch_pending(session: AsyncSession) -> list[Alert]:
    """Deliver alerts raised on this session whose rows have been committed.

    Alerts whose transaction was rolled back are no longer persistent and
    are dropped without reaching any delivery channel.
    """
    pending = session.info.pop(_PENDING_KEY, [])
    delivered: list[Alert] = []
    for alert in pending:
        if not inspect(alert).persistent:
            logger.debug("Dropping alert raised in a rolled-back transaction")
            continue
        notification_service.dispatch_alert(alert)
        delivered.append(alert)
    return delivered


async def commit_and_dispatch(session: AsyncSession) -> list[Alert]:
    await session.commit()
    return dispatch_pending(session)


async def raise_missed_dose(
    session: AsyncSession,
    *,
    slot_id: uuid.UUID,
    prescription_id: uuid.UUID,
    scheduled_at: datetime,
    commit: bool = True,
    now: datetime | None = None,
) -> Alert:
    return await _raise(
        session,
        source=AlertSource.SCHEDULER,
        kind=AlertKind.MISSED_DOSE,
        subject_type="slot",
        subject_id=slot_id,
        message=(
            f"Dose scheduled for {scheduled_at.isoformat()} on prescription "
            f"{prescription_id} was not given within the grace window"
        ),
        payload={"prescription_id": str(prescription_id)},
        commit=commit,
        now=now,
    )


async def raise_safety_block(
    session: AsyncSession,
    *,
    subject_type: str,
    subject_id: uuid.UUID,
    summary: str,
    screening_id: uuid.UUID | None = None,
    commit: bool = True,
) -> Alert:
    return await _raise(
        session,
        source=AlertSource.SCREENING,
        kind=AlertKind.SAFETY_BLOCK,
        subject_type=subject_type,
        subject_id=subject_id,
        message=f"Administration blocked: {summary}",
        payload={"screening_id": str(screening_id) if screening_id else None},
        commit=commit,
    )


async def raise_caution_finding(
    session: AsyncSession,
    *,
    screening_id: uuid.UUID,
    summary: str,
    commit: bool = True,
) -> Alert:
    return await _raise(
        session,
        source=AlertSource.SCREENING,
        kind=AlertKind.CAUTION_FINDING,
        subject_type="screening",
        subject_id=screening_id,
        message=f"Caution finding recorded: {summary}",
        commit=commit,
    )


async def raise_custody_discrepancy(
    session: AsyncSession,
    *,
    stock_item_id: uuid.UUID,
    discrepancies: list[dict[str, Any]],
    commit: bool = True,
) -> Alert:
    kinds = sorted({item.get("kind", "unknown") for item in discrepancies})
    return await _raise(
        session,
        source=AlertSource.CUSTODY,
        kind=AlertKind.CUSTODY_DISCREPANCY,
        subject_type="stock_item",
        subject_id=stock_item_id,
        message=(
            f"Custody reconciliation found {len(discrepancies)} discrepancy(ies) "
            f"({', '.join(kinds)}); stock item frozen"
        ),
        payload={"discrepancies": discrepancies},
        commit=commit,
    )


async def raise_custody_rejection(
    session: AsyncSession,
    *,
    stock_item_id: uuid.UUID,
    reason: str,
    detail: str,
    commit: bool = True,
) -> Alert:
    return await _raise(
        session,
        source=AlertSource.CUSTODY,
        kind=AlertKind.CUSTODY_REJECTION,
        subject_type="stock_item",
        subject_id=stock_item_id,
        message=f"Custody entry rejected ({reason}): {detail}",
        payload={"reason": reason},
        commit=commit,
    )


async def raise_scheduling_inconsistency(
    session: AsyncSession,
    *,
    prescription_id: uuid.UUID,
    detail: str,
    commit: bool = True,
) -> Alert:
    return await _raise(
        session,
        source=AlertSource.SCHEDULER,
        kind=AlertKind.SCHEDULING_INCONSISTENCY,
        subject_type="prescription",
        subject_id=prescription_id,
        message=f"Scheduling inconsistency: {detail}",
        commit=commit,
    )


def _refire_interval(alert: Alert, config: EngineConfig):
    if alert.severity is AlertSeverity.CRITICAL:
        return config.critical_refire_interval
    return config.high_refire_interval


async def refire_unacknowledged(
    session: AsyncSession,
    *,
    config: EngineConfig,
    now: datetime | None = None,
) -> list[Alert]:
    """Re-dispatch unacknowledged high/critical alerts whose interval has elapsed."""
    current = coerce_utc(now) if now else utcnow()
    stmt = select(Alert).where(
        Alert.acknowledged_at.is_(None),
        Alert.resolved_at.is_(None),
        Alert.severity.in_(list(ESCALATING_SEVERITIES)),
    )
    result = await session.execute(stmt)
    refired: list[Alert] = []
    for alert in result.scalars().all():
        if current - alert.last_fired_at < _refire_interval(alert, config):
            continue
        alert.fire_count += 1
        alert.last_fired_at = current
        alert.escalated_to = ESCALATION_TARGETS[alert.severity]
        refired.append(alert)
    if not refired:
        return refired
    await session.commit()
    for alert in refired:
        notification_service.dispatch_alert(alert)
    logger.info("Re-fired %s unacknowledged alert(s)", len(refired))
    return refired


async def get_alert(session: AsyncSession, *, alert_id: uuid.UUID) -> Alert:
    alert = await session.get(Alert, alert_id)
    if alert is None:
        raise NotFoundError("Alert not found", alert_id=str(alert_id))
    return alert


async def acknowledge_alert(
    session: AsyncSession, *, alert_id: uuid.UUID, actor_id: uuid.UUID
) -> Alert:
    alert = await get_alert(session, alert_id=alert_id)
    if alert.acknowledged_at is not None:
        raise ConflictError("Alert already acknowledged", alert_id=str(alert_id))
    alert.acknowledged_at = utcnow()
    alert.acknowledged_by = actor_id
    await audit_service.record_event(
        session,
        event_type="alert.acknowledged",
        actor_id=actor_id,
        subject_type="alert",
        subject_id=alert.id,
    )
    await session.commit()
    logger.info("Alert %s acknowledged by %s", alert.id, actor_id)
    return alert


async def resolve_alert(
    session: AsyncSession,
    *,
    alert_id: uuid.UUID,
    actor_id: uuid.UUID,
    note: str | None = None,
) -> Alert:
    alert = await get_alert(session, alert_id=alert_id)
    if alert.resolved_at is not None:
        raise ConflictError("Alert already resolved", alert_id=str(alert_id))
    alert.resolved_at = utcnow()
    alert.resolved_by = actor_id
    alert.resolution_note = note
    await audit_service.record_event(
        session,
        event_type="alert.resolved",
        actor_id=actor_id,
        subject_type="alert",
        subject_id=alert.id,
        description=note,
    )
    await session.commit()
    logger.info("Alert %s resolved by %s", alert.id, actor_id)
    return alert


async def list_alerts(
    session: AsyncSession,
    *,
    open_only: bool = False,
    severity: AlertSeverity | None = None,
    subject_type: str | None = None,
    subject_id: uuid.UUID | None = None,
    skip: int = 0,
    limit: int = 100,
) -> Sequence[Alert]:
    stmt = select(Alert)
    if open_only:
        stmt = stmt.where(Alert.resolved_at.is_(None))
    if severity is not None:
        stmt = stmt.where(Alert.severity == severity)
    if subject_type is not None:
        stmt = stmt.where(Alert.subject_type == subject_type)
    if subject_id is not None:
        stmt = stmt.where(Alert.subject_id == subject_id)
    stmt = stmt.order_by(Alert.created_at.desc()).offset(skip).limit(limit)
    result = await session.execute(stmt)
    return result.scalars().all()
