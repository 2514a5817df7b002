"""Tests for alert sinks, escalation re-fire and acknowledgement."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta

import pytest

from medsafe.core.errors import ConflictError, NotFoundError
from medsafe.models import AlertKind, AlertSeverity
from medsafe.services import alert_service, notification_service

pytestmark = pytest.mark.asyncio


async def _missed(session) -> object:
    return await alert_service.raise_missed_dose(
        session,
        slot_id=uuid.uuid4(),
        prescription_id=uuid.uuid4(),
        scheduled_at=datetime(2030, 1, 1, 8, 0, tzinfo=UTC),
    )


async def _block(session) -> object:
    return await alert_service.raise_safety_block(
        session,
        subject_type="slot",
        subject_id=uuid.uuid4(),
        summary="contraindication Amoxicillin / Penicillin (life_threatening)",
    )


async def test_severity_follows_kind(session) -> None:
    missed = await _missed(session)
    blocked = await _block(session)
    caution = await alert_service.raise_caution_finding(
        session, screening_id=uuid.uuid4(), summary="interaction (caution)"
    )
    assert missed.severity is AlertSeverity.HIGH
    assert blocked.severity is AlertSeverity.CRITICAL
    assert caution.severity is AlertSeverity.LOW
    assert missed.fire_count == 1
    assert missed.escalated_to is None


async def test_high_alert_refires_to_supervisor(session, engine_config) -> None:
    alert = await _missed(session)
    first_fired = alert.last_fired_at

    early = await alert_service.refire_unacknowledged(
        session, config=engine_config, now=first_fired + timedelta(minutes=10)
    )
    assert early == []

    later = first_fired + timedelta(minutes=16)
    refired = await alert_service.refire_unacknowledged(
        session, config=engine_config, now=later
    )
    assert [item.id for item in refired] == [alert.id]
    await session.refresh(alert)
    assert alert.fire_count == 2
    assert alert.escalated_to == "supervisor"
    assert alert.last_fired_at == later


async def test_critical_alert_refires_to_manager(session, engine_config) -> None:
    alert = await _block(session)
    refired = await alert_service.refire_unacknowledged(
        session, config=engine_config, now=alert.last_fired_at + timedelta(minutes=6)
    )
    assert [item.id for item in refired] == [alert.id]
    assert refired[0].escalated_to == "manager"


async def test_low_alerts_never_refire(session, engine_config) -> None:
    caution = await alert_service.raise_caution_finding(
        session, screening_id=uuid.uuid4(), summary="interaction (caution)"
    )
    refired = await alert_service.refire_unacknowledged(
        session, config=engine_config, now=caution.last_fired_at + timedelta(days=1)
    )
    assert refired == []


async def test_acknowledged_alert_stops_refiring(session, engine_config, actor_id) -> None:
    alert = await _block(session)
    acknowledged = await alert_service.acknowledge_alert(
        session, alert_id=alert.id, actor_id=actor_id
    )
    assert acknowledged.acknowledged_by == actor_id
    assert acknowledged.is_open is True

    refired = await alert_service.refire_unacknowledged(
        session, config=engine_config, now=alert.last_fired_at + timedelta(hours=1)
    )
    assert refired == []

    with pytest.raises(ConflictError):
        await alert_service.acknowledge_alert(session, alert_id=alert.id, actor_id=actor_id)


async def test_resolve_closes_alert_once(session, actor_id) -> None:
    alert = await _missed(session)
    resolved = await alert_service.resolve_alert(
        session, alert_id=alert.id, actor_id=actor_id, note="Dose given late"
    )
    assert resolved.is_open is False
    assert resolved.resolution_note == "Dose given late"

    with pytest.raises(ConflictError):
        await alert_service.resolve_alert(session, alert_id=alert.id, actor_id=actor_id)
    with pytest.raises(NotFoundError):
        await alert_service.resolve_alert(session, alert_id=uuid.uuid4(), actor_id=actor_id)


async def test_list_alerts_filters(session, actor_id) -> None:
    missed = await _missed(session)
    blocked = await _block(session)
    await alert_service.resolve_alert(session, alert_id=missed.id, actor_id=actor_id)

    open_alerts = await alert_service.list_alerts(session, open_only=True)
    assert [alert.id for alert in open_alerts] == [blocked.id]

    critical = await alert_service.list_alerts(session, severity=AlertSeverity.CRITICAL)
    assert [alert.id for alert in critical] == [blocked.id]

    by_subject = await alert_service.list_alerts(
        session, subject_type="slot", subject_id=missed.subject_id
    )
    assert [alert.kind for alert in by_subject] == [AlertKind.MISSED_DOSE]


async def test_dispatch_logs_at_severity_level(session, caplog) -> None:
    with caplog.at_level(logging.INFO, logger="medsafe.services.notification_service"):
        alert = await _block(session)
    records = [
        record
        for record in caplog.records
        if record.name == "medsafe.services.notification_service"
    ]
    assert records
    assert records[0].levelno == logging.ERROR
    assert str(alert.id) in records[0].getMessage()


async def test_alert_in_open_transaction_waits_for_commit(session, monkeypatch) -> None:
    delivered: list = []
    monkeypatch.setattr(notification_service, "dispatch_alert", delivered.append)

    alert = await alert_service.raise_safety_block(
        session,
        subject_type="slot",
        subject_id=uuid.uuid4(),
        summary="contraindication Warfarin / nsaid",
        commit=False,
    )
    assert delivered == []

    sent = await alert_service.commit_and_dispatch(session)
    assert sent == [alert]
    assert delivered == [alert]
    assert alert_service.dispatch_pending(session) == []


async def test_rolled_back_alert_is_never_delivered(session, monkeypatch) -> None:
    delivered: list = []
    monkeypatch.setattr(notification_service, "dispatch_alert", delivered.append)
    subject_id = uuid.uuid4()

    await alert_service.raise_safety_block(
        session,
        subject_type="slot",
        subject_id=subject_id,
        summary="contraindication Warfarin / nsaid",
        commit=False,
    )
    await session.rollback()
    assert alert_service.dispatch_pending(session) == []
    assert delivered == []
    assert await alert_service.list_alerts(session, subject_id=subject_id) == []

    committed = await _missed(session)
    assert delivered == [committed]


def test_alert_email_mentions_escalation() -> None:
    alert = type(
        "AlertStub",
        (),
        {
            "severity": AlertSeverity.HIGH,
            "kind": AlertKind.MISSED_DOSE,
            "message": "Dose not given",
            "subject_type": "slot",
            "subject_id": uuid.uuid4(),
            "created_at": datetime(2030, 1, 1, 9, 0, tzinfo=UTC),
            "fire_count": 2,
            "escalated_to": "supervisor",
        },
    )()
    subject, body = notification_service.build_alert_email(alert)
    assert subject == "[HIGH] missed dose"
    assert "Escalated to: supervisor" in body
    assert "Times fired: 2" in body
