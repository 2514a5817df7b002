"""Slot resolution and alert acknowledgement endpoint tests."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio


async def _publish(client: AsyncClient, headers: dict[str, str], **fields: Any) -> str:
    response = await client.post("/api/v1/medications", json=fields, headers=headers)
    assert response.status_code == 201
    return response.json()["id"]


async def _active_prescription(
    client: AsyncClient,
    headers: dict[str, str],
    *,
    medication_id: str,
    resident_id: str,
    frequency: str,
    acknowledgement: str | None = None,
    **extra: Any,
) -> str:
    today = datetime.now(UTC).date()
    created = await client.post(
        "/api/v1/prescriptions",
        json={
            "resident_id": resident_id,
            "medication_id": medication_id,
            "dosage": "1 tablet",
            "route": "oral",
            "frequency": frequency,
            "start_date": today.isoformat(),
            "prescriber_id": str(uuid.uuid4()),
            **extra,
        },
        headers=headers,
    )
    assert created.status_code == 201
    prescription_id = created.json()["id"]
    body: dict[str, Any] = {}
    if acknowledgement:
        body = {"acknowledge_findings": True, "acknowledgement_note": acknowledgement}
    activated = await client.post(
        f"/api/v1/prescriptions/{prescription_id}/activate", json=body, headers=headers
    )
    assert activated.status_code == 200
    return prescription_id


async def _only_slot(client: AsyncClient, headers: dict[str, str], prescription_id: str) -> dict:
    response = await client.get(f"/api/v1/prescriptions/{prescription_id}/slots", headers=headers)
    assert response.status_code == 200
    (slot,) = response.json()
    return slot


async def test_refused_dose_cannot_be_resolved_twice(app_context: dict[str, Any]) -> None:
    client: AsyncClient = app_context["client"]  # type: ignore[assignment]
    headers = app_context["headers"]
    medication_id = await _publish(
        client, headers, code="PARA500", name="Paracetamol", therapeutic_class="analgesic"
    )
    prescription_id = await _active_prescription(
        client,
        headers,
        medication_id=medication_id,
        resident_id=str(uuid.uuid4()),
        frequency="STAT",
    )
    slot = await _only_slot(client, headers, prescription_id)
    assert slot["status"] == "due"

    refused = await client.post(
        f"/api/v1/slots/{slot['id']}/resolve",
        json={"outcome": "refused", "note": "Declined"},
        headers=headers,
    )
    assert refused.status_code == 200
    assert refused.json()["status"] == "refused"
    assert refused.json()["resolved_by"] == str(app_context["actor_id"])

    again = await client.post(
        f"/api/v1/slots/{slot['id']}/resolve", json={"outcome": "administered"}, headers=headers
    )
    assert again.status_code == 409


async def test_contraindicated_dose_is_blocked_then_overridden(
    app_context: dict[str, Any],
) -> None:
    client: AsyncClient = app_context["client"]  # type: ignore[assignment]
    headers = app_context["headers"]
    resident_id = str(uuid.uuid4())
    warfarin_id = await _publish(
        client,
        headers,
        code="WARF5",
        name="Warfarin",
        active_ingredients=["warfarin"],
        therapeutic_class="anticoagulant",
    )
    aspirin_id = await _publish(
        client,
        headers,
        code="ASP75",
        name="Aspirin",
        active_ingredients=["aspirin"],
        therapeutic_class="nsaid",
    )
    rule = await client.post(
        "/api/v1/medications/interaction-rules",
        json={
            "agent_a": "warfarin",
            "agent_b": "nsaid",
            "severity": "contraindicated",
            "evidence": "Major bleeding risk.",
        },
        headers=headers,
    )
    assert rule.status_code == 201

    await _active_prescription(
        client, headers, medication_id=warfarin_id, resident_id=resident_id, frequency="OD"
    )
    aspirin_rx = await _active_prescription(
        client,
        headers,
        medication_id=aspirin_id,
        resident_id=resident_id,
        frequency="STAT",
        acknowledgement="Single loading dose agreed with GP",
    )
    slot = await _only_slot(client, headers, aspirin_rx)

    blocked = await client.post(
        f"/api/v1/slots/{slot['id']}/resolve", json={"outcome": "administered"}, headers=headers
    )
    assert blocked.status_code == 403
    body = blocked.json()
    assert body["code"] == "clinical_safety_block"
    assert body["findings"][0]["severity"] == "contraindicated"
    assert body["screening_id"]
    assert body["alert_id"]

    unchanged = await client.get(f"/api/v1/slots/{slot['id']}", headers=headers)
    assert unchanged.json()["status"] == "due"

    alert = await client.get(f"/api/v1/alerts/{body['alert_id']}", headers=headers)
    assert alert.status_code == 200
    assert alert.json()["severity"] == "critical"
    assert alert.json()["kind"] == "safety_block"

    critical = await client.get(
        "/api/v1/alerts", params={"severity": "critical", "open_only": True}, headers=headers
    )
    assert [item["id"] for item in critical.json()] == [body["alert_id"]]

    acknowledged = await client.post(
        f"/api/v1/alerts/{body['alert_id']}/acknowledge", headers=headers
    )
    assert acknowledged.status_code == 200
    assert acknowledged.json()["acknowledged_by"] == str(app_context["actor_id"])
    repeat = await client.post(f"/api/v1/alerts/{body['alert_id']}/acknowledge", headers=headers)
    assert repeat.status_code == 409

    overridden = await client.post(
        f"/api/v1/slots/{slot['id']}/resolve",
        json={
            "outcome": "administered",
            "override_reason": "Haematologist confirmed single dose is safe",
        },
        headers=headers,
    )
    assert overridden.status_code == 200
    assert overridden.json()["status"] == "administered"
    assert overridden.json()["override_reason"].startswith("Haematologist")

    resolved = await client.post(
        f"/api/v1/alerts/{body['alert_id']}/resolve",
        json={"note": "Override documented"},
        headers=headers,
    )
    assert resolved.status_code == 200
    assert resolved.json()["resolution_note"] == "Override documented"


async def test_prn_dose_endpoint_enforces_interval(app_context: dict[str, Any]) -> None:
    client: AsyncClient = app_context["client"]  # type: ignore[assignment]
    headers = app_context["headers"]
    medication_id = await _publish(
        client, headers, code="PARA500", name="Paracetamol", therapeutic_class="analgesic"
    )
    prescription_id = await _active_prescription(
        client,
        headers,
        medication_id=medication_id,
        resident_id=str(uuid.uuid4()),
        frequency="PRN",
    )

    first = await client.post(
        f"/api/v1/prescriptions/{prescription_id}/prn-doses",
        json={"note": "Back pain"},
        headers=headers,
    )
    assert first.status_code == 201
    assert first.json()["is_prn"] is True
    assert first.json()["status"] == "administered"

    second = await client.post(
        f"/api/v1/prescriptions/{prescription_id}/prn-doses", json={}, headers=headers
    )
    assert second.status_code == 422
    assert "next_allowed_at" in second.json()["context"]
