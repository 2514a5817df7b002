"""Formulary endpoint tests."""

from __future__ import annotations

from typing import Any

import pytest
from httpx import AsyncClient

pytestmark = pytest.mark.asyncio


async def test_publish_and_supersede_medication(app_context: dict[str, Any]) -> None:
    client: AsyncClient = app_context["client"]  # type: ignore[assignment]
    headers = app_context["headers"]

    created = await client.post(
        "/api/v1/medications",
        json={
            "code": "AML5",
            "name": "Amlodipine",
            "strength": "5 mg tablet",
            "active_ingredients": ["amlodipine"],
            "therapeutic_class": "calcium channel blocker",
        },
        headers=headers,
    )
    assert created.status_code == 201
    original = created.json()
    assert original["version"] == 1
    assert original["controlled_schedule"] == "none"
    assert original["created_by"] == str(app_context["actor_id"])

    duplicate = await client.post(
        "/api/v1/medications",
        json={"code": "AML5", "name": "Amlodipine again"},
        headers=headers,
    )
    assert duplicate.status_code == 409

    revised = await client.post(
        f"/api/v1/medications/{original['id']}/versions",
        json={"strength": "10 mg tablet"},
        headers=headers,
    )
    assert revised.status_code == 201
    body = revised.json()
    assert body["version"] == 2
    assert body["lineage_id"] == original["lineage_id"]
    assert body["supersedes_id"] == original["id"]
    assert body["name"] == "Amlodipine"
    assert body["strength"] == "10 mg tablet"

    old = await client.get(f"/api/v1/medications/{original['id']}", headers=headers)
    assert old.status_code == 200
    assert old.json()["superseded_at"] is not None
    assert old.json()["strength"] == "5 mg tablet"

    again = await client.post(
        f"/api/v1/medications/{original['id']}/versions",
        json={"strength": "2.5 mg tablet"},
        headers=headers,
    )
    assert again.status_code == 409


async def test_rules_are_validated(app_context: dict[str, Any]) -> None:
    client: AsyncClient = app_context["client"]  # type: ignore[assignment]
    headers = app_context["headers"]

    rule = await client.post(
        "/api/v1/medications/interaction-rules",
        json={
            "agent_a": "Clarithromycin",
            "agent_b": "simvastatin",
            "severity": "contraindicated",
            "evidence": "Rhabdomyolysis risk.",
        },
        headers=headers,
    )
    assert rule.status_code == 201

    self_pair = await client.post(
        "/api/v1/medications/interaction-rules",
        json={
            "agent_a": "warfarin",
            "agent_b": "Warfarin",
            "severity": "mild",
            "evidence": "n/a",
        },
        headers=headers,
    )
    assert self_pair.status_code == 422

    contraindication = await client.post(
        "/api/v1/medications/contraindication-rules",
        json={"allergen": "Penicillin", "agent": "penicillin", "evidence": "Class allergy."},
        headers=headers,
    )
    assert contraindication.status_code == 201
    assert contraindication.json()["severity"] is None


async def test_unknown_medication_is_404(app_context: dict[str, Any]) -> None:
    client: AsyncClient = app_context["client"]  # type: ignore[assignment]
    response = await client.get(
        "/api/v1/medications/00000000-0000-0000-0000-000000000000",
        headers=app_context["headers"],
    )
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"
