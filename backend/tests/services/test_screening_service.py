"""Tests for clinical safety screening."""

from __future__ import annotations

import uuid

import pytest
from sqlalchemy import select

from medsafe.models import (
    Alert,
    AlertKind,
    AlertSeverity,
    AllergyRecord,
    AllergySeverity,
    ContraindicationRule,
    InteractionRule,
    InteractionSeverity,
    MedicationRecord,
    ScreeningRecord,
)
from medsafe.services import resident_directory, screening_service
from medsafe.services.screening_service import FindingCategory


def _medication(name: str, ingredients: list[str], klass: str | None = None) -> MedicationRecord:
    return MedicationRecord(
        code=name.upper()[:6],
        name=name,
        active_ingredients=ingredients,
        therapeutic_class=klass,
    )


def _allergy(allergen: str, severity: AllergySeverity) -> AllergyRecord:
    return AllergyRecord(resident_id=uuid.uuid4(), allergen=allergen, severity=severity)


def test_clean_candidate_has_no_findings() -> None:
    findings = screening_service.evaluate_candidate(
        _medication("Paracetamol", ["paracetamol"]),
        active_medications=[_medication("Simvastatin", ["simvastatin"], "statin")],
        allergies=[_allergy("latex", AllergySeverity.SEVERE)],
        interaction_rules=[],
        contraindication_rules=[],
    )
    assert findings == []
    assert screening_service.aggregate(findings) == (None, False)


def test_interaction_rule_matches_on_class_in_either_order() -> None:
    rule = InteractionRule(
        agent_a="nsaid",
        agent_b="warfarin",
        severity=InteractionSeverity.CONTRAINDICATED,
        evidence="Bleeding",
    )
    findings = screening_service.evaluate_candidate(
        _medication("Warfarin", ["warfarin"], "anticoagulant"),
        active_medications=[_medication("Ibuprofen", ["ibuprofen"], "NSAID")],
        allergies=[],
        interaction_rules=[rule],
        contraindication_rules=[],
    )
    assert len(findings) == 1
    assert findings[0].category is FindingCategory.INTERACTION
    assert findings[0].subject_b == "Ibuprofen"
    assert screening_service.aggregate(findings) == ("contraindicated", True)


def test_direct_allergy_uses_recorded_severity() -> None:
    findings = screening_service.evaluate_candidate(
        _medication("Amoxicillin", ["amoxicillin"], "penicillin"),
        active_medications=[],
        allergies=[_allergy("Penicillin", AllergySeverity.LIFE_THREATENING)],
        interaction_rules=[],
        contraindication_rules=[],
    )
    (finding,) = findings
    assert finding.category is FindingCategory.CONTRAINDICATION
    assert finding.severity == "life_threatening"
    assert finding.is_blocking


def test_contraindication_rule_can_force_severity() -> None:
    rule = ContraindicationRule(
        allergen="penicillin", agent="cephalosporin", severity="moderate", evidence="Cross"
    )
    findings = screening_service.evaluate_candidate(
        _medication("Cefalexin", ["cefalexin"], "cephalosporin"),
        active_medications=[],
        allergies=[_allergy("penicillin", AllergySeverity.SEVERE)],
        interaction_rules=[],
        contraindication_rules=[rule],
    )
    (finding,) = findings
    assert finding.severity == "moderate"
    assert not finding.is_blocking


def test_contraindication_outranks_interaction_of_equal_rank() -> None:
    interaction = InteractionRule(
        agent_a="opioid",
        agent_b="benzodiazepine",
        severity=InteractionSeverity.CAUTION,
        evidence="Respiratory depression",
    )
    findings = screening_service.evaluate_candidate(
        _medication("Codeine", ["codeine"], "opioid"),
        active_medications=[_medication("Diazepam", ["diazepam"], "benzodiazepine")],
        allergies=[_allergy("codeine", AllergySeverity.SEVERE)],
        interaction_rules=[interaction],
        contraindication_rules=[],
    )
    assert [finding.category for finding in findings] == [
        FindingCategory.CONTRAINDICATION,
        FindingCategory.INTERACTION,
    ]
    assert screening_service.aggregate(findings) == ("severe", False)


def test_finding_payload_round_trip() -> None:
    finding = screening_service.InteractionFinding(
        category=FindingCategory.INTERACTION,
        subject_a="A",
        subject_b="B",
        severity="caution",
        evidence="x",
    )
    assert screening_service.InteractionFinding.from_payload(finding.to_payload()) == finding


@pytest.mark.asyncio
async def test_screen_persists_record_even_when_clean(
    session, formulary, resident_id, actor_id
) -> None:
    outcome = await screening_service.screen_candidate(
        session,
        resident_id=resident_id,
        medication_id=formulary["paracetamol"].id,
        actor_id=actor_id,
    )
    assert outcome.is_clean
    record = await screening_service.get_screening(session, screening_id=outcome.screening_id)
    assert record.findings == []
    assert record.blocked is False
    assert record.max_severity is None


@pytest.mark.asyncio
async def test_screen_against_active_prescription_blocks(
    session, formulary, resident_id, actor_id, prescribe
) -> None:
    await prescribe(formulary["warfarin"], resident_id=resident_id)
    outcome = await screening_service.screen_candidate(
        session,
        resident_id=resident_id,
        medication_id=formulary["aspirin"].id,
        actor_id=actor_id,
    )
    assert outcome.blocking is True
    assert outcome.max_severity == "contraindicated"
    assert "Warfarin" in outcome.summary()

    records = (await session.execute(select(ScreeningRecord))).scalars().all()
    assert any(record.id == outcome.screening_id and record.blocked for record in records)


@pytest.mark.asyncio
async def test_caution_finding_raises_low_alert(
    session, formulary, resident_id, actor_id, prescribe
) -> None:
    await prescribe(formulary["warfarin"], resident_id=resident_id)
    outcome = await screening_service.screen_candidate(
        session,
        resident_id=resident_id,
        medication_id=formulary["paracetamol"].id,
        actor_id=actor_id,
    )
    assert outcome.blocking is False
    assert outcome.max_severity == "caution"

    alerts = (
        await session.execute(select(Alert).where(Alert.subject_id == outcome.screening_id))
    ).scalars().all()
    assert len(alerts) == 1
    assert alerts[0].kind is AlertKind.CAUTION_FINDING
    assert alerts[0].severity is AlertSeverity.LOW


@pytest.mark.asyncio
async def test_inactive_allergies_are_ignored(
    session, formulary, resident_id, actor_id
) -> None:
    record = await resident_directory.record_allergy(
        session,
        resident_id=resident_id,
        allergen="penicillin",
        severity=AllergySeverity.LIFE_THREATENING,
        actor_id=actor_id,
    )
    record.active = False
    await session.commit()

    outcome = await screening_service.screen_candidate(
        session,
        resident_id=resident_id,
        medication_id=formulary["amoxicillin"].id,
    )
    assert outcome.is_clean
