"""Clinical safety screening of a candidate medication for a resident."""

from __future__ import annotations

import enum
import logging
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medsafe.core.errors import NotFoundError
from medsafe.models.allergy import AllergyRecord
from medsafe.models.medication import (
    ContraindicationRule,
    InteractionRule,
    MedicationRecord,
    normalise_agent,
)
from medsafe.models.screening import ScreeningPurpose, ScreeningRecord
from medsafe.services import alert_service, resident_directory

logger = logging.getLogger(__name__)

SEVERITY_RANK: dict[str, int] = {
    "life_threatening": 4,
    "contraindicated": 4,
    "severe": 3,
    "caution": 3,
    "moderate": 2,
    "mild": 1,
    "informational": 1,
}
BLOCKING_RANK = 4
CAUTION_RANK = 3


class FindingCategory(str, enum.Enum):
    INTERACTION = "interaction"
    CONTRAINDICATION = "contraindication"


def severity_rank(severity: str | None) -> int:
    return SEVERITY_RANK.get((severity or "").lower(), 0)


@dataclass(frozen=True)
class InteractionFinding:
    """One safety concern: a medication pair, or a medication and an allergen."""

    category: FindingCategory
    subject_a: str
    subject_b: str
    severity: str
    evidence: str

    @property
    def rank(self) -> int:
        return severity_rank(self.severity)

    @property
    def sort_key(self) -> tuple[int, int]:
        # allergy risk outranks an interaction of the same nominal severity
        return (self.rank, 1 if self.category is FindingCategory.CONTRAINDICATION else 0)

    @property
    def is_blocking(self) -> bool:
        return self.rank >= BLOCKING_RANK

    def describe(self) -> str:
        return f"{self.category.value} {self.subject_a} / {self.subject_b} ({self.severity})"

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["category"] = self.category.value
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "InteractionFinding":
        return cls(
            category=FindingCategory(payload["category"]),
            subject_a=payload["subject_a"],
            subject_b=payload["subject_b"],
            severity=payload["severity"],
            evidence=payload["evidence"],
        )


@dataclass(frozen=True)
class ScreeningOutcome:
    """Result of one screening run and the id of the record proving it ran."""

    findings: tuple[InteractionFinding, ...] = field(default_factory=tuple)
    max_severity: str | None = None
    blocking: bool = False
    screening_id: uuid.UUID | None = None

    @property
    def is_clean(self) -> bool:
        return not self.findings

    def summary(self) -> str:
        if not self.findings:
            return "no findings"
        return "; ".join(finding.describe() for finding in self.findings)


def evaluate_candidate(
    candidate: MedicationRecord,
    *,
    active_medications: Iterable[MedicationRecord],
    allergies: Iterable[AllergyRecord],
    interaction_rules: Iterable[InteractionRule],
    contraindication_rules: Iterable[ContraindicationRule],
) -> list[InteractionFinding]:
    """Pure evaluation of rules; returns findings ordered most urgent first."""
    candidate_keys = candidate.agent_keys()
    pair_rules = list(interaction_rules)
    allergen_rules = list(contraindication_rules)
    findings: list[InteractionFinding] = []
    seen: set[tuple[str, str, str]] = set()

    for other in active_medications:
        other_keys = other.agent_keys()
        for rule in pair_rules:
            if not rule.matches(candidate_keys, other_keys):
                continue
            key = (other.name, rule.agent_a, rule.agent_b)
            if key in seen:
                continue
            seen.add(key)
            findings.append(
                InteractionFinding(
                    category=FindingCategory.INTERACTION,
                    subject_a=candidate.name,
                    subject_b=other.name,
                    severity=rule.severity.value,
                    evidence=rule.evidence,
                )
            )

    for allergy in allergies:
        allergen = normalise_agent(allergy.allergen)
        if not allergen:
            continue
        if allergen in candidate_keys and (allergen, allergen, "direct") not in seen:
            seen.add((allergen, allergen, "direct"))
            findings.append(
                InteractionFinding(
                    category=FindingCategory.CONTRAINDICATION,
                    subject_a=candidate.name,
                    subject_b=allergy.allergen,
                    severity=allergy.severity.value,
                    evidence=f"Recorded allergy to {allergy.allergen}"
                    + (f": {allergy.reaction}" if allergy.reaction else ""),
                )
            )
        for rule in allergen_rules:
            if rule.allergen != allergen or rule.agent not in candidate_keys:
                continue
            key = (allergen, rule.agent, "rule")
            if key in seen:
                continue
            seen.add(key)
            findings.append(
                InteractionFinding(
                    category=FindingCategory.CONTRAINDICATION,
                    subject_a=candidate.name,
                    subject_b=allergy.allergen,
                    severity=rule.severity or allergy.severity.value,
                    evidence=rule.evidence,
                )
            )

    findings.sort(key=lambda finding: finding.sort_key, reverse=True)
    return findings


def aggregate(findings: Sequence[InteractionFinding]) -> tuple[str | None, bool]:
    """Return the deciding severity and whether it blocks."""
    if not findings:
        return None, False
    top = max(findings, key=lambda finding: finding.sort_key)
    return top.severity, top.is_blocking


async def screen_candidate(
    session: AsyncSession,
    *,
    resident_id: uuid.UUID,
    medication_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
    purpose: ScreeningPurpose = ScreeningPurpose.AD_HOC,
    prescription_id: uuid.UUID | None = None,
    exclude_prescription_id: uuid.UUID | None = None,
    slot_id: uuid.UUID | None = None,
    commit: bool = True,
) -> ScreeningOutcome:
    """Screen a medication for a resident and persist the result, findings or not."""
    candidate = await session.get(MedicationRecord, medication_id)
    if candidate is None:
        raise NotFoundError("Medication not found", medication_id=str(medication_id))

    active = await resident_directory.list_active_prescriptions(
        session,
        resident_id=resident_id,
        exclude_prescription_id=exclude_prescription_id,
    )
    allergies = await resident_directory.list_allergies(session, resident_id=resident_id)
    interaction_rules = (await session.execute(select(InteractionRule))).scalars().all()
    contraindication_rules = (
        (await session.execute(select(ContraindicationRule))).scalars().all()
    )

    findings = evaluate_candidate(
        candidate,
        active_medications=[prescription.medication for prescription in active],
        allergies=allergies,
        interaction_rules=interaction_rules,
        contraindication_rules=contraindication_rules,
    )
    max_severity, blocking = aggregate(findings)

    record = ScreeningRecord(
        resident_id=resident_id,
        medication_id=medication_id,
        prescription_id=prescription_id,
        slot_id=slot_id,
        purpose=purpose,
        findings=[finding.to_payload() for finding in findings],
        max_severity=max_severity,
        blocked=blocking,
        actor_id=actor_id,
    )
    session.add(record)
    await session.flush()

    outcome = ScreeningOutcome(
        findings=tuple(findings),
        max_severity=max_severity,
        blocking=blocking,
        screening_id=record.id,
    )
    if not blocking and any(finding.rank == CAUTION_RANK for finding in findings):
        await alert_service.raise_caution_finding(
            session, screening_id=record.id, summary=outcome.summary(), commit=False
        )
    if commit:
        await alert_service.commit_and_dispatch(session)

    logger.info(
        "Screened medication %s for resident %s (%s): %s finding(s), max=%s, blocking=%s",
        candidate.code,
        resident_id,
        purpose.value,
        len(findings),
        max_severity,
        blocking,
    )
    return outcome


async def mark_overridden(
    session: AsyncSession, *, screening_id: uuid.UUID, reason: str
) -> ScreeningRecord:
    """Stamp a screening as overridden; its findings are left exactly as recorded."""
    record = await session.get(ScreeningRecord, screening_id)
    if record is None:
        raise NotFoundError("Screening record not found", screening_id=str(screening_id))
    record.overridden = True
    record.override_reason = reason
    return record


async def get_screening(
    session: AsyncSession, *, screening_id: uuid.UUID
) -> ScreeningRecord:
    record = await session.get(ScreeningRecord, screening_id)
    if record is None:
        raise NotFoundError("Screening record not found", screening_id=str(screening_id))
    return record
