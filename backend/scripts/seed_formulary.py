"""Seed a small demonstration formulary with interaction and allergy rules."""
from __future__ import annotations

import asyncio
import uuid

from sqlalchemy import select

from medsafe.db.session import get_sessionmaker
from medsafe.models import ControlledSchedule, InteractionSeverity, MedicationRecord
from medsafe.services import medication_service

SEED_ACTOR_ID = uuid.UUID("00000000-0000-4000-8000-000000000001")

MEDICATIONS = [
    {
        "code": "WARF5",
        "name": "Warfarin",
        "strength": "5 mg tablet",
        "active_ingredients": ["warfarin"],
        "therapeutic_class": "anticoagulant",
    },
    {
        "code": "ASP75",
        "name": "Aspirin",
        "strength": "75 mg dispersible tablet",
        "active_ingredients": ["aspirin"],
        "therapeutic_class": "nsaid",
    },
    {
        "code": "AMOX500",
        "name": "Amoxicillin",
        "strength": "500 mg capsule",
        "active_ingredients": ["amoxicillin"],
        "therapeutic_class": "penicillin",
    },
    {
        "code": "PARA500",
        "name": "Paracetamol",
        "strength": "500 mg tablet",
        "active_ingredients": ["paracetamol"],
        "therapeutic_class": "analgesic",
    },
    {
        "code": "MORPH10",
        "name": "Morphine sulfate",
        "strength": "10 mg/5 ml oral solution",
        "active_ingredients": ["morphine"],
        "therapeutic_class": "opioid",
        "controlled_schedule": ControlledSchedule.SCHEDULE_2,
    },
]

INTERACTIONS = [
    ("warfarin", "nsaid", InteractionSeverity.CONTRAINDICATED, "Major bleeding risk."),
    ("warfarin", "paracetamol", InteractionSeverity.CAUTION, "INR may rise with regular use."),
    ("opioid", "benzodiazepine", InteractionSeverity.CAUTION, "Additive respiratory depression."),
]

CONTRAINDICATIONS = [
    ("penicillin", "amoxicillin", None, "Amoxicillin is a penicillin."),
    ("penicillin", "cephalosporin", "moderate", "Possible cross-sensitivity."),
]


async def seed_formulary() -> None:
    sessionmaker = get_sessionmaker()
    async with sessionmaker() as session:
        existing = set(
            (await session.execute(select(MedicationRecord.code))).scalars().all()
        )
        published = 0
        for item in MEDICATIONS:
            if item["code"] in existing:
                continue
            await medication_service.publish_medication(
                session, actor_id=SEED_ACTOR_ID, **item
            )
            published += 1
        if published:
            for agent_a, agent_b, severity, evidence in INTERACTIONS:
                await medication_service.add_interaction_rule(
                    session,
                    agent_a=agent_a,
                    agent_b=agent_b,
                    severity=severity,
                    evidence=evidence,
                    actor_id=SEED_ACTOR_ID,
                )
            for allergen, agent, severity, evidence in CONTRAINDICATIONS:
                await medication_service.add_contraindication_rule(
                    session,
                    allergen=allergen,
                    agent=agent,
                    severity=severity,
                    evidence=evidence,
                    actor_id=SEED_ACTOR_ID,
                )
        print(f"Published {published} medication(s).")


def main() -> None:
    asyncio.run(seed_formulary())


if __name__ == "__main__":
    main()
