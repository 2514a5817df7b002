"""Test fixtures for the medication safety backend."""
from __future__ import annotations

import os
import uuid
from collections.abc import AsyncIterator
from datetime import UTC, date, datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test.db")

from medsafe.api.deps import get_config
from medsafe.core.config import get_settings
from medsafe.core.security import create_access_token
from medsafe.core.settings import EngineConfig
from medsafe.db.base import Base
from medsafe.db.session import dispose_engine, get_sessionmaker
from medsafe.main import app
from medsafe.models import (
    ControlledSchedule,
    InteractionSeverity,
    MedicationRecord,
)
from medsafe.services import medication_service, prescription_service

# all scheduling tests run in a window well clear of the real clock
START_DATE = date(2030, 1, 1)
START_OF_DAY = datetime(2030, 1, 1, 0, 0, tzinfo=UTC)


@pytest.fixture(scope="session")
def db_url(tmp_path_factory: pytest.TempPathFactory) -> str:
    """Provide a temporary SQLite database URL for the test session."""
    db_path = tmp_path_factory.mktemp("db") / "test.db"
    return f"sqlite+aiosqlite:///{db_path}"


@pytest.fixture()
def engine_config() -> EngineConfig:
    """UTC care home so local dose times equal stored timestamps."""
    return EngineConfig(timezone="UTC")


@pytest.fixture()
def actor_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture()
def resident_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest_asyncio.fixture()
async def reset_database(db_url: str) -> AsyncIterator[None]:
    """Drop and recreate the database schema for an isolated test."""
    os.environ["DATABASE_URL"] = db_url
    get_settings.cache_clear()
    get_settings()

    await dispose_engine(db_url)
    engine = create_async_engine(db_url, future=True)
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.drop_all)
        await connection.run_sync(Base.metadata.create_all)
    await engine.dispose()
    yield
    await dispose_engine(db_url)


@pytest_asyncio.fixture()
async def session(reset_database: None, db_url: str) -> AsyncIterator[AsyncSession]:
    sessionmaker = get_sessionmaker(db_url)
    async with sessionmaker() as db_session:
        yield db_session


@pytest_asyncio.fixture()
async def formulary(
    session: AsyncSession, actor_id: uuid.UUID
) -> dict[str, MedicationRecord]:
    """Publish a small formulary with one contraindicated and one caution interaction."""
    medications = {
        "warfarin": await medication_service.publish_medication(
            session,
            code="WARF5",
            name="Warfarin",
            strength="5 mg tablet",
            active_ingredients=["warfarin"],
            therapeutic_class="anticoagulant",
            actor_id=actor_id,
        ),
        "aspirin": await medication_service.publish_medication(
            session,
            code="ASP75",
            name="Aspirin",
            strength="75 mg tablet",
            active_ingredients=["aspirin"],
            therapeutic_class="nsaid",
            actor_id=actor_id,
        ),
        "paracetamol": await medication_service.publish_medication(
            session,
            code="PARA500",
            name="Paracetamol",
            strength="500 mg tablet",
            active_ingredients=["paracetamol"],
            therapeutic_class="analgesic",
            actor_id=actor_id,
        ),
        "amoxicillin": await medication_service.publish_medication(
            session,
            code="AMOX500",
            name="Amoxicillin",
            strength="500 mg capsule",
            active_ingredients=["amoxicillin"],
            therapeutic_class="penicillin",
            actor_id=actor_id,
        ),
        "morphine": await medication_service.publish_medication(
            session,
            code="MORPH10",
            name="Morphine sulfate",
            strength="10 mg/5 ml oral solution",
            active_ingredients=["morphine"],
            therapeutic_class="opioid",
            controlled_schedule=ControlledSchedule.SCHEDULE_2,
            actor_id=actor_id,
        ),
    }
    await medication_service.add_interaction_rule(
        session,
        agent_a="warfarin",
        agent_b="nsaid",
        severity=InteractionSeverity.CONTRAINDICATED,
        evidence="Major bleeding risk.",
        actor_id=actor_id,
    )
    await medication_service.add_interaction_rule(
        session,
        agent_a="Warfarin",
        agent_b="Paracetamol",
        severity=InteractionSeverity.CAUTION,
        evidence="INR may rise with regular use.",
        actor_id=actor_id,
    )
    return medications


@pytest_asyncio.fixture()
async def app_context(
    reset_database: None, engine_config: EngineConfig, actor_id: uuid.UUID
) -> AsyncIterator[dict[str, object]]:
    """Yield an authenticated async client; the actor is the token subject."""
    app.dependency_overrides[get_config] = lambda: engine_config
    token = create_access_token(str(actor_id))
    context: dict[str, object] = {
        "actor_id": actor_id,
        "headers": {"Authorization": f"Bearer {token}"},
    }
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            context["client"] = client
            yield context
    finally:
        app.dependency_overrides.pop(get_config, None)


@pytest.fixture()
def prescribe(session: AsyncSession, actor_id: uuid.UUID, engine_config: EngineConfig):
    """Factory that drafts (and by default activates) a prescription for a resident."""

    async def _prescribe(
        medication: MedicationRecord,
        *,
        resident_id: uuid.UUID,
        frequency: str = "OD",
        start_date: date = START_DATE,
        end_date: date | None = date(2030, 1, 11),
        activate: bool = True,
        now: datetime = START_OF_DAY,
        **extra,
    ):
        prescription = await prescription_service.create_prescription(
            session,
            resident_id=resident_id,
            medication_id=medication.id,
            dosage=extra.pop("dosage", "1 tablet"),
            route=extra.pop("route", "oral"),
            frequency=frequency,
            start_date=start_date,
            end_date=end_date,
            prescriber_id=extra.pop("prescriber_id", actor_id),
            actor_id=actor_id,
            config=engine_config,
            **extra,
        )
        if not activate:
            return prescription
        return await prescription_service.activate_prescription(
            session,
            prescription_id=prescription.id,
            actor_id=actor_id,
            config=engine_config,
            acknowledge_findings=True,
            acknowledgement_note="Reviewed in test setup",
            now=now,
        )

    return _prescribe
