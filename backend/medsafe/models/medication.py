"""Formulary models: medication definitions and the rules screened against them."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from medsafe.db.base import Base
from medsafe.db.types import UTCDateTime, value_enum
from medsafe.models.mixins import ActorMixin


class ControlledSchedule(str, enum.Enum):
    """Controlled-drug schedule of a medication (UK Misuse of Drugs style)."""

    NONE = "none"
    SCHEDULE_1 = "schedule_1"
    SCHEDULE_2 = "schedule_2"
    SCHEDULE_3 = "schedule_3"
    SCHEDULE_4 = "schedule_4"
    SCHEDULE_5 = "schedule_5"


class InteractionSeverity(str, enum.Enum):
    """Severity assigned to a medication pair interaction rule."""

    INFORMATIONAL = "informational"
    CAUTION = "caution"
    CONTRAINDICATED = "contraindicated"


class MedicationRecord(ActorMixin, Base):
    """Published drug definition. Rows are never edited; new versions supersede them."""

    __tablename__ = "medications"
    __table_args__ = (
        UniqueConstraint("lineage_id", "version", name="uq_medications_lineage_version"),
        Index("ix_medications_code", "code"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    lineage_id: Mapped[uuid.UUID] = mapped_column(nullable=False, default=uuid.uuid4)
    version: Mapped[int] = mapped_column(nullable=False, default=1)
    code: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    strength: Mapped[str | None] = mapped_column(String(120))
    active_ingredients: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    therapeutic_class: Mapped[str | None] = mapped_column(String(120))
    controlled_schedule: Mapped[ControlledSchedule] = mapped_column(
        value_enum(ControlledSchedule), nullable=False, default=ControlledSchedule.NONE
    )
    published_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    supersedes_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("medications.id", ondelete="RESTRICT"), nullable=True
    )
    superseded_at: Mapped[datetime | None] = mapped_column(UTCDateTime())

    @property
    def is_controlled(self) -> bool:
        return self.controlled_schedule is not ControlledSchedule.NONE

    @property
    def is_current(self) -> bool:
        return self.superseded_at is None

    def agent_keys(self) -> set[str]:
        """Normalised ingredient and class names used to match screening rules."""
        keys = {normalise_agent(item) for item in self.active_ingredients or []}
        keys.add(normalise_agent(self.name))
        if self.therapeutic_class:
            keys.add(normalise_agent(self.therapeutic_class))
        keys.discard("")
        return keys


class InteractionRule(ActorMixin, Base):
    """Known interaction between two agents (ingredients or therapeutic classes)."""

    __tablename__ = "interaction_rules"
    __table_args__ = (
        UniqueConstraint("agent_a", "agent_b", name="uq_interaction_rules_pair"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    agent_a: Mapped[str] = mapped_column(String(120), nullable=False)
    agent_b: Mapped[str] = mapped_column(String(120), nullable=False)
    severity: Mapped[InteractionSeverity] = mapped_column(
        value_enum(InteractionSeverity), nullable=False
    )
    evidence: Mapped[str] = mapped_column(String(1024), nullable=False)

    def matches(self, left: set[str], right: set[str]) -> bool:
        return (self.agent_a in left and self.agent_b in right) or (
            self.agent_b in left and self.agent_a in right
        )


class ContraindicationRule(ActorMixin, Base):
    """Allergen that contraindicates an agent (cross-sensitivity, class allergy)."""

    __tablename__ = "contraindication_rules"
    __table_args__ = (
        UniqueConstraint("allergen", "agent", name="uq_contraindication_rules_pair"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    allergen: Mapped[str] = mapped_column(String(120), nullable=False)
    agent: Mapped[str] = mapped_column(String(120), nullable=False)
    # when set, overrides the severity carried by the resident's allergy record
    severity: Mapped[str | None] = mapped_column(String(32))
    evidence: Mapped[str] = mapped_column(String(1024), nullable=False)


def normalise_agent(value: str | None) -> str:
    return " ".join((value or "").strip().lower().split())
