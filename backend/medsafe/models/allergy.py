"""Resident allergy records (owned by the resident service, read by screening)."""
from __future__ import annotations

import enum
import uuid

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from medsafe.db.base import Base
from medsafe.db.types import value_enum
from medsafe.models.mixins import ActorMixin


class AllergySeverity(str, enum.Enum):
    """Recorded severity of a resident's allergic reaction."""

    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"
    LIFE_THREATENING = "life_threatening"


class AllergyRecord(ActorMixin, Base):
    """Allergen recorded against a resident."""

    __tablename__ = "allergy_records"
    __table_args__ = (Index("ix_allergy_records_resident", "resident_id"),)

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    resident_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    allergen: Mapped[str] = mapped_column(String(120), nullable=False)
    reaction: Mapped[str | None] = mapped_column(String(512))
    severity: Mapped[AllergySeverity] = mapped_column(
        value_enum(AllergySeverity), nullable=False
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
