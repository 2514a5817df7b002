"""Screening audit records."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from medsafe.db.base import Base
from medsafe.db.types import UTCDateTime, utcnow, value_enum


class ScreeningPurpose(str, enum.Enum):
    """Why a screening was run."""

    AD_HOC = "ad_hoc"
    PRESCRIBING = "prescribing"
    ADMINISTRATION = "administration"


class ScreeningRecord(Base):
    """Immutable record proving a safety screen ran and what it found."""

    __tablename__ = "screening_records"
    __table_args__ = (
        Index("ix_screening_records_resident", "resident_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    resident_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    medication_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    prescription_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    slot_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    purpose: Mapped[ScreeningPurpose] = mapped_column(
        value_enum(ScreeningPurpose), nullable=False, default=ScreeningPurpose.AD_HOC
    )
    findings: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    max_severity: Mapped[str | None] = mapped_column(String(32))
    blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    overridden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    override_reason: Mapped[str | None] = mapped_column(String(1024))
    actor_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow
    )
