"""Prescription models."""
from __future__ import annotations

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from medsafe.db.base import Base
from medsafe.db.types import UTCDateTime, utcnow, value_enum
from medsafe.models.medication import MedicationRecord
from medsafe.models.mixins import ActorMixin


class PrescriptionStatus(str, enum.Enum):
    """Lifecycle states for prescriptions."""

    DRAFT = "draft"
    ACTIVE = "active"
    EXPIRED = "expired"
    DISCONTINUED = "discontinued"
    SUPERSEDED = "superseded"


TERMINAL_STATUSES = frozenset(
    {
        PrescriptionStatus.EXPIRED,
        PrescriptionStatus.DISCONTINUED,
        PrescriptionStatus.SUPERSEDED,
    }
)


class Prescription(ActorMixin, Base):
    """A resident's order for a medication at a dosage, route and frequency."""

    __tablename__ = "prescriptions"
    __table_args__ = (
        CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="ck_prescriptions_window",
        ),
        Index("ix_prescriptions_resident_status", "resident_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    resident_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    resident_identifier: Mapped[str | None] = mapped_column(String(16))
    medication_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("medications.id", ondelete="RESTRICT"), nullable=False
    )
    dosage: Mapped[str] = mapped_column(String(120), nullable=False)
    route: Mapped[str] = mapped_column(String(64), nullable=False)
    frequency: Mapped[str] = mapped_column(String(16), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date)
    prescriber_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    status: Mapped[PrescriptionStatus] = mapped_column(
        value_enum(PrescriptionStatus), default=PrescriptionStatus.DRAFT, nullable=False
    )
    status_reason: Mapped[str | None] = mapped_column(String(1024))
    dose_quantity: Mapped[Decimal] = mapped_column(
        Numeric(12, 3), nullable=False, default=Decimal("1")
    )
    stock_item_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("controlled_stock_items.id", ondelete="RESTRICT"), nullable=True
    )
    revision: Mapped[int] = mapped_column(nullable=False, default=1)
    supersedes_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("prescriptions.id", ondelete="RESTRICT"), nullable=True
    )
    activated_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    version: Mapped[int] = mapped_column(nullable=False)

    medication: Mapped[MedicationRecord] = relationship("MedicationRecord", lazy="joined")

    __mapper_args__ = {"version_id_col": version}


class PrescriptionTransition(Base):
    """Who moved a prescription between states, when and why."""

    __tablename__ = "prescription_transitions"
    __table_args__ = (
        Index("ix_prescription_transitions_prescription", "prescription_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    prescription_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("prescriptions.id", ondelete="RESTRICT"), nullable=False
    )
    from_status: Mapped[PrescriptionStatus | None] = mapped_column(
        value_enum(PrescriptionStatus), nullable=True
    )
    to_status: Mapped[PrescriptionStatus] = mapped_column(
        value_enum(PrescriptionStatus), nullable=False
    )
    actor_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    reason: Mapped[str] = mapped_column(String(1024), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow
    )
