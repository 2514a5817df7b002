"""Administration slot model."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from medsafe.db.base import Base
from medsafe.db.types import UTCDateTime, value_enum
from medsafe.models.mixins import TimestampMixin


class SlotStatus(str, enum.Enum):
    """States of a scheduled administration opportunity."""

    PENDING = "pending"
    DUE = "due"
    ADMINISTERED = "administered"
    REFUSED = "refused"
    MISSED = "missed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


class SlotOutcome(str, enum.Enum):
    """Outcomes staff may record when resolving a slot."""

    ADMINISTERED = "administered"
    REFUSED = "refused"
    BLOCKED = "blocked"


UNRESOLVED_SLOT_STATUSES = frozenset({SlotStatus.PENDING, SlotStatus.DUE})


class AdministrationSlot(TimestampMixin, Base):
    """One scheduled dose of a prescription. Never deleted; cancellation is a status."""

    __tablename__ = "administration_slots"
    __table_args__ = (
        UniqueConstraint(
            "prescription_id", "scheduled_at", name="uq_administration_slots_time"
        ),
        Index("ix_administration_slots_status_time", "status", "scheduled_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    prescription_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("prescriptions.id", ondelete="RESTRICT"), nullable=False
    )
    scheduled_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    status: Mapped[SlotStatus] = mapped_column(
        value_enum(SlotStatus), default=SlotStatus.PENDING, nullable=False
    )
    is_prn: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    resolved_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    note: Mapped[str | None] = mapped_column(String(1024))
    administered_late: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    override_reason: Mapped[str | None] = mapped_column(String(1024))
    screening_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("screening_records.id", ondelete="RESTRICT"), nullable=True
    )
    custody_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("custody_ledger_entries.id", ondelete="RESTRICT"), nullable=True
    )
    updated_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
