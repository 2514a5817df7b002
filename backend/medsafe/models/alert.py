"""Alert model."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from medsafe.db.base import Base
from medsafe.db.types import UTCDateTime, utcnow, value_enum


class AlertSource(str, enum.Enum):
    """Subsystem that raised the alert."""

    SCHEDULER = "scheduler"
    SCREENING = "screening"
    CUSTODY = "custody"
    LIFECYCLE = "lifecycle"


class AlertKind(str, enum.Enum):
    """Event that caused the alert."""

    MISSED_DOSE = "missed_dose"
    SAFETY_BLOCK = "safety_block"
    CAUTION_FINDING = "caution_finding"
    CUSTODY_DISCREPANCY = "custody_discrepancy"
    CUSTODY_REJECTION = "custody_rejection"
    SCHEDULING_INCONSISTENCY = "scheduling_inconsistency"


class AlertSeverity(str, enum.Enum):
    """Urgency levels, lowest first."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


ESCALATING_SEVERITIES = frozenset({AlertSeverity.HIGH, AlertSeverity.CRITICAL})


class Alert(Base):
    """Append-only alert. Acknowledgement and resolution are separate stamps."""

    __tablename__ = "alerts"
    __table_args__ = (
        Index("ix_alerts_subject", "subject_type", "subject_id"),
        Index("ix_alerts_open", "acknowledged_at", "resolved_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    source: Mapped[AlertSource] = mapped_column(value_enum(AlertSource), nullable=False)
    kind: Mapped[AlertKind] = mapped_column(value_enum(AlertKind), nullable=False)
    subject_type: Mapped[str] = mapped_column(String(64), nullable=False)
    subject_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    severity: Mapped[AlertSeverity] = mapped_column(value_enum(AlertSeverity), nullable=False)
    message: Mapped[str] = mapped_column(String(1024), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow
    )
    fire_count: Mapped[int] = mapped_column(nullable=False, default=1)
    last_fired_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow
    )
    escalated_to: Mapped[str | None] = mapped_column(String(32))
    acknowledged_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    acknowledged_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    resolved_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    resolution_note: Mapped[str | None] = mapped_column(String(1024))

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None
