"""Alert schemas."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from medsafe.models.alert import AlertKind, AlertSeverity, AlertSource


class AlertRead(BaseModel):
    id: uuid.UUID
    source: AlertSource
    kind: AlertKind
    subject_type: str
    subject_id: uuid.UUID
    severity: AlertSeverity
    message: str
    created_at: datetime
    fire_count: int
    last_fired_at: datetime
    escalated_to: str | None
    acknowledged_at: datetime | None
    acknowledged_by: uuid.UUID | None
    resolved_at: datetime | None
    resolved_by: uuid.UUID | None
    resolution_note: str | None

    model_config = ConfigDict(from_attributes=True)


class AlertResolve(BaseModel):
    note: str | None = None
