"""Administration slot schemas."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from medsafe.models.administration import SlotOutcome, SlotStatus


class WitnessFields(BaseModel):
    witness1_id: uuid.UUID | None = None
    witness1_attested_at: datetime | None = None
    witness2_id: uuid.UUID | None = None
    witness2_attested_at: datetime | None = None


class SlotResolve(WitnessFields):
    outcome: SlotOutcome
    note: str | None = None
    override_reason: str | None = None


class PrnDoseCreate(WitnessFields):
    note: str | None = None
    override_reason: str | None = None


class SlotRead(BaseModel):
    id: uuid.UUID
    prescription_id: uuid.UUID
    scheduled_at: datetime
    status: SlotStatus
    is_prn: bool
    resolved_at: datetime | None
    resolved_by: uuid.UUID | None
    note: str | None
    administered_late: bool
    override_reason: str | None
    screening_id: uuid.UUID | None
    custody_entry_id: uuid.UUID | None

    model_config = ConfigDict(from_attributes=True)
