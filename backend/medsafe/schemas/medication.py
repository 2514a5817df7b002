"""Formulary schemas."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from medsafe.models.medication import ControlledSchedule, InteractionSeverity


class MedicationCreate(BaseModel):
    """Payload for publishing a new medication."""

    code: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=255)
    strength: str | None = None
    active_ingredients: list[str] = Field(default_factory=list)
    therapeutic_class: str | None = None
    controlled_schedule: ControlledSchedule = ControlledSchedule.NONE


class MedicationVersionCreate(BaseModel):
    """Fields that change in a new medication version; omitted fields carry over."""

    name: str | None = None
    strength: str | None = None
    active_ingredients: list[str] | None = None
    therapeutic_class: str | None = None
    controlled_schedule: ControlledSchedule | None = None


class MedicationRead(BaseModel):
    id: uuid.UUID
    lineage_id: uuid.UUID
    version: int
    code: str
    name: str
    strength: str | None
    active_ingredients: list[str]
    therapeutic_class: str | None
    controlled_schedule: ControlledSchedule
    published_at: datetime
    supersedes_id: uuid.UUID | None
    superseded_at: datetime | None
    created_by: uuid.UUID

    model_config = ConfigDict(from_attributes=True)


class InteractionRuleCreate(BaseModel):
    agent_a: str
    agent_b: str
    severity: InteractionSeverity
    evidence: str


class InteractionRuleRead(InteractionRuleCreate):
    id: uuid.UUID

    model_config = ConfigDict(from_attributes=True)


class ContraindicationRuleCreate(BaseModel):
    allergen: str
    agent: str
    evidence: str
    severity: str | None = None


class ContraindicationRuleRead(ContraindicationRuleCreate):
    id: uuid.UUID

    model_config = ConfigDict(from_attributes=True)
