"""Prescription schemas."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from medsafe.models.prescription import PrescriptionStatus


class PrescriptionCreate(BaseModel):
    """Payload for drafting a prescription."""

    resident_id: uuid.UUID
    medication_id: uuid.UUID
    dosage: str = Field(..., min_length=1, max_length=120)
    route: str = Field(..., min_length=1, max_length=64)
    frequency: str = Field(..., min_length=1, max_length=16)
    start_date: date
    end_date: date | None = None
    prescriber_id: uuid.UUID
    resident_identifier: str | None = None
    dose_quantity: Decimal = Decimal("1")
    stock_item_id: uuid.UUID | None = None


class PrescriptionActivate(BaseModel):
    acknowledge_findings: bool = False
    acknowledgement_note: str | None = None
    expected_version: int | None = None


class PrescriptionModify(BaseModel):
    """Changes to a prescription; only fields that are sent are applied."""

    expected_version: int
    reason: str | None = None
    dosage: str | None = None
    route: str | None = None
    frequency: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    dose_quantity: Decimal | None = None
    stock_item_id: uuid.UUID | None = None
    acknowledge_findings: bool = False
    acknowledgement_note: str | None = None


class PrescriptionDiscontinue(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1024)
    expected_version: int | None = None


class PrescriptionRead(BaseModel):
    id: uuid.UUID
    resident_id: uuid.UUID
    medication_id: uuid.UUID
    dosage: str
    route: str
    frequency: str
    start_date: date
    end_date: date | None
    prescriber_id: uuid.UUID
    status: PrescriptionStatus
    status_reason: str | None
    dose_quantity: Decimal
    stock_item_id: uuid.UUID | None
    revision: int
    supersedes_id: uuid.UUID | None
    version: int
    activated_at: datetime | None
    closed_at: datetime | None
    created_at: datetime
    created_by: uuid.UUID
    updated_at: datetime
    updated_by: uuid.UUID | None

    model_config = ConfigDict(from_attributes=True)


class PrescriptionTransitionRead(BaseModel):
    id: uuid.UUID
    prescription_id: uuid.UUID
    from_status: PrescriptionStatus | None
    to_status: PrescriptionStatus
    actor_id: uuid.UUID | None
    reason: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
