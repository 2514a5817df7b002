"""Controlled-drug custody schemas."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from medsafe.models.custody import CustodyEntryType
from medsafe.schemas.administration import WitnessFields


class StockItemCreate(BaseModel):
    medication_id: uuid.UUID
    label: str = Field(..., min_length=1, max_length=255)
    unit: str = "unit"


class StockItemRead(BaseModel):
    id: uuid.UUID
    medication_id: uuid.UUID
    label: str
    unit: str
    frozen: bool
    frozen_at: datetime | None
    frozen_reason: str | None
    cleared_at: datetime | None
    cleared_by: uuid.UUID | None
    clearance_note: str | None
    cleared_through_sequence: int | None

    model_config = ConfigDict(from_attributes=True)


class CustodyEntryCreate(WitnessFields):
    entry_type: CustodyEntryType
    quantity_delta: Decimal
    corrects_entry_id: uuid.UUID | None = None
    note: str | None = None
    recorded_at: datetime | None = None


class CustodyEntryRead(BaseModel):
    id: uuid.UUID
    stock_item_id: uuid.UUID
    sequence: int
    entry_type: CustodyEntryType
    quantity_delta: Decimal
    running_balance: Decimal
    witness1_id: uuid.UUID | None
    witness1_attested_at: datetime | None
    witness2_id: uuid.UUID | None
    witness2_attested_at: datetime | None
    recorded_by: uuid.UUID
    recorded_at: datetime
    slot_id: uuid.UUID | None
    corrects_entry_id: uuid.UUID | None
    note: str | None
    prev_hash: str
    entry_hash: str

    model_config = ConfigDict(from_attributes=True)


class ReconcileRequest(BaseModel):
    physical_count: Decimal | None = None


class ReconciliationRead(BaseModel):
    id: uuid.UUID
    stock_item_id: uuid.UUID
    entries_checked: int
    computed_balance: Decimal
    stored_balance: Decimal | None
    physical_count: Decimal | None
    chain_intact: bool
    discrepancies: list[dict[str, Any]]
    performed_by: uuid.UUID | None
    performed_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ClearFreezeRequest(BaseModel):
    note: str = Field(..., min_length=1, max_length=1024)
