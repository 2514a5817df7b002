"""Screening schemas."""

from __future__ import annotations

import uuid

from pydantic import BaseModel


class ScreeningRequest(BaseModel):
    resident_id: uuid.UUID
    medication_id: uuid.UUID


class FindingRead(BaseModel):
    category: str
    subject_a: str
    subject_b: str
    severity: str
    evidence: str


class ScreeningResultRead(BaseModel):
    screening_id: uuid.UUID | None
    findings: list[FindingRead]
    max_severity: str | None
    blocking: bool
