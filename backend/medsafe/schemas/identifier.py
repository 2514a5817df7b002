"""Identifier validation schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class IdentifierValidateRequest(BaseModel):
    identifier: str = Field(..., max_length=32)


class IdentifierValidateResponse(BaseModel):
    valid: bool
    formatted: str | None = None
