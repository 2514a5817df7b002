"""Helper utilities for recording audit events."""

from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from medsafe.models.audit_event import AuditEvent


async def record_event(
    session: AsyncSession,
    *,
    event_type: str,
    subject_type: str,
    subject_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
    description: str | None = None,
    payload: dict[str, Any] | None = None,
) -> AuditEvent:
    """Add an audit event to the caller's transaction; the caller commits."""
    event = AuditEvent(
        actor_id=actor_id,
        event_type=event_type,
        subject_type=subject_type,
        subject_id=subject_id,
        description=description,
        payload=payload,
    )
    session.add(event)
    await session.flush()
    return event


async def list_events(
    session: AsyncSession, *, subject_type: str, subject_id: uuid.UUID
) -> list[AuditEvent]:
    result = await session.execute(
        select(AuditEvent)
        .where(
            AuditEvent.subject_type == subject_type,
            AuditEvent.subject_id == subject_id,
        )
        .order_by(AuditEvent.created_at)
    )
    return list(result.scalars().all())
