"""Periodic background sweeps: slot promotion, missed doses, expiry, alert re-fire, reconciliation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from medsafe.core.errors import MedicationSafetyError
from medsafe.core.settings import EngineConfig
from medsafe.db.session import session_scope
from medsafe.db.types import coerce_utc, utcnow
from medsafe.services import (
    alert_service,
    custody_service,
    prescription_service,
    scheduling_service,
)

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    expired: int = 0
    extended: int = 0
    promoted: int = 0
    missed: int = 0
    refired: int = 0
    reconciled: int = 0
    discrepancies: int = 0
    errors: list[str] = field(default_factory=list)


async def run_sweeps_once(
    session: AsyncSession,
    *,
    config: EngineConfig,
    now: datetime | None = None,
    reconcile: bool = False,
) -> SweepReport:
    """Run each scheduling sweep once, in dependency order."""
    current = coerce_utc(now) if now else utcnow()
    report = SweepReport()
    report.expired = len(
        await prescription_service.expire_prescriptions(session, config=config, now=current)
    )
    report.extended = await scheduling_service.extend_open_ended_schedules(
        session, config=config, now=current
    )
    report.promoted = await scheduling_service.promote_due_slots(session, now=current)
    report.missed = len(
        await scheduling_service.mark_missed_slots(session, config=config, now=current)
    )
    report.refired = len(
        await alert_service.refire_unacknowledged(session, config=config, now=current)
    )
    if reconcile:
        await reconcile_all(session, report=report)
    logger.info("Sweep finished: %s", report)
    return report


async def reconcile_all(session: AsyncSession, *, report: SweepReport | None = None) -> SweepReport:
    report = report or SweepReport()
    for stock_item_id in await custody_service.list_stock_item_ids(session):
        try:
            result = await custody_service.reconcile_custody(
                session, stock_item_id=stock_item_id
            )
        except MedicationSafetyError as exc:
            await session.rollback()
            report.errors.append(f"{stock_item_id}: {exc.message}")
            logger.error("Reconciliation of %s failed: %s", stock_item_id, exc.message)
            continue
        report.reconciled += 1
        report.discrepancies += len(custody_service.unacknowledged(result.discrepancies))
    return report


async def _loop(
    name: str,
    interval_seconds: float,
    action,
    *,
    database_url: str | None = None,
) -> None:
    while True:
        try:
            async with session_scope(database_url) as session:
                await action(session)
        except asyncio.CancelledError:
            raise
        except Exception:  # keep the loop alive; the next tick retries
            logger.exception("Background sweep %s failed", name)
        await asyncio.sleep(interval_seconds)


def start_background_sweeps(
    *,
    config: EngineConfig,
    sweep_interval_seconds: float,
    reconcile_interval_seconds: float,
    database_url: str | None = None,
) -> list[asyncio.Task]:
    """Start the scheduling and reconciliation loops as independent tasks."""

    async def _sweep(session: AsyncSession) -> None:
        await run_sweeps_once(session, config=config)

    async def _reconcile(session: AsyncSession) -> None:
        await reconcile_all(session)

    tasks = [
        asyncio.create_task(
            _loop("scheduling", sweep_interval_seconds, _sweep, database_url=database_url),
            name="medsafe-scheduling-sweep",
        ),
        asyncio.create_task(
            _loop(
                "reconciliation",
                reconcile_interval_seconds,
                _reconcile,
                database_url=database_url,
            ),
            name="medsafe-reconciliation-sweep",
        ),
    ]
    logger.info(
        "Background sweeps started (every %ss, reconciliation every %ss)",
        sweep_interval_seconds,
        reconcile_interval_seconds,
    )
    return tasks


async def stop_background_sweeps(tasks: list[asyncio.Task]) -> None:
    for task in tasks:
        task.cancel()
    for task in tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
