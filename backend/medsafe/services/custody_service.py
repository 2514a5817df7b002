"""Controlled-drug custody ledger: witnessed, hash-chained stock movements."""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from collections.abc import Sequence
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from medsafe.core.errors import ConflictError, CustodyError, NotFoundError, ValidationError
from medsafe.core.locks import stock_item_locks
from medsafe.core.settings import EngineConfig
from medsafe.db.types import coerce_utc, utcnow
from medsafe.models.custody import (
    GENESIS_HASH,
    WITNESSED_ENTRY_TYPES,
    ControlledStockItem,
    CustodyEntryType,
    CustodyLedgerEntry,
    CustodyReconciliation,
)
from medsafe.models.medication import MedicationRecord
from medsafe.services import alert_service, audit_service

logger = logging.getLogger(__name__)

_QUANTUM = Decimal("0.001")

_CHAIN_PROBLEMS = frozenset(
    {"sequence_gap", "broken_link", "hash_mismatch", "checkpoint_mismatch"}
)

# reason codes carried by CustodyError
WITNESS_MISSING = "witness_missing"
WITNESS_NOT_DISTINCT = "witness_not_distinct"
WITNESS_NOT_ATTESTED = "witness_not_attested"
WITNESS_OUTSIDE_WINDOW = "witness_outside_window"
INVALID_DELTA = "invalid_delta"
STOCK_FROZEN = "stock_frozen"
NEGATIVE_BALANCE = "negative_balance"
BROKEN_CHAIN = "broken_chain"
INVALID_CORRECTION = "invalid_correction"


def quantize(value: Decimal | int | float | str) -> Decimal:
    try:
        return Decimal(str(value)).quantize(_QUANTUM)
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"Invalid quantity {value!r}") from exc


def _iso(value: datetime | None) -> str | None:
    return coerce_utc(value).isoformat(timespec="microseconds") if value else None


def _uuid(value: uuid.UUID | None) -> str | None:
    return str(value) if value else None


def compute_entry_hash(entry: CustodyLedgerEntry, prev_hash: str | None = None) -> str:
    """SHA-256 over the canonical JSON of an entry's content and its predecessor's hash."""
    document: dict[str, Any] = {
        "stock_item_id": _uuid(entry.stock_item_id),
        "sequence": entry.sequence,
        "entry_type": CustodyEntryType(entry.entry_type).value,
        "quantity_delta": str(quantize(entry.quantity_delta)),
        "running_balance": str(quantize(entry.running_balance)),
        "witness1_id": _uuid(entry.witness1_id),
        "witness1_attested_at": _iso(entry.witness1_attested_at),
        "witness2_id": _uuid(entry.witness2_id),
        "witness2_attested_at": _iso(entry.witness2_attested_at),
        "recorded_by": _uuid(entry.recorded_by),
        "recorded_at": _iso(entry.recorded_at),
        "slot_id": _uuid(entry.slot_id),
        "corrects_entry_id": _uuid(entry.corrects_entry_id),
        "note": entry.note,
        "prev_hash": prev_hash if prev_hash is not None else entry.prev_hash,
    }
    canonical = json.dumps(document, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


async def get_stock_item(
    session: AsyncSession, *, stock_item_id: uuid.UUID
) -> ControlledStockItem:
    item = await session.get(ControlledStockItem, stock_item_id)
    if item is None:
        raise NotFoundError("Stock item not found", stock_item_id=str(stock_item_id))
    return item


async def register_stock_item(
    session: AsyncSession,
    *,
    medication_id: uuid.UUID,
    label: str,
    actor_id: uuid.UUID,
    unit: str = "unit",
) -> ControlledStockItem:
    medication = await session.get(MedicationRecord, medication_id)
    if medication is None:
        raise NotFoundError("Medication not found", medication_id=str(medication_id))
    if not medication.is_controlled:
        raise ValidationError(
            "Only controlled medications are held under custody",
            medication_id=str(medication_id),
        )
    item = ControlledStockItem(
        medication_id=medication_id, label=label, unit=unit, created_by=actor_id
    )
    session.add(item)
    await session.flush()
    await audit_service.record_event(
        session,
        event_type="custody.stock_item_registered",
        actor_id=actor_id,
        subject_type="stock_item",
        subject_id=item.id,
        payload={"medication_id": str(medication_id), "label": label},
    )
    await session.commit()
    await session.refresh(item)
    return item


async def _tail_entry(
    session: AsyncSession, stock_item_id: uuid.UUID
) -> CustodyLedgerEntry | None:
    result = await session.execute(
        select(CustodyLedgerEntry)
        .where(CustodyLedgerEntry.stock_item_id == stock_item_id)
        .order_by(CustodyLedgerEntry.sequence.desc())
        .limit(1)
    )
    return result.scalars().first()


async def current_balance(session: AsyncSession, *, stock_item_id: uuid.UUID) -> Decimal:
    await get_stock_item(session, stock_item_id=stock_item_id)
    tail = await _tail_entry(session, stock_item_id)
    return quantize(tail.running_balance) if tail else quantize(0)


async def list_entries(
    session: AsyncSession, *, stock_item_id: uuid.UUID
) -> Sequence[CustodyLedgerEntry]:
    await get_stock_item(session, stock_item_id=stock_item_id)
    result = await session.execute(
        select(CustodyLedgerEntry)
        .where(CustodyLedgerEntry.stock_item_id == stock_item_id)
        .order_by(CustodyLedgerEntry.sequence)
    )
    return result.scalars().all()


def _check_witnesses(
    *,
    entry_type: CustodyEntryType,
    recorded_at: datetime,
    witnesses: list[tuple[uuid.UUID | None, datetime | None]],
    config: EngineConfig,
) -> None:
    required = entry_type in WITNESSED_ENTRY_TYPES
    present = [(wid, attested) for wid, attested in witnesses if wid is not None]
    if required and len(present) < 2:
        raise CustodyError(
            f"{entry_type.value} entries require two witnesses", reason=WITNESS_MISSING
        )
    ids = [wid for wid, _ in present]
    if len(set(ids)) != len(ids):
        raise CustodyError("Witnesses must be distinct people", reason=WITNESS_NOT_DISTINCT)
    for wid, attested in present:
        if attested is None:
            raise CustodyError(
                f"Witness {wid} has not attested presence", reason=WITNESS_NOT_ATTESTED
            )
        if abs(coerce_utc(attested) - recorded_at) > config.witness_window:
            raise CustodyError(
                f"Witness {wid} attestation is outside the permitted window",
                reason=WITNESS_OUTSIDE_WINDOW,
            )


def _check_delta(entry_type: CustodyEntryType, delta: Decimal) -> None:
    valid = {
        CustodyEntryType.RECEIPT: delta > 0,
        CustodyEntryType.ADMINISTRATION: delta < 0,
        CustodyEntryType.DESTRUCTION: delta < 0,
        CustodyEntryType.ADJUSTMENT: delta != 0,
    }[entry_type]
    if not valid:
        raise CustodyError(
            f"Quantity {delta} is not valid for a {entry_type.value} entry",
            reason=INVALID_DELTA,
        )


def _is_cleared_checkpoint(item: ControlledStockItem, entry: CustodyLedgerEntry) -> bool:
    return (
        item.cleared_through_sequence is not None
        and entry.sequence == item.cleared_through_sequence
        and entry.entry_hash == item.cleared_tail_hash
    )


async def append_entry_in_transaction(
    session: AsyncSession,
    *,
    stock_item_id: uuid.UUID,
    entry_type: CustodyEntryType,
    quantity_delta: Decimal | int | str,
    actor_id: uuid.UUID,
    config: EngineConfig,
    witness1_id: uuid.UUID | None = None,
    witness1_attested_at: datetime | None = None,
    witness2_id: uuid.UUID | None = None,
    witness2_attested_at: datetime | None = None,
    slot_id: uuid.UUID | None = None,
    corrects_entry_id: uuid.UUID | None = None,
    note: str | None = None,
    recorded_at: datetime | None = None,
) -> CustodyLedgerEntry:
    """Validate and stage an entry without committing; the caller holds the stock lock."""
    entry_type = CustodyEntryType(entry_type)
    item = await get_stock_item(session, stock_item_id=stock_item_id)
    when = coerce_utc(recorded_at) if recorded_at else utcnow()
    delta = quantize(quantity_delta)

    _check_witnesses(
        entry_type=entry_type,
        recorded_at=when,
        witnesses=[
            (witness1_id, witness1_attested_at),
            (witness2_id, witness2_attested_at),
        ],
        config=config,
    )
    _check_delta(entry_type, delta)
    if item.frozen and entry_type in WITNESSED_ENTRY_TYPES:
        raise CustodyError(
            f"Stock item {item.label} is frozen pending reconciliation review",
            reason=STOCK_FROZEN,
        )

    tail = await _tail_entry(session, stock_item_id)
    balance = quantize(tail.running_balance) if tail else quantize(0)
    new_balance = balance + delta
    if new_balance < 0:
        raise CustodyError(
            f"Entry would take the balance of {item.label} to {new_balance}",
            reason=NEGATIVE_BALANCE,
        )
    if (
        tail is not None
        and not _is_cleared_checkpoint(item, tail)
        and compute_entry_hash(tail) != tail.entry_hash
    ):
        raise CustodyError(
            f"Ledger for {item.label} fails hash verification at entry {tail.sequence}",
            reason=BROKEN_CHAIN,
        )
    if corrects_entry_id is not None:
        corrected = await session.get(CustodyLedgerEntry, corrects_entry_id)
        if corrected is None or corrected.stock_item_id != stock_item_id:
            raise CustodyError(
                "Corrected entry does not belong to this stock item",
                reason=INVALID_CORRECTION,
            )

    entry = CustodyLedgerEntry(
        stock_item_id=stock_item_id,
        sequence=tail.sequence + 1 if tail else 0,
        entry_type=entry_type,
        quantity_delta=delta,
        running_balance=new_balance,
        witness1_id=witness1_id,
        witness1_attested_at=coerce_utc(witness1_attested_at) if witness1_attested_at else None,
        witness2_id=witness2_id,
        witness2_attested_at=coerce_utc(witness2_attested_at) if witness2_attested_at else None,
        recorded_by=actor_id,
        recorded_at=when,
        slot_id=slot_id,
        corrects_entry_id=corrects_entry_id,
        note=note,
        prev_hash=tail.entry_hash if tail else GENESIS_HASH,
    )
    entry.entry_hash = compute_entry_hash(entry)
    session.add(entry)
    await session.flush()
    await audit_service.record_event(
        session,
        event_type="custody.entry_appended",
        actor_id=actor_id,
        subject_type="stock_item",
        subject_id=stock_item_id,
        payload={
            "entry_id": str(entry.id),
            "sequence": entry.sequence,
            "entry_type": entry_type.value,
            "quantity_delta": str(delta),
            "running_balance": str(new_balance),
        },
    )
    return entry


async def record_rejection(
    session: AsyncSession, *, stock_item_id: uuid.UUID, error: CustodyError
) -> None:
    """Persist the alert for a rejected entry in its own transaction."""
    if error.reason == BROKEN_CHAIN:
        item = await session.get(ControlledStockItem, stock_item_id)
        if item is not None and not item.frozen:
            _freeze(item, reason=error.message)
        await alert_service.raise_custody_discrepancy(
            session,
            stock_item_id=stock_item_id,
            discrepancies=[{"kind": BROKEN_CHAIN, "detail": error.message}],
        )
    else:
        await alert_service.raise_custody_rejection(
            session, stock_item_id=stock_item_id, reason=error.reason, detail=error.message
        )
    logger.warning(
        "Custody entry on %s rejected (%s): %s", stock_item_id, error.reason, error.message
    )


async def append_custody_entry(
    session: AsyncSession,
    *,
    stock_item_id: uuid.UUID,
    entry_type: CustodyEntryType,
    quantity_delta: Decimal | int | str,
    actor_id: uuid.UUID,
    config: EngineConfig,
    witness1_id: uuid.UUID | None = None,
    witness1_attested_at: datetime | None = None,
    witness2_id: uuid.UUID | None = None,
    witness2_attested_at: datetime | None = None,
    slot_id: uuid.UUID | None = None,
    corrects_entry_id: uuid.UUID | None = None,
    note: str | None = None,
    recorded_at: datetime | None = None,
) -> CustodyLedgerEntry:
    """Append one witnessed entry to a stock item's ledger, or reject it entirely."""
    await get_stock_item(session, stock_item_id=stock_item_id)
    async with stock_item_locks.hold(stock_item_id):
        try:
            entry = await append_entry_in_transaction(
                session,
                stock_item_id=stock_item_id,
                entry_type=entry_type,
                quantity_delta=quantity_delta,
                actor_id=actor_id,
                config=config,
                witness1_id=witness1_id,
                witness1_attested_at=witness1_attested_at,
                witness2_id=witness2_id,
                witness2_attested_at=witness2_attested_at,
                slot_id=slot_id,
                corrects_entry_id=corrects_entry_id,
                note=note,
                recorded_at=recorded_at,
            )
            await session.commit()
        except CustodyError as exc:
            await session.rollback()
            await record_rejection(session, stock_item_id=stock_item_id, error=exc)
            raise
        except IntegrityError as exc:
            await session.rollback()
            raise ConflictError(
                "Another entry was appended concurrently; retry",
                stock_item_id=str(stock_item_id),
            ) from exc
    logger.info(
        "Custody entry %s #%s on %s: %s (balance %s)",
        entry.entry_type.value,
        entry.sequence,
        stock_item_id,
        entry.quantity_delta,
        entry.running_balance,
    )
    return entry


def _freeze(item: ControlledStockItem, *, reason: str) -> None:
    item.frozen = True
    item.frozen_at = utcnow()
    item.frozen_reason = reason[:1024]


def verify_chain(
    entries: Sequence[CustodyLedgerEntry],
    *,
    cleared_through: int | None = None,
    cleared_hash: str | None = None,
) -> tuple[Decimal, list[dict[str, Any]]]:
    """Recompute balances and hashes from entry zero; return the balance and any problems.

    With a clearance checkpoint, problems at or before ``cleared_through`` are
    reported with ``acknowledged=True`` and the balance carries on from the
    checkpoint entry's recorded running balance. A checkpoint entry whose
    recorded hash no longer matches ``cleared_hash`` is a new problem.
    """
    discrepancies: list[dict[str, Any]] = []
    balance = quantize(0)
    prev_hash = GENESIS_HASH
    expected_sequence = 0
    checkpoint_seen = False
    for entry in entries:
        problems: list[dict[str, Any]] = []
        if entry.sequence != expected_sequence:
            problems.append(
                {
                    "kind": "sequence_gap",
                    "sequence": entry.sequence,
                    "expected": expected_sequence,
                }
            )
        if entry.prev_hash != prev_hash:
            problems.append({"kind": "broken_link", "sequence": entry.sequence})
        if compute_entry_hash(entry) != entry.entry_hash:
            problems.append({"kind": "hash_mismatch", "sequence": entry.sequence})
        balance += quantize(entry.quantity_delta)
        if balance != quantize(entry.running_balance):
            problems.append(
                {
                    "kind": "balance_mismatch",
                    "sequence": entry.sequence,
                    "computed": str(balance),
                    "stored": str(quantize(entry.running_balance)),
                }
            )
        if balance < 0:
            problems.append(
                {"kind": "negative_balance", "sequence": entry.sequence, "computed": str(balance)}
            )
        if cleared_through is not None and entry.sequence <= cleared_through:
            for problem in problems:
                problem["acknowledged"] = True
        discrepancies.extend(problems)
        if cleared_through is not None and entry.sequence == cleared_through:
            checkpoint_seen = True
            if entry.entry_hash != cleared_hash:
                discrepancies.append({"kind": "checkpoint_mismatch", "sequence": entry.sequence})
            balance = quantize(entry.running_balance)
        prev_hash = entry.entry_hash
        expected_sequence = entry.sequence + 1
    if cleared_through is not None and not checkpoint_seen:
        discrepancies.append({"kind": "checkpoint_mismatch", "sequence": cleared_through})
    return balance, discrepancies


def unacknowledged(discrepancies: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
    return [problem for problem in discrepancies if not problem.get("acknowledged")]


async def reconcile_custody(
    session: AsyncSession,
    *,
    stock_item_id: uuid.UUID,
    actor_id: uuid.UUID | None = None,
    physical_count: Decimal | int | str | None = None,
) -> CustodyReconciliation:
    """Recompute a ledger independently and report, never correct, what disagrees."""
    item = await get_stock_item(session, stock_item_id=stock_item_id)
    counted = quantize(physical_count) if physical_count is not None else None
    async with stock_item_locks.hold(stock_item_id):
        await session.refresh(item)
        entries = await list_entries(session, stock_item_id=stock_item_id)
        computed, discrepancies = verify_chain(
            entries,
            cleared_through=item.cleared_through_sequence,
            cleared_hash=item.cleared_tail_hash,
        )
        stored = quantize(entries[-1].running_balance) if entries else None
        if counted is not None and counted != computed:
            discrepancies.append(
                {
                    "kind": "physical_count_mismatch",
                    "computed": str(computed),
                    "counted": str(counted),
                }
            )
        chain_intact = not any(
            problem["kind"] in _CHAIN_PROBLEMS for problem in discrepancies
        )
        new_problems = unacknowledged(discrepancies)
        newly_frozen = bool(new_problems) and not item.frozen
        report = CustodyReconciliation(
            stock_item_id=stock_item_id,
            entries_checked=len(entries),
            computed_balance=computed,
            stored_balance=stored,
            physical_count=counted,
            chain_intact=chain_intact,
            discrepancies=discrepancies,
            performed_by=actor_id,
        )
        session.add(report)
        # an item that is already frozen already has its open discrepancy alert
        if newly_frozen:
            _freeze(item, reason=f"Reconciliation found {len(new_problems)} discrepancy(ies)")
            await alert_service.raise_custody_discrepancy(
                session,
                stock_item_id=stock_item_id,
                discrepancies=new_problems,
                commit=False,
            )
        await session.flush()
        await audit_service.record_event(
            session,
            event_type="custody.reconciled",
            actor_id=actor_id,
            subject_type="stock_item",
            subject_id=stock_item_id,
            payload={
                "reconciliation_id": str(report.id),
                "computed_balance": str(computed),
                "discrepancies": len(discrepancies),
                "unacknowledged": len(new_problems),
            },
        )
        await alert_service.commit_and_dispatch(session)
    if newly_frozen:
        logger.error(
            "Reconciliation of %s found %s discrepancy(ies); item frozen",
            stock_item_id,
            len(new_problems),
        )
    elif new_problems:
        logger.warning(
            "Reconciliation of %s found %s discrepancy(ies) on an already frozen item",
            stock_item_id,
            len(new_problems),
        )
    elif discrepancies:
        logger.info(
            "Reconciliation of %s: %s acknowledged discrepancy(ies) before sequence %s",
            stock_item_id,
            len(discrepancies),
            item.cleared_through_sequence,
        )
    else:
        logger.info("Reconciliation of %s clean at balance %s", stock_item_id, computed)
    return report


async def clear_freeze(
    session: AsyncSession,
    *,
    stock_item_id: uuid.UUID,
    actor_id: uuid.UUID,
    note: str,
) -> ControlledStockItem:
    if not note or not note.strip():
        raise ValidationError("A clearance note is required")
    async with stock_item_locks.hold(stock_item_id):
        item = await get_stock_item(session, stock_item_id=stock_item_id)
        if not item.frozen:
            raise ConflictError("Stock item is not frozen", stock_item_id=str(stock_item_id))
        tail = await _tail_entry(session, stock_item_id)
        item.frozen = False
        item.cleared_at = utcnow()
        item.cleared_by = actor_id
        item.clearance_note = note.strip()
        item.cleared_through_sequence = tail.sequence if tail else None
        item.cleared_tail_hash = tail.entry_hash if tail else None
        item.updated_by = actor_id
        await audit_service.record_event(
            session,
            event_type="custody.freeze_cleared",
            actor_id=actor_id,
            subject_type="stock_item",
            subject_id=stock_item_id,
            description=note.strip(),
            payload={
                "frozen_reason": item.frozen_reason,
                "cleared_through_sequence": item.cleared_through_sequence,
                "cleared_tail_hash": item.cleared_tail_hash,
            },
        )
        await session.commit()
    logger.info("Freeze on stock item %s cleared by %s", stock_item_id, actor_id)
    return item


async def list_reconciliations(
    session: AsyncSession, *, stock_item_id: uuid.UUID
) -> Sequence[CustodyReconciliation]:
    result = await session.execute(
        select(CustodyReconciliation)
        .where(CustodyReconciliation.stock_item_id == stock_item_id)
        .order_by(CustodyReconciliation.performed_at.desc())
    )
    return result.scalars().all()


async def list_stock_item_ids(session: AsyncSession) -> list[uuid.UUID]:
    result = await session.execute(select(ControlledStockItem.id))
    return list(result.scalars().all())
