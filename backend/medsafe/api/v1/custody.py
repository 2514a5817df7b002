"""Controlled-drug custody endpoints."""

from __future__ import annotations

import uuid

from fastapi import APIRouter, status

from medsafe.api.deps import ActorDep, ConfigDep, SessionDep
from medsafe.schemas.custody import (
    ClearFreezeRequest,
    CustodyEntryCreate,
    CustodyEntryRead,
    ReconcileRequest,
    ReconciliationRead,
    StockItemCreate,
    StockItemRead,
)
from medsafe.services import custody_service

router = APIRouter(prefix="/stock-items")


@router.post(
    "",
    response_model=StockItemRead,
    status_code=status.HTTP_201_CREATED,
    summary="Register a controlled-drug stock item",
)
async def register_stock_item(
    payload: StockItemCreate, session: SessionDep, actor_id: ActorDep
) -> StockItemRead:
    item = await custody_service.register_stock_item(
        session, actor_id=actor_id, **payload.model_dump()
    )
    return StockItemRead.model_validate(item)


@router.get("/{stock_item_id}", response_model=StockItemRead, summary="Get a stock item")
async def get_stock_item(
    stock_item_id: uuid.UUID, session: SessionDep, _actor: ActorDep
) -> StockItemRead:
    item = await custody_service.get_stock_item(session, stock_item_id=stock_item_id)
    return StockItemRead.model_validate(item)


@router.get(
    "/{stock_item_id}/entries",
    response_model=list[CustodyEntryRead],
    summary="List custody ledger entries",
)
async def list_entries(
    stock_item_id: uuid.UUID, session: SessionDep, _actor: ActorDep
) -> list[CustodyEntryRead]:
    entries = await custody_service.list_entries(session, stock_item_id=stock_item_id)
    return [CustodyEntryRead.model_validate(entry) for entry in entries]


@router.post(
    "/{stock_item_id}/entries",
    response_model=CustodyEntryRead,
    status_code=status.HTTP_201_CREATED,
    summary="Append a witnessed custody entry",
)
async def append_entry(
    stock_item_id: uuid.UUID,
    payload: CustodyEntryCreate,
    session: SessionDep,
    actor_id: ActorDep,
    config: ConfigDep,
) -> CustodyEntryRead:
    entry = await custody_service.append_custody_entry(
        session,
        stock_item_id=stock_item_id,
        actor_id=actor_id,
        config=config,
        **payload.model_dump(),
    )
    return CustodyEntryRead.model_validate(entry)


@router.post(
    "/{stock_item_id}/reconcile",
    response_model=ReconciliationRead,
    summary="Recompute the ledger and report discrepancies",
)
async def reconcile(
    stock_item_id: uuid.UUID,
    payload: ReconcileRequest,
    session: SessionDep,
    actor_id: ActorDep,
) -> ReconciliationRead:
    report = await custody_service.reconcile_custody(
        session,
        stock_item_id=stock_item_id,
        actor_id=actor_id,
        physical_count=payload.physical_count,
    )
    return ReconciliationRead.model_validate(report)


@router.post(
    "/{stock_item_id}/clear-freeze",
    response_model=StockItemRead,
    summary="Manually clear a custody freeze",
)
async def clear_freeze(
    stock_item_id: uuid.UUID,
    payload: ClearFreezeRequest,
    session: SessionDep,
    actor_id: ActorDep,
) -> StockItemRead:
    item = await custody_service.clear_freeze(
        session, stock_item_id=stock_item_id, actor_id=actor_id, note=payload.note
    )
    return StockItemRead.model_validate(item)
