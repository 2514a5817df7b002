"""Controlled-drug custody models: stock items, the hash-chained ledger, reconciliations."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from medsafe.db.base import Base
from medsafe.db.types import UTCDateTime, utcnow, value_enum
from medsafe.models.mixins import ActorMixin

GENESIS_HASH = "0" * 64


class CustodyEntryType(str, enum.Enum):
    """Kinds of stock movement recorded in the custody ledger."""

    RECEIPT = "receipt"
    ADMINISTRATION = "administration"
    DESTRUCTION = "destruction"
    ADJUSTMENT = "adjustment"


WITNESSED_ENTRY_TYPES = frozenset(
    {CustodyEntryType.ADMINISTRATION, CustodyEntryType.DESTRUCTION}
)


class ControlledStockItem(ActorMixin, Base):
    """A physical controlled-drug stock (pack, bottle, cabinet line) under custody."""

    __tablename__ = "controlled_stock_items"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    medication_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("medications.id", ondelete="RESTRICT"), nullable=False
    )
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str] = mapped_column(String(32), nullable=False, default="unit")
    frozen: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    frozen_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    frozen_reason: Mapped[str | None] = mapped_column(String(1024))
    cleared_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    cleared_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    clearance_note: Mapped[str | None] = mapped_column(String(1024))
    # ledger accepted as recorded up to and including this entry at clearance
    cleared_through_sequence: Mapped[int | None] = mapped_column(nullable=True)
    cleared_tail_hash: Mapped[str | None] = mapped_column(String(64))


class CustodyLedgerEntry(Base):
    """Append-only, hash-chained stock movement. Corrections are new entries."""

    __tablename__ = "custody_ledger_entries"
    __table_args__ = (
        UniqueConstraint(
            "stock_item_id", "sequence", name="uq_custody_ledger_entries_sequence"
        ),
        Index("ix_custody_ledger_entries_stock", "stock_item_id", "sequence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    stock_item_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("controlled_stock_items.id", ondelete="RESTRICT"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    entry_type: Mapped[CustodyEntryType] = mapped_column(
        value_enum(CustodyEntryType), nullable=False
    )
    quantity_delta: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    running_balance: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    witness1_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    witness1_attested_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    witness2_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    witness2_attested_at: Mapped[datetime | None] = mapped_column(UTCDateTime())
    recorded_by: Mapped[uuid.UUID] = mapped_column(nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow
    )
    slot_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    corrects_entry_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("custody_ledger_entries.id", ondelete="RESTRICT"), nullable=True
    )
    note: Mapped[str | None] = mapped_column(String(1024))
    prev_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)


class CustodyReconciliation(Base):
    """Outcome of an independent recomputation of a stock item's ledger."""

    __tablename__ = "custody_reconciliations"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, default=uuid.uuid4, unique=True
    )
    stock_item_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("controlled_stock_items.id", ondelete="RESTRICT"), nullable=False
    )
    entries_checked: Mapped[int] = mapped_column(nullable=False)
    computed_balance: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    stored_balance: Mapped[Decimal | None] = mapped_column(Numeric(12, 3))
    physical_count: Mapped[Decimal | None] = mapped_column(Numeric(12, 3))
    chain_intact: Mapped[bool] = mapped_column(Boolean, nullable=False)
    discrepancies: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    performed_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)
    performed_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, default=utcnow
    )
