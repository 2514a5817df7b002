"""Initial medication safety schema.

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

ENUMS: dict[str, tuple[str, ...]] = {
    "controlledschedule": (
        "none",
        "schedule_1",
        "schedule_2",
        "schedule_3",
        "schedule_4",
        "schedule_5",
    ),
    "interactionseverity": ("informational", "caution", "contraindicated"),
    "allergyseverity": ("mild", "moderate", "severe", "life_threatening"),
    "prescriptionstatus": ("draft", "active", "expired", "discontinued", "superseded"),
    "screeningpurpose": ("ad_hoc", "prescribing", "administration"),
    "custodyentrytype": ("receipt", "administration", "destruction", "adjustment"),
    "slotstatus": (
        "pending",
        "due",
        "administered",
        "refused",
        "missed",
        "blocked",
        "cancelled",
    ),
    "alertsource": ("scheduler", "screening", "custody", "lifecycle"),
    "alertkind": (
        "missed_dose",
        "safety_block",
        "caution_finding",
        "custody_discrepancy",
        "custody_rejection",
        "scheduling_inconsistency",
    ),
    "alertseverity": ("low", "medium", "high", "critical"),
}


def _enum(name: str) -> sa.Enum:
    # types are created up front because several tables share them
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def _actors() -> list[sa.Column]:
    return [
        sa.Column("created_by", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("updated_by", sa.Uuid(as_uuid=True)),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        sa.Enum(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "medications",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("lineage_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("strength", sa.String(length=120)),
        sa.Column("active_ingredients", sa.JSON(), nullable=False),
        sa.Column("therapeutic_class", sa.String(length=120)),
        sa.Column("controlled_schedule", _enum("controlledschedule"), nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "supersedes_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("medications.id", ondelete="RESTRICT"),
        ),
        sa.Column("superseded_at", sa.DateTime(timezone=True)),
        *_timestamps(),
        *_actors(),
        sa.UniqueConstraint("lineage_id", "version", name="uq_medications_lineage_version"),
    )
    op.create_index("ix_medications_code", "medications", ["code"])

    op.create_table(
        "interaction_rules",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("agent_a", sa.String(length=120), nullable=False),
        sa.Column("agent_b", sa.String(length=120), nullable=False),
        sa.Column("severity", _enum("interactionseverity"), nullable=False),
        sa.Column("evidence", sa.String(length=1024), nullable=False),
        *_timestamps(),
        *_actors(),
        sa.UniqueConstraint("agent_a", "agent_b", name="uq_interaction_rules_pair"),
    )

    op.create_table(
        "contraindication_rules",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("allergen", sa.String(length=120), nullable=False),
        sa.Column("agent", sa.String(length=120), nullable=False),
        sa.Column("severity", sa.String(length=32)),
        sa.Column("evidence", sa.String(length=1024), nullable=False),
        *_timestamps(),
        *_actors(),
        sa.UniqueConstraint("allergen", "agent", name="uq_contraindication_rules_pair"),
    )

    op.create_table(
        "allergy_records",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("resident_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("allergen", sa.String(length=120), nullable=False),
        sa.Column("reaction", sa.String(length=512)),
        sa.Column("severity", _enum("allergyseverity"), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        *_actors(),
    )
    op.create_index("ix_allergy_records_resident", "allergy_records", ["resident_id"])

    op.create_table(
        "controlled_stock_items",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "medication_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("medications.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("label", sa.String(length=255), nullable=False),
        sa.Column("unit", sa.String(length=32), nullable=False),
        sa.Column("frozen", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("frozen_at", sa.DateTime(timezone=True)),
        sa.Column("frozen_reason", sa.String(length=1024)),
        sa.Column("cleared_at", sa.DateTime(timezone=True)),
        sa.Column("cleared_by", sa.Uuid(as_uuid=True)),
        sa.Column("clearance_note", sa.String(length=1024)),
        sa.Column("cleared_through_sequence", sa.Integer()),
        sa.Column("cleared_tail_hash", sa.String(length=64)),
        *_timestamps(),
        *_actors(),
    )

    op.create_table(
        "prescriptions",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("resident_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("resident_identifier", sa.String(length=16)),
        sa.Column(
            "medication_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("medications.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("dosage", sa.String(length=120), nullable=False),
        sa.Column("route", sa.String(length=64), nullable=False),
        sa.Column("frequency", sa.String(length=16), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date()),
        sa.Column("prescriber_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("status", _enum("prescriptionstatus"), nullable=False),
        sa.Column("status_reason", sa.String(length=1024)),
        sa.Column("dose_quantity", sa.Numeric(12, 3), nullable=False),
        sa.Column(
            "stock_item_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("controlled_stock_items.id", ondelete="RESTRICT"),
        ),
        sa.Column("revision", sa.Integer(), nullable=False),
        sa.Column(
            "supersedes_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("prescriptions.id", ondelete="RESTRICT"),
        ),
        sa.Column("activated_at", sa.DateTime(timezone=True)),
        sa.Column("closed_at", sa.DateTime(timezone=True)),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        *_actors(),
        sa.CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="ck_prescriptions_window",
        ),
    )
    op.create_index(
        "ix_prescriptions_resident_status", "prescriptions", ["resident_id", "status"]
    )

    op.create_table(
        "prescription_transitions",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "prescription_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("prescriptions.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("from_status", _enum("prescriptionstatus")),
        sa.Column("to_status", _enum("prescriptionstatus"), nullable=False),
        sa.Column("actor_id", sa.Uuid(as_uuid=True)),
        sa.Column("reason", sa.String(length=1024), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_prescription_transitions_prescription",
        "prescription_transitions",
        ["prescription_id"],
    )

    op.create_table(
        "screening_records",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("resident_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("medication_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("prescription_id", sa.Uuid(as_uuid=True)),
        sa.Column("slot_id", sa.Uuid(as_uuid=True)),
        sa.Column("purpose", _enum("screeningpurpose"), nullable=False),
        sa.Column("findings", sa.JSON(), nullable=False),
        sa.Column("max_severity", sa.String(length=32)),
        sa.Column("blocked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("overridden", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("override_reason", sa.String(length=1024)),
        sa.Column("actor_id", sa.Uuid(as_uuid=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_screening_records_resident",
        "screening_records",
        ["resident_id", "created_at"],
    )

    op.create_table(
        "custody_ledger_entries",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "stock_item_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("controlled_stock_items.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("entry_type", _enum("custodyentrytype"), nullable=False),
        sa.Column("quantity_delta", sa.Numeric(12, 3), nullable=False),
        sa.Column("running_balance", sa.Numeric(12, 3), nullable=False),
        sa.Column("witness1_id", sa.Uuid(as_uuid=True)),
        sa.Column("witness1_attested_at", sa.DateTime(timezone=True)),
        sa.Column("witness2_id", sa.Uuid(as_uuid=True)),
        sa.Column("witness2_attested_at", sa.DateTime(timezone=True)),
        sa.Column("recorded_by", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("slot_id", sa.Uuid(as_uuid=True)),
        sa.Column(
            "corrects_entry_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("custody_ledger_entries.id", ondelete="RESTRICT"),
        ),
        sa.Column("note", sa.String(length=1024)),
        sa.Column("prev_hash", sa.String(length=64), nullable=False),
        sa.Column("entry_hash", sa.String(length=64), nullable=False),
        sa.UniqueConstraint(
            "stock_item_id", "sequence", name="uq_custody_ledger_entries_sequence"
        ),
    )
    op.create_index(
        "ix_custody_ledger_entries_stock",
        "custody_ledger_entries",
        ["stock_item_id", "sequence"],
    )

    op.create_table(
        "administration_slots",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "prescription_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("prescriptions.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", _enum("slotstatus"), nullable=False),
        sa.Column("is_prn", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("resolved_at", sa.DateTime(timezone=True)),
        sa.Column("resolved_by", sa.Uuid(as_uuid=True)),
        sa.Column("note", sa.String(length=1024)),
        sa.Column(
            "administered_late", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("override_reason", sa.String(length=1024)),
        sa.Column(
            "screening_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("screening_records.id", ondelete="RESTRICT"),
        ),
        sa.Column(
            "custody_entry_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("custody_ledger_entries.id", ondelete="RESTRICT"),
        ),
        sa.Column("updated_by", sa.Uuid(as_uuid=True)),
        *_timestamps(),
        sa.UniqueConstraint(
            "prescription_id", "scheduled_at", name="uq_administration_slots_time"
        ),
    )
    op.create_index(
        "ix_administration_slots_status_time",
        "administration_slots",
        ["status", "scheduled_at"],
    )

    op.create_table(
        "custody_reconciliations",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column(
            "stock_item_id",
            sa.Uuid(as_uuid=True),
            sa.ForeignKey("controlled_stock_items.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("entries_checked", sa.Integer(), nullable=False),
        sa.Column("computed_balance", sa.Numeric(12, 3), nullable=False),
        sa.Column("stored_balance", sa.Numeric(12, 3)),
        sa.Column("physical_count", sa.Numeric(12, 3)),
        sa.Column("chain_intact", sa.Boolean(), nullable=False),
        sa.Column("discrepancies", sa.JSON(), nullable=False),
        sa.Column("performed_by", sa.Uuid(as_uuid=True)),
        sa.Column("performed_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "alerts",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("source", _enum("alertsource"), nullable=False),
        sa.Column("kind", _enum("alertkind"), nullable=False),
        sa.Column("subject_type", sa.String(length=64), nullable=False),
        sa.Column("subject_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("severity", _enum("alertseverity"), nullable=False),
        sa.Column("message", sa.String(length=1024), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("fire_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_fired_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("escalated_to", sa.String(length=32)),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True)),
        sa.Column("acknowledged_by", sa.Uuid(as_uuid=True)),
        sa.Column("resolved_at", sa.DateTime(timezone=True)),
        sa.Column("resolved_by", sa.Uuid(as_uuid=True)),
        sa.Column("resolution_note", sa.String(length=1024)),
    )
    op.create_index("ix_alerts_subject", "alerts", ["subject_type", "subject_id"])
    op.create_index("ix_alerts_open", "alerts", ["acknowledged_at", "resolved_at"])

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column("actor_id", sa.Uuid(as_uuid=True)),
        sa.Column("event_type", sa.String(length=120), nullable=False),
        sa.Column("subject_type", sa.String(length=64), nullable=False),
        sa.Column("subject_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("description", sa.String(length=1024)),
        sa.Column("payload", sa.JSON()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_audit_events_subject", "audit_events", ["subject_type", "subject_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_audit_events_subject", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("ix_alerts_open", table_name="alerts")
    op.drop_index("ix_alerts_subject", table_name="alerts")
    op.drop_table("alerts")
    op.drop_table("custody_reconciliations")
    op.drop_index("ix_administration_slots_status_time", table_name="administration_slots")
    op.drop_table("administration_slots")
    op.drop_index("ix_custody_ledger_entries_stock", table_name="custody_ledger_entries")
    op.drop_table("custody_ledger_entries")
    op.drop_index("ix_screening_records_resident", table_name="screening_records")
    op.drop_table("screening_records")
    op.drop_index(
        "ix_prescription_transitions_prescription", table_name="prescription_transitions"
    )
    op.drop_table("prescription_transitions")
    op.drop_index("ix_prescriptions_resident_status", table_name="prescriptions")
    op.drop_table("prescriptions")
    op.drop_table("controlled_stock_items")
    op.drop_index("ix_allergy_records_resident", table_name="allergy_records")
    op.drop_table("allergy_records")
    op.drop_table("contraindication_rules")
    op.drop_table("interaction_rules")
    op.drop_index("ix_medications_code", table_name="medications")
    op.drop_table("medications")

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        sa.Enum(name=name).drop(bind, checkfirst=True)
