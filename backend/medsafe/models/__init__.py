"""ORM models package export."""

from medsafe.models.administration import (
    AdministrationSlot,
    SlotOutcome,
    SlotStatus,
)
from medsafe.models.alert import Alert, AlertKind, AlertSeverity, AlertSource
from medsafe.models.allergy import AllergyRecord, AllergySeverity
from medsafe.models.audit_event import AuditEvent
from medsafe.models.custody import (
    ControlledStockItem,
    CustodyEntryType,
    CustodyLedgerEntry,
    CustodyReconciliation,
)
from medsafe.models.medication import (
    ContraindicationRule,
    ControlledSchedule,
    InteractionRule,
    InteractionSeverity,
    MedicationRecord,
)
from medsafe.models.prescription import (
    Prescription,
    PrescriptionStatus,
    PrescriptionTransition,
)
from medsafe.models.screening import ScreeningPurpose, ScreeningRecord

__all__ = [
    "AdministrationSlot",
    "Alert",
    "AlertKind",
    "AlertSeverity",
    "AlertSource",
    "AllergyRecord",
    "AllergySeverity",
    "AuditEvent",
    "ContraindicationRule",
    "ControlledSchedule",
    "ControlledStockItem",
    "CustodyEntryType",
    "CustodyLedgerEntry",
    "CustodyReconciliation",
    "InteractionRule",
    "InteractionSeverity",
    "MedicationRecord",
    "Prescription",
    "PrescriptionStatus",
    "PrescriptionTransition",
    "ScreeningPurpose",
    "ScreeningRecord",
    "SlotOutcome",
    "SlotStatus",
]
