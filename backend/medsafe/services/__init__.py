"""Service layer exports."""
from medsafe.services import (
    alert_service,
    audit_service,
    custody_service,
    identifier_service,
    medication_service,
    prescription_service,
    scheduling_service,
    screening_service,
)

__all__ = [
    "alert_service",
    "audit_service",
    "custody_service",
    "identifier_service",
    "medication_service",
    "prescription_service",
    "scheduling_service",
    "screening_service",
]
