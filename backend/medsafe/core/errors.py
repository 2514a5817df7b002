"""Error taxonomy for the medication safety engine."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover - typing only
    from medsafe.services.screening_service import InteractionFinding


class MedicationSafetyError(Exception):
    """Base class for engine errors surfaced to callers."""

    code = "medication_safety_error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class ValidationError(MedicationSafetyError):
    """Malformed input; nothing was applied."""

    code = "validation_error"


class NotFoundError(MedicationSafetyError):
    """Referenced entity does not exist."""

    code = "not_found"


class ConflictError(MedicationSafetyError):
    """Optimistic concurrency check failed; re-read and retry."""

    code = "conflict"


class ClinicalSafetyError(MedicationSafetyError):
    """A contraindicated-or-worse finding blocked the action."""

    code = "clinical_safety_block"

    def __init__(
        self,
        message: str,
        *,
        findings: list["InteractionFinding"] | None = None,
        screening_id: Any = None,
        alert_id: Any = None,
    ) -> None:
        super().__init__(message, screening_id=screening_id)
        self.findings = list(findings or [])
        self.screening_id = screening_id
        self.alert_id = alert_id


class CustodyError(MedicationSafetyError):
    """Controlled-drug custody rule violated; the operation is rejected."""

    code = "custody_error"

    def __init__(self, message: str, *, reason: str, **context: Any) -> None:
        super().__init__(message, reason=reason, **context)
        self.reason = reason


class SchedulingInconsistency(MedicationSafetyError):
    """Internal scheduling invariant broken; treated as a defect."""

    code = "scheduling_inconsistency"


__all__ = [
    "ClinicalSafetyError",
    "ConflictError",
    "CustodyError",
    "MedicationSafetyError",
    "NotFoundError",
    "SchedulingInconsistency",
    "ValidationError",
]
