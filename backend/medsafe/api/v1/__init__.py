"""Versioned API router."""

from fastapi import APIRouter

from . import (
    alerts,
    custody,
    health,
    identifiers,
    medications,
    prescriptions,
    screenings,
    slots,
)

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["health"])
router.include_router(identifiers.router, prefix="/identifiers", tags=["identifiers"])
router.include_router(medications.router, prefix="/medications", tags=["medications"])
router.include_router(
    prescriptions.router, prefix="/prescriptions", tags=["prescriptions"]
)
router.include_router(screenings.router, prefix="/screenings", tags=["screenings"])
router.include_router(slots.router, prefix="/slots", tags=["administration"])
router.include_router(custody.router, prefix="/custody", tags=["custody"])
router.include_router(alerts.router, prefix="/alerts", tags=["alerts"])

__all__ = ["router"]
