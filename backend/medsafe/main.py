"""FastAPI application entrypoint."""

import logging
from contextlib import asynccontextmanager

from asgi_correlation_id import CorrelationIdMiddleware
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from secure import Secure

from medsafe.api import api_router
from medsafe.core.config import get_settings
from medsafe.core.errors import (
    ClinicalSafetyError,
    ConflictError,
    CustodyError,
    MedicationSafetyError,
    NotFoundError,
    SchedulingInconsistency,
    ValidationError,
)
from medsafe.core.settings import get_engine_config
from medsafe.security.logging_filters import SensitiveFilter
from medsafe.services import sweep_service

logger = logging.getLogger(__name__)

settings = get_settings()

_ALLOWED_ORIGINS = [origin for origin in settings.cors_allowlist if origin] or [
    "http://localhost:5173"
]

_ERROR_STATUS: dict[type[MedicationSafetyError], int] = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    ClinicalSafetyError: status.HTTP_403_FORBIDDEN,
    CustodyError: status.HTTP_400_BAD_REQUEST,
    SchedulingInconsistency: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


@asynccontextmanager
async def lifespan(_: FastAPI):
    tasks = []
    if settings.sweeps_enabled:
        tasks = sweep_service.start_background_sweeps(
            config=get_engine_config(),
            sweep_interval_seconds=settings.sweep_interval_seconds,
            reconcile_interval_seconds=settings.reconcile_interval_seconds,
        )
    try:
        yield
    finally:
        await sweep_service.stop_background_sweeps(tasks)


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_ALLOWED_ORIGINS,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)
app.add_middleware(CorrelationIdMiddleware, header_name="X-Request-ID")

_secure_headers = Secure()


@app.middleware("http")
async def _apply_security_headers(request, call_next):
    response = await call_next(request)
    _secure_headers.set_headers(response)
    return response


def _error_body(exc: MedicationSafetyError) -> dict:
    body: dict = {"detail": exc.message, "code": exc.code}
    if isinstance(exc, ClinicalSafetyError):
        body["findings"] = [finding.to_payload() for finding in exc.findings]
        body["screening_id"] = str(exc.screening_id) if exc.screening_id else None
        body["alert_id"] = str(exc.alert_id) if exc.alert_id else None
    elif isinstance(exc, CustodyError):
        body["reason"] = exc.reason
    elif exc.context:
        body["context"] = {key: _jsonable(value) for key, value in exc.context.items()}
    return body


def _jsonable(value):
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    return str(value)


@app.exception_handler(MedicationSafetyError)
async def _medication_safety_error_handler(
    request: Request, exc: MedicationSafetyError
) -> JSONResponse:
    status_code = next(
        (code for error_type, code in _ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    if status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=_error_body(exc))


for _logger_name in ("uvicorn", "uvicorn.access", "uvicorn.error", ""):
    _logger = logging.getLogger(_logger_name)
    if not any(isinstance(flt, SensitiveFilter) for flt in _logger.filters):
        _logger.addFilter(SensitiveFilter())

app.include_router(api_router)


@app.get("/", include_in_schema=False)
async def root() -> dict[str, str]:
    """Return a simple welcome message."""
    return {"message": settings.app_name}
