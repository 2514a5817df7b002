"""Clinical identifier endpoints."""

from fastapi import APIRouter

from medsafe.api.deps import ActorDep
from medsafe.schemas.identifier import IdentifierValidateRequest, IdentifierValidateResponse
from medsafe.services import identifier_service

router = APIRouter()


@router.post(
    "/validate",
    response_model=IdentifierValidateResponse,
    summary="Validate a national health identifier checksum",
)
async def validate_identifier(
    payload: IdentifierValidateRequest, _actor: ActorDep
) -> IdentifierValidateResponse:
    valid = identifier_service.validate_identifier(payload.identifier)
    return IdentifierValidateResponse(
        valid=valid,
        formatted=identifier_service.format_identifier(payload.identifier) if valid else None,
    )
