"""Common API dependencies."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from medsafe.core.security import decode_access_token
from medsafe.core.settings import EngineConfig, get_engine_config
from medsafe.db.session import get_session

bearer_scheme = HTTPBearer(auto_error=False)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Provide an async database session."""
    async for session in get_session():
        yield session


def get_config() -> EngineConfig:
    """Engine configuration for the request; tests override this dependency."""
    return get_engine_config()


async def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> uuid.UUID:
    """Identify the acting staff member from the externally issued bearer token."""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise credentials_exception

    try:
        payload = decode_access_token(credentials.credentials)
    except JWTError as exc:
        raise credentials_exception from exc

    subject = payload.get("sub")
    if subject is None:
        raise credentials_exception
    try:
        return uuid.UUID(subject)
    except (ValueError, TypeError) as exc:
        raise credentials_exception from exc


SessionDep = Annotated[AsyncSession, Depends(get_db_session)]
ActorDep = Annotated[uuid.UUID, Depends(get_current_actor)]
ConfigDep = Annotated[EngineConfig, Depends(get_config)]
