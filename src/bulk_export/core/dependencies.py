"""FastAPI dependency injection for the requester identity and export services."""

from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from bulk_export.core.config import Settings, get_settings
from bulk_export.core.security import Requester, requester_from_token
from bulk_export.services.export_service import ExportService
from bulk_export.services.runtime import ExportRuntime, get_runtime

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_requester(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> Requester:
    """Decode the bearer JWT and return the requester it identifies.

    Raises:
        HTTPException: 401 if the token is missing or invalid.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception
    try:
        return requester_from_token(credentials.credentials, settings.jwt_secret_key, settings.jwt_algorithm)
    except jwt.InvalidTokenError as exc:
        raise credentials_exception from exc


def get_export_runtime() -> ExportRuntime:
    return get_runtime()


def get_export_service(runtime: Annotated[ExportRuntime, Depends(get_export_runtime)]) -> ExportService:
    return runtime.export_service()
