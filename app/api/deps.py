"""Shared API dependencies: token codec, auth service, request gate, role checks."""

import logging
from collections.abc import Callable
from datetime import datetime
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import get_db
from app.core.errors import RoleDeniedError, TokenRejectedError
from app.core.roles import Role
from app.core.tokens import TokenCodec
from app.services.access import RequestContext, authorize, resolve_context
from app.services.auth import AuthService, utcnow

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@lru_cache
def get_token_codec() -> TokenCodec:
    """Process-wide codec; signing material is read once and never mutated."""
    return TokenCodec.from_settings(get_settings())


def get_clock() -> Callable[[], datetime]:
    return utcnow


def get_auth_service(
    db: Annotated[Session, Depends(get_db)],
    codec: Annotated[TokenCodec, Depends(get_token_codec)],
    clock: Annotated[Callable[[], datetime], Depends(get_clock)],
) -> AuthService:
    return AuthService(db, codec, clock=clock)


def unauthorized(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_request_context(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    codec: Annotated[TokenCodec, Depends(get_token_codec)],
    clock: Annotated[Callable[[], datetime], Depends(get_clock)],
) -> RequestContext:
    """
    Dependency: require a valid Bearer access token and return the request context.
    Every rejection is the same 401; the reason is only logged.
    """
    if credentials is None:
        raise unauthorized()
    try:
        return resolve_context(codec, credentials.credentials, clock())
    except TokenRejectedError as e:
        logger.info("Access token rejected: %s", e.reason.value)
        raise unauthorized("Invalid or expired token") from e


def require_roles(*roles: Role) -> Callable[[RequestContext], RequestContext]:
    """Dependency factory: 403 unless the caller holds at least one of roles."""

    def dependency(
        context: Annotated[RequestContext, Depends(get_request_context)],
    ) -> RequestContext:
        try:
            return authorize(context, roles)
        except RoleDeniedError as e:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role for this operation",
            ) from e

    return dependency


require_admin = require_roles(Role.ADMIN)
