"""Login, signup, refresh, logout, and identity endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.deps import (
    get_auth_service,
    get_request_context,
    require_admin,
    unauthorized,
)
from app.core.config import Settings, get_settings
from app.core.database import get_db
from app.core.errors import (
    CredentialInvalidError,
    RefreshDeniedError,
    StoreUnavailableError,
    UsernameTakenError,
)
from app.models import User
from app.schemas.auth import (
    CurrentIdentity,
    LoginRequest,
    LogoutAllResponse,
    LogoutResponse,
    RefreshTokenRequest,
    SignupRequest,
    TokenPairResponse,
    UserListItem,
    UsersListResponse,
)
from app.services.access import RequestContext
from app.services.auth import AuthService, TokenPair

logger = logging.getLogger(__name__)

router = APIRouter()


def _service_unavailable(e: StoreUnavailableError) -> HTTPException:
    logger.error("Auth store unavailable: %s", e.message)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Service temporarily unavailable.",
    )


def _set_refresh_cookie(response: Response, pair: TokenPair, settings: Settings) -> None:
    response.set_cookie(
        settings.REFRESH_COOKIE_NAME,
        pair.refresh.token,
        max_age=settings.REFRESH_TOKEN_EXPIRE_MINUTES * 60,
        path=settings.REFRESH_COOKIE_PATH,
        httponly=True,
        secure=settings.REFRESH_COOKIE_SECURE,
        samesite=settings.REFRESH_COOKIE_SAMESITE,
    )


def _clear_refresh_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        settings.REFRESH_COOKIE_NAME,
        path=settings.REFRESH_COOKIE_PATH,
        httponly=True,
        secure=settings.REFRESH_COOKIE_SECURE,
        samesite=settings.REFRESH_COOKIE_SAMESITE,
    )


def _token_response(pair: TokenPair) -> TokenPairResponse:
    return TokenPairResponse(
        access_token=pair.access.token,
        refresh_token=pair.refresh.token,
        token_type="bearer",
        expires_in=int((pair.access.expires_at - pair.access.claims.issued_at).total_seconds()),
        refresh_expires_in=int(
            (pair.refresh.expires_at - pair.refresh.claims.issued_at).total_seconds()
        ),
    )


def _presented_refresh_token(
    request: Request, body: RefreshTokenRequest | None, settings: Settings
) -> str | None:
    """Body token wins over the cookie."""
    if body is not None and body.refresh_token:
        return body.refresh_token
    return request.cookies.get(settings.REFRESH_COOKIE_NAME)


@router.post("/login", response_model=TokenPairResponse)
def login(
    body: LoginRequest,
    response: Response,
    auth: Annotated[AuthService, Depends(get_auth_service)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> TokenPairResponse:
    """
    Authenticate with username and password; returns an access/refresh token pair.
    Send the access token as: Authorization: Bearer <access_token>.
    The refresh token is also set as an HTTP-only cookie.
    """
    try:
        pair = auth.login(body.username, body.password)
    except CredentialInvalidError as e:
        raise unauthorized("Invalid username or password.") from e
    except StoreUnavailableError as e:
        raise _service_unavailable(e) from e
    _set_refresh_cookie(response, pair, settings)
    return _token_response(pair)


@router.post("/signup", response_model=TokenPairResponse, status_code=status.HTTP_201_CREATED)
def signup(
    body: SignupRequest,
    response: Response,
    auth: Annotated[AuthService, Depends(get_auth_service)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> TokenPairResponse:
    """Create an identity with the 'user' role and log it in."""
    if not settings.SIGNUP_ENABLED:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Signup is disabled.")
    try:
        pair = auth.signup(body.username, body.password)
    except UsernameTakenError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message) from e
    except StoreUnavailableError as e:
        raise _service_unavailable(e) from e
    _set_refresh_cookie(response, pair, settings)
    return _token_response(pair)


@router.post("/refresh", response_model=TokenPairResponse)
def refresh(
    request: Request,
    response: Response,
    auth: Annotated[AuthService, Depends(get_auth_service)],
    settings: Annotated[Settings, Depends(get_settings)],
    body: RefreshTokenRequest | None = None,
) -> TokenPairResponse:
    """
    Exchange the refresh token (cookie, or JSON body) for a new pair.
    The presented token is retired; reusing it returns 401.
    """
    token = _presented_refresh_token(request, body, settings)
    if not token:
        raise unauthorized("Refresh token required.")
    try:
        pair = auth.refresh(token)
    except RefreshDeniedError as e:
        raise unauthorized("Refresh denied. Please log in again.") from e
    except StoreUnavailableError as e:
        raise _service_unavailable(e) from e
    _set_refresh_cookie(response, pair, settings)
    return _token_response(pair)


@router.post("/logout", response_model=LogoutResponse)
def logout(
    request: Request,
    response: Response,
    auth: Annotated[AuthService, Depends(get_auth_service)],
    settings: Annotated[Settings, Depends(get_settings)],
    body: RefreshTokenRequest | None = None,
) -> LogoutResponse:
    """End the session for the refresh token (body or cookie). Always succeeds."""
    try:
        auth.logout(_presented_refresh_token(request, body, settings))
    except StoreUnavailableError as e:
        raise _service_unavailable(e) from e
    _clear_refresh_cookie(response, settings)
    return LogoutResponse()


@router.post("/logout-all", response_model=LogoutAllResponse)
def logout_all(
    response: Response,
    context: Annotated[RequestContext, Depends(get_request_context)],
    auth: Annotated[AuthService, Depends(get_auth_service)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> LogoutAllResponse:
    """Revoke every session of the calling identity."""
    try:
        removed = auth.logout_all(context.current_identity_id())
    except StoreUnavailableError as e:
        raise _service_unavailable(e) from e
    _clear_refresh_cookie(response, settings)
    return LogoutAllResponse(sessions_revoked=removed)


@router.get("/me", response_model=CurrentIdentity)
def me(
    context: Annotated[RequestContext, Depends(get_request_context)],
) -> CurrentIdentity:
    """Identity and roles carried by the presented access token."""
    return CurrentIdentity(id=context.current_identity_id(), roles=sorted(context.current_roles()))


@router.get("/users", response_model=UsersListResponse)
def list_users(
    _admin: Annotated[RequestContext, Depends(require_admin)],
    db: Annotated[Session, Depends(get_db)],
) -> UsersListResponse:
    """List all users with their roles (admin only). Demonstrates RBAC."""
    try:
        users = db.query(User).order_by(User.id).all()
    except SQLAlchemyError as e:
        raise _service_unavailable(StoreUnavailableError("User listing failed", cause=e)) from e
    return UsersListResponse(
        users=[
            UserListItem(id=u.id, username=u.username, roles=sorted(u.roles)) for u in users
        ]
    )
