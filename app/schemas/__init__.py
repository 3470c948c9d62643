"""Pydantic request/response schemas."""

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
from app.schemas.health import HealthResponse

__all__ = [
    "CurrentIdentity",
    "HealthResponse",
    "LoginRequest",
    "LogoutAllResponse",
    "LogoutResponse",
    "RefreshTokenRequest",
    "SignupRequest",
    "TokenPairResponse",
    "UserListItem",
    "UsersListResponse",
]
