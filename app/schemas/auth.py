"""Request/response schemas for auth endpoints."""

from pydantic import BaseModel, ConfigDict, Field

from app.core.roles import Role
from app.core.security import (
    LOGIN_INPUT_MAX_LEN,
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    USERNAME_MAX_LEN,
    USERNAME_MIN_LEN,
)


class LoginRequest(BaseModel):
    """
    Credentials for login. Only presence and a generous upper bound are checked
    here; anything else that does not match a stored identity is a 401.
    """

    username: str = Field(..., min_length=1, max_length=LOGIN_INPUT_MAX_LEN, description="Username")
    password: str = Field(..., min_length=1, max_length=LOGIN_INPUT_MAX_LEN, description="Password")


class SignupRequest(BaseModel):
    """Credentials for a new identity (created with the 'user' role)."""

    username: str = Field(
        ..., min_length=USERNAME_MIN_LEN, max_length=USERNAME_MAX_LEN, description="Username"
    )
    password: str = Field(
        ..., min_length=PASSWORD_MIN_LEN, max_length=PASSWORD_MAX_LEN, description="Password"
    )


class RefreshTokenRequest(BaseModel):
    """Optional body for refresh/logout; takes precedence over the refresh cookie."""

    refresh_token: str | None = Field(default=None, description="Refresh token")


class TokenPairResponse(BaseModel):
    """Access and refresh tokens. The refresh token is also set as an HTTP-only cookie."""

    access_token: str = Field(..., description="JWT access token")
    refresh_token: str = Field(..., description="JWT refresh token")
    token_type: str = Field(default="bearer", description="Token type")
    expires_in: int = Field(..., description="Access token lifetime in seconds")
    refresh_expires_in: int = Field(..., description="Refresh token lifetime in seconds")


class LogoutResponse(BaseModel):
    status: str = "ok"


class LogoutAllResponse(BaseModel):
    status: str = "ok"
    sessions_revoked: int


class CurrentIdentity(BaseModel):
    """Identity and roles resolved from the access token."""

    id: int
    roles: list[Role]


class UserListItem(BaseModel):
    """User entry for admin list (no password)."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    roles: list[Role]


class UsersListResponse(BaseModel):
    """Response for GET /auth/users (admin only)."""

    users: list[UserListItem]
