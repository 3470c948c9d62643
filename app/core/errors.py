"""Authentication and session errors.

Everything under AuthError is a security outcome (401/403/409 at the HTTP
boundary). StoreUnavailableError is an infrastructure failure and is kept out
of that hierarchy so it is never reported as a denial.
"""

from enum import Enum
from typing import Iterable


class RejectionReason(str, Enum):
    """Why a token failed verification. Logged, never returned to callers."""

    MALFORMED = "malformed"
    EXPIRED = "expired"
    WRONG_KIND = "wrong_kind"
    BAD_SIGNATURE = "bad_signature"


class AuthError(Exception):
    """Base class for authentication and authorization outcomes."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class CredentialInvalidError(AuthError):
    """Unknown username or wrong password. Both are reported identically."""

    def __init__(self, message: str = "Invalid username or password.") -> None:
        super().__init__(message)


class TokenRejectedError(AuthError):
    """A token failed verification; reason says which check failed."""

    reason: RejectionReason = RejectionReason.MALFORMED

    def __init__(self, message: str) -> None:
        super().__init__(message)


class TokenMalformedError(TokenRejectedError):
    reason = RejectionReason.MALFORMED


class TokenExpiredError(TokenRejectedError):
    reason = RejectionReason.EXPIRED


class TokenWrongKindError(TokenRejectedError):
    reason = RejectionReason.WRONG_KIND


class TokenSignatureInvalidError(TokenRejectedError):
    reason = RejectionReason.BAD_SIGNATURE


class RefreshDeniedError(AuthError):
    """Refresh cannot proceed; the client must log in again."""

    def __init__(self, message: str = "Refresh denied.") -> None:
        super().__init__(message)


class SessionNotFoundError(RefreshDeniedError):
    """No live session for the presented refresh token (revoked, rotated, or unknown)."""

    def __init__(self, message: str = "Session not found.") -> None:
        super().__init__(message)


class RotationConflictError(RefreshDeniedError):
    """The old session disappeared between lookup and rotation (concurrent refresh or logout)."""

    def __init__(self, message: str = "Session was already rotated or revoked.") -> None:
        super().__init__(message)


class RoleDeniedError(AuthError):
    """Authenticated identity lacks every role the operation accepts."""

    def __init__(self, required_roles: Iterable[str]) -> None:
        self.required_roles = sorted(getattr(r, "value", r) for r in required_roles)
        super().__init__(f"Requires one of roles: {', '.join(self.required_roles)}")


class UsernameTakenError(AuthError):
    """Signup attempted with a username that already exists."""

    def __init__(self, message: str = "Username is already taken.") -> None:
        super().__init__(message)


class StoreUnavailableError(Exception):
    """Credential or session store failed (connectivity, transaction error)."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(message)
