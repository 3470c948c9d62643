"""Signed token issuance and verification (JWT via PyJWT).

The codec holds only its signing material and TTLs; it never reads the clock
or touches storage. Callers pass ``now`` so verification is deterministic and
the same instance can be shared by every request thread.
"""

import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable

import jwt

from app.core.config import HMAC_ALGORITHMS
from app.core.errors import (
    TokenExpiredError,
    TokenMalformedError,
    TokenSignatureInvalidError,
    TokenWrongKindError,
)
from app.core.roles import ROLE_VALUES, Role

if TYPE_CHECKING:
    from app.core.config import Settings

REQUIRED_CLAIMS = ["sub", "roles", "typ", "iat", "exp", "jti"]


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    """Verified contents of a token."""

    subject: int
    roles: frozenset[Role]
    kind: TokenKind
    issued_at: datetime
    expires_at: datetime
    token_id: str


@dataclass(frozen=True)
class IssuedToken:
    """Encoded token plus the claims it carries."""

    token: str
    claims: TokenClaims

    @property
    def expires_at(self) -> datetime:
        return self.claims.expires_at


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC (SQLite returns them naive)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class TokenCodec:
    """Issue and verify access/refresh tokens with one process-wide signing scheme."""

    def __init__(
        self,
        *,
        algorithm: str,
        signing_key: str,
        verifying_key: str,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
    ) -> None:
        self._algorithm = algorithm
        self._signing_key = signing_key
        self._verifying_key = verifying_key
        self._ttls = {TokenKind.ACCESS: access_ttl, TokenKind.REFRESH: refresh_ttl}

    @classmethod
    def from_settings(cls, settings: "Settings") -> "TokenCodec":
        if settings.JWT_ALGORITHM in HMAC_ALGORITHMS:
            secret = settings.JWT_SECRET.get_secret_value()
            signing_key, verifying_key = secret, secret
        else:
            # Presence of both keys is enforced by Settings validation.
            signing_key = settings.JWT_PRIVATE_KEY.get_secret_value()  # type: ignore[union-attr]
            verifying_key = settings.JWT_PUBLIC_KEY  # type: ignore[assignment]
        return cls(
            algorithm=settings.JWT_ALGORITHM,
            signing_key=signing_key,
            verifying_key=verifying_key,
            access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_ttl=timedelta(minutes=settings.REFRESH_TOKEN_EXPIRE_MINUTES),
        )

    def ttl(self, kind: TokenKind) -> timedelta:
        return self._ttls[kind]

    def issue(
        self,
        identity_id: int,
        roles: Iterable[Role | str],
        kind: TokenKind,
        now: datetime,
    ) -> IssuedToken:
        """Create a signed token for identity_id valid from now until now + ttl(kind)."""
        role_set = frozenset(Role(r) for r in roles)
        issued_at = int(as_utc(now).timestamp())
        expires_at = issued_at + int(self._ttls[kind].total_seconds())
        token_id = secrets.token_hex(16)
        payload: dict[str, Any] = {
            "sub": str(identity_id),
            "roles": sorted(r.value for r in role_set),
            "typ": kind.value,
            "iat": issued_at,
            "exp": expires_at,
            "jti": token_id,
        }
        token = jwt.encode(payload, self._signing_key, algorithm=self._algorithm)
        return IssuedToken(
            token=token,
            claims=TokenClaims(
                subject=identity_id,
                roles=role_set,
                kind=kind,
                issued_at=datetime.fromtimestamp(issued_at, UTC),
                expires_at=datetime.fromtimestamp(expires_at, UTC),
                token_id=token_id,
            ),
        )

    def verify(self, token: str, expected_kind: TokenKind, now: datetime) -> TokenClaims:
        """
        Check signature, structure, expiry (at ``now``), and kind, in that order.
        Raises a TokenRejectedError subclass naming the first failed check.
        """
        if not isinstance(token, str) or not token:
            raise TokenMalformedError("Token is empty")
        try:
            payload = jwt.decode(
                token,
                self._verifying_key,
                algorithms=[self._algorithm],
                options={
                    # Expiry is checked below against the caller's clock.
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "require": REQUIRED_CLAIMS,
                },
            )
        except jwt.InvalidSignatureError as e:
            raise TokenSignatureInvalidError("Token signature is invalid") from e
        except jwt.PyJWTError as e:
            raise TokenMalformedError(f"Token could not be decoded: {type(e).__name__}") from e

        claims = _claims_from_payload(payload)
        if as_utc(now) >= claims.expires_at:
            raise TokenExpiredError("Token has expired")
        if claims.kind != expected_kind:
            raise TokenWrongKindError(
                f"Expected {expected_kind.value} token, got {claims.kind.value}"
            )
        return claims


def _claims_from_payload(payload: dict[str, Any]) -> TokenClaims:
    try:
        subject = int(payload["sub"])
        kind = TokenKind(payload["typ"])
    except (TypeError, ValueError) as e:
        raise TokenMalformedError("Token subject or kind is invalid") from e

    raw_roles = payload["roles"]
    if not isinstance(raw_roles, list) or not all(
        isinstance(r, str) and r in ROLE_VALUES for r in raw_roles
    ):
        raise TokenMalformedError("Token roles claim is invalid")

    iat, exp = payload["iat"], payload["exp"]
    if type(iat) is not int or type(exp) is not int or exp <= iat:
        raise TokenMalformedError("Token timestamps are invalid")

    token_id = payload["jti"]
    if not isinstance(token_id, str) or not token_id:
        raise TokenMalformedError("Token id is invalid")

    return TokenClaims(
        subject=subject,
        roles=frozenset(Role(r) for r in raw_roles),
        kind=kind,
        issued_at=datetime.fromtimestamp(iat, UTC),
        expires_at=datetime.fromtimestamp(exp, UTC),
        token_id=token_id,
    )
