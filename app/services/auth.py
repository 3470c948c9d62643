"""Login, signup, refresh-token rotation, and logout."""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import (
    CredentialInvalidError,
    RefreshDeniedError,
    SessionNotFoundError,
    StoreUnavailableError,
    TokenRejectedError,
    UsernameTakenError,
)
from app.core.roles import Role
from app.core.security import dummy_password_hash, hash_password, verify_password
from app.core.tokens import IssuedToken, TokenCodec, TokenKind
from app.models import User, UserRole
from app.services.session_store import SessionStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class TokenPair:
    """Access and refresh tokens issued together, plus the session backing the refresh token."""

    identity_id: int
    access: IssuedToken
    refresh: IssuedToken
    session_id: str


class AuthService:
    """
    Drives the credential lifecycle:
    anonymous -> authenticated (login/signup) -> rotated (refresh) -> revoked (logout/expiry).

    Owns all session mutations; the request gate only reads tokens.
    """

    def __init__(
        self,
        db: Session,
        codec: TokenCodec,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._db = db
        self._codec = codec
        self._sessions = SessionStore(db)
        self._clock = clock

    def _get_user_by_username(self, username: str) -> User | None:
        try:
            return self._db.query(User).filter(User.username == username).first()
        except SQLAlchemyError as e:
            self._db.rollback()
            raise StoreUnavailableError("Credential store lookup failed", cause=e) from e

    def _get_user(self, identity_id: int) -> User | None:
        try:
            return self._db.query(User).filter(User.id == identity_id).first()
        except SQLAlchemyError as e:
            self._db.rollback()
            raise StoreUnavailableError("Credential store lookup failed", cause=e) from e

    def _issue_pair(
        self, identity_id: int, roles: Iterable[Role], now: datetime
    ) -> tuple[IssuedToken, IssuedToken]:
        roles = frozenset(roles)
        access = self._codec.issue(identity_id, roles, TokenKind.ACCESS, now)
        refresh = self._codec.issue(identity_id, roles, TokenKind.REFRESH, now)
        return access, refresh

    def _start_session(self, user: User, now: datetime) -> TokenPair:
        access, refresh = self._issue_pair(user.id, user.roles, now)
        session_id = self._sessions.create(user.id, refresh.token, refresh.expires_at, now)
        return TokenPair(
            identity_id=user.id, access=access, refresh=refresh, session_id=session_id
        )

    def login(self, username: str, password: str) -> TokenPair:
        """
        Verify credentials and start a session. Unknown user and wrong password
        raise the same CredentialInvalidError.
        """
        now = self._clock()
        user = self._get_user_by_username(username)
        if user is None:
            # Same bcrypt cost as a real check so timing does not reveal unknown usernames.
            verify_password(password, dummy_password_hash())
            logger.info("Login failed: credentials invalid")
            raise CredentialInvalidError()
        if not verify_password(password, user.password_hash):
            logger.info("Login failed: credentials invalid")
            raise CredentialInvalidError()
        pair = self._start_session(user, now)
        logger.info("Login succeeded: user_id=%s username=%s", user.id, user.username)
        return pair

    def signup(
        self,
        username: str,
        password: str,
        roles: Iterable[Role] = (Role.USER,),
    ) -> TokenPair:
        """
        Create an identity and issue its first token pair.

        The user row and its first session are committed together, so a store
        failure leaves neither behind and the same signup can be retried.
        """
        now = self._clock()
        if self._get_user_by_username(username) is not None:
            raise UsernameTakenError()
        user = User(
            username=username,
            password_hash=hash_password(password),
            role_assignments=[UserRole(role=Role(r).value) for r in set(roles)],
        )
        try:
            self._db.add(user)
            self._db.flush()
            identity_id = user.id
            access, refresh = self._issue_pair(identity_id, user.roles, now)
            session_id = self._sessions.add_pending(
                identity_id, refresh.token, refresh.expires_at, now
            )
            self._db.commit()
        except IntegrityError as e:
            self._db.rollback()
            raise UsernameTakenError() from e
        except SQLAlchemyError as e:
            self._db.rollback()
            raise StoreUnavailableError("Credential store insert failed", cause=e) from e
        logger.info("Signup succeeded: user_id=%s username=%s", identity_id, username)
        return TokenPair(identity_id=identity_id, access=access, refresh=refresh, session_id=session_id)

    def refresh(self, presented_refresh_token: str) -> TokenPair:
        """
        Exchange a refresh token for a new pair and retire the old session.

        The token must verify AND have a live session; a valid signature alone
        is never trusted. Raises a RefreshDeniedError subclass otherwise.
        """
        now = self._clock()
        try:
            claims = self._codec.verify(presented_refresh_token, TokenKind.REFRESH, now)
        except TokenRejectedError as e:
            logger.info("Refresh denied: token rejected (%s)", e.reason.value)
            raise RefreshDeniedError() from e

        record = self._sessions.lookup(presented_refresh_token, now)
        if record is None or record.user_id != claims.subject:
            logger.info("Refresh denied: session not found for user_id=%s", claims.subject)
            raise SessionNotFoundError()

        user = self._get_user(claims.subject)
        if user is None:
            self._sessions.delete(presented_refresh_token)
            logger.info("Refresh denied: identity %s no longer exists", claims.subject)
            raise SessionNotFoundError()

        # Roles come from the credential store so changes apply at the next rotation.
        access, refresh = self._issue_pair(user.id, user.roles, now)
        session_id = self._sessions.rotate(
            presented_refresh_token, refresh.token, user.id, refresh.expires_at, now
        )
        logger.info("Refresh rotated: user_id=%s session_id=%s", user.id, session_id)
        return TokenPair(identity_id=user.id, access=access, refresh=refresh, session_id=session_id)

    def logout(self, refresh_token: str | None) -> None:
        """Delete the session for refresh_token. Missing or unknown tokens are not an error."""
        if not refresh_token:
            return
        removed = self._sessions.delete(refresh_token)
        logger.info("Logout: session_removed=%s", removed)

    def logout_all(self, identity_id: int) -> int:
        """Revoke every session of identity_id; returns how many were removed."""
        removed = self._sessions.delete_for_identity(identity_id)
        logger.info("Logout all: user_id=%s sessions_removed=%s", identity_id, removed)
        return removed
