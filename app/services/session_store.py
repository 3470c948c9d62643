"""Server-side refresh sessions: create, lookup, atomic rotate, revoke, sweep."""

import hashlib
import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import RotationConflictError, StoreUnavailableError
from app.core.tokens import as_utc
from app.models import RefreshSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionRecord:
    """Live session as seen by callers (no token material)."""

    id: str
    user_id: int
    expires_at: datetime
    created_at: datetime


def hash_refresh_token(refresh_token: str) -> str:
    """Key sessions by SHA-256 of the token so a leaked table does not leak usable tokens."""
    return hashlib.sha256(refresh_token.encode("utf-8")).hexdigest()


def _to_record(row: RefreshSession) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        user_id=row.user_id,
        expires_at=as_utc(row.expires_at),
        created_at=as_utc(row.created_at),
    )


class SessionStore:
    """
    Refresh session persistence over a SQLAlchemy session.

    Every mutating method commits its own transaction. Database failures are
    rolled back and raised as StoreUnavailableError, never as a denial.
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            self._db.rollback()
            logger.error("Session store %s failed: %s", operation, type(e).__name__)
            raise StoreUnavailableError(f"Session store {operation} failed", cause=e) from e

    def create(
        self,
        identity_id: int,
        refresh_token: str,
        expires_at: datetime,
        now: datetime,
    ) -> str:
        """Persist a session for refresh_token and return its id."""
        with self._transaction("create"):
            session_id = self.add_pending(identity_id, refresh_token, expires_at, now)
            self._db.commit()
        return session_id

    def add_pending(
        self,
        identity_id: int,
        refresh_token: str,
        expires_at: datetime,
        now: datetime,
    ) -> str:
        """Stage a session row in the caller's open transaction; the caller commits."""
        session_id = str(uuid.uuid4())
        self._db.add(
            RefreshSession(
                id=session_id,
                user_id=identity_id,
                token_hash=hash_refresh_token(refresh_token),
                expires_at=as_utc(expires_at),
                created_at=as_utc(now),
            )
        )
        return session_id

    def lookup(self, refresh_token: str, now: datetime) -> SessionRecord | None:
        """Return the live session for refresh_token, or None if absent or expired."""
        with self._transaction("lookup"):
            row = (
                self._db.query(RefreshSession)
                .filter(
                    RefreshSession.token_hash == hash_refresh_token(refresh_token),
                    RefreshSession.expires_at > as_utc(now),
                )
                .first()
            )
            record = _to_record(row) if row is not None else None
            # End the read transaction so a later rotate starts fresh.
            self._db.rollback()
        return record

    def rotate(
        self,
        old_refresh_token: str,
        new_refresh_token: str,
        identity_id: int,
        expires_at: datetime,
        now: datetime,
    ) -> str:
        """
        Replace the session for old_refresh_token with one for new_refresh_token.

        The conditional delete and the insert share one transaction. The delete
        only matches a live row owned by identity_id, so of two concurrent
        rotations of the same token exactly one sees a deleted row; the other
        rolls back and gets RotationConflictError.
        """
        session_id = str(uuid.uuid4())
        with self._transaction("rotate"):
            deleted = (
                self._db.query(RefreshSession)
                .filter(
                    RefreshSession.token_hash == hash_refresh_token(old_refresh_token),
                    RefreshSession.user_id == identity_id,
                    RefreshSession.expires_at > as_utc(now),
                )
                .delete(synchronize_session=False)
            )
            if deleted != 1:
                self._db.rollback()
                logger.warning(
                    "Rotation conflict: user_id=%s old session already gone", identity_id
                )
                raise RotationConflictError()
            self._db.add(
                RefreshSession(
                    id=session_id,
                    user_id=identity_id,
                    token_hash=hash_refresh_token(new_refresh_token),
                    expires_at=as_utc(expires_at),
                    created_at=as_utc(now),
                )
            )
            self._db.commit()
        return session_id

    def delete(self, refresh_token: str) -> bool:
        """Delete the session for refresh_token. Idempotent; returns whether a row was removed."""
        with self._transaction("delete"):
            deleted = (
                self._db.query(RefreshSession)
                .filter(RefreshSession.token_hash == hash_refresh_token(refresh_token))
                .delete(synchronize_session=False)
            )
            self._db.commit()
        return deleted > 0

    def delete_session(self, session_id: str) -> bool:
        """Delete a session by id. Idempotent."""
        with self._transaction("delete_session"):
            deleted = (
                self._db.query(RefreshSession)
                .filter(RefreshSession.id == session_id)
                .delete(synchronize_session=False)
            )
            self._db.commit()
        return deleted > 0

    def delete_for_identity(self, identity_id: int) -> int:
        """Delete every session owned by identity_id; returns how many were removed."""
        with self._transaction("delete_for_identity"):
            deleted = (
                self._db.query(RefreshSession)
                .filter(RefreshSession.user_id == identity_id)
                .delete(synchronize_session=False)
            )
            self._db.commit()
        return deleted

    def delete_expired(self, now: datetime) -> int:
        """Delete sessions with expires_at <= now. Idempotent: safe to run repeatedly."""
        with self._transaction("delete_expired"):
            deleted = (
                self._db.query(RefreshSession)
                .filter(RefreshSession.expires_at <= as_utc(now))
                .delete(synchronize_session=False)
            )
            self._db.commit()
        return deleted
