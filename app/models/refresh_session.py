"""ORM model for server-side refresh token sessions (revocation source of truth)."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from app.models.base import Base


class RefreshSession(Base):
    """
    One row per live refresh token.

    token_hash is the SHA-256 hex digest of the refresh token; the raw token is
    never stored. A refresh token is usable only while its row exists and
    expires_at is in the future.
    """

    __tablename__ = "refresh_sessions"

    id = Column(String(36), primary_key=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token_hash = Column(String(64), nullable=False, unique=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
