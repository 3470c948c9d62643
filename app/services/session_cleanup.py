"""Housekeeping: delete refresh sessions whose expiry has passed."""

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from app.services.session_store import SessionStore

if TYPE_CHECKING:
    from app.core.config import Settings

logger = logging.getLogger(__name__)


def run_session_cleanup(
    session: Session, settings: "Settings", now: datetime | None = None
) -> int:
    """
    Delete expired sessions and return how many were removed.

    Not needed for correctness (an expired session already fails lookup).
    Idempotent: safe to run repeatedly and alongside live traffic.
    """
    if not settings.SESSION_CLEANUP_ENABLED:
        logger.info("Session cleanup is disabled (SESSION_CLEANUP_ENABLED=false); skipping.")
        return 0

    cutoff = now or datetime.now(UTC)
    deleted_count = SessionStore(session).delete_expired(cutoff)

    if deleted_count > 0:
        logger.info(
            "Session cleanup run: cutoff=%s, sessions_deleted=%s",
            cutoff.isoformat(),
            deleted_count,
        )
    return deleted_count
