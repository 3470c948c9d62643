"""
CLI entrypoint for the expired session sweep. Run from cron, e.g.:

  python -m app.session_cleanup

Or hourly: 0 * * * * cd /path/to/workforce-api && .venv/bin/python -m app.session_cleanup
"""

import logging
import sys

from app.core.config import get_settings
from app.core.database import SessionLocal
from app.core.errors import StoreUnavailableError
from app.services.session_cleanup import run_session_cleanup

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%SZ",
)
logger = logging.getLogger(__name__)


def main() -> int:
    """Run the sweep: delete refresh sessions past their expiry."""
    settings = get_settings()
    db = SessionLocal()
    try:
        deleted = run_session_cleanup(db, settings)
        logger.info("Session cleanup completed: sessions_deleted=%s", deleted)
        return 0
    except StoreUnavailableError as e:
        logger.error("Session cleanup failed: %s", e.message)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
