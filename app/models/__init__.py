"""SQLAlchemy ORM models."""

from app.models.base import Base
from app.models.refresh_session import RefreshSession
from app.models.user import User, UserRole

__all__ = ["Base", "RefreshSession", "User", "UserRole"]
