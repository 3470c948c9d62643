"""SQLAlchemy declarative Base shared by the identity and session tables."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
