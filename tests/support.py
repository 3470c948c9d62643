"""Shared builders for tests: in-memory database, codec, users, controllable clock."""

from datetime import UTC, datetime, timedelta
from typing import Iterable

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.roles import Role
from app.core.security import hash_password
from app.core.tokens import TokenCodec, as_utc
from app.models import Base, RefreshSession, User, UserRole

TEST_SECRET = "test-secret-key-that-is-long-enough-for-hs256"
OTHER_SECRET = "another-secret-key-that-is-also-long-enough"
T0 = datetime(2026, 1, 5, 9, 0, 0, tzinfo=UTC)


def make_session_factory(url: str = "sqlite://") -> sessionmaker:
    """Fresh schema on a new engine. In-memory URLs share one connection across threads."""
    if url == "sqlite://":
        engine = create_engine(
            url, connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
    else:
        engine = create_engine(url, connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


def make_codec(
    secret: str = TEST_SECRET,
    access_minutes: int = 60,
    refresh_minutes: int = 1440,
) -> TokenCodec:
    return TokenCodec(
        algorithm="HS256",
        signing_key=secret,
        verifying_key=secret,
        access_ttl=timedelta(minutes=access_minutes),
        refresh_ttl=timedelta(minutes=refresh_minutes),
    )


def add_user(
    db: Session,
    username: str,
    password: str,
    roles: Iterable[Role] = (Role.USER,),
) -> User:
    user = User(
        username=username,
        password_hash=hash_password(password, rounds=4),
        role_assignments=[UserRole(role=Role(r).value) for r in set(roles)],
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def count_live_sessions(db: Session, identity_id: int, now: datetime) -> int:
    """Number of unexpired sessions owned by identity_id."""
    return (
        db.query(RefreshSession)
        .filter(RefreshSession.user_id == identity_id, RefreshSession.expires_at > as_utc(now))
        .count()
    )


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)
