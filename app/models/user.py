"""ORM models for identities and their role assignments (auth and RBAC)."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import relationship

from app.core.roles import Role
from app.models.base import Base


class User(Base):
    """
    Identity used for JWT authentication and role-based access control.

    Holds any number of roles through user_roles.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(255), nullable=False, unique=True, index=True)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    role_assignments = relationship(
        "UserRole",
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def roles(self) -> frozenset[Role]:
        return frozenset(Role(a.role) for a in self.role_assignments)


class UserRole(Base):
    """One role held by one user. role is a Role value."""

    __tablename__ = "user_roles"

    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    role = Column(String(32), primary_key=True)

    user = relationship("User", back_populates="role_assignments")
