"""Closed set of roles an identity can hold."""

from enum import Enum


class Role(str, Enum):
    USER = "user"
    ADMIN = "admin"
    HR = "hr"
    MANAGER = "manager"


ROLE_VALUES: frozenset[str] = frozenset(r.value for r in Role)
