"""Per-request identity resolution and role checks, independent of the web framework."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from app.core.errors import RoleDeniedError
from app.core.roles import Role
from app.core.tokens import TokenCodec, TokenKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestContext:
    """
    Identity resolved from the access token of a single request.

    Built fresh for every request and passed down explicitly; nothing is kept
    between requests. CRUD handlers use it for audit fields and role gating.
    """

    identity_id: int
    roles: frozenset[Role]

    def current_identity_id(self) -> int:
        return self.identity_id

    def current_roles(self) -> frozenset[Role]:
        return self.roles

    def has_role(self, role: Role) -> bool:
        return role in self.roles


def resolve_context(codec: TokenCodec, access_token: str, now: datetime) -> RequestContext:
    """Verify an access token and build the request context. Raises TokenRejectedError."""
    claims = codec.verify(access_token, TokenKind.ACCESS, now)
    return RequestContext(identity_id=claims.subject, roles=claims.roles)


def authorize(context: RequestContext, required_roles: Iterable[Role]) -> RequestContext:
    """
    Allow when the context holds at least one required role. An empty
    requirement allows any authenticated identity. Raises RoleDeniedError.
    """
    required = frozenset(required_roles)
    if required and not (context.roles & required):
        logger.info(
            "Role denied: user_id=%s roles=%s required=%s",
            context.identity_id,
            sorted(r.value for r in context.roles),
            sorted(r.value for r in required),
        )
        raise RoleDeniedError(required)
    return context
