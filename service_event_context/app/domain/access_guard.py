"""
Navigation guard: block privileged rendering until a role is known.
"""

from dataclasses import dataclass
from typing import Iterable, Optional

from shared.errors import SessionError
from shared.logging import get_logger
from ..roles.resolver import RoleResolver
from ..session.lifecycle import SessionLifecycle, SessionState


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    role: str = ""
    reason: str = ""


class EventAccessGuard:
    """Resolve a role before a page renders and deny unless it is known and allowed.

    An empty role never grants access, whether it means "not a member" or
    "lookup failed".
    """

    def __init__(self, lifecycle: SessionLifecycle, resolver: RoleResolver, *, settle_timeout: float = 10.0):
        self.lifecycle = lifecycle
        self.resolver = resolver
        self.settle_timeout = settle_timeout
        self.logger = get_logger("event_context.domain.access_guard")

    async def authorize(self, event_id: Optional[str], allowed_roles: Optional[Iterable[str]] = None) -> AccessDecision:
        try:
            await self.lifecycle.wait_until_settled(self.settle_timeout)
        except SessionError:
            self.logger.warning("Session did not settle in time", event_id=event_id)
            return AccessDecision(False, reason="session_not_ready")

        if self.lifecycle.state is not SessionState.USER:
            return AccessDecision(False, reason="not_authenticated")

        if not event_id:
            return AccessDecision(False, reason="no_event")

        role = await self.resolver.fetch_role(event_id)
        if not role:
            self.logger.info("Access denied; no role in event", event_id=event_id)
            return AccessDecision(False, reason="no_role")

        if isinstance(allowed_roles, str):
            allowed_roles = (allowed_roles,)
        if allowed_roles is not None and role not in set(allowed_roles):
            self.logger.info("Access denied; role not allowed", event_id=event_id, role=role)
            return AccessDecision(False, role=role, reason="role_not_allowed")

        return AccessDecision(True, role=role)
