"""
Session lifecycle: scope the role cache to the authenticated user.
"""

import asyncio
from enum import Enum
from typing import Iterable, Optional, TYPE_CHECKING

from shared.errors import SessionError
from shared.logging import get_logger, set_user_context
from ..roles.resolver import RoleResolver
from ..store.durable_store import DurableStore
from ..store.namespace import CacheNamespace, ROLE_CACHE, MEMBER_CACHE
from .signals import LogoutSignal

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_SELECTION_CACHES = ("selectedEvent", "selectedDepartment")


class SessionState(Enum):
    NO_USER = "no_user"
    LOADING = "loading"
    USER = "user"


class SessionLifecycle:
    """State machine over ``NO_USER -> LOADING -> USER(id)``.

    A change of user is a teardown followed by a fresh load, never an
    update in place. Teardown resets the resolver synchronously before any
    durable I/O, so a reader never sees the previous user's roles once a
    switch or logout has begun. Transitions are serialized.
    """

    def __init__(
        self,
        resolver: RoleResolver,
        store: DurableStore,
        *,
        signal: Optional[LogoutSignal] = None,
        selection_caches: Iterable[str] = DEFAULT_SELECTION_CACHES,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.resolver = resolver
        self.store = store
        self.signal = signal
        self.selection_caches = tuple(selection_caches)
        self.metrics = metrics
        self.logger = get_logger("event_context.session.lifecycle")

        self._state = SessionState.NO_USER
        self._user_id: Optional[str] = None
        self._lock = asyncio.Lock()
        self._settled = asyncio.Event()
        self._settled.set()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    def attach(self):
        """Listen for the logout signal."""
        if self.signal is not None:
            self.signal.connect(self.on_logout)

    def detach(self):
        if self.signal is not None:
            self.signal.disconnect(self.on_logout)

    async def wait_until_settled(self, timeout: Optional[float] = None):
        """Wait until no transition is in progress.

        Raises ``SessionError`` if a transition is still running after ``timeout`` seconds.
        """
        try:
            await asyncio.wait_for(self._settled.wait(), timeout)
        except asyncio.TimeoutError:
            raise SessionError(
                "Session transition did not settle",
                details={"state": self._state.value, "timeout": timeout}
            )

    async def on_authenticated(self, user_id: Optional[str]):
        """Handle a successful authentication (first login or user switch)."""
        if not user_id:
            await self.on_logout()
            return

        async with self._lock:
            if self._state is SessionState.USER and self._user_id == user_id:
                return

            previous = self._user_id
            self._settled.clear()
            self._state = SessionState.LOADING
            try:
                if previous is not None:
                    self.logger.info("User switch detected", previous_user_id=previous, user_id=user_id)
                    await self._teardown(previous)
                    self._record("switch")
                else:
                    self.resolver.reset()
                    self._record("login")

                self._user_id = user_id
                set_user_context(user_id)
                await self.resolver.activate(user_id)
            finally:
                self._state = SessionState.USER if self._user_id else SessionState.NO_USER
                self._settled.set()

            self.logger.info("Session ready", user_id=user_id, cached_events=len(self.resolver.roles_snapshot()))

    async def on_logout(self):
        """Tear down the current user's cache; a no-op when nobody is signed in."""
        async with self._lock:
            if self._state is SessionState.NO_USER and self._user_id is None:
                self.logger.debug("Logout ignored; no active session")
                return

            previous = self._user_id
            self._settled.clear()
            try:
                self._user_id = None
                self._state = SessionState.NO_USER
                if previous is not None:
                    await self._teardown(previous)
                else:
                    self.resolver.reset()
                set_user_context(None)
                self._record("logout")
            finally:
                self._settled.set()

            self.logger.info("Session ended", previous_user_id=previous)

    async def check(self, current_user_id: Optional[str]):
        """Reconcile with the authentication state observed right now.

        Catches a missed logout signal (user became absent) as well as a
        user change that happened in another part of the client.
        """
        if current_user_id:
            if current_user_id != self._user_id or self._state is not SessionState.USER:
                await self.on_authenticated(current_user_id)
            return

        if self._state is not SessionState.NO_USER or self._user_id is not None:
            self.logger.warning("Authenticated user disappeared; tearing down session", user_id=self._user_id)
            await self.on_logout()

    async def _teardown(self, user_id: str):
        self.resolver.reset()
        for logical_name in (ROLE_CACHE, MEMBER_CACHE) + self.selection_caches:
            await self.store.clear(CacheNamespace(logical_name, user_id))

    def _record(self, transition: str):
        if self.metrics:
            self.metrics.increment_counter("session_transitions_total", transition=transition)
