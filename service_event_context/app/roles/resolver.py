"""
Role resolver: cache-first lookups of the current user's role in an event.
"""

import asyncio
from dataclasses import dataclass, replace
from typing import Any, Dict, Optional, Protocol, Set, TYPE_CHECKING

from shared.logging import get_logger
from shared.errors import RoleLookupError
from ..store.durable_store import DurableStore
from ..store.namespace import CacheNamespace, ROLE_CACHE, MEMBER_CACHE
from .models import FetchState, LookupOutcome, MemberInfo, RoleLookupResponse

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class RoleLookupClient(Protocol):
    async def get_role(self, event_id: str, *, skip_global_handlers: bool = False) -> RoleLookupResponse:
        ...


@dataclass(frozen=True)
class IdentityTag:
    """Identity a fetch was issued under; results commit only while it is still current."""
    user_id: Optional[str]
    generation: int


class RoleResolver:
    """Serve roles from an in-memory mirror of the durable caches.

    The mirror holds two maps kept in lock-step: event id -> role string and
    event id -> ``MemberInfo``. An empty role is a cached "no access" answer;
    an absent key means the role was never fetched. Each entry also keeps the
    time it was written; past the store TTL it reads as absent and is purged.

    At most one lookup per event id is outstanding at a time. Concurrent
    callers for the same id await the same task.
    """

    def __init__(
        self,
        client: RoleLookupClient,
        store: DurableStore,
        *,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.client = client
        self.store = store
        self.metrics = metrics
        self.logger = get_logger("event_context.roles.resolver")

        self._roles: Dict[str, str] = {}
        self._members: Dict[str, MemberInfo] = {}
        self._written_at: Dict[str, int] = {}
        self._in_flight: Dict[str, "asyncio.Task[LookupOutcome]"] = {}
        self._user_id: Optional[str] = None
        self._generation = 0
        self._background: Set[asyncio.Task] = set()

    # Identity

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def identity(self) -> IdentityTag:
        return IdentityTag(self._user_id, self._generation)

    @property
    def is_ready(self) -> bool:
        return self._user_id is not None

    async def activate(self, user_id: str):
        """Install ``user_id``'s durable snapshots as the mirror."""
        self.reset()
        tag = self.identity

        role_snapshot = await self.store.load_snapshot(CacheNamespace(ROLE_CACHE, user_id))
        member_snapshot = await self.store.load_snapshot(CacheNamespace(MEMBER_CACHE, user_id))

        if (role_snapshot is None) != (member_snapshot is None):
            # The two snapshots are written moments apart and can expire apart.
            orphan = MEMBER_CACHE if role_snapshot is None else ROLE_CACHE
            self.logger.warning("Clearing snapshot without its sibling", user_id=user_id, cache=orphan)
            await self.store.clear(CacheNamespace(orphan, user_id))
            role_snapshot = member_snapshot = None

        if self.identity != tag:
            self.logger.info("Identity changed while loading; snapshot discarded", user_id=user_id)
            return

        roles = role_snapshot.entries if role_snapshot is not None else {}
        members = member_snapshot.entries if member_snapshot is not None else {}
        written_at = min(role_snapshot.written_at, member_snapshot.written_at) if role_snapshot is not None else 0

        shared_ids = set(roles) & set(members)
        orphans = (set(roles) | set(members)) - shared_ids
        if orphans:
            self.logger.warning("Dropping orphaned cache entries", user_id=user_id, event_ids=sorted(orphans))

        self._roles = {
            event_id: roles[event_id] if isinstance(roles[event_id], str) else ""
            for event_id in shared_ids
        }
        self._members = {
            event_id: replace(MemberInfo.from_payload(members[event_id]), role=self._roles[event_id])
            for event_id in shared_ids
        }
        self._written_at = {event_id: written_at for event_id in shared_ids}
        self._user_id = user_id
        self._generation += 1
        self._update_gauge()

        self.logger.info("Role cache activated", user_id=user_id, cached_events=len(self._roles))

    def reset(self):
        """Drop the mirror, the in-flight table and the identity in one step."""
        self._roles = {}
        self._members = {}
        self._written_at = {}
        self._in_flight = {}
        self._user_id = None
        self._generation += 1
        self._update_gauge()

    # Reads

    def get_role_sync(self, event_id: Optional[str]) -> str:
        if not event_id:
            return ""
        if self._expire(event_id):
            self._persist_in_background()
        return self._roles.get(event_id, "")

    def get_member_sync(self, event_id: Optional[str]) -> MemberInfo:
        if not event_id:
            return MemberInfo()
        if self._expire(event_id):
            self._persist_in_background()
        return self._members.get(event_id, MemberInfo())

    def fetch_state(self, event_id: str) -> FetchState:
        if event_id in self._in_flight:
            return FetchState.FETCHING
        if event_id in self._roles and not self._is_expired(event_id):
            return FetchState.RESOLVED
        return FetchState.IDLE

    def roles_snapshot(self) -> Dict[str, str]:
        return dict(self._roles)

    def entries(self, logical_name: str) -> Dict[str, Any]:
        """The mirror of one durable cache, in its persisted shape."""
        if logical_name == ROLE_CACHE:
            return dict(self._roles)
        if logical_name == MEMBER_CACHE:
            return {event_id: member.to_payload() for event_id, member in self._members.items()}
        return {}

    # Lookups

    async def fetch_role(self, event_id: Optional[str]) -> str:
        """Role of the current user in ``event_id``; ``""`` for none, unknown or failed."""
        if not event_id:
            return ""

        self._expire(event_id)
        if event_id in self._roles:
            self._record("cache_hits_total", cache_type="role")
            return self._roles[event_id]

        if self._user_id is None:
            self.logger.debug("No active identity; role lookup skipped", event_id=event_id)
            return ""

        task = self._in_flight.get(event_id)
        if task is None:
            self._record("cache_misses_total", cache_type="role")
            task = self._start_fetch(event_id, force=False)
        else:
            self.logger.debug("Joining in-flight role lookup", event_id=event_id)

        outcome = await asyncio.shield(task)
        return outcome.role

    async def force_refresh(self, event_id: Optional[str], *, raise_on_error: bool = False) -> str:
        """Drop any cached entry and fetch again, bypassing the mirror.

        The request skips the client's global access-denied handling. A
        failure is still negative-cached; with ``raise_on_error`` the lookup
        error is re-raised afterwards so the caller can tell a transient
        failure from "no access".
        """
        if not event_id:
            return ""

        if self._user_id is None:
            self.logger.debug("No active identity; forced refresh skipped", event_id=event_id)
            return ""

        self._roles.pop(event_id, None)
        self._members.pop(event_id, None)
        self._written_at.pop(event_id, None)
        self._update_gauge()

        task = self._start_fetch(event_id, force=True)
        outcome = await asyncio.shield(task)
        if outcome.error is not None and raise_on_error:
            raise outcome.error
        return outcome.role

    async def invalidate(self, event_id: Optional[str]):
        """Forget one event's entry; the next ``fetch_role`` is a cold miss."""
        if not event_id or (event_id not in self._roles and event_id not in self._members):
            return

        self._roles.pop(event_id, None)
        self._members.pop(event_id, None)
        self._written_at.pop(event_id, None)
        self._update_gauge()
        self.logger.debug("Role cache entry invalidated", event_id=event_id)
        await self._persist(self.identity)

    async def clear_all(self):
        """Drop every entry for the current user, in memory and on disk."""
        user_id = self._user_id
        self._roles = {}
        self._members = {}
        self._written_at = {}
        self._in_flight = {}
        self._generation += 1
        self._update_gauge()

        if user_id:
            await self.store.clear(CacheNamespace(ROLE_CACHE, user_id))
            await self.store.clear(CacheNamespace(MEMBER_CACHE, user_id))
        self.logger.info("Role cache cleared", user_id=user_id)

    # Remote updates

    def apply_remote_entries(self, logical_name: str, entries: Dict[str, Any],
                             written_at: Optional[int] = None) -> bool:
        """Replace the mirror from a sibling's snapshot; returns whether anything changed.

        Either cache's snapshot rebuilds both maps, so the mirror stays in
        lock-step even though the two snapshots arrive separately. Entries
        that keep their value keep their write time; the rest take the
        snapshot's ``written_at``.
        """
        if self._user_id is None:
            return False

        if logical_name == ROLE_CACHE:
            roles = {
                event_id: role if isinstance(role, str) else ""
                for event_id, role in entries.items()
            }
            if roles == self._roles:
                return False
            members = {}
            for event_id, role in roles.items():
                current = self._members.get(event_id)
                members[event_id] = current if current is not None and current.role == role else MemberInfo(role=role)
        elif logical_name == MEMBER_CACHE:
            members = {event_id: MemberInfo.from_payload(payload) for event_id, payload in entries.items()}
            if members == self._members:
                return False
            roles = {event_id: member.role for event_id, member in members.items()}
        else:
            return False

        stamp = written_at if written_at is not None else self.store.clock()
        self._written_at = {
            event_id: self._written_at.get(event_id, stamp) if self._roles.get(event_id) == role else stamp
            for event_id, role in roles.items()
        }
        self._roles = roles
        self._members = members
        self._update_gauge()
        return True

    # Internals

    def _start_fetch(self, event_id: str, *, force: bool) -> "asyncio.Task[LookupOutcome]":
        task = asyncio.ensure_future(self._resolve(event_id, self.identity, force=force))
        self._in_flight[event_id] = task
        task.add_done_callback(lambda done, key=event_id: self._release(key, done))
        return task

    def _release(self, event_id: str, task: "asyncio.Task[LookupOutcome]"):
        if self._in_flight.get(event_id) is task:
            del self._in_flight[event_id]

    async def _resolve(self, event_id: str, tag: IdentityTag, *, force: bool) -> LookupOutcome:
        try:
            response = await self.client.get_role(event_id, skip_global_handlers=force)
        except RoleLookupError as e:
            error = e
        except Exception as e:
            self.logger.error("Unexpected role lookup failure", event_id=event_id, error=str(e))
            error = RoleLookupError(f"Role lookup failed: {e}", details={"error": str(e)})
        else:
            member = MemberInfo.from_response(response)
            self._record("role_fetches_total", outcome="success")
            return await self._commit(event_id, member, tag)

        self.logger.warning(
            "Role lookup failed; caching empty role",
            event_id=event_id,
            status_code=error.status_code,
            error=error.message
        )
        self._record("role_fetches_total", outcome="failure")
        outcome = await self._commit(event_id, MemberInfo(), tag)
        return replace(outcome, error=error)

    async def _commit(self, event_id: str, member: MemberInfo, tag: IdentityTag) -> LookupOutcome:
        if tag != self.identity:
            self.logger.info(
                "Discarding role fetched for a previous identity",
                event_id=event_id,
                fetched_for=tag.user_id
            )
            self._record("role_fetches_total", outcome="discarded")
            return LookupOutcome(role="")

        if self._in_flight.get(event_id) is not asyncio.current_task():
            # A forced refresh replaced this fetch; its result wins.
            self.logger.debug("Superseded role lookup not committed", event_id=event_id)
            return LookupOutcome(role=member.role)

        self._roles[event_id] = member.role
        self._members[event_id] = member
        self._written_at[event_id] = self.store.clock()
        self._update_gauge()
        self.logger.debug("Role cached", event_id=event_id, role=member.role)

        await self._persist(tag)
        return LookupOutcome(role=member.role, committed=True)

    async def _persist(self, tag: IdentityTag):
        if not tag.user_id or tag != self.identity:
            return
        for event_id in list(self._roles):
            self._expire(event_id)
        # Both snapshots are taken before the first write so they carry the same keys.
        snapshots = ((ROLE_CACHE, self.entries(ROLE_CACHE)), (MEMBER_CACHE, self.entries(MEMBER_CACHE)))
        for logical_name, entries in snapshots:
            if tag != self.identity:
                return
            await self.store.save(CacheNamespace(logical_name, tag.user_id), entries)

    def _is_expired(self, event_id: str) -> bool:
        written_at = self._written_at.get(event_id)
        return written_at is not None and self.store.clock() - written_at > self.store.ttl_ms

    def _expire(self, event_id: str) -> bool:
        """Drop ``event_id`` from the mirror if it outlived the TTL."""
        if event_id not in self._roles or not self._is_expired(event_id):
            return False
        self._roles.pop(event_id, None)
        self._members.pop(event_id, None)
        self._written_at.pop(event_id, None)
        self._update_gauge()
        self._record("role_fetches_total", outcome="expired")
        self.logger.info("Role cache entry expired", event_id=event_id)
        return True

    def _persist_in_background(self):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._persist(self.identity))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _record(self, metric_name: str, **labels):
        if self.metrics:
            self.metrics.increment_counter(metric_name, **labels)

    def _update_gauge(self):
        if self.metrics:
            self.metrics.set_gauge("cached_events", len(self._roles))
