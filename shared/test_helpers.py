"""
Test helper functions and fakes for the Event Context layer.
"""

import asyncio
import json
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

import jwt

from shared.errors import RoleLookupError
from service_event_context.app.roles.models import RoleLookupResponse


HOUR_MS = 60 * 60 * 1000


class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.now_ms = start_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> int:
        self.now_ms += ms
        return self.now_ms


class FakeRoleClient:
    """Stand-in for ``UserRoleClient`` that records every network call.

    ``responses`` maps event ids to a ``RoleLookupResponse`` or an exception
    to raise. When ``hold`` is set, calls wait on it, which keeps several
    lookups overlapping.
    """

    def __init__(self, responses: Optional[Dict[str, Union[RoleLookupResponse, Exception]]] = None):
        self.responses = dict(responses or {})
        self.calls: List[Tuple[str, bool]] = []
        self.hold: Optional[asyncio.Event] = None

    def calls_for(self, event_id: str) -> int:
        return sum(1 for called_id, _ in self.calls if called_id == event_id)

    async def get_role(self, event_id: str, *, skip_global_handlers: bool = False) -> RoleLookupResponse:
        self.calls.append((event_id, skip_global_handlers))
        if self.hold is not None:
            await self.hold.wait()
        result = self.responses.get(event_id)
        if result is None:
            raise RoleLookupError("Not a member of this event", status_code=404)
        if isinstance(result, Exception):
            raise result
        return result


class TestDataFactory:
    """Factory for creating test data."""
    __test__ = False

    @staticmethod
    def role_response(role: str, department_id: Optional[str] = None,
                      member_record_id: Optional[str] = None) -> RoleLookupResponse:
        return RoleLookupResponse(role=role, department_id=department_id, member_record_id=member_record_id)

    @staticmethod
    def role_payload(role: str, event_id: str = "E1", department_id: Optional[str] = "D1",
                     member_id: str = "M1") -> Dict[str, Any]:
        """Body shaped like the user service's role endpoint."""
        return {
            "user": {"_id": "user-a", "fullName": "Alice Nguyen"},
            "event": {"_id": event_id, "name": "Spring Festival"},
            "role": role,
            "departmentId": department_id,
            "eventMemberId": member_id,
            "memberId": member_id,
            "_id": member_id,
        }

    @staticmethod
    def snapshot(entries: Dict[str, Any], written_at: int) -> str:
        """Serialized snapshot in the durable storage format."""
        payload = dict(entries)
        payload["_timestamp"] = written_at
        return json.dumps(payload)


def create_mock_access_token(user_id: str, expires_in: int = 3600, secret: str = "mock-secret-for-event-context-tests") -> str:
    """Create an HS256 access token for Authorization header tests."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=expires_in)).timestamp()),
        "jti": f"test-{int(time.time() * 1000)}",
    }
    return jwt.encode(payload, secret, algorithm="HS256")
