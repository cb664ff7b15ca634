"""
User service client for role lookups.
"""

from typing import Awaitable, Callable, Optional, Union

import httpx
from pydantic import ValidationError

from shared.logging import get_logger
from shared.errors import RoleLookupError
from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException, get_circuit_breaker
from ..roles.models import RoleLookupResponse

TokenProvider = Callable[[], Optional[str]]
AccessDeniedHandler = Callable[[str, int], Union[None, Awaitable[None]]]


class UserRoleClient:
    """Client for ``GET /api/user/events/{event_id}/role``."""

    def __init__(
        self,
        user_service_url: str,
        token_provider: Optional[TokenProvider] = None,
        *,
        timeout: float = 10.0,
        on_access_denied: Optional[AccessDeniedHandler] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.user_service_url = user_service_url.rstrip("/")
        self.token_provider = token_provider
        self.timeout = timeout
        self.on_access_denied = on_access_denied
        self.logger = get_logger("event_context.user_client")
        self.circuit_breaker = circuit_breaker or get_circuit_breaker(
            "role_lookup",
            failure_threshold=5,
            recovery_timeout=30.0
        )

    def _headers(self) -> dict:
        token = self.token_provider() if self.token_provider else None
        if token:
            return {"Authorization": f"Bearer {token}"}
        return {}

    async def get_role(self, event_id: str, *, skip_global_handlers: bool = False) -> RoleLookupResponse:
        """Look up the current user's role in ``event_id``.

        Every failure surfaces as ``RoleLookupError``. For 403/404 the
        ``on_access_denied`` hook runs first unless ``skip_global_handlers``
        is set, which lets the caller present its own access-denied state.
        """
        async def _get_role():
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    f"{self.user_service_url}/api/user/events/{event_id}/role",
                    headers=self._headers()
                )

                # 4xx answers are about this user, not endpoint health, so they
                # do not count against the circuit breaker.
                if response.status_code >= 500:
                    raise RoleLookupError(
                        f"User service error: {response.status_code}",
                        status_code=response.status_code,
                        details={"event_id": event_id}
                    )
                return response.status_code, (response.json() if response.status_code == 200 and response.content else None)

        try:
            status_code, payload = await self.circuit_breaker.call(_get_role)
        except RoleLookupError as e:
            self.logger.error("User service error", event_id=event_id, status_code=e.status_code)
            raise
        except CircuitBreakerOpenException as e:
            self.logger.warning("Role lookup blocked by circuit breaker", event_id=event_id)
            raise RoleLookupError("User service unavailable", details={"circuit_breaker": str(e)})
        except httpx.HTTPError as e:
            self.logger.error("User service HTTP error", event_id=event_id, error=str(e))
            raise RoleLookupError("User service unavailable", details={"http_error": str(e)})
        except ValueError as e:
            self.logger.error("User service returned invalid JSON", event_id=event_id, error=str(e))
            raise RoleLookupError("Invalid role lookup response", details={"error": str(e)})

        if not 200 <= status_code < 300:
            error = RoleLookupError(
                f"Role lookup rejected: {status_code}",
                status_code=status_code,
                details={"event_id": event_id}
            )
            self.logger.warning("Role lookup rejected", event_id=event_id, status_code=status_code)
            if error.is_access_denied and not skip_global_handlers:
                await self._access_denied(event_id, status_code)
            raise error

        try:
            return RoleLookupResponse.model_validate(payload or {})
        except ValidationError as e:
            self.logger.error("User service returned unexpected payload", event_id=event_id, error=str(e))
            raise RoleLookupError("Invalid role lookup response", details={"error": str(e)})

    async def _access_denied(self, event_id: str, status_code: int):
        if self.on_access_denied is None:
            return
        try:
            result = self.on_access_denied(event_id, status_code)
            if result is not None:
                await result
        except Exception as e:
            self.logger.error("Access denied handler failed", event_id=event_id, error=str(e))
