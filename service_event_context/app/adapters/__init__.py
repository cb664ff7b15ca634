"""
Adapters package for the Event Context service.

HTTP client wrappers for the endpoints the role cache depends on. Keep
adapters thin: request shapes, circuit breaking and mapping of failures
onto shared errors.
"""

from .user_client import UserRoleClient

__all__ = ["UserRoleClient"]
