"""
Domain helpers for consumers of the role cache.
"""

from .access_guard import AccessDecision, EventAccessGuard

__all__ = ["AccessDecision", "EventAccessGuard"]
