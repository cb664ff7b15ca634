"""
Session lifecycle package: identity scoping of the role cache.
"""

from .signals import LogoutSignal, logout_signal
from .lifecycle import SessionLifecycle, SessionState

__all__ = ["LogoutSignal", "logout_signal", "SessionLifecycle", "SessionState"]
