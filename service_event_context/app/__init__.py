"""
Event Context service.

Client-side cache of a user's role within each event, kept consistent
across sibling execution contexts of the same user and torn down when
the authenticated user changes.
"""

from .context import EventContext, build_event_context

__all__ = ["EventContext", "build_event_context"]
