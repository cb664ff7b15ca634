"""
Cross-context synchronization package.

Transports (in-process hub, Redis pub/sub) carry storage-change messages
between execution contexts; ``CrossContextSync`` holds the merge rules and
stays independent of the transport.
"""

from .channel import (
    BroadcastMessage,
    BroadcastChannel,
    LocalBroadcastHub,
    LocalBroadcastChannel,
    RedisBroadcastChannel,
)
from .cross_context import CrossContextSync

__all__ = [
    "BroadcastMessage",
    "BroadcastChannel",
    "LocalBroadcastHub",
    "LocalBroadcastChannel",
    "RedisBroadcastChannel",
    "CrossContextSync",
]
