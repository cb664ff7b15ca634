"""
Durable key naming.
"""

from dataclasses import dataclass
from typing import Optional

ROLE_CACHE = "eventRoles"
MEMBER_CACHE = "eventMembers"
SCOPED_CACHES = (ROLE_CACHE, MEMBER_CACHE)

TIMESTAMP_FIELD = "_timestamp"


@dataclass(frozen=True)
class CacheNamespace:
    """A logical cache name scoped to one user.

    A namespace without a user id is inert: nothing is read from or
    written to the medium for it.
    """
    logical_name: str
    user_id: Optional[str] = None

    @property
    def is_inert(self) -> bool:
        return not self.user_id

    @property
    def key(self) -> Optional[str]:
        if self.is_inert:
            return None
        return f"{self.logical_name}_{self.user_id}"

    @classmethod
    def from_key(cls, key: str) -> Optional["CacheNamespace"]:
        """Parse a durable key back into a namespace, ``None`` if it is not scoped."""
        logical_name, sep, user_id = key.partition("_")
        if not sep or not logical_name or not user_id:
            return None
        return cls(logical_name, user_id)
