"""
Role resolution package.
"""

from .models import MemberInfo, RoleLookupResponse, FetchState, LookupOutcome
from .resolver import RoleResolver, IdentityTag

__all__ = [
    "MemberInfo",
    "RoleLookupResponse",
    "FetchState",
    "LookupOutcome",
    "RoleResolver",
    "IdentityTag",
]
