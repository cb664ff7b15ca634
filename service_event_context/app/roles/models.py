"""
Role cache data models.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from shared.errors import RoleLookupError


class FetchState(Enum):
    """Per-event fetch state inside one execution context."""
    IDLE = "idle"
    FETCHING = "fetching"
    RESOLVED = "resolved"


class RoleLookupResponse(BaseModel):
    """Body of a successful role lookup. An empty role is a valid answer."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    role: str = ""
    department_id: Optional[str] = Field(default=None, alias="departmentId")
    member_record_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("memberRecordId", "eventMemberId", "memberId", "_id", "member_record_id"),
    )

    @field_validator("role", mode="before")
    @classmethod
    def _role_or_empty(cls, value: Any) -> str:
        return value or ""

    @field_validator("department_id", "member_record_id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Optional[str]:
        # Populated references come back as {"_id": ..., "name": ...}
        if isinstance(value, dict):
            value = value.get("_id")
        if value in (None, ""):
            return None
        return str(value)


@dataclass(frozen=True)
class MemberInfo:
    """Structured form of a cached role."""
    role: str = ""
    department_id: Optional[str] = None
    member_record_id: Optional[str] = None

    @classmethod
    def from_response(cls, response: RoleLookupResponse) -> "MemberInfo":
        return cls(response.role, response.department_id, response.member_record_id)

    @classmethod
    def from_payload(cls, payload: Any) -> "MemberInfo":
        if not isinstance(payload, dict):
            return cls()
        return cls(
            role=payload.get("role") or "",
            department_id=payload.get("departmentId"),
            member_record_id=payload.get("memberRecordId"),
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "departmentId": self.department_id,
            "memberRecordId": self.member_record_id,
        }


@dataclass(frozen=True)
class LookupOutcome:
    """Result of one network resolution, shared by every caller of that fetch."""
    role: str = ""
    error: Optional[RoleLookupError] = None
    committed: bool = False
