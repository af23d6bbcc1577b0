"""
Authorization decision values returned by the hot path.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class DenialReason(str, Enum):
    INSUFFICIENT_PERMISSION = "insufficient_permission"
    ROLE_NOT_ALLOWED = "role_not_allowed"
    ENDPOINT_DENIED = "endpoint_denied"
    SELF_ACCESS_VIOLATION = "self_access_violation"
    MISSING_RESOURCE_OWNER = "missing_resource_owner"
    PRIVILEGE_ESCALATION = "privilege_escalation"
    UNKNOWN_ROLE = "unknown_role"
    STORE_UNAVAILABLE = "store_unavailable"


@dataclass(frozen=True)
class AccessDecision:
    """Allow/deny outcome with the reason for a denial."""
    allowed: bool
    reason: Optional[DenialReason] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def __bool__(self):
        return self.allowed

    @classmethod
    def allow(cls, **details) -> "AccessDecision":
        return cls(True, None, details)

    @classmethod
    def deny(cls, reason: DenialReason, **details) -> "AccessDecision":
        return cls(False, reason, details)

    @property
    def unavailable(self) -> bool:
        return self.reason == DenialReason.STORE_UNAVAILABLE
