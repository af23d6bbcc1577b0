"""
Self-Access Rule Set.

Some permissions ("view own grades", "view own fees") only make sense
against the caller's own records. For those, holding the permission is not
enough: the resource owner must be the requester.
"""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional

from .decisions import AccessDecision, DenialReason


@dataclass(frozen=True)
class ResourceContext:
    """Who is asking, and who owns the resource being asked about."""
    requester_id: Optional[str] = None
    resource_owner_id: Optional[str] = None

    def __post_init__(self):
        # Ids arrive as ints from some routes and strings from tokens.
        if self.requester_id is not None:
            object.__setattr__(self, "requester_id", str(self.requester_id))
        if self.resource_owner_id is not None:
            object.__setattr__(self, "resource_owner_id", str(self.resource_owner_id))


class SelfAccessRuleSet:
    def __init__(self, permissions: Iterable[str]):
        self.permissions: FrozenSet[str] = frozenset(permissions)

    def __contains__(self, permission: str) -> bool:
        return permission in self.permissions

    def requires_ownership(self, permission: str) -> bool:
        return permission in self.permissions

    def check(self, permission: str, context: Optional[ResourceContext]) -> AccessDecision:
        """Ownership check alone; the permission grant is checked elsewhere."""
        if permission not in self.permissions:
            return AccessDecision.allow()
        if context is None or not context.requester_id or not context.resource_owner_id:
            return AccessDecision.deny(DenialReason.MISSING_RESOURCE_OWNER, permission=permission)
        if context.requester_id != context.resource_owner_id:
            return AccessDecision.deny(
                DenialReason.SELF_ACCESS_VIOLATION,
                permission=permission,
                requester_id=context.requester_id,
                resource_owner_id=context.resource_owner_id,
            )
        return AccessDecision.allow()
