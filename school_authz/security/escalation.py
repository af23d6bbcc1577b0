"""
Privilege-Escalation Guard.

Stops a non-admin caller from submitting a body that would give a user a
role other than the caller's own (for example a teacher creating an admin
account through a user form they are otherwise allowed to use).
"""

import logging
from typing import Any, Mapping, Optional, Tuple

from .decisions import AccessDecision, DenialReason
from .logging import AuthzEvent, DecisionObserver, NullObserver, SecurityEventType
from .models import Principal
from .roles import try_canonicalize

logger = logging.getLogger(__name__)


class PrivilegeEscalationGuard:
    def __init__(self, observer: Optional[DecisionObserver] = None, role_field: str = "role"):
        self.observer = observer or NullObserver()
        self.role_field = role_field

    def requested_role(self, body: Any) -> Tuple[bool, Any]:
        """Return whether the body names a role field, and its raw value."""
        if not isinstance(body, Mapping) or self.role_field not in body:
            return False, None
        return True, body[self.role_field]

    def check(self, principal: Principal, body: Any, resource: Optional[str] = None) -> AccessDecision:
        """
        Deny when a non-admin asks for a role that is not their own.

        Only an absent role field, or a string naming the caller's own role
        in any spelling, is allowed. Blank, null and non-string values are
        denied like any foreign role.
        """
        if principal.is_admin:
            return AccessDecision.allow()
        present, requested = self.requested_role(body)
        if not present:
            return AccessDecision.allow()
        if try_canonicalize(requested) == principal.role:
            return AccessDecision.allow()

        logger.warning(
            "Privilege escalation attempt by %s (%s) requesting role %r",
            principal.id, principal.role, requested
        )
        self._report(principal, requested, resource)
        return AccessDecision.deny(
            DenialReason.PRIVILEGE_ESCALATION,
            userRole=principal.role.display,
            requestedRole=requested,
        )

    def _report(self, principal: Principal, requested: Any, resource: Optional[str]) -> None:
        event = AuthzEvent(
            event_type=SecurityEventType.PRIVILEGE_ESCALATION_DENIED,
            user_id=principal.id,
            role=principal.role.display,
            resource=resource,
            decision="DENY",
            reason=DenialReason.PRIVILEGE_ESCALATION.value,
            message=f"User {principal.id} with role {principal.role} attempted to assign role {requested}",
            details={"requested_role": requested},
        )
        try:
            self.observer.notify(event)
        except Exception:
            logger.exception("Observer failed for privilege escalation event")
