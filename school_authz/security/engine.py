# -*- coding: utf-8 -*-
"""
Authorization Engine for the school administration API.

This module combines the role store, endpoint table, self-access rules and
privilege-escalation guard into a single decision facade:
- Role/permission checks against a cached role snapshot
- Endpoint path rules with an unmatched-path policy
- Ownership checks for "own records" permissions
- Fail-closed behaviour when role storage is unavailable

Every hot-path method returns a value and never raises.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Optional, Sequence, Union

from ..config import AuthzConfig, UnmatchedEndpointPolicy
from .catalog import PermissionCatalog, default_catalog
from .decisions import AccessDecision, DenialReason
from .directory import InMemoryPrincipalDirectory, PrincipalDirectory
from .endpoints import DEFAULT_ENDPOINT_RULES, EndpointAccessTable
from .escalation import PrivilegeEscalationGuard
from .exceptions import RoleStoreUnavailableError
from .identity import AuthenticationFailure, IdentityResolver
from .logging import AuthEvent, AuthzEvent, DecisionObserver, NullObserver, SecurityEventType, create_security_logger
from .models import Principal, Role
from .roles import ADMIN, RoleName, try_canonicalize
from .self_access import ResourceContext, SelfAccessRuleSet
from .storage import RoleStorage, create_role_storage
from .store import RoleStore

logger = logging.getLogger(__name__)


# =============================================================================
# Authorization Engine - Decision Facade
# =============================================================================

class AuthorizationEngine:
    """
    Decision facade used by request dependencies and the management API.

    Args:
        store: Authoritative role store.
        endpoints: Endpoint access table.
        self_access: Permissions that require resource ownership.
        identity: Bearer token resolver.
        escalation_guard: Guard against assigning foreign roles.
        observer: Receiver of decision events.
        log_grants: Also report allowed decisions (denials are always reported).
    """

    def __init__(
        self,
        store: RoleStore,
        endpoints: EndpointAccessTable,
        self_access: SelfAccessRuleSet,
        identity: IdentityResolver,
        escalation_guard: Optional[PrivilegeEscalationGuard] = None,
        observer: Optional[DecisionObserver] = None,
        log_grants: bool = True,
    ):
        self.store = store
        self.endpoints = endpoints
        self.self_access = self_access
        self.identity = identity
        self.observer = observer or NullObserver()
        self.escalation_guard = escalation_guard or PrivilegeEscalationGuard(self.observer)
        self.log_grants = log_grants

    @property
    def catalog(self) -> PermissionCatalog:
        return self.store.catalog

    async def initialize(self) -> None:
        await self.store.initialize()
        logger.info(
            "Authorization engine ready (catalog %s, %d permissions)",
            self.catalog.version, len(self.catalog)
        )

    async def close(self) -> None:
        await self.store.close()
        shutdown = getattr(self.observer, "shutdown", None)
        if callable(shutdown):
            shutdown()

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    def authenticate(self, authorization_header: Optional[str]) -> Union[Principal, AuthenticationFailure]:
        """
        Resolve the caller from an ``Authorization`` header.

        A presented credential that fails verification is reported as an
        authentication event; an absent header is not.
        """
        result = self.identity.verify(authorization_header)
        if isinstance(result, AuthenticationFailure) and authorization_header:
            self._emit(AuthEvent(
                success=False,
                failure_reason=result.reason.value,
                message=f"Authentication failed: {result.message}",
            ))
        return result

    # -------------------------------------------------------------------------
    # Role and permission checks
    # -------------------------------------------------------------------------

    async def resolve_role(self, name) -> Role:
        """Resolve a role name variant. Raises RoleNotFoundError."""
        return await self.store.resolve_role(name)

    async def _check_permissions(self, role_name: Optional[RoleName], permissions: Sequence[str]) -> AccessDecision:
        if role_name is not None and role_name == ADMIN:
            return AccessDecision.allow()
        if role_name is None or not permissions:
            return AccessDecision.deny(DenialReason.INSUFFICIENT_PERMISSION)

        try:
            snapshot = await self.store.snapshot()
        except RoleStoreUnavailableError as e:
            logger.error("Role store unavailable during permission check: %s", e)
            return AccessDecision.deny(DenialReason.STORE_UNAVAILABLE)
        except Exception:
            # Fail secure
            logger.exception("Permission check failed for role %s", role_name)
            return AccessDecision.deny(DenialReason.STORE_UNAVAILABLE)

        if snapshot.get(role_name) is None:
            return AccessDecision.deny(DenialReason.UNKNOWN_ROLE)
        granted = [p for p in permissions if snapshot.has_permission(role_name, p)]
        if granted:
            return AccessDecision.allow(granted=granted)
        return AccessDecision.deny(DenialReason.INSUFFICIENT_PERMISSION)

    async def evaluate_permissions(
        self,
        role,
        permissions: Sequence[str],
        user_id: Optional[str] = None,
        resource: Optional[str] = None,
    ) -> AccessDecision:
        """Allow if ``role`` holds any of ``permissions``."""
        role_name = try_canonicalize(role)
        decision = await self._check_permissions(role_name, permissions)
        return self._record(decision, role_name, permissions, user_id, resource)

    async def has_permission(self, role, permission: str) -> bool:
        """
        Check if a role grants a permission.

        Admin is granted everything, unknown roles nothing. Returns False
        when role storage cannot be reached.
        """
        return (await self.evaluate_permissions(role, [permission])).allowed

    async def resolved_permissions(self, role) -> List[str]:
        """Permission list for a role; admin resolves to the whole catalog."""
        role_name = try_canonicalize(role)
        if role_name is None:
            return []
        if role_name == ADMIN:
            return self.catalog.sorted_permissions()
        snapshot = await self.store.snapshot()
        resolved = snapshot.get(role_name)
        return list(resolved.permissions) if resolved else []

    def evaluate_role(self, principal: Principal, allowed_roles: Iterable) -> AccessDecision:
        """Allow if the principal's role is listed, or is admin."""
        allowed = [r for r in (try_canonicalize(a) for a in allowed_roles) if r is not None]
        if principal.is_admin or principal.role in allowed:
            decision = AccessDecision.allow()
        else:
            decision = AccessDecision.deny(
                DenialReason.ROLE_NOT_ALLOWED,
                requiredRoles=[r.display for r in allowed],
                userRole=principal.role.display,
            )
        return self._record(decision, principal.role, [], principal.id, "role:" + ",".join(r.display for r in allowed))

    # -------------------------------------------------------------------------
    # Endpoint checks
    # -------------------------------------------------------------------------

    def can_access_endpoint(self, role, path: str) -> bool:
        """True if ``role`` (None when unauthenticated) may call ``path``."""
        return self.endpoints.can_access(role, path)

    def evaluate_endpoint(self, principal: Optional[Principal], path: str) -> AccessDecision:
        role = principal.role if principal else None
        if self.endpoints.can_access(role, path):
            decision = AccessDecision.allow()
        else:
            decision = AccessDecision.deny(
                DenialReason.ENDPOINT_DENIED,
                endpoint=path,
                userRole=role.display if role else None,
            )
        return self._record(decision, role, [], principal.id if principal else None, path)

    # -------------------------------------------------------------------------
    # Resource checks
    # -------------------------------------------------------------------------

    async def evaluate_resource_access(
        self,
        role,
        permission: str,
        context: Optional[ResourceContext] = None,
    ) -> AccessDecision:
        """
        Permission check followed by an ownership check for self-access permissions.

        Admin is allowed without consulting either.
        """
        role_name = try_canonicalize(role)
        requester = context.requester_id if context else None
        if role_name is not None and role_name == ADMIN:
            decision = AccessDecision.allow()
        else:
            decision = await self._check_permissions(role_name, [permission])
            if decision.allowed:
                ownership = self.self_access.check(permission, context)
                if not ownership.allowed:
                    decision = ownership
        return self._record(decision, role_name, [permission], requester, "resource")

    async def can_access_resource(self, role, permission: str, context: Optional[ResourceContext] = None) -> bool:
        return (await self.evaluate_resource_access(role, permission, context)).allowed

    # -------------------------------------------------------------------------
    # Escalation
    # -------------------------------------------------------------------------

    def check_privilege_escalation(self, principal: Principal, body: Any, resource: Optional[str] = None) -> AccessDecision:
        return self.escalation_guard.check(principal, body, resource)

    # -------------------------------------------------------------------------
    # Auditing
    # -------------------------------------------------------------------------

    def _record(
        self,
        decision: AccessDecision,
        role: Optional[RoleName],
        permissions: Sequence[str],
        user_id: Optional[str],
        resource: Optional[str],
    ) -> AccessDecision:
        if decision.allowed and not self.log_grants:
            return decision
        if decision.reason == DenialReason.STORE_UNAVAILABLE:
            event_type = SecurityEventType.STORE_UNAVAILABLE
        else:
            event_type = SecurityEventType.AUTHORIZATION
        event = AuthzEvent(
            event_type=event_type,
            user_id=user_id,
            role=role.display if role else None,
            resource=resource,
            permission=",".join(permissions) if permissions else None,
            decision="ALLOW" if decision.allowed else "DENY",
            reason=decision.reason.value if decision.reason else None,
            message=(
                f"Authorization {'ALLOW' if decision.allowed else 'DENY'} for "
                f"{role.display if role else 'anonymous'} on {resource or 'permission'}"
            ),
        )
        self._emit(event)
        return decision

    def _emit(self, event) -> None:
        try:
            self.observer.notify(event)
        except Exception:
            logger.exception("Observer failed for %s event", event.event_type.value)


# =============================================================================
# Factory Functions
# =============================================================================

def build_authorization_engine(
    config: Optional[AuthzConfig] = None,
    storage: Optional[RoleStorage] = None,
    directory: Optional[PrincipalDirectory] = None,
    observer: Optional[DecisionObserver] = None,
    catalog: Optional[PermissionCatalog] = None,
) -> AuthorizationEngine:
    """
    Wire an engine from configuration without touching storage.

    Call :meth:`AuthorizationEngine.initialize` (inside the serving event
    loop) before use.
    """
    config = config or AuthzConfig()
    if observer is None:
        observer = create_security_logger(config.security_logging)
    catalog = catalog or default_catalog()

    store = RoleStore(
        storage=storage or create_role_storage(config.database_path),
        catalog=catalog,
        directory=directory or InMemoryPrincipalDirectory(),
        observer=observer,
        cache_ttl=config.role_cache_ttl,
        storage_timeout=config.storage_timeout,
    )
    endpoints = EndpointAccessTable(
        config.endpoint_rules if config.endpoint_rules is not None else DEFAULT_ENDPOINT_RULES,
        allow_unmatched=config.unmatched_endpoint_policy == UnmatchedEndpointPolicy.ALLOW,
    )
    return AuthorizationEngine(
        store=store,
        endpoints=endpoints,
        self_access=SelfAccessRuleSet(config.self_access_permissions),
        identity=IdentityResolver(config.jwt_secret, config.jwt_algorithm),
        observer=observer,
    )


async def create_authorization_engine(
    config: Optional[AuthzConfig] = None,
    storage: Optional[RoleStorage] = None,
    directory: Optional[PrincipalDirectory] = None,
    observer: Optional[DecisionObserver] = None,
    catalog: Optional[PermissionCatalog] = None,
) -> AuthorizationEngine:
    """Create and initialize an authorization engine."""
    engine = build_authorization_engine(config, storage, directory, observer, catalog)
    await engine.initialize()
    return engine


__all__ = [
    "AuthorizationEngine",
    "build_authorization_engine",
    "create_authorization_engine",
]
