"""
FastAPI integration for the authorization engine.

Each ``require_*`` factory returns a dependency that either yields the
authenticated Principal or raises ``HTTPException``:

- 401 with ``WWW-Authenticate: Bearer`` when no valid credential is present
- 403 with a detail object naming what was required
- 503 when role storage cannot be reached (authorization fails closed)
"""

import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Union

from fastapi import Depends, HTTPException, Request

from .decisions import AccessDecision
from .engine import AuthorizationEngine
from .identity import AuthenticationFailure
from .models import Principal
from .self_access import ResourceContext

logger = logging.getLogger(__name__)

FORBIDDEN_MESSAGE = "Forbidden: Insufficient permissions"
UNAVAILABLE_MESSAGE = "Authorization service unavailable"


def setup_authorization(app, engine: AuthorizationEngine) -> None:
    """Attach an engine to a FastAPI application."""
    app.state.authz_engine = engine


def get_engine(request: Request) -> AuthorizationEngine:
    """FastAPI dependency returning the engine from app state."""
    engine = getattr(request.app.state, "authz_engine", None)
    if engine is None:
        raise RuntimeError("Authorization engine not configured in app state")
    return engine


def _unauthenticated(message: str = "Unauthorized") -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"error": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _unavailable() -> HTTPException:
    return HTTPException(status_code=503, detail={"error": UNAVAILABLE_MESSAGE})


def _forbidden(detail: Dict[str, Any]) -> HTTPException:
    return HTTPException(status_code=403, detail=detail)


async def require_authenticated(
    request: Request,
    engine: AuthorizationEngine = Depends(get_engine),
) -> Principal:
    """Dependency: the caller must present a valid bearer token."""
    result = engine.authenticate(request.headers.get("Authorization"))
    if isinstance(result, AuthenticationFailure):
        logger.info("Authentication failed for %s: %s", request.url.path, result.reason.value)
        raise _unauthenticated(result.message)
    request.state.principal = result
    return result


def require_role(*roles: str) -> Callable:
    """Dependency factory: the caller's role must be one of ``roles`` (admin always passes)."""
    required = [str(r) for r in roles]

    async def role_dependency(
        principal: Principal = Depends(require_authenticated),
        engine: AuthorizationEngine = Depends(get_engine),
    ) -> Principal:
        decision = engine.evaluate_role(principal, required)
        if not decision.allowed:
            raise _forbidden({
                "error": FORBIDDEN_MESSAGE,
                "requiredRoles": required,
                "userRole": principal.role.display,
            })
        return principal

    return role_dependency


def require_permission(*permissions: str) -> Callable:
    """Dependency factory: the caller's role must grant any of ``permissions``."""
    required = list(permissions)

    async def permission_dependency(
        request: Request,
        principal: Principal = Depends(require_authenticated),
        engine: AuthorizationEngine = Depends(get_engine),
    ) -> Principal:
        decision = await engine.evaluate_permissions(
            principal.role, required, user_id=principal.id, resource=request.url.path
        )
        _raise_for_permission(decision, principal, required)
        return principal

    return permission_dependency


ContextExtractor = Callable[[Request, Principal], Any]


def require_permission_with_context(permission: str, context_extractor: Optional[ContextExtractor] = None) -> Callable:
    """
    Dependency factory for permissions that may be limited to the caller's own records.

    ``context_extractor(request, principal)`` returns a ResourceContext (or a
    dict with ``resource_owner_id`` and optionally ``requester_id``); it may
    be a coroutine function. The requester defaults to the caller.
    """

    async def context_dependency(
        request: Request,
        principal: Principal = Depends(require_authenticated),
        engine: AuthorizationEngine = Depends(get_engine),
    ) -> Principal:
        context = await _extract_context(context_extractor, request, principal)
        decision = await engine.evaluate_resource_access(principal.role, permission, context)
        _raise_for_permission(decision, principal, [permission])
        return principal

    return context_dependency


async def require_endpoint_access(
    request: Request,
    engine: AuthorizationEngine = Depends(get_engine),
) -> Optional[Principal]:
    """
    Dependency: consult the endpoint table for the request path.

    Returns the Principal, or None for an unauthenticated caller on a path
    that allows it.
    """
    principal = None
    header = request.headers.get("Authorization")
    if header:
        result = engine.authenticate(header)
        if isinstance(result, Principal):
            principal = result
            request.state.principal = principal

    path = request.url.path
    decision = engine.evaluate_endpoint(principal, path)
    if decision.allowed:
        return principal
    if principal is None:
        raise _unauthenticated()
    raise _forbidden({
        "error": "Forbidden: Access denied to this endpoint",
        "endpoint": path,
        "userRole": principal.role.display,
    })


async def prevent_privilege_escalation(
    request: Request,
    principal: Principal = Depends(require_authenticated),
    engine: AuthorizationEngine = Depends(get_engine),
) -> Principal:
    """Dependency: non-admins may not submit a ``role`` other than their own."""
    try:
        body = await request.json()
    except ValueError:
        body = None
    decision = engine.check_privilege_escalation(principal, body, resource=request.url.path)
    if not decision.allowed:
        raise _forbidden({
            "error": "Forbidden: Cannot assign a role other than your own",
            "userRole": principal.role.display,
            "requestedRole": decision.details.get("requestedRole"),
        })
    return principal


def get_current_principal(request: Request) -> Principal:
    """Principal stored by a previous authorization dependency."""
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise _unauthenticated()
    return principal


def _raise_for_permission(decision: AccessDecision, principal: Principal, required: List[str]) -> None:
    if decision.allowed:
        return
    if decision.unavailable:
        raise _unavailable()
    detail: Dict[str, Any] = {
        "error": FORBIDDEN_MESSAGE,
        "requiredPermissions": required,
        "userRole": principal.role.display,
    }
    if decision.reason is not None:
        detail["reason"] = decision.reason.value
    raise _forbidden(detail)


async def _extract_context(
    extractor: Optional[ContextExtractor],
    request: Request,
    principal: Principal,
) -> ResourceContext:
    raw: Union[ResourceContext, Dict[str, Any], None] = None
    if extractor is not None:
        raw = extractor(request, principal)
        if inspect.isawaitable(raw):
            raw = await raw

    if isinstance(raw, ResourceContext):
        if raw.requester_id is None:
            return ResourceContext(principal.id, raw.resource_owner_id)
        return raw
    if isinstance(raw, dict):
        return ResourceContext(
            requester_id=raw.get("requester_id", principal.id),
            resource_owner_id=raw.get("resource_owner_id"),
        )
    return ResourceContext(requester_id=principal.id)
