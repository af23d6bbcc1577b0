"""
Authorization components for the school administration API.

Only leaf modules are re-exported here; import the engine and FastAPI
dependencies from ``school_authz.security.engine`` and
``school_authz.security.dependencies``.
"""

from .roles import RoleName, canonicalize
from .catalog import PermissionCatalog, default_catalog
from .decisions import AccessDecision, DenialReason
from .exceptions import (
    ErrorKind,
    AuthorizationError,
    RoleNotFoundError,
    RoleConflictError,
    RoleValidationError,
    RoleStoreUnavailableError,
)

__all__ = [
    "RoleName",
    "canonicalize",
    "PermissionCatalog",
    "default_catalog",
    "AccessDecision",
    "DenialReason",
    "ErrorKind",
    "AuthorizationError",
    "RoleNotFoundError",
    "RoleConflictError",
    "RoleValidationError",
    "RoleStoreUnavailableError",
]
