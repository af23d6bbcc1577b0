"""
Authorization Exceptions for the school authorization engine.
This module defines the exception hierarchy raised by role management,
role storage and the audit trail. Every error carries an ErrorKind that
the web layer maps to an HTTP status.
"""
from enum import Enum
from typing import Optional, Dict, Any, List

from ..exceptions import SecurityError


class ErrorKind(str, Enum):
    """Error taxonomy shared by every authorization failure."""
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    UNAVAILABLE = "unavailable"


# HTTP status used at the web boundary for each error kind.
HTTP_STATUS_BY_KIND: Dict[ErrorKind, int] = {
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNAVAILABLE: 503,
}


class AuthorizationError(SecurityError):
    """
    Base exception for authorization features.
    Every subclass carries an ErrorKind so that the web layer can map it
    to a status code without inspecting the concrete type.
    """
    kind: ErrorKind = ErrorKind.FORBIDDEN

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        super().__init__(message, details)
        self.error_code = error_code or self.__class__.__name__
        self.cause = cause

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error": str(self),
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "kind": self.kind.value,
            "details": self.details,
        }


class RoleError(AuthorizationError):
    """Role management errors."""

    def __init__(
        self,
        message: str,
        role_id: Optional[str] = None,
        role_name: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.role_id = role_id
        self.role_name = role_name
        self.operation = operation
        if role_id:
            self.details["role_id"] = role_id
        if role_name:
            self.details["role_name"] = role_name
        if operation:
            self.details["operation"] = operation


class RoleNotFoundError(RoleError):
    """Raised when a role id or name does not resolve."""
    kind = ErrorKind.NOT_FOUND


class RoleConflictError(RoleError):
    """Raised on duplicate names, system role protection and roles in use."""
    kind = ErrorKind.CONFLICT


class RoleValidationError(RoleError):
    """Raised when a role payload breaks a catalog invariant."""
    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, invalid_permissions: Optional[List[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.invalid_permissions = list(invalid_permissions or [])
        if invalid_permissions:
            self.details["invalidPermissions"] = self.invalid_permissions


class RoleStoreUnavailableError(AuthorizationError):
    """Raised when the role storage backend fails or times out."""
    kind = ErrorKind.UNAVAILABLE


class AuditTrailError(AuthorizationError):
    """Audit trail integrity errors."""
    kind = ErrorKind.UNAVAILABLE

