# school-authz/school_authz/exceptions.py
"""
Exception classes for the school authorization engine.

This module defines the root exceptions shared by every subpackage.
"""

from typing import Optional, Dict, Any


class AuthzError(Exception):
    """Base exception for all package errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(AuthzError):
    """Exception raised for configuration errors."""
    pass


class SecurityError(AuthzError):
    """Exception raised for security-related errors."""
    pass
