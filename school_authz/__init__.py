# school-authz/school_authz/__init__.py
"""
School Authorization Engine

Decides, for every request to the school administration API, whether the
caller may perform the action: role grants, endpoint rules, "own records
only" permissions and privilege-escalation checks.

Example usage:
    from fastapi import APIRouter, Depends
    from school_authz import AuthzConfig, create_app
    from school_authz.security.dependencies import require_permission

    grades = APIRouter(prefix="/api/teacher")

    @grades.post("/grades", dependencies=[Depends(require_permission("manage_grades"))])
    async def record_grade():
        ...

    app = create_app(AuthzConfig.from_env(), routers=[grades])
"""

from .version import __version__
from .config import AuthzConfig, SecurityLoggingConfig, UnmatchedEndpointPolicy
from .exceptions import AuthzError, ConfigurationError, SecurityError
from .security.engine import AuthorizationEngine, build_authorization_engine, create_authorization_engine
from .web.app import create_app

# Package metadata
__title__ = "school-authz"

__all__ = [
    "__version__",
    "AuthzConfig",
    "SecurityLoggingConfig",
    "UnmatchedEndpointPolicy",
    "AuthzError",
    "ConfigurationError",
    "SecurityError",
    "AuthorizationEngine",
    "build_authorization_engine",
    "create_authorization_engine",
    "create_app",
]
