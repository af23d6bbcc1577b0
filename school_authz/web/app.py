"""
FastAPI application wiring for the authorization engine.

``create_app`` builds an application that exposes the role management API
and makes the engine available to the ``require_*`` dependencies of any
domain routers mounted on it.
"""

import logging
from contextlib import asynccontextmanager
from typing import Iterable, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from ..config import AuthzConfig
from ..security.dependencies import setup_authorization
from ..security.directory import PrincipalDirectory
from ..security.engine import AuthorizationEngine, build_authorization_engine
from ..security.exceptions import AuthorizationError
from ..version import __version__
from .api.roles import router as roles_router

logger = logging.getLogger(__name__)


async def authorization_error_handler(request: Request, exc: AuthorizationError) -> JSONResponse:
    """Map any AuthorizationError escaping a route to its status code."""
    if exc.status_code >= 500:
        logger.error("Authorization backend error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(
    config: Optional[AuthzConfig] = None,
    engine: Optional[AuthorizationEngine] = None,
    directory: Optional[PrincipalDirectory] = None,
    routers: Iterable[APIRouter] = (),
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        config: Engine configuration (defaults, or ``engine`` wins if given)
        engine: Pre-built engine; built from ``config`` when omitted
        directory: Identity store view used for "role in use" checks
        routers: Extra domain routers to mount
    """
    config = config or AuthzConfig()
    engine = engine or build_authorization_engine(config, directory=directory)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await engine.initialize()
        try:
            yield
        finally:
            await engine.close()

    app = FastAPI(
        title="School Authorization API",
        description="Role, permission and endpoint authorization for the school administration API",
        version=__version__,
        lifespan=lifespan,
    )
    setup_authorization(app, engine)
    app.add_exception_handler(AuthorizationError, authorization_error_handler)

    app.include_router(roles_router)
    for router in routers:
        app.include_router(router)

    @app.get("/health")
    async def health():
        return {"status": "healthy", "version": __version__, "catalog_version": engine.catalog.version}

    return app
