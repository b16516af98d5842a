"""Starlette application hosting the loopback auth endpoints.

The app owns nothing but the HTTP layer: the :class:`AuthSessionManager` is
created by the caller (or :func:`create_app_from_env`) and disposed when the
application shuts down.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from auth_session.manager import AuthSessionManager
from auth_session.servers.auth import auth_routes
from auth_session.servers.correlation import CorrelationIdMiddleware

logger = logging.getLogger("auth-session.server.main")


async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


def create_app(manager: AuthSessionManager, *, base_path: str = "/auth") -> Starlette:
    """Build the loopback app for *manager*; the manager is disposed on shutdown."""

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        logger.info("Auth session server starting (provider=%s)", getattr(manager.adapter, "name", "?"))
        try:
            yield
        finally:
            logger.info("Auth session server shutting down...")
            manager.dispose()
            logger.info("Auth session server shutdown complete.")

    routes = [
        Route("/healthz", health_check, methods=["GET"], include_in_schema=False),
        *auth_routes(manager, base_path=base_path),
    ]
    app = Starlette(
        routes=routes,
        middleware=[Middleware(CorrelationIdMiddleware)],
        lifespan=lifespan,
    )
    app.state.auth_manager = manager
    return app


def create_app_from_env(*, base_path: str = "/auth") -> Starlette:
    """``uvicorn --factory auth_session.servers.main:create_app_from_env``"""
    return create_app(AuthSessionManager.from_env(), base_path=base_path)
