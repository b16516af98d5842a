"""Loopback HTTP endpoints around one :class:`AuthSessionManager`.

Desktop and CLI hosts register ``http://127.0.0.1:<port>/auth/callback`` as
redirect URI and mount these routes; the browser then lands on this app when
the identity provider sends the user back.

Handlers are intentionally thin:

1. Parse HTTP-layer parameters.
2. Delegate to the manager (in the thread pool, since adapters block).
3. Map the ``AuthResult`` to a Starlette ``Response``.

SECURITY NOTE
-------------
• No raw secrets (state, codes, access / refresh tokens) are ever logged or
  returned; only the authorize / logout URLs leave this module.
• Correlation IDs, if present in ``request.state.correlation_id``, are
  included in INFO logs.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from auth_session.core.errors import AuthResult, ErrorKind
from auth_session.core.log_utils import get_auth_logger
from auth_session.core.models import LoginParams, NavigationRequest

if TYPE_CHECKING:  # pragma: no cover
    from auth_session.manager import AuthSessionManager

_ROUTES_LOGGER = "auth-session.servers.auth"

_CONFLICT_KINDS = frozenset({ErrorKind.OPERATION_IN_PROGRESS, ErrorKind.DUPLICATE_CALLBACK})


def _html_page(title: str, body: str, status: int = 200) -> HTMLResponse:
    """Return a tiny success / error HTML page."""
    content = (
        "<!doctype html><html lang='en'>"
        "<head><meta charset='utf-8'><title>"
        f"{title}</title></head><body><h1>{title}</h1><p>{body}</p></body></html>"
    )
    return HTMLResponse(content, status_code=status)


def _error_status(result: AuthResult[Any]) -> int:
    if result.kind in _CONFLICT_KINDS:
        return 409
    if result.kind is ErrorKind.CANCELLED:
        return 503
    if result.kind is ErrorKind.NOT_AUTHENTICATED:
        return 401
    if result.kind is ErrorKind.STORAGE_FAILED:
        return 500
    return 400


def _log(request: Request):
    return get_auth_logger(
        base_logger_name=_ROUTES_LOGGER,
        correlation_id=getattr(request.state, "correlation_id", None),
    )


def _wants_redirect(request: Request) -> bool:
    """``?format=json|redirect`` wins; otherwise browsers (Accept: text/html) get a redirect."""
    fmt_param = request.query_params.get("format")
    if fmt_param == "json":
        return False
    if fmt_param == "redirect":
        return True
    return "text/html" in (request.headers.get("accept") or "").lower()


# --------------------------------------------------------------------------- #
# Public API                                                                  #
# --------------------------------------------------------------------------- #
def auth_routes(manager: "AuthSessionManager", *, base_path: str = "/auth") -> list[Route]:
    """Return the login / callback / logout / status routes under *base_path*."""

    # ----- GET /auth/login ------------------------------------------------ #
    async def _login(request: Request) -> Response:
        params = LoginParams(
            prompt=request.query_params.get("prompt"),
            login_hint=request.query_params.get("login_hint"),
        )
        result = await run_in_threadpool(manager.login, params)
        if not result.ok:
            return JSONResponse(result.to_payload(), status_code=_error_status(result))

        if not isinstance(result.value, NavigationRequest):
            # popup-style adapters finish the login without a redirect
            identity = result.value
            return JSONResponse({"authenticated": True, "subject": getattr(identity, "subject", None)})

        authorize_url = result.value.url
        _log(request).info("Login started")
        if _wants_redirect(request):
            # 303 See Other for GET safety across methods
            return RedirectResponse(authorize_url, status_code=303)
        return JSONResponse({"authorize_url": authorize_url})

    # ----- GET /auth/callback --------------------------------------------- #
    async def _callback(request: Request) -> Response:
        result = await run_in_threadpool(manager.handle_environment_callback, str(request.url))
        if not result.ok:
            _log(request).warning("Callback rejected: %s", result.kind.value if result.kind else "-")
            return _html_page("Authorization failed", str(result.error), _error_status(result))
        if result.value is None:
            return _html_page("Missing parameters", "code or state missing", 400)

        _log(request).info("Callback completed")
        return _html_page("Authorization successful", "You may close this window.")

    # ----- POST /auth/logout ---------------------------------------------- #
    async def _logout(request: Request) -> Response:
        result = await run_in_threadpool(manager.logout)
        if not result.ok:
            return JSONResponse(result.to_payload(), status_code=_error_status(result))
        for warning in result.warnings:
            _log(request).warning("Logout warning: %s", warning.kind.value)
        if isinstance(result.value, NavigationRequest):
            return JSONResponse({"logout_url": result.value.url, **result.to_payload()})
        return Response(status_code=204)

    # ----- GET /auth/status ----------------------------------------------- #
    async def _status(request: Request) -> Response:
        identity = manager.get_identity()
        state = manager.state
        return JSONResponse(
            {
                "state": state.value if state is not None else None,
                "authenticated": manager.is_authenticated(),
                "subject": identity.subject if identity is not None else None,
            }
        )

    return [
        Route(f"{base_path}/login", _login, methods=["GET"]),
        Route(f"{base_path}/callback", _callback, methods=["GET"]),
        Route(f"{base_path}/logout", _logout, methods=["POST"]),
        Route(f"{base_path}/status", _status, methods=["GET"]),
    ]
