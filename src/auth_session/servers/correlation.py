"""Correlation ID middleware for request tracing.

Uses the incoming ``X-Correlation-ID`` header or generates a UUID4 hex value,
sets it in ``request.state.correlation_id`` for handlers and echoes it in the
response headers.

Secrets MUST NOT be logged. The correlation ID is the only request attribute
that reaches log records.
"""

from __future__ import annotations

import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from auth_session.core.log_utils import get_auth_logger

_HEADER_NAME = "X-Correlation-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that attaches a per-request correlation ID."""

    def __init__(self, app, header_name: str = _HEADER_NAME) -> None:  # type: ignore[override]  # noqa: ANN001
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]  # noqa: ANN001
        correlation_id = request.headers.get(self.header_name) or uuid.uuid4().hex
        request.state.correlation_id = correlation_id
        log = get_auth_logger(
            base_logger_name="auth-session.correlation", correlation_id=correlation_id
        )
        log.debug("%s %s", request.method, request.url.path)
        response = await call_next(request)
        response.headers[self.header_name] = correlation_id
        return response
