"""Optional loopback HTTP surface (Starlette) for redirect-based logins."""

from .auth import auth_routes
from .correlation import CorrelationIdMiddleware
from .main import create_app, create_app_from_env

__all__ = ["auth_routes", "CorrelationIdMiddleware", "create_app", "create_app_from_env"]
