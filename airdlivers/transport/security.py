# airdlivers/transport/security.py
"""
FastAPI dependencies guarding non-public endpoints, plus response headers.
"""
from __future__ import annotations

import hmac

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from airdlivers.config import settings
from airdlivers.infra.logging_config import get_logger

logger = get_logger(__name__)

metrics_bearer_scheme = HTTPBearer(auto_error=False)


def require_dev_environment():
    """
    Dependency that only allows access in dev environment.
    Use for endpoints that should NEVER be exposed in production or staging.
    """
    def dependency():
        if settings.app_env != "dev":
            logger.warning(
                "Attempted access to dev-only endpoint in non-dev environment",
                extra={"env": settings.app_env}
            )
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Not found"  # Don't reveal endpoint exists
            )
    return dependency


def require_metrics_auth(
    credentials: HTTPAuthorizationCredentials | None = Depends(metrics_bearer_scheme),
):
    """
    Dependency for /metrics.

    1. Metrics disabled: 404.
    2. METRICS_TOKEN set: Bearer token required.
    3. No token: open in dev, hidden (404) elsewhere.
    """
    if not settings.enable_metrics:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    if settings.metrics_token:
        if not credentials:
            logger.warning("Metrics endpoint accessed without token")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required",
                headers={"WWW-Authenticate": "Bearer"},
            )
        if not hmac.compare_digest(credentials.credentials, settings.metrics_token):
            logger.warning("Invalid metrics token attempt")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid credentials",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return

    if settings.app_env != "dev":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")


class SecurityHeaders:
    """OWASP recommended headers for an API-only service."""

    @staticmethod
    def add_security_headers(response):
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        if "Cache-Control" not in response.headers:
            response.headers["Cache-Control"] = "no-store"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response
