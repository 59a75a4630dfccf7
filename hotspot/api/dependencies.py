"""
FastAPI Dependencies - service access and admin authentication.

Services are built once in the application lifespan and stored on
`app.state.services`; routes receive them through these dependencies.
"""

import hmac
from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, Request, status
from redis.asyncio import Redis
from structlog import get_logger

from hotspot.config import Settings, get_settings
from hotspot.exceptions import AuthenticationError
from hotspot.services.access_orchestrator import AccessOrchestrator
from hotspot.services.admin import AdminService
from hotspot.services.checkout import CheckoutService
from hotspot.services.reconciliation import WebhookReconciler
from hotspot.services.removal_scheduler import RemovalSweeper

logger = get_logger(__name__)


@dataclass
class Services:
    """Everything the routes need, wired at startup."""

    store: Redis
    checkout: CheckoutService
    reconciler: WebhookReconciler
    orchestrator: AccessOrchestrator
    admin: AdminService
    sweeper: RemovalSweeper | None = None


def get_services(request: Request) -> Services:
    services: Services | None = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service is starting up",
        )
    return services


def get_store(services: Services = Depends(get_services)) -> Redis:
    return services.store


def get_checkout_service(services: Services = Depends(get_services)) -> CheckoutService:
    return services.checkout


def get_reconciler(services: Services = Depends(get_services)) -> WebhookReconciler:
    return services.reconciler


def get_admin_service(services: Services = Depends(get_services)) -> AdminService:
    return services.admin


# ============================================================================
# Admin Authentication (static key)
# ============================================================================


def verify_admin_key(provided: str | None, expected: str) -> None:
    """
    Compare the presented admin key with the configured one.

    Raises:
        AuthenticationError: key missing, wrong, or admin access not configured
    """
    if not expected:
        raise AuthenticationError("admin access is not configured")
    if not provided:
        raise AuthenticationError("missing X-Admin-Key header")
    if not hmac.compare_digest(provided.encode(), expected.encode()):
        raise AuthenticationError("invalid admin key")


async def require_admin(
    x_admin_key: str | None = Header(None, description="Admin API key"),
    settings: Settings = Depends(get_settings),
) -> None:
    """
    FastAPI dependency guarding admin routes.

    Raises:
        HTTPException 401 if the key is missing or wrong
    """
    try:
        verify_admin_key(x_admin_key, settings.admin_api_key)
    except AuthenticationError as exc:
        logger.warning("admin_auth_failed", reason=exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
            headers={"WWW-Authenticate": "ApiKey"},
        ) from exc
