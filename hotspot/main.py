"""
Hotspot gateway application: service wiring, middleware and the ASGI app.
"""

import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import generate_latest
from redis.asyncio import Redis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import Match

from hotspot.api.admin_routes import router as admin_router
from hotspot.api.dependencies import Services
from hotspot.api.routes import router
from hotspot.config import Settings, settings
from hotspot.db.session import create_radius_engine
from hotspot.observability import get_logger, log_context, metrics, setup_logging, setup_tracing
from hotspot.observability.tracing import instrument_fastapi
from hotspot.services.access_orchestrator import AccessOrchestrator
from hotspot.services.admin import AdminService
from hotspot.services.checkout import CheckoutService
from hotspot.services.enforcer_registry import build_enforcers
from hotspot.services.fraud_gate import FraudGate
from hotspot.services.mpesa_provider import MpesaProvider
from hotspot.services.network_enforcer import NetworkEnforcer
from hotspot.services.payment_ledger import PaymentLedger
from hotspot.services.payment_provider import PaymentProvider
from hotspot.services.reconciliation import WebhookReconciler
from hotspot.services.removal_scheduler import RemovalScheduler, RemovalSweeper
from hotspot.services.session_registry import SessionRegistry
from hotspot.store.client import close_store, create_store

setup_logging()
logger = get_logger(__name__)

# Health checks and scrapes are logged at debug level only.
QUIET_PATHS = frozenset({"/health", "/metrics"})


def build_services(
    config: Settings,
    store: Redis,
    enforcers: list[NetworkEnforcer],
    provider: PaymentProvider,
    stk_push_enabled: bool = True,
) -> Services:
    """Wire every component explicitly; nothing reaches for globals."""
    fraud_gate = FraudGate(store, config)
    ledger = PaymentLedger(store, config)
    removals = RemovalScheduler(store, config)
    orchestrator = AccessOrchestrator(store, config, enforcers, removals)
    sessions = SessionRegistry(store, config)

    return Services(
        store=store,
        checkout=CheckoutService(
            fraud_gate, ledger, config, provider=provider if stk_push_enabled else None
        ),
        reconciler=WebhookReconciler(ledger, orchestrator, sessions, provider, config),
        orchestrator=orchestrator,
        admin=AdminService(store, sessions, orchestrator, fraud_gate, removals),
        sweeper=RemovalSweeper(orchestrator.expire_due, config.removal_sweep_interval_seconds),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the store, the RADIUS engine and the provider client; start the sweeper."""
    logger.info(
        "application_starting",
        service=settings.api_title,
        version=settings.api_version,
        enforcers=settings.enforcer_names,
        stk_push_enabled=bool(settings.mpesa_consumer_key),
        tracing_enabled=settings.tracing_enabled,
    )

    store = create_store(settings)
    radius_engine = create_radius_engine(settings) if "radius" in settings.enforcer_names else None
    http_client = httpx.AsyncClient(timeout=settings.mpesa_request_timeout)

    services = build_services(
        settings,
        store,
        build_enforcers(settings, radius_engine),
        MpesaProvider(settings, http_client),
        stk_push_enabled=bool(settings.mpesa_consumer_key),
    )
    app.state.services = services
    if settings.removal_sweep_enabled and services.sweeper is not None:
        await services.sweeper.start()

    try:
        yield
    finally:
        logger.info("application_shutting_down")
        if services.sweeper is not None:
            await services.sweeper.stop()
        await http_client.aclose()
        if radius_engine is not None:
            await radius_engine.dispose()
        await close_store(store)
        logger.info("application_stopped")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=settings.api_description,
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """422 with JSON-safe error details; request bodies are not echoed back."""
    details = []
    for error in exc.errors():
        detail = {"type": error.get("type"), "loc": error.get("loc"), "msg": error.get("msg")}
        if "ctx" in error:
            detail["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        details.append(detail)

    logger.warning(
        "validation_error",
        path=request.url.path,
        method=request.method,
        fields=[".".join(str(part) for part in d["loc"] or ()) for d in details],
    )
    return JSONResponse(status_code=422, content={"detail": details})


setup_tracing()
instrument_fastapi(app)


class ProxyHeadersMiddleware(BaseHTTPMiddleware):
    """
    Take the client address and scheme from the portal's reverse proxy.

    Only the local nginx can reach the gateway, so X-Real-IP is trusted as
    the device address the fraud gate keys on.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        forwarded_proto = request.headers.get("X-Forwarded-Proto")
        if forwarded_proto:
            request.scope["scheme"] = forwarded_proto

        real_ip = request.headers.get("X-Real-IP")
        if real_ip and request.scope.get("client"):
            request.scope["client"] = (real_ip, request.scope["client"][1])

        return await call_next(request)


app.add_middleware(ProxyHeadersMiddleware)


def route_template(request: Request) -> str:
    """The matched route's path template, so payment references never become labels."""
    for route in request.app.router.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", request.url.path)
    return "unmatched"


@app.middleware("http")
async def logging_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    endpoint = route_template(request)
    method = request.method
    request_id = request.headers.get("X-Request-ID", "unknown")
    log = logger.debug if request.url.path in QUIET_PATHS else logger.info

    start_time = time.perf_counter()
    metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).inc()
    try:
        with log_context(request_id=request_id):
            response = await call_next(request)
    except Exception as exc:
        duration = time.perf_counter() - start_time
        metrics.record_http_request(endpoint, method, 500, duration)
        metrics.record_error(type(exc).__name__, "http_request")
        logger.error(
            "request_failed",
            method=method,
            path=request.url.path,
            duration_seconds=duration,
            request_id=request_id,
            exc_info=True,
        )
        raise
    finally:
        metrics.http_requests_in_progress.labels(endpoint=endpoint, method=method).dec()

    duration = time.perf_counter() - start_time
    metrics.record_http_request(endpoint, method, response.status_code, duration)
    log(
        "request_completed",
        method=method,
        path=request.url.path,
        status_code=response.status_code,
        duration_seconds=round(duration, 4),
        request_id=request_id,
    )
    return response


app.include_router(router)
app.include_router(admin_router)


@app.get("/")
async def root() -> dict[str, str]:
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }


@app.get("/metrics", include_in_schema=settings.metrics_enabled)
async def metrics_endpoint() -> Response:
    """Prometheus text exposition; 404 when metrics are disabled."""
    if not settings.metrics_enabled:
        return PlainTextResponse("metrics disabled", status_code=404)
    return PlainTextResponse(generate_latest())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "hotspot.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        proxy_headers=False,
    )
