"""
Pytest Configuration and Centralized Fixtures.

Provides reusable fakes and fixtures for testing:
- In-memory Redis (fakeredis) as the key/value store
- Recording network enforcers with failure injection
- Daraja API stub behind httpx.MockTransport
- Fully wired services and an API test client
"""

import os
from collections.abc import AsyncGenerator

import fakeredis
import httpx
import pytest
from httpx import ASGITransport, AsyncClient

# Set required environment variables BEFORE importing hotspot modules
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("LOG_FORMAT", "console")

from hotspot.config import Settings, get_settings
from hotspot.services.access_orchestrator import AccessOrchestrator
from hotspot.services.checkout import CheckoutService
from hotspot.services.fraud_gate import FraudGate
from hotspot.services.mpesa_provider import MpesaProvider
from hotspot.services.payment_ledger import PaymentLedger
from hotspot.services.reconciliation import WebhookReconciler
from hotspot.services.removal_scheduler import RemovalScheduler
from hotspot.services.session_registry import SessionRegistry
from tests.fakes import ADMIN_KEY, DarajaStub, FakeEnforcer

# ============================================================================
# Settings and Store
# ============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings with deterministic values for every tunable the services read."""
    return Settings(
        redis_url="redis://localhost:6379/15",
        admin_api_key=ADMIN_KEY,
        webhook_secret="",
        mpesa_consumer_key="consumer-key",
        mpesa_consumer_secret="consumer-secret",
        mpesa_passkey="passkey",
        mpesa_shortcode="174379",
        mpesa_callback_url="https://hotspot.example/api/payments/webhook/mpesa",
        enabled_enforcers="",
        removal_sweep_enabled=False,
    )


@pytest.fixture
def store() -> fakeredis.FakeAsyncRedis:
    """Fresh in-memory Redis per test."""
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


# ============================================================================
# Enforcers and Provider
# ============================================================================


@pytest.fixture
def enforcers() -> list[FakeEnforcer]:
    return [FakeEnforcer("iptables"), FakeEnforcer("radius"), FakeEnforcer("chilli")]


@pytest.fixture
def daraja() -> DarajaStub:
    return DarajaStub()


@pytest.fixture
def provider(test_settings: Settings, daraja: DarajaStub) -> MpesaProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(daraja.handler))
    return MpesaProvider(test_settings, client)


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def fraud_gate(store, test_settings: Settings) -> FraudGate:
    return FraudGate(store, test_settings)


@pytest.fixture
def ledger(store, test_settings: Settings) -> PaymentLedger:
    return PaymentLedger(store, test_settings)


@pytest.fixture
def removals(store, test_settings: Settings) -> RemovalScheduler:
    return RemovalScheduler(store, test_settings)


@pytest.fixture
def orchestrator(
    store, test_settings: Settings, enforcers: list[FakeEnforcer], removals: RemovalScheduler
) -> AccessOrchestrator:
    return AccessOrchestrator(store, test_settings, enforcers, removals)


@pytest.fixture
def sessions(store, test_settings: Settings) -> SessionRegistry:
    return SessionRegistry(store, test_settings)


@pytest.fixture
def reconciler(
    ledger: PaymentLedger,
    orchestrator: AccessOrchestrator,
    sessions: SessionRegistry,
    provider: MpesaProvider,
    test_settings: Settings,
) -> WebhookReconciler:
    return WebhookReconciler(ledger, orchestrator, sessions, provider, test_settings)


@pytest.fixture
def checkout(
    fraud_gate: FraudGate,
    ledger: PaymentLedger,
    test_settings: Settings,
    provider: MpesaProvider,
) -> CheckoutService:
    return CheckoutService(fraud_gate, ledger, test_settings, provider=provider)


# ============================================================================
# API Client
# ============================================================================


@pytest.fixture
def services(store, test_settings: Settings, enforcers, provider):
    from hotspot.main import build_services

    return build_services(test_settings, store, enforcers, provider)


@pytest.fixture
async def client(services, test_settings: Settings) -> AsyncGenerator[AsyncClient, None]:
    """ASGI client with services injected; the lifespan (real Redis) is not run."""
    from hotspot.api.dependencies import get_services
    from hotspot.main import app

    app.dependency_overrides[get_services] = lambda: services
    app.dependency_overrides[get_settings] = lambda: test_settings
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Key": ADMIN_KEY}
