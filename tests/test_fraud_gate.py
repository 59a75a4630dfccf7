"""
Tests for the fraud gate.

Covers hard caps, soft scoring, attempt counting and fail-open behaviour.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from hotspot.models.api import FraudReason
from hotspot.models.domain import DeviceInfo, FraudCheckRequest, ScreenInfo
from hotspot.services.fraud_gate import FraudGate, device_risk
from hotspot.store import keys
from tests.fakes import TEST_IP, TEST_MAC

PHONE_BROWSER = DeviceInfo(
    user_agent="Mozilla/5.0 (Linux; Android 13) Chrome/120.0 Mobile",
    screen=ScreenInfo(width=1080, height=2400),
    timezone="Africa/Nairobi",
)


def request(amount: int = 20, device_info: DeviceInfo | None = None) -> FraudCheckRequest:
    return FraudCheckRequest(amount=amount, ip=TEST_IP, mac=TEST_MAC, device_info=device_info)


class TestDeviceRisk:
    """Tests for the fingerprint risk term."""

    def test_ordinary_phone_is_zero(self):
        assert device_risk(PHONE_BROWSER) == 0

    @pytest.mark.parametrize(
        "agent", ["Googlebot/2.1", "HeadlessChrome/120", "MySpider", "crawler"]
    )
    def test_automation_user_agent(self, agent: str):
        info = DeviceInfo(user_agent=agent, screen=ScreenInfo(1080, 1920), timezone="UTC")
        assert device_risk(info) == 50

    def test_missing_screen_or_timezone(self):
        assert device_risk(DeviceInfo(user_agent="Mozilla/5.0", timezone="UTC")) == 20
        assert device_risk(DeviceInfo(user_agent="Mozilla/5.0", screen=ScreenInfo(800, 600))) == 20

    def test_missing_both_counts_once(self):
        assert device_risk(DeviceInfo(user_agent="Mozilla/5.0")) == 20

    @pytest.mark.parametrize("width,height", [(50, 800), (800, 99), (6000, 1080)])
    def test_implausible_screen(self, width: int, height: int):
        screen = ScreenInfo(width, height)
        info = DeviceInfo(user_agent="Mozilla/5.0", screen=screen, timezone="UTC")
        assert device_risk(info) == 30

    def test_capped_at_100(self):
        info = DeviceInfo(user_agent="headless bot", screen=ScreenInfo(10, 10))
        assert device_risk(info) == 100


class TestFraudGateScoring:
    """Tests for soft scoring and the risk threshold."""

    @pytest.mark.asyncio
    async def test_first_request_is_clean(self, fraud_gate: FraudGate):
        decision = await fraud_gate.evaluate(request(device_info=PHONE_BROWSER))

        assert decision.allowed is True
        assert decision.risk_score == 0
        assert decision.reason is None

    @pytest.mark.asyncio
    async def test_allowed_request_is_counted(self, fraud_gate: FraudGate, store):
        await fraud_gate.evaluate(request())

        assert await store.get(keys.ip_attempts(TEST_IP)) == "1"
        assert await store.get(keys.mac_attempts(TEST_MAC)) == "1"
        assert 0 < await store.ttl(keys.ip_attempts(TEST_IP)) <= 3600
        assert 0 < await store.ttl(keys.mac_attempts(TEST_MAC)) <= 3600

    @pytest.mark.asyncio
    async def test_burst_and_attempts_accumulate(self, fraud_gate: FraudGate):
        first = await fraud_gate.evaluate(request())
        second = await fraud_gate.evaluate(request())
        third = await fraud_gate.evaluate(request())

        assert first.risk_score == 0
        # 1 ip attempt (5) + 1 mac attempt (10) + burst (40)
        assert second.allowed is True
        assert second.risk_score == 55
        assert "rapid_requests" in second.checks
        # 2 ip attempts (10) + 2 mac attempts (20) + burst (40) reaches the threshold
        assert third.allowed is False
        assert third.risk_score == 70
        assert third.reason == FraudReason.HIGH_RISK_SCORE

    @pytest.mark.asyncio
    async def test_denied_request_is_not_counted(self, fraud_gate: FraudGate, store):
        for _ in range(3):
            await fraud_gate.evaluate(request())

        assert await store.get(keys.ip_attempts(TEST_IP)) == "2"
        assert await store.get(keys.mac_attempts(TEST_MAC)) == "2"

    @pytest.mark.asyncio
    async def test_suspicious_amount(self, fraud_gate: FraudGate):
        decision = await fraud_gate.evaluate(request(amount=5000))

        assert decision.risk_score == 30
        assert "suspicious_amount" in decision.checks

    @pytest.mark.asyncio
    async def test_device_risk_applies_only_when_supplied(self, fraud_gate: FraudGate, store):
        bot = DeviceInfo(
            user_agent="python-requests bot", screen=ScreenInfo(1080, 1920), timezone="UTC"
        )
        with_device = await fraud_gate.evaluate(request(device_info=bot))
        assert with_device.risk_score == 50

        await store.flushall()
        without_device = await fraud_gate.evaluate(request())
        assert without_device.risk_score == 0

    @pytest.mark.asyncio
    async def test_high_device_risk_denies(self, fraud_gate: FraudGate):
        bot = DeviceInfo(user_agent="HeadlessChrome bot", screen=ScreenInfo(10, 10))
        decision = await fraud_gate.evaluate(request(amount=5000, device_info=bot))

        assert decision.allowed is False
        assert decision.reason == FraudReason.HIGH_RISK_SCORE

    @pytest.mark.asyncio
    async def test_headless_agent_without_screen_or_timezone(self, fraud_gate: FraudGate, store):
        decision = await fraud_gate.evaluate(request(device_info=DeviceInfo(user_agent="Headless")))

        assert decision.allowed is False
        assert decision.risk_score == 70
        assert decision.reason == FraudReason.HIGH_RISK_SCORE
        assert await store.get(keys.ip_attempts(TEST_IP)) is None


class TestFraudGateCaps:
    """Tests for hard per-identifier caps."""

    @pytest.mark.asyncio
    async def test_ip_cap(self, fraud_gate: FraudGate, store):
        await store.set(keys.ip_attempts(TEST_IP), 10)

        decision = await fraud_gate.evaluate(request())

        assert decision.allowed is False
        assert decision.risk_score == 100
        assert decision.reason == FraudReason.IP_RATE_LIMIT
        assert await store.get(keys.ip_attempts(TEST_IP)) == "10"

    @pytest.mark.asyncio
    async def test_mac_cap(self, fraud_gate: FraudGate, store):
        await store.set(keys.mac_attempts(TEST_MAC), 5)

        decision = await fraud_gate.evaluate(request())

        assert decision.allowed is False
        assert decision.risk_score == 100
        assert decision.reason == FraudReason.MAC_RATE_LIMIT

    @pytest.mark.asyncio
    async def test_below_cap_is_scored(self, fraud_gate: FraudGate, store):
        await store.set(keys.ip_attempts(TEST_IP), 9)

        decision = await fraud_gate.evaluate(FraudCheckRequest(amount=20, ip=TEST_IP))

        assert decision.allowed is True
        assert decision.risk_score == 45


class TestFraudGateFailOpen:
    """Store failures never block a request."""

    @pytest.mark.asyncio
    async def test_store_down_allows(self, test_settings):
        broken = MagicMock()
        broken.get = AsyncMock(side_effect=RedisConnectionError("connection refused"))
        gate = FraudGate(broken, test_settings)

        decision = await gate.evaluate(request())

        assert decision.allowed is True
        assert decision.risk_score == 0
        assert decision.checks == ("fail_open",)


class TestSuspiciousActivity:
    """Tests for suspicious activity reports."""

    @pytest.mark.asyncio
    async def test_reports_listed_newest_first(self, fraud_gate: FraudGate, store):
        await store.set(keys.suspicious(1000), '{"reason": "ip_rate_limit", "timestamp": 1000}')
        await store.set(keys.suspicious(3000), '{"reason": "high_risk_score", "timestamp": 3000}')
        await store.set(keys.suspicious(2000), '{"reason": "mac_rate_limit", "timestamp": 2000}')

        activities = await fraud_gate.get_suspicious_activities()

        assert [a["timestamp"] for a in activities] == [3000, 2000, 1000]

    @pytest.mark.asyncio
    async def test_report_is_stored_with_ttl(self, fraud_gate: FraudGate, store):
        await fraud_gate.report_suspicious_activity(
            "ip_rate_limit", ip=TEST_IP, mac=TEST_MAC, risk_score=100
        )

        activities = await fraud_gate.get_suspicious_activities()
        assert len(activities) == 1
        assert activities[0]["reason"] == "ip_rate_limit"
        assert activities[0]["ip"] == TEST_IP

        stored = [key async for key in store.scan_iter(match=f"{keys.SUSPICIOUS_PREFIX}*")]
        assert 0 < await store.ttl(stored[0]) <= 86400

    @pytest.mark.asyncio
    async def test_limit(self, fraud_gate: FraudGate, store):
        for ts in range(1, 6):
            await store.set(keys.suspicious(ts), f'{{"reason": "x", "timestamp": {ts}}}')

        activities = await fraud_gate.get_suspicious_activities(limit=2)

        assert [a["timestamp"] for a in activities] == [5, 4]

    @pytest.mark.asyncio
    async def test_store_error_yields_empty(self, test_settings):
        broken = MagicMock()
        broken.scan_iter = MagicMock(side_effect=RedisConnectionError("down"))
        gate = FraudGate(broken, test_settings)

        assert await gate.get_suspicious_activities() == []
