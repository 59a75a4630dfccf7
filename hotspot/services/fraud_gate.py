"""
Fraud Gate - heuristic risk scoring of access requests.

Runs before any payment record exists. Counters live in the shared store;
a broken store never blocks a request (fail open).
"""

import json
import time

from redis.asyncio import Redis
from redis.exceptions import RedisError
from structlog import get_logger

from hotspot.config import Settings
from hotspot.models.api import FraudReason
from hotspot.models.domain import DeviceInfo, FraudCheckRequest, FraudDecision
from hotspot.observability.metrics import metrics
from hotspot.store import keys

logger = get_logger(__name__)

AUTOMATION_KEYWORDS = ("bot", "crawler", "spider", "headless")
SUSPICIOUS_AMOUNT_RANGE = (1, 1000)
RAPID_KEY_TTL_SECONDS = 10
MIN_SCREEN_PX = 100
MAX_SCREEN_PX = 5000
DEVICE_RISK_CAP = 100


def _now_ms() -> int:
    """Current wall clock in epoch milliseconds."""
    return int(time.time() * 1000)


def device_risk(device_info: DeviceInfo) -> int:
    """Fingerprint risk term in [0, 100]."""
    risk = 0

    if device_info.user_agent:
        agent = device_info.user_agent.lower()
        if any(keyword in agent for keyword in AUTOMATION_KEYWORDS):
            risk += 50

    if device_info.screen is None or not device_info.timezone:
        risk += 20

    if device_info.screen is not None:
        width, height = device_info.screen.width, device_info.screen.height
        if min(width, height) < MIN_SCREEN_PX or max(width, height) > MAX_SCREEN_PX:
            risk += 30

    return min(risk, DEVICE_RISK_CAP)


class FraudGate:
    """
    Scores access requests and enforces hourly attempt caps.

    Scoring:
    - hard caps on IP/MAC attempts deny immediately
    - otherwise attempts, amount anomalies, request bursts and the device
      fingerprint add up to a score compared against the threshold
    - only allowed requests are counted as attempts
    """

    def __init__(self, store: Redis, settings: Settings) -> None:
        self.store = store
        self.settings = settings

    async def evaluate(self, request: FraudCheckRequest) -> FraudDecision:
        """Score request. Store failures yield allowed=True, risk_score=0."""
        try:
            decision = await self._evaluate(request)
        except RedisError as exc:
            logger.error(
                "fraud_check_store_unavailable",
                ip=request.ip,
                mac=request.mac,
                error=str(exc),
            )
            metrics.record_error(type(exc).__name__, "fraud_check")
            decision = FraudDecision(allowed=True, risk_score=0, checks=("fail_open",))

        metrics.record_fraud_decision(
            decision.allowed,
            decision.reason.value if decision.reason else None,
            decision.risk_score,
        )
        return decision

    async def _evaluate(self, request: FraudCheckRequest) -> FraudDecision:
        risk_score = 0
        checks: list[str] = []

        if request.ip:
            ip_attempts = await self._get_attempts(keys.ip_attempts(request.ip))
            if ip_attempts >= self.settings.ip_attempt_cap:
                logger.warning("fraud_ip_rate_limited", ip=request.ip, attempts=ip_attempts)
                return FraudDecision(
                    allowed=False, risk_score=100, reason=FraudReason.IP_RATE_LIMIT
                )
            risk_score += ip_attempts * 5
            checks.append(f"ip_attempts:{ip_attempts}")

        if request.mac:
            mac_attempts = await self._get_attempts(keys.mac_attempts(request.mac))
            if mac_attempts >= self.settings.mac_attempt_cap:
                logger.warning("fraud_mac_rate_limited", mac=request.mac, attempts=mac_attempts)
                return FraudDecision(
                    allowed=False, risk_score=100, reason=FraudReason.MAC_RATE_LIMIT
                )
            risk_score += mac_attempts * 10
            checks.append(f"mac_attempts:{mac_attempts}")

        low, high = SUSPICIOUS_AMOUNT_RANGE
        if request.amount < low or request.amount > high:
            risk_score += 30
            checks.append("suspicious_amount")

        if await self._is_burst(request.ip or request.mac):
            risk_score += 40
            checks.append("rapid_requests")

        if request.device_info is not None:
            fingerprint_risk = device_risk(request.device_info)
            risk_score += fingerprint_risk
            if fingerprint_risk > 0:
                checks.append(f"device_risk:{fingerprint_risk}")

        allowed = risk_score < self.settings.risk_threshold
        if allowed:
            await self._record_attempt(request)

        logger.info(
            "fraud_check_completed",
            ip=request.ip,
            mac=request.mac,
            risk_score=risk_score,
            allowed=allowed,
            checks=checks,
        )

        return FraudDecision(
            allowed=allowed,
            risk_score=risk_score,
            reason=None if allowed else FraudReason.HIGH_RISK_SCORE,
            checks=tuple(checks),
        )

    async def _get_attempts(self, key: str) -> int:
        raw = await self.store.get(key)
        return int(raw) if raw else 0

    async def _is_burst(self, identifier: str | None) -> bool:
        """True when identifier was seen inside the burst window. Refreshes the timestamp."""
        if not identifier:
            return False

        key = keys.rapid(identifier)
        now = _now_ms()
        last_request = await self.store.get(key)
        await self.store.set(key, str(now), ex=RAPID_KEY_TTL_SECONDS)

        if last_request is None:
            return False
        return now - int(last_request) < self.settings.burst_window_seconds * 1000

    async def _record_attempt(self, request: FraudCheckRequest) -> None:
        """INCR + EXPIRE per identifier in one MULTI so no counter is left without a TTL."""
        ttl = self.settings.attempt_window_seconds
        for key in self._attempt_keys(request):
            await self.store.pipeline(transaction=True).incr(key).expire(key, ttl).execute()

    @staticmethod
    def _attempt_keys(request: FraudCheckRequest) -> list[str]:
        attempt_keys = []
        if request.ip:
            attempt_keys.append(keys.ip_attempts(request.ip))
        if request.mac:
            attempt_keys.append(keys.mac_attempts(request.mac))
        return attempt_keys

    async def report_suspicious_activity(
        self,
        reason: str,
        ip: str | None = None,
        mac: str | None = None,
        risk_score: int | None = None,
    ) -> None:
        """Keep a 24h record of a denied or otherwise suspicious request."""
        timestamp = _now_ms()
        record = {
            "reason": reason,
            "ip": ip,
            "mac": mac,
            "risk_score": risk_score,
            "timestamp": timestamp,
        }
        try:
            await self.store.set(
                keys.suspicious(timestamp),
                json.dumps(record),
                ex=self.settings.suspicious_activity_ttl_seconds,
            )
            logger.warning("suspicious_activity_reported", **record)
        except RedisError as exc:
            logger.error("suspicious_activity_report_failed", reason=reason, error=str(exc))

    async def get_suspicious_activities(self, limit: int = 100) -> list[dict[str, object]]:
        """Most recent reports first. Errors are logged and yield an empty list."""
        try:
            report_keys = [
                key async for key in self.store.scan_iter(match=f"{keys.SUSPICIOUS_PREFIX}*")
            ]
            report_keys.sort(key=lambda k: int(k.rsplit(":", 1)[1]), reverse=True)
            report_keys = report_keys[:limit]
            if not report_keys:
                return []
            raw_values = await self.store.mget(report_keys)
        except RedisError as exc:
            logger.error("suspicious_activities_read_failed", error=str(exc))
            return []

        activities = [json.loads(raw) for raw in raw_values if raw]
        return sorted(activities, key=lambda a: a["timestamp"], reverse=True)
