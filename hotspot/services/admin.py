"""
Admin Service - operator views and actions over sessions and grants.
"""

import asyncio
from dataclasses import dataclass

from redis.asyncio import Redis
from redis.exceptions import RedisError
from structlog import get_logger

from hotspot.models.domain import AccessGrant, EnforcementReport, Session
from hotspot.services.access_orchestrator import AccessOrchestrator
from hotspot.services.fraud_gate import FraudGate
from hotspot.services.removal_scheduler import RemovalScheduler
from hotspot.services.session_registry import SessionRegistry

logger = get_logger(__name__)


@dataclass(frozen=True)
class SystemStats:
    active_sessions: int
    active_grants: int
    pending_removals: int
    suspicious_activities: int
    redis_memory: str | None


@dataclass(frozen=True)
class RevokeResult:
    reference: str
    session_found: bool
    report: EnforcementReport


class AdminService:
    """Read models and maintenance actions for operators."""

    def __init__(
        self,
        store: Redis,
        sessions: SessionRegistry,
        orchestrator: AccessOrchestrator,
        fraud_gate: FraudGate,
        removals: RemovalScheduler,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.orchestrator = orchestrator
        self.fraud_gate = fraud_gate
        self.removals = removals

    async def list_sessions(self) -> tuple[list[Session], list[AccessGrant]]:
        sessions, grants = await asyncio.gather(
            self.sessions.list_active(), self.orchestrator.list_active()
        )
        return sessions, grants

    async def revoke(self, reference: str) -> RevokeResult:
        """
        Revoke the session and enforcement state of reference.

        Both halves run concurrently; neither failing stops the other.
        """
        session_result, report_result = await asyncio.gather(
            self.sessions.revoke(reference),
            self.orchestrator.revoke(reference),
            return_exceptions=True,
        )

        if isinstance(session_result, BaseException):
            logger.error(
                "admin_session_revoke_failed", reference=reference, error=str(session_result)
            )
            session_found = False
        else:
            session_found = session_result

        if isinstance(report_result, BaseException):
            logger.error(
                "admin_access_revoke_failed", reference=reference, error=str(report_result)
            )
            report = EnforcementReport(
                reference=reference,
                operation="remove",
                failures=(("store", str(report_result)),),
            )
        else:
            report = report_result

        logger.info(
            "admin_revoked_session",
            reference=reference,
            session_found=session_found,
            enforcer_failures=report.failure_map,
        )
        return RevokeResult(reference=reference, session_found=session_found, report=report)

    async def extend(self, reference: str, additional_seconds: int) -> bool:
        extended = await self.sessions.extend(reference, additional_seconds)
        logger.info(
            "admin_extended_session",
            reference=reference,
            additional_seconds=additional_seconds,
            extended=extended,
        )
        return extended

    async def stats(self) -> SystemStats:
        """Counts and store memory. Store errors degrade to zeros/None."""
        sessions, grants = await self.list_sessions()
        suspicious = await self.fraud_gate.get_suspicious_activities(limit=1000)

        pending_removals = 0
        redis_memory: str | None = None
        try:
            pending_removals = await self.removals.pending_count()
            info = await self.store.info("memory")
            redis_memory = info.get("used_memory_human")
        except RedisError as exc:
            logger.error("admin_stats_store_error", error=str(exc))

        return SystemStats(
            active_sessions=len(sessions),
            active_grants=len(grants),
            pending_removals=pending_removals,
            suspicious_activities=len(suspicious),
            redis_memory=redis_memory,
        )

    async def suspicious_activities(self, limit: int = 100) -> list[dict[str, object]]:
        return await self.fraud_gate.get_suspicious_activities(limit=limit)
