"""
Access Orchestrator - grants and revokes network access across enforcers.

The grant record in the store (`radius:{reference}`) is the source of truth
for "currently authorized". Enforcers are best-effort mirrors of it: each is
called independently, and a failing backend never stops the others.
"""

import time

from redis.asyncio import Redis
from redis.exceptions import RedisError
from structlog import get_logger

from hotspot.config import Settings
from hotspot.exceptions import (
    DependencyUnavailableError,
    EnforcementPartialFailureError,
    EnforcerError,
)
from hotspot.models.domain import AccessGrant, DeviceIdentifier, EnforcementReport, RemovalRecord
from hotspot.observability.metrics import metrics
from hotspot.services.network_enforcer import NetworkEnforcer
from hotspot.services.removal_scheduler import RemovalScheduler
from hotspot.store import keys
from hotspot.validators import device_identifier, normalize_device

logger = get_logger(__name__)


class AccessOrchestrator:
    """
    Applies and withdraws access grants.

    Grant flow:
    1. Validate identifiers
    2. SET NX the grant record (at most one grant per reference)
    3. Schedule its removal
    4. Apply on every enabled enforcer, in order
    """

    def __init__(
        self,
        store: Redis,
        settings: Settings,
        enforcers: list[NetworkEnforcer],
        removals: RemovalScheduler,
    ) -> None:
        self.store = store
        self.settings = settings
        self.enforcers = enforcers
        self.removals = removals

    @property
    def enforcer_names(self) -> tuple[str, ...]:
        return tuple(enforcer.name for enforcer in self.enforcers)

    async def grant(
        self,
        reference: str,
        mac: str | None = None,
        ip: str | None = None,
        ttl_seconds: int | None = None,
    ) -> EnforcementReport:
        """
        Grant access for reference.

        Returns an empty report when the reference was already granted.

        Raises:
            InvalidRequestError: identifiers missing or malformed
            DependencyUnavailableError: grant record could not be written
        """
        mac, ip = normalize_device(mac, ip)
        identifier = device_identifier(mac, ip)
        ttl = ttl_seconds or self.settings.session_ttl_seconds
        now = int(time.time())

        grant = AccessGrant(
            reference=reference, ttl_seconds=ttl, granted_at=now * 1000, mac=mac, ip=ip
        )
        try:
            created = await self.store.set(keys.grant(reference), grant.to_json(), ex=ttl, nx=True)
        except RedisError as exc:
            logger.error("grant_record_write_failed", reference=reference, error=str(exc))
            raise DependencyUnavailableError("store", str(exc)) from exc

        if not created:
            logger.info("access_already_granted", reference=reference)
            return EnforcementReport(reference=reference, operation="apply")

        try:
            await self.removals.schedule(
                RemovalRecord(
                    reference=reference,
                    expires_at=now + ttl,
                    enforcers=self.enforcer_names,
                    mac=mac,
                    ip=ip,
                ),
                ttl,
            )
        except RedisError as exc:
            # Enforcer rules for this grant will outlive it until revoked.
            logger.error("removal_schedule_failed", reference=reference, error=str(exc))
            metrics.record_error(type(exc).__name__, "schedule_removal")

        report = await self._apply_all(reference, identifier, ttl)
        logger.info(
            "access_granted",
            reference=reference,
            identifier=str(identifier),
            ttl_seconds=ttl,
            enforcers=list(report.succeeded),
        )
        return report

    async def revoke(self, reference: str) -> EnforcementReport:
        """
        Withdraw access for reference from every enforcer.

        Works after the grant record expired, as long as its removal record
        still exists. Unknown references yield an empty report.
        """
        try:
            raw = await self.store.get(keys.grant(reference))
            record = await self.removals.cancel(reference)
        except RedisError as exc:
            logger.error("revoke_lookup_failed", reference=reference, error=str(exc))
            raise DependencyUnavailableError("store", str(exc)) from exc

        if raw:
            grant = AccessGrant.from_json(raw)
            mac, ip = grant.mac, grant.ip
            targets = self.enforcers
        elif record is not None:
            mac, ip = record.mac, record.ip
            targets = [e for e in self.enforcers if e.name in record.enforcers]
        else:
            logger.info("revoke_unknown_reference", reference=reference)
            return EnforcementReport(reference=reference, operation="remove")

        identifier = device_identifier(mac, ip)
        report = await self._remove_all(reference, identifier, targets)

        try:
            await self.store.delete(keys.grant(reference))
        except RedisError as exc:
            logger.error("grant_record_delete_failed", reference=reference, error=str(exc))
            raise DependencyUnavailableError("store", str(exc)) from exc

        logger.info("access_revoked", reference=reference, identifier=str(identifier))
        return report

    async def list_active(self) -> list[AccessGrant]:
        """Grants whose record has not expired. Store errors yield []."""
        try:
            grant_keys = [key async for key in self.store.scan_iter(match=f"{keys.GRANT_PREFIX}*")]
            if not grant_keys:
                return []
            raw_values = await self.store.mget(grant_keys)
        except RedisError as exc:
            logger.error("list_grants_failed", error=str(exc))
            return []

        grants = [AccessGrant.from_json(raw) for raw in raw_values if raw]
        return sorted(grants, key=lambda g: g.granted_at, reverse=True)

    async def expire_due(self) -> int:
        """
        Remove enforcement state for every grant past its expiry.

        Returns the number of grants fully removed. Enforcers that failed keep
        their share of the removal record and are retried later.
        """
        removed = 0
        for record in await self.removals.claim_due():
            targets = [e for e in self.enforcers if e.name in record.enforcers]
            identifier = device_identifier(record.mac, record.ip)
            report = await self._remove_all(record.reference, identifier, targets)

            if not report.ok:
                await self.removals.retry(record, tuple(report.failure_map))
                continue

            await self.removals.complete(record.reference)
            metrics.removals_swept_total.inc()
            logger.info("access_expired", reference=record.reference, identifier=str(identifier))
            removed += 1
        return removed

    async def _apply_all(
        self, reference: str, identifier: DeviceIdentifier, ttl_seconds: int
    ) -> EnforcementReport:
        succeeded: list[str] = []
        failures: list[tuple[str, str]] = []
        for enforcer in self.enforcers:
            error = await self._call(enforcer, "apply", identifier, ttl_seconds)
            if error is None:
                succeeded.append(enforcer.name)
            else:
                failures.append((enforcer.name, error))
        return self._report(reference, "apply", succeeded, failures)

    async def _remove_all(
        self, reference: str, identifier: DeviceIdentifier, targets: list[NetworkEnforcer]
    ) -> EnforcementReport:
        succeeded: list[str] = []
        failures: list[tuple[str, str]] = []
        for enforcer in targets:
            error = await self._call(enforcer, "remove", identifier)
            if error is None:
                succeeded.append(enforcer.name)
            else:
                failures.append((enforcer.name, error))
        return self._report(reference, "remove", succeeded, failures)

    async def _call(
        self,
        enforcer: NetworkEnforcer,
        operation: str,
        identifier: DeviceIdentifier,
        ttl_seconds: int | None = None,
    ) -> str | None:
        """Run one enforcer operation. Returns the error message, or None on success."""
        started = time.perf_counter()
        error: str | None = None
        try:
            if operation == "apply":
                await enforcer.apply(identifier, ttl_seconds or 0)
            else:
                await enforcer.remove(identifier)
        except EnforcerError as exc:
            error = exc.message
        except Exception as exc:
            logger.exception(
                "enforcer_unexpected_error", enforcer=enforcer.name, operation=operation
            )
            error = f"{type(exc).__name__}: {exc}"

        duration = time.perf_counter() - started
        metrics.record_enforcer_call(enforcer.name, operation, error is None, duration)
        if error is not None:
            logger.error(
                "enforcer_operation_failed",
                enforcer=enforcer.name,
                operation=operation,
                identifier=str(identifier),
                error=error,
            )
        return error

    @staticmethod
    def _report(
        reference: str,
        operation: str,
        succeeded: list[str],
        failures: list[tuple[str, str]],
    ) -> EnforcementReport:
        report = EnforcementReport(
            reference=reference,
            operation="apply" if operation == "apply" else "remove",
            succeeded=tuple(succeeded),
            failures=tuple(failures),
        )
        if not report.ok:
            partial = EnforcementPartialFailureError(reference, operation, report.failure_map)
            logger.warning("enforcement_partial_failure", reference=reference, error=str(partial))
        return report
