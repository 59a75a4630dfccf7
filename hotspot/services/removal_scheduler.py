"""
Removal Scheduler - durable deferred removal of enforcement state.

Enforcement backends keep rules until told otherwise, so every grant leaves
a removal record behind:

- removal:{reference}   RemovalRecord JSON (grant TTL + grace)
- removals:due          sorted set, member=reference, score=epoch seconds due

Claiming a due member moves its score forward by a lease under WATCH, so
only one sweeper owns it and a sweeper that dies mid-removal leaves it to be
claimed again once the lease runs out. The record is deleted only after every
enforcer confirmed the removal; partial failures are re-scheduled for the
enforcers that failed.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import replace

from redis.asyncio import Redis
from redis.exceptions import WatchError
from structlog import get_logger

from hotspot.config import Settings
from hotspot.models.domain import RemovalRecord
from hotspot.store import keys

logger = get_logger(__name__)

CAS_RETRIES = 5


class RemovalScheduler:
    """Persists, claims, completes and re-schedules RemovalRecords."""

    def __init__(self, store: Redis, settings: Settings) -> None:
        self.store = store
        self.settings = settings

    async def schedule(self, record: RemovalRecord, ttl_seconds: int) -> None:
        """Persist record and index it by expires_at in one MULTI."""
        await (
            self.store.pipeline(transaction=True)
            .set(
                keys.removal(record.reference),
                record.to_json(),
                ex=ttl_seconds + self.settings.removal_record_grace_seconds,
            )
            .zadd(keys.REMOVALS_DUE, {record.reference: record.expires_at})
            .execute()
        )
        logger.debug(
            "removal_scheduled", reference=record.reference, expires_at=record.expires_at
        )

    async def get(self, reference: str) -> RemovalRecord | None:
        raw = await self.store.get(keys.removal(reference))
        return RemovalRecord.from_json(raw) if raw else None

    async def cancel(self, reference: str) -> RemovalRecord | None:
        """Drop the scheduled removal, returning the record if one existed."""
        record = await self.get(reference)
        await self.complete(reference)
        return record

    async def claim_due(
        self, now: int | None = None, limit: int | None = None
    ) -> list[RemovalRecord]:
        """
        Lease up to limit records whose score <= now.

        The caller must finish each with complete() or retry(); otherwise it
        becomes due again when the lease expires.
        """
        now = int(time.time()) if now is None else now
        limit = self.settings.removal_sweep_batch_size if limit is None else limit

        due = await self.store.zrangebyscore(keys.REMOVALS_DUE, "-inf", now, start=0, num=limit)
        claimed: list[RemovalRecord] = []
        for reference in due:
            if not await self._lease(reference, now):
                continue  # another sweeper won
            record = await self.get(reference)
            if record is None:
                logger.warning("removal_record_missing", reference=reference)
                await self.store.zrem(keys.REMOVALS_DUE, reference)
                continue
            claimed.append(record)
        return claimed

    async def _lease(self, reference: str, now: int) -> bool:
        """Push a due member's score past now, unless someone else did first."""
        lease_until = now + self.settings.removal_claim_lease_seconds
        async with self.store.pipeline(transaction=True) as pipe:
            for _ in range(CAS_RETRIES):
                try:
                    await pipe.watch(keys.REMOVALS_DUE)
                    score = await pipe.zscore(keys.REMOVALS_DUE, reference)
                    if score is None or score > now:
                        await pipe.unwatch()
                        return False

                    pipe.multi()
                    pipe.zadd(keys.REMOVALS_DUE, {reference: lease_until})
                    await pipe.execute()
                    return True
                except WatchError:
                    continue
        logger.info("removal_claim_contended", reference=reference)
        return False

    async def complete(self, reference: str) -> None:
        """Forget a removal whose enforcers are all clear."""
        await (
            self.store.pipeline(transaction=True)
            .zrem(keys.REMOVALS_DUE, reference)
            .delete(keys.removal(reference))
            .execute()
        )

    async def retry(
        self, record: RemovalRecord, enforcers: tuple[str, ...], now: int | None = None
    ) -> RemovalRecord | None:
        """
        Re-schedule record for the enforcers that still hold state.

        Returns None when the record disappeared meanwhile (revoked).
        """
        now = int(time.time()) if now is None else now
        remaining = replace(record, enforcers=enforcers)
        stored = await self.store.set(
            keys.removal(record.reference),
            remaining.to_json(),
            ex=self.settings.removal_record_grace_seconds,
            xx=True,
        )
        if not stored:
            return None

        retry_at = now + self.settings.removal_retry_delay_seconds
        await self.store.zadd(keys.REMOVALS_DUE, {record.reference: retry_at})
        logger.warning(
            "removal_rescheduled",
            reference=record.reference,
            enforcers=list(enforcers),
            retry_at=retry_at,
        )
        return remaining

    async def pending_count(self) -> int:
        return int(await self.store.zcard(keys.REMOVALS_DUE))


class RemovalSweeper:
    """
    Background loop running a sweep callable every interval.

    Usage:
        sweeper = RemovalSweeper(orchestrator.expire_due, interval_seconds=15)
        await sweeper.start()
        ...
        await sweeper.stop()
    """

    def __init__(self, sweep: Callable[[], Awaitable[int]], interval_seconds: float) -> None:
        self._sweep = sweep
        self._interval_seconds = interval_seconds
        self._log = logger.bind(service="removal_sweeper")

        self._running = False
        self._task: asyncio.Task | None = None
        self._run_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_once(self) -> int:
        """Run one sweep; concurrent calls are serialized."""
        async with self._run_lock:
            removed = await self._sweep()
        if removed:
            self._log.info("removal_sweep_completed", removed=removed)
        return removed

    async def start(self) -> None:
        if self._running:
            self._log.warning("removal_sweeper_already_running")
            return

        self._running = True
        self._task = asyncio.create_task(self._background_loop())
        self._log.info("removal_sweeper_started", interval_seconds=self._interval_seconds)

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self._log.info("removal_sweeper_stopped")

    async def _background_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                self._log.exception("removal_sweep_failed", error=str(e))

            try:
                await asyncio.sleep(self._interval_seconds)
            except asyncio.CancelledError:
                break
