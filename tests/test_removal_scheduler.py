"""
Tests for deferred removal records and the background sweeper.
"""

import asyncio
import time

import pytest

from hotspot.models.domain import RemovalRecord
from hotspot.services.removal_scheduler import RemovalScheduler, RemovalSweeper
from hotspot.store import keys
from tests.fakes import TEST_MAC


def record(reference: str, expires_at: int) -> RemovalRecord:
    return RemovalRecord(
        reference=reference, expires_at=expires_at, enforcers=("iptables",), mac=TEST_MAC
    )


class TestRemovalScheduler:
    @pytest.mark.asyncio
    async def test_schedule_persists_record(self, removals: RemovalScheduler, store):
        await removals.schedule(record("ABCD1234", 5000), ttl_seconds=60)

        assert await removals.get("ABCD1234") == record("ABCD1234", 5000)
        assert await store.zscore(keys.REMOVALS_DUE, "ABCD1234") == 5000
        # grant TTL plus the grace period
        assert 86400 < await store.ttl(keys.removal("ABCD1234")) <= 86460

    @pytest.mark.asyncio
    async def test_claim_due_respects_expiry(self, removals: RemovalScheduler):
        await removals.schedule(record("DUE00001", 100), ttl_seconds=60)
        await removals.schedule(record("LATER002", 900), ttl_seconds=60)

        claimed = await removals.claim_due(now=500)

        assert [r.reference for r in claimed] == ["DUE00001"]

    @pytest.mark.asyncio
    async def test_claim_leases_instead_of_deleting(
        self, removals: RemovalScheduler, store, test_settings
    ):
        await removals.schedule(record("DUE00001", 100), ttl_seconds=60)

        await removals.claim_due(now=500)

        # A sweeper that dies here leaves the record to be claimed again.
        assert await removals.get("DUE00001") == record("DUE00001", 100)
        lease_until = 500 + test_settings.removal_claim_lease_seconds
        assert await store.zscore(keys.REMOVALS_DUE, "DUE00001") == lease_until
        assert await removals.claim_due(now=500) == []
        assert [r.reference for r in await removals.claim_due(now=lease_until)] == ["DUE00001"]

    @pytest.mark.asyncio
    async def test_complete(self, removals: RemovalScheduler):
        await removals.schedule(record("DUE00001", 100), ttl_seconds=60)
        await removals.claim_due(now=500)

        await removals.complete("DUE00001")

        assert await removals.get("DUE00001") is None
        assert await removals.pending_count() == 0

    @pytest.mark.asyncio
    async def test_retry_keeps_only_failed_enforcers(
        self, removals: RemovalScheduler, store, test_settings
    ):
        scheduled = RemovalRecord(
            reference="DUE00001", expires_at=100, enforcers=("iptables", "chilli"), mac=TEST_MAC
        )
        await removals.schedule(scheduled, ttl_seconds=60)
        [claimed] = await removals.claim_due(now=500)

        await removals.retry(claimed, ("chilli",), now=500)

        assert (await removals.get("DUE00001")).enforcers == ("chilli",)
        retry_at = 500 + test_settings.removal_retry_delay_seconds
        assert await store.zscore(keys.REMOVALS_DUE, "DUE00001") == retry_at

    @pytest.mark.asyncio
    async def test_retry_after_cancel_does_not_resurrect(self, removals: RemovalScheduler):
        await removals.schedule(record("DUE00001", 100), ttl_seconds=60)
        [claimed] = await removals.claim_due(now=500)
        await removals.cancel("DUE00001")

        assert await removals.retry(claimed, ("iptables",), now=500) is None
        assert await removals.pending_count() == 0

    @pytest.mark.asyncio
    async def test_claim_due_limit(self, removals: RemovalScheduler):
        for i in range(5):
            await removals.schedule(record(f"REF{i:05d}", 100 + i), ttl_seconds=60)

        first = await removals.claim_due(now=1000, limit=2)
        rest = await removals.claim_due(now=1000)

        assert [r.reference for r in first] == ["REF00000", "REF00001"]
        assert len(rest) == 3

    @pytest.mark.asyncio
    async def test_concurrent_claims_do_not_overlap(
        self, removals: RemovalScheduler, store, test_settings
    ):
        for i in range(10):
            await removals.schedule(record(f"REF{i:05d}", 100), ttl_seconds=60)
        other = RemovalScheduler(store, test_settings)

        batches = await asyncio.gather(removals.claim_due(now=1000), other.claim_due(now=1000))

        references = [r.reference for batch in batches for r in batch]
        assert sorted(references) == [f"REF{i:05d}" for i in range(10)]

    @pytest.mark.asyncio
    async def test_claim_skips_missing_record(self, removals: RemovalScheduler, store):
        await store.zadd(keys.REMOVALS_DUE, {"GHOST001": 1})

        assert await removals.claim_due(now=1000) == []
        assert await removals.pending_count() == 0

    @pytest.mark.asyncio
    async def test_cancel(self, removals: RemovalScheduler):
        await removals.schedule(record("ABCD1234", int(time.time()) + 60), ttl_seconds=60)

        cancelled = await removals.cancel("ABCD1234")

        assert cancelled is not None
        assert cancelled.reference == "ABCD1234"
        assert await removals.pending_count() == 0
        assert await removals.cancel("ABCD1234") is None


class TestRemovalSweeper:
    @pytest.mark.asyncio
    async def test_run_once(self):
        sweep_calls = []

        async def sweep() -> int:
            sweep_calls.append(1)
            return 3

        sweeper = RemovalSweeper(sweep, interval_seconds=60)

        assert await sweeper.run_once() == 3
        assert len(sweep_calls) == 1

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        ran = asyncio.Event()

        async def sweep() -> int:
            ran.set()
            return 0

        sweeper = RemovalSweeper(sweep, interval_seconds=0.01)
        await sweeper.start()
        assert sweeper.is_running

        await asyncio.wait_for(ran.wait(), timeout=1)
        await sweeper.stop()

        assert not sweeper.is_running

    @pytest.mark.asyncio
    async def test_loop_survives_sweep_errors(self):
        calls = 0
        twice = asyncio.Event()

        async def sweep() -> int:
            nonlocal calls
            calls += 1
            if calls >= 2:
                twice.set()
            raise RuntimeError("store down")

        sweeper = RemovalSweeper(sweep, interval_seconds=0.01)
        await sweeper.start()
        await asyncio.wait_for(twice.wait(), timeout=1)
        await sweeper.stop()

        assert calls >= 2

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self):
        async def sweep() -> int:
            return 0

        sweeper = RemovalSweeper(sweep, interval_seconds=1)
        await sweeper.stop()
        assert not sweeper.is_running
