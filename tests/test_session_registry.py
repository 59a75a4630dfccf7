"""Tests for the session registry."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from hotspot.exceptions import DependencyUnavailableError, InvalidRequestError
from hotspot.services.session_registry import SessionRegistry
from hotspot.store import keys
from tests.fakes import TEST_IP, TEST_MAC


class TestCreate:
    @pytest.mark.asyncio
    async def test_writes_session_and_device_keys(self, sessions: SessionRegistry, store):
        session = await sessions.create("ABCD1234", mac=TEST_MAC, ip=TEST_IP, ttl_seconds=600)

        assert session.ttl_seconds == 600
        assert await sessions.get("ABCD1234") == session
        assert await store.get(keys.active(TEST_MAC)) == "ABCD1234"
        assert await store.get(keys.active(TEST_IP)) == "ABCD1234"
        for key in (keys.session("ABCD1234"), keys.active(TEST_MAC), keys.active(TEST_IP)):
            assert 0 < await store.ttl(key) <= 600

    @pytest.mark.asyncio
    async def test_default_ttl(self, sessions: SessionRegistry):
        session = await sessions.create("ABCD1234", ip=TEST_IP)

        assert session.ttl_seconds == 3600

    @pytest.mark.asyncio
    async def test_normalizes_device(self, sessions: SessionRegistry, store):
        session = await sessions.create("ABCD1234", mac="AA-BB-CC-DD-EE-FF", ip=" 10.0.0.23 ")

        assert session.mac == TEST_MAC
        assert session.ip == TEST_IP
        assert await store.get(keys.active(TEST_MAC)) == "ABCD1234"
        assert await sessions.is_device_active(mac=TEST_MAC) is True

    @pytest.mark.asyncio
    async def test_rejects_malformed_mac(self, sessions: SessionRegistry, store):
        with pytest.raises(InvalidRequestError):
            await sessions.create("ABCD1234", mac="not-a-mac")

        assert await store.get(keys.session("ABCD1234")) is None

    @pytest.mark.asyncio
    async def test_requires_identifier(self, sessions: SessionRegistry):
        with pytest.raises(InvalidRequestError):
            await sessions.create("ABCD1234")

    @pytest.mark.asyncio
    async def test_store_down(self, test_settings):
        pipe = MagicMock()
        pipe.execute = AsyncMock(side_effect=RedisConnectionError("refused"))
        broken = MagicMock()
        broken.pipeline = MagicMock(return_value=pipe)

        with pytest.raises(DependencyUnavailableError):
            await SessionRegistry(broken, test_settings).create("ABCD1234", ip=TEST_IP)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_touch(self, sessions: SessionRegistry, store):
        await sessions.create("ABCD1234", ip=TEST_IP, ttl_seconds=600)

        assert await sessions.touch("ABCD1234") is True

        session = await sessions.get("ABCD1234")
        assert session.last_seen_at is not None
        assert 0 < await store.ttl(keys.session("ABCD1234")) <= 600

    @pytest.mark.asyncio
    async def test_touch_missing(self, sessions: SessionRegistry):
        assert await sessions.touch("NOPE0000") is False

    @pytest.mark.asyncio
    async def test_extend_adds_to_remaining_ttl(self, sessions: SessionRegistry, store):
        await sessions.create("ABCD1234", mac=TEST_MAC, ip=TEST_IP, ttl_seconds=600)

        assert await sessions.extend("ABCD1234", 1800) is True

        for key in (keys.session("ABCD1234"), keys.active(TEST_MAC), keys.active(TEST_IP)):
            assert 2300 < await store.ttl(key) <= 2400
        assert (await sessions.get("ABCD1234")).ttl_seconds == 2400

    @pytest.mark.asyncio
    async def test_extend_missing(self, sessions: SessionRegistry):
        assert await sessions.extend("NOPE0000", 600) is False

    @pytest.mark.asyncio
    async def test_revoke(self, sessions: SessionRegistry, store):
        await sessions.create("ABCD1234", mac=TEST_MAC, ip=TEST_IP)

        assert await sessions.revoke("ABCD1234") is True

        assert await sessions.get("ABCD1234") is None
        assert await store.get(keys.active(TEST_MAC)) is None
        assert await store.get(keys.active(TEST_IP)) is None
        assert await sessions.revoke("ABCD1234") is False

    @pytest.mark.asyncio
    async def test_revoke_keeps_device_key_of_newer_session(self, sessions: SessionRegistry, store):
        await sessions.create("OLD00001", mac=TEST_MAC)
        await sessions.create("NEW00002", mac=TEST_MAC)

        await sessions.revoke("OLD00001")

        assert await store.get(keys.active(TEST_MAC)) == "NEW00002"
        assert await sessions.is_device_active(mac=TEST_MAC) is True


class TestQueries:
    @pytest.mark.asyncio
    async def test_list_active_newest_first(self, sessions: SessionRegistry, store):
        await sessions.create("FIRST001", ip="10.0.0.1")
        await sessions.create("SECOND02", ip="10.0.0.2")
        # pin created_at so ordering does not depend on clock resolution
        await store.set(
            keys.session("FIRST001"),
            '{"reference": "FIRST001", "ttl_seconds": 3600, "created_at": 1000, "ip": "10.0.0.1"}',
        )

        listed = await sessions.list_active()

        assert [s.reference for s in listed] == ["SECOND02", "FIRST001"]

    @pytest.mark.asyncio
    async def test_list_active_empty(self, sessions: SessionRegistry):
        assert await sessions.list_active() == []

    @pytest.mark.asyncio
    async def test_is_device_active(self, sessions: SessionRegistry):
        await sessions.create("ABCD1234", mac=TEST_MAC)

        assert await sessions.is_device_active(mac="AA:BB:CC:DD:EE:FF") is True
        assert await sessions.is_device_active(ip=TEST_IP) is False
        assert await sessions.is_device_active(mac="garbage") is False
        assert await sessions.is_device_active() is False

    @pytest.mark.asyncio
    async def test_is_device_active_store_error(self, test_settings):
        broken = MagicMock()
        broken.exists = AsyncMock(side_effect=RedisConnectionError("down"))

        registry = SessionRegistry(broken, test_settings)

        assert await registry.is_device_active(ip=TEST_IP) is False

    @pytest.mark.asyncio
    async def test_session_gone_after_ttl(self, sessions: SessionRegistry):
        await sessions.create("ABCD1234", mac=TEST_MAC, ip=TEST_IP, ttl_seconds=1)
        assert await sessions.is_device_active(mac=TEST_MAC) is True

        await asyncio.sleep(1.1)

        assert await sessions.get("ABCD1234") is None
        assert await sessions.is_device_active(mac=TEST_MAC) is False
        assert await sessions.is_device_active(ip=TEST_IP) is False
