"""
Session Registry - logical record of authorized devices.

- session:{reference}     Session JSON
- active:{identifier}     reference, one per MAC and IP of the session

All keys of a session share one TTL; extend and revoke touch them together.
"""

import time
from dataclasses import replace

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError
from structlog import get_logger

from hotspot.config import Settings
from hotspot.exceptions import DependencyUnavailableError, InvalidRequestError
from hotspot.models.domain import Session
from hotspot.store import keys
from hotspot.validators import normalize_device, normalize_ip, normalize_mac

logger = get_logger(__name__)

CAS_RETRIES = 5


def _now_ms() -> int:
    return int(time.time() * 1000)


class SessionRegistry:
    """Creates, extends and revokes sessions."""

    def __init__(self, store: Redis, settings: Settings) -> None:
        self.store = store
        self.settings = settings

    async def create(
        self,
        reference: str,
        mac: str | None = None,
        ip: str | None = None,
        ttl_seconds: int | None = None,
    ) -> Session:
        """
        Write the session and its device index keys in one MULTI.

        Raises InvalidRequestError when neither a valid MAC nor IP is given.
        """
        mac, ip = normalize_device(mac, ip)

        ttl = ttl_seconds or self.settings.session_ttl_seconds
        session = Session(
            reference=reference, ttl_seconds=ttl, created_at=_now_ms(), mac=mac, ip=ip
        )

        pipe = self.store.pipeline(transaction=True)
        pipe.set(keys.session(reference), session.to_json(), ex=ttl)
        for identifier in session.identifiers:
            pipe.set(keys.active(identifier), reference, ex=ttl)
        try:
            await pipe.execute()
        except RedisError as exc:
            logger.error("session_create_failed", reference=reference, error=str(exc))
            raise DependencyUnavailableError("store", str(exc)) from exc

        logger.info("session_created", reference=reference, mac=mac, ip=ip, ttl_seconds=ttl)
        return session

    async def get(self, reference: str) -> Session | None:
        try:
            raw = await self.store.get(keys.session(reference))
        except RedisError as exc:
            raise DependencyUnavailableError("store", str(exc)) from exc
        return Session.from_json(raw) if raw else None

    async def touch(self, reference: str) -> bool:
        """Record activity without changing the TTL. False when the session is gone."""
        session = await self.get(reference)
        if session is None:
            return False
        updated = replace(session, last_seen_at=_now_ms())
        try:
            written = await self.store.set(
                keys.session(reference), updated.to_json(), xx=True, keepttl=True
            )
        except RedisError as exc:
            raise DependencyUnavailableError("store", str(exc)) from exc
        return bool(written)

    async def extend(self, reference: str, additional_seconds: int) -> bool:
        """
        Add additional_seconds to the remaining lifetime of a session.

        The session key and every device index key get the same new TTL.
        Returns False when the session no longer exists.
        """
        key = keys.session(reference)
        try:
            async with self.store.pipeline(transaction=True) as pipe:
                for _ in range(CAS_RETRIES):
                    try:
                        await pipe.watch(key)
                        raw = await pipe.get(key)
                        remaining = await pipe.ttl(key)
                        if raw is None or remaining < 0:
                            await pipe.unwatch()
                            return False

                        session = Session.from_json(raw)
                        new_ttl = remaining + additional_seconds
                        updated = replace(
                            session, ttl_seconds=session.ttl_seconds + additional_seconds
                        )

                        pipe.multi()
                        pipe.set(key, updated.to_json(), ex=new_ttl)
                        for identifier in session.identifiers:
                            pipe.set(keys.active(identifier), reference, ex=new_ttl)
                        await pipe.execute()
                    except WatchError:
                        continue

                    logger.info(
                        "session_extended",
                        reference=reference,
                        additional_seconds=additional_seconds,
                        ttl_seconds=new_ttl,
                    )
                    return True
        except RedisError as exc:
            logger.error("session_extend_failed", reference=reference, error=str(exc))
            raise DependencyUnavailableError("store", str(exc)) from exc

        raise DependencyUnavailableError("store", f"contention on session {reference}")

    async def revoke(self, reference: str) -> bool:
        """
        Delete a session and the device index keys still pointing at it.

        Returns False when there was no session.
        """
        session = await self.get(reference)
        if session is None:
            return False

        index_keys = [keys.active(identifier) for identifier in session.identifiers]
        try:
            owners = await self.store.mget(index_keys) if index_keys else []
            pipe = self.store.pipeline(transaction=True)
            pipe.delete(keys.session(reference))
            for index_key, owner in zip(index_keys, owners):
                # A newer session may have taken over the device.
                if owner == reference:
                    pipe.delete(index_key)
            await pipe.execute()
        except RedisError as exc:
            logger.error("session_revoke_failed", reference=reference, error=str(exc))
            raise DependencyUnavailableError("store", str(exc)) from exc

        logger.info("session_revoked", reference=reference)
        return True

    async def list_active(self) -> list[Session]:
        """All live sessions, newest first. Store errors yield []."""
        try:
            session_keys = [
                key async for key in self.store.scan_iter(match=f"{keys.SESSION_PREFIX}*")
            ]
            if not session_keys:
                return []
            raw_values = await self.store.mget(session_keys)
        except RedisError as exc:
            logger.error("list_sessions_failed", error=str(exc))
            return []

        sessions = [Session.from_json(raw) for raw in raw_values if raw]
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    async def is_device_active(self, mac: str | None = None, ip: str | None = None) -> bool:
        """True when either identifier has a live session. Errors yield False."""
        identifiers: list[str] = []
        try:
            if mac:
                identifiers.append(normalize_mac(mac))
            if ip:
                identifiers.append(normalize_ip(ip))
        except InvalidRequestError:
            return False
        if not identifiers:
            return False

        try:
            return await self.store.exists(*[keys.active(i) for i in identifiers]) > 0
        except RedisError as exc:
            logger.error("device_active_check_failed", mac=mac, ip=ip, error=str(exc))
            return False
