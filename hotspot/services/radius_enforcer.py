"""
FreeRADIUS enforcer - reply attributes in the radreply table.

The NAS authenticates the device by MAC/IP username and receives
`Auth-Type := Accept` plus `Session-Timeout := <ttl>`.
"""

import asyncio

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from hotspot.db.models import RadReply
from hotspot.exceptions import EnforcerError
from hotspot.models.domain import DeviceIdentifier

logger = get_logger(__name__)

MANAGED_ATTRIBUTES = ("Auth-Type", "Session-Timeout")


class RadiusEnforcer:
    """Writes and clears radreply rows through SQLAlchemy (bound parameters only)."""

    name = "radius"

    def __init__(
        self, session_factory: async_sessionmaker[AsyncSession], timeout: float
    ) -> None:
        self.session_factory = session_factory
        self.timeout = timeout

    async def apply(self, identifier: DeviceIdentifier, ttl_seconds: int) -> None:
        await self._run(self._upsert(identifier.value, ttl_seconds), "apply")
        logger.info("radius_reply_written", identifier=str(identifier), ttl_seconds=ttl_seconds)

    async def remove(self, identifier: DeviceIdentifier) -> None:
        await self._run(self._delete(identifier.value), "remove")
        logger.info("radius_reply_deleted", identifier=str(identifier))

    async def _run(self, operation, label: str) -> None:
        try:
            await asyncio.wait_for(operation, timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise EnforcerError(self.name, f"{label} timed out after {self.timeout}s") from exc
        except SQLAlchemyError as exc:
            raise EnforcerError(self.name, f"{label} failed: {exc}") from exc

    async def _upsert(self, username: str, ttl_seconds: int) -> None:
        """Replace the managed attributes for username in one transaction."""
        async with self.session_factory() as session, session.begin():
            await session.execute(self._delete_statement(username))
            session.add_all(
                [
                    RadReply(username=username, attribute="Auth-Type", op=":=", value="Accept"),
                    RadReply(
                        username=username,
                        attribute="Session-Timeout",
                        op=":=",
                        value=str(ttl_seconds),
                    ),
                ]
            )

    async def _delete(self, username: str) -> None:
        async with self.session_factory() as session, session.begin():
            await session.execute(self._delete_statement(username))

    @staticmethod
    def _delete_statement(username: str):
        return delete(RadReply).where(
            RadReply.username == username,
            RadReply.attribute.in_(MANAGED_ATTRIBUTES),
        )
