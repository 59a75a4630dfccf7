"""
Network Enforcer Protocol - Backend-agnostic interface.

Each enforcement mechanism (packet filter, RADIUS reply table, captive portal
user list) implements this interface. The orchestrator never knows which
backends are deployed.
"""

from typing import Protocol

from hotspot.models.domain import DeviceIdentifier


class NetworkEnforcer(Protocol):
    """
    Enforcement backend protocol.

    Implementations must be idempotent: applying twice leaves one rule, and
    removing state that is not present counts as success.
    """

    name: str

    async def apply(self, identifier: DeviceIdentifier, ttl_seconds: int) -> None:
        """
        Let identifier through for ttl_seconds.

        Args:
            identifier: Validated MAC or IP
            ttl_seconds: Lifetime of the grant

        Raises:
            EnforcerError: If the backend call fails or times out
        """
        ...

    async def remove(self, identifier: DeviceIdentifier) -> None:
        """
        Withdraw any access previously applied for identifier.

        Raises:
            EnforcerError: If the backend call fails or times out
        """
        ...
