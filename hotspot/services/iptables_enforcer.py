"""
iptables enforcer - ACCEPT rules in the forwarding chain.

MAC identifiers match on `-m mac --mac-source`, IP identifiers on `-s`.
Expiry is handled by the removal sweep; iptables itself has no TTL.
"""

from structlog import get_logger

from hotspot.config import Settings
from hotspot.exceptions import EnforcerError
from hotspot.models.domain import DeviceIdentifier
from hotspot.services.command_runner import run_command

logger = get_logger(__name__)

# `iptables -C` exits 1 with this message when the rule is simply not there.
# Any other failure (permissions, missing chain, xtables lock) is an error.
RULE_ABSENT_EXIT = 1
RULE_ABSENT_MESSAGE = "does a matching rule exist"


class IptablesEnforcer:
    """Packet filter backend driven through the iptables binary."""

    name = "iptables"

    def __init__(self, settings: Settings) -> None:
        self.binary = settings.iptables_binary
        self.chain = settings.iptables_chain
        self.timeout = settings.enforcer_timeout_seconds

    def _rule(self, identifier: DeviceIdentifier) -> list[str]:
        if identifier.kind == "mac":
            return ["-m", "mac", "--mac-source", identifier.value, "-j", "ACCEPT"]
        return ["-s", identifier.value, "-j", "ACCEPT"]

    def _argv(self, action: str, identifier: DeviceIdentifier) -> list[str]:
        return [self.binary, action, self.chain, *self._rule(identifier)]

    async def _rule_exists(self, identifier: DeviceIdentifier) -> bool:
        """
        Raises:
            EnforcerError: the check itself failed
        """
        result = await run_command(self.name, self._argv("-C", identifier), self.timeout)
        if result.ok:
            return True
        if result.returncode == RULE_ABSENT_EXIT and RULE_ABSENT_MESSAGE in result.stderr:
            return False
        detail = result.stderr.strip() or f"exit {result.returncode}"
        raise EnforcerError(self.name, f"rule check failed: {detail}")

    async def apply(self, identifier: DeviceIdentifier, ttl_seconds: int) -> None:
        if await self._rule_exists(identifier):
            logger.debug("iptables_rule_present", identifier=str(identifier))
            return

        result = await run_command(self.name, self._argv("-I", identifier), self.timeout)
        if not result.ok:
            raise EnforcerError(self.name, result.stderr.strip() or f"exit {result.returncode}")
        logger.info("iptables_rule_inserted", identifier=str(identifier), ttl_seconds=ttl_seconds)

    async def remove(self, identifier: DeviceIdentifier) -> None:
        # Delete every copy; stop once -C reports nothing left.
        while await self._rule_exists(identifier):
            result = await run_command(self.name, self._argv("-D", identifier), self.timeout)
            if not result.ok:
                raise EnforcerError(
                    self.name, result.stderr.strip() or f"exit {result.returncode}"
                )
        logger.info("iptables_rule_removed", identifier=str(identifier))
