"""
CoovaChilli enforcer - entries in the local users file.

Each grant is one line `<identifier> Auth-Type := Accept, Session-Timeout := <ttl>`.
Chilli rereads the file on SIGHUP.
"""

import asyncio
import os
import tempfile
from pathlib import Path

from structlog import get_logger

from hotspot.exceptions import EnforcerError
from hotspot.models.domain import DeviceIdentifier
from hotspot.services.command_runner import run_command

logger = get_logger(__name__)


def format_entry(identifier: str, ttl_seconds: int) -> str:
    return f"{identifier} Auth-Type := Accept, Session-Timeout := {ttl_seconds}"


def _belongs_to(line: str, identifier: str) -> bool:
    # Exact first-field match; a substring match would hit 10.0.0.1 for 10.0.0.10.
    fields = line.split(maxsplit=1)
    return bool(fields) and fields[0] == identifier


class ChilliEnforcer:
    """Maintains the local users file and signals chilli to reload it."""

    name = "chilli"

    def __init__(self, users_path: str, reload_argv: list[str], timeout: float) -> None:
        self.users_path = Path(users_path)
        self.reload_argv = reload_argv
        self.timeout = timeout
        self._lock = asyncio.Lock()

    async def apply(self, identifier: DeviceIdentifier, ttl_seconds: int) -> None:
        entry = format_entry(identifier.value, ttl_seconds)
        async with self._lock:
            await self._rewrite(identifier.value, entry)
        await self._reload()
        logger.info("chilli_user_added", identifier=str(identifier), ttl_seconds=ttl_seconds)

    async def remove(self, identifier: DeviceIdentifier) -> None:
        async with self._lock:
            changed = await self._rewrite(identifier.value, None)
        if changed:
            await self._reload()
        logger.info("chilli_user_removed", identifier=str(identifier), changed=changed)

    async def _rewrite(self, identifier: str, entry: str | None) -> bool:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self._rewrite_sync, identifier, entry),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            raise EnforcerError(
                self.name, f"users file update timed out after {self.timeout}s"
            ) from exc
        except OSError as exc:
            raise EnforcerError(self.name, f"cannot update {self.users_path}: {exc}") from exc

    def _rewrite_sync(self, identifier: str, entry: str | None) -> bool:
        """Drop identifier's lines, optionally append entry. Returns whether the file changed."""
        try:
            lines = self.users_path.read_text().splitlines()
        except FileNotFoundError:
            lines = []

        kept = [line for line in lines if not _belongs_to(line, identifier)]
        if entry is not None:
            kept.append(entry)
        if kept == lines:
            return False

        # Atomic replace so chilli never reads a half-written file.
        self.users_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.users_path.parent, prefix=".localusers.")
        try:
            with os.fdopen(fd, "w") as tmp:
                tmp.write("\n".join(kept) + ("\n" if kept else ""))
            os.replace(tmp_path, self.users_path)
        except OSError:
            Path(tmp_path).unlink(missing_ok=True)
            raise
        return True

    async def _reload(self) -> None:
        result = await run_command(self.name, self.reload_argv, self.timeout)
        if not result.ok:
            raise EnforcerError(
                self.name, f"reload failed: {result.stderr.strip() or f'exit {result.returncode}'}"
            )
