"""
Subprocess execution for enforcers that drive system binaries.

Commands are argv lists handed straight to exec; nothing goes through a shell.
"""

import asyncio
from dataclasses import dataclass

from structlog import get_logger

from hotspot.exceptions import EnforcerError

logger = get_logger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Exit status and decoded output of a finished command."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


async def run_command(enforcer: str, argv: list[str], timeout: float) -> CommandResult:
    """
    Run argv and wait at most timeout seconds.

    A non-zero exit is returned, not raised; callers decide what it means.

    Raises:
        EnforcerError: binary missing, or the command timed out (it is killed)
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise EnforcerError(enforcer, f"cannot execute {argv[0]}: {exc}") from exc

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        process.kill()
        await process.wait()
        logger.error("enforcer_command_timeout", enforcer=enforcer, argv=argv, timeout=timeout)
        raise EnforcerError(enforcer, f"{argv[0]} timed out after {timeout}s") from exc

    return CommandResult(
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode(errors="replace"),
        stderr=stderr.decode(errors="replace"),
    )
