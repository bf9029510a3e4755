"""External update action invoked when the peer's address changes."""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Protocol

from ipsync.errors import ActionError

logger = logging.getLogger(__name__)


class CommandExecutorProtocol(Protocol):
    """Protocol for executing commands (DI for testing)."""

    async def run(
        self, *args: str, timeout: Optional[float] = None
    ) -> tuple[bytes, bytes, int]:
        """Run command and return (stdout, stderr, returncode)."""
        ...


class AsyncCommandExecutor:
    """Execute commands asynchronously."""

    async def run(
        self, *args: str, timeout: Optional[float] = None
    ) -> tuple[bytes, bytes, int]:
        """Run command and return (stdout, stderr, returncode).

        The process is killed before a timeout or cancellation propagates.

        Args:
            *args: Command and arguments to run.
            timeout: Seconds to wait before killing the process.

        Raises:
            ActionError: If the command cannot be spawned or times out.
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ActionError(f"failed to run {args[0]}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)
        except asyncio.TimeoutError:
            await _kill(proc)
            raise ActionError(f"{args[0]} timed out after {timeout}s")
        except asyncio.CancelledError:
            # A cancelled caller must not leave the child running
            await _kill(proc)
            raise

        return stdout, stderr, proc.returncode or 0


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        proc.kill()
    await proc.wait()


def strip_port(address: str) -> str:
    """Drop the ``:port`` suffix, splitting on the final colon.

    An address without a colon is returned unchanged.

    >>> strip_port("203.0.113.9:51012")
    '203.0.113.9'
    >>> strip_port("[2001:db8::1]:443")
    '[2001:db8::1]'
    """
    host, sep, _ = address.rpartition(":")
    return host if sep else address


class UpdateAction:
    """Runs ``<executable> --old=<address> --new=<address>``.

    Exit status 0 is success; anything else, including a failure to
    start the process, raises ActionError.
    """

    def __init__(
        self,
        executable: Path | str,
        executor: Optional[CommandExecutorProtocol] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize action.

        Args:
            executable: Path to the update program.
            executor: Command executor. Defaults to AsyncCommandExecutor.
            timeout: Seconds before the program is killed. None waits forever.
        """
        self._executable = str(executable)
        self._executor = executor or AsyncCommandExecutor()
        self._timeout = timeout

    @property
    def executable(self) -> str:
        """Path to the update program."""
        return self._executable

    async def run(self, old: str, new: str) -> None:
        """Invoke the update program with the old and new addresses.

        Args:
            old: Previous address, port already stripped.
            new: New address, port already stripped.

        Raises:
            ActionError: If the program fails.
        """
        logger.info(f"Running update action: {old} -> {new}")
        _, stderr, returncode = await self._executor.run(
            self._executable,
            f"--old={old}",
            f"--new={new}",
            timeout=self._timeout,
        )
        if returncode != 0:
            detail = stderr.decode(errors="replace").strip()
            message = f"failed to run script: exit status {returncode}"
            if detail:
                message = f"{message}: {detail}"
            raise ActionError(message)
