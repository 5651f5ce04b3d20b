"""Single-command sessions on a pooled connection."""

import asyncio
import logging
from typing import IO, TYPE_CHECKING, Any

import asyncssh

from sshfleet.errors import RemoteCommandError, SessionError
from sshfleet.models import CommandResult

if TYPE_CHECKING:
    from sshfleet.models import PooledConnection, Target

logger = logging.getLogger(__name__)


def _decode(data: str | bytes | None) -> str:
    """Normalize process output to text."""
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def _signal_name(exit_signal: Any) -> str | None:
    """Extract the signal name from asyncssh's exit_signal tuple."""
    if not exit_signal:
        return None
    if isinstance(exit_signal, tuple):
        return exit_signal[0]
    return str(exit_signal)


class Session:
    """A channel for exactly one command invocation.

    The caller owns the session and must release it with ``close()`` or by
    using it as an async context manager.
    """

    def __init__(self, target: "Target", pooled: "PooledConnection") -> None:
        self.target = target
        self._pooled = pooled
        self._process: asyncssh.SSHClientProcess | None = None
        self._command: str | None = None

    @property
    def process(self) -> "asyncssh.SSHClientProcess | None":
        """The running process, once started."""
        return self._process

    async def start(self, command: str, **kwargs: Any) -> asyncssh.SSHClientProcess:
        """Open the channel and start a command on it.

        Channel opens are serialized with other session activity on the same
        pool entry. Extra keyword arguments go to ``create_process``.

        Raises:
            SessionError: If the session was already used or the channel
                cannot be opened on the cached connection
        """
        if self._process is not None:
            raise SessionError(self.target, "session already used")

        async with self._pooled.lock:
            conn = self._pooled.connection
            if conn is None:
                raise SessionError(self.target, "no cached connection")
            try:
                self._process = await conn.create_process(command, **kwargs)
            except (OSError, asyncssh.Error) as e:
                logger.error("Cannot open channel on %s: %s", self.target, e)
                raise SessionError(self.target, e) from e

        self._command = command
        logger.debug("Started %r on %s", command, self.target)
        return self._process

    async def wait(self) -> CommandResult:
        """Wait for the started command's channel to close.

        Output is not collected; readers of the process streams keep them.

        Raises:
            RemoteCommandError: On non-zero exit or termination signal
        """
        if self._process is None:
            raise SessionError(self.target, "session not started")
        await self._process.wait_closed()
        return self._check(
            CommandResult(
                output="",
                exit_status=self._process.exit_status,
                exit_signal=_signal_name(self._process.exit_signal),
            )
        )

    async def run(self, command: str, check: bool = True) -> CommandResult:
        """Run a command and return its combined stdout and stderr.

        Raises:
            RemoteCommandError: If check is set and the command failed
        """
        process = await self.start(command, stderr=asyncssh.STDOUT)
        completed = await process.wait(check=False)
        result = CommandResult(
            output=_decode(completed.stdout),
            exit_status=completed.exit_status,
            exit_signal=_signal_name(completed.exit_signal),
        )
        return self._check(result) if check else result

    async def stream(
        self,
        command: str,
        stdout: IO[Any],
        stderr: IO[Any] | None = None,
    ) -> CommandResult:
        """Run a long-lived command with output redirected to local files.

        Raises:
            RemoteCommandError: If the command failed
        """
        await self.start(command, stdout=stdout, stderr=stderr or stdout)
        return await self.wait()

    def _check(self, result: CommandResult) -> CommandResult:
        if result.exit_signal or (result.exit_status or 0) != 0:
            raise RemoteCommandError(
                self.target,
                self._command or "",
                result.exit_status,
                result.exit_signal,
                result.output,
            )
        return result

    def close(self) -> None:
        """Release the channel."""
        if self._process is not None:
            self._process.close()

    async def __aenter__(self) -> "Session":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()
        if self._process is not None:
            try:
                await asyncio.wait_for(self._process.wait_closed(), timeout=5)
            except (asyncio.TimeoutError, OSError, asyncssh.Error) as e:
                logger.debug("Channel on %s did not close cleanly: %s", self.target, e)
