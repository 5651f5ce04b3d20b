"""Error taxonomy for sshfleet.

- ConnectError: agent socket missing, dial/handshake failure, timeout,
  rejected host identity
- SessionError: channel open failure on a cached connection
- RemoteCommandError: non-zero exit or termination signal
- TransferProtocolError: malformed control line, short read/write,
  remote-reported transfer failure
- AggregateFanOutError: one or more unit failures in a fan-out batch
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sshfleet.models import ExecutionResult, Target


class FleetError(Exception):
    """Base class for sshfleet errors."""


class ConnectError(FleetError):
    """Failed to establish an authenticated connection."""

    def __init__(self, target: "Target", original_error: Exception | str):
        """Initialize connect error.

        Args:
            target: Target the connection was for
            original_error: Underlying exception or reason
        """
        self.target = target
        self.original_error = original_error
        super().__init__(f"Cannot connect to {target}: {original_error}")


class SessionError(FleetError):
    """Failed to open a channel on a cached connection."""

    def __init__(self, target: "Target", original_error: Exception | str):
        self.target = target
        self.original_error = original_error
        super().__init__(f"Cannot open session on {target}: {original_error}")


class RemoteCommandError(FleetError):
    """Remote command exited non-zero or was killed by a signal."""

    def __init__(
        self,
        target: "Target",
        command: str,
        exit_status: int | None,
        exit_signal: str | None = None,
        output: str = "",
    ):
        self.target = target
        self.command = command
        self.exit_status = exit_status
        self.exit_signal = exit_signal
        self.output = output
        if exit_signal:
            reason = f"killed by signal {exit_signal}"
        else:
            reason = f"exited with status {exit_status}"
        super().__init__(f"{target}: command {command!r} {reason}")

    @property
    def is_sigkill(self) -> bool:
        """Whether the command was terminated by SIGKILL."""
        return self.exit_signal == "KILL"


class TransferProtocolError(FleetError):
    """Remote-copy framing violation.

    ``line`` holds the literal control line when one was received.
    """

    def __init__(self, message: str, line: str | None = None):
        self.line = line
        super().__init__(message)


class AggregateFanOutError(FleetError):
    """One or more units of a fan-out batch failed."""

    def __init__(
        self,
        failures: list["ExecutionResult"],
        successes: list["ExecutionResult"] | None = None,
    ):
        self.failures = failures
        self.successes = successes or []
        hosts = ", ".join(r.host for r in failures)
        super().__init__(
            f"{len(failures)} of {len(failures) + len(self.successes)} "
            f"unit(s) failed: {hosts}"
        )


def is_sigkill(error: BaseException | None) -> bool:
    """Check whether an error is a remote command killed by SIGKILL."""
    return isinstance(error, RemoteCommandError) and error.is_sigkill
