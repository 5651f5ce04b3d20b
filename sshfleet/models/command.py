"""Command execution data models."""

from dataclasses import dataclass


@dataclass
class CommandResult:
    """Result of a remote command execution."""

    output: str
    exit_status: int | None = 0
    exit_signal: str | None = None


@dataclass
class ExecutionResult:
    """Outcome of one fan-out unit."""

    index: int
    host: str
    output: str = ""
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        """Whether the unit completed without error."""
        return self.error is None
