"""File transfer data models."""

from collections.abc import Callable
from dataclasses import dataclass

ProgressCallback = Callable[[float], None]


@dataclass(frozen=True)
class TransferDescriptor:
    """One directed transfer.

    ``mode`` and ``size`` are fixed before any payload byte is sent.
    """

    local_path: str
    remote_path: str
    mode: int
    size: int
    progress: ProgressCallback | None = None


@dataclass
class TransferResult:
    """Result of a completed file transfer."""

    local_path: str
    remote_path: str
    mode: int
    size: int
    bytes_transferred: int
