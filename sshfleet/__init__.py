"""sshfleet: pooled SSH connections, fan-out execution and scp transfers."""

from sshfleet.errors import (
    AggregateFanOutError,
    ConnectError,
    FleetError,
    RemoteCommandError,
    SessionError,
    TransferProtocolError,
    is_sigkill,
)
from sshfleet.services import ConnectionPool, ParallelExecutor, Session

__version__ = "0.1.0"

__all__ = [
    "AggregateFanOutError",
    "ConnectError",
    "ConnectionPool",
    "FleetError",
    "ParallelExecutor",
    "RemoteCommandError",
    "Session",
    "SessionError",
    "TransferProtocolError",
    "is_sigkill",
]
