"""Data models for sshfleet."""

from sshfleet.models.command import CommandResult, ExecutionResult
from sshfleet.models.ssh import PooledConnection, Target
from sshfleet.models.target import HostRange
from sshfleet.models.transfer import TransferDescriptor, TransferResult

__all__ = [
    "CommandResult",
    "ExecutionResult",
    "HostRange",
    "PooledConnection",
    "Target",
    "TransferDescriptor",
    "TransferResult",
]
