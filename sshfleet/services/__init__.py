"""Services for sshfleet."""

from sshfleet.services.executor import ParallelExecutor, run_command
from sshfleet.services.pool import ConnectionPool
from sshfleet.services.session import Session
from sshfleet.services.transfer import (
    ProgressWriter,
    download,
    format_control_line,
    parse_control_line,
    scp_get,
    scp_put,
    upload,
)

__all__ = [
    "ConnectionPool",
    "ParallelExecutor",
    "ProgressWriter",
    "Session",
    "download",
    "format_control_line",
    "parse_control_line",
    "run_command",
    "scp_get",
    "scp_put",
    "upload",
]
