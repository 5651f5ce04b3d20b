"""SSH-related data models."""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import asyncssh


@dataclass(frozen=True)
class Target:
    """Remote endpoint, used as the connection pool key."""

    user: str
    host: str

    @property
    def key(self) -> str:
        """Render as user@host."""
        return f"{self.user}@{self.host}"

    def __str__(self) -> str:
        return self.key


@dataclass
class PooledConnection:
    """A pool entry: at most one live connection plus its lock.

    The entry exists before the connection does; ``connection`` stays None
    until a handshake succeeds.
    """

    connection: "asyncssh.SSHClientConnection | None" = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    handshakes: int = 0
    established_at: datetime | None = None

    def attach(self, connection: "asyncssh.SSHClientConnection") -> None:
        """Cache a freshly authenticated connection."""
        self.connection = connection
        self.handshakes += 1
        self.established_at = datetime.now()

    def detach(self) -> "asyncssh.SSHClientConnection | None":
        """Forget the cached connection and return it."""
        conn, self.connection = self.connection, None
        self.established_at = None
        return conn

    @property
    def is_stale(self) -> bool:
        """Check if the cached connection was closed."""
        if self.connection is None:
            return False
        return bool(self.connection.is_closed())
