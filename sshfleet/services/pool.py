"""SSH connection pooling keyed by (user, host).

Locking Strategy:
- `_meta_lock`: Protects the _connections dict structure (lookup/insert only)
- Per-entry locks: Held for a whole get_session call, so connection creation
  and channel opens for one target are serialized
- Lock acquisition order: meta-lock is always released before an entry lock
  is taken

There is no idle eviction or health checking. A cached connection that dies
stays cached; the next channel open on it fails with SessionError unless the
pool was built with ``reconnect_stale=True``.
"""

import asyncio
import logging
import os
from typing import TYPE_CHECKING

import asyncssh

from sshfleet.errors import ConnectError
from sshfleet.models import PooledConnection, Target
from sshfleet.services.session import Session

if TYPE_CHECKING:
    from sshfleet.config.host_keys import HostKeyVerifier

logger = logging.getLogger(__name__)


class ConnectionPool:
    """One authenticated SSH connection per target, created on first use."""

    def __init__(
        self,
        verifier: "HostKeyVerifier",
        port: int = 22,
        connect_timeout: float = 30,
        agent_env: str = "SSH_AUTH_SOCK",
        reconnect_stale: bool = False,
    ) -> None:
        """Initialize an empty pool.

        Args:
            verifier: Host identity verifier shared by every connection
            port: Remote SSH port
            connect_timeout: Seconds allowed for TCP connect and handshake
            agent_env: Environment variable naming the agent socket
            reconnect_stale: Replace a closed cached connection on next use
        """
        self.verifier = verifier
        self.port = port
        self.connect_timeout = connect_timeout
        self.agent_env = agent_env
        self.reconnect_stale = reconnect_stale
        self._connections: dict[Target, PooledConnection] = {}
        self._meta_lock = asyncio.Lock()

        logger.info(
            "ConnectionPool initialized (port=%d, connect_timeout=%ss, host_keys=%s)",
            port,
            connect_timeout,
            verifier.mode,
        )

    async def _get_entry(self, target: Target) -> PooledConnection:
        """Get or create the pool entry for a target."""
        async with self._meta_lock:
            pooled = self._connections.get(target)
            if pooled is None:
                pooled = PooledConnection()
                self._connections[target] = pooled
            return pooled

    async def get_session(self, user: str, host: str) -> Session:
        """Get a new session on the pooled connection for user@host.

        Raises:
            ConnectError: If no connection is cached and connecting fails
        """
        target = Target(user, host)
        pooled = await self._get_entry(target)

        async with pooled.lock:
            if pooled.is_stale:
                if self.reconnect_stale:
                    logger.info("Connection to %s is closed, reconnecting", target)
                    pooled.detach()
                else:
                    logger.debug("Connection to %s is closed; not reconnecting", target)

            if pooled.connection is None:
                pooled.attach(await self._connect(target))
                logger.info(
                    "SSH connection established to %s (pool_size=%d)",
                    target,
                    len(self._connections),
                )
            else:
                logger.debug("Reusing existing connection to %s", target)

            return Session(target, pooled)

    async def _connect(self, target: Target) -> asyncssh.SSHClientConnection:
        """Authenticate with agent keys and open a connection.

        Raises:
            ConnectError: On a missing agent, dial, timeout or handshake failure
        """
        agent_path = os.environ.get(self.agent_env, "")
        if not agent_path:
            raise ConnectError(target, f"{self.agent_env} empty")

        logger.info("Opening SSH connection to %s:%d", target, self.port)
        try:
            agent = await asyncssh.connect_agent(agent_path)
        except (OSError, asyncssh.Error) as e:
            logger.error("Cannot reach SSH agent at %s: %s", agent_path, e)
            raise ConnectError(target, e) from e

        try:
            keys = await agent.get_keys()
            return await asyncssh.connect(
                target.host,
                port=self.port,
                username=target.user,
                client_keys=keys,
                agent_path=None,
                known_hosts=self.verifier.known_hosts,
                connect_timeout=self.connect_timeout,
            )
        except (OSError, asyncssh.Error, asyncio.TimeoutError) as e:
            logger.error("SSH connection to %s failed: %s", target, e)
            raise ConnectError(target, e) from e
        finally:
            agent.close()
            await agent.wait_closed()

    async def remove(self, user: str, host: str) -> None:
        """Close and forget the connection for user@host, if any."""
        target = Target(user, host)
        async with self._meta_lock:
            pooled = self._connections.pop(target, None)
        if pooled is None:
            logger.debug("No connection to remove for %s (not in pool)", target)
            return

        async with pooled.lock:
            conn = pooled.detach()
        if conn is not None:
            logger.info("Removing connection to %s", target)
            conn.close()

    async def close_all(self) -> None:
        """Close all connections."""
        async with self._meta_lock:
            entries = list(self._connections.items())
            self._connections.clear()

        if entries:
            logger.info("Closing all %d connection(s)", len(entries))
        for target, pooled in entries:
            async with pooled.lock:
                conn = pooled.detach()
            if conn is not None:
                conn.close()
                logger.debug("Closed connection to %s", target)

    async def __aenter__(self) -> "ConnectionPool":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close_all()

    def handshakes(self, user: str, host: str) -> int:
        """Number of successful handshakes performed for user@host."""
        pooled = self._connections.get(Target(user, host))
        return pooled.handshakes if pooled else 0

    @property
    def pool_size(self) -> int:
        """Return the number of cached live-or-dead connections."""
        return sum(1 for p in self._connections.values() if p.connection is not None)

    @property
    def active_targets(self) -> list[Target]:
        """Return targets with a cached connection."""
        return [t for t, p in self._connections.items() if p.connection is not None]
