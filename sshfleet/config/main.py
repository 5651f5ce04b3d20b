"""Application configuration.

Delegates to specialized components:
- HostKeyVerifier: Manages known_hosts
- Settings: Environment variables
"""

import logging
from dataclasses import dataclass

from sshfleet.config.host_keys import HostKeyVerifier
from sshfleet.config.settings import Settings
from sshfleet.models import HostRange
from sshfleet.services.pool import ConnectionPool

logger = logging.getLogger(__name__)


@dataclass
class Config:
    """Application configuration.

    Built once at startup; the verifier it holds is shared by every
    connection the pool opens.
    """

    settings: Settings
    host_keys: HostKeyVerifier

    @classmethod
    def from_env(cls) -> "Config":
        """Create config from environment.

        Returns:
            Configured instance with all components initialized
        """
        return cls.from_settings(Settings.from_env())

    @classmethod
    def from_settings(cls, settings: Settings) -> "Config":
        """Create config from already loaded settings.

        Raises:
            FileNotFoundError: If strict host checking has no trust store
        """
        host_keys = HostKeyVerifier(
            known_hosts_path=settings.known_hosts,
            permissive=settings.insecure_ignore_host_key,
        )
        return cls(settings=settings, host_keys=host_keys)

    def create_pool(self) -> ConnectionPool:
        """Build the connection pool for this configuration."""
        return ConnectionPool(
            self.host_keys,
            port=self.settings.port,
            connect_timeout=self.settings.connect_timeout,
            agent_env=self.settings.agent_env,
            reconnect_stale=self.settings.reconnect_stale,
        )

    @property
    def hosts(self) -> HostRange:
        """Index to host name resolver for the configured cluster."""
        return HostRange(self.settings.cluster, self.settings.host_template)

    @property
    def user(self) -> str:
        """Remote login user."""
        return self.settings.user
