"""Application settings from environment variables.

Centralized environment variable parsing and validation.
"""

import getpass
import logging
import os
from dataclasses import dataclass, field

from sshfleet.models.target import DEFAULT_HOST_TEMPLATE

logger = logging.getLogger(__name__)


def _default_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "root"


@dataclass
class Settings:
    """Application settings from environment.

    Handles parsing, validation, and defaults for all env vars.
    """

    # Connection
    user: str = field(default_factory=_default_user)
    port: int = field(default=22)
    connect_timeout: int = field(default=30)
    agent_env: str = field(default="SSH_AUTH_SOCK")
    reconnect_stale: bool = field(default=False)

    # Host identity
    known_hosts: str | None = field(default=None)
    insecure_ignore_host_key: bool = field(default=False)

    # Host range
    cluster: str = field(default="local")
    host_template: str = field(default=DEFAULT_HOST_TEMPLATE)

    # Logging
    log_level: str = field(default="INFO")

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from SSHFLEET_* environment variables.

        Returns:
            Settings instance with values from environment
        """
        return cls(
            user=os.getenv("SSHFLEET_USER") or _default_user(),
            port=cls._get_int("SSHFLEET_PORT", 22),
            connect_timeout=cls._get_int("SSHFLEET_CONNECT_TIMEOUT", 30),
            agent_env=os.getenv("SSHFLEET_AGENT_ENV", "SSH_AUTH_SOCK"),
            reconnect_stale=cls._get_bool("SSHFLEET_RECONNECT_STALE", False),
            known_hosts=os.getenv("SSHFLEET_KNOWN_HOSTS") or None,
            insecure_ignore_host_key=cls._get_bool(
                "SSHFLEET_INSECURE_IGNORE_HOST_KEY", False
            ),
            cluster=os.getenv("SSHFLEET_CLUSTER", "local"),
            host_template=os.getenv("SSHFLEET_HOST_TEMPLATE", DEFAULT_HOST_TEMPLATE),
            log_level=os.getenv("SSHFLEET_LOG_LEVEL", "INFO").upper(),
        )

    @staticmethod
    def _get_int(key: str, default: int) -> int:
        """Get integer from environment.

        Args:
            key: Environment variable key
            default: Default value if not set or invalid

        Returns:
            Integer value from environment or default
        """
        value = os.getenv(key)
        if value is None:
            return default

        try:
            return int(value)
        except ValueError:
            logger.warning("Invalid int for %s: %s, using default %d", key, value, default)
            return default

    @staticmethod
    def _get_bool(key: str, default: bool) -> bool:
        """Get boolean from environment."""
        value = os.getenv(key)
        if value is None:
            return default
        return value.lower() in ("1", "true", "yes", "on")
