"""Configuration module for sshfleet.

Provides focused classes for different configuration concerns:
- Config: Main configuration class (aggregates all components)
- HostKeyVerifier: Manages SSH host key verification
- Settings: Environment variable configuration
"""

from sshfleet.config.host_keys import HostKeyVerifier
from sshfleet.config.main import Config
from sshfleet.config.settings import Settings

__all__ = ["Config", "HostKeyVerifier", "Settings"]
