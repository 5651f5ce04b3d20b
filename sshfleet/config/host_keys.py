"""SSH host identity verification.

The verification mode is fixed when the verifier is constructed; the same
instance is handed to every connection attempt.
"""

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

import asyncssh

if TYPE_CHECKING:
    from asyncssh import SSHKnownHosts

logger = logging.getLogger(__name__)

STRICT = "strict"
PERMISSIVE = "permissive"


class HostKeyVerifier:
    """Checks server host keys against a known_hosts trust store.

    In strict mode the trust store is loaded once and unknown or mismatched
    keys fail the handshake. In permissive mode every key is accepted.
    """

    def __init__(
        self,
        known_hosts_path: str | None = None,
        permissive: bool = False,
    ):
        """Initialize host key verifier.

        Args:
            known_hosts_path: Path to known_hosts file, 'none' for permissive
            permissive: Accept any host key

        Raises:
            FileNotFoundError: If strict and the trust store is missing
            ValueError: If strict and the trust store cannot be parsed
        """
        if known_hosts_path and known_hosts_path.lower() == "none":
            permissive = True

        self._mode = PERMISSIVE if permissive else STRICT
        self._path: str | None = None
        self._known_hosts: SSHKnownHosts | None = None

        if permissive:
            logger.critical(
                "SSH HOST KEY VERIFICATION DISABLED: any server key is accepted. "
                "Only use in trusted networks."
            )
            return

        path = self._resolve_path(known_hosts_path)
        self._known_hosts = asyncssh.read_known_hosts(path)
        self._path = path
        logger.info("SSH host key verification enabled (known_hosts=%s)", path)

    @staticmethod
    def _resolve_path(env_value: str | None) -> str:
        """Resolve the trust store path.

        Raises:
            FileNotFoundError: If the file does not exist
        """
        if env_value:
            path = Path(os.path.expanduser(env_value))
        else:
            path = Path.home() / ".ssh" / "known_hosts"

        if not path.exists():
            raise FileNotFoundError(
                f"SSH host key verification required but known_hosts file "
                f"not found: {path}\n\n"
                f"To fix this:\n"
                f"1. Add host keys: ssh-keyscan <hostname> >> {path}\n"
                f"2. Or disable verification (NOT RECOMMENDED): "
                f"SSHFLEET_KNOWN_HOSTS=none"
            )
        return str(path)

    @property
    def mode(self) -> str:
        """Either 'strict' or 'permissive'."""
        return self._mode

    @property
    def is_strict(self) -> bool:
        return self._mode == STRICT

    @property
    def known_hosts_path(self) -> str | None:
        """Path of the loaded trust store, None when permissive."""
        return self._path

    @property
    def known_hosts(self) -> "SSHKnownHosts | None":
        """Value for asyncssh's ``known_hosts`` option.

        None disables server host key checking.
        """
        return self._known_hosts

    def __repr__(self) -> str:
        return f"HostKeyVerifier(mode={self._mode!r}, known_hosts={self._path!r})"
