"""Utility modules for sshfleet."""

from sshfleet.utils.console import ColorfulFormatter, configure_logging

__all__ = ["ColorfulFormatter", "configure_logging"]
