"""Exceptions raised across proxyrun.

The session controller maps a few of these onto user-facing stop messages;
everything else is folded into a generic failure message after being logged.
"""

from __future__ import annotations


class ProxyRunError(Exception):
    """Base exception for proxyrun errors."""


class HostUnresolvableError(ProxyRunError):
    """Raised when the server host cannot be resolved in time."""


class TunnelUnavailableError(ProxyRunError):
    """Raised when a delivery mode cannot set up its lower-layer tunnel."""


class BootstrapError(ProxyRunError):
    """Raised when the remote bootstrap exchange fails."""


class PluginNotFoundError(ProxyRunError):
    """Raised when a configured plugin executable cannot be located."""


class ProcessLaunchError(ProxyRunError):
    """Raised when a supervised child process fails to start."""


class StorageLockedError(ProxyRunError, OSError):
    """Raised when persistent storage is temporarily inaccessible."""
