"""Delivery modes — the variant-specific hooks the session controller calls.

A mode decides how a profile is validated, which extra arguments the proxy
and plugin get, what notification is shown, and how processes are launched.
Transport setup itself (routing tables, tunnel devices, firewall redirects)
is supplied from outside; the tunnel-device mode only receives a factory.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

from proxyrun.errors import TunnelUnavailableError
from proxyrun.notification import ServiceNotification
from proxyrun.session.models import Profile

if TYPE_CHECKING:
    from proxyrun.session.controller import SessionController

logger = logging.getLogger(__name__)

PROXY_EMPTY = "Server config empty"


class DeliveryMode(Protocol):
    """Capability interface held by a SessionController."""

    tag: str
    executable: str

    def check_profile(self, profile: Profile) -> str | None:
        """Return a user-facing error message, or None when usable."""
        ...

    def build_additional_arguments(self, cmd: list[str]) -> list[str]: ...

    def create_notification(self, profile_name: str) -> ServiceNotification: ...

    def start_processes(self, controller: SessionController) -> None: ...

    def release(self) -> None:
        """Free mode resources after the session's processes were killed."""
        ...


class RoutedProxy:
    """Plain local SOCKS proxy; applications are pointed at it explicitly."""

    tag = "proxy"
    executable = "ss-local"

    def check_profile(self, profile: Profile) -> str | None:
        if not profile.host or not profile.password:
            return PROXY_EMPTY
        return None

    def build_additional_arguments(self, cmd: list[str]) -> list[str]:
        return cmd

    def create_notification(self, profile_name: str) -> ServiceNotification:
        return ServiceNotification(profile_name, self.tag)

    def start_processes(self, controller: SessionController) -> None:
        controller.start_proxy_process()

    def release(self) -> None:
        pass


class TransparentProxy(RoutedProxy):
    """Redirect-mode proxy fed by externally managed firewall rules."""

    tag = "transproxy"
    executable = "ss-redir"


class TunnelDevice(RoutedProxy):
    """Proxy behind a tunnel device.

    ``device_factory`` opens the device for a profile and returns an object
    with ``close()``; it raises TunnelUnavailableError when the lower layer
    is not available. The proxy is started with ``-V`` so its own sockets
    bypass the tunnel.
    """

    tag = "vpn"

    def __init__(self, device_factory: Callable[[Profile], Any] | None = None) -> None:
        self._device_factory = device_factory
        self._device: Any = None

    def build_additional_arguments(self, cmd: list[str]) -> list[str]:
        return cmd + ["-V"]

    def start_processes(self, controller: SessionController) -> None:
        if self._device_factory is None:
            raise TunnelUnavailableError("No tunnel device factory configured")
        profile = controller.data.profile
        if profile is None:
            raise TunnelUnavailableError("No active profile")
        self._device = self._device_factory(profile)
        if self._device is None:
            raise TunnelUnavailableError("Tunnel device could not be established")
        controller.start_proxy_process()

    def release(self) -> None:
        device, self._device = self._device, None
        if device is not None:
            try:
                device.close()
            except OSError as exc:
                logger.warning("Closing tunnel device failed: %s", exc)


MODES: dict[str, Callable[[], DeliveryMode]] = {
    RoutedProxy.tag: RoutedProxy,
    TransparentProxy.tag: TransparentProxy,
    TunnelDevice.tag: TunnelDevice,
}


def create_mode(name: str) -> DeliveryMode:
    try:
        return MODES[name]()
    except KeyError:
        raise ValueError(
            f"Unknown service mode '{name}' (choose from {', '.join(MODES)})"
        ) from None
