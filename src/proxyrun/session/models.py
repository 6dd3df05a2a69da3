"""Session data models — profiles, lifecycle state, and per-session record."""

from __future__ import annotations

import enum
import ipaddress
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from proxyrun.plugin import PluginOptions

if TYPE_CHECKING:
    from proxyrun.notification import ServiceNotification
    from proxyrun.process import GuardedProcessPool
    from proxyrun.session.traffic import TrafficMonitorThread


class SessionState(enum.Enum):
    """Lifecycle state of a proxy session.

    IDLE is only shown by user interfaces; the controller never produces it.
    """

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    STOPPING = "stopping"
    STOPPED = "stopped"


@dataclass
class Profile:
    """A stored connection profile."""

    host: str = ""
    remote_port: int = 8388
    password: str = ""
    method: str = "aes-256-gcm"
    name: str = ""
    plugin: str = ""
    route: str = "all"
    udpdns: bool = False
    tx: int = 0
    rx: int = 0
    id: int = 0

    @property
    def formatted_name(self) -> str:
        if self.name:
            return self.name
        host = self.host
        try:
            if ipaddress.ip_address(host).version == 6:
                host = f"[{host}]"
        except ValueError:
            pass
        return f"{host}:{self.remote_port}"

    def to_json(self) -> dict[str, Any]:
        """Fields consumed by the proxy executable's config file."""
        return {
            "server": self.host,
            "server_port": self.remote_port,
            "password": self.password,
            "method": self.method,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Profile:
        return cls(
            id=row["id"],
            name=row["name"],
            host=row["host"],
            remote_port=row["remote_port"],
            password=row["password"],
            method=row["method"],
            plugin=row["plugin"],
            route=row["route"],
            udpdns=bool(row["udpdns"]),
            tx=row["tx"],
            rx=row["rx"],
        )


@dataclass(frozen=True)
class TrafficStats:
    """One bandwidth sample: current rates (bytes/s) and lifetime totals."""

    tx_rate: int = 0
    rx_rate: int = 0
    tx_total: int = 0
    rx_total: int = 0


@dataclass
class SessionData:
    """Mutable record for one session instance.

    The controller is the only writer. ``profile``, ``state``, ``plugin`` and
    ``plugin_path`` are read from the broadcast timer and accounting threads,
    so they go through ``_lock``; the remaining fields are only touched by the
    controller.
    """

    processes: GuardedProcessPool
    _profile: Profile | None = None
    _state: SessionState = SessionState.STOPPED
    _plugin: PluginOptions = field(default_factory=PluginOptions)
    _plugin_path: str | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock)

    config_file: Path | None = None
    traffic_monitor_thread: TrafficMonitorThread | None = None
    notification: ServiceNotification | None = None
    teardown_registered: bool = False

    @property
    def profile(self) -> Profile | None:
        with self._lock:
            return self._profile

    @profile.setter
    def profile(self, value: Profile | None) -> None:
        with self._lock:
            self._profile = value

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @state.setter
    def state(self, value: SessionState) -> None:
        with self._lock:
            self._state = value

    @property
    def plugin(self) -> PluginOptions:
        with self._lock:
            return self._plugin

    @plugin.setter
    def plugin(self, value: PluginOptions) -> None:
        with self._lock:
            self._plugin = value

    @property
    def plugin_path(self) -> str | None:
        with self._lock:
            return self._plugin_path

    @plugin_path.setter
    def plugin_path(self, value: str | None) -> None:
        with self._lock:
            self._plugin_path = value
