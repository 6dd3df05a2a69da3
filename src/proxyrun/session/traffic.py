"""Traffic accounting — passive rate sampling and persisted per-profile totals."""

from __future__ import annotations

import logging
import os
import socket
import struct
import threading
import time
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from proxyrun.errors import StorageLockedError
from proxyrun.session.models import Profile, TrafficStats
from proxyrun.storage.device import DeviceProfileStore

if TYPE_CHECKING:
    from proxyrun.session.observers import ObserverRegistry

logger = logging.getLogger(__name__)

# Stat datagram: cumulative tx and rx bytes as two little-endian int64.
_STAT_FORMAT = "<qq"
_STAT_SIZE = struct.calcsize(_STAT_FORMAT)


class ProfileStoreLike(Protocol):
    def get(self, profile_id: int) -> Profile | None: ...
    def update(self, profile: Profile) -> None: ...
    def add_traffic(self, profile_id: int, tx: int, rx: int) -> None: ...


class TrafficMonitor:
    """Passive sampler for the running proxy's byte counters.

    ``update`` records cumulative totals reported by the proxy;
    ``update_rate`` turns the change since the previous sample into rates.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self._tx_total = 0
            self._rx_total = 0
            self._tx_rate = 0
            self._rx_rate = 0
            self._tx_last = 0
            self._rx_last = 0
            self._timestamp_last = time.monotonic()
            self._dirty = True

    def update(self, tx_total: int, rx_total: int) -> None:
        with self._lock:
            if tx_total != self._tx_total or rx_total != self._rx_total:
                self._tx_total = max(tx_total, self._tx_total)
                self._rx_total = max(rx_total, self._rx_total)
                self._dirty = True

    def update_rate(self) -> bool:
        """Recompute rates. Returns True when anything changed since last call."""
        with self._lock:
            now = time.monotonic()
            delta = now - self._timestamp_last
            updated = False
            if delta > 0 and (self._dirty or self._tx_rate or self._rx_rate):
                tx_rate = int((self._tx_total - self._tx_last) / delta)
                rx_rate = int((self._rx_total - self._rx_last) / delta)
                if tx_rate != self._tx_rate or rx_rate != self._rx_rate or self._dirty:
                    updated = True
                self._tx_rate = tx_rate
                self._rx_rate = rx_rate
                self._tx_last = self._tx_total
                self._rx_last = self._rx_total
                self._timestamp_last = now
                self._dirty = False
            return updated

    def stats(self) -> TrafficStats:
        with self._lock:
            return TrafficStats(
                tx_rate=self._tx_rate,
                rx_rate=self._rx_rate,
                tx_total=self._tx_total,
                rx_total=self._rx_total,
            )

    def sample(self) -> TrafficStats | None:
        """A fresh sample, or None when nothing moved since the last one."""
        if not self.update_rate():
            return None
        return self.stats()


class TrafficMonitorThread(threading.Thread):
    """Receives stat datagrams from the proxy on a Unix socket.

    The proxy is started with ``--stat-path`` pointing at this socket and
    periodically reports its cumulative tx/rx byte counts.
    """

    def __init__(self, path: Path, monitor: TrafficMonitor) -> None:
        super().__init__(name="proxyrun-traffic", daemon=True)
        self.path = Path(path)
        self._monitor = monitor
        self._running = threading.Event()
        self._sock: socket.socket | None = None

    def start(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.unlink(missing_ok=True)
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
        try:
            sock.bind(str(self.path))
        except OSError:
            sock.close()
            raise
        sock.settimeout(0.5)
        self._sock = sock
        self._running.set()
        super().start()

    def run(self) -> None:
        sock = self._sock
        if sock is None:
            return
        try:
            while self._running.is_set():
                try:
                    data = sock.recv(_STAT_SIZE)
                except TimeoutError:
                    continue
                except OSError:
                    break
                if len(data) != _STAT_SIZE:
                    logger.debug("Ignoring short stat datagram (%d bytes)", len(data))
                    continue
                tx, rx = struct.unpack(_STAT_FORMAT, data)
                self._monitor.update(tx, rx)
        finally:
            sock.close()

    def stop_thread(self) -> None:
        self._running.clear()
        if self.is_alive() and self is not threading.current_thread():
            self.join(timeout=2)
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass


class TrafficAccountant:
    """Persists traffic deltas onto the canonical stored profile."""

    def __init__(
        self,
        store: ProfileStoreLike,
        registry: ObserverRegistry,
        monitor: TrafficMonitor,
        device_store: DeviceProfileStore,
    ) -> None:
        self._store = store
        self._registry = registry
        self._monitor = monitor
        self._device_store = device_store

    @property
    def monitor(self) -> TrafficMonitor:
        return self._monitor

    def record_delta(self, profile_id: int, tx: int, rx: int) -> None:
        """Add ``tx``/``rx`` bytes to the persisted profile ``profile_id``.

        The profile is re-fetched rather than taken from the session's
        working copy, which may hold edits (resolved host, bootstrap
        credentials) that must not be written back.
        """
        if tx < 0 or rx < 0:
            raise ValueError(f"Traffic deltas must be non-negative (tx={tx}, rx={rx})")
        try:
            profile = self._store.get(profile_id)
            if profile is None:
                logger.debug("Profile %d vanished — dropping traffic delta", profile_id)
                return
            profile.tx += tx
            profile.rx += rx
            self._store.update(profile)
        except StorageLockedError as exc:
            logger.info("Profile storage locked (%s) — staging traffic on device", exc)
            self._device_store.stage(profile_id, tx, rx)
            self._device_store.listen_for_unlock(self._store)
            return
        self._registry.broadcast_traffic_persisted(profile_id)

    def rate(self) -> TrafficStats | None:
        return self._monitor.sample()

    def reset(self) -> None:
        self._monitor.reset()
