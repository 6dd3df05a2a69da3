"""Observer registration and event broadcasting for a session.

All broadcasts are delivered on one single-thread executor, so observers
see state and traffic events in a consistent serialized order. Bandwidth
updates come from a periodic task that only exists while at least one
observer is subscribed.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Protocol

from proxyrun.session.models import SessionData, SessionState, TrafficStats

logger = logging.getLogger(__name__)

# Seconds between bandwidth broadcasts.
BANDWIDTH_INTERVAL = 1.0


class SessionObserver(Protocol):
    """Receives session events. Implementations must be hashable by identity."""

    def state_changed(
        self, state: SessionState, profile_name: str, message: str | None
    ) -> None: ...

    def traffic_updated(self, profile_id: int, stats: TrafficStats) -> None: ...

    def traffic_persisted(self, profile_id: int) -> None: ...


class PeriodicTask:
    """Runs ``callback`` every ``interval`` seconds until cancelled."""

    def __init__(self, interval: float, callback: Callable[[], None], name: str) -> None:
        self._interval = interval
        self._callback = callback
        self._cancelled = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> PeriodicTask:
        self._thread.start()
        return self

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _run(self) -> None:
        while not self._cancelled.wait(timeout=self._interval):
            try:
                self._callback()
            except Exception:
                logger.exception("Periodic task %s failed", self._thread.name)


class ObserverRegistry:
    """Observer set plus bandwidth-subscriber set for one session."""

    def __init__(
        self,
        data: SessionData,
        sampler: Callable[[], TrafficStats | None],
        interval: float = BANDWIDTH_INTERVAL,
    ) -> None:
        self._data = data
        self._sampler = sampler
        self._interval = interval
        # Keyed by id() so observers with value equality still count once each.
        self._observers: dict[int, SessionObserver] = {}
        self._bandwidth: set[int] = set()
        self._timer: PeriodicTask | None = None
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="proxyrun-events")

    @property
    def observer_count(self) -> int:
        with self._lock:
            return len(self._observers)

    @property
    def bandwidth_active(self) -> bool:
        with self._lock:
            return self._timer is not None

    def register(self, observer: SessionObserver) -> None:
        with self._lock:
            self._observers[id(observer)] = observer

    def unregister(self, observer: SessionObserver) -> None:
        self.unsubscribe(observer)
        with self._lock:
            self._observers.pop(id(observer), None)

    def subscribe(self, observer: SessionObserver) -> None:
        """Opt ``observer`` into bandwidth updates; the first one starts the timer."""
        key = id(observer)
        with self._lock:
            if key in self._bandwidth:
                return
            was_empty = not self._bandwidth
            self._bandwidth.add(key)
            if was_empty:
                self._timer = PeriodicTask(
                    self._interval, self._on_tick, name="proxyrun-bandwidth"
                ).start()

        profile = self._data.profile
        if profile is not None and self._data.state == SessionState.CONNECTED:
            stats = self._sampler()
            if stats is not None:
                self._post(self._deliver_traffic, [observer], profile.id, stats)

    def unsubscribe(self, observer: SessionObserver) -> None:
        """Revoke bandwidth updates; the last one out cancels the timer."""
        with self._lock:
            if id(observer) not in self._bandwidth:
                return
            self._bandwidth.discard(id(observer))
            if not self._bandwidth and self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def broadcast_state(
        self, state: SessionState, profile_name: str, message: str | None = None
    ) -> None:
        if self.observer_count == 0:
            return
        self._post(self._deliver_state, state, profile_name, message)

    def broadcast_traffic_persisted(self, profile_id: int) -> None:
        with self._lock:
            if not self._bandwidth:
                return
        self._post(self._deliver_persisted, profile_id)

    def drain(self, timeout: float | None = None) -> None:
        """Block until every broadcast queued so far has been delivered."""
        self._executor.submit(lambda: None).result(timeout=timeout)

    def close(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._bandwidth.clear()
            self._observers.clear()
        self._executor.shutdown(wait=True)

    def _post(self, fn: Callable[..., None], *args: object) -> Future[None] | None:
        try:
            return self._executor.submit(fn, *args)
        except RuntimeError:
            logger.debug("Event executor shut down — dropping %s", fn.__name__)
            return None

    def _on_tick(self) -> None:
        profile = self._data.profile
        if profile is None or self._data.state != SessionState.CONNECTED:
            return
        with self._lock:
            if not self._bandwidth:
                return
        stats = self._sampler()
        if stats is None:
            return
        self._post(self._deliver_traffic, None, profile.id, stats)

    def _subscribed_observers(self) -> list[SessionObserver]:
        with self._lock:
            return [obs for key, obs in self._observers.items() if key in self._bandwidth]

    def _deliver_state(
        self, state: SessionState, profile_name: str, message: str | None
    ) -> None:
        with self._lock:
            observers = list(self._observers.values())
        for observer in observers:
            try:
                observer.state_changed(state, profile_name, message)
            except Exception:
                logger.warning("Observer %r failed on state_changed", observer, exc_info=True)

    def _deliver_traffic(
        self,
        targets: list[SessionObserver] | None,
        profile_id: int,
        stats: TrafficStats,
    ) -> None:
        subscribed = self._subscribed_observers()
        if targets is not None:
            subscribed = [obs for obs in subscribed if any(obs is t for t in targets)]
        for observer in subscribed:
            try:
                observer.traffic_updated(profile_id, stats)
            except Exception:
                logger.warning("Observer %r failed on traffic_updated", observer, exc_info=True)

    def _deliver_persisted(self, profile_id: int) -> None:
        for observer in self._subscribed_observers():
            try:
                observer.traffic_persisted(profile_id)
            except Exception:
                logger.warning(
                    "Observer %r failed on traffic_persisted", observer, exc_info=True
                )
