"""Teardown listener — maps process signals onto session reload/close."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable
from typing import Any, Protocol

logger = logging.getLogger(__name__)

_CLOSE_SIGNALS = (signal.SIGINT, signal.SIGTERM)
_RELOAD_SIGNAL = getattr(signal, "SIGHUP", None)


class TeardownListener(Protocol):
    def register(self, on_reload: Callable[[], None], on_close: Callable[[], None]) -> bool: ...

    def unregister(self) -> None: ...


class SignalTeardownListener:
    """SIGHUP reloads the session, SIGINT/SIGTERM close it.

    Handlers run the callbacks on a fresh thread so the controller never
    works inside a signal handler. Signals can only be (un)bound from the
    main thread; an unregister from elsewhere leaves the handlers bound but
    inert, forwarding to whatever was installed before.
    """

    def __init__(self) -> None:
        self._previous: dict[int, Any] = {}
        self._on_reload: Callable[[], None] | None = None
        self._on_close: Callable[[], None] | None = None

    def register(self, on_reload: Callable[[], None], on_close: Callable[[], None]) -> bool:
        self._on_reload = on_reload
        self._on_close = on_close
        if self._previous:
            return True
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread — signal teardown listener not bound")
            return False

        for sig in _CLOSE_SIGNALS:
            self._previous[sig] = signal.signal(sig, self._handle)
        if _RELOAD_SIGNAL is not None:
            self._previous[_RELOAD_SIGNAL] = signal.signal(_RELOAD_SIGNAL, self._handle)
        return True

    def unregister(self) -> None:
        self._on_reload = None
        self._on_close = None
        if not self._previous:
            return
        if threading.current_thread() is not threading.main_thread():
            return
        for sig, handler in self._previous.items():
            signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
        self._previous.clear()

    def _handle(self, signum: int, frame: Any) -> None:
        callback = self._on_reload if signum == _RELOAD_SIGNAL else self._on_close
        if callback is not None:
            logger.info("Received signal %d", signum)
            threading.Thread(target=callback, name="proxyrun-signal", daemon=True).start()
            return

        previous = self._previous.get(signum, signal.SIG_DFL)
        if callable(previous):
            previous(signum, frame)
        elif previous != signal.SIG_IGN:
            signal.signal(signum, signal.SIG_DFL)
            signal.raise_signal(signum)
