"""Best-effort refresh of remote metadata (the bootstrap endpoint URL)."""

from __future__ import annotations

import logging
import threading

import requests

from proxyrun.config import ProxyRunConfig

logger = logging.getLogger(__name__)

_TIMEOUT = (10, 30)


class RemoteConfig:
    """Holds remotely-managed settings; ``fetch()`` refreshes them in the background."""

    def __init__(self, config: ProxyRunConfig) -> None:
        self._config = config
        self._lock = threading.Lock()
        self._proxy_url = config.bootstrap_url
        self._fetching = False

    @property
    def proxy_url(self) -> str:
        with self._lock:
            return self._proxy_url

    def fetch(self) -> None:
        """Start a background refresh unless one is already running."""
        if not self._config.remote_config_url:
            return
        with self._lock:
            if self._fetching:
                return
            self._fetching = True
        threading.Thread(
            target=self._fetch, name="proxyrun-remote-config", daemon=True
        ).start()

    def refresh(self) -> bool:
        """Fetch synchronously. Returns True when settings were updated."""
        try:
            resp = requests.get(self._config.remote_config_url, timeout=_TIMEOUT)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.debug("Remote config fetch failed: %s", exc)
            return False

        url = data.get("proxy_url") if isinstance(data, dict) else None
        if not url:
            return False
        with self._lock:
            self._proxy_url = url
        logger.debug("Remote config updated bootstrap endpoint")
        return True

    def _fetch(self) -> None:
        try:
            self.refresh()
        finally:
            with self._lock:
                self._fetching = False
