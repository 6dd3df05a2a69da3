"""ACL route files: parsing, include flattening, storage, and periodic sync.

ACL text uses the shadowsocks format::

    [proxy_all]          # or [bypass_all]
    [bypass_list]
    (^|\\.)example\\.com$
    192.168.0.0/16
    [proxy_list]
    (^|\\.)blocked\\.org$
    #IMPORT_URL https://example.com/more.acl

Hostname entries are regexes, subnet entries are CIDRs. Subnets always
belong to the list opposite the default mode.
"""

from __future__ import annotations

import ipaddress
import logging
import os
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import requests

from proxyrun.config import ProxyRunConfig

logger = logging.getLogger(__name__)

ALL = "all"
BYPASS_LAN = "bypass-lan"
BYPASS_CHN = "bypass-china"
BYPASS_LAN_CHN = "bypass-lan-china"
GFWLIST = "gfwlist"
CHINALIST = "china-list"
CUSTOM_RULES = "custom-rules"

ROUTES = (ALL, BYPASS_LAN, BYPASS_CHN, BYPASS_LAN_CHN, GFWLIST, CHINALIST, CUSTOM_RULES)

# Maximum include depth when flattening custom rules.
MAX_FLATTEN_DEPTH = 10

_IMPORT_PREFIX = "#IMPORT_URL "
_FETCH_TIMEOUT = (10, 30)


def _is_subnet(line: str) -> bool:
    try:
        ipaddress.ip_network(line, strict=False)
    except ValueError:
        return False
    return True


@dataclass
class Acl:
    """An access control list for routing decisions."""

    bypass: bool = False
    bypass_hostnames: list[str] = field(default_factory=list)
    proxy_hostnames: list[str] = field(default_factory=list)
    subnets: list[str] = field(default_factory=list)
    urls: list[str] = field(default_factory=list)

    @classmethod
    def parse(cls, text: str, default_bypass: bool = False) -> Acl:
        acl = cls(bypass=default_bypass)
        bypass_subnets: list[str] = []
        proxy_subnets: list[str] = []
        hostnames: list[str] | None = (
            acl.proxy_hostnames if default_bypass else acl.bypass_hostnames
        )
        subnets: list[str] | None = proxy_subnets if default_bypass else bypass_subnets
        for raw in text.splitlines():
            line = raw.strip()
            if not line:
                continue
            if line.startswith(_IMPORT_PREFIX):
                acl.urls.append(line[len(_IMPORT_PREFIX):].strip())
                continue
            if line.startswith("#"):
                continue
            if line == "[outbound_block_list]":
                hostnames = None
                subnets = None
            elif line in ("[black_list]", "[bypass_list]"):
                hostnames = acl.bypass_hostnames
                subnets = bypass_subnets
            elif line in ("[white_list]", "[proxy_list]"):
                hostnames = acl.proxy_hostnames
                subnets = proxy_subnets
            elif line in ("[reject_all]", "[bypass_all]"):
                acl.bypass = True
            elif line in ("[accept_all]", "[proxy_all]"):
                acl.bypass = False
            elif _is_subnet(line):
                if subnets is not None:
                    subnets.append(line)
            elif hostnames is not None:
                hostnames.append(line)
        acl.subnets = proxy_subnets if acl.bypass else bypass_subnets
        return acl

    def to_text(self) -> str:
        lines = ["[bypass_all]" if self.bypass else "[proxy_all]"]
        bypass_list = self.bypass_hostnames if self.bypass else self.bypass_hostnames + self.subnets
        proxy_list = self.proxy_hostnames + self.subnets if self.bypass else self.proxy_hostnames
        if bypass_list:
            lines.append("[bypass_list]")
            lines.extend(bypass_list)
        if proxy_list:
            lines.append("[proxy_list]")
            lines.extend(proxy_list)
        lines.extend(f"{_IMPORT_PREFIX}{url}" for url in self.urls)
        return "\n".join(lines) + "\n"

    def flatten(
        self,
        depth: int,
        fetch: Callable[[str], str] | None = None,
    ) -> Acl:
        """Inline ``#IMPORT_URL`` includes, following at most ``depth`` levels.

        Children whose default mode differs keep their hostnames but lose
        their subnets, which would otherwise flip meaning.
        """
        fetch = fetch or _fetch_text
        if depth > 0:
            for url in self.urls:
                try:
                    text = fetch(url)
                except requests.RequestException as exc:
                    logger.warning("Skipping ACL include %s: %s", url, exc)
                    continue
                child = Acl.parse(text, default_bypass=self.bypass).flatten(depth - 1, fetch)
                if child.bypass != self.bypass:
                    logger.warning(
                        "Imported ACL %s uses a different default mode; dropping its subnets",
                        url,
                    )
                    child.subnets.clear()
                self.bypass_hostnames.extend(child.bypass_hostnames)
                self.proxy_hostnames.extend(child.proxy_hostnames)
                self.subnets.extend(child.subnets)
        self.urls.clear()
        return self


def _fetch_text(url: str) -> str:
    resp = requests.get(url, timeout=_FETCH_TIMEOUT)
    resp.raise_for_status()
    return resp.text


def acl_file(config: ProxyRunConfig, route: str) -> Path | None:
    """Path of the ACL file backing ``route``, or None for the 'all' route."""
    if route == ALL:
        return None
    return config.acl_dir / f"{route}.acl"


def save_acl(config: ProxyRunConfig, route: str, acl: Acl) -> Path:
    """Write ``acl`` as the file for ``route`` (atomic replace)."""
    path = config.acl_dir / f"{route}.acl"
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".acl.tmp")
    tmp.write_text(acl.to_text(), encoding="utf-8")
    os.replace(tmp, path)
    return path


def load_custom_rules(config: ProxyRunConfig) -> Acl:
    """The user's editable custom rule set (empty when not yet written)."""
    path = config.custom_rules_path
    if not path.is_file():
        return Acl()
    return Acl.parse(path.read_text(encoding="utf-8"))


class AclSyncer:
    """Periodically downloads managed ACL lists in the background.

    One daemon thread per route; scheduling an already-scheduled route is a
    no-op.
    """

    def __init__(self, config: ProxyRunConfig) -> None:
        self._config = config
        self._threads: dict[str, threading.Thread] = {}
        self._stop_event = threading.Event()
        self._lock = threading.Lock()

    def schedule(self, route: str) -> None:
        if route in (ALL, CUSTOM_RULES):
            return
        with self._lock:
            existing = self._threads.get(route)
            if existing is not None and existing.is_alive():
                return
            self._stop_event.clear()
            thread = threading.Thread(
                target=self._run,
                args=(route,),
                name=f"proxyrun-acl-{route}",
                daemon=True,
            )
            self._threads[route] = thread
        thread.start()

    def cancel(self) -> None:
        self._stop_event.set()
        with self._lock:
            self._threads.clear()

    def sync(self, route: str) -> bool:
        """Download ``route`` once. Returns True on success."""
        url = self._config.acl_url_template.format(route=route)
        try:
            text = _fetch_text(url)
        except requests.RequestException as exc:
            logger.info("ACL sync for '%s' failed: %s", route, exc)
            return False
        save_acl(self._config, route, Acl.parse(text))
        logger.info("ACL '%s' updated from %s", route, url)
        return True

    def _run(self, route: str) -> None:
        while not self._stop_event.is_set():
            self.sync(route)
            if self._stop_event.wait(timeout=self._config.acl_sync_interval):
                break
