"""Remote bootstrap exchange for profiles pointing at the sentinel host.

The endpoint receives a signed device identity and answers with a
``|``-delimited list of ``host:port:password:method`` candidates; one is
picked at random and written onto the working profile.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import random
from dataclasses import dataclass

import requests

from proxyrun.errors import BootstrapError
from proxyrun.session.models import Profile

logger = logging.getLogger(__name__)

# (connect, read) timeouts in seconds.
_TIMEOUT = (10, 30)


@dataclass(frozen=True)
class BootstrapProxy:
    """One server candidate handed out by the bootstrap endpoint."""

    host: str
    port: int
    password: str
    method: str

    def apply(self, profile: Profile) -> None:
        profile.host = self.host
        profile.remote_port = self.port
        profile.password = self.password
        profile.method = self.method


def sign_identity(identity: str) -> str:
    """Base64 of the SHA-1 digest of the device identity."""
    digest = hashlib.sha1(identity.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def parse_candidates(body: str) -> list[BootstrapProxy]:
    candidates: list[BootstrapProxy] = []
    for entry in body.split("|"):
        entry = entry.strip()
        if not entry:
            continue
        parts = [p.strip() for p in entry.split(":")]
        if len(parts) < 4:
            logger.debug("Ignoring malformed bootstrap entry: %r", entry)
            continue
        try:
            port = int(parts[1])
        except ValueError:
            logger.debug("Ignoring bootstrap entry with bad port: %r", entry)
            continue
        candidates.append(
            BootstrapProxy(
                host=parts[0],
                port=port,
                password=parts[2],
                method=parts[3],
            )
        )
    return candidates


def fetch_bootstrap_proxy(url: str, identity: str) -> BootstrapProxy:
    """POST the signed identity to ``url`` and pick a random candidate."""
    if not url:
        raise BootstrapError("No bootstrap endpoint configured")
    try:
        resp = requests.post(url, data={"sig": sign_identity(identity)}, timeout=_TIMEOUT)
        resp.raise_for_status()
    except requests.RequestException as exc:
        raise BootstrapError(f"Bootstrap request failed: {exc}") from exc

    candidates = parse_candidates(resp.text)
    if not candidates:
        raise BootstrapError("Bootstrap endpoint returned no usable servers")
    choice = random.choice(candidates)
    logger.info("Bootstrap selected %s:%d", choice.host, choice.port)
    return choice
