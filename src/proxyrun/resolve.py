"""Server host resolution for the session start sequence.

Resolution runs on its own daemon thread which is joined with a hard
timeout, so a hung system resolver can never stall a session attempt.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
import threading

from proxyrun.errors import HostUnresolvableError

logger = logging.getLogger(__name__)

# Timeout in seconds for resolving the server host.
DNS_TIMEOUT = 10.0


def is_numeric_address(host: str) -> bool:
    """Whether ``host`` is already a literal IPv4/IPv6 address."""
    try:
        ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return False
    return True


def resolve_host(host: str, timeout: float = DNS_TIMEOUT) -> str:
    """Resolve ``host`` to a literal address.

    Timeout, resolver failure, and an empty answer all raise
    HostUnresolvableError.
    """
    if is_numeric_address(host):
        return host.strip("[]")

    result: list[str] = []

    def _worker() -> None:
        try:
            infos = socket.getaddrinfo(host, None, proto=socket.IPPROTO_TCP)
        except (socket.gaierror, UnicodeError, OSError) as exc:
            logger.debug("Resolving %s failed: %s", host, exc)
            return
        for _family, _type, _proto, _canon, sockaddr in infos:
            if sockaddr and sockaddr[0]:
                result.append(str(sockaddr[0]))
                return

    worker = threading.Thread(target=_worker, name="proxyrun-resolve", daemon=True)
    worker.start()
    worker.join(timeout)

    if worker.is_alive():
        logger.warning("Resolving %s timed out after %.1fs", host, timeout)
        raise HostUnresolvableError(host)
    if not result or not is_numeric_address(result[0]):
        raise HostUnresolvableError(host)
    return result[0]
