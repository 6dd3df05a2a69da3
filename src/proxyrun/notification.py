"""Session notification shown while a session is active."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class ServiceNotification:
    """Announces an active session; ``destroy()`` withdraws it."""

    def __init__(self, profile_name: str, tag: str) -> None:
        self.profile_name = profile_name
        self.tag = tag
        self.destroyed = False
        logger.info("[%s] %s", tag, profile_name or "Idle")

    def destroy(self) -> None:
        if self.destroyed:
            return
        self.destroyed = True
        logger.debug("[%s] notification for '%s' withdrawn", self.tag, self.profile_name)
