"""Blocking profile store for the session controller's worker threads.

Wraps the async ProfileRepo: the aiosqlite connection lives on a private
event loop running in a daemon thread, and every call is marshalled onto it
with ``run_coroutine_threadsafe``.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, TypeVar

from proxyrun.errors import StorageLockedError
from proxyrun.session.models import Profile
from proxyrun.storage.db import get_db
from proxyrun.storage.repos import ProfileRepo

logger = logging.getLogger(__name__)

T = TypeVar("T")

# sqlite3 messages that mean "storage not reachable right now".
_LOCKED_MARKERS = ("unable to open", "database is locked", "readonly", "disk i/o")


def _is_locked(exc: sqlite3.OperationalError) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in _LOCKED_MARKERS)


class ProfileStore:
    """Thread-safe, blocking CRUD for profiles."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever, name="proxyrun-db", daemon=True
        )
        self._thread.start()
        try:
            self._db = self._call(get_db(self._db_path))
        except BaseException:
            self._shutdown_loop()
            raise
        self._repo = ProfileRepo(self._db)

    def _call(self, coro: Coroutine[Any, Any, T]) -> T:
        future = asyncio.run_coroutine_threadsafe(coro, self._loop)
        try:
            return future.result()
        except sqlite3.OperationalError as exc:
            if _is_locked(exc):
                raise StorageLockedError(f"Profile storage unavailable: {exc}") from exc
            raise
        except OSError as exc:
            raise StorageLockedError(f"Profile storage unavailable: {exc}") from exc

    def get(self, profile_id: int) -> Profile | None:
        row = self._call(self._repo.get(profile_id))
        return Profile.from_row(row) if row else None

    def update(self, profile: Profile) -> None:
        self._call(self._repo.update(profile))

    def create(self, profile: Profile) -> Profile:
        profile.id = self._call(self._repo.create(profile))
        return profile

    def add_traffic(self, profile_id: int, tx: int, rx: int) -> None:
        self._call(self._repo.add_traffic(profile_id, tx, rx))

    def delete(self, profile_id: int) -> bool:
        return self._call(self._repo.delete(profile_id))

    def list_all(self) -> list[Profile]:
        return [Profile.from_row(row) for row in self._call(self._repo.list_all())]

    def close(self) -> None:
        try:
            self._call(self._db.close())
        finally:
            self._shutdown_loop()

    def _shutdown_loop(self) -> None:
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)
        self._loop.close()
