"""Device-level fallback record for traffic that could not be persisted.

When user storage is locked, traffic deltas are staged here (marked dirty)
and merged into the profile store once it becomes reachable again.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Protocol

from proxyrun.errors import StorageLockedError

logger = logging.getLogger(__name__)

_RECORD_FILE = "device_profile.json"
# Seconds between flush attempts while waiting for storage to unlock.
_UNLOCK_POLL_INTERVAL = 30.0


class TrafficSink(Protocol):
    def add_traffic(self, profile_id: int, tx: int, rx: int) -> None: ...


class DeviceProfileStore:
    """Staged traffic per profile id, kept in the device directory."""

    def __init__(self, device_dir: Path, poll_interval: float = _UNLOCK_POLL_INTERVAL) -> None:
        self._path = Path(device_dir) / _RECORD_FILE
        self._poll_interval = poll_interval
        self._lock = threading.Lock()
        self._listener: threading.Thread | None = None
        self._stop_event = threading.Event()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict:
        with self._lock:
            return self._read()

    def stage(self, profile_id: int, tx: int, rx: int) -> None:
        with self._lock:
            record = self._read()
            entry = record.setdefault(str(profile_id), {"tx": 0, "rx": 0, "dirty": False})
            entry["tx"] += tx
            entry["rx"] += rx
            entry["dirty"] = True
            self._write(record)
        logger.info(
            "Staged traffic for profile %d on device storage (tx=%d rx=%d)",
            profile_id,
            tx,
            rx,
        )

    def flush(self, store: TrafficSink) -> bool:
        """Merge dirty entries into ``store``. False if storage is still locked."""
        with self._lock:
            record = self._read()
            for key, entry in list(record.items()):
                if not entry.get("dirty"):
                    continue
                try:
                    store.add_traffic(int(key), entry["tx"], entry["rx"])
                except StorageLockedError:
                    self._write(record)
                    return False
                del record[key]
            self._write(record)
        return True

    def listen_for_unlock(self, store: TrafficSink) -> None:
        """Retry ``flush`` in the background until it succeeds."""
        with self._lock:
            if self._listener is not None and self._listener.is_alive():
                return
            self._listener = threading.Thread(
                target=self._wait_for_unlock,
                args=(store,),
                name="proxyrun-unlock",
                daemon=True,
            )
            listener = self._listener
        listener.start()

    def stop_listening(self) -> None:
        self._stop_event.set()

    def _wait_for_unlock(self, store: TrafficSink) -> None:
        while not self._stop_event.wait(timeout=self._poll_interval):
            if self.flush(store):
                logger.info("Storage unlocked — staged traffic flushed")
                return

    def _read(self) -> dict:
        if not self._path.is_file():
            return {}
        try:
            return json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Discarding corrupt device record %s", self._path)
            return {}

    def _write(self, record: dict) -> None:
        if not record:
            self._path.unlink(missing_ok=True)
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        tmp.write_text(json.dumps(record), encoding="utf-8")
        os.replace(tmp, self._path)
