"""Shared test fixtures."""

from __future__ import annotations

import dataclasses
import threading
from pathlib import Path

import pytest

from proxyrun.config import ProxyRunConfig
from proxyrun.errors import StorageLockedError
from proxyrun.session.models import Profile, SessionState, TrafficStats


class FakeStore:
    """In-memory profile store handing out copies, like the real one."""

    def __init__(self, *profiles: Profile) -> None:
        self.profiles: dict[int, Profile] = {p.id: dataclasses.replace(p) for p in profiles}
        self.locked = False
        self.updates = 0

    def _check(self) -> None:
        if self.locked:
            raise StorageLockedError("locked")

    def get(self, profile_id: int) -> Profile | None:
        self._check()
        profile = self.profiles.get(profile_id)
        return dataclasses.replace(profile) if profile is not None else None

    def update(self, profile: Profile) -> None:
        self._check()
        self.updates += 1
        self.profiles[profile.id] = dataclasses.replace(profile)

    def add_traffic(self, profile_id: int, tx: int, rx: int) -> None:
        self._check()
        profile = self.profiles[profile_id]
        profile.tx += tx
        profile.rx += rx


class RecordingObserver:
    """Observer that records every event it receives."""

    def __init__(self) -> None:
        self.states: list[tuple[SessionState, str, str | None]] = []
        self.traffic: list[tuple[int, TrafficStats]] = []
        self.persisted: list[int] = []
        self.traffic_seen = threading.Event()

    def state_changed(
        self, state: SessionState, profile_name: str, message: str | None
    ) -> None:
        self.states.append((state, profile_name, message))

    def traffic_updated(self, profile_id: int, stats: TrafficStats) -> None:
        self.traffic.append((profile_id, stats))
        self.traffic_seen.set()

    def traffic_persisted(self, profile_id: int) -> None:
        self.persisted.append(profile_id)

    @property
    def state_sequence(self) -> list[SessionState]:
        return [state for state, _name, _message in self.states]


@pytest.fixture
def config(tmp_path: Path) -> ProxyRunConfig:
    return ProxyRunConfig(
        data_dir=tmp_path / "data",
        config_dir=tmp_path / "config",
        device_dir=tmp_path / "device",
        bin_dir=tmp_path / "bin",
        profile_id=1,
        dns_timeout=0.5,
        bandwidth_interval=0.05,
    )


@pytest.fixture
def profile() -> Profile:
    return Profile(
        id=1,
        host="1.2.3.4",
        remote_port=8388,
        password="secret",
        method="aes-256-gcm",
    )


@pytest.fixture
def store(profile: Profile) -> FakeStore:
    return FakeStore(profile)


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def make_observer():
    return RecordingObserver
