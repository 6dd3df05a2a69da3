"""Tests for observer registration and broadcasting."""

from __future__ import annotations

import time
from unittest.mock import MagicMock

import pytest

from proxyrun.session.models import Profile, SessionData, SessionState, TrafficStats
from proxyrun.session.observers import ObserverRegistry, PeriodicTask


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def data() -> SessionData:
    return SessionData(processes=MagicMock())


@pytest.fixture
def registry(data: SessionData):
    sampler = MagicMock(return_value=TrafficStats(tx_rate=10, rx_rate=20, tx_total=100, rx_total=200))
    reg = ObserverRegistry(data, sampler=sampler, interval=0.02)
    yield reg
    reg.close()


def test_failing_observer_does_not_block_others(registry, make_observer):
    broken = MagicMock()
    broken.state_changed.side_effect = RuntimeError("observer bug")
    healthy = make_observer()
    registry.register(broken)
    registry.register(healthy)

    registry.broadcast_state(SessionState.CONNECTING, "server")
    registry.drain(timeout=5)

    assert healthy.states == [(SessionState.CONNECTING, "server", None)]


def test_broadcasts_delivered_in_order(registry, make_observer):
    obs = make_observer()
    registry.register(obs)

    for state in (SessionState.CONNECTING, SessionState.CONNECTED, SessionState.STOPPING):
        registry.broadcast_state(state, "server")
    registry.drain(timeout=5)

    assert obs.state_sequence == [
        SessionState.CONNECTING,
        SessionState.CONNECTED,
        SessionState.STOPPING,
    ]


def test_register_same_observer_twice_counts_once(registry, make_observer):
    obs = make_observer()
    registry.register(obs)
    registry.register(obs)
    assert registry.observer_count == 1


def test_bandwidth_timer_follows_subscribers(registry, make_observer):
    first, second = make_observer(), make_observer()
    assert not registry.bandwidth_active

    registry.subscribe(first)
    assert registry.bandwidth_active
    registry.subscribe(second)
    registry.unsubscribe(first)
    assert registry.bandwidth_active
    registry.unsubscribe(second)
    assert not registry.bandwidth_active


def test_unregister_also_unsubscribes(registry, make_observer):
    obs = make_observer()
    registry.register(obs)
    registry.subscribe(obs)

    registry.unregister(obs)

    assert registry.observer_count == 0
    assert not registry.bandwidth_active


def test_traffic_only_reaches_subscribers(registry, data, make_observer):
    data.profile = Profile(id=7, host="1.2.3.4", password="x")
    data.state = SessionState.CONNECTED
    subscribed, plain = make_observer(), make_observer()
    registry.register(subscribed)
    registry.register(plain)

    registry.subscribe(subscribed)

    assert subscribed.traffic_seen.wait(timeout=5)
    registry.drain(timeout=5)
    assert subscribed.traffic[0][0] == 7
    assert plain.traffic == []


def test_no_traffic_while_not_connected(registry, data, make_observer):
    data.profile = Profile(id=7)
    data.state = SessionState.CONNECTING
    obs = make_observer()
    registry.register(obs)
    registry.subscribe(obs)

    assert not obs.traffic_seen.wait(timeout=0.2)


def test_traffic_persisted_only_with_subscribers(registry, make_observer):
    obs = make_observer()
    registry.register(obs)

    registry.broadcast_traffic_persisted(3)
    registry.drain(timeout=5)
    assert obs.persisted == []

    registry.subscribe(obs)
    registry.broadcast_traffic_persisted(3)
    registry.drain(timeout=5)
    assert obs.persisted == [3]



def _settled_calls(sampler: MagicMock, quiet: float = 0.15) -> int:
    time.sleep(quiet)
    return sampler.call_count


def test_ticks_stop_after_last_unsubscribe_and_resume_on_resubscribe(data, make_observer):
    data.profile = Profile(id=7)
    data.state = SessionState.CONNECTED
    sampler = MagicMock(return_value=TrafficStats(tx_total=1, rx_total=1))
    registry = ObserverRegistry(data, sampler=sampler, interval=0.02)
    obs = make_observer()
    registry.register(obs)
    try:
        registry.subscribe(obs)
        assert _wait_for(lambda: sampler.call_count >= 3)

        registry.unsubscribe(obs)
        stopped_at = _settled_calls(sampler)
        time.sleep(0.2)
        assert sampler.call_count == stopped_at

        registry.subscribe(obs)
        resumed_from = sampler.call_count
        assert _wait_for(lambda: sampler.call_count >= resumed_from + 3)
    finally:
        registry.close()


def test_failing_observer_does_not_block_any_broadcast(registry, data, make_observer):
    data.profile = Profile(id=7)
    data.state = SessionState.CONNECTED
    broken = MagicMock()
    broken.state_changed.side_effect = RuntimeError("observer bug")
    broken.traffic_updated.side_effect = RuntimeError("observer bug")
    broken.traffic_persisted.side_effect = RuntimeError("observer bug")
    healthy = make_observer()
    for obs in (broken, healthy):
        registry.register(obs)
        registry.subscribe(obs)

    registry.broadcast_state(SessionState.STOPPING, "server", "bye")
    registry.broadcast_traffic_persisted(7)
    assert healthy.traffic_seen.wait(timeout=5)
    registry.drain(timeout=5)

    assert healthy.states == [(SessionState.STOPPING, "server", "bye")]
    assert healthy.persisted == [7]
    assert healthy.traffic[0][0] == 7
    broken.traffic_updated.assert_called()
    broken.traffic_persisted.assert_called_once_with(7)


def test_periodic_task_ticks_until_cancelled():
    calls: list[int] = []
    task = PeriodicTask(0.01, lambda: calls.append(1), name="test-tick").start()
    assert _wait_for(lambda: len(calls) >= 2)

    task.cancel()
    time.sleep(0.05)
    settled = len(calls)
    time.sleep(0.1)

    assert task.cancelled
    assert len(calls) == settled
