"""Tests for supervised child processes."""

from __future__ import annotations

import sys
import time
from unittest.mock import patch

import pytest

from proxyrun.errors import ProcessLaunchError
from proxyrun.process import GuardedProcess, GuardedProcessPool

SLEEPER = [sys.executable, "-c", "import time; time.sleep(30)"]


def test_pool_start_and_kill_all():
    pool = GuardedProcessPool()
    process = pool.start(SLEEPER)

    assert len(pool) == 1
    assert process.is_running

    pool.kill_all()
    assert len(pool) == 0
    assert not process.is_running

    pool.kill_all()


def test_launch_failure_raises():
    pool = GuardedProcessPool()
    with pytest.raises(ProcessLaunchError):
        pool.start(["/nonexistent/ss-local", "-c", "x"])
    assert len(pool) == 0


def test_guard_restarts_exited_child():
    with patch("proxyrun.process._RESTART_DELAY_MIN", 0.05):
        process = GuardedProcess([sys.executable, "-c", "pass"]).start()
        deadline = time.monotonic() + 10
        while process.restarts < 1 and time.monotonic() < deadline:
            time.sleep(0.05)
        process.kill()

    assert process.restarts >= 1
    assert not process.is_running
