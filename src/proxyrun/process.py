"""Supervised child processes — launch, guard, restart, and kill."""

from __future__ import annotations

import logging
import subprocess
import threading
import time
from collections.abc import Sequence

import psutil

from proxyrun.errors import ProcessLaunchError

logger = logging.getLogger(__name__)

# Seconds to wait after SIGTERM before escalating to SIGKILL.
_TERMINATE_TIMEOUT = 5.0
# Restart backoff bounds in seconds.
_RESTART_DELAY_MIN = 1.0
_RESTART_DELAY_MAX = 16.0
# A child that lived at least this long resets the backoff.
_STABLE_UPTIME = 30.0


class GuardedProcess:
    """One child process kept alive by a guard thread.

    The first spawn happens synchronously so launch failures reach the
    caller; after that the guard thread respawns the child whenever it exits
    unexpectedly, backing off between attempts.
    """

    def __init__(self, argv: Sequence[str]) -> None:
        self.argv = list(argv)
        self._name = self.argv[0].rsplit("/", 1)[-1] if self.argv else "?"
        self._proc: subprocess.Popen[bytes] | None = None
        self._stopping = threading.Event()
        self._lock = threading.Lock()
        self._guard: threading.Thread | None = None
        self.restarts = 0

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._proc is not None and self._proc.poll() is None

    def start(self) -> GuardedProcess:
        proc = self._spawn()
        with self._lock:
            self._proc = proc
        self._guard = threading.Thread(
            target=self._guard_loop,
            name=f"proxyrun-guard-{self._name}",
            daemon=True,
        )
        self._guard.start()
        logger.info("Started %s (PID %d)", self._name, proc.pid)
        return self

    def kill(self) -> None:
        """Stop guarding and terminate the child and its descendants."""
        self._stopping.set()
        with self._lock:
            proc = self._proc
        if proc is not None:
            _terminate_tree(proc)
        if self._guard is not None and self._guard is not threading.current_thread():
            self._guard.join(timeout=_TERMINATE_TIMEOUT)

    def _spawn(self) -> subprocess.Popen[bytes]:
        try:
            return subprocess.Popen(
                self.argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            raise ProcessLaunchError(f"Cannot start {self._name}: {exc}") from exc

    def _guard_loop(self) -> None:
        delay = _RESTART_DELAY_MIN
        while True:
            with self._lock:
                proc = self._proc
            if proc is None:
                return
            started = time.monotonic()
            self._forward_stderr(proc)
            code = proc.wait()

            if self._stopping.is_set():
                logger.debug("%s exited with code %d after kill", self._name, code)
                return

            uptime = time.monotonic() - started
            if uptime >= _STABLE_UPTIME:
                delay = _RESTART_DELAY_MIN
            logger.warning(
                "%s exited unexpectedly with code %d — restarting in %.0fs",
                self._name,
                code,
                delay,
            )
            if self._stopping.wait(timeout=delay):
                return
            delay = min(delay * 2, _RESTART_DELAY_MAX)

            try:
                new_proc = self._spawn()
            except ProcessLaunchError as exc:
                logger.error("Restart failed: %s", exc)
                continue
            with self._lock:
                if self._stopping.is_set():
                    _terminate_tree(new_proc)
                    return
                self._proc = new_proc
            self.restarts += 1

    def _forward_stderr(self, proc: subprocess.Popen[bytes]) -> None:
        if proc.stderr is None:
            return
        for raw in proc.stderr:
            line = raw.decode("utf-8", errors="replace").rstrip()
            if line:
                logger.debug("[%s] %s", self._name, line)
        proc.stderr.close()


def _terminate_tree(proc: subprocess.Popen[bytes]) -> None:
    """Terminate ``proc`` and all descendants, escalating to kill on timeout."""
    if proc.poll() is not None:
        return
    try:
        parent = psutil.Process(proc.pid)
        targets = parent.children(recursive=True) + [parent]
    except psutil.NoSuchProcess:
        return

    for p in targets:
        try:
            p.terminate()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue

    _gone, alive = psutil.wait_procs(targets, timeout=_TERMINATE_TIMEOUT)
    for p in alive:
        try:
            p.kill()
        except psutil.NoSuchProcess:
            continue
    proc.wait(timeout=_TERMINATE_TIMEOUT)


class GuardedProcessPool:
    """Tracks every guarded child of one session."""

    def __init__(self) -> None:
        self._processes: list[GuardedProcess] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._processes)

    def start(self, argv: Sequence[str]) -> GuardedProcess:
        """Launch ``argv`` under guard. Raises ProcessLaunchError on failure."""
        logger.debug("Launching: %s", " ".join(argv))
        process = GuardedProcess(argv).start()
        with self._lock:
            self._processes.append(process)
        return process

    def kill_all(self) -> None:
        """Kill every tracked process synchronously. Safe to call repeatedly."""
        with self._lock:
            processes = self._processes
            self._processes = []
        for process in processes:
            process.kill()
        if processes:
            logger.info("Killed %d supervised process(es)", len(processes))
