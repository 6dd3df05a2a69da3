"""Session controller — drives one proxy session through its lifecycle.

States move Stopped -> Connecting -> Connected -> Stopping -> Stopped. The
start sequence validates the profile synchronously, then finishes on a
dedicated worker thread (bootstrap, ACL, plugin, DNS, process launch) so the
caller is never blocked. Stop is safe from any state and performs at most
one teardown per session.
"""

from __future__ import annotations

import logging
import shutil
import threading
from collections.abc import Callable

from proxyrun import acl
from proxyrun.acl import AclSyncer, acl_file, load_custom_rules, save_acl
from proxyrun.bootstrap import fetch_bootstrap_proxy
from proxyrun.config import ProxyRunConfig
from proxyrun.errors import HostUnresolvableError, TunnelUnavailableError
from proxyrun.plugin import PluginManager, PluginOptions
from proxyrun.process import GuardedProcessPool
from proxyrun.remote import RemoteConfig
from proxyrun.resolve import is_numeric_address, resolve_host
from proxyrun.session.config_builder import ConfigBuilder
from proxyrun.session.models import Profile, SessionData, SessionState
from proxyrun.session.modes import DeliveryMode
from proxyrun.session.observers import ObserverRegistry, SessionObserver
from proxyrun.session.traffic import (
    ProfileStoreLike,
    TrafficAccountant,
    TrafficMonitor,
    TrafficMonitorThread,
)
from proxyrun.storage.device import DeviceProfileStore
from proxyrun.teardown import SignalTeardownListener, TeardownListener

logger = logging.getLogger(__name__)

PROFILE_EMPTY = "Profile empty"
INVALID_SERVER = "Invalid server"
REBOOT_REQUIRED = "Reboot required"
SERVICE_FAILED = "Service failed"

# Idle timeout in seconds handed to the proxy executable.
IDLE_TIMEOUT = 600


class SessionController:
    """Owns one session's state machine and everything it drives."""

    def __init__(
        self,
        mode: DeliveryMode,
        store: ProfileStoreLike,
        config: ProxyRunConfig | None = None,
        on_shutdown: Callable[[], None] | None = None,
        teardown: TeardownListener | None = None,
    ) -> None:
        self._mode = mode
        self._store = store
        self._config = config or ProxyRunConfig.load()
        self._on_shutdown = on_shutdown
        self._teardown = teardown or SignalTeardownListener()

        self.data = SessionData(processes=GuardedProcessPool())
        self._monitor = TrafficMonitor()
        self._registry = ObserverRegistry(
            self.data,
            # Late-bound: the accountant is built from this registry.
            sampler=lambda: self._accountant.rate(),
            interval=self._config.bandwidth_interval,
        )
        self._accountant = TrafficAccountant(
            store,
            self._registry,
            self._monitor,
            DeviceProfileStore(self._config.device_dir),
        )
        self._config_builder = ConfigBuilder(self._config, mode.build_additional_arguments)
        self._plugins = PluginManager(self._config)
        self._acl_syncer = AclSyncer(self._config)
        self._remote_config = RemoteConfig(self._config)

        # Reentrant: a failing start stops the session from inside start().
        self._transition_lock = threading.RLock()
        self._pending_stop: tuple[str | None, bool] | None = None
        self._attempt: threading.Thread | None = None

        self._remote_config.fetch()

    @property
    def mode(self) -> DeliveryMode:
        return self._mode

    @property
    def state(self) -> SessionState:
        return self.data.state

    @property
    def profile_name(self) -> str:
        profile = self.data.profile
        return profile.name if profile is not None else "Idle"

    @property
    def registry(self) -> ObserverRegistry:
        return self._registry

    @property
    def accountant(self) -> TrafficAccountant:
        return self._accountant

    # -- observers -----------------------------------------------------------

    def register_observer(self, observer: SessionObserver) -> None:
        self._registry.register(observer)

    def unregister_observer(self, observer: SessionObserver) -> None:
        self._registry.unregister(observer)

    def start_listening_for_bandwidth(self, observer: SessionObserver) -> None:
        self._registry.subscribe(observer)

    def stop_listening_for_bandwidth(self, observer: SessionObserver) -> None:
        self._registry.unsubscribe(observer)

    # -- state machine -------------------------------------------------------

    def change_state(self, state: SessionState, message: str | None = None) -> None:
        """Broadcast ``state`` to observers, then commit it."""
        if self.data.state == state and message is None:
            return
        self._registry.broadcast_state(state, self.profile_name, message)
        self.data.state = state

    def start(self) -> bool:
        """Begin a session attempt. Only legal from Stopped.

        Returns True when an attempt was launched; the outcome arrives as a
        state broadcast.
        """
        with self._transition_lock:
            state = self.data.state
            if state != SessionState.STOPPED:
                logger.warning("Illegal state when starting: %s", state.value)
                return False

            profile = self._load_profile()
            if profile is None:
                self.data.notification = self._mode.create_notification("")
                self._stop_runner(True, PROFILE_EMPTY)
                return False

            problem = self._mode.check_profile(profile)
            if problem is not None:
                self._stop_runner(True, problem)
                return False

            profile.name = profile.formatted_name
            self.data.profile = profile

            self._monitor.reset()
            self.data.traffic_monitor_thread = self._start_traffic_monitor()

            if not self.data.teardown_registered:
                self.data.teardown_registered = self._teardown.register(
                    self.reload, self._close_requested
                )

            self.data.notification = self._mode.create_notification(profile.name)
            self._pending_stop = None
            self.change_state(SessionState.CONNECTING)

            attempt = threading.Thread(
                target=self._connect,
                args=(profile,),
                name=f"{self._mode.tag}-connecting",
                daemon=True,
            )
            self._attempt = attempt
        attempt.start()
        return True

    def reload(self) -> None:
        """Restart the session with the current profile.

        Only legal from Stopped or Connected. A Connected session is
        re-validated first and stops with the validation message when its
        profile became unusable.
        """
        with self._transition_lock:
            state = self.data.state
            if state == SessionState.STOPPED:
                self.start()
                return
            if state != SessionState.CONNECTED:
                logger.warning("Illegal state when reloading: %s", state.value)
                return

            profile = self._load_profile()
            problem = PROFILE_EMPTY if profile is None else self._mode.check_profile(profile)
            if problem is not None:
                self.stop(problem)
                return
            self.stop(shutdown=False)
            self.start()

    def stop(self, message: str | None = None, shutdown: bool = True) -> bool:
        """Tear the session down. Returns True when a teardown ran.

        While Connecting the request is deferred until the attempt resolves;
        while Stopping it is ignored; from Stopped without a message only the
        shutdown signal is honoured.
        """
        with self._transition_lock:
            state = self.data.state
            if state == SessionState.CONNECTING:
                logger.info("Stop requested while connecting — deferred")
                self._pending_stop = (message, shutdown)
                return False
            if state == SessionState.STOPPING:
                logger.debug("Stop requested while already stopping — ignored")
                return False
            if state == SessionState.STOPPED and message is None:
                if shutdown:
                    self._signal_shutdown()
                return False
            self._stop_runner(shutdown, message)
            return True

    def wait_for_attempt(self, timeout: float | None = None) -> bool:
        """Join the current start attempt. Returns False if it is still running."""
        attempt = self._attempt
        if attempt is None:
            return True
        attempt.join(timeout)
        return not attempt.is_alive()

    def close(self) -> None:
        """Release background machinery once the session is discarded."""
        self.stop(shutdown=False)
        self._acl_syncer.cancel()
        self._registry.close()

    # -- process launch ------------------------------------------------------

    def kill_processes(self) -> None:
        self.data.processes.kill_all()
        self._mode.release()

    def start_proxy_process(self) -> None:
        """Write the config artifact and launch the proxy executable."""
        profile = self.data.profile
        if profile is None:
            raise RuntimeError("No active profile — call start() first")

        config_file = self._config_builder.build(
            profile, self.data.plugin, self.data.plugin_path
        )
        self.data.config_file = config_file

        cmd = [
            self._executable(),
            "-u",
            "-b", self._config.listen_address,
            "-l", str(self._config.proxy_port),
            "-t", str(IDLE_TIMEOUT),
            "-c", str(config_file),
        ]

        acl_path = acl_file(self._config, profile.route)
        if acl_path is not None:
            cmd += ["--acl", str(acl_path)]

        if profile.udpdns:
            cmd.append("-D")

        if self._config.tcp_fast_open:
            cmd.append("--fast-open")

        monitor_thread = self.data.traffic_monitor_thread
        if monitor_thread is not None:
            cmd += ["--stat-path", str(monitor_thread.path)]

        self.data.processes.start(self._mode.build_additional_arguments(cmd))

    # -- internals -----------------------------------------------------------

    def _load_profile(self) -> Profile | None:
        profile_id = self._config.profile_id
        if profile_id is None:
            return None
        return self._store.get(profile_id)

    def _executable(self) -> str:
        name = self._mode.executable
        if self._config.bin_dir is not None:
            return str(self._config.bin_dir / name)
        return shutil.which(name) or name

    def _start_traffic_monitor(self) -> TrafficMonitorThread | None:
        thread = TrafficMonitorThread(self._config.stat_path, self._monitor)
        try:
            thread.start()
        except OSError as exc:
            logger.warning("Traffic stats unavailable: %s", exc)
            return None
        return thread

    def _connect(self, profile: Profile) -> None:
        try:
            if profile.host == self._config.bootstrap_host:
                proxy = fetch_bootstrap_proxy(
                    self._remote_config.proxy_url, self._config.device_identity()
                )
                proxy.apply(profile)

            if profile.route == acl.CUSTOM_RULES:
                rules = load_custom_rules(self._config).flatten(acl.MAX_FLATTEN_DEPTH)
                save_acl(self._config, acl.CUSTOM_RULES, rules)

            self.data.plugin = PluginOptions.parse(profile.plugin)
            self.data.plugin_path = self._plugins.init(self.data.plugin)

            self.kill_processes()

            if not is_numeric_address(profile.host):
                profile.host = resolve_host(profile.host, self._config.dns_timeout)

            self._mode.start_processes(self)

            if profile.route not in (acl.ALL, acl.CUSTOM_RULES):
                self._acl_syncer.schedule(profile.route)
            self._remote_config.fetch()
        except HostUnresolvableError:
            self._stop_runner(True, INVALID_SERVER)
            return
        except TunnelUnavailableError:
            self._stop_runner(True, REBOOT_REQUIRED)
            return
        except Exception as exc:
            logger.exception("Session start failed")
            self._stop_runner(True, f"{SERVICE_FAILED}: {exc}")
            return

        with self._transition_lock:
            self.change_state(SessionState.CONNECTED)
            pending, self._pending_stop = self._pending_stop, None
            if pending is not None:
                message, shutdown = pending
                self.stop(message, shutdown)

    def _close_requested(self) -> None:
        self.stop(shutdown=True)

    def _signal_shutdown(self) -> None:
        if self._on_shutdown is not None:
            self._on_shutdown()

    def _stop_runner(self, shutdown: bool, message: str | None = None) -> None:
        with self._transition_lock:
            self.change_state(SessionState.STOPPING)

            self.kill_processes()

            if self.data.teardown_registered:
                self._teardown.unregister()
                self.data.teardown_registered = False

            config_file = self.data.config_file
            if config_file is not None:
                config_file.unlink(missing_ok=True)
                self.data.config_file = None

            notification = self.data.notification
            if notification is not None:
                notification.destroy()
                self.data.notification = None

            profile = self.data.profile
            if profile is not None:
                stats = self._monitor.stats()
                try:
                    self._accountant.record_delta(profile.id, stats.tx_total, stats.rx_total)
                except Exception:
                    logger.exception("Failed to persist traffic for profile %d", profile.id)

            self._accountant.reset()
            monitor_thread = self.data.traffic_monitor_thread
            if monitor_thread is not None:
                monitor_thread.stop_thread()
                self.data.traffic_monitor_thread = None

            self._pending_stop = None
            self.change_state(SessionState.STOPPED, message)

            if shutdown:
                self._signal_shutdown()

            self.data.profile = None
