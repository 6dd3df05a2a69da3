"""Global configuration — XDG paths, env vars, config.yaml, defaults."""

from __future__ import annotations

import logging
import os
import tempfile
import uuid
from dataclasses import dataclass, field, fields
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

# Host value that triggers the remote bootstrap exchange before connecting.
BOOTSTRAP_HOST = "198.199.101.152"

_DEFAULT_ACL_URL = (
    "https://raw.githubusercontent.com/shadowsocks/shadowsocks-android/"
    "master/core/src/main/assets/acl/{route}.acl"
)


def _default_data_dir() -> Path:
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg) / "proxyrun"
    return Path.home() / ".local" / "share" / "proxyrun"


def _default_config_dir() -> Path:
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "proxyrun"
    return Path.home() / ".config" / "proxyrun"


def _default_device_dir() -> Path:
    runtime = os.environ.get("XDG_RUNTIME_DIR")
    if runtime:
        return Path(runtime) / "proxyrun"
    return Path(tempfile.gettempdir()) / f"proxyrun-{os.getuid()}"


@dataclass
class ProxyRunConfig:
    """Application-wide configuration."""

    data_dir: Path = field(default_factory=_default_data_dir)
    config_dir: Path = field(default_factory=_default_config_dir)
    device_dir: Path = field(default_factory=_default_device_dir)
    listen_address: str = "127.0.0.1"
    proxy_port: int = 1080
    tcp_fast_open: bool = False
    profile_id: int | None = None
    service_mode: str = "proxy"
    dns_timeout: float = 10.0
    bandwidth_interval: float = 1.0
    bootstrap_host: str = BOOTSTRAP_HOST
    bootstrap_url: str = ""
    remote_config_url: str = ""
    acl_url_template: str = _DEFAULT_ACL_URL
    acl_sync_interval: float = 24 * 3600
    bin_dir: Path | None = None
    plugin_dir: Path | None = None
    web_host: str = "127.0.0.1"  # never 0.0.0.0
    web_port: int = 8471
    verbose: bool = False

    @property
    def db_path(self) -> Path:
        return self.data_dir / "proxyrun.db"

    @property
    def no_backup_dir(self) -> Path:
        return self.data_dir / "no_backup"

    @property
    def acl_dir(self) -> Path:
        return self.data_dir / "acl"

    @property
    def stat_path(self) -> Path:
        return self.device_dir / "stat_path"

    @property
    def custom_rules_path(self) -> Path:
        return self.config_dir / "custom-rules.acl"

    def storage_unlocked(self) -> bool:
        """Whether user storage (the data dir) is currently writable."""
        target = self.data_dir
        while not target.exists():
            if target.parent == target:
                return False
            target = target.parent
        return os.access(target, os.W_OK)

    def device_identity(self) -> str:
        """Stable per-installation identity, created on first use."""
        path = self.data_dir / "device_id"
        if path.is_file():
            return path.read_text(encoding="utf-8").strip()
        identity = uuid.uuid4().hex
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(identity, encoding="utf-8")
        return identity

    @classmethod
    def load(cls) -> ProxyRunConfig:
        """Load config from config.yaml and environment variables with XDG defaults."""
        config = cls()

        config_file = config.config_dir / "config.yaml"
        if config_file.is_file():
            config._apply_file(config_file)

        env_port = os.environ.get("PROXYRUN_PORT")
        if env_port:
            config.proxy_port = int(env_port)

        env_listen = os.environ.get("PROXYRUN_LISTEN_ADDRESS")
        if env_listen:
            config.listen_address = env_listen

        env_profile = os.environ.get("PROXYRUN_PROFILE")
        if env_profile:
            config.profile_id = int(env_profile)

        env_mode = os.environ.get("PROXYRUN_SERVICE_MODE")
        if env_mode:
            config.service_mode = env_mode

        env_fast_open = os.environ.get("PROXYRUN_TCP_FAST_OPEN")
        if env_fast_open:
            config.tcp_fast_open = env_fast_open.lower() in ("1", "true", "yes")

        env_bootstrap = os.environ.get("PROXYRUN_BOOTSTRAP_URL")
        if env_bootstrap:
            config.bootstrap_url = env_bootstrap

        env_remote = os.environ.get("PROXYRUN_REMOTE_CONFIG_URL")
        if env_remote:
            config.remote_config_url = env_remote

        env_web_port = os.environ.get("PROXYRUN_WEB_PORT")
        if env_web_port:
            config.web_port = int(env_web_port)

        return config

    def _apply_file(self, path: Path) -> None:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
        if data is None:
            return
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a mapping")

        known = {f.name: f for f in fields(self)}
        for key, value in data.items():
            key = key.replace("-", "_")
            if key not in known:
                logger.warning("Ignoring unknown config key '%s' in %s", key, path)
                continue
            if key.endswith("_dir") and value is not None:
                value = Path(value).expanduser()
            setattr(self, key, value)
