"""Serializes the working profile into the proxy executable's config file."""

from __future__ import annotations

import json
import logging
import os
import shlex
from collections.abc import Callable
from pathlib import Path

from proxyrun.config import ProxyRunConfig
from proxyrun.plugin import PluginOptions
from proxyrun.session.models import Profile

logger = logging.getLogger(__name__)

CONFIG_FILE = "shadowsocks.json"

# Marker honoured by backup tools (https://bford.info/cachedir/).
_CACHEDIR_TAG = (
    "Signature: 8a477f597d28d172789f06886806bc55\n"
    "# This directory holds proxyrun session secrets and is excluded from backups.\n"
)


class ConfigBuilder:
    """Writes the config artifact for one session attempt.

    The artifact holds the server credential, so it goes to a directory
    excluded from backups. While user storage is locked it falls back to the
    device directory instead.
    """

    def __init__(
        self,
        config: ProxyRunConfig,
        additional_arguments: Callable[[list[str]], list[str]] = list,
    ) -> None:
        self._config = config
        self._additional_arguments = additional_arguments

    def target_dir(self) -> Path:
        if self._config.storage_unlocked():
            return self._config.no_backup_dir
        return self._config.device_dir

    def render(
        self,
        profile: Profile,
        plugin: PluginOptions,
        plugin_path: str | None,
    ) -> dict:
        config = profile.to_json()
        if plugin_path is not None:
            plugin_cmd = [plugin_path]
            if self._config.tcp_fast_open:
                plugin_cmd.append("--fast-open")
            config["plugin"] = shlex.join(self._additional_arguments(plugin_cmd))
            config["plugin_opts"] = str(plugin)
        return config

    def build(
        self,
        profile: Profile,
        plugin: PluginOptions,
        plugin_path: str | None,
    ) -> Path:
        directory = self.target_dir()
        directory.mkdir(parents=True, exist_ok=True, mode=0o700)
        if directory == self._config.no_backup_dir:
            tag = directory / "CACHEDIR.TAG"
            if not tag.exists():
                tag.write_text(_CACHEDIR_TAG, encoding="utf-8")

        path = directory / CONFIG_FILE
        content = json.dumps(self.render(profile, plugin, plugin_path))
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
        logger.debug("Wrote proxy config to %s", path)
        return path
