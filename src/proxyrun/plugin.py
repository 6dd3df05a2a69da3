"""Plugin options parsing and plugin executable lookup.

A profile's plugin spec string looks like ``obfs-local;obfs=http;fast-open``:
the plugin id, then ``;``-separated options. Option values may contain
``;``, ``=`` or ``\\`` when escaped with a backslash.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from proxyrun.config import ProxyRunConfig
from proxyrun.errors import PluginNotFoundError

logger = logging.getLogger(__name__)


def _split_escaped(text: str, sep: str) -> list[str]:
    parts: list[str] = []
    current: list[str] = []
    escaped = False
    for ch in text:
        if escaped:
            current.append(ch)
            escaped = False
        elif ch == "\\":
            current.append(ch)
            escaped = True
        elif ch == sep:
            parts.append("".join(current))
            current = []
        else:
            current.append(ch)
    parts.append("".join(current))
    return parts


def _unescape(text: str) -> str:
    out: list[str] = []
    escaped = False
    for ch in text:
        if escaped:
            out.append(ch)
            escaped = False
        elif ch == "\\":
            escaped = True
        else:
            out.append(ch)
    return "".join(out)


def _escape(text: str) -> str:
    return "".join("\\" + ch if ch in "\\;=" else ch for ch in text)


@dataclass
class PluginOptions:
    """Selected plugin id plus its ordered options (``None`` value = flag)."""

    id: str = ""
    options: dict[str, str | None] = field(default_factory=dict)

    @classmethod
    def parse(cls, spec: str) -> PluginOptions:
        spec = spec.strip()
        if not spec:
            return cls()
        head, *rest = _split_escaped(spec, ";")
        options: dict[str, str | None] = {}
        for item in rest:
            if not item:
                continue
            pair = _split_escaped(item, "=")
            key = _unescape(pair[0])
            if len(pair) == 1:
                options[key] = None
            else:
                options[key] = _unescape("=".join(pair[1:]))
        return cls(id=_unescape(head), options=options)

    def to_spec(self) -> str:
        """Serialize including the plugin id."""
        opts = str(self)
        return f"{_escape(self.id)};{opts}" if opts else _escape(self.id)

    def __str__(self) -> str:
        """Serialize the options only — the ``plugin_opts`` format."""
        parts = []
        for key, value in self.options.items():
            if value is None:
                parts.append(_escape(key))
            else:
                parts.append(f"{_escape(key)}={_escape(value)}")
        return ";".join(parts)


class PluginManager:
    """Locates plugin executables in the configured plugin dir or on PATH."""

    def __init__(self, config: ProxyRunConfig) -> None:
        self._config = config

    def init(self, options: PluginOptions) -> str | None:
        """Return the executable path for ``options``, or None without a plugin."""
        if not options.id:
            return None

        if self._config.plugin_dir is not None:
            candidate = Path(self._config.plugin_dir) / options.id
            if candidate.is_file() and os.access(candidate, os.X_OK):
                return str(candidate)

        found = shutil.which(options.id)
        if found:
            return found

        logger.debug("Plugin '%s' not found in plugin dir or PATH", options.id)
        raise PluginNotFoundError(f"Plugin not found: {options.id}")
