"""Tests for plugin option parsing and lookup."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from proxyrun.errors import PluginNotFoundError
from proxyrun.plugin import PluginManager, PluginOptions


class TestPluginOptions:
    def test_parse_id_and_options(self):
        options = PluginOptions.parse("obfs-local;obfs=http;fast-open")
        assert options.id == "obfs-local"
        assert options.options == {"obfs": "http", "fast-open": None}

    def test_parse_empty(self):
        options = PluginOptions.parse("  ")
        assert options.id == ""
        assert options.options == {}

    def test_escaped_separators(self):
        options = PluginOptions.parse(r"v2ray;path=/a\;b;host=x\=y")
        assert options.options == {"path": "/a;b", "host": "x=y"}
        assert str(options) == r"path=/a\;b;host=x\=y"

    def test_str_omits_id(self):
        assert str(PluginOptions.parse("obfs-local;obfs=tls")) == "obfs=tls"

    def test_to_spec_includes_id(self):
        assert PluginOptions.parse("obfs-local;obfs=tls").to_spec() == "obfs-local;obfs=tls"
        assert PluginOptions(id="plain").to_spec() == "plain"


class TestPluginManager:
    def test_no_plugin(self, config):
        assert PluginManager(config).init(PluginOptions()) is None

    def test_plugin_dir_wins(self, config, tmp_path):
        config.plugin_dir = tmp_path / "plugins"
        config.plugin_dir.mkdir()
        exe = config.plugin_dir / "obfs-local"
        exe.write_text("#!/bin/sh\n")
        os.chmod(exe, 0o755)

        assert PluginManager(config).init(PluginOptions(id="obfs-local")) == str(exe)

    @patch("proxyrun.plugin.shutil.which", return_value="/usr/bin/obfs-local")
    def test_falls_back_to_path(self, _which, config):
        assert PluginManager(config).init(PluginOptions(id="obfs-local")) == "/usr/bin/obfs-local"

    @patch("proxyrun.plugin.shutil.which", return_value=None)
    def test_missing_plugin_raises(self, _which, config):
        with pytest.raises(PluginNotFoundError):
            PluginManager(config).init(PluginOptions(id="nope"))
