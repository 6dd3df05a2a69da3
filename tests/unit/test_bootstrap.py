"""Tests for the remote bootstrap exchange and remote config refresh."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
import requests

from proxyrun.bootstrap import (
    BootstrapProxy,
    fetch_bootstrap_proxy,
    parse_candidates,
    sign_identity,
)
from proxyrun.errors import BootstrapError
from proxyrun.remote import RemoteConfig
from proxyrun.session.models import Profile


def test_sign_identity_is_base64_sha1():
    assert sign_identity("abc") == "qZk+NkcGgWq6PiVxeFDCbJzQ2J0="


def test_parse_candidates_skips_malformed_entries():
    body = "1.1.1.1:8388:pw:aes-256-gcm|broken|2.2.2.2:notaport:pw:m|3.3.3.3:443:x:chacha20-ietf-poly1305|"
    assert parse_candidates(body) == [
        BootstrapProxy("1.1.1.1", 8388, "pw", "aes-256-gcm"),
        BootstrapProxy("3.3.3.3", 443, "x", "chacha20-ietf-poly1305"),
    ]


def test_apply_overwrites_working_profile():
    profile = Profile(id=1, host="198.199.101.152", name="Bootstrap")
    BootstrapProxy("5.6.7.8", 443, "pw", "chacha20-ietf-poly1305").apply(profile)
    assert (profile.host, profile.remote_port, profile.password) == ("5.6.7.8", 443, "pw")
    assert profile.name == "Bootstrap"


@patch("proxyrun.bootstrap.requests.post")
def test_fetch_posts_signature(mock_post: MagicMock):
    mock_post.return_value.text = "9.9.9.9:8388:pw:aes-256-gcm"

    proxy = fetch_bootstrap_proxy("https://bootstrap.example/api", "device-1")

    assert proxy == BootstrapProxy("9.9.9.9", 8388, "pw", "aes-256-gcm")
    _args, kwargs = mock_post.call_args
    assert kwargs["data"] == {"sig": sign_identity("device-1")}


@patch("proxyrun.bootstrap.requests.post", side_effect=requests.ConnectionError("down"))
def test_fetch_request_failure(_post: MagicMock):
    with pytest.raises(BootstrapError):
        fetch_bootstrap_proxy("https://bootstrap.example/api", "device-1")


@patch("proxyrun.bootstrap.requests.post")
def test_fetch_without_candidates(mock_post: MagicMock):
    mock_post.return_value.text = ""
    with pytest.raises(BootstrapError):
        fetch_bootstrap_proxy("https://bootstrap.example/api", "device-1")


def test_fetch_without_endpoint():
    with pytest.raises(BootstrapError):
        fetch_bootstrap_proxy("", "device-1")


@patch("proxyrun.remote.requests.get")
def test_remote_config_refresh_updates_proxy_url(mock_get: MagicMock, config):
    config.bootstrap_url = "https://old.example/api"
    config.remote_config_url = "https://config.example/remote.json"
    mock_get.return_value.json.return_value = {"proxy_url": "https://new.example/api"}

    remote = RemoteConfig(config)
    assert remote.proxy_url == "https://old.example/api"
    assert remote.refresh() is True
    assert remote.proxy_url == "https://new.example/api"


@patch("proxyrun.remote.requests.get")
def test_remote_config_fetch_disabled_without_url(mock_get: MagicMock, config):
    RemoteConfig(config).fetch()
    mock_get.assert_not_called()
