"""Tests for server host resolution."""

from __future__ import annotations

import socket
import time
from unittest.mock import patch

import pytest

from proxyrun.errors import HostUnresolvableError
from proxyrun.resolve import is_numeric_address, resolve_host


class TestIsNumericAddress:
    def test_ipv4(self):
        assert is_numeric_address("10.0.0.1")

    def test_ipv6(self):
        assert is_numeric_address("::1")
        assert is_numeric_address("[2001:db8::1]")

    def test_hostname(self):
        assert not is_numeric_address("example.com")


class TestResolveHost:
    def test_numeric_host_returned_unchanged(self):
        with patch("proxyrun.resolve.socket.getaddrinfo") as mock_gai:
            assert resolve_host("8.8.8.8") == "8.8.8.8"
        mock_gai.assert_not_called()

    def test_first_address_used(self):
        infos = [
            (socket.AF_INET, socket.SOCK_STREAM, 6, "", ("93.184.216.34", 0)),
            (socket.AF_INET6, socket.SOCK_STREAM, 6, "", ("2606:2800::1", 0, 0, 0)),
        ]
        with patch("proxyrun.resolve.socket.getaddrinfo", return_value=infos):
            assert resolve_host("example.com") == "93.184.216.34"

    def test_resolver_error(self):
        with patch(
            "proxyrun.resolve.socket.getaddrinfo",
            side_effect=socket.gaierror("Name or service not known"),
        ):
            with pytest.raises(HostUnresolvableError):
                resolve_host("no-such-host.invalid")

    def test_empty_answer(self):
        with patch("proxyrun.resolve.socket.getaddrinfo", return_value=[]):
            with pytest.raises(HostUnresolvableError):
                resolve_host("empty.example")

    def test_timeout_bounds_hung_resolver(self):
        def hang(*args, **kwargs):
            time.sleep(2)
            return []

        with patch("proxyrun.resolve.socket.getaddrinfo", side_effect=hang):
            started = time.monotonic()
            with pytest.raises(HostUnresolvableError):
                resolve_host("slow.example", timeout=0.1)
            assert time.monotonic() - started < 1.5
