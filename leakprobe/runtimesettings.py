"""Lazily evaluated runtime settings for the leak test cases."""

from __future__ import annotations

import ipaddress
import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

from leakprobe.settings import Settings
from leakprobe.util import LeakTestError, get_adapter_addresses, parse_ipv4

_SETTINGS_FILE_NAME = "leaktest.settings"

_T = TypeVar("_T")


def _parse_port(text: str) -> int:
    if not (text.isascii() and text.isdigit()):
        raise LeakTestError(f"Invalid port number: {text}")
    value = int(text)
    if value > 0xFFFF:
        raise LeakTestError(f"Invalid port number: {text}")
    return value


class RuntimeSettings:
    """Typed view of the settings file; each value is computed once on first use."""

    _settings_file_path_override: Path | None = None
    _instance: RuntimeSettings | None = None

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._cache: dict[str, object] = {}

    @classmethod
    def get_settings_file_path(cls) -> Path:
        """Path of the settings file, next to the running program unless overridden."""
        if cls._settings_file_path_override is not None:
            return cls._settings_file_path_override
        program = sys.argv[0] if sys.argv else ""
        if not program:
            raise LeakTestError("Could not construct path for settings file")
        path = Path(program).absolute()
        if not path.is_absolute():
            raise LeakTestError("Could not construct path for settings file")
        return path.with_name(_SETTINGS_FILE_NAME)

    @classmethod
    def override_settings_file_path(cls, path: str | os.PathLike[str]) -> None:
        cls._settings_file_path_override = Path(path)

    @classmethod
    def instance(cls) -> RuntimeSettings:
        """The shared instance, loaded from the settings file on first access."""
        if cls._instance is None:
            cls._instance = cls(Settings.from_file(cls.get_settings_file_path()))
        return cls._instance

    def _cached(self, key: str, compute: Callable[[], _T]) -> _T:
        if key not in self._cache:
            self._cache[key] = compute()
        return self._cache[key]  # type: ignore[return-value]

    def _adapter_ipv4(self, setting: str) -> ipaddress.IPv4Address:
        address, _ = get_adapter_addresses(self._settings.get(setting), True, False)
        assert address is not None
        return address

    def _adapter_ipv6(self, setting: str) -> ipaddress.IPv6Address:
        _, address = get_adapter_addresses(self._settings.get(setting), False, True)
        assert address is not None
        return address

    def tunnel_ip(self) -> ipaddress.IPv4Address:
        return self._cached("tunnel_ip", lambda: self._adapter_ipv4("TunnelAdapter"))

    def tunnel_ip6(self) -> ipaddress.IPv6Address:
        return self._cached("tunnel_ip6", lambda: self._adapter_ipv6("TunnelAdapter"))

    def lan_ip(self) -> ipaddress.IPv4Address:
        return self._cached("lan_ip", lambda: self._adapter_ipv4("LanAdapter"))

    def lan_ip6(self) -> ipaddress.IPv6Address:
        return self._cached("lan_ip6", lambda: self._adapter_ipv6("LanAdapter"))

    def public_non_vpn_ip(self) -> ipaddress.IPv4Address:
        return self._cached(
            "public_non_vpn_ip",
            lambda: parse_ipv4(self._settings.get("PublicNonVpnIp")),
        )

    def tcpbin_server_ip(self) -> ipaddress.IPv4Address:
        return self._cached(
            "tcpbin_server_ip",
            lambda: parse_ipv4(self._settings.get("TcpBinServerIp")),
        )

    def tcpbin_echo_port(self) -> int:
        return self._cached(
            "tcpbin_echo_port",
            lambda: _parse_port(self._settings.get("TcpBinEchoPort")),
        )

    def tcpbin_echo_port_udp(self) -> int:
        return self._cached(
            "tcpbin_echo_port_udp",
            lambda: _parse_port(self._settings.get("TcpBinEchoPortUdp")),
        )

    def tcpbin_info_port(self) -> int:
        return self._cached(
            "tcpbin_info_port",
            lambda: _parse_port(self._settings.get("TcpBinInfoPort")),
        )