"""Argument handling, console helpers and address utilities for leak tests."""

from __future__ import annotations

import ipaddress
import socket
import sys
from collections.abc import Sequence

import psutil

_WHITE_ON_GREEN = "\x1b[97;42m"
_WHITE_ON_RED = "\x1b[97;41m"
_RESET = "\x1b[0m"


class LeakTestError(RuntimeError):
    """Raised when a test step cannot be carried out."""


class ArgumentContext:
    """Sequential consumer of the arguments passed to a test case."""

    def __init__(self, args: Sequence[str]) -> None:
        self._args = list(args)
        self._position = 0

    def total(self) -> int:
        """Number of arguments, consumed or not."""
        return len(self._args)

    def ensure_exact_argument_count(self, count: int) -> None:
        if len(self._args) != count:
            raise LeakTestError("Invalid number of arguments")

    def next(self) -> str:
        """Consume and return the next argument."""
        if self._position >= len(self._args):
            raise LeakTestError("Argument missing")
        value = self._args[self._position]
        self._position += 1
        return value

    def next_or_default(self, default: str) -> str:
        """Consume the next argument, or return `default` if none remain."""
        if self._position >= len(self._args):
            return default
        return self.next()

    def assert_exhausted(self) -> None:
        if self._position < len(self._args):
            raise LeakTestError("Unknown extra argument(s)")


def _prompt(*lines: str) -> None:
    for line in lines:
        print(line, flush=True)
    sys.stdin.readline()


def prompt_activate_vpn_split_tunnel() -> None:
    _prompt(
        "Activate VPN && activate split tunnel for testing application",
        "Then press Enter to continue",
    )


def prompt_activate_vpn() -> None:
    _prompt("Activate VPN", "Then press Enter to continue")


def prompt_activate_split_tunnel() -> None:
    _prompt(
        "Activate split tunnel for testing application",
        "Then press Enter to continue",
    )


def prompt_disable_split_tunnel() -> None:
    _prompt(
        "Disable split tunnel for testing application",
        "Then press Enter to continue",
    )


def _print_with_color(text: str, color: str) -> None:
    out = sys.stdout
    isatty = getattr(out, "isatty", None)
    if isatty is not None and isatty():
        out.write(f"{color}{text}{_RESET}\n")
    else:
        out.write(f"{text}\n")
    out.flush()


def print_green(text: str) -> None:
    """Print a line in white on green where the console supports colour."""
    _print_with_color(text, _WHITE_ON_GREEN)


def print_red(text: str) -> None:
    """Print a line in white on red where the console supports colour."""
    _print_with_color(text, _WHITE_ON_RED)


def _first_address(adapter_name: str, family: int):
    wanted = adapter_name.casefold()
    for name, addresses in psutil.net_if_addrs().items():
        if name.casefold() != wanted:
            continue
        for address in addresses:
            if address.family == family:
                return address.address.split("%", 1)[0]
        return None
    return None


def get_adapter_addresses(
    adapter_name: str, ipv4: bool = True, ipv6: bool = True
) -> tuple[ipaddress.IPv4Address | None, ipaddress.IPv6Address | None]:
    """Determine the IPv4 and/or IPv6 address of the named adapter.

    Returns a pair in which an address not asked for is None.
    """
    found4: ipaddress.IPv4Address | None = None
    found6: ipaddress.IPv6Address | None = None

    if ipv4:
        raw = _first_address(adapter_name, socket.AF_INET)
        if raw is None:
            raise LeakTestError("Could not determine adapter IPv4 address")
        found4 = ipaddress.IPv4Address(raw)

    if ipv6:
        raw = _first_address(adapter_name, socket.AF_INET6)
        if raw is None:
            raise LeakTestError("Could not determine adapter IPv6 address")
        found6 = ipaddress.IPv6Address(raw)

    return found4, found6


def ip_to_string(ip: ipaddress.IPv4Address) -> str:
    """Format an IPv4 address in dotted-decimal notation."""
    return str(ipaddress.IPv4Address(ip))


def parse_ipv4(ip: str) -> ipaddress.IPv4Address:
    """Parse a dotted-decimal IPv4 address."""
    if not isinstance(ip, str):
        raise LeakTestError("Unable to parse IP address")
    try:
        return ipaddress.IPv4Address(ip)
    except ValueError as err:
        raise LeakTestError("Unable to parse IP address") from err


def proto_argument_tcp(value: str) -> bool:
    """Map a protocol argument to True for TCP and False for UDP."""
    lowered = value.lower()
    if lowered == "tcp":
        return True
    if lowered == "udp":
        return False
    raise LeakTestError(f"Invalid argument: {value}")