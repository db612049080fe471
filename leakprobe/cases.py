"""Interactive leak test cases for general and split tunnel behaviour."""

from __future__ import annotations

import contextlib
import datetime
import errno
import ipaddress
import socket
import time
from collections.abc import Sequence

from leakprobe.runtimesettings import RuntimeSettings
from leakprobe.sockutil import (
    OverlappedContext,
    SocketOperationError,
    connect_socket,
    create_bind_socket,
    create_socket,
    send_recv_validate_echo,
    set_socket_recv_timeout,
    shutdown_socket,
    validate_bind,
)
from leakprobe.util import (
    ArgumentContext,
    LeakTestError,
    prompt_activate_split_tunnel,
    prompt_activate_vpn,
    prompt_activate_vpn_split_tunnel,
    prompt_disable_split_tunnel,
    proto_argument_tcp,
)

_SOCKET_RECV_TIMEOUT = datetime.timedelta(milliseconds=2000)

_GEN1_ECHO_BUFFER = bytes([0x10, 0x11, 0x12, 0x13, 0x14, 0x15, 0x16, 0x17])
_GEN1_RECV_SIZE = 1024

# Connection reset/aborted, as reported by Winsock and by POSIX systems.
_RECONNECTABLE_ERRORS = frozenset(
    {10054, 10053, errno.ECONNRESET, errno.ECONNABORTED}
)

_HEYNOW = b"heynow"
_BLOCKED = b"blocked"


def _say(text: str) -> None:
    print(text, flush=True)


def _mark(char: str) -> None:
    print(char, end="", flush=True)


def _echo_port(tcp: bool) -> int:
    settings = RuntimeSettings.instance()
    return settings.tcpbin_echo_port() if tcp else settings.tcpbin_echo_port_udp()


def _connect_to_echo_service(sock: socket.socket, tcp: bool) -> None:
    server = RuntimeSettings.instance().tcpbin_server_ip()
    connect_socket(sock, server, _echo_port(tcp))


def _parse_delay(text: str) -> int:
    if not (text.isascii() and text.isdigit()):
        raise LeakTestError(f"Invalid delay: {text}")
    return int(text)


# ---------------------------------------------------------------------------
# General test case 1
# ---------------------------------------------------------------------------


def _create_connect_socket(tcp: bool, verbose: bool) -> socket.socket:
    if verbose:
        _say("Creating socket and binding to LAN interface")

    sock = create_bind_socket(RuntimeSettings.instance().lan_ip(), 0, tcp)

    try:
        if verbose:
            _say("Connecting to tcpbin echo service")
        _connect_to_echo_service(sock, tcp)
    except BaseException:
        shutdown_socket(sock)
        raise

    return sock


def _loop_send_receive(sock: socket.socket, delay_ms: int) -> None:
    """Send and receive on `sock` until an error occurs; always closes `sock`."""
    with contextlib.ExitStack() as stack:
        send_context = stack.enter_context(OverlappedContext())
        recv_context = stack.enter_context(OverlappedContext())
        # Registered last so it runs first: pending operations are cut short
        # before the contexts wait for them.
        stack.callback(shutdown_socket, sock)

        while True:
            if not send_context.pending_operation:
                send_context.assign_buffer(_GEN1_ECHO_BUFFER)
                send_context.send(sock)

            if not recv_context.pending_operation:
                recv_context.recv(sock, _GEN1_RECV_SIZE)

            time.sleep(delay_ms / 1000)

            send_completed = send_context.poll_send(sock)
            recv_completed = recv_context.poll_recv(sock)

            if send_completed:
                _mark("+" if recv_completed else "s")
            elif recv_completed:
                _mark("r")


def run_gen1(arguments: Sequence[str]) -> bool:
    """Watch for momentary leaks while the VPN client changes state.

    Runs until interrupted or until an unrecoverable error is raised.
    """
    _say("Launching general test case 1")
    _say("Evaluate whether VPN client state changes have momentary leaks")
    _say("===")

    args = ArgumentContext(arguments)

    tcp = proto_argument_tcp(args.next_or_default("tcp"))
    delay = _parse_delay(args.next_or_default("50"))

    args.assert_exhausted()

    lan_socket: socket.socket | None = _create_connect_socket(tcp, True)

    prompt_activate_vpn()

    _say("You should interact with the VPN app to cause state changes")
    _say("'s' is successfully sent data")
    _say("'r' is successfully received data")
    _say("'+' is a successful send+receive")
    _say("'.' is a broken socket that's being reconnected")

    broken_socket = False

    while True:
        try:
            if broken_socket:
                time.sleep(delay / 1000)
                lan_socket = _create_connect_socket(tcp, False)
                broken_socket = False

            # Ownership passes to the loop, which closes the socket on exit.
            owned, lan_socket = lan_socket, None
            assert owned is not None
            _loop_send_receive(owned, delay)
        except SocketOperationError as err:
            if broken_socket:
                _mark(".")
                continue

            if err.error_code in _RECONNECTABLE_ERRORS:
                _mark(".")
                broken_socket = True
                continue

            raise


# ---------------------------------------------------------------------------
# Split tunnel test case 1
# ---------------------------------------------------------------------------


def _generate_echo_payload() -> bytes:
    return str(time.monotonic_ns() // 1_000_000).encode("ascii")


def _evaluate_splitting(
    bind_address: ipaddress.IPv4Address | None,
    expected_actual_bind: ipaddress.IPv4Address,
    tcp: bool,
) -> None:
    if bind_address is not None:
        _say("Creating socket and explicitly binding it")
        sock = create_bind_socket(bind_address, 0, tcp)
    else:
        _say("Creating socket and leaving it unbound")
        sock = create_socket(tcp)

    try:
        _say("Connecting to tcpbin server")
        _connect_to_echo_service(sock, tcp)

        _say("Communicating with echo service to establish connectivity")
        send_recv_validate_echo(sock, _generate_echo_payload())

        _say("Querying bind to verify correct interface is used")
        validate_bind(sock, expected_actual_bind)
    finally:
        shutdown_socket(sock)


def _run_subtest(
    bind_address: ipaddress.IPv4Address | None,
    expected_actual_bind: ipaddress.IPv4Address,
    tcp: bool,
) -> bool:
    try:
        _evaluate_splitting(bind_address, expected_actual_bind, tcp)
    except Exception as err:
        _say(f"EXCEPTION: {err}")
        return False
    return True


def run_st1(arguments: Sequence[str]) -> bool:
    """Check that explicit and implicit binds are all directed to the LAN."""
    _say("Launching split tunnel test case 1")
    _say("Evaluate whether different kinds of binds are correctly handled")
    _say("===")

    args = ArgumentContext(arguments)

    tcp = proto_argument_tcp(args.next_or_default("tcp"))

    args.assert_exhausted()

    prompt_activate_vpn_split_tunnel()

    settings = RuntimeSettings.instance()

    _say(">> Testing explicit bind to tunnel interface")
    subtest1 = _run_subtest(settings.tunnel_ip(), settings.lan_ip(), tcp)

    _say(">> Testing explicit bind to LAN interface")
    subtest2 = _run_subtest(settings.lan_ip(), settings.lan_ip(), tcp)

    _say(">> Testing implicit bind")
    subtest3 = _run_subtest(None, settings.lan_ip(), tcp)

    return subtest1 and subtest2 and subtest3


# ---------------------------------------------------------------------------
# Split tunnel test case 2
# ---------------------------------------------------------------------------


def _expect_blocked(sock: socket.socket) -> bool:
    _say("Sending and receiving to validate blocking policies")
    try:
        send_recv_validate_echo(sock, _BLOCKED)
    except Exception as err:
        _say(f"Sending and receiving failed with message: {err}")
        _say("Assuming firewall filters are blocking comms")
        return True

    _say("Traffic leak!")
    return False


def run_st2(arguments: Sequence[str]) -> bool:
    """Check that existing connections are blocked once an app becomes excluded."""
    _say("Launching split tunnel test case 2")
    _say(
        "Evaluate whether existing connections are blocked when an app becomes excluded"
    )
    _say("===")

    args = ArgumentContext(arguments)

    tcp = proto_argument_tcp(args.next_or_default("tcp"))

    args.assert_exhausted()

    prompt_activate_vpn()

    _say("Creating socket and binding to tunnel IP")

    with contextlib.ExitStack() as stack:
        tunnel_socket = create_bind_socket(
            RuntimeSettings.instance().tunnel_ip(), 0, tcp
        )
        stack.callback(shutdown_socket, tunnel_socket)

        if not tcp:
            set_socket_recv_timeout(tunnel_socket, _SOCKET_RECV_TIMEOUT)

        _say("Connecting to tcpbin server")
        _connect_to_echo_service(tunnel_socket, tcp)

        _say("Communicating with echo service to establish connectivity")
        send_recv_validate_echo(tunnel_socket, _HEYNOW)

        _say("Querying bind to verify correct interface is used")
        validate_bind(tunnel_socket, RuntimeSettings.instance().tunnel_ip())

        prompt_activate_split_tunnel()

        _say("Testing comms on LAN interface")

        lan_socket = create_bind_socket(RuntimeSettings.instance().lan_ip(), 0, tcp)
        stack.callback(shutdown_socket, lan_socket)

        _connect_to_echo_service(lan_socket, tcp)
        send_recv_validate_echo(lan_socket, _HEYNOW)

        return _expect_blocked(tunnel_socket)


# ---------------------------------------------------------------------------
# Split tunnel test case 3
# ---------------------------------------------------------------------------


def run_st3(arguments: Sequence[str]) -> bool:
    """Check that excluded connections are blocked once an app stops being excluded."""
    _say("Launching split tunnel test case 3")
    _say(
        "Evaluate whether excluded connections are blocked when an app stops being excluded"
    )
    _say("===")

    args = ArgumentContext(arguments)

    tcp = proto_argument_tcp(args.next_or_default("tcp"))

    args.assert_exhausted()

    prompt_activate_vpn_split_tunnel()

    _say("Creating socket and leaving it unbound")

    lan_socket = create_socket(tcp)

    try:
        if not tcp:
            set_socket_recv_timeout(lan_socket, _SOCKET_RECV_TIMEOUT)

        _say("Connecting to tcpbin server")

        # The tunnel has the best metric, but exclusion should redirect the bind.
        _connect_to_echo_service(lan_socket, tcp)

        _say("Communicating with echo service to establish connectivity")
        send_recv_validate_echo(lan_socket, _HEYNOW)

        _say("Querying bind to verify correct interface is used")
        validate_bind(lan_socket, RuntimeSettings.instance().lan_ip())

        prompt_disable_split_tunnel()

        return _expect_blocked(lan_socket)
    finally:
        shutdown_socket(lan_socket)