"""Socket helpers used by the leak test cases."""

from __future__ import annotations

import datetime
import ipaddress
import socket
import struct
import sys
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor

from leakprobe.util import LeakTestError, ip_to_string, parse_ipv4

_RECEIVE_BUFFER_SIZE = 1024

IpLike = str | ipaddress.IPv4Address


class SocketOperationError(LeakTestError):
    """A socket operation failed with a system error code."""

    def __init__(self, error_code: int, message: str) -> None:
        super().__init__(message)
        self.error_code = error_code


def _error_code(err: OSError) -> int:
    code = getattr(err, "winerror", None)
    if code is None:
        code = err.errno
    return code if code is not None else 0


def format_wsa_error(error_code: int) -> str:
    """Format an error code as eight hexadecimal digits with a 0x prefix."""
    return f"0x{error_code & 0xFFFFFFFF:08x}"


def _as_ipv4(ip: IpLike) -> ipaddress.IPv4Address:
    if isinstance(ip, str):
        return parse_ipv4(ip)
    return ipaddress.IPv4Address(ip)


def create_socket(tcp: bool = True) -> socket.socket:
    """Create an IPv4 TCP or UDP socket."""
    kind, protocol = (
        (socket.SOCK_STREAM, socket.IPPROTO_TCP)
        if tcp
        else (socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    )
    try:
        return socket.socket(socket.AF_INET, kind, protocol)
    except OSError as err:
        raise LeakTestError("Failed to create socket") from err


def create_bind_socket(ip: IpLike, port: int = 0, tcp: bool = True) -> socket.socket:
    """Create a socket and bind it to the given address and port."""
    address = _as_ipv4(ip)
    sock = create_socket(tcp)
    try:
        sock.bind((str(address), port))
    except OSError as err:
        sock.close()
        raise LeakTestError(
            f"Failed to bind socket: {format_wsa_error(_error_code(err))}"
        ) from err
    return sock


def shutdown_socket(sock: socket.socket | None) -> None:
    """Shut down both directions of a socket and close it."""
    if sock is None or sock.fileno() == -1:
        return
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    sock.close()


def connect_socket(sock: socket.socket, ip: IpLike, port: int) -> None:
    """Connect a socket to the given peer."""
    address = _as_ipv4(ip)
    try:
        sock.connect((str(address), port))
    except OSError as err:
        code = _error_code(err)
        raise SocketOperationError(
            code, f"Failed to connect socket: {format_wsa_error(code)}"
        ) from err


def send_recv_socket(sock: socket.socket, send_buffer: bytes) -> bytes:
    """Send a buffer in one call and return what a single receive yields."""
    payload = bytes(send_buffer)
    try:
        sent = sock.send(payload)
    except OSError as err:
        raise LeakTestError(
            f"Failed to send on socket: {format_wsa_error(_error_code(err))}"
        ) from err

    if sent != len(payload):
        raise LeakTestError(
            f"Failed to send() on socket. Sent {sent} of {len(payload)} bytes"
        )

    try:
        return sock.recv(_RECEIVE_BUFFER_SIZE)
    except OSError as err:
        raise LeakTestError(
            f"Failed to receive on socket: {format_wsa_error(_error_code(err))}"
        ) from err


def send_recv_validate_echo(sock: socket.socket, send_buffer: bytes) -> None:
    """Send a buffer and require the peer to echo it back unchanged."""
    received = send_recv_socket(sock, send_buffer)
    if received != bytes(send_buffer):
        raise LeakTestError("Invalid echo response")


def query_bind(sock: socket.socket) -> tuple[ipaddress.IPv4Address, int]:
    """Return the local address and port a socket is bound to."""
    try:
        local = sock.getsockname()
    except OSError as err:
        raise LeakTestError(
            f"Failed to query bind: {format_wsa_error(_error_code(err))}"
        ) from err

    if sock.family != socket.AF_INET or len(local) != 2:
        raise LeakTestError("Invalid data returned for bind query")

    host, port = local
    return ipaddress.IPv4Address(host), port


def validate_bind(sock: socket.socket, ip: IpLike) -> None:
    """Require a socket to be bound to the given local address."""
    expected = _as_ipv4(ip)
    actual, _ = query_bind(sock)
    if actual != expected:
        raise LeakTestError(
            f"Unexpected socket bind. Expected address {ip_to_string(expected)}"
            f", Actual address {ip_to_string(actual)}"
        )


def set_socket_recv_timeout(sock: socket.socket, timeout: datetime.timedelta) -> None:
    """Limit how long a receive on the socket may block."""
    milliseconds = int(timeout / datetime.timedelta(milliseconds=1))
    if sys.platform == "win32":
        raw = struct.pack("@I", milliseconds)
    else:
        seconds, remainder = divmod(milliseconds, 1000)
        raw = struct.pack("@ll", seconds, remainder * 1000)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVTIMEO, raw)
    except OSError as err:
        raise LeakTestError(
            "Failed to set socket recv timeout: "
            f"{format_wsa_error(_error_code(err))}"
        ) from err


class OverlappedContext:
    """A single background send or receive that can be polled for completion."""

    def __init__(self) -> None:
        self.buffer = b""
        self._executor = ThreadPoolExecutor(max_workers=1)
        self._future: Future | None = None

    def __enter__(self) -> OverlappedContext:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def pending_operation(self) -> bool:
        """Whether a send or receive has been started and not yet polled done."""
        return self._future is not None

    def _require_idle(self) -> None:
        if self._future is not None:
            raise LeakTestError("An overlapped operation is already pending")

    def _start(self, operation: Callable[[], object]) -> None:
        self._future = self._executor.submit(operation)

    def _finish(self, description: str) -> object | None:
        future = self._future
        if future is None:
            raise LeakTestError("No overlapped operation is pending")
        if not future.done():
            return None
        self._future = None
        error = future.exception()
        if isinstance(error, OSError):
            code = _error_code(error)
            raise SocketOperationError(
                code, f"{description}: {format_wsa_error(code)}"
            ) from error
        if error is not None:
            raise error
        return future.result()

    def assign_buffer(self, buffer: bytes) -> None:
        """Set the data the next send transmits."""
        self._require_idle()
        self.buffer = bytes(buffer)

    def send(self, sock: socket.socket) -> None:
        """Start sending the assigned buffer."""
        self._require_idle()
        payload = self.buffer
        self._start(lambda: sock.send(payload))

    def recv(self, sock: socket.socket, size: int = 0) -> None:
        """Start receiving up to `size` bytes."""
        self._require_idle()
        self._start(lambda: sock.recv(size))

    def poll_send(self, sock: socket.socket) -> bool:
        """Return True once the pending send has completed."""
        sent = self._finish("Overlapped send")
        if sent is None:
            return False
        if sent != len(self.buffer):
            raise LeakTestError(
                "Overlapped send completed but did not transfer all bytes"
            )
        return True

    def poll_recv(self, sock: socket.socket) -> bool:
        """Return True once the pending receive has completed; data is in `buffer`."""
        received = self._finish("Overlapped receive")
        if received is None:
            return False
        self.buffer = bytes(received)
        return True

    def close(self) -> None:
        """Wait for any pending operation and release the worker."""
        future, self._future = self._future, None
        if future is not None:
            future.exception()
        self._executor.shutdown(wait=True)