import datetime
import ipaddress
import socket
import threading
import time

import pytest

from leakprobe.sockutil import (
    OverlappedContext,
    SocketOperationError,
    connect_socket,
    create_bind_socket,
    create_socket,
    format_wsa_error,
    query_bind,
    send_recv_socket,
    send_recv_validate_echo,
    set_socket_recv_timeout,
    shutdown_socket,
    validate_bind,
)
from leakprobe.util import LeakTestError

LOOPBACK = "127.0.0.1"


def _serve(reply):
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind((LOOPBACK, 0))
    server.listen(1)

    def run():
        try:
            conn, _ = server.accept()
        except OSError:
            return
        with conn:
            while True:
                try:
                    data = conn.recv(1024)
                except OSError:
                    break
                if not data:
                    break
                conn.sendall(reply(data))

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return server, thread


@pytest.fixture
def echo_server():
    server, thread = _serve(lambda data: data)
    yield server.getsockname()[1]
    server.close()
    thread.join(timeout=2)


@pytest.fixture
def wrong_server():
    server, thread = _serve(lambda data: b"nope")
    yield server.getsockname()[1]
    server.close()
    thread.join(timeout=2)


def _wait_for(poll):
    deadline = time.monotonic() + 5
    while time.monotonic() < deadline:
        if poll():
            return True
        time.sleep(0.01)
    return False


def test_format_wsa_error_pads_to_eight_digits():
    assert format_wsa_error(10054) == "0x00002746"
    assert format_wsa_error(0) == "0x00000000"


def test_format_wsa_error_negative_is_unsigned():
    assert format_wsa_error(-1) == "0xffffffff"


def test_create_socket_protocols():
    tcp = create_socket(True)
    udp = create_socket(False)
    try:
        assert tcp.type == socket.SOCK_STREAM
        assert udp.type == socket.SOCK_DGRAM
    finally:
        tcp.close()
        udp.close()


def test_create_bind_socket_and_query_bind():
    sock = create_bind_socket(LOOPBACK, 0, True)
    try:
        address, port = query_bind(sock)
        assert address == ipaddress.IPv4Address(LOOPBACK)
        assert port > 0
    finally:
        sock.close()


def test_create_bind_socket_accepts_address_object():
    sock = create_bind_socket(ipaddress.IPv4Address(LOOPBACK), 0, False)
    try:
        assert query_bind(sock)[0] == ipaddress.IPv4Address(LOOPBACK)
    finally:
        sock.close()


def test_create_bind_socket_rejects_bad_address():
    with pytest.raises(LeakTestError, match="Unable to parse IP address"):
        create_bind_socket("not-an-ip", 0, True)


def test_create_bind_socket_port_in_use():
    first = create_bind_socket(LOOPBACK, 0, False)
    try:
        port = query_bind(first)[1]
        with pytest.raises(LeakTestError, match="Failed to bind socket: 0x"):
            create_bind_socket(LOOPBACK, port, False)
    finally:
        first.close()


def test_shutdown_socket_closes():
    sock = create_socket(True)
    shutdown_socket(sock)
    assert sock.fileno() == -1
    shutdown_socket(sock)
    shutdown_socket(None)
    assert sock.fileno() == -1


def test_send_recv_echo(echo_server):
    sock = create_socket(True)
    try:
        connect_socket(sock, LOOPBACK, echo_server)
        assert send_recv_socket(sock, b"heynow") == b"heynow"
    finally:
        shutdown_socket(sock)


def test_validate_echo_rejects_wrong_reply(wrong_server):
    sock = create_socket(True)
    try:
        connect_socket(sock, LOOPBACK, wrong_server)
        with pytest.raises(LeakTestError, match="Invalid echo response"):
            send_recv_validate_echo(sock, b"blocked")
    finally:
        shutdown_socket(sock)


def test_validate_bind(echo_server):
    sock = create_socket(True)
    try:
        connect_socket(sock, LOOPBACK, echo_server)
        validate_bind(sock, LOOPBACK)
        with pytest.raises(LeakTestError, match="Unexpected socket bind"):
            validate_bind(sock, "10.1.2.3")
        assert query_bind(sock)[0] == ipaddress.IPv4Address(LOOPBACK)
    finally:
        shutdown_socket(sock)


def test_connect_refused_carries_error_code():
    probe = create_bind_socket(LOOPBACK, 0, True)
    port = query_bind(probe)[1]
    probe.close()
    sock = create_socket(True)
    try:
        with pytest.raises(SocketOperationError) as excinfo:
            connect_socket(sock, LOOPBACK, port)
        assert excinfo.value.error_code != 0
        assert str(excinfo.value).startswith("Failed to connect socket: 0x")
    finally:
        sock.close()


def test_recv_timeout_raises():
    peer = create_bind_socket(LOOPBACK, 0, False)
    sock = create_bind_socket(LOOPBACK, 0, False)
    try:
        set_socket_recv_timeout(sock, datetime.timedelta(milliseconds=200))
        connect_socket(sock, LOOPBACK, query_bind(peer)[1])
        started = time.monotonic()
        with pytest.raises(LeakTestError, match="Failed to receive on socket"):
            send_recv_socket(sock, b"ping")
        assert time.monotonic() - started < 5
    finally:
        sock.close()
        peer.close()


def test_overlapped_send_and_receive(echo_server):
    sock = create_socket(True)
    try:
        connect_socket(sock, LOOPBACK, echo_server)
        with OverlappedContext() as send_ctx, OverlappedContext() as recv_ctx:
            send_ctx.assign_buffer(bytes(range(0x10, 0x18)))
            send_ctx.send(sock)
            assert send_ctx.pending_operation
            assert _wait_for(lambda: send_ctx.poll_send(sock))
            assert not send_ctx.pending_operation

            recv_ctx.recv(sock, 1024)
            assert _wait_for(lambda: recv_ctx.poll_recv(sock))
            assert recv_ctx.buffer == bytes(range(0x10, 0x18))
    finally:
        shutdown_socket(sock)


def test_overlapped_poll_without_pending_raises():
    with OverlappedContext() as ctx:
        with pytest.raises(LeakTestError):
            ctx.poll_send(None)
        with pytest.raises(LeakTestError):
            ctx.poll_recv(None)


def test_overlapped_rejects_second_operation(echo_server):
    sock = create_socket(True)
    try:
        connect_socket(sock, LOOPBACK, echo_server)
        with OverlappedContext() as ctx:
            ctx.recv(sock, 16)
            with pytest.raises(LeakTestError, match="already pending"):
                ctx.assign_buffer(b"x")
            with pytest.raises(LeakTestError, match="already pending"):
                ctx.send(sock)
            shutdown_socket(sock)
            assert _wait_for(lambda: _settled(ctx, sock))
    finally:
        shutdown_socket(sock)


def _settled(ctx, sock):
    try:
        return ctx.poll_recv(sock)
    except LeakTestError:
        return True