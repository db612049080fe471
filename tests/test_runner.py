import contextlib
import io
import ipaddress
import multiprocessing
import socket
import sys
import threading
from pathlib import Path

import psutil
import pytest

from leakprobe import runner
from leakprobe.runner import (
    main,
    run_test_case,
    set_pause_before_exit,
    set_process_exit_code,
)
from leakprobe.runtimesettings import RuntimeSettings
from leakprobe.settings import Settings
from leakprobe.util import LeakTestError


def _loopback_adapter():
    for name, addresses in psutil.net_if_addrs().items():
        for address in addresses:
            if address.family == socket.AF_INET and address.address == "127.0.0.1":
                return name
    raise RuntimeError("no loopback adapter found")


class _TcpEchoServer:
    def __init__(self):
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen()
        self.port = self.sock.getsockname()[1]
        threading.Thread(target=self._serve, daemon=True).start()

    def _serve(self):
        while True:
            try:
                conn, _ = self.sock.accept()
            except OSError:
                return
            threading.Thread(target=self._echo, args=(conn,), daemon=True).start()

    @staticmethod
    def _echo(conn):
        with conn:
            while True:
                try:
                    data = conn.recv(1024)
                except OSError:
                    return
                if not data:
                    return
                conn.sendall(data)

    def close(self):
        self.sock.close()


def _child_main(argv, settings_file, exit_code):
    sys.stdin = io.StringIO("\n" * 20)
    RuntimeSettings.override_settings_file_path(Path(settings_file))
    if exit_code is not None:
        set_process_exit_code(exit_code)
    out, err = io.StringIO(), io.StringIO()
    with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
        code = main(argv)
    return code, out.getvalue(), err.getvalue()


def _main_in_fresh_process(argv, settings_file, exit_code=None):
    """Run main() in a new interpreter so the settings singleton starts empty."""
    with multiprocessing.get_context("spawn").Pool(1) as pool:
        return pool.apply(_child_main, (argv, str(settings_file), exit_code))


@pytest.fixture(autouse=True)
def isolated(monkeypatch):
    monkeypatch.setattr(runner._state, "pause_before_exit", False)
    monkeypatch.setattr(runner._state, "process_exit_code", None)
    monkeypatch.setattr("sys.stdin", io.StringIO("\n" * 20))


@pytest.fixture
def echo_env(tmp_path):
    server = _TcpEchoServer()
    adapter = _loopback_adapter()
    settings_file = tmp_path / "leaktest.settings"
    settings_file.write_text(
        f"TunnelAdapter={adapter}\n"
        f"LanAdapter={adapter}\n"
        "TcpBinServerIp=127.0.0.1\n"
        f"TcpBinEchoPort={server.port}\n"
        f"TcpBinEchoPortUdp={server.port}\n",
        encoding="utf-8",
    )
    yield settings_file
    server.close()


def test_main_without_test_id_fails(capsys):
    assert main([]) == 1
    captured = capsys.readouterr()
    assert "EXCEPTION: Test ID not specified" in captured.err
    assert "!!! FAIL !!!" in captured.out


def test_main_with_unknown_test_id_fails(capsys):
    assert main(["bogus"]) == 1
    assert "EXCEPTION: Invalid test id: bogus" in capsys.readouterr().err


def test_run_test_case_unknown_id_raises():
    with pytest.raises(LeakTestError, match="Invalid test id: nope"):
        run_test_case("nope", [])


def test_run_test_case_matches_id_ignoring_case():
    with pytest.raises(LeakTestError, match="Invalid argument: icmp"):
        run_test_case("ST1", ["icmp"])


def test_main_passes_and_returns_zero(echo_env, capsys):
    code, out, _ = _main_in_fresh_process(["st1", "tcp"], echo_env)
    assert code == 0
    assert "--> PASS <--" in out
    # The same case with a stray argument is rejected before any network work.
    assert main(["st1", "tcp", "extra"]) == 1
    assert "!!! FAIL !!!" in capsys.readouterr().out


def test_process_exit_code_used_on_success(echo_env):
    code, _, _ = _main_in_fresh_process(["st1"], echo_env, exit_code=7)
    assert code == 7
    runtime = RuntimeSettings(Settings.from_file(echo_env))
    assert runtime.tcpbin_server_ip() == ipaddress.IPv4Address("127.0.0.1")


def test_process_exit_code_ignored_on_failure(capsys):
    set_process_exit_code(7)
    assert main(["st1", "icmp"]) == 1
    assert "!!! FAIL !!!" in capsys.readouterr().out


def test_pause_before_exit_prompts(capsys):
    set_pause_before_exit(True)
    assert main(["st2", "tcp", "extra"]) == 1
    assert "Press a key to continue..." in capsys.readouterr().out


def test_no_pause_by_default(capsys):
    assert main(["st3", "tcp", "extra"]) == 1
    assert "Press a key to continue..." not in capsys.readouterr().out