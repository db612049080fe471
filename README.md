# leakprobe

Interactive leak tests for a VPN client that supports split tunnelling.
Each test opens sockets on the LAN or tunnel interface and talks to a
tcpbin-style echo service. It then checks that the traffic goes over the
expected interface, or that it is blocked when it should be.

## Installation

```
pip install .
```

## Settings

Tests that need network details read them from a file named
`leaktest.settings`. By default the file sits next to the running program
(the directory of `sys.argv[0]`). You can set another path with
`RuntimeSettings.override_settings_file_path`. The file holds
whitespace-separated `key=value` pairs:

```
TunnelAdapter=Mullvad
LanAdapter=Ethernet
PublicNonVpnIp=192.0.2.10
TcpBinServerIp=192.0.2.20
TcpBinEchoPort=7
TcpBinEchoPortUdp=7
TcpBinInfoPort=8080
```

A token without `=` is an error. A missing key raises `LeakTestError` only
when a test first asks for that key. Adapter names are matched without
regard to case. Each adapter's first address of the wanted family (IPv4 or
IPv6) is used, and adapter addresses are looked up with `psutil`.
`RuntimeSettings.instance()` loads the file once, and each value is worked
out the first time it is used.

## Running a test

```
leakprobe <test-id> [arguments...]
```

You can also run it as `python -m leakprobe.runner <test-id> ...`.

| Test id | Arguments                          | What it checks |
|---------|------------------------------------|----------------|
| `gen1`  | `[tcp\|udp] [delay-ms]` (defaults `tcp`, `50`) | Momentary leaks while the VPN client changes state |
| `st1`   | `[tcp\|udp]` (default `tcp`)       | Binds to the tunnel, binds to the LAN and unbound sockets all end up on the LAN interface |
| `st2`   | `[tcp\|udp]`                       | An existing tunnel connection is blocked once the app is excluded |
| `st3`   | `[tcp\|udp]`                       | An excluded connection is blocked once the app stops being excluded |

Test ids and protocol names are matched without regard to case. Each test
tells you to turn the VPN or split tunnelling on or off, then waits for you
to press Enter. At the end it prints `--> PASS <--` or `!!! FAIL !!!`. The
exit status is 0 on a pass and 1 on a failure. A passing test can set
another exit status with `leakprobe.runner.set_process_exit_code`.

`gen1` runs until you stop it. It prints `s` for a completed send, `r` for a
completed receive, `+` for both, and `.` when a reset or aborted connection
is being re-established.

## Library use

* `leakprobe.sockutil` holds the socket helpers: `create_socket`,
  `create_bind_socket`, `connect_socket`, `send_recv_socket`,
  `send_recv_validate_echo`, `query_bind`, `validate_bind`,
  `set_socket_recv_timeout`, `shutdown_socket`, `format_wsa_error`, and
  `OverlappedContext`, which runs one background send or receive that you
  can poll.
* `leakprobe.settings.Settings` and
  `leakprobe.runtimesettings.RuntimeSettings` load the configuration.
* `leakprobe.util` holds `ArgumentContext`, `parse_ipv4`, `ip_to_string`,
  `proto_argument_tcp`, `get_adapter_addresses` and the console prompts.
  Failures raise `LeakTestError`.
* `leakprobe.procregistry.ProcessRegistry` is an in-memory table of
  `ProcessRegistryEntry` records keyed by process id. It keeps split
  settings and parent links. A parent is looked up lazily and cached.
  Deleting a process clears the parent link of its children. Adding a
  process id that is already present raises `DuplicateEntryError`.
* `leakprobe.registeredimage.RegisteredImages` is an ordered set of image
  paths. Lookups can be case-insensitive or exact.

```python
from leakprobe.registeredimage import RegisteredImages

images = RegisteredImages()
images.add_entry(r"\Device\HarddiskVolume2\Apps\Browser.exe")
assert images.has_entry(r"\device\harddiskvolume2\apps\browser.exe")
```

## What this package does not do

* It has no tests that start child processes, act as a local echo server
  and client pair, or capture DNS traffic. Only `gen1`, `st1`, `st2` and
  `st3` are available.
* It does not split traffic itself, and it does not talk to any split
  tunnelling component. `ProcessRegistry` and `RegisteredImages` are plain
  in-memory containers.

## Running the tests

```
pip install .[test]
pytest
```