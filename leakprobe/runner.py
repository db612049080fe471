"""Command-line entry point that dispatches to a named leak test case."""

from __future__ import annotations

import sys
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from leakprobe.cases import run_gen1, run_st1, run_st2, run_st3
from leakprobe.util import LeakTestError, print_green, print_red

TestCase = Callable[[Sequence[str]], bool]

_TEST_CASES: dict[str, TestCase] = {
    "gen1": run_gen1,
    "st1": run_st1,
    "st2": run_st2,
    "st3": run_st3,
}


@dataclass
class _ExitBehaviour:
    pause_before_exit: bool = False
    process_exit_code: int | None = None


_state = _ExitBehaviour()


def set_pause_before_exit(pause: bool) -> None:
    """Wait for the user before the program exits."""
    _state.pause_before_exit = pause


def set_process_exit_code(exit_code: int) -> None:
    """Use `exit_code` instead of 0 when the test case passes."""
    _state.process_exit_code = exit_code


def _maybe_pause_before_exit() -> None:
    if _state.pause_before_exit:
        print("Press a key to continue...", flush=True)
        sys.stdin.readline()


def run_test_case(test_id: str, arguments: Sequence[str]) -> bool:
    """Run the test case whose id matches `test_id`, ignoring case."""
    handler = _TEST_CASES.get(test_id.lower())
    if handler is None:
        raise LeakTestError(f"Invalid test id: {test_id}")
    return handler(list(arguments))


def _inner_main(argv: Sequence[str]) -> bool:
    if not argv:
        raise LeakTestError("Test ID not specified")
    return run_test_case(argv[0], argv[1:])


def main(argv: Sequence[str] | None = None) -> int:
    """Run a test case named on the command line and report PASS or FAIL."""
    if argv is None:
        argv = sys.argv[1:]

    successful = False

    try:
        successful = _inner_main(list(argv))
    except Exception as err:
        message = str(err) or "Unknown error"
        print(f"EXCEPTION: {message}", file=sys.stderr, flush=True)

    if successful:
        print_green("--> PASS <--")
    else:
        print_red("!!! FAIL !!!")

    _maybe_pause_before_exit()

    if successful:
        code = _state.process_exit_code
        return code if code is not None else 0

    return 1


if __name__ == "__main__":
    sys.exit(main())