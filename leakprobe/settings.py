"""Key-value settings read from a whitespace separated file."""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping

from leakprobe.util import LeakTestError


def _split_key_value_pairs(tokens: Iterable[str]) -> dict[str, str]:
    values: dict[str, str] = {}
    for token in tokens:
        key, sep, value = token.partition("=")
        if not sep or not key:
            raise LeakTestError(f"Invalid key-value pair: {token}")
        values[key] = value
    return values


class Settings:
    """Read-only lookup of named settings."""

    def __init__(self, values: Mapping[str, str]) -> None:
        self._values = dict(values)

    @classmethod
    def from_file(cls, filename: str | os.PathLike[str]) -> Settings:
        """Load settings from a file of whitespace separated key=value tokens."""
        try:
            with open(filename, encoding="utf-8") as source:
                content = source.read()
        except OSError as err:
            raise LeakTestError("Failed to open settings file") from err
        return cls(_split_key_value_pairs(content.split()))

    def get(self, key: str) -> str:
        try:
            return self._values[key]
        except KeyError:
            raise LeakTestError("Settings key not present in settings file") from None