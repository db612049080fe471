"""Set of registered image names kept in lower case."""

from __future__ import annotations

from collections.abc import Callable, Iterator


class RegisteredImages:
    """Image names in insertion order, matched with or without regard to case."""

    def __init__(self) -> None:
        self._names: list[str] = []

    def __len__(self) -> int:
        return len(self._names)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._names))

    def _find(self, image_name: str) -> int | None:
        wanted = image_name.lower()
        for position, candidate in enumerate(self._names):
            if candidate.lower() == wanted:
                return position
        return None

    def _find_exact(self, image_name: str) -> int | None:
        try:
            return self._names.index(image_name)
        except ValueError:
            return None

    def add_entry(self, image_name: str) -> None:
        """Add a lower-case copy of `image_name` unless a case-insensitive match exists."""
        if self._find(image_name) is None:
            self._names.append(image_name.lower())

    def add_entry_exact(self, image_name: str) -> None:
        """Add `image_name` exactly as passed unless it is already present."""
        if self._find_exact(image_name) is None:
            self._names.append(image_name)

    def has_entry(self, image_name: str) -> bool:
        return self._find(image_name) is not None

    def has_entry_exact(self, image_name: str) -> bool:
        return self._find_exact(image_name) is not None

    def remove_entry(self, image_name: str) -> bool:
        position = self._find(image_name)
        if position is None:
            return False
        del self._names[position]
        return True

    def remove_entry_exact(self, image_name: str) -> bool:
        position = self._find_exact(image_name)
        if position is None:
            return False
        del self._names[position]
        return True

    def for_each(self, callback: Callable[[str], bool]) -> bool:
        """Call `callback` on each name in order; stop and return False if it does."""
        for name in self:
            if not callback(name):
                return False
        return True

    def reset(self) -> None:
        self._names.clear()

    def is_empty(self) -> bool:
        return not self._names