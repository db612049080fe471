"""Registry of known processes keyed by process id."""

from __future__ import annotations

import dataclasses
import enum
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field


class SplitStatus(enum.IntEnum):
    """Whether the traffic of a process is split from the tunnel."""

    OFF = 0
    ON = 1


@dataclass(frozen=True)
class EntrySettings:
    """Per-process split settings."""

    split: SplitStatus = SplitStatus.OFF
    has_firewall_state: bool = False


@dataclass
class ProcessRegistryEntry:
    """A single process known to the registry."""

    parent_process_id: int
    process_id: int
    settings: EntrySettings = field(default_factory=EntrySettings)
    target_settings: EntrySettings = field(default_factory=EntrySettings)
    previous_settings: EntrySettings = field(default_factory=EntrySettings)
    # Device path in lower case, or None when the process has no image name.
    image_name: str | None = None
    # Cached link to the parent entry, maintained by the registry.
    parent_entry: ProcessRegistryEntry | None = field(
        default=None, repr=False, compare=False
    )


class DuplicateEntryError(KeyError):
    """Raised when adding an entry for a process id that is already registered."""


class ProcessRegistry:
    """Processes ordered by process id, with lazily resolved parent links."""

    def __init__(self) -> None:
        self._entries: dict[int, ProcessRegistryEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, process_id: object) -> bool:
        return process_id in self._entries

    def __iter__(self) -> Iterator[ProcessRegistryEntry]:
        for process_id in sorted(self._entries):
            entry = self._entries.get(process_id)
            if entry is not None:
                yield entry

    def reset(self) -> None:
        """Remove every entry."""
        self._entries.clear()

    def initialize_entry(
        self,
        parent_process_id: int,
        process_id: int,
        split: SplitStatus,
        image_name: str | None = None,
    ) -> ProcessRegistryEntry:
        """Build an entry, not yet added, with its image name in lower case."""
        return ProcessRegistryEntry(
            parent_process_id=parent_process_id,
            process_id=process_id,
            settings=EntrySettings(split=split, has_firewall_state=False),
            target_settings=EntrySettings(),
            previous_settings=EntrySettings(),
            image_name=image_name.lower() if image_name else None,
            parent_entry=None,
        )

    def add_entry(self, entry: ProcessRegistryEntry) -> ProcessRegistryEntry:
        """Store a copy of `entry` and return the stored copy."""
        if entry.process_id in self._entries:
            raise DuplicateEntryError(entry.process_id)
        stored = dataclasses.replace(entry)
        self._entries[stored.process_id] = stored
        return stored

    def find_entry(self, process_id: int) -> ProcessRegistryEntry | None:
        return self._entries.get(process_id)

    def delete_entry(self, entry: ProcessRegistryEntry) -> bool:
        """Remove the entry with the id of `entry`; children lose their parent link."""
        process_id = entry.process_id
        if self._entries.pop(process_id, None) is None:
            return False
        for candidate in self._entries.values():
            if candidate.parent_process_id == process_id:
                candidate.parent_process_id = 0
                candidate.parent_entry = None
        return True

    def delete_entry_by_id(self, process_id: int) -> bool:
        entry = self.find_entry(process_id)
        if entry is None:
            return False
        return self.delete_entry(entry)

    def for_each(self, callback: Callable[[ProcessRegistryEntry], bool]) -> bool:
        """Call `callback` on each entry in id order; stop and return False if it does."""
        for entry in self:
            if not callback(entry):
                return False
        return True

    def get_parent_entry(
        self, entry: ProcessRegistryEntry
    ) -> ProcessRegistryEntry | None:
        """Return the parent of `entry`, caching the lookup on the entry."""
        if entry.parent_entry is not None:
            return entry.parent_entry
        if entry.parent_process_id == 0:
            return None
        entry.parent_entry = self.find_entry(entry.parent_process_id)
        return entry.parent_entry

    def is_empty(self) -> bool:
        return not self._entries