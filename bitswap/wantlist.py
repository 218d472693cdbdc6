"""The set of blocks a peer wants, with priorities and want types."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from .cid import Cid
from .wire import WantType


@dataclass(frozen=True)
class Entry:
    """A wanted CID with its priority and want type."""

    cid: Cid
    priority: int
    want_type: WantType = WantType.BLOCK


def new_ref_entry(cid: Cid, priority: int) -> Entry:
    """Create a want-block entry."""
    return Entry(cid=cid, priority=priority, want_type=WantType.BLOCK)


class Wantlist:
    """A mapping of wanted CIDs to their entries."""

    def __init__(self, entries: Iterable[Entry] = ()) -> None:
        self._set: dict[Cid, Entry] = {}
        for entry in entries:
            self.add(entry.cid, entry.priority, entry.want_type)

    def __len__(self) -> int:
        return len(self._set)

    def __contains__(self, cid: object) -> bool:
        return cid in self._set

    def add(self, cid: Cid, priority: int, want_type: WantType) -> bool:
        """Add a want; a want-have never replaces an existing entry."""
        existing = self._set.get(cid)
        if existing is not None and (
            existing.want_type == WantType.BLOCK or want_type == WantType.HAVE
        ):
            return False
        self._set[cid] = Entry(cid=cid, priority=priority, want_type=want_type)
        return True

    def remove(self, cid: Cid) -> bool:
        """Remove any entry for ``cid``; report whether one was present."""
        return self._set.pop(cid, None) is not None

    def remove_type(self, cid: Cid, want_type: WantType) -> bool:
        """Remove the entry for ``cid`` unless a want-have would remove a want-block."""
        existing = self._set.get(cid)
        if existing is None:
            return False
        if existing.want_type == WantType.BLOCK and want_type == WantType.HAVE:
            return False
        del self._set[cid]
        return True

    def get(self, cid: Cid) -> Entry | None:
        """Return the entry for ``cid``, or None."""
        return self._set.get(cid)

    def entries(self) -> list[Entry]:
        """Return all entries."""
        return list(self._set.values())

    def absorb(self, other: Wantlist) -> None:
        """Add every entry of ``other`` to this wantlist."""
        for entry in other.entries():
            self.add(entry.cid, entry.priority, entry.want_type)


def sort_entries(entries: list[Entry]) -> None:
    """Sort entries in place, highest priority first."""
    entries.sort(key=lambda entry: entry.priority, reverse=True)