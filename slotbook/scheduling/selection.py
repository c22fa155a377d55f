"""Working selection for the à la carte booking workflow."""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from typing import Iterator, Optional

from slotbook.schemas.slot_schema import OccurrenceKey, SlotOccurrence


@dataclass
class SelectionEntry:
    """One chosen occurrence with its room and optional note."""

    occurrence: SlotOccurrence
    room_id: Optional[str]
    parent_note: Optional[str] = None

    @property
    def key(self) -> OccurrenceKey:
        return self.occurrence.key


class BookingSelection:
    """Insertion-ordered map of selected occurrences, unique per (template, date)."""

    def __init__(self) -> None:
        self._entries: "OrderedDict[OccurrenceKey, SelectionEntry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[SelectionEntry]:
        return iter(list(self._entries.values()))

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: OccurrenceKey) -> Optional[SelectionEntry]:
        return self._entries.get(key)

    def put(self, entry: SelectionEntry) -> None:
        """Add or replace the entry for its occurrence."""
        self._entries[entry.key] = entry

    def remove(self, key: OccurrenceKey) -> Optional[SelectionEntry]:
        return self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[OccurrenceKey]:
        return list(self._entries)

    def entries(self) -> list[SelectionEntry]:
        return list(self._entries.values())

    def on(self, day: date) -> list[SelectionEntry]:
        return [e for e in self._entries.values() if e.occurrence.on == day]

    def retain_dates(self, days: set[date]) -> list[SelectionEntry]:
        """Drop every entry whose date is not in ``days``; returns the dropped entries."""
        dropped = [e for e in self._entries.values() if e.occurrence.on not in days]
        for entry in dropped:
            del self._entries[entry.key]
        return dropped
