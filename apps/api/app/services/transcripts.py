"""Per-call transcript log ordered by speech offset."""
from __future__ import annotations

from bisect import insort
from dataclasses import dataclass, field
from itertools import count
from typing import Dict, Generic, Iterable, Protocol, TypeVar

from ..core.locks import KeyedLock


class Utterance(Protocol):
    id: str
    timestamp_ms: int


E = TypeVar("E", bound=Utterance)


@dataclass
class _CallLog(Generic[E]):
    ids: set[str] = field(default_factory=set)
    # (timestamp_ms, arrival sequence, entry); the sequence keeps ties stable.
    rows: list[tuple[int, int, E]] = field(default_factory=list)


class TranscriptBuffer(Generic[E]):
    """Accept utterances in any arrival order and read them back chronologically.

    Entries are deduplicated by id. Interim and final entries for the same time
    slot are both kept; readers treat the later final one as authoritative.
    """

    def __init__(self) -> None:
        self._logs: Dict[str, _CallLog[E]] = {}
        self._locks = KeyedLock()
        self._sequence = count()

    async def append(self, call_id: str, entry: E) -> bool:
        """Insert ``entry``; returns ``False`` if its id was already present."""

        async with self._locks.hold(call_id):
            return self._insert(self._logs.setdefault(call_id, _CallLog()), entry)

    async def load(self, call_id: str, entries: Iterable[E]) -> int:
        """Seed a call's log from storage, skipping ids already buffered."""

        async with self._locks.hold(call_id):
            log = self._logs.setdefault(call_id, _CallLog())
            return sum(1 for entry in entries if self._insert(log, entry))

    def read(self, call_id: str) -> list[E]:
        log = self._logs.get(call_id)
        if log is None:
            return []
        return [row[2] for row in log.rows]

    def contains(self, call_id: str, entry_id: str) -> bool:
        log = self._logs.get(call_id)
        return log is not None and entry_id in log.ids

    def is_loaded(self, call_id: str) -> bool:
        return call_id in self._logs

    def discard(self, call_id: str) -> None:
        """Forget a call once it is terminal; storage stays authoritative."""

        self._logs.pop(call_id, None)

    def __len__(self) -> int:
        return len(self._logs)

    def _insert(self, log: _CallLog[E], entry: E) -> bool:
        if entry.id in log.ids:
            return False
        log.ids.add(entry.id)
        insort(log.rows, (entry.timestamp_ms, next(self._sequence), entry), key=lambda row: row[:2])
        return True
