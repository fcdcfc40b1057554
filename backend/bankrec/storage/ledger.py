"""
Ledger gateway.

Journal entries belong to the bookkeeping subsystem. The engine only needs
candidate lookups and an atomic claim on an entry; the claim set is the
single source of truth for whether an entry is consumed.
"""

import threading
from dataclasses import replace
from datetime import date
from typing import Dict, Iterable, List, Optional, Protocol, Set

import structlog

from ..models import JournalEntry

logger = structlog.get_logger()


class LedgerGateway(Protocol):
    """Operations the engine requires from the ledger subsystem."""

    def find_candidate_entries(
        self,
        venue_id: str,
        date_from: date,
        date_to: date,
        exclude_consumed: bool = True,
    ) -> List[JournalEntry]:
        ...

    def get_entry(self, entry_id: str) -> Optional[JournalEntry]:
        ...

    def try_consume_entry(self, entry_id: str) -> bool:
        ...

    def release_entry(self, entry_id: str) -> None:
        ...


class InMemoryLedger:
    """Process-local ledger gateway with an atomic claim set."""

    def __init__(self, entries: Iterable[JournalEntry] = ()):
        self._lock = threading.Lock()
        self._entries: Dict[str, JournalEntry] = {}
        self._consumed: Set[str] = set()
        for entry in entries:
            self.add_entry(entry)

    def add_entry(self, entry: JournalEntry) -> JournalEntry:
        with self._lock:
            self._entries[entry.id] = replace(entry)
        return entry

    def find_candidate_entries(
        self,
        venue_id: str,
        date_from: date,
        date_to: date,
        exclude_consumed: bool = True,
    ) -> List[JournalEntry]:
        with self._lock:
            found = [
                replace(e) for e in self._entries.values()
                if e.venue_id == venue_id
                and e.entry_date is not None
                and date_from <= e.entry_date <= date_to
                and not (exclude_consumed and e.id in self._consumed)
            ]
        found.sort(key=lambda e: (e.entry_date, e.id))
        return found

    def get_entry(self, entry_id: str) -> Optional[JournalEntry]:
        with self._lock:
            entry = self._entries.get(entry_id)
            return replace(entry) if entry else None

    def is_consumed(self, entry_id: str) -> bool:
        with self._lock:
            return entry_id in self._consumed

    def consumed_ids(self) -> Set[str]:
        with self._lock:
            return set(self._consumed)

    def try_consume_entry(self, entry_id: str) -> bool:
        """Claim an entry; False if unknown or already claimed."""
        with self._lock:
            if entry_id not in self._entries or entry_id in self._consumed:
                return False
            self._consumed.add(entry_id)
            return True

    def release_entry(self, entry_id: str) -> None:
        with self._lock:
            if entry_id not in self._consumed:
                logger.warning("Releasing an entry that was not consumed", entry_id=entry_id)
            self._consumed.discard(entry_id)
