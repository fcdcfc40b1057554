"""
In-process transaction store.

Every read returns a copy, and every write goes through compare_and_set,
so callers get the same optimistic-concurrency semantics a database row
version column would give them.
"""

import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

import structlog

from ..errors import ConflictError, InvalidStateError, NotFoundError
from ..models import (
    BankTransaction,
    ImportBatch,
    ReconciliationStatus,
)

logger = structlog.get_logger()


def _copy(txn: BankTransaction) -> BankTransaction:
    return replace(txn, rejected_entry_ids=list(txn.rejected_entry_ids))


class InMemoryTransactionStore:
    """Lock-guarded repository of bank transactions and import batches."""

    def __init__(self):
        self._lock = threading.RLock()
        self._transactions: Dict[str, BankTransaction] = {}
        self._dedup_index: Dict[Tuple[str, str], str] = {}
        self._batches: Dict[str, ImportBatch] = {}

    @contextmanager
    def transaction(self) -> Iterator["InMemoryTransactionStore"]:
        """Hold the store lock for a multi-step atomic section."""
        with self._lock:
            yield self

    # Reads

    def get(self, transaction_id: str) -> BankTransaction:
        with self._lock:
            txn = self._transactions.get(transaction_id)
            if txn is None:
                raise NotFoundError(
                    f"Bank transaction not found: {transaction_id}",
                    transaction_id=transaction_id,
                )
            return _copy(txn)

    def list(
        self,
        venue_id: str,
        statuses: Optional[Iterable[ReconciliationStatus]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[BankTransaction]:
        """List a venue's transactions ordered by date, then id."""
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            rows = [
                _copy(t) for t in self._transactions.values()
                if t.venue_id == venue_id and (wanted is None or t.status in wanted)
            ]
        rows.sort(key=lambda t: (t.transaction_date is None, t.transaction_date, t.id))
        if offset:
            rows = rows[offset:]
        if limit is not None:
            rows = rows[:limit]
        return rows

    def proposed_entry_ids(self, venue_id: str) -> Set[str]:
        """Entries currently held as TO_REVIEW proposals in a venue."""
        with self._lock:
            return {
                t.matched_entry_id for t in self._transactions.values()
                if t.venue_id == venue_id and t.has_proposal
            }

    def find_by_entry(self, entry_id: str) -> List[BankTransaction]:
        """Transactions referencing an entry, confirmed or proposed."""
        with self._lock:
            return [
                _copy(t) for t in self._transactions.values()
                if t.matched_entry_id == entry_id
            ]

    def get_batch(self, batch_id: str) -> ImportBatch:
        with self._lock:
            batch = self._batches.get(batch_id)
            if batch is None:
                raise NotFoundError(f"Import batch not found: {batch_id}", batch_id=batch_id)
            return replace(batch)

    def find_batch_by_fingerprint(self, venue_id: str, fingerprint: str) -> Optional[ImportBatch]:
        with self._lock:
            for batch in self._batches.values():
                if batch.venue_id == venue_id and batch.fingerprint == fingerprint:
                    return replace(batch)
        return None

    # Writes

    def insert_batch(
        self,
        batch: ImportBatch,
        transactions: List[BankTransaction],
    ) -> Tuple[List[BankTransaction], List[BankTransaction]]:
        """
        Insert new transactions and their batch record atomically.

        The dedup check runs under the same lock as the inserts, so a row is
        never visible without being counted in its batch.

        Returns:
            Tuple of (inserted, duplicates)
        """
        inserted: List[BankTransaction] = []
        duplicates: List[BankTransaction] = []

        with self._lock:
            for txn in transactions:
                key = (txn.venue_id, txn.dedup_key)
                if key in self._dedup_index:
                    duplicates.append(txn)
                    continue
                txn.import_batch_id = batch.id
                self._transactions[txn.id] = _copy(txn)
                self._dedup_index[key] = txn.id
                inserted.append(txn)

            batch.imported_count = len(inserted)
            batch.duplicate_count = len(duplicates)
            self._batches[batch.id] = replace(batch)

        logger.debug(
            "Batch stored",
            batch_id=batch.id,
            inserted=len(inserted),
            duplicates=len(duplicates),
        )
        return inserted, duplicates

    def compare_and_set(
        self,
        transaction_id: str,
        expected_version: int,
        **changes,
    ) -> BankTransaction:
        """
        Apply changes only if the row still has the expected version.

        Raises:
            NotFoundError: unknown id
            ConflictError: the row changed since it was read
            InvalidStateError: the status change is not in the transition table
        """
        with self._lock:
            current = self._transactions.get(transaction_id)
            if current is None:
                raise NotFoundError(
                    f"Bank transaction not found: {transaction_id}",
                    transaction_id=transaction_id,
                )

            if current.version != expected_version:
                raise ConflictError(
                    "Transaction was modified concurrently",
                    transaction_id=transaction_id,
                    expected_version=expected_version,
                    actual_version=current.version,
                )

            target = changes.get("status", current.status)
            if target != current.status and not current.status.can_transition_to(target):
                raise InvalidStateError(
                    f"Cannot move transaction from {current.status.value} to {target.value}",
                    transaction_id=transaction_id,
                    status=current.status.value,
                    target=target.value,
                )

            updated = replace(current, version=current.version + 1, **changes)
            if not updated.is_consistent():
                raise InvalidStateError(
                    "Status and matched-entry reference are inconsistent",
                    transaction_id=transaction_id,
                    status=updated.status.value,
                )

            self._transactions[transaction_id] = updated
            return _copy(updated)
