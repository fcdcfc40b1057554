"""Enumerations for the bank reconciliation engine."""

from enum import Enum
from typing import Dict, FrozenSet


class ReconciliationStatus(str, Enum):
    """
    Resolution state of a bank transaction.

    PENDING: Imported, never processed by a run
    TO_REVIEW: Engine proposal waiting for a human (entry not consumed)
    MATCHED: Paired automatically or by confirming a proposal
    MANUAL: Paired by hand
    UNMATCHED: Processed, no acceptable pairing
    IGNORED: Dismissed, never revisited
    """
    PENDING = "PENDING"
    TO_REVIEW = "TO_REVIEW"
    MATCHED = "MATCHED"
    MANUAL = "MANUAL"
    UNMATCHED = "UNMATCHED"
    IGNORED = "IGNORED"

    @property
    def is_reconciled(self) -> bool:
        """Paired with a consumed journal entry."""
        return self in (ReconciliationStatus.MATCHED, ReconciliationStatus.MANUAL)

    @property
    def is_open(self) -> bool:
        """Eligible for matching runs."""
        return self in (ReconciliationStatus.PENDING, ReconciliationStatus.UNMATCHED)

    @property
    def is_unresolved(self) -> bool:
        """Still needs attention (reported by aging alerts)."""
        return self in (
            ReconciliationStatus.PENDING,
            ReconciliationStatus.TO_REVIEW,
            ReconciliationStatus.UNMATCHED,
        )

    def can_transition_to(self, target: "ReconciliationStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS: Dict[ReconciliationStatus, FrozenSet[ReconciliationStatus]] = {
    ReconciliationStatus.PENDING: frozenset({
        ReconciliationStatus.MATCHED,
        ReconciliationStatus.TO_REVIEW,
        ReconciliationStatus.UNMATCHED,
        ReconciliationStatus.MANUAL,
        ReconciliationStatus.IGNORED,
    }),
    ReconciliationStatus.UNMATCHED: frozenset({
        ReconciliationStatus.MATCHED,
        ReconciliationStatus.TO_REVIEW,
        ReconciliationStatus.MANUAL,
        ReconciliationStatus.IGNORED,
    }),
    ReconciliationStatus.TO_REVIEW: frozenset({
        ReconciliationStatus.MATCHED,
        ReconciliationStatus.MANUAL,
        ReconciliationStatus.UNMATCHED,
        ReconciliationStatus.IGNORED,
    }),
    ReconciliationStatus.MATCHED: frozenset({ReconciliationStatus.UNMATCHED}),
    ReconciliationStatus.MANUAL: frozenset({ReconciliationStatus.UNMATCHED}),
    # One-way: dismissed rows are never reopened.
    ReconciliationStatus.IGNORED: frozenset(),
}

OPEN_STATUSES: FrozenSet[ReconciliationStatus] = frozenset(
    s for s in ReconciliationStatus if s.is_open
)


class ImportSource(str, Enum):
    """Source format of an import batch."""
    CSV = "CSV"
    XLSX = "XLSX"
    CBI_XML = "CBI_XML"
    CBI_TXT = "CBI_TXT"
    PSD2_FABRICK = "PSD2_FABRICK"
    PSD2_TINK = "PSD2_TINK"
    MANUAL = "MANUAL"


class RegisterType(str, Enum):
    """Ledger register a journal entry is booked on."""
    CASH = "CASH"
    BANK = "BANK"


class AuditAction(str, Enum):
    """Type of audit action."""
    BATCH_IMPORTED = "batch_imported"
    BATCH_REPLAYED = "batch_replayed"
    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    MATCH_COMMITTED = "match_committed"
    MATCH_PROPOSED = "match_proposed"
    MARKED_UNMATCHED = "marked_unmatched"
    COMMIT_CONFLICT = "commit_conflict"
    MATCH_CONFIRMED = "match_confirmed"
    MANUAL_MATCH = "manual_match"
    MATCH_REMOVED = "match_removed"
    TRANSACTION_IGNORED = "transaction_ignored"
    PROPOSAL_REJECTED = "proposal_rejected"
