"""Transaction models for the bank reconciliation engine."""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Optional, List, Dict, Any
from uuid import uuid4

from .enums import (
    ImportSource,
    ReconciliationStatus,
    RegisterType,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BankTransaction:
    """
    One imported bank statement line.
    All monetary amounts are stored in CENTS (integer) to avoid floating point errors.
    Amounts are signed: positive money in, negative money out.
    """
    # Identity
    id: str = field(default_factory=lambda: str(uuid4()))
    venue_id: str = ""

    # Facts
    transaction_date: Optional[date] = None
    value_date: Optional[date] = None
    amount_cents: int = 0
    description: str = ""
    bank_reference: Optional[str] = None
    balance_after_cents: Optional[int] = None

    # Import provenance
    import_source: ImportSource = ImportSource.MANUAL
    import_batch_id: Optional[str] = None
    imported_at: datetime = field(default_factory=utcnow)
    dedup_key: str = ""

    # Resolution state
    status: ReconciliationStatus = ReconciliationStatus.PENDING
    matched_entry_id: Optional[str] = None  # Proposal while TO_REVIEW
    match_confidence: Optional[float] = None
    reconciled_at: Optional[datetime] = None
    reconciled_by: Optional[str] = None
    rejected_entry_ids: List[str] = field(default_factory=list)

    # Optimistic concurrency
    version: int = 0

    @property
    def amount(self) -> float:
        """Return amount in currency units."""
        return self.amount_cents / 100.0

    @property
    def absolute_cents(self) -> int:
        return abs(self.amount_cents)

    @property
    def has_proposal(self) -> bool:
        return self.status == ReconciliationStatus.TO_REVIEW and self.matched_entry_id is not None

    def is_consistent(self) -> bool:
        """Check the status / reference invariants."""
        if self.status.is_reconciled:
            return self.matched_entry_id is not None and self.reconciled_at is not None
        if self.status == ReconciliationStatus.TO_REVIEW:
            return self.matched_entry_id is not None and self.match_confidence is not None
        return self.matched_entry_id is None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "venue_id": self.venue_id,
            "transaction_date": self.transaction_date.isoformat() if self.transaction_date else None,
            "value_date": self.value_date.isoformat() if self.value_date else None,
            "amount_cents": self.amount_cents,
            "amount": self.amount,
            "description": self.description,
            "bank_reference": self.bank_reference,
            "balance_after_cents": self.balance_after_cents,
            "import_source": self.import_source.value,
            "import_batch_id": self.import_batch_id,
            "imported_at": self.imported_at.isoformat(),
            "status": self.status.value,
            "matched_entry_id": self.matched_entry_id,
            "match_confidence": self.match_confidence,
            "reconciled_at": self.reconciled_at.isoformat() if self.reconciled_at else None,
            "reconciled_by": self.reconciled_by,
            "version": self.version,
        }


@dataclass
class JournalEntry:
    """
    Ledger line owned by the bookkeeping subsystem.
    The engine only reads it; consumption is tracked by the ledger gateway.
    """
    id: str = field(default_factory=lambda: str(uuid4()))
    venue_id: str = ""
    entry_date: Optional[date] = None
    description: str = ""
    debit_cents: Optional[int] = None
    credit_cents: Optional[int] = None
    document_ref: Optional[str] = None
    register_type: RegisterType = RegisterType.BANK

    @property
    def signed_cents(self) -> int:
        """Debit minus credit."""
        return (self.debit_cents or 0) - (self.credit_cents or 0)

    @property
    def absolute_cents(self) -> int:
        return abs(self.signed_cents)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "venue_id": self.venue_id,
            "entry_date": self.entry_date.isoformat() if self.entry_date else None,
            "description": self.description,
            "debit_cents": self.debit_cents,
            "credit_cents": self.credit_cents,
            "document_ref": self.document_ref,
            "register_type": self.register_type.value,
        }


@dataclass
class ImportBatch:
    """Groups the transactions created by one ingestion run."""
    id: str = field(default_factory=lambda: str(uuid4()))
    venue_id: str = ""
    source: ImportSource = ImportSource.MANUAL
    fingerprint: str = ""
    filename: Optional[str] = None
    imported_by: Optional[str] = None
    imported_at: datetime = field(default_factory=utcnow)

    # Counts
    imported_count: int = 0
    duplicate_count: int = 0
    error_count: int = 0


@dataclass
class MatchCandidate:
    """
    A scored (transaction, entry) pair.
    Used by the matching engine and the transaction detail view.
    """
    transaction_id: str
    entry_id: str

    # Scores
    amount_score: float = 0.0
    date_score: float = 0.0
    description_score: float = 0.0
    score: float = 0.0

    # Match details
    amount_difference_cents: int = 0
    days_apart: int = 0

    def sort_key(self):
        """Highest score first; ties go to the lowest transaction id, then entry id."""
        return (-self.score, self.transaction_id, self.entry_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "entry_id": self.entry_id,
            "score": self.score,
            "amount_score": self.amount_score,
            "date_score": self.date_score,
            "description_score": self.description_score,
            "amount_difference_cents": self.amount_difference_cents,
            "days_apart": self.days_apart,
        }
