"""Result models for imports, runs, summaries and the audit trail."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, List, Dict, Any
from uuid import uuid4

from .enums import AuditAction, ReconciliationStatus
from .transaction import utcnow


@dataclass
class RowError:
    """A rejected import row."""
    row: int  # 0-based index into the submitted rows
    reason: str
    kind: str = "validation"  # "parse" or "validation"
    field: Optional[str] = None
    value: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "row": self.row,
            "reason": self.reason,
            "kind": self.kind,
            "field": self.field,
            "value": self.value,
        }


@dataclass
class ImportResult:
    """Outcome of one import batch."""
    batch_id: str
    imported: int = 0
    duplicates_skipped: int = 0
    errors: List[RowError] = field(default_factory=list)
    replay_of_batch_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batch_id": self.batch_id,
            "imported": self.imported,
            "duplicates_skipped": self.duplicates_skipped,
            "errors": [e.to_dict() for e in self.errors],
            "replay_of_batch_id": self.replay_of_batch_id,
        }


@dataclass
class RunResult:
    """Transitions made by one reconciliation run."""
    venue_id: str
    matched: int = 0
    to_review: int = 0
    unmatched: int = 0
    conflicts: int = 0  # Pairs skipped because of concurrent changes

    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def total_changes(self) -> int:
        return self.matched + self.to_review + self.unmatched

    def to_dict(self) -> Dict[str, Any]:
        return {
            "venue_id": self.venue_id,
            "matched": self.matched,
            "to_review": self.to_review,
            "unmatched": self.unmatched,
            "conflicts": self.conflicts,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class AgingAlert:
    """An unresolved transaction older than the alert threshold."""
    transaction_id: str
    transaction_date: date
    amount_cents: int
    description: str
    status: ReconciliationStatus
    age_days: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "transaction_date": self.transaction_date.isoformat(),
            "amount_cents": self.amount_cents,
            "description": self.description,
            "status": self.status.value,
            "age_days": self.age_days,
        }


@dataclass
class ReconciliationSummary:
    """Summary statistics of a venue's reconciliation state."""
    venue_id: str
    counts_by_status: Dict[str, int] = field(default_factory=dict)

    # Amounts (in cents, absolute values)
    total_imported_cents: int = 0
    total_matched_cents: int = 0
    bank_balance_cents: Optional[int] = None

    aging_alerts: List[AgingAlert] = field(default_factory=list)

    @property
    def total_transactions(self) -> int:
        return sum(self.counts_by_status.values())

    @property
    def percent_reconciled(self) -> float:
        """Percentage of imported amount that is paired."""
        if self.total_imported_cents == 0:
            return 0.0
        return round((self.total_matched_cents / self.total_imported_cents) * 100, 2)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "venue_id": self.venue_id,
            "counts_by_status": dict(self.counts_by_status),
            "total_transactions": self.total_transactions,
            "total_imported": self.total_imported_cents / 100,
            "total_matched": self.total_matched_cents / 100,
            "total_imported_cents": self.total_imported_cents,
            "total_matched_cents": self.total_matched_cents,
            "percent_reconciled": self.percent_reconciled,
            "bank_balance_cents": self.bank_balance_cents,
            "aging_alerts": [a.to_dict() for a in self.aging_alerts],
        }


@dataclass
class AuditEntry:
    """An entry in the audit log."""
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=utcnow)

    # Action
    action: AuditAction = AuditAction.MATCH_COMMITTED

    # Context
    venue_id: Optional[str] = None
    transaction_ids: List[str] = field(default_factory=list)
    entry_id: Optional[str] = None
    user_id: Optional[str] = None

    # Details
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    # Outcome
    success: bool = True
    error_message: Optional[str] = None
