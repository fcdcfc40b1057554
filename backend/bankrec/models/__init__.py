"""Data models for the bank reconciliation engine."""

from .enums import (
    ALLOWED_TRANSITIONS,
    OPEN_STATUSES,
    AuditAction,
    ImportSource,
    ReconciliationStatus,
    RegisterType,
)
from .transaction import (
    BankTransaction,
    JournalEntry,
    ImportBatch,
    MatchCandidate,
    utcnow,
)
from .reconciliation import (
    AgingAlert,
    AuditEntry,
    ImportResult,
    ReconciliationSummary,
    RowError,
    RunResult,
)

__all__ = [
    # Enums
    "ALLOWED_TRANSITIONS",
    "OPEN_STATUSES",
    "AuditAction",
    "ImportSource",
    "ReconciliationStatus",
    "RegisterType",
    # Records
    "BankTransaction",
    "JournalEntry",
    "ImportBatch",
    "MatchCandidate",
    "utcnow",
    # Results
    "AgingAlert",
    "AuditEntry",
    "ImportResult",
    "ReconciliationSummary",
    "RowError",
    "RunResult",
]
