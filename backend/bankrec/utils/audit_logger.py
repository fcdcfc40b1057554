"""
Audit logging for reconciliation decisions.
"""

import threading
from typing import List, Optional

import structlog

from ..models import AuditAction, AuditEntry

logger = structlog.get_logger()


class AuditLogger:
    """
    Logger for audit trail of reconciliation decisions.
    Keeps entries in memory and mirrors each one to structlog.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.entries: List[AuditEntry] = []

    def log(self, entry: AuditEntry) -> None:
        """Add an audit entry."""
        with self._lock:
            self.entries.append(entry)

        log = logger.info if entry.success else logger.warning
        log(
            entry.message or entry.action.value,
            action=entry.action.value,
            venue_id=entry.venue_id,
            transaction_ids=entry.transaction_ids,
            entry_id=entry.entry_id,
            user_id=entry.user_id,
            success=entry.success,
        )

    def record(self, action: AuditAction, message: str = "", **kwargs) -> AuditEntry:
        """Build and log an entry in one call."""
        entry = AuditEntry(action=action, message=message, **kwargs)
        self.log(entry)
        return entry

    def get_entries(
        self,
        action_filter: Optional[AuditAction] = None,
        transaction_id: Optional[str] = None,
        success_only: bool = False,
    ) -> List[AuditEntry]:
        """Get filtered audit entries."""
        with self._lock:
            entries = list(self.entries)

        if action_filter:
            entries = [e for e in entries if e.action == action_filter]

        if transaction_id:
            entries = [e for e in entries if transaction_id in e.transaction_ids]

        if success_only:
            entries = [e for e in entries if e.success]

        return entries
