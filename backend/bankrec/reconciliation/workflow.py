"""
Human match workflow.

Every operation reads the row, checks the source status, optionally claims
or releases one journal entry and writes the row with a version check. A
row write that fails after a claim releases the claim before re-raising.
"""

from typing import FrozenSet, Optional

import structlog

from ..config import Settings, get_settings
from ..errors import ConflictError, InvalidStateError, NotFoundError, ReconciliationError, ValidationError
from ..models import (
    AuditAction,
    BankTransaction,
    ReconciliationStatus,
    RegisterType,
    utcnow,
)
from ..storage import InMemoryTransactionStore, LedgerGateway
from ..utils import AuditLogger

logger = structlog.get_logger()

MATCHABLE: FrozenSet[ReconciliationStatus] = frozenset({
    ReconciliationStatus.PENDING,
    ReconciliationStatus.TO_REVIEW,
    ReconciliationStatus.UNMATCHED,
})
RECONCILED: FrozenSet[ReconciliationStatus] = frozenset({
    ReconciliationStatus.MATCHED,
    ReconciliationStatus.MANUAL,
})


class MatchWorkflow:
    """
    State machine operations on single transactions.

    Args:
        store: Transaction store
        ledger: Ledger gateway
        audit: Audit trail
        settings: Optional settings override
    """

    def __init__(
        self,
        store: InMemoryTransactionStore,
        ledger: LedgerGateway,
        audit: Optional[AuditLogger] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.ledger = ledger
        self.audit = audit or AuditLogger()

    def confirm(self, transaction_id: str, user_id: Optional[str] = None) -> BankTransaction:
        """
        Accept the stored proposal.

        Raises:
            InvalidStateError: the row is not TO_REVIEW
            ConflictError: the proposed entry was consumed in the meantime
        """
        txn = self.store.get(transaction_id)
        self._require(txn, frozenset({ReconciliationStatus.TO_REVIEW}), "confirm")

        entry_id = txn.matched_entry_id
        self._claim(txn, entry_id)
        updated = self._write_claimed(
            txn,
            entry_id,
            status=ReconciliationStatus.MATCHED,
            reconciled_at=utcnow(),
            reconciled_by=user_id,
        )

        self.audit.record(
            AuditAction.MATCH_CONFIRMED,
            "Proposal confirmed",
            venue_id=txn.venue_id,
            transaction_ids=[txn.id],
            entry_id=entry_id,
            user_id=user_id,
            details={"confidence": txn.match_confidence},
        )
        return updated

    def manual_match(
        self,
        transaction_id: str,
        entry_id: str,
        user_id: Optional[str] = None,
    ) -> BankTransaction:
        """
        Pair a transaction with an entry chosen by hand.

        Raises:
            InvalidStateError: the row is already reconciled or ignored
            NotFoundError: unknown entry
            ValidationError: the entry belongs to another venue or register
            ConflictError: the entry is already consumed
        """
        txn = self.store.get(transaction_id)
        self._require(txn, MATCHABLE, "manual_match")

        entry = self.ledger.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(f"Journal entry not found: {entry_id}", entry_id=entry_id)
        if entry.venue_id != txn.venue_id:
            raise ValidationError(
                "Journal entry belongs to another venue",
                field="entry_id",
                value=entry_id,
            )
        if entry.register_type != RegisterType.BANK:
            raise ValidationError(
                f"Journal entry is on the {entry.register_type.value} register",
                field="entry_id",
                value=entry_id,
            )

        self._claim(txn, entry_id)
        updated = self._write_claimed(
            txn,
            entry_id,
            status=ReconciliationStatus.MANUAL,
            matched_entry_id=entry_id,
            match_confidence=None,
            reconciled_at=utcnow(),
            reconciled_by=user_id,
        )

        self.audit.record(
            AuditAction.MANUAL_MATCH,
            "Manually matched",
            venue_id=txn.venue_id,
            transaction_ids=[txn.id],
            entry_id=entry_id,
            user_id=user_id,
            details={"previous_status": txn.status.value},
        )
        return updated

    def unmatch(self, transaction_id: str, user_id: Optional[str] = None) -> BankTransaction:
        """
        Undo a pairing and return the entry to the candidate pool.

        Raises:
            InvalidStateError: the row is not MATCHED or MANUAL
        """
        with self.store.transaction():
            txn = self.store.get(transaction_id)
            self._require(txn, RECONCILED, "unmatch")

            entry_id = txn.matched_entry_id
            updated = self.store.compare_and_set(
                txn.id,
                txn.version,
                status=ReconciliationStatus.UNMATCHED,
                matched_entry_id=None,
                match_confidence=None,
                reconciled_at=None,
                reconciled_by=None,
            )
            self.ledger.release_entry(entry_id)

        self.audit.record(
            AuditAction.MATCH_REMOVED,
            "Match removed",
            venue_id=txn.venue_id,
            transaction_ids=[txn.id],
            entry_id=entry_id,
            user_id=user_id,
            details={"previous_status": txn.status.value},
        )
        return updated

    def ignore(self, transaction_id: str, user_id: Optional[str] = None) -> BankTransaction:
        """
        Dismiss a transaction for good.

        Raises:
            InvalidStateError: the row is reconciled (unmatch first) or already ignored
        """
        txn = self.store.get(transaction_id)
        self._require(txn, MATCHABLE, "ignore")

        updated = self.store.compare_and_set(
            txn.id,
            txn.version,
            status=ReconciliationStatus.IGNORED,
            matched_entry_id=None,
            match_confidence=None,
            reconciled_at=utcnow(),
            reconciled_by=user_id,
        )

        self.audit.record(
            AuditAction.TRANSACTION_IGNORED,
            "Transaction ignored",
            venue_id=txn.venue_id,
            transaction_ids=[txn.id],
            user_id=user_id,
            details={"previous_status": txn.status.value},
        )
        return updated

    def reject_proposal(self, transaction_id: str, user_id: Optional[str] = None) -> BankTransaction:
        """
        Drop the stored proposal; the entry is never proposed again for this row.

        Raises:
            InvalidStateError: the row is not TO_REVIEW
        """
        txn = self.store.get(transaction_id)
        self._require(txn, frozenset({ReconciliationStatus.TO_REVIEW}), "reject_proposal")

        entry_id = txn.matched_entry_id
        updated = self.store.compare_and_set(
            txn.id,
            txn.version,
            status=ReconciliationStatus.UNMATCHED,
            matched_entry_id=None,
            match_confidence=None,
            rejected_entry_ids=txn.rejected_entry_ids + [entry_id],
        )

        self.audit.record(
            AuditAction.PROPOSAL_REJECTED,
            "Proposal rejected",
            venue_id=txn.venue_id,
            transaction_ids=[txn.id],
            entry_id=entry_id,
            user_id=user_id,
            details={"confidence": txn.match_confidence},
        )
        return updated

    def _require(
        self,
        txn: BankTransaction,
        allowed: FrozenSet[ReconciliationStatus],
        operation: str,
    ) -> None:
        if txn.status not in allowed:
            raise InvalidStateError(
                f"Cannot {operation} a {txn.status.value} transaction",
                transaction_id=txn.id,
                status=txn.status.value,
                operation=operation,
            )

    def _claim(self, txn: BankTransaction, entry_id: str) -> None:
        if not self.ledger.try_consume_entry(entry_id):
            logger.info("Entry claim refused", transaction_id=txn.id, entry_id=entry_id)
            raise ConflictError(
                "Journal entry is already consumed",
                transaction_id=txn.id,
                entry_id=entry_id,
            )

    def _write_claimed(self, txn: BankTransaction, entry_id: str, **changes) -> BankTransaction:
        try:
            return self.store.compare_and_set(txn.id, txn.version, **changes)
        except ReconciliationError:
            self.ledger.release_entry(entry_id)
            raise
