"""
Matching engine.

One run over a venue:
1. Load PENDING / UNMATCHED transactions and index the eligible entries
2. Score every compatible pair (read-only, optionally on a thread pool)
3. Keep pairs above the review threshold, best first
4. Commit greedily with per-pair conditional writes
5. Mark everything left over as UNMATCHED

Auto-matched entries are claimed through the ledger gateway before the row
is written; a failed row write releases the claim again.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Dict, List, Optional, Set

import structlog

from ..config import Settings, get_settings
from ..errors import ConflictError, InvalidStateError, NotFoundError
from ..models import (
    OPEN_STATUSES,
    AuditAction,
    BankTransaction,
    MatchCandidate,
    ReconciliationStatus,
    RunResult,
    utcnow,
)
from ..storage import InMemoryTransactionStore, LedgerGateway
from ..utils import AuditLogger
from .candidate_index import CandidateIndex
from .scoring import MatchScorer

logger = structlog.get_logger()

# Row writes that mean "someone else got there first"
CONCURRENT_WRITE_ERRORS = (ConflictError, InvalidStateError, NotFoundError)


class MatchingEngine:
    """
    Greedy one-to-one matcher between bank transactions and journal entries.

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
        self.scorer = MatchScorer(self.settings)

    def run(self, venue_id: str, now: Optional[datetime] = None) -> RunResult:
        """
        Execute one reconciliation run for a venue.

        Args:
            venue_id: Venue to reconcile
            now: Reconciliation timestamp for auto-matches (defaults to now)

        Returns:
            RunResult counting the transitions made by this run
        """
        now = now or utcnow()
        result = RunResult(venue_id=venue_id, started_at=now)

        transactions = self.store.list(venue_id, statuses=OPEN_STATUSES)
        reserved = self.store.proposed_entry_ids(venue_id)

        logger.info(
            "Starting reconciliation run",
            venue_id=venue_id,
            transactions=len(transactions),
            reserved_entries=len(reserved),
        )
        self.audit.record(
            AuditAction.RUN_STARTED,
            f"Run started on {len(transactions)} open transactions",
            venue_id=venue_id,
        )

        if not transactions:
            result.completed_at = utcnow()
            self._log_completion(result)
            return result

        index = CandidateIndex(self.ledger, self.settings).build(
            venue_id, transactions, exclude_ids=reserved
        )

        # Phase 1: scoring
        scored = self._score_all(transactions, index)
        by_transaction: Dict[str, List[MatchCandidate]] = {}
        pairs: List[MatchCandidate] = []
        for txn, candidates in zip(transactions, scored):
            surviving = [c for c in candidates if c.score >= self.settings.review_threshold]
            by_transaction[txn.id] = surviving
            pairs.extend(surviving)
        pairs.sort(key=MatchCandidate.sort_key)

        logger.debug(
            "Scoring complete",
            venue_id=venue_id,
            pairs=len(pairs),
            entries=index.entry_count,
        )

        # Phase 2: greedy commit
        rows = {t.id: t for t in transactions}
        settled: Set[str] = set()
        taken: Set[str] = set()

        for pair in pairs:
            if pair.transaction_id in settled or pair.entry_id in taken:
                continue

            txn = rows[pair.transaction_id]
            if self._is_clear_winner(pair, by_transaction[txn.id]):
                outcome = self._commit_match(txn, pair, now, result)
            else:
                outcome = self._commit_proposal(txn, pair, result)

            taken.add(pair.entry_id)
            if outcome is not None:
                # Row committed, or changed under us and is not ours any more
                settled.add(txn.id)

        # Phase 3: leftovers
        for txn in transactions:
            if txn.id in settled or txn.status == ReconciliationStatus.UNMATCHED:
                continue
            try:
                self.store.compare_and_set(
                    txn.id,
                    txn.version,
                    status=ReconciliationStatus.UNMATCHED,
                )
            except CONCURRENT_WRITE_ERRORS as e:
                result.conflicts += 1
                logger.info("Skipped concurrently modified row", transaction_id=txn.id, error=e.message)
                continue
            result.unmatched += 1
            self.audit.record(
                AuditAction.MARKED_UNMATCHED,
                "No acceptable candidate",
                venue_id=venue_id,
                transaction_ids=[txn.id],
            )

        result.completed_at = utcnow()
        self._log_completion(result)
        return result

    def find_candidates(self, transaction: BankTransaction, limit: int = 5) -> List[MatchCandidate]:
        """
        Scored candidates for one transaction, best first.

        Read-only. Entries proposed to other transactions are left out; the
        transaction's own proposal is included.
        """
        reserved = self.store.proposed_entry_ids(transaction.venue_id)
        reserved.discard(transaction.matched_entry_id)

        index = CandidateIndex(self.ledger, self.settings).build(
            transaction.venue_id, [transaction], exclude_ids=reserved
        )
        candidates = self._score_transaction(transaction, index)
        candidates.sort(key=MatchCandidate.sort_key)
        return candidates[:limit]

    def _score_all(
        self,
        transactions: List[BankTransaction],
        index: CandidateIndex,
    ) -> List[List[MatchCandidate]]:
        workers = self.settings.scoring_workers
        if workers <= 1 or len(transactions) < 2:
            return [self._score_transaction(t, index) for t in transactions]

        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(lambda t: self._score_transaction(t, index), transactions))

    def _score_transaction(
        self,
        transaction: BankTransaction,
        index: CandidateIndex,
    ) -> List[MatchCandidate]:
        scored = []
        for entry in index.candidates_for(transaction):
            candidate = self.scorer.score(transaction, entry)
            if candidate is not None:
                scored.append(candidate)
        return scored

    def _is_clear_winner(self, pair: MatchCandidate, candidates: List[MatchCandidate]) -> bool:
        """Above the auto threshold with no rival inside the tie margin."""
        if pair.score < self.settings.auto_match_threshold:
            return False
        return not any(
            other.entry_id != pair.entry_id
            and round(pair.score - other.score, 4) <= self.settings.tie_margin
            for other in candidates
        )

    def _entry_held(self, entry_id: str) -> bool:
        """Whether any row references the entry; call under store.transaction()."""
        return bool(self.store.find_by_entry(entry_id))

    def _commit_match(
        self,
        txn: BankTransaction,
        pair: MatchCandidate,
        now: datetime,
        result: RunResult,
    ) -> Optional[BankTransaction]:
        """
        Claim the entry, then write the row.

        Returns:
            Updated row, the unchanged row when the row write lost a race,
            or None when the entry was already taken (row stays free)
        """
        with self.store.transaction():
            if self._entry_held(pair.entry_id):
                result.conflicts += 1
                self._record_conflict(txn, pair, "Entry held by another transaction")
                return None

            if not self.ledger.try_consume_entry(pair.entry_id):
                result.conflicts += 1
                self._record_conflict(txn, pair, "Entry already consumed")
                return None

            try:
                updated = self.store.compare_and_set(
                    txn.id,
                    txn.version,
                    status=ReconciliationStatus.MATCHED,
                    matched_entry_id=pair.entry_id,
                    match_confidence=pair.score,
                    reconciled_at=now,
                    reconciled_by=None,
                )
            except CONCURRENT_WRITE_ERRORS as e:
                self.ledger.release_entry(pair.entry_id)
                result.conflicts += 1
                self._record_conflict(txn, pair, e.message)
                return txn

        result.matched += 1
        self.audit.record(
            AuditAction.MATCH_COMMITTED,
            f"Auto-matched with score {pair.score:.4f}",
            venue_id=txn.venue_id,
            transaction_ids=[txn.id],
            entry_id=pair.entry_id,
            details=pair.to_dict(),
        )
        return updated

    def _commit_proposal(
        self,
        txn: BankTransaction,
        pair: MatchCandidate,
        result: RunResult,
    ) -> Optional[BankTransaction]:
        with self.store.transaction():
            # Another run may have proposed or matched the entry since our read
            if self._entry_held(pair.entry_id):
                result.conflicts += 1
                self._record_conflict(txn, pair, "Entry held by another transaction")
                return None

            try:
                updated = self.store.compare_and_set(
                    txn.id,
                    txn.version,
                    status=ReconciliationStatus.TO_REVIEW,
                    matched_entry_id=pair.entry_id,
                    match_confidence=pair.score,
                )
            except CONCURRENT_WRITE_ERRORS as e:
                result.conflicts += 1
                self._record_conflict(txn, pair, e.message)
                return txn

        result.to_review += 1
        self.audit.record(
            AuditAction.MATCH_PROPOSED,
            f"Proposed with score {pair.score:.4f}",
            venue_id=txn.venue_id,
            transaction_ids=[txn.id],
            entry_id=pair.entry_id,
            details=pair.to_dict(),
        )
        return updated

    def _record_conflict(self, txn: BankTransaction, pair: MatchCandidate, reason: str) -> None:
        self.audit.record(
            AuditAction.COMMIT_CONFLICT,
            "Pair skipped",
            venue_id=txn.venue_id,
            transaction_ids=[txn.id],
            entry_id=pair.entry_id,
            success=False,
            error_message=reason,
        )

    def _log_completion(self, result: RunResult) -> None:
        stats = {
            "matched": result.matched,
            "to_review": result.to_review,
            "unmatched": result.unmatched,
            "conflicts": result.conflicts,
        }
        self.audit.record(
            AuditAction.RUN_COMPLETED,
            "Run completed",
            venue_id=result.venue_id,
            details=stats,
        )
        logger.info("Reconciliation run complete", venue_id=result.venue_id, **stats)
