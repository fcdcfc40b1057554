"""
Reconciliation service - facade over the reconciliation components.

Wires the store, the ledger gateway, the audit trail and settings into:
1. Import (raw rows or CSV content)
2. Matching runs
3. Human workflow operations
4. Summary and listing queries
"""

import time
from datetime import date
from typing import Any, Iterable, List, Optional, Sequence, Union

import structlog

from ..config import Settings, get_settings
from ..errors import ValidationError
from ..ingestion import CsvStatementReader, ImportIngestor
from ..models import (
    BankTransaction,
    ImportResult,
    ImportSource,
    MatchCandidate,
    ReconciliationStatus,
    ReconciliationSummary,
    RunResult,
)
from ..storage import InMemoryLedger, InMemoryTransactionStore, LedgerGateway
from ..utils import AuditLogger
from .engine import MatchingEngine
from .summary import SummaryAggregator
from .workflow import MatchWorkflow

logger = structlog.get_logger()

StatusFilter = Union[None, str, ReconciliationStatus, Iterable[Union[str, ReconciliationStatus]]]


def parse_status_filter(status_filter: StatusFilter) -> Optional[List[ReconciliationStatus]]:
    """Accept a status, a status name, or a collection of either."""
    if status_filter is None:
        return None
    if isinstance(status_filter, (str, ReconciliationStatus)):
        status_filter = [status_filter]

    statuses = []
    for item in status_filter:
        try:
            statuses.append(ReconciliationStatus(str(getattr(item, "value", item)).upper()))
        except ValueError:
            raise ValidationError(
                f"Unknown status: {item}",
                field="status",
                value=str(item),
            ) from None
    return statuses


class ReconciliationService:
    """
    Entry point for callers (API handlers, scripts, tests).

    Args:
        store: Transaction store (a fresh in-memory store by default)
        ledger: Ledger gateway (an empty in-memory ledger by default)
        settings: Optional settings override
    """

    def __init__(
        self,
        store: Optional[InMemoryTransactionStore] = None,
        ledger: Optional[LedgerGateway] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.store = store if store is not None else InMemoryTransactionStore()
        self.ledger = ledger if ledger is not None else InMemoryLedger()
        self.audit = AuditLogger()

        self.ingestor = ImportIngestor(self.store, self.audit, self.settings)
        self.engine = MatchingEngine(self.store, self.ledger, self.audit, self.settings)
        self.workflow = MatchWorkflow(self.store, self.ledger, self.audit, self.settings)
        self.aggregator = SummaryAggregator(self.store, self.settings)

    # Import

    def import_batch(
        self,
        venue_id: str,
        source_tag: Any,
        raw_rows: Sequence[Any],
        filename: Optional[str] = None,
        imported_by: Optional[str] = None,
    ) -> ImportResult:
        """Import raw rows. See ImportIngestor.import_batch."""
        return self.ingestor.import_batch(
            venue_id, source_tag, raw_rows, filename=filename, imported_by=imported_by
        )

    def import_csv(
        self,
        venue_id: str,
        content: Union[str, bytes],
        source_tag: Any = ImportSource.CSV,
        filename: Optional[str] = None,
        delimiter: Optional[str] = None,
        has_header: Optional[bool] = None,
        imported_by: Optional[str] = None,
    ) -> ImportResult:
        """
        Import a CSV statement export.

        Raises:
            ParseError: the content is empty or undecodable
        """
        reader = CsvStatementReader().with_options(delimiter=delimiter, has_header=has_header)
        rows = reader.read(content)
        return self.import_batch(
            venue_id, source_tag, rows, filename=filename, imported_by=imported_by
        )

    # Matching

    def run_reconciliation(self, venue_id: str) -> RunResult:
        """Run the matching engine over a venue's open transactions."""
        if not venue_id:
            raise ValidationError("venue_id is required", field="venue_id")

        start_time = time.time()
        result = self.engine.run(venue_id)
        logger.info(
            "Reconciliation finished",
            venue_id=venue_id,
            duration_seconds=round(time.time() - start_time, 3),
        )
        return result

    def find_candidates(self, transaction_id: str, limit: int = 5) -> List[MatchCandidate]:
        """Scored candidates for an unresolved transaction; empty once resolved."""
        txn = self.store.get(transaction_id)
        if not txn.status.is_unresolved:
            return []
        return self.engine.find_candidates(txn, limit=limit)

    # Workflow

    def confirm(self, transaction_id: str, user_id: Optional[str] = None) -> BankTransaction:
        return self.workflow.confirm(transaction_id, user_id=user_id)

    def manual_match(
        self,
        transaction_id: str,
        entry_id: str,
        user_id: Optional[str] = None,
    ) -> BankTransaction:
        return self.workflow.manual_match(transaction_id, entry_id, user_id=user_id)

    def unmatch(self, transaction_id: str, user_id: Optional[str] = None) -> BankTransaction:
        return self.workflow.unmatch(transaction_id, user_id=user_id)

    def ignore(self, transaction_id: str, user_id: Optional[str] = None) -> BankTransaction:
        return self.workflow.ignore(transaction_id, user_id=user_id)

    def reject_proposal(self, transaction_id: str, user_id: Optional[str] = None) -> BankTransaction:
        return self.workflow.reject_proposal(transaction_id, user_id=user_id)

    # Queries

    def get_summary(
        self,
        venue_id: str,
        as_of: Optional[date] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> ReconciliationSummary:
        if date_from and date_to and date_from > date_to:
            raise ValidationError("date_from is after date_to", field="date_from")
        return self.aggregator.summarize(
            venue_id, as_of=as_of, date_from=date_from, date_to=date_to
        )

    def list_transactions(
        self,
        venue_id: str,
        status_filter: StatusFilter = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[BankTransaction]:
        """
        List a venue's transactions ordered by date.

        Raises:
            ValidationError: limit outside 1..max_list_limit, negative
                offset or unknown status
        """
        if limit is None:
            limit = self.settings.default_list_limit
        if not 1 <= limit <= self.settings.max_list_limit:
            raise ValidationError(
                f"limit must be between 1 and {self.settings.max_list_limit}",
                field="limit",
                value=str(limit),
            )
        if offset < 0:
            raise ValidationError("offset must not be negative", field="offset", value=str(offset))

        return self.store.list(
            venue_id,
            statuses=parse_status_filter(status_filter),
            limit=limit,
            offset=offset,
        )

    def get_transaction(self, transaction_id: str) -> BankTransaction:
        return self.store.get(transaction_id)
