"""
Summary aggregator.

Read-only rollup of a venue's reconciliation state for dashboards.
"""

from datetime import date
from typing import Optional

import structlog

from ..config import Settings, get_settings
from ..models import (
    AgingAlert,
    ReconciliationStatus,
    ReconciliationSummary,
    utcnow,
)
from ..storage import InMemoryTransactionStore

logger = structlog.get_logger()


class SummaryAggregator:
    """Computes ReconciliationSummary views without touching any row."""

    def __init__(self, store: InMemoryTransactionStore, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.store = store

    def summarize(
        self,
        venue_id: str,
        as_of: Optional[date] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> ReconciliationSummary:
        """
        Summarize a venue.

        Args:
            venue_id: Venue to summarize
            as_of: Reference date for aging (defaults to today, UTC)
            date_from: Only rows on or after this transaction date
            date_to: Only rows on or before this transaction date

        Returns:
            ReconciliationSummary
        """
        as_of = as_of or utcnow().date()
        rows = [
            t for t in self.store.list(venue_id)
            if (date_from is None or t.transaction_date >= date_from)
            and (date_to is None or t.transaction_date <= date_to)
        ]

        summary = ReconciliationSummary(
            venue_id=venue_id,
            counts_by_status={s.value: 0 for s in ReconciliationStatus},
        )

        latest_balance = None
        for txn in rows:
            summary.counts_by_status[txn.status.value] += 1
            summary.total_imported_cents += txn.absolute_cents
            if txn.status.is_reconciled:
                summary.total_matched_cents += txn.absolute_cents

            if txn.balance_after_cents is not None:
                key = (txn.transaction_date, txn.imported_at)
                if latest_balance is None or key >= latest_balance[0]:
                    latest_balance = (key, txn.balance_after_cents)

            if txn.status.is_unresolved:
                age_days = (as_of - txn.transaction_date).days
                if age_days > self.settings.aging_alert_days:
                    summary.aging_alerts.append(AgingAlert(
                        transaction_id=txn.id,
                        transaction_date=txn.transaction_date,
                        amount_cents=txn.amount_cents,
                        description=txn.description,
                        status=txn.status,
                        age_days=age_days,
                    ))

        if latest_balance is not None:
            summary.bank_balance_cents = latest_balance[1]
        summary.aging_alerts.sort(key=lambda a: (-a.age_days, a.transaction_id))

        logger.debug(
            "Summary computed",
            venue_id=venue_id,
            transactions=summary.total_transactions,
            percent_reconciled=summary.percent_reconciled,
            aging_alerts=len(summary.aging_alerts),
        )
        return summary
