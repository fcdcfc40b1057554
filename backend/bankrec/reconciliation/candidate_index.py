"""
Candidate index.

Loads the venue's unpaired BANK register entries once per run and answers
"which entries could pair with this transaction" by amount bucket and date
window, so the engine never scans the full ledger per transaction.
"""

from collections import defaultdict
from datetime import timedelta
from typing import Dict, Iterable, List, Optional, Set

import structlog

from ..config import Settings, get_settings
from ..models import BankTransaction, JournalEntry, RegisterType
from ..storage import LedgerGateway

logger = structlog.get_logger()


class CandidateIndex:
    """
    Amount-bucketed index of eligible journal entries.

    Args:
        ledger: Ledger gateway
        settings: Optional settings override
    """

    def __init__(self, ledger: LedgerGateway, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.ledger = ledger
        self.window_days = self.settings.date_window_days
        self.tolerance_cents = self.settings.amount_tolerance_cents
        self.strict_sign = self.settings.strict_sign_match
        self._by_amount: Dict[int, List[JournalEntry]] = defaultdict(list)
        self.entry_count = 0

    def build(
        self,
        venue_id: str,
        transactions: Iterable[BankTransaction],
        exclude_ids: Optional[Set[str]] = None,
    ) -> "CandidateIndex":
        """
        Load entries covering every transaction's date window.

        Args:
            venue_id: Venue being reconciled
            transactions: Transactions the index will be queried for
            exclude_ids: Entry ids that must not be offered (reserved proposals)

        Returns:
            self
        """
        self._by_amount = defaultdict(list)
        self.entry_count = 0
        exclude_ids = exclude_ids or set()

        dates = [t.transaction_date for t in transactions if t.transaction_date is not None]
        if not dates:
            return self

        window = timedelta(days=self.window_days)
        entries = self.ledger.find_candidate_entries(
            venue_id,
            min(dates) - window,
            max(dates) + window,
            exclude_consumed=True,
        )

        for entry in entries:
            if entry.venue_id != venue_id or entry.register_type != RegisterType.BANK:
                continue
            if entry.id in exclude_ids or entry.absolute_cents == 0:
                continue
            self._by_amount[entry.absolute_cents].append(entry)
            self.entry_count += 1

        logger.debug(
            "Candidate index built",
            venue_id=venue_id,
            entries=self.entry_count,
            buckets=len(self._by_amount),
            excluded=len(exclude_ids),
        )
        return self

    def candidates_for(self, transaction: BankTransaction) -> List[JournalEntry]:
        """Entries compatible with a transaction by amount, date and sign, ordered by id."""
        if transaction.transaction_date is None or transaction.amount_cents == 0:
            return []

        rejected = set(transaction.rejected_entry_ids)
        amount = transaction.absolute_cents
        found = []

        for bucket in range(amount - self.tolerance_cents, amount + self.tolerance_cents + 1):
            for entry in self._by_amount.get(bucket, ()):
                if entry.id in rejected:
                    continue
                if abs((entry.entry_date - transaction.transaction_date).days) > self.window_days:
                    continue
                if self.strict_sign and not self._signs_agree(transaction, entry):
                    continue
                found.append(entry)

        found.sort(key=lambda e: e.id)
        return found

    def _signs_agree(self, transaction: BankTransaction, entry: JournalEntry) -> bool:
        # Incoming money is booked as a debit on the bank register
        if transaction.amount_cents > 0:
            return entry.signed_cents > 0
        return entry.signed_cents < 0
