"""
Pair scoring.

score = amount term + date term + description term, each bounded by its
configured weight. Pairs outside the amount tolerance are not scored.
"""

from typing import Optional

from ..config import Settings, get_settings
from ..models import BankTransaction, JournalEntry, MatchCandidate
from ..utils import TextSimilarityEngine


class MatchScorer:
    """Scores (transaction, entry) pairs in [0, 1]."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.text_engine = TextSimilarityEngine(fuzzy_ratio=self.settings.token_fuzzy_ratio)

    def score(self, transaction: BankTransaction, entry: JournalEntry) -> Optional[MatchCandidate]:
        """
        Score one pair.

        Returns:
            MatchCandidate, or None when amount or date is incompatible
        """
        settings = self.settings
        if transaction.transaction_date is None or entry.entry_date is None:
            return None

        difference = abs(transaction.absolute_cents - entry.absolute_cents)
        if difference > settings.amount_tolerance_cents:
            return None

        days_apart = abs((transaction.transaction_date - entry.entry_date).days)
        if days_apart > settings.date_window_days:
            return None

        amount_score = settings.weight_amount

        if settings.date_window_days == 0:
            date_score = settings.weight_date
        else:
            date_score = settings.weight_date * (1 - days_apart / settings.date_window_days)

        similarity = self.text_engine.description_similarity(
            transaction.description,
            entry.description,
            entry.document_ref,
        )
        description_score = settings.weight_description * similarity

        total = min(1.0, round(amount_score + date_score + description_score, 4))

        return MatchCandidate(
            transaction_id=transaction.id,
            entry_id=entry.id,
            amount_score=round(amount_score, 4),
            date_score=round(date_score, 4),
            description_score=round(description_score, 4),
            score=total,
            amount_difference_cents=difference,
            days_apart=days_apart,
        )
