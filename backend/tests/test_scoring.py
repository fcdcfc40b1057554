"""
Tests for pair scoring.
"""

from datetime import date

import pytest

from bankrec.config import Settings
from bankrec.models import BankTransaction, JournalEntry
from bankrec.reconciliation.scoring import MatchScorer


def _txn(amount_cents=-15000, day=date(2026, 1, 5), description="PAGAMENTO FORNITORE XYZ"):
    return BankTransaction(
        id="tx-1",
        venue_id="venue-1",
        transaction_date=day,
        amount_cents=amount_cents,
        description=description,
    )


def _entry(debit=15000, credit=None, day=date(2026, 1, 6),
           description="Fornitore XYZ – fattura 123", document_ref=None):
    return JournalEntry(
        id="je-1",
        venue_id="venue-1",
        entry_date=day,
        debit_cents=debit,
        credit_cents=credit,
        description=description,
        document_ref=document_ref,
    )


@pytest.fixture
def scorer(settings):
    return MatchScorer(settings)


class TestMatchScorer:
    """Test suite for the weighted score."""

    def test_supplier_payment_example(self, scorer):
        """Outgoing 150.00 one day before a 150.00 ledger line scores above auto-match."""
        candidate = scorer.score(_txn(), _entry())

        assert candidate is not None
        assert candidate.amount_score == pytest.approx(0.60)
        assert candidate.date_score == pytest.approx(0.225)
        assert candidate.description_score == pytest.approx(0.10, abs=1e-4)
        assert candidate.score == pytest.approx(0.925, abs=1e-4)
        assert candidate.score >= 0.9
        assert candidate.days_apart == 1
        assert candidate.amount_difference_cents == 0

    def test_amount_outside_tolerance_not_scored(self, scorer):
        assert scorer.score(_txn(), _entry(debit=15002)) is None

    def test_amount_within_tolerance(self, scorer):
        candidate = scorer.score(_txn(), _entry(debit=15001))
        assert candidate is not None
        assert candidate.amount_difference_cents == 1
        assert candidate.amount_score == pytest.approx(0.60)

    def test_credit_entry_compares_absolute_value(self, scorer):
        candidate = scorer.score(_txn(), _entry(debit=None, credit=15000))
        assert candidate is not None

    def test_date_term_reaches_zero_at_window_edge(self, scorer):
        candidate = scorer.score(_txn(), _entry(day=date(2026, 1, 15)))
        assert candidate is not None
        assert candidate.date_score == 0.0

    def test_outside_window_not_scored(self, scorer):
        assert scorer.score(_txn(), _entry(day=date(2026, 1, 16))) is None

    def test_zero_window_same_day(self):
        scorer = MatchScorer(Settings(_env_file=None, date_window_days=0))
        candidate = scorer.score(_txn(), _entry(day=date(2026, 1, 5)))
        assert candidate.date_score == pytest.approx(0.25)
        assert scorer.score(_txn(), _entry(day=date(2026, 1, 6))) is None

    def test_perfect_pair_capped_at_one(self, scorer):
        candidate = scorer.score(
            _txn(description="Fornitore Rossi"),
            _entry(day=date(2026, 1, 5), description="fornitore rossi"),
        )
        assert candidate.score == 1.0

    def test_document_reference_bonus(self, scorer):
        candidate = scorer.score(
            _txn(description="BONIFICO FT-2024/123"),
            _entry(day=date(2026, 1, 5), description="Acquisto merce", document_ref="FT 2024/123"),
        )
        assert candidate.description_score == pytest.approx(0.15)

    def test_unrelated_description_scores_amount_and_date_only(self, scorer):
        candidate = scorer.score(
            _txn(description="COMMISSIONI"),
            _entry(day=date(2026, 1, 5), description="Incasso POS"),
        )
        assert candidate.score == pytest.approx(0.85)

    def test_custom_weights(self):
        settings = Settings(
            _env_file=None,
            weight_amount=0.5,
            weight_date=0.3,
            weight_description=0.2,
        )
        candidate = MatchScorer(settings).score(_txn(), _entry(day=date(2026, 1, 5)))
        assert candidate.score == pytest.approx(0.5 + 0.3 + 0.2 * 2 / 3, abs=1e-4)
