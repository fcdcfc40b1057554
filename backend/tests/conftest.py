"""
Shared fixtures for the reconciliation test suite.
"""

from collections import Counter
from datetime import date

import pytest

from bankrec.config import Settings
from bankrec.models import JournalEntry, ReconciliationStatus, RegisterType
from bankrec.reconciliation import ReconciliationService
from bankrec.storage import InMemoryLedger, InMemoryTransactionStore

VENUE = "venue-1"


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def store():
    return InMemoryTransactionStore()


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def service(store, ledger, settings):
    return ReconciliationService(store=store, ledger=ledger, settings=settings)


@pytest.fixture
def make_entry(ledger):
    """Add a journal entry to the ledger."""
    def _make(
        entry_id,
        entry_date,
        debit=None,
        credit=None,
        description="",
        document_ref=None,
        venue_id=VENUE,
        register_type=RegisterType.BANK,
    ):
        if isinstance(entry_date, str):
            entry_date = date.fromisoformat(entry_date)
        return ledger.add_entry(JournalEntry(
            id=entry_id,
            venue_id=venue_id,
            entry_date=entry_date,
            debit_cents=debit,
            credit_cents=credit,
            description=description,
            document_ref=document_ref,
            register_type=register_type,
        ))
    return _make


@pytest.fixture
def import_rows(service):
    """
    Import raw rows for the test venue.
    Returns the stored transactions in row order (rows need distinct
    description / reference pairs).
    """
    def _import(*rows, venue_id=VENUE):
        result = service.import_batch(venue_id, "CSV", list(rows))
        assert not result.errors, result.errors
        stored = service.store.list(venue_id)
        return [
            next(
                t for t in stored
                if t.description == row["description"]
                and t.bank_reference == row.get("reference")
            )
            for row in rows
        ]
    return _import


@pytest.fixture
def assert_pairing_invariant(store):
    """No entry is referenced by two reconciled transactions, and every row is consistent."""
    def _check(venue_id=VENUE):
        rows = store.list(venue_id)
        assert all(t.is_consistent() for t in rows)
        confirmed = Counter(
            t.matched_entry_id for t in rows
            if t.status in (ReconciliationStatus.MATCHED, ReconciliationStatus.MANUAL)
        )
        assert all(count == 1 for count in confirmed.values()), confirmed
    return _check
