"""
Tests for the human match workflow.
"""

import threading

import pytest

from bankrec.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from bankrec.models import ALLOWED_TRANSITIONS, AuditAction, ReconciliationStatus, RegisterType

VENUE = "venue-1"


def row(day, amount, description, **extra):
    return dict(transaction_date=day, amount=amount, description=description, **extra)


@pytest.fixture
def proposal(service, make_entry, import_rows):
    """A TO_REVIEW transaction proposing je-a (je-b is an equal alternative)."""
    make_entry("je-a", "2026-01-10", debit=5000, description="Canone")
    make_entry("je-b", "2026-01-10", debit=5000, description="Canone")
    (txn,) = import_rows(row("2026-01-10", "-50.00", "CANONE"))
    service.run_reconciliation(VENUE)
    txn = service.get_transaction(txn.id)
    assert txn.status == ReconciliationStatus.TO_REVIEW
    return txn


@pytest.fixture
def matched(service, make_entry, import_rows):
    """A MATCHED transaction paired with je-1."""
    make_entry("je-1", "2026-01-06", debit=15000, description="Fornitore XYZ – fattura 123")
    (txn,) = import_rows(row("2026-01-05", "-150.00", "PAGAMENTO FORNITORE XYZ"))
    service.run_reconciliation(VENUE)
    txn = service.get_transaction(txn.id)
    assert txn.status == ReconciliationStatus.MATCHED
    return txn


class TestConfirm:
    """Accepting a proposal."""

    def test_confirm(self, service, ledger, proposal, assert_pairing_invariant):
        confirmed = service.confirm(proposal.id, user_id="alice")

        assert confirmed.status == ReconciliationStatus.MATCHED
        assert confirmed.matched_entry_id == "je-a"
        assert confirmed.match_confidence == proposal.match_confidence
        assert confirmed.reconciled_by == "alice"
        assert confirmed.reconciled_at is not None
        assert ledger.is_consumed("je-a")
        assert_pairing_invariant()

    def test_confirm_requires_proposal(self, service, matched):
        with pytest.raises(InvalidStateError):
            service.confirm(matched.id)

    def test_confirm_after_entry_taken(self, service, ledger, proposal):
        assert ledger.try_consume_entry("je-a")

        with pytest.raises(ConflictError):
            service.confirm(proposal.id)

        unchanged = service.get_transaction(proposal.id)
        assert unchanged.status == ReconciliationStatus.TO_REVIEW
        assert unchanged.version == proposal.version

    def test_stale_proposal_after_manual_match(self, service, ledger, proposal, import_rows):
        (other,) = import_rows(row("2026-01-11", "-50.00", "CANONE ALTRO"))
        service.manual_match(other.id, "je-a", user_id="bob")

        with pytest.raises(ConflictError):
            service.confirm(proposal.id)
        assert service.get_transaction(other.id).matched_entry_id == "je-a"

    def test_unknown_transaction(self, service):
        with pytest.raises(NotFoundError):
            service.confirm("missing")


class TestManualMatch:
    """Pairing by hand."""

    def test_manual_match_from_proposal(self, service, ledger, proposal):
        updated = service.manual_match(proposal.id, "je-b", user_id="alice")

        assert updated.status == ReconciliationStatus.MANUAL
        assert updated.matched_entry_id == "je-b"
        assert updated.match_confidence is None
        assert updated.reconciled_by == "alice"
        assert ledger.is_consumed("je-b")
        assert not ledger.is_consumed("je-a")

    def test_manual_match_from_pending(self, service, make_entry, import_rows):
        make_entry("je-x", "2026-03-01", credit=999, description="Unrelated")
        (txn,) = import_rows(row("2026-01-10", "-12.34", "COMMISSIONI"))

        updated = service.manual_match(txn.id, "je-x")

        assert updated.status == ReconciliationStatus.MANUAL

    def test_consumed_entry(self, service, ledger, matched, import_rows):
        (txn,) = import_rows(row("2026-01-07", "-150.00", "ALTRO PAGAMENTO"))

        with pytest.raises(ConflictError):
            service.manual_match(txn.id, "je-1")
        assert service.get_transaction(txn.id).status == ReconciliationStatus.PENDING

    def test_reconciled_row_rejected(self, service, make_entry, matched):
        make_entry("je-2", "2026-01-06", debit=15000)
        with pytest.raises(InvalidStateError):
            service.manual_match(matched.id, "je-2")

    def test_entry_validation(self, service, make_entry, import_rows):
        make_entry("je-other", "2026-01-10", debit=5000, venue_id="venue-2")
        make_entry("je-cash", "2026-01-10", debit=5000, register_type=RegisterType.CASH)
        (txn,) = import_rows(row("2026-01-10", "-50.00", "CANONE"))

        with pytest.raises(ValidationError):
            service.manual_match(txn.id, "je-other")
        with pytest.raises(ValidationError):
            service.manual_match(txn.id, "je-cash")
        with pytest.raises(NotFoundError):
            service.manual_match(txn.id, "je-missing")

    def test_failed_write_releases_claim(self, service, ledger, monkeypatch, proposal):
        def collide(*args, **kwargs):
            raise ConflictError("Transaction was modified concurrently")

        monkeypatch.setattr(service.store, "compare_and_set", collide)

        with pytest.raises(ConflictError):
            service.manual_match(proposal.id, "je-b")
        assert not ledger.is_consumed("je-b")

    def test_racing_manual_matches(self, service, ledger, make_entry, import_rows,
                                   assert_pairing_invariant):
        make_entry("je-1", "2026-01-10", debit=5000, description="Canone")
        first, second = import_rows(
            row("2026-01-10", "-50.00", "CANONE UNO"),
            row("2026-01-10", "-50.00", "CANONE DUE"),
        )
        barrier = threading.Barrier(2)
        outcomes = []

        def attempt(txn_id, user):
            barrier.wait()
            try:
                service.manual_match(txn_id, "je-1", user_id=user)
                outcomes.append("ok")
            except ConflictError:
                outcomes.append("conflict")

        threads = [
            threading.Thread(target=attempt, args=(first.id, "alice")),
            threading.Thread(target=attempt, args=(second.id, "bob")),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["conflict", "ok"]
        assert len(ledger.consumed_ids()) == 1
        assert_pairing_invariant()


class TestUnmatch:
    """Undoing a pairing."""

    def test_round_trip(self, service, ledger, matched, assert_pairing_invariant):
        undone = service.unmatch(matched.id, user_id="alice")

        assert undone.status == ReconciliationStatus.UNMATCHED
        assert undone.matched_entry_id is None
        assert undone.match_confidence is None
        assert undone.reconciled_at is None
        assert not ledger.is_consumed("je-1")

        result = service.run_reconciliation(VENUE)

        assert result.matched == 1
        again = service.get_transaction(matched.id)
        assert again.status == ReconciliationStatus.MATCHED
        assert again.matched_entry_id == "je-1"
        assert_pairing_invariant()

    def test_confirm_then_unmatch(self, service, ledger, proposal):
        service.confirm(proposal.id)
        undone = service.unmatch(proposal.id)

        assert undone.status == ReconciliationStatus.UNMATCHED
        assert undone.matched_entry_id is None
        assert not ledger.is_consumed("je-a")

    def test_unmatch_requires_pairing(self, service, proposal):
        with pytest.raises(InvalidStateError):
            service.unmatch(proposal.id)


class TestIgnore:
    """Dismissing transactions."""

    def test_ignore_clears_proposal(self, service, ledger, proposal):
        ignored = service.ignore(proposal.id, user_id="alice")

        assert ignored.status == ReconciliationStatus.IGNORED
        assert ignored.matched_entry_id is None
        assert ignored.match_confidence is None
        assert ignored.reconciled_by == "alice"
        assert ledger.consumed_ids() == set()

    def test_ignore_requires_unmatch_first(self, service, matched):
        with pytest.raises(InvalidStateError):
            service.ignore(matched.id)

    def test_ignored_is_terminal(self, service, proposal):
        service.ignore(proposal.id)
        with pytest.raises(InvalidStateError):
            service.ignore(proposal.id)
        with pytest.raises(InvalidStateError):
            service.manual_match(proposal.id, "je-b")
        assert ALLOWED_TRANSITIONS[ReconciliationStatus.IGNORED] == frozenset()


class TestRejectProposal:
    """Rejecting a proposal."""

    def test_reject(self, service, ledger, proposal):
        rejected = service.reject_proposal(proposal.id, user_id="alice")

        assert rejected.status == ReconciliationStatus.UNMATCHED
        assert rejected.matched_entry_id is None
        assert rejected.rejected_entry_ids == ["je-a"]
        assert not ledger.is_consumed("je-a")

        entries = service.audit.get_entries(action_filter=AuditAction.PROPOSAL_REJECTED)
        assert entries[0].user_id == "alice"
        assert entries[0].entry_id == "je-a"

    def test_reject_requires_proposal(self, service, matched):
        with pytest.raises(InvalidStateError):
            service.reject_proposal(matched.id)


class TestStoreGuards:
    """Conditional writes at the store level."""

    def test_stale_version(self, store, proposal):
        store.compare_and_set(proposal.id, proposal.version, match_confidence=0.7)

        with pytest.raises(ConflictError):
            store.compare_and_set(proposal.id, proposal.version, match_confidence=0.8)

    def test_illegal_transition(self, store, matched):
        with pytest.raises(InvalidStateError):
            store.compare_and_set(matched.id, matched.version, status=ReconciliationStatus.PENDING)

    def test_inconsistent_write(self, store, proposal):
        with pytest.raises(InvalidStateError):
            store.compare_and_set(
                proposal.id,
                proposal.version,
                status=ReconciliationStatus.UNMATCHED,
            )
        assert store.get(proposal.id).status == ReconciliationStatus.TO_REVIEW
