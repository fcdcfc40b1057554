"""
Tests for the HTTP API.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from bankrec.main import app, get_service

VENUE = "venue-1"

ROWS = [
    {"transaction_date": "2026-01-05", "amount": "-150.00", "description": "PAGAMENTO FORNITORE XYZ"},
    {"transaction_date": "2026-01-10", "amount": "-50.00", "description": "CANONE"},
]


@pytest.fixture
def client(service):
    app.dependency_overrides[get_service] = lambda: service
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def seeded(client, make_entry):
    """Entries for both rows; the 50.00 row gets two equal candidates."""
    make_entry("je-1", "2026-01-06", debit=15000, description="Fornitore XYZ – fattura 123")
    make_entry("je-a", "2026-01-10", debit=5000, description="Canone")
    make_entry("je-b", "2026-01-10", debit=5000, description="Canone")
    response = client.post(f"/api/venues/{VENUE}/imports", json={"source": "CSV", "rows": ROWS})
    assert response.status_code == 200
    return client


def _by_description(client, description):
    rows = client.get(f"/api/venues/{VENUE}/transactions").json()
    return next(r for r in rows if r["description"] == description)


class TestApi:
    """Endpoint behaviour and error mapping."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_import_and_dedup(self, client):
        first = client.post(f"/api/venues/{VENUE}/imports", json={"source": "CSV", "rows": ROWS})
        second = client.post(f"/api/venues/{VENUE}/imports", json={"source": "CSV", "rows": ROWS})

        assert first.json()["imported"] == 2
        body = second.json()
        assert body["imported"] == 0
        assert body["duplicates_skipped"] == 2
        assert body["replay_of_batch_id"] == first.json()["batch_id"]

    def test_import_row_errors(self, client):
        response = client.post(
            f"/api/venues/{VENUE}/imports",
            json={"source": "CSV", "rows": [ROWS[0], {"amount": "1"}]},
        )
        body = response.json()
        assert response.status_code == 200
        assert body["imported"] == 1
        assert body["errors"][0]["row"] == 1
        assert body["errors"][0]["kind"] == "parse"

    def test_unknown_source_is_422(self, client):
        response = client.post(f"/api/venues/{VENUE}/imports", json={"source": "FAX", "rows": ROWS})
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_csv_import(self, client):
        content = "Data;Valuta;Importo;Descrizione\n05/01/26;05/01/26;-1.234,56;BONIFICO\n"
        response = client.post(
            f"/api/venues/{VENUE}/imports/csv",
            json={"content": content, "filename": "relax.csv"},
        )
        assert response.status_code == 200
        assert response.json()["imported"] == 1

        rows = client.get(f"/api/venues/{VENUE}/transactions").json()
        assert rows[0]["amount_cents"] == -123456

    def test_empty_csv_is_400(self, client):
        response = client.post(f"/api/venues/{VENUE}/imports/csv", json={"content": ""})
        assert response.status_code == 400
        assert response.json()["code"] == "PARSE_ERROR"

    def test_run_and_summary(self, seeded):
        run = seeded.post(f"/api/venues/{VENUE}/reconciliation/run")
        assert run.status_code == 200
        body = run.json()
        assert (body["matched"], body["to_review"], body["unmatched"]) == (1, 1, 0)

        summary = seeded.get(f"/api/venues/{VENUE}/reconciliation/summary").json()
        assert summary["counts_by_status"]["MATCHED"] == 1
        assert summary["counts_by_status"]["TO_REVIEW"] == 1
        assert summary["percent_reconciled"] == 75.0

        again = seeded.post(f"/api/venues/{VENUE}/reconciliation/run").json()
        assert (again["matched"], again["to_review"], again["unmatched"]) == (0, 0, 0)

    def test_list_filters(self, seeded):
        seeded.post(f"/api/venues/{VENUE}/reconciliation/run")

        review = seeded.get(f"/api/venues/{VENUE}/transactions", params={"status": "TO_REVIEW"})
        assert [r["description"] for r in review.json()] == ["CANONE"]

        both = seeded.get(f"/api/venues/{VENUE}/transactions", params={"status": "TO_REVIEW,MATCHED"})
        assert len(both.json()) == 2

        too_many = seeded.get(f"/api/venues/{VENUE}/transactions", params={"limit": 500})
        assert too_many.status_code == 422
        assert too_many.json()["details"]["field"] == "limit"

    def test_review_workflow(self, seeded):
        seeded.post(f"/api/venues/{VENUE}/reconciliation/run")
        canone = _by_description(seeded, "CANONE")

        detail = seeded.get(f"/api/transactions/{canone['id']}").json()
        assert detail["transaction"]["status"] == "TO_REVIEW"
        assert {c["entry_id"] for c in detail["candidates"]} == {"je-a", "je-b"}

        confirmed = seeded.post(
            f"/api/transactions/{canone['id']}/confirm",
            headers={"X-User-Id": "alice"},
        )
        assert confirmed.status_code == 200
        assert confirmed.json()["status"] == "MATCHED"
        assert confirmed.json()["reconciled_by"] == "alice"

        again = seeded.post(f"/api/transactions/{canone['id']}/confirm")
        assert again.status_code == 409
        assert again.json()["code"] == "INVALID_STATE"

        undone = seeded.post(f"/api/transactions/{canone['id']}/unmatch")
        assert undone.json()["status"] == "UNMATCHED"

        manual = seeded.post(f"/api/transactions/{canone['id']}/match", json={"entry_id": "je-b"})
        assert manual.json()["status"] == "MANUAL"
        assert manual.json()["matched_entry_id"] == "je-b"

    def test_reject_and_ignore(self, seeded):
        seeded.post(f"/api/venues/{VENUE}/reconciliation/run")
        canone = _by_description(seeded, "CANONE")

        rejected = seeded.post(f"/api/transactions/{canone['id']}/reject")
        assert rejected.json()["status"] == "UNMATCHED"

        ignored = seeded.post(f"/api/transactions/{canone['id']}/ignore")
        assert ignored.json()["status"] == "IGNORED"

    def test_conflict_is_409(self, seeded, ledger):
        seeded.post(f"/api/venues/{VENUE}/reconciliation/run")
        canone = _by_description(seeded, "CANONE")
        ledger.try_consume_entry("je-a")

        response = seeded.post(f"/api/transactions/{canone['id']}/confirm")
        assert response.status_code == 409
        assert response.json()["code"] == "CONFLICT"

    def test_unknown_transaction_is_404(self, client):
        response = client.get("/api/transactions/missing")
        assert response.status_code == 404
        assert response.json() == {
            "error": "Bank transaction not found: missing",
            "code": "NOT_FOUND",
            "details": {"transaction_id": "missing"},
        }


@pytest.mark.asyncio
async def test_async_client_run(service, make_entry):
    """The app served through httpx's ASGI transport."""
    app.dependency_overrides[get_service] = lambda: service
    make_entry("je-1", "2026-01-06", debit=15000, description="Fornitore XYZ")
    try:
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            imported = await client.post(
                f"/api/venues/{VENUE}/imports",
                json={"source": "CSV", "rows": ROWS[:1]},
            )
            assert imported.json()["imported"] == 1

            run = await client.post(f"/api/venues/{VENUE}/reconciliation/run")
            assert run.json()["matched"] == 1
    finally:
        app.dependency_overrides.clear()
