"""Integration tests for API endpoints"""

import pytest
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from ledger_import.domain.models import RefundMatch
from ledger_import.infrastructure.database.models import Account, BillingStatement, Category, Purchase

USER_ID = "user_test"


@pytest.fixture
def import_body(credit_card: Account, categories: dict[str, Category]) -> dict:
    """Two installments of one purchase plus a plain expense"""
    return {
        "user_id": USER_ID,
        "account_id": credit_card.id,
        "rows": [
            {
                "row_index": 0,
                "description": "Amazon Parcela 1/3",
                "amount_cents": 10000,
                "date": "2025-03-10",
                "installment": {"base_description": "Amazon", "current": 1, "total": 3},
                "external_id": "fit-1",
            },
            {
                "row_index": 1,
                "description": "Amazon Parcela 2/3",
                "amount_cents": 10000,
                "date": "2025-03-10",
                "installment": {"base_description": "Amazon", "current": 2, "total": 3},
                "external_id": "fit-2",
            },
            {
                "row_index": 2,
                "description": "Bakery",
                "amount_cents": 2500,
                "date": "2025-03-12",
                "external_id": "fit-3",
            },
        ],
    }


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "ledger_import_total" in response.text


def test_request_id_is_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_import_endpoint(client: TestClient, import_body: dict, view_invalidation: AsyncMock, db: Session):
    """Test POST /v1/imports creates the purchase and invalidates the expense views"""
    response = client.post("/v1/imports", json=import_body)

    assert response.status_code == 200
    data = response.json()
    assert data["imported_expenses"] == 3
    assert data["imported_income"] == 0
    assert data["skipped_duplicates"] == 0
    assert data["affected_months"] == ["2025-03", "2025-04"]
    assert data["stale_views"]

    view_invalidation.send_stale_views.assert_called_once_with(USER_ID, data["stale_views"])
    assert db.query(Purchase).count() == 2


def test_import_endpoint_is_idempotent(client: TestClient, import_body: dict):
    client.post("/v1/imports", json=import_body)
    response = client.post("/v1/imports", json=import_body)

    assert response.status_code == 200
    data = response.json()
    assert data["imported_expenses"] == 0
    assert data["skipped_duplicates"] == 3
    assert data["stale_views"] == []


def test_import_endpoint_with_linked_refund(
    client: TestClient,
    credit_card: Account,
    categories: dict[str, Category],
    refund_matcher: AsyncMock,
    db: Session,
):
    purchase = Purchase(
        user_id=USER_ID,
        description="Headphones",
        total_amount=30000,
        total_installments=1,
        category_id=categories["expense"].id,
    )
    db.add(purchase)
    db.commit()
    refund_matcher.match_refunds.return_value = {
        0: RefundMatch(row_index=0, matched_purchase_id=purchase.id, match_confidence="high"),
    }

    response = client.post(
        "/v1/imports",
        json={
            "user_id": USER_ID,
            "account_id": credit_card.id,
            "rows": [
                {
                    "row_index": 0,
                    "description": "Estorno Headphones",
                    "amount_cents": 30000,
                    "date": "2025-03-11",
                    "type": "income",
                }
            ],
        },
    )

    assert response.status_code == 200
    assert response.json()["imported_income"] == 1
    db.refresh(purchase)
    assert purchase.refunded_amount == 30000


def test_import_endpoint_empty_rows(client: TestClient, credit_card: Account, categories: dict[str, Category]):
    response = client.post(
        "/v1/imports",
        json={"user_id": USER_ID, "account_id": credit_card.id, "rows": []},
    )
    assert response.status_code == 400


def test_import_endpoint_unknown_account(client: TestClient, import_body: dict):
    import_body["account_id"] = 9999
    response = client.post("/v1/imports", json=import_body)
    assert response.status_code == 404


def test_import_endpoint_account_of_other_user(client: TestClient, import_body: dict):
    import_body["user_id"] = "someone_else"
    response = client.post("/v1/imports", json=import_body)
    assert response.status_code == 404


def test_import_endpoint_unknown_category(client: TestClient, import_body: dict):
    import_body["category_id"] = 9999
    response = client.post("/v1/imports", json=import_body)
    assert response.status_code == 404


def test_import_endpoint_installment_past_total(client: TestClient, import_body: dict):
    """Schema validation: installment current must not exceed total"""
    import_body["rows"][0]["installment"]["current"] = 4
    response = client.post("/v1/imports", json=import_body)
    assert response.status_code == 422


def test_import_endpoint_duplicate_row_index(client: TestClient, import_body: dict, db: Session):
    """Category overrides and refund links are keyed by row_index"""
    import_body["rows"][2]["row_index"] = 0
    response = client.post("/v1/imports", json=import_body)
    assert response.status_code == 422
    assert "duplicate row_index: 0" in response.text
    assert db.query(Purchase).count() == 0


def test_import_endpoint_override_category_type_mismatch(
    client: TestClient, import_body: dict, categories: dict[str, Category]
):
    import_body["category_overrides"] = {"2": categories["income"].id}
    response = client.post("/v1/imports", json=import_body)
    assert response.status_code == 400


def test_import_endpoint_rejects_non_positive_amount(client: TestClient, import_body: dict):
    import_body["rows"][2]["amount_cents"] = 0
    response = client.post("/v1/imports", json=import_body)
    assert response.status_code == 422


def test_import_endpoint_inverted_statement_override(client: TestClient, import_body: dict):
    import_body["statement_override"] = {"start_date": "2025-03-20", "closing_date": "2025-03-10"}
    response = client.post("/v1/imports", json=import_body)
    assert response.status_code == 400


def test_list_statements(client: TestClient, import_body: dict, credit_card: Account):
    """Test GET /v1/statements after an import"""
    client.post("/v1/imports", json=import_body)

    response = client.get(f"/v1/statements?user_id={USER_ID}&account_id={credit_card.id}")

    assert response.status_code == 200
    data = response.json()
    assert data["account_id"] == credit_card.id
    statements = {s["year_month"]: s for s in data["statements"]}
    assert list(statements) == ["2025-03", "2025-04"]
    assert statements["2025-03"]["total_amount"] == 12500
    assert statements["2025-03"]["start_date"] == "2025-02-16"
    assert statements["2025-03"]["closing_date"] == "2025-03-15"
    assert statements["2025-03"]["due_date"] == "2025-04-05"
    assert statements["2025-04"]["total_amount"] == 10000
    assert statements["2025-04"]["start_date"] == "2025-03-16"


def test_recalculate_heals_stale_total(client: TestClient, import_body: dict, credit_card: Account, db: Session):
    """Test POST /v1/statements/recalculate after an aggregate drifted"""
    client.post("/v1/imports", json=import_body)
    statement = db.query(BillingStatement).filter(BillingStatement.year_month == "2025-03").one()
    statement.total_amount = 0
    db.commit()

    response = client.post(
        "/v1/statements/recalculate",
        json={"user_id": USER_ID, "account_id": credit_card.id, "months": ["2025-03"]},
    )

    assert response.status_code == 200
    statements = {s["year_month"]: s for s in response.json()["statements"]}
    assert statements["2025-03"]["total_amount"] == 12500


def test_recalculate_all_months(client: TestClient, import_body: dict, credit_card: Account, db: Session):
    client.post("/v1/imports", json=import_body)
    db.query(BillingStatement).delete()
    db.commit()

    response = client.post(
        "/v1/statements/recalculate",
        json={"user_id": USER_ID, "account_id": credit_card.id},
    )

    assert response.status_code == 200
    totals = {s["year_month"]: s["total_amount"] for s in response.json()["statements"]}
    assert totals == {"2025-03": 12500, "2025-04": 10000}


def test_recalculate_invalid_month(client: TestClient, credit_card: Account):
    response = client.post(
        "/v1/statements/recalculate",
        json={"user_id": USER_ID, "account_id": credit_card.id, "months": ["2025-13"]},
    )
    assert response.status_code == 400


def test_recalculate_account_without_billing_cycle(client: TestClient, checking: Account):
    response = client.post(
        "/v1/statements/recalculate",
        json={"user_id": USER_ID, "account_id": checking.id},
    )
    assert response.status_code == 400


def test_recalculate_unknown_account(client: TestClient):
    response = client.post(
        "/v1/statements/recalculate",
        json={"user_id": USER_ID, "account_id": 9999},
    )
    assert response.status_code == 404
