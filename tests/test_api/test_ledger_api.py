"""
Tests for the HTTP API over an in-memory database
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from fintrack.api.deps import get_db
from fintrack.main import create_app
from fintrack.readmodels.cache import AggregationCache


@pytest.fixture
def app(db_engine):
    app = create_app(cache=AggregationCache(ttl_seconds=60), start_jobs=False)
    SessionLocal = sessionmaker(bind=db_engine, autoflush=False)

    def override_get_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
def client(app):
    """Test client for FastAPI"""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def headers(owner_id):
    return {"X-Owner-Id": str(owner_id)}


@pytest.fixture
def account(client, headers):
    response = client.post(
        "/api/v1/accounts",
        json={"name": "Main", "account_type": "Checking", "initial_balance": "1000"},
        headers=headers,
    )
    assert response.status_code == 201
    return response.json()


def test_health(client):
    assert client.get("/health").text == "ok"


def test_owner_header_required(client):
    assert client.get("/api/v1/accounts").status_code == 401
    assert client.get("/api/v1/accounts", headers={"X-Owner-Id": "0"}).status_code == 401


def test_create_account(account):
    assert account["name"] == "Main"
    assert account["currency"] == "USD"
    assert account["balance"] == "1000.00"


def test_post_expense_updates_balance(client, headers, account):
    response = client.post(
        "/api/v1/transactions",
        json={"account_id": account["id"], "transaction_type": "expense", "amount": "42.50", "date": "2024-01-15"},
        headers=headers,
    )

    assert response.status_code == 201
    assert response.json()["amount"] == "-42.50"
    balance = client.get(f"/api/v1/accounts/{account['id']}", headers=headers).json()["balance"]
    assert balance == "957.50"


def test_domain_errors_map_to_status_codes(client, headers, account):
    invalid = client.post(
        "/api/v1/transactions",
        json={"account_id": account["id"], "transaction_type": "expense", "amount": "0", "date": "2024-01-15"},
        headers=headers,
    )
    missing = client.get("/api/v1/transactions/999", headers=headers)
    other_owner = client.get(f"/api/v1/accounts/{account['id']}", headers={"X-Owner-Id": "2"})

    assert invalid.status_code == 422
    assert "greater than zero" in invalid.json()["detail"]
    assert missing.status_code == 404
    assert other_owner.status_code == 404


def test_duplicate_category_is_conflict(client, headers):
    body = {"name": "Food", "main_category": "Needs"}
    assert client.post("/api/v1/categories", json=body, headers=headers).status_code == 201
    assert client.post("/api/v1/categories", json=body, headers=headers).status_code == 409


def test_transfer(client, headers, account):
    savings = client.post(
        "/api/v1/accounts", json={"name": "Savings", "account_type": "Savings"}, headers=headers
    ).json()

    response = client.post(
        "/api/v1/transactions/transfer",
        json={"from_account_id": account["id"], "to_account_id": savings["id"], "amount": "300", "date": "2024-01-02"},
        headers=headers,
    )

    assert response.status_code == 201
    legs = response.json()
    assert legs["outgoing"]["amount"] == "-300.00"
    assert legs["incoming"]["amount"] == "300.00"
    assert legs["outgoing"]["transfer_group"] == legs["incoming"]["transfer_group"]
    accounts = {a["id"]: a["balance"] for a in client.get("/api/v1/accounts", headers=headers).json()}
    assert accounts == {account["id"]: "700.00", savings["id"]: "300.00"}


def test_aggregation_range_and_dashboard(client, headers, account):
    for amount, kind, day in [("2000", "income", "2024-03-01"), ("80", "expense", "2024-03-02")]:
        client.post(
            "/api/v1/transactions",
            json={"account_id": account["id"], "transaction_type": kind, "amount": amount, "date": day},
            headers=headers,
        )

    rows = client.get(
        "/api/v1/aggregations/totals", params={"start": "2024-03-01", "end": "2024-03-31"}, headers=headers
    ).json()
    dashboard = client.get(
        "/api/v1/aggregations/dashboard", params={"timeframe": "month", "today": "2024-03-10"}, headers=headers
    ).json()
    bad_range = client.get(
        "/api/v1/aggregations", params={"start": "2024-03-31", "end": "2024-03-01"}, headers=headers
    )

    assert [(r["day"], r["net_flow"]) for r in rows] == [("2024-03-01", "2000.00"), ("2024-03-02", "-80.00")]
    assert dashboard["current"]["net"] == "1920.00"
    assert bad_range.status_code == 422


def test_edit_then_aggregation_follows(client, headers, account):
    tx = client.post(
        "/api/v1/transactions",
        json={"account_id": account["id"], "transaction_type": "expense", "amount": "10", "date": "2024-03-02"},
        headers=headers,
    ).json()
    params = {"start": "2024-03-01", "end": "2024-03-31"}
    client.get("/api/v1/aggregations/totals", params=params, headers=headers)

    response = client.patch(f"/api/v1/transactions/{tx['id']}", json={"amount": "25"}, headers=headers)

    assert response.status_code == 200
    rows = client.get("/api/v1/aggregations/totals", params=params, headers=headers).json()
    assert rows[0]["total_expenses"] == "25.00"


def test_recurring_income_processing(client, headers, account):
    created = client.post(
        "/api/v1/recurring-incomes",
        json={
            "account_id": account["id"],
            "amount": "500",
            "description": "Salary",
            "recurrence_type": "monthly",
            "next_occurrence_date": "2024-01-01",
        },
        headers=headers,
    )
    assert created.status_code == 201

    first = client.post("/api/v1/recurring-incomes/process", json={"as_of": "2024-03-15"}, headers=headers).json()
    second = client.post("/api/v1/recurring-incomes/process", json={"as_of": "2024-03-15"}, headers=headers).json()

    assert first == {"processed": 3, "skipped": 0, "errors": 0}
    assert second["processed"] == 0
    view = client.get(f"/api/v1/accounts/{account['id']}", headers=headers).json()
    assert view["balance"] == "2500.00"
    assert view["recurring_incomes"][0]["next_occurrence_date"] == "2024-04-01"


def test_budget_lifecycle(client, headers, account):
    category = client.post(
        "/api/v1/categories", json={"name": "Food", "main_category": "Needs"}, headers=headers
    ).json()
    client.post(
        "/api/v1/transactions",
        json={"account_id": account["id"], "transaction_type": "expense", "amount": "35",
              "date": "2024-01-10", "category_id": category["id"]},
        headers=headers,
    )

    created = client.post(
        "/api/v1/budgets",
        json={
            "name": "January",
            "amount": "400",
            "budget_type": "category",
            "start_date": "2024-01-01",
            "end_date": "2024-01-31",
            "categories": [{"category_id": category["id"], "allocated": "400"}],
            "is_recurring": True,
            "recurrence_type": "monthly",
        },
        headers=headers,
    )
    assert created.status_code == 201
    budget = created.json()
    assert budget["spent"] == "35.00"

    renewed = client.post(f"/api/v1/budgets/{budget['id']}/renew", params={"as_of": "2024-02-02"}, headers=headers)

    assert renewed.json()["start_date"] == "2024-02-01"
    assert renewed.json()["spent"] == "0.00"
    assert client.delete(f"/api/v1/budgets/{budget['id']}", headers=headers).status_code == 204
    assert client.get(f"/api/v1/budgets/{budget['id']}", headers=headers).status_code == 404


def test_budget_list_matches_single_budget_after_new_expense(client, headers, account):
    created = client.post(
        "/api/v1/budgets",
        json={"name": "March", "amount": "500", "budget_type": "simple",
              "start_date": "2024-03-01", "end_date": "2024-03-31"},
        headers=headers,
    ).json()
    assert created["spent"] == "0.00"
    client.post(
        "/api/v1/transactions",
        json={"account_id": account["id"], "transaction_type": "expense", "amount": "60", "date": "2024-03-05"},
        headers=headers,
    )

    listed = client.get("/api/v1/budgets", headers=headers).json()
    current = client.get("/api/v1/budgets", params={"today": "2024-03-10"}, headers=headers).json()
    single = client.get(f"/api/v1/budgets/{created['id']}", headers=headers).json()

    assert listed[0]["spent"] == current[0]["spent"] == single["spent"] == "60.00"


def test_main_category_endpoints(client, headers):
    mains = client.get("/api/v1/categories/main", headers=headers).json()
    assert [m["name"] for m in mains] == ["Needs", "Wants", "Savings", "Income"]

    created = client.post("/api/v1/categories/main", json={"name": "Giving", "icon": "gift"}, headers=headers)
    assert created.status_code == 201
    giving = created.json()
    assert client.post("/api/v1/categories/main", json={"name": "giving"}, headers=headers).status_code == 409
    assert client.post(
        "/api/v1/categories", json={"name": "Gifts", "main_category": "Luxuries"}, headers=headers
    ).status_code == 422
    assert client.post(
        "/api/v1/categories", json={"name": "Gifts", "main_category": "Giving"}, headers=headers
    ).status_code == 201

    renamed = client.patch(f"/api/v1/categories/main/{giving['id']}", json={"name": "Charity"}, headers=headers)
    assert renamed.json()["name"] == "Charity"
    listed = client.get("/api/v1/categories", params={"main_category": "Charity"}, headers=headers).json()
    assert [c["name"] for c in listed] == ["Gifts"]

    in_use = client.delete(f"/api/v1/categories/main/{giving['id']}", headers=headers)
    assert in_use.status_code == 422
    assert "used by categories" in in_use.json()["detail"]
