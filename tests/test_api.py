import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import main
from database import Base
from services import CategoryService

BANK_CSV = (
    "Datum;Text;Belopp\n"
    "2025-03-01;ICA Maxi;-450,50\n"
    "2025-03-20;Lön;25000,00\n"
).encode("utf-8")


@pytest.fixture
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, expire_on_commit=False)
    with TestingSession() as session:
        CategoryService(session).seed_defaults()

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    main.app.dependency_overrides[main.get_db] = override_get_db
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def test_settings_round_trip(client) -> None:
    settings = client.get("/api/settings").json()
    assert settings["payday"] == 25

    settings["payday"] = 27
    response = client.put("/api/settings", json=settings)
    assert response.status_code == 200
    assert client.get("/api/settings").json()["payday"] == 27


def test_period_endpoint(client) -> None:
    response = client.get("/api/period", params={"month": "2025-03"})
    assert response.status_code == 200
    body = response.json()
    assert body["start"] == "2025-02-25"
    assert body["end"] == "2025-03-24"

    assert client.get("/api/period", params={"month": "2025-13"}).status_code == 400


def test_bucket_month_data_and_overview(client) -> None:
    account = client.post("/api/accounts", json={"name": "Lönekonto"}).json()
    response = client.post(
        "/api/buckets",
        json={"name": "Hyra", "type": "FIXED", "account_id": account["id"]},
    )
    assert response.status_code == 201
    bucket = response.json()
    assert bucket["accountId"] == account["id"]

    response = client.put(
        f"/api/buckets/{bucket['id']}/months",
        json={"month_key": "2025-01", "amount": 9000},
    )
    assert response.status_code == 200

    effective = client.get(
        f"/api/buckets/{bucket['id']}/effective", params={"month": "2025-03"}
    ).json()
    assert effective["isInherited"] is True
    assert effective["data"]["amount"] == 9000

    overview = client.get("/api/months/2025-03/overview").json()
    assert overview["totalCost"] == 9000
    assert overview["period"]["start"] == "2025-02-25"
    [line] = overview["buckets"]
    assert line["name"] == "Hyra"
    assert line["source"] == "inherited"


def test_locked_month_returns_400(client) -> None:
    bucket = client.post("/api/buckets", json={"name": "Gym", "type": "FIXED"}).json()
    client.put("/api/months/2025-03/lock", json={"is_locked": True})

    response = client.put(
        f"/api/buckets/{bucket['id']}/months",
        json={"month_key": "2025-03", "amount": 400},
    )
    assert response.status_code == 400
    assert "locked" in response.json()["detail"]


def test_missing_entities_return_404(client) -> None:
    assert client.put("/api/accounts/nope", json={"name": "X"}).status_code == 404
    assert client.delete("/api/transactions/nope").status_code == 404
    response = client.post("/api/import/staged/nope/approve")
    assert response.status_code == 404


def test_invalid_month_key_returns_400(client) -> None:
    assert client.get("/api/months/2025-3/overview").status_code == 400
    assert client.get("/api/months/2025-00/config").status_code == 400


def test_import_review_and_commit(client) -> None:
    account = client.post("/api/accounts", json={"name": "Lönekonto"}).json()
    client.post(
        "/api/rules",
        json={
            "keyword": "ica",
            "target_type": "EXPENSE",
            "target_category_main_id": "2",
            "target_category_sub_id": "201",
        },
    )

    response = client.post(
        "/api/import",
        data={"account_id": account["id"]},
        files={"file": ("mars.csv", BANK_CSV, "text/csv")},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["staged"] == 2
    assert body["duplicates"] == 0
    ready = {item["description"]: item["isReady"] for item in body["items"]}
    assert ready == {"ICA Maxi": True, "Lön": False}

    salary = next(i for i in body["items"] if i["description"] == "Lön")
    items = client.post(f"/api/import/staged/{salary['id']}/approve").json()
    assert all(item["isReady"] for item in items)

    result = client.post("/api/import/commit").json()
    assert result == {"committed": 2, "remaining": 0}

    transactions = client.get("/api/transactions", params={"month": "2025-03"})
    descriptions = {t["description"] for t in transactions.json()["items"]}
    assert descriptions == {"ICA Maxi", "Lön"}

    logs = client.get("/api/import/logs").json()
    assert logs[0]["status"] == "SUCCESS"


def test_import_rejects_unreadable_file(client) -> None:
    account = client.post("/api/accounts", json={"name": "Lönekonto"}).json()
    response = client.post(
        "/api/import",
        data={"account_id": account["id"]},
        files={"file": ("mars.pdf", b"%PDF", "application/pdf")},
    )
    assert response.status_code == 400
    assert "Unsupported" in response.json()["detail"]


def test_export_csv_download(client) -> None:
    account = client.post("/api/accounts", json={"name": "Lönekonto"}).json()
    client.post(
        "/api/transactions",
        json={
            "account_id": account["id"],
            "date": "2025-03-03",
            "amount": -120.5,
            "description": "=HYPERLINK()",
        },
    )

    response = client.get("/api/transactions/export.csv", params={"month": "2025-03"})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    disposition = response.headers["content-disposition"]
    assert 'filename="transactions_2025-02-25_2025-03-24.csv"' in disposition
    assert "\t=HYPERLINK()" in response.text


def test_subscriptions_and_sub_category_averages(client) -> None:
    account = client.post("/api/accounts", json={"name": "Lönekonto"}).json()
    for day in ("2025-01-05", "2025-02-05", "2025-03-05"):
        client.post(
            "/api/transactions",
            json={
                "account_id": account["id"],
                "date": day,
                "amount": -129,
                "description": "Netflix",
                "category_main_id": "2",
                "category_sub_id": "201",
            },
        )

    [candidate] = client.get("/api/subscriptions").json()
    assert candidate["name"] == "Netflix"
    assert candidate["avgAmount"] == 129
    assert candidate["lastDate"] == "2025-03-05"
    assert len(candidate["transactionIds"]) == 3

    averages = client.get("/api/months/2025-04/sub-category-averages").json()
    assert averages == {"201": 129}
    response = client.get("/api/months/2025-4/sub-category-averages")
    assert response.status_code == 400
