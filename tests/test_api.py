import csv
from io import StringIO

from fastapi.testclient import TestClient

from database import Storage
from main import create_app


def _client() -> TestClient:
    return TestClient(create_app(Storage("sqlite://"), seed=True))


def test_seeded_collections_are_served() -> None:
    client = _client()

    categories = client.get("/api/categories").json()
    assert [c["name"] for c in categories][:2] == ["Groceries", "Transport"]
    assert categories[0]["icon"] == "ri-shopping-basket-2-line"

    settings = client.get("/api/settings").json()
    assert settings["currency"] == "PKR"
    assert settings["fingerprintEnabled"] is True

    reminders = client.get("/api/reminders").json()
    assert reminders[0]["time"] == "20:00"


def test_transaction_crud_and_status_codes() -> None:
    client = _client()

    resp = client.post(
        "/api/transactions",
        json={"type": "expense", "amount": 250, "description": "Veg", "categoryId": 1},
    )
    assert resp.status_code == 201
    txn = resp.json()
    assert txn["categoryId"] == 1
    assert txn["amount"] == 250

    resp = client.patch(f"/api/transactions/{txn['id']}", json={"amount": 300})
    assert resp.status_code == 200
    assert resp.json()["description"] == "Veg"
    assert resp.json()["amount"] == 300

    assert client.delete(f"/api/transactions/{txn['id']}").status_code == 204
    assert client.get(f"/api/transactions/{txn['id']}").status_code == 404
    assert client.delete(f"/api/transactions/{txn['id']}").status_code == 404


def test_validation_errors_use_field_list() -> None:
    client = _client()

    resp = client.post(
        "/api/transactions",
        json={"type": "expense", "amount": -5, "description": "Veg", "categoryId": 1},
    )

    assert resp.status_code == 400
    body = resp.json()
    assert body["message"] == "Invalid transaction data"
    assert [e["field"] for e in body["errors"]] == ["amount"]

    resp = client.patch("/api/transactions/1", json={"description": None})
    assert resp.status_code == 400


def test_type_mismatch_is_rejected() -> None:
    client = _client()

    resp = client.post(
        "/api/transactions",
        json={"type": "income", "amount": 10, "description": "x", "categoryId": 1},
    )

    assert resp.status_code == 400
    assert resp.json()["detail"] == (
        "Transaction type must match category type (expense)"
    )


def test_category_delete_and_create() -> None:
    client = _client()

    resp = client.post("/api/categories", json={"name": "Books", "type": "expense"})
    assert resp.status_code == 201
    assert resp.json()["id"] == 6
    assert resp.json()["icon"] == "ri-file-list-line"

    assert client.delete("/api/categories/6").status_code == 204
    assert client.get("/api/categories/6").status_code == 404

    resp = client.post("/api/categories", json={"name": "Music", "type": "expense"})
    assert resp.json()["id"] == 7


def test_settings_partial_update() -> None:
    client = _client()

    resp = client.post("/api/settings", json={"darkMode": True})
    assert resp.status_code == 200
    assert resp.json()["darkMode"] is True
    assert resp.json()["pin"] == "1234"

    assert client.post("/api/settings", json={"pin": "12"}).status_code == 400
    assert client.post("/api/settings", json={"reminderTime": "25:00"}).status_code == 400


def test_stats_endpoints() -> None:
    client = _client()
    client.post(
        "/api/transactions",
        json={"type": "income", "amount": 1000, "description": "Pay", "categoryId": 4},
    )
    client.post(
        "/api/transactions",
        json={"type": "expense", "amount": 400, "description": "Veg", "categoryId": 1},
    )

    overview = client.get("/api/stats/overview").json()
    assert overview["balance"] == 600
    assert overview["monthlyIncome"] == 1000
    assert overview["topCategories"][0]["percentage"] == 100

    stats = client.get("/api/stats", params={"range": "month"}).json()
    assert stats["savingsRate"] == 60
    assert len(stats["monthlyComparison"]) == 5
    assert stats["monthlyComparison"][-1]["isCurrentMonth"] is True

    assert client.get("/api/stats", params={"range": "week"}).status_code == 400


def test_voice_parse_returns_draft() -> None:
    client = _client()

    resp = client.post("/api/voice/parse", json={"text": "Spent 300 on groceries"})
    assert resp.status_code == 200
    draft = resp.json()
    assert (draft["type"], draft["amount"], draft["categoryId"]) == (
        "expense",
        300,
        1,
    )

    resp = client.post("/api/voice/parse", json={"text": "spent a lot"})
    assert resp.status_code == 400


def test_csv_import_then_export() -> None:
    client = _client()
    content = (
        "Date,Type,Category,Amount,Description\n"
        "2025-03-01,expense,Groceries,120,Weekly shop\n"
    )

    resp = client.post(
        "/api/transactions/import",
        files={"file": ("march.csv", content.encode("utf-8"), "text/csv")},
    )
    assert resp.status_code == 200
    assert resp.json() == {"imported": 1, "categoriesCreated": 0}

    resp = client.get("/api/transactions/export.csv", params={"year": 2025, "month": 3})
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    assert "Expenses_March_2025.csv" in resp.headers["content-disposition"]
    rows = list(csv.reader(StringIO(resp.text)))
    assert rows[1] == ["Mar 01, 2025", "expense", "Groceries", "120.00", "Weekly shop"]

    bad = client.post(
        "/api/transactions/import",
        files={"file": ("bad.csv", b"Date,Type\n", "text/csv")},
    )
    assert bad.status_code == 400


def test_non_finite_amount_is_rejected() -> None:
    client = _client()

    for amount in ("Infinity", "NaN", "1e400"):
        resp = client.post(
            "/api/transactions",
            content=(
                '{"type": "expense", "amount": %s, "description": "Veg", '
                '"categoryId": 1}' % amount
            ),
            headers={"Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["errors"][0]["field"] == "amount"

    assert client.get("/api/transactions").json() == []
    assert client.get("/api/stats/overview").status_code == 200


def test_rejected_create_leaves_store_unchanged() -> None:
    client = _client()
    client.post(
        "/api/transactions",
        json={"type": "expense", "amount": 5, "description": "Tea", "categoryId": 1},
    )
    before = client.get("/api/transactions").json()

    resp = client.post(
        "/api/transactions",
        json={"type": "income", "amount": 10, "description": "x", "categoryId": 1},
    )

    assert resp.status_code == 400
    assert client.get("/api/transactions").json() == before


def test_empty_patch_returns_record_unchanged() -> None:
    client = _client()
    txn = client.post(
        "/api/transactions",
        json={"type": "expense", "amount": 5, "description": "Tea", "categoryId": 1},
    ).json()

    resp = client.patch(f"/api/transactions/{txn['id']}", json={})

    assert resp.status_code == 200
    assert resp.json() == txn


def test_transaction_history_filters_by_type_newest_first() -> None:
    client = _client()
    for day, txn_type, category_id in (
        (1, "expense", 1),
        (3, "income", 4),
        (2, "expense", 2),
    ):
        client.post(
            "/api/transactions",
            json={
                "type": txn_type,
                "amount": 10,
                "description": f"Day {day}",
                "categoryId": category_id,
                "date": f"2025-03-0{day}T12:00:00",
            },
        )

    all_rows = client.get("/api/transactions").json()
    assert [t["description"] for t in all_rows] == ["Day 3", "Day 2", "Day 1"]

    expenses = client.get("/api/transactions", params={"type": "expense"}).json()
    assert [t["description"] for t in expenses] == ["Day 2", "Day 1"]

    assert client.get("/api/transactions", params={"type": "bogus"}).status_code == 400
