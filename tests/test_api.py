import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from main import app, get_db


@pytest.fixture
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _login(client: TestClient, email: str) -> dict[str, str]:
    user = client.post("/api/users", json={"email": email})
    assert user.status_code == 201
    headers = {"X-User-Id": str(user.json()["id"])}
    token = client.get("/api/csrf-token", headers=headers).json()["csrf_token"]
    headers["X-CSRF-Token"] = token
    return headers


def test_requests_without_a_known_user_are_rejected(client) -> None:
    assert client.get("/api/accounts").status_code == 401
    assert client.get("/api/accounts", headers={"X-User-Id": "abc"}).status_code == 401
    assert client.get("/api/accounts", headers={"X-User-Id": "999"}).status_code == 401


def test_writes_require_a_token_for_the_same_user(client) -> None:
    alice = _login(client, "alice@example.com")
    bob = _login(client, "bob@example.com")
    body = {"name": "Food", "type": "expense"}

    missing = client.post(
        "/api/categories", json=body, headers={"X-User-Id": alice["X-User-Id"]}
    )
    assert missing.status_code == 400
    assert missing.json()["detail"] == "Invalid CSRF token"

    borrowed = client.post(
        "/api/categories",
        json=body,
        headers={"X-User-Id": alice["X-User-Id"], "X-CSRF-Token": bob["X-CSRF-Token"]},
    )
    assert borrowed.status_code == 400

    assert client.post("/api/categories", json=body, headers=alice).status_code == 201


def test_service_errors_map_to_status_codes(client) -> None:
    alice = _login(client, "alice@example.com")
    bob = _login(client, "bob@example.com")

    created = client.post(
        "/api/categories", json={"name": "Food", "type": "expense"}, headers=alice
    )
    category_id = created.json()["id"]

    duplicate = client.post(
        "/api/categories", json={"name": "food", "type": "expense"}, headers=alice
    )
    assert duplicate.status_code == 400

    foreign = client.patch(
        f"/api/categories/{category_id}", json={"name": "Mine"}, headers=bob
    )
    assert foreign.status_code == 404
    assert foreign.json()["detail"] == "Category not found"

    assert client.get("/api/accounts/999", headers=alice).status_code == 404
    assert client.get("/api/kpis?period=someday", headers=alice).status_code == 400
    assert (
        client.get(
            "/api/calendar?start=2025-03-31&end=2025-03-01", headers=alice
        ).status_code
        == 400
    )


def test_transactions_are_paged(client) -> None:
    alice = _login(client, "alice@example.com")
    category_id = client.post(
        "/api/categories", json={"name": "Food", "type": "expense"}, headers=alice
    ).json()["id"]
    for day in ("2025-03-01", "2025-03-02", "2025-03-03"):
        response = client.post(
            "/api/transactions",
            json={
                "type": "expense",
                "title": f"Lunch {day}",
                "amount_cents": 500,
                "date": day,
                "category_id": category_id,
                "tags": ["work"],
            },
            headers=alice,
        )
        assert response.status_code == 201

    first = client.get("/api/transactions?limit=2", headers=alice).json()
    assert [item["date"] for item in first["items"]] == ["2025-03-03", "2025-03-02"]
    assert first["has_more"] is True

    second = client.get("/api/transactions?limit=2&page=2", headers=alice).json()
    assert [item["date"] for item in second["items"]] == ["2025-03-01"]
    assert second["has_more"] is False
    assert second["items"][0]["tags"] == ["work"]


def test_csv_upload_returns_the_import_report(client) -> None:
    alice = _login(client, "alice@example.com")
    client.post("/api/categories", json={"name": "Food", "type": "expense"}, headers=alice)
    content = (
        "Title,Amount,Date,Category\n"
        "Lunch,12.50,2025-03-01,Food\n"
        "Taxi,8,2025-03-02,Travel\n"
    )

    response = client.post(
        "/api/import/expenses",
        files={"file": ("expenses.csv", content.encode("utf-8"), "text/csv")},
        headers=alice,
    )

    assert response.status_code == 200
    report = response.json()
    assert report["success"] is True
    assert report["imported_count"] == 1
    assert [err["row"] for err in report["errors"]] == [3]
    assert report["errors"][0]["data"]["title"] == "Taxi"

    corrected = client.post(
        "/api/import/corrected-row",
        json={
            "type": "expense",
            "row": {"Title": "Taxi", "Amount": "8", "Date": "2025-03-02", "Category": "Food"},
        },
        headers=alice,
    )
    assert corrected.json()["imported_count"] == 1


def test_upload_rejects_bad_requests(client) -> None:
    alice = _login(client, "alice@example.com")
    csv_file = ("data.csv", b"Debt ID,Amount,Repayment Date\n", "text/csv")

    unknown = client.post("/api/import/pets", files={"file": csv_file}, headers=alice)
    assert unknown.status_code == 404

    empty = client.post(
        "/api/import/notes", files={"file": ("empty.csv", b"", "text/csv")}, headers=alice
    )
    assert empty.status_code == 400

    not_utf8 = client.post(
        "/api/import/notes",
        files={"file": ("latin.csv", "Title\nCaf\xe9\n".encode("latin-1"), "text/csv")},
        headers=alice,
    )
    assert not_utf8.status_code == 400

    bad_mapping = client.post(
        "/api/import/repayments",
        files={"file": csv_file},
        data={"id_mapping": "[1, 2]"},
        headers=alice,
    )
    assert bad_mapping.status_code == 400
    assert bad_mapping.json()["detail"] == "id_mapping must be a JSON object"


def test_category_and_target_uploads_are_routed(client) -> None:
    alice = _login(client, "alice@example.com")

    categories = client.post(
        "/api/import/categories",
        files={"file": ("categories.csv", b"Name,Type\nRent,expense\n", "text/csv")},
        headers=alice,
    )
    assert categories.status_code == 200
    assert categories.json()["imported_count"] == 1

    targets = client.post(
        "/api/import/investment-targets",
        files={"file": ("targets.csv", b"Investment Type,Target Amount\nGold,500\n", "text/csv")},
        headers=alice,
    )
    assert targets.status_code == 200
    assert targets.json()["imported_count"] == 1
    listed = client.get("/api/investment-targets", headers=alice).json()
    assert [t["investment_type"] for t in listed] == ["gold"]
