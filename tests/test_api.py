import io
import os
import sys

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from stockapp import create_app
from stockapp.extensions import db
from stockapp.models import Role, User, UserRole


@pytest.fixture
def _seeded_app():
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "LOG_DIR": "",
            "ADMIN_API_TOKEN": "root-token",
        }
    )
    with app.app_context():
        db.create_all()
        for username, role_name in (("morgan", UserRole.MANAGER), ("sam", UserRole.STAFF)):
            user = User(
                username=username,
                api_token=f"{username}-token",
                role=Role.query.filter_by(name=role_name).first(),
            )
            user.set_password("pw123")
            db.session.add(user)
        db.session.commit()
    # Yield outside the setup app context so each test-client request gets its
    # own app context (and its own flask.g / Flask-Login user cache).
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def app(_seeded_app):
    with _seeded_app.app_context():
        yield _seeded_app


@pytest.fixture
def client(_seeded_app):
    return _seeded_app.test_client()


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


ADMIN = _auth("root-token")
MANAGER = _auth("morgan-token")
STAFF = _auth("sam-token")


def _location(client, name, **extra):
    response = client.post(
        "/api/locations/", json={"name": name, "type": "warehouse", **extra}, headers=ADMIN
    )
    assert response.status_code == 201
    return response.get_json()["location"]


def _item(client, sku="CRATE-1"):
    response = client.post(
        "/api/items/", json={"sku": sku, "name": "Crate", "unit": "ea"}, headers=ADMIN
    )
    assert response.status_code == 201
    return response.get_json()["item"]


def test_requests_without_token_are_unauthorized(client):
    response = client.get("/api/stock-movements/")

    assert response.status_code == 401
    assert response.get_json()["kind"] == "unauthorized"

    response = client.get("/api/items/", headers=_auth("wrong"))
    assert response.status_code == 401


def test_staff_cannot_edit_catalog_or_resolve(client):
    response = client.post(
        "/api/items/", json={"sku": "A", "name": "A", "unit": "ea"}, headers=STAFF
    )
    assert response.status_code == 403

    response = client.patch(
        "/api/stock-movements/1", json={"status": "approved"}, headers=STAFF
    )
    assert response.status_code == 403


def test_movement_lifecycle_over_http(client):
    location = _location(client, "Main")
    item = _item(client)

    response = client.post(
        "/api/stock-movements/",
        json={
            "item_id": item["id"],
            "location_id": location["id"],
            "movement_type": "receive",
            "quantity": 50,
            "reason": "PO 1001",
            "unit_cost": "1.25",
        },
        headers=ADMIN,
    )
    assert response.status_code == 201
    body = response.get_json()
    assert body["success"] is True
    assert body["movement"]["status"] == "approved"
    assert body["movement"]["total_value"] == 62.5
    assert body["movement"]["items"]["sku"] == "CRATE-1"

    response = client.post(
        "/api/stock-movements/",
        json={
            "item_id": item["id"],
            "location_id": location["id"],
            "movement_type": "sale",
            "quantity": 5,
            "reason": "Order 7",
        },
        headers=STAFF,
    )
    pending = response.get_json()["movement"]
    assert pending["status"] == "pending"

    queue = client.get("/api/stock-movements/pending", headers=MANAGER).get_json()
    assert [row["id"] for row in queue["movements"]] == [pending["id"]]

    response = client.patch(
        f"/api/stock-movements/{pending['id']}", json={"status": "approved"}, headers=MANAGER
    )
    assert response.status_code == 200
    approved = response.get_json()["movement"]
    assert approved["after_quantity"] == 45.0
    assert approved["approved_by_user"] == {"username": "morgan"}

    response = client.patch(
        f"/api/stock-movements/{pending['id']}", json={"status": "rejected"}, headers=MANAGER
    )
    assert response.status_code == 400
    assert response.get_json()["kind"] == "conflict"

    history = client.get(
        f"/api/stock-movements/item/{item['id']}?limit=1", headers=STAFF
    ).get_json()
    assert history["total"] == 2
    assert len(history["movements"]) == 1

    listing = client.get("/api/stock-movements/?status=approved", headers=STAFF).get_json()
    assert listing["count"] == 2

    response = client.get(f"/api/locations/{location['id']}", headers=STAFF)
    assert response.get_json()["location"]["stock"][0]["quantity"] == 45.0


def test_transfer_over_http_returns_both_rows(client):
    source = _location(client, "North")
    destination = _location(client, "South")
    item = _item(client)
    client.post(
        "/api/stock-movements/",
        json={
            "item_id": item["id"],
            "location_id": source["id"],
            "movement_type": "receive",
            "quantity": 20,
            "reason": "Opening",
        },
        headers=ADMIN,
    )

    response = client.post(
        "/api/stock-movements/",
        json={
            "item_id": item["id"],
            "location_id": source["id"],
            "to_location_id": destination["id"],
            "movement_type": "transfer_out",
            "quantity": 10,
            "reason": "Rebalance",
        },
        headers=ADMIN,
    )

    assert response.status_code == 201
    body = response.get_json()
    assert [row["movement_type"] for row in body["movements"]] == ["transfer_out", "transfer_in"]
    assert body["transfer_reference"].startswith("TRF-")

    totals = {
        row["id"]: row["total_quantity"]
        for row in client.get("/api/locations/", headers=STAFF).get_json()["locations"]
    }
    assert totals == {source["id"]: 10.0, destination["id"]: 10.0}


def test_validation_errors_render_as_json(client):
    location = _location(client, "Main")
    item = _item(client)

    response = client.post(
        "/api/stock-movements/",
        json={
            "item_id": item["id"],
            "location_id": location["id"],
            "movement_type": "receive",
            "quantity": -1,
            "reason": "Oops",
        },
        headers=ADMIN,
    )
    assert response.status_code == 400
    assert response.get_json() == {
        "error": "Quantity must be greater than 0",
        "kind": "validation",
        "field": "quantity",
    }

    response = client.post(
        "/api/stock-movements/",
        json={"item_id": 999, "location_id": location["id"]},
        headers=ADMIN,
    )
    assert response.status_code == 404
    assert response.get_json()["kind"] == "not_found"

    response = client.post("/api/stock-movements/", data="nope", headers=ADMIN)
    assert response.status_code == 400

    response = client.get("/api/stock-movements/?limit=abc", headers=ADMIN)
    assert response.status_code == 400


def test_unexpected_errors_roll_back_and_return_500(client, monkeypatch):
    from stockapp.services import stock_movements

    def _boom(*args, **kwargs):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(stock_movements, "pending_movements", _boom)

    response = client.get("/api/stock-movements/pending", headers=ADMIN)

    assert response.status_code == 500
    assert response.get_json()["kind"] == "internal"


def test_item_routes(client):
    location = _location(client, "Main")
    response = client.post(
        "/api/items/",
        json={
            "sku": "LID-1",
            "name": "Lid",
            "unit": "ea",
            "category": "Packaging",
            "stock_allocations": [{"location_id": location["id"], "quantity": 12}],
        },
        headers=MANAGER,
    )
    assert response.status_code == 201
    item = response.get_json()["item"]
    assert item["total_stock"] == 12.0

    response = client.patch(f"/api/items/{item['id']}", json={"sku": "LID-2"}, headers=MANAGER)
    assert response.status_code == 400

    assert client.get("/api/items/categories", headers=STAFF).get_json() == {
        "categories": ["Packaging"]
    }

    assert client.delete(f"/api/items/{item['id']}", headers=MANAGER).status_code == 200
    assert client.get("/api/items/", headers=STAFF).get_json()["items"] == []
    inactive = client.get("/api/items/?includeInactive=true", headers=STAFF).get_json()
    assert len(inactive["items"]) == 1


def test_location_delete_conflict(client):
    parent = _location(client, "West")
    _location(client, "Bay 1", parent_id=parent["id"])

    response = client.delete(f"/api/locations/{parent['id']}", headers=ADMIN)

    assert response.status_code == 400
    assert response.get_json()["error"] == "Cannot delete location with sub-locations"


def test_csv_upload_import(client):
    csv_text = (
        "SKU,Name,Description,Category,Unit,Barcode,Location,Quantity,MinThreshold,MaxThreshold\n"
        "PEN-1,Pen,,Office,ea,,/Store,3,,\n"
    )

    response = client.post(
        "/api/items/import?preview=1",
        data={"file": (io.BytesIO(csv_text.encode("utf-8")), "items.csv")},
        headers=ADMIN,
        content_type="multipart/form-data",
    )
    assert response.status_code == 200
    assert response.get_json()["preview"][0]["SKU"] == "PEN-1"

    response = client.post(
        "/api/items/import",
        data={"file": (io.BytesIO(csv_text.encode("utf-8")), "items.csv")},
        headers=ADMIN,
        content_type="multipart/form-data",
    )
    assert response.get_json()["created_items"] == ["PEN-1"]


def test_health_and_request_id(client):
    response = client.get("/health", headers={"X-Request-ID": "abc123"})

    assert response.status_code == 200
    assert response.get_json()["status"] == "UP"
    assert response.headers["X-Request-ID"] == "abc123"
    assert client.get("/health").headers["X-Request-ID"]


def test_startup_seeds_roles_and_admin(app):
    assert sorted(role.name for role in Role.query.all()) == ["Admin", "Manager", "Staff"]
    admin = User.query.filter_by(api_token="root-token").one()
    assert admin.role.name == UserRole.ADMIN
    assert admin.is_active
