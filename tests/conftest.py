import mongomock
import pytest

import database

database.db = mongomock.MongoClient()["greenify_test"]

from fastapi.testclient import TestClient  # noqa: E402

import auth  # noqa: E402
from main import app  # noqa: E402

ADDRESS = {
    "street": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "zip_code": "560001",
    "phone": "9876543210",
}


@pytest.fixture(autouse=True)
def clean_db():
    for name in database.db.list_collection_names():
        database.db.drop_collection(name)
    database.ensure_indexes()
    yield


@pytest.fixture
def db():
    return database.db


@pytest.fixture
def client():
    return TestClient(app)


def make_user(name, email, role="customer"):
    uid = database.create_document("user", {
        "name": name,
        "email": email,
        "password_hash": "not-used",
        "role": role,
        "is_active": True,
    })
    token = auth.create_access_token({"sub": uid, "role": role})
    return {
        "id": uid,
        "name": name,
        "email": email,
        "role": role,
        "headers": {"Authorization": f"Bearer {token}"},
    }


@pytest.fixture
def customer():
    return make_user("Asha Rao", "asha@example.com")


@pytest.fixture
def other_customer():
    return make_user("Ravi Kumar", "ravi@example.com")


@pytest.fixture
def admin():
    return make_user("Store Admin", "admin@example.com", role="admin")


@pytest.fixture
def make_plant():
    def _make(name="Snake Plant", price=100, stock=5, **extra):
        doc = {
            "name": name,
            "description": f"{name} for bright corners and lazy owners",
            "price": price,
            "categories": ["Indoor"],
            "stock": stock,
            "image": f"https://img.example.com/{name.lower().replace(' ', '-')}.jpg",
            "rating": 5.0,
            "review_count": 0,
            "is_active": True,
        }
        doc.update(extra)
        return database.create_document("plant", doc)
    return _make


def stock_of(plant_id):
    return database.db["plant"].find_one({"_id": database.to_object_id(plant_id)})["stock"]


def add_to_cart(client, user, plant_id, quantity=1):
    res = client.post("/cart/add", json={"plant_id": plant_id, "quantity": quantity}, headers=user["headers"])
    assert res.status_code == 200, res.text
    return res


def place_order(client, user):
    return client.post("/orders", json={"delivery_address": ADDRESS}, headers=user["headers"])


def set_status(client, admin, order_id, status):
    res = client.put(f"/orders/{order_id}/status", json={"status": status}, headers=admin["headers"])
    assert res.status_code == 200, res.text
    return res


def deliver(client, admin, order_id):
    for status in ("processing", "shipped", "delivered"):
        set_status(client, admin, order_id, status)
