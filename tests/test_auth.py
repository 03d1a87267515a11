from fastapi.testclient import TestClient

import auth
from conftest import make_user
from main import app


def test_register_login_and_me(client):
    res = client.post("/auth/register", json={"name": "Meera Nair", "email": "Meera@Example.com", "password": "Sunflower#1"})
    assert res.status_code == 201, res.text
    body = res.json()
    assert body["user"]["role"] == "customer"
    assert body["user"]["email"] == "meera@example.com"

    res = client.post("/auth/login", json={"email": "meera@example.com", "password": "Sunflower#1"})
    assert res.status_code == 200
    token = res.json()["access_token"]
    assert "password_hash" not in res.json()["user"]

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["user"]["name"] == "Meera Nair"


def test_register_rejects_duplicate_email(client):
    payload = {"name": "Meera Nair", "email": "meera@example.com", "password": "Sunflower#1"}
    assert client.post("/auth/register", json=payload).status_code == 201
    res = client.post("/auth/register", json=payload)
    assert res.status_code == 400
    assert res.json()["detail"] == "User already exists"


def test_register_validates_name(client):
    res = client.post("/auth/register", json={"name": "R2-D2", "email": "r2@example.com", "password": "Sunflower#1"})
    assert res.status_code == 400
    assert "letters" in res.json()["detail"]


def test_login_with_wrong_password(client):
    client.post("/auth/register", json={"name": "Meera Nair", "email": "meera@example.com", "password": "Sunflower#1"})
    res = client.post("/auth/login", json={"email": "meera@example.com", "password": "wrong-password"})
    assert res.status_code == 401


def test_protected_route_requires_token(client):
    assert client.get("/cart").status_code == 401
    res = client.get("/cart", headers={"Authorization": "Bearer garbage"})
    assert res.status_code == 401


def test_deactivated_user_is_rejected(client, db):
    user = make_user("Old Account", "old@example.com")
    db["user"].update_one({"email": "old@example.com"}, {"$set": {"is_active": False}})
    assert client.get("/auth/me", headers=user["headers"]).status_code == 401


def test_admin_routes_reject_customers(client, customer):
    res = client.get("/orders/admin/all", headers=customer["headers"])
    assert res.status_code == 403
    assert res.json()["detail"] == "Admin access required"


def test_startup_seeds_configured_admin(db, monkeypatch):
    monkeypatch.setattr(auth, "ADMIN_EMAIL", "owner@example.com")
    monkeypatch.setattr(auth, "ADMIN_PASSWORD", "Greenhouse#9")
    with TestClient(app) as client:
        res = client.post("/auth/login", json={"email": "owner@example.com", "password": "Greenhouse#9"})
    assert res.status_code == 200, res.text
    assert res.json()["user"]["role"] == "admin"
    assert db["user"].count_documents({"email": "owner@example.com"}) == 1
