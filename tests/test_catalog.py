import pytest

from catalog import InsufficientStock, release_all, reserve_stock
from conftest import stock_of

PLANT = {
    "name": "Money Plant",
    "description": "Hardy trailing vine that tolerates low light",
    "price": 249,
    "original_price": 299,
    "categories": ["Indoor"],
    "stock": 10,
}


def test_admin_creates_plant_with_sequence_code(client, admin):
    first = client.post("/plants", json=PLANT, headers=admin["headers"])
    second = client.post("/plants", json={**PLANT, "name": "Jade Plant"}, headers=admin["headers"])
    assert first.status_code == 201, first.text
    plant = first.json()["plant"]
    assert plant["plant_code"] == "PLT-000001"
    assert second.json()["plant"]["plant_code"] == "PLT-000002"
    assert plant["rating"] == 5.0
    assert plant["review_count"] == 0
    assert plant["is_active"] is True


def test_create_plant_rejects_bad_prices(client, admin):
    res = client.post("/plants", json={**PLANT, "original_price": 100}, headers=admin["headers"])
    assert res.status_code == 400
    res = client.post("/plants", json={**PLANT, "price": 249.5}, headers=admin["headers"])
    assert res.status_code == 400


def test_customers_cannot_manage_plants(client, customer):
    assert client.post("/plants", json=PLANT, headers=customer["headers"]).status_code == 403


def test_update_plant_checks_original_price_against_current_price(client, admin, make_plant):
    pid = make_plant(price=300)
    res = client.put(f"/plants/{pid}", json={"original_price": 250}, headers=admin["headers"])
    assert res.status_code == 400
    res = client.put(f"/plants/{pid}", json={"original_price": 350, "stock": 7}, headers=admin["headers"])
    assert res.status_code == 200
    assert res.json()["plant"]["original_price"] == 350
    assert stock_of(pid) == 7


def test_listing_filters_and_hides_inactive(client, admin, make_plant):
    make_plant("Aloe Vera", price=150, categories=["Succulents"])
    make_plant("Basil", price=80, categories=["Herbs"], stock=0)
    gone = make_plant("Old Fern", price=120)
    assert client.delete(f"/plants/{gone}", headers=admin["headers"]).status_code == 200

    res = client.get("/plants")
    names = [p["name"] for p in res.json()["plants"]]
    assert names == ["Aloe Vera", "Basil"]
    assert res.json()["pagination"]["totalPlants"] == 2

    in_stock = client.get("/plants", params={"in_stock": "true"}).json()["plants"]
    assert [p["name"] for p in in_stock] == ["Aloe Vera"]

    herbs = client.get("/plants", params={"category": "Herbs"}).json()["plants"]
    assert [p["name"] for p in herbs] == ["Basil"]

    cheap = client.get("/plants", params={"max_price": 100}).json()["plants"]
    assert [p["name"] for p in cheap] == ["Basil"]

    assert client.get(f"/plants/{gone}").status_code == 404
    assert client.get("/plants/categories/list").json()["categories"] == ["Herbs", "Succulents"]


def test_plant_stats(client, make_plant):
    make_plant("Aloe Vera")
    make_plant("Basil", stock=0)
    stats = client.get("/plants/stats/count").json()["stats"]
    assert stats == {"totalPlants": 2, "inStockPlants": 1, "outOfStockPlants": 1, "stockPercentage": 50}


def test_get_plant_with_malformed_id(client):
    assert client.get("/plants/not-an-id").status_code == 400


def test_reserve_stock_never_oversells(make_plant):
    pid = make_plant(stock=1)
    reserve_stock(pid, 1)
    with pytest.raises(InsufficientStock):
        reserve_stock(pid, 1)
    assert stock_of(pid) == 0


def test_reserve_stock_skips_inactive_plants(make_plant):
    pid = make_plant(stock=3, is_active=False)
    with pytest.raises(InsufficientStock):
        reserve_stock(pid, 1)
    assert stock_of(pid) == 3


def test_release_all_restores_reservations(make_plant):
    a = make_plant("Aloe Vera", stock=4)
    b = make_plant("Basil", stock=2)
    reserve_stock(a, 3)
    reserve_stock(b, 2)
    release_all([(a, 3), (b, 2)])
    assert stock_of(a) == 4
    assert stock_of(b) == 2


def test_search_treats_text_literally(client, make_plant):
    make_plant("Fiddle Leaf Fig (Large)")
    make_plant("Fiddle Leaf Fig")

    res = client.get("/plants", params={"search": "(Large"})
    assert res.status_code == 200
    assert [p["name"] for p in res.json()["plants"]] == ["Fiddle Leaf Fig (Large)"]

    res = client.get("/plants", params={"search": "fig.*"})
    assert res.status_code == 200
    assert res.json()["plants"] == []
