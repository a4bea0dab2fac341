# backend/tests/test_client_prices.py
from datetime import datetime, time

import pytest

from amexing.core.errors import ValidationError
from amexing.models import POI, ClientPrice, Experience, Rate, Service, Tour, VehicleType
from amexing.services import client_prices as price_service

from conftest import auth_headers, make_client, make_user


@pytest.fixture
def catalog(db):
    rates = {r.name: r for r in db.query(Rate).all()}
    types = {t.code: t for t in db.query(VehicleType).all()}
    return {
        "standard": rates["Tarifa Estándar"].id,
        "vip": rates["Tarifa VIP"].id,
        "sedan": types["sedan"].id,
        "suv": types["suv"].id,
    }


@pytest.fixture
def items(db, catalog):
    airport = POI(name="Aeropuerto CDMX")
    hotel = POI(name="Hotel Riu")
    db.add_all([airport, hotel])
    db.flush()
    outbound = Service(origin_poi_id=airport.id, destination_poi_id=hotel.id, vehicle_type_id=catalog["sedan"])
    inbound = Service(origin_poi_id=hotel.id, destination_poi_id=airport.id, vehicle_type_id=catalog["sedan"])
    tour = Tour(destination_poi_id=hotel.id, time=240)
    experience = Experience(name="Xochimilco", description="Trajinera ride", cost=900)
    db.add_all([outbound, inbound, tour, experience])
    db.commit()
    return {"service": outbound.id, "service2": inbound.id, "tour": tour.id, "experience": experience.id}


@pytest.fixture
def customer(db):
    acme = make_client(db)
    return make_user(db, "acme_admin", "client", client=acme)


def _entry(catalog, rate, vtype, price, base_price=None):
    return {"rate_id": catalog[rate], "vehicle_type_id": catalog[vtype], "price": price, "base_price": base_price}


# -----------------------------
# Versioning
# -----------------------------
def test_first_save_creates_current_versions(db, customer, catalog, items):
    summary = price_service.save_client_prices(
        db, customer.id, "SERVICES", items["service"],
        [_entry(catalog, "standard", "sedan", 1200, 1500), _entry(catalog, "vip", "suv", 2500)],
        actor_id=customer.id,
    )
    db.commit()

    assert summary == {"created": 2, "closed": 0, "deactivated": 0}
    current = price_service.get_client_prices(db, customer.id, "SERVICES", items["service"])
    assert len(current) == 2
    assert all(p.is_current() for p in current)
    assert all(p.currency == "MXN" for p in current)


def test_new_price_closes_previous_version_at_end_of_day(db, customer, catalog, items):
    price_service.save_client_prices(db, customer.id, "SERVICES", items["service"], [_entry(catalog, "standard", "sedan", 1000, 1200)])
    db.commit()
    summary = price_service.save_client_prices(db, customer.id, "SERVICES", items["service"], [_entry(catalog, "standard", "sedan", 900)])
    db.commit()

    assert summary == {"created": 1, "closed": 1, "deactivated": 0}
    history = price_service.get_price_history(
        db, customer.id, "SERVICES", items["service"], catalog["standard"], catalog["sedan"]
    )
    assert [float(p.price) for p in history] == [900.0, 1000.0]

    newest, previous = history
    assert newest.valid_until is None
    assert previous.valid_until == datetime.combine(datetime.utcnow().date(), time(23, 59, 59, 999000))
    # the base price carries over when the sheet omits it
    assert float(newest.base_price) == 1200.0
    # the closed version stays live in history
    assert previous.is_active()


def test_zero_price_and_missing_keys_retire_versions(db, customer, catalog, items):
    price_service.save_client_prices(
        db, customer.id, "TOURS", items["tour"],
        [_entry(catalog, "standard", "sedan", 500), _entry(catalog, "vip", "sedan", 800), _entry(catalog, "vip", "suv", 900)],
    )
    db.commit()

    summary = price_service.save_client_prices(
        db, customer.id, "TOURS", items["tour"],
        [_entry(catalog, "standard", "sedan", 0), _entry(catalog, "vip", "sedan", 800)],
    )
    db.commit()

    assert summary == {"created": 1, "closed": 1, "deactivated": 2}
    current = price_service.get_client_prices(db, customer.id, "TOURS", items["tour"])
    assert [(p.rate_id, p.vehicle_type_id) for p in current] == [(catalog["vip"], catalog["sedan"])]

    retired = db.query(ClientPrice).filter(ClientPrice.rate_id == catalog["vip"], ClientPrice.vehicle_type_id == catalog["suv"]).one()
    assert retired.valid_until is not None
    assert retired.lifecycle_status == "archived"


def test_zero_price_without_current_version_is_ignored(db, customer, catalog, items):
    summary = price_service.save_client_prices(db, customer.id, "SERVICES", items["service"], [_entry(catalog, "standard", "sedan", None)])
    assert summary == {"created": 0, "closed": 0, "deactivated": 0}
    assert db.query(ClientPrice).count() == 0


def test_items_and_clients_are_independent(db, customer, catalog, items):
    other = make_user(db, "other_client", "client")
    price_service.save_client_prices(db, customer.id, "SERVICES", items["service"], [_entry(catalog, "standard", "sedan", 100)])
    price_service.save_client_prices(db, customer.id, "SERVICES", items["service2"], [_entry(catalog, "standard", "sedan", 200)])
    price_service.save_client_prices(db, other.id, "SERVICES", items["service"], [_entry(catalog, "standard", "sedan", 300)])
    db.commit()

    price_service.save_client_prices(db, customer.id, "SERVICES", items["service"], [])
    db.commit()

    assert price_service.get_client_prices(db, customer.id, "SERVICES", items["service"]) == []
    assert len(price_service.get_client_prices(db, customer.id, "SERVICES", items["service2"])) == 1
    assert len(price_service.get_client_prices(db, other.id, "SERVICES", items["service"])) == 1
    assert len(price_service.get_all_client_prices(db, customer.id)) == 1
    assert price_service.get_all_client_prices(db, customer.id, "TOURS") == []


def test_unknown_item_type(db, customer, catalog, items):
    with pytest.raises(ValidationError):
        price_service.save_client_prices(db, customer.id, "HOTELS", 1, [_entry(catalog, "standard", "sedan", 100)])
    with pytest.raises(ValidationError):
        price_service.get_client_prices(db, customer.id, "HOTELS", 1)


def test_duplicate_keys_in_one_sheet_are_rejected(db, customer, catalog, items):
    price_service.save_client_prices(db, customer.id, "SERVICES", items["service"], [_entry(catalog, "standard", "sedan", 1000)])
    db.commit()

    with pytest.raises(ValidationError):
        price_service.save_client_prices(
            db, customer.id, "SERVICES", items["service"],
            [_entry(catalog, "standard", "sedan", 900), _entry(catalog, "standard", "sedan", 800)],
        )
    db.rollback()

    current = price_service.get_client_prices(db, customer.id, "SERVICES", items["service"])
    assert [float(p.price) for p in current] == [1000.0]
    assert db.query(ClientPrice).count() == 1


def test_item_must_exist(db, customer, catalog, items):
    sheet = [_entry(catalog, "standard", "sedan", 100)]
    with pytest.raises(ValidationError):
        price_service.save_client_prices(db, customer.id, "SERVICES", 9999, sheet)
    with pytest.raises(ValidationError):
        price_service.save_client_prices(db, customer.id, "TOURS", 9999, sheet)

    summary = price_service.save_client_prices(db, customer.id, "EXPERIENCES", items["experience"], sheet)
    assert summary["created"] == 1

    db.get(Service, items["service2"]).soft_delete()
    db.commit()
    with pytest.raises(ValidationError):
        price_service.save_client_prices(db, customer.id, "SERVICES", items["service2"], sheet)


# -----------------------------
# Derived fields
# -----------------------------
def test_discount_and_markup():
    discounted = ClientPrice(price=850, base_price=1000, currency="MXN")
    assert discounted.discount_percentage == 15.0
    assert discounted.is_discount() and not discounted.is_markup()

    marked_up = ClientPrice(price=1100, base_price=1000, currency="MXN")
    assert marked_up.discount_percentage == -10.0
    assert marked_up.is_markup()

    no_base = ClientPrice(price=1100, base_price=None, currency="MXN")
    assert no_base.discount_percentage == 0.0
    assert not no_base.is_discount() and not no_base.is_markup()

    assert ClientPrice(price=1234.5, currency="MXN").formatted_price == "$1,234.50 MXN"


# -----------------------------
# API
# -----------------------------
def test_api_save_list_and_history(client, db, customer, catalog, items, admin_headers):
    sheet = {
        "item_type": "SERVICES",
        "item_id": items["service"],
        "prices": [
            {"rate_id": catalog["standard"], "vehicle_type_id": catalog["sedan"], "price": 900, "base_price": 1000},
        ],
    }
    r = client.put(f"/api/client-prices/{customer.id}", json=sheet, headers=admin_headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["summary"]["created"] == 1
    item = body["items"][0]
    assert item["discount_percentage"] == 10.0
    assert item["is_discount"] is True
    assert item["is_current"] is True
    assert item["formatted_price"] == "$900.00 MXN"

    sheet["prices"][0]["price"] = 950
    r = client.put(f"/api/client-prices/{customer.id}", json=sheet, headers=admin_headers)
    assert r.json()["summary"] == {"created": 1, "closed": 1, "deactivated": 0}

    r = client.get(
        f"/api/client-prices/{customer.id}",
        params={"item_type": "SERVICES", "item_id": items["service"]},
        headers=admin_headers,
    )
    assert r.status_code == 200, r.text
    assert [p["price"] for p in r.json()] == [950.0]

    r = client.get(
        f"/api/client-prices/{customer.id}/history",
        params={
            "item_type": "SERVICES",
            "item_id": items["service"],
            "rate_id": catalog["standard"],
            "vehicle_type_id": catalog["sedan"],
        },
        headers=admin_headers,
    )
    assert r.status_code == 200, r.text
    history = r.json()
    assert [p["price"] for p in history] == [950.0, 900.0]
    assert history[1]["is_current"] is False


def test_api_rejects_bad_sheets(client, customer, catalog, items, admin_headers):
    entry = {"rate_id": catalog["standard"], "vehicle_type_id": catalog["sedan"], "price": 900}
    r = client.put(
        f"/api/client-prices/{customer.id}",
        json={"item_type": "SERVICES", "item_id": items["service"], "prices": [entry, {**entry, "price": 950}]},
        headers=admin_headers,
    )
    assert r.status_code == 400
    assert "Duplicate" in r.json()["detail"]

    r = client.put(
        f"/api/client-prices/{customer.id}",
        json={"item_type": "TOURS", "item_id": 9999, "prices": [entry]},
        headers=admin_headers,
    )
    assert r.status_code == 400


def test_api_validation(client, customer, catalog, admin_headers):
    r = client.get(f"/api/client-prices/{customer.id}", params={"item_id": 3}, headers=admin_headers)
    assert r.status_code == 400

    r = client.get(f"/api/client-prices/{customer.id}", params={"item_type": "HOTELS"}, headers=admin_headers)
    assert r.status_code == 400

    r = client.get("/api/client-prices/9999", headers=admin_headers)
    assert r.status_code == 404

    r = client.put(
        f"/api/client-prices/{customer.id}",
        json={"item_type": "SERVICES", "item_id": 1, "prices": [
            {"rate_id": catalog["standard"], "vehicle_type_id": catalog["sedan"], "price": -5},
        ]},
        headers=admin_headers,
    )
    assert r.status_code == 422


def test_api_clients_cannot_write_prices(client, customer, catalog):
    r = client.put(
        f"/api/client-prices/{customer.id}",
        json={"item_type": "SERVICES", "item_id": 1, "prices": []},
        headers=auth_headers(customer),
    )
    assert r.status_code == 403


def test_api_breakdown(client, admin_headers):
    r = client.post("/api/client-prices/breakdown", json={"prices": [1000]}, headers=admin_headers)
    assert r.status_code == 200, r.text
    assert r.json() == {"base_price": 1000.0, "surcharge": 210.9, "total_price": 1210.9, "surcharge_percentage": 21.09}

    r = client.post("/api/client-prices/breakdown", json={"prices": [100, 0], "surcharge_percentage": 10}, headers=admin_headers)
    items = r.json()["items"]
    assert items[0]["total_price"] == 110.0
    assert items[1]["surcharge"] == 0.0
