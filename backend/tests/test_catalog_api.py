# backend/tests/test_catalog_api.py
from datetime import date, timedelta

import pytest

from amexing.models import Rate, ServiceType, VehicleType

from conftest import auth_headers, make_user


@pytest.fixture
def refs(db):
    return {
        "sedan": db.query(VehicleType).filter(VehicleType.code == "sedan").one().id,
        "suv": db.query(VehicleType).filter(VehicleType.code == "suv").one().id,
        "standard": db.query(Rate).filter(Rate.name == "Tarifa Estándar").one().id,
        "vip": db.query(Rate).filter(Rate.name == "Tarifa VIP").one().id,
        "airport": db.query(ServiceType).filter(ServiceType.name == "Aeropuerto").one().id,
    }


def _vehicle(client, headers, refs, plate="abc-123", **extra):
    payload = {
        "vehicle_type_id": refs["sedan"],
        "brand": "Toyota",
        "model": "Camry",
        "year": 2022,
        "license_plate": plate,
        "capacity": 4,
    }
    payload.update(extra)
    r = client.post("/api/vehicles/", json=payload, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


def _poi(client, headers, name, **extra):
    r = client.post("/api/pois/", json={"name": name, **extra}, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


# -----------------------------
# Vehicle types
# -----------------------------
def test_vehicle_types_seeded_in_order(client, admin_headers):
    r = client.get("/api/vehicle-types/", headers=admin_headers)
    assert r.status_code == 200, r.text
    assert [t["code"] for t in r.json()] == ["sedan", "suv", "van", "bus", "limousine"]


def test_vehicle_type_code_is_lowercase_and_unique(client, admin_headers):
    r = client.post("/api/vehicle-types/", json={"name": "Minibus", "code": "MiniBus", "sort_order": 6}, headers=admin_headers)
    assert r.status_code == 201, r.text
    assert r.json()["code"] == "minibus"

    r = client.post("/api/vehicle-types/", json={"name": "Otro", "code": "MINIBUS"}, headers=admin_headers)
    assert r.status_code == 409


def test_vehicle_type_in_use_cannot_be_deleted(client, refs, admin_headers):
    _vehicle(client, admin_headers, refs)
    r = client.delete(f"/api/vehicle-types/{refs['sedan']}", headers=admin_headers)
    assert r.status_code == 409
    r = client.delete(f"/api/vehicle-types/{refs['suv']}", headers=admin_headers)
    assert r.status_code == 204


# -----------------------------
# Vehicles
# -----------------------------
def test_plate_is_uppercased_and_unique(client, refs, admin_headers):
    v = _vehicle(client, admin_headers, refs, plate=" abc-123 ")
    assert v["license_plate"] == "ABC-123"
    assert v["display_name"] == "Toyota Camry 2022 (ABC-123)"
    assert v["available"] is True
    assert v["vehicle_type"] == "Sedan"

    r = client.post(
        "/api/vehicles/",
        json={"vehicle_type_id": refs["sedan"], "brand": "Kia", "model": "Rio", "year": 2021,
              "license_plate": "ABC-123", "capacity": 4},
        headers=admin_headers,
    )
    assert r.status_code == 409

    other = _vehicle(client, admin_headers, refs, plate="XYZ-999")
    r = client.patch(f"/api/vehicles/{other['id']}", json={"license_plate": "abc-123"}, headers=admin_headers)
    assert r.status_code == 409


def test_vehicle_validation(client, refs, admin_headers):
    base = {"vehicle_type_id": refs["sedan"], "brand": "Kia", "model": "Rio", "year": 2021, "license_plate": "K-1", "capacity": 4}

    assert client.post("/api/vehicles/", json={**base, "capacity": 0}, headers=admin_headers).status_code == 422
    assert client.post("/api/vehicles/", json={**base, "maintenance_status": "broken"}, headers=admin_headers).status_code == 422
    assert client.post("/api/vehicles/", json={**base, "vehicle_type_id": 9999}, headers=admin_headers).status_code == 400
    assert client.post("/api/vehicles/", json={**base, "rate_id": 9999}, headers=admin_headers).status_code == 400


def test_vehicle_filters(client, refs, admin_headers):
    _vehicle(client, admin_headers, refs, plate="A-1")
    _vehicle(client, admin_headers, refs, plate="B-2", brand="Ford", maintenance_status="repair")
    _vehicle(
        client, admin_headers, refs, plate="C-3", brand="Nissan", vehicle_type_id=refs["suv"],
        insurance_expiry=(date.today() - timedelta(days=1)).isoformat(),
    )

    r = client.get("/api/vehicles/", params={"available": True}, headers=admin_headers)
    assert {v["license_plate"] for v in r.json()["items"]} == {"A-1", "C-3"}

    r = client.get("/api/vehicles/", params={"maintenance_status": "repair"}, headers=admin_headers)
    assert [v["license_plate"] for v in r.json()["items"]] == ["B-2"]

    r = client.get("/api/vehicles/", params={"insurance_expired": True}, headers=admin_headers)
    items = r.json()["items"]
    assert [v["license_plate"] for v in items] == ["C-3"]
    assert items[0]["insurance_expired"] is True

    r = client.get("/api/vehicles/", params={"vehicle_type_id": refs["suv"]}, headers=admin_headers)
    assert r.json()["meta"]["total"] == 1

    r = client.get("/api/vehicles/", params={"q": "ford"}, headers=admin_headers)
    assert [v["brand"] for v in r.json()["items"]] == ["Ford"]


def test_vehicle_images(client, refs, admin_headers):
    v = _vehicle(client, admin_headers, refs)
    base = f"/api/vehicles/{v['id']}/images"

    first = client.post(base, json={"url": "https://cdn.example.com/1.jpg"}, headers=admin_headers).json()
    second = client.post(base, json={"url": "https://cdn.example.com/2.jpg"}, headers=admin_headers).json()
    assert first["is_primary"] is True
    assert second["is_primary"] is False
    assert second["display_order"] == 1

    r = client.put(f"{base}/{second['id']}/primary", headers=admin_headers)
    assert r.status_code == 200, r.text
    images = client.get(base, headers=admin_headers).json()
    assert [i["is_primary"] for i in images] == [False, True]

    # removing the primary image promotes the next one
    assert client.delete(f"{base}/{second['id']}", headers=admin_headers).status_code == 204
    images = client.get(base, headers=admin_headers).json()
    assert [(i["id"], i["is_primary"]) for i in images] == [(first["id"], True)]

    assert client.delete(f"{base}/{second['id']}", headers=admin_headers).status_code == 404


def test_vehicle_restore_checks_plate(client, refs, admin_headers):
    v = _vehicle(client, admin_headers, refs, plate="DUP-1")
    assert client.delete(f"/api/vehicles/{v['id']}", headers=admin_headers).status_code == 204
    _vehicle(client, admin_headers, refs, plate="DUP-1")

    r = client.post(f"/api/vehicles/{v['id']}/restore", headers=admin_headers)
    assert r.status_code == 409


def test_fleet_requires_vehicle_permissions(client, db, refs):
    guest = make_user(db, "visitor", "guest")
    assert client.get("/api/vehicles/", headers=auth_headers(guest)).status_code == 403

    driver = make_user(db, "wheels", "driver")
    headers = auth_headers(driver)
    assert client.get("/api/vehicles/", headers=headers).status_code == 200
    r = client.post(
        "/api/vehicles/",
        json={"vehicle_type_id": refs["sedan"], "brand": "Kia", "model": "Rio", "year": 2021, "license_plate": "D-1", "capacity": 4},
        headers=headers,
    )
    assert r.status_code == 403


# -----------------------------
# Rates / service types / POIs
# -----------------------------
def test_rates(client, refs, admin_headers):
    r = client.get("/api/rates/", headers=admin_headers)
    assert [x["percentage"] for x in r.json()] == [0.0, 5.0, 10.0, 15.0, 20.0]

    r = client.post("/api/rates/", json={"name": "Tarifa VIP", "percentage": 30}, headers=admin_headers)
    assert r.status_code == 409
    r = client.post("/api/rates/", json={"name": "Tarifa Extrema", "percentage": 120}, headers=admin_headers)
    assert r.status_code == 422

    _vehicle(client, admin_headers, refs, rate_id=refs["vip"])
    assert client.delete(f"/api/rates/{refs['vip']}", headers=admin_headers).status_code == 409


def test_service_types_and_pois(client, refs, admin_headers):
    r = client.post("/api/service-types/", json={"name": "Aeropuerto"}, headers=admin_headers)
    assert r.status_code == 409

    r = client.patch(f"/api/service-types/{refs['airport']}", json={"name": "Aeropuertos"}, headers=admin_headers)
    assert r.status_code == 200, r.text
    assert r.json()["name"] == "Aeropuertos"

    poi = _poi(client, admin_headers, "Aeropuerto GDL", service_type_id=refs["airport"])
    assert client.post("/api/pois/", json={"name": "Aeropuerto GDL"}, headers=admin_headers).status_code == 409
    assert client.post("/api/pois/", json={"name": "Otro", "service_type_id": 9999}, headers=admin_headers).status_code == 400

    # the service type is referenced by the POI
    assert client.delete(f"/api/service-types/{refs['airport']}", headers=admin_headers).status_code == 409

    r = client.get("/api/pois/", params={"q": "gdl"}, headers=admin_headers)
    assert [p["id"] for p in r.json()] == [poi["id"]]


# -----------------------------
# Services (routes)
# -----------------------------
def _route(client, headers, refs, origin, destination, **extra):
    payload = {"origin_poi_id": origin, "destination_poi_id": destination, "vehicle_type_id": refs["sedan"], **extra}
    r = client.post("/api/services/", json=payload, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


def test_service_routes(client, refs, admin_headers):
    airport = _poi(client, admin_headers, "Aeropuerto GDL")
    hotel = _poi(client, admin_headers, "Hotel Riu")
    route = {"origin_poi_id": airport["id"], "destination_poi_id": hotel["id"], "vehicle_type_id": refs["sedan"]}

    svc = _route(client, admin_headers, refs, airport["id"], hotel["id"], note="Meet at gate 3")
    assert svc["route"] == "Aeropuerto GDL → Hotel Riu"
    assert "price" not in svc

    assert client.post("/api/services/", json=route, headers=admin_headers).status_code == 409
    # same route with another vehicle type is a different service
    other = _route(client, admin_headers, refs, airport["id"], hotel["id"], vehicle_type_id=refs["suv"])

    r = client.patch(f"/api/services/{other['id']}", json={"vehicle_type_id": refs["sedan"]}, headers=admin_headers)
    assert r.status_code == 409
    r = client.patch(f"/api/services/{svc['id']}", json={"note": "Gate 5"}, headers=admin_headers)
    assert r.status_code == 200, r.text
    assert r.json()["note"] == "Gate 5"

    bad = {**route, "origin_poi_id": hotel["id"], "destination_poi_id": hotel["id"]}
    assert client.post("/api/services/", json=bad, headers=admin_headers).status_code == 400

    # POIs on a route stay until the service goes
    assert client.delete(f"/api/pois/{hotel['id']}", headers=admin_headers).status_code == 409

    # a deleted route comes back only while its slot is free
    assert client.delete(f"/api/services/{svc['id']}", headers=admin_headers).status_code == 204
    _route(client, admin_headers, refs, airport["id"], hotel["id"])
    assert client.post(f"/api/services/{svc['id']}/restore", headers=admin_headers).status_code == 409


def test_open_origin_service(client, refs, admin_headers):
    hotel = _poi(client, admin_headers, "Hotel Riu")
    r = client.post(
        "/api/services/",
        json={"destination_poi_id": hotel["id"], "vehicle_type_id": refs["suv"]},
        headers=admin_headers,
    )
    assert r.status_code == 201, r.text
    assert r.json()["route"] == "Any → Hotel Riu"

    r = client.get("/api/services/", params={"destination_poi_id": hotel["id"]}, headers=admin_headers)
    assert r.json()["meta"]["total"] == 1


# -----------------------------
# Rate prices
# -----------------------------
def test_service_rate_prices(client, refs, admin_headers):
    airport = _poi(client, admin_headers, "Aeropuerto GDL")
    hotel = _poi(client, admin_headers, "Hotel Riu")
    svc = _route(client, admin_headers, refs, airport["id"], hotel["id"])
    url = f"/api/services/{svc['id']}/prices"

    r = client.post(url, json={"rate_id": refs["standard"], "price": 1000}, headers=admin_headers)
    assert r.status_code == 201, r.text
    price = r.json()
    # vehicle type defaults to the route's
    assert price["vehicle_type_id"] == refs["sedan"]
    assert price["route"] == "Aeropuerto GDL → Hotel Riu"
    assert price["origin"] == "Aeropuerto GDL" and price["destination"] == "Hotel Riu"
    assert price["currency"] == "MXN"
    assert price["formatted_price"] == "$1,000.00 MXN"
    assert price["pricing"]["total_price"] == 1210.9

    assert client.post(url, json={"rate_id": refs["standard"], "price": 900}, headers=admin_headers).status_code == 409
    r = client.post(url, json={"rate_id": refs["vip"], "price": 1500, "currency": "usd"}, headers=admin_headers)
    assert r.status_code == 201, r.text
    assert r.json()["currency"] == "USD"

    assert client.post(url, json={"rate_id": refs["vip"], "price": 0}, headers=admin_headers).status_code == 422
    assert client.post(url, json={"rate_id": refs["vip"], "price": 10, "currency": "GBP"}, headers=admin_headers).status_code == 422
    assert client.post(url, json={"rate_id": 9999, "price": 10}, headers=admin_headers).status_code == 400

    r = client.patch(f"{url}/{price['id']}", json={"price": 1100}, headers=admin_headers)
    assert r.status_code == 200, r.text
    assert r.json()["price"] == 1100.0

    r = client.get(url, headers=admin_headers)
    assert [p["rate_id"] for p in r.json()] == sorted([refs["standard"], refs["vip"]])

    r = client.get("/api/services/prices", params={"rate_id": refs["vip"]}, headers=admin_headers)
    assert r.status_code == 200, r.text
    assert r.json()["meta"]["total"] == 1

    # a priced rate cannot be deleted
    assert client.delete(f"/api/rates/{refs['vip']}", headers=admin_headers).status_code == 409

    assert client.delete(f"{url}/{price['id']}", headers=admin_headers).status_code == 204
    assert client.patch(f"{url}/{price['id']}", json={"price": 5}, headers=admin_headers).status_code == 404

    # deleting the route retires its prices
    assert client.delete(f"/api/services/{svc['id']}", headers=admin_headers).status_code == 204
    r = client.get("/api/services/prices", headers=admin_headers)
    assert r.json()["meta"]["total"] == 0
    assert client.delete(f"/api/rates/{refs['vip']}", headers=admin_headers).status_code == 204


def test_rate_prices_need_pricing_permissions(client, db, refs, admin_headers):
    hotel = _poi(client, admin_headers, "Hotel Riu")
    svc = _route(client, admin_headers, refs, None, hotel["id"])
    guest = make_user(db, "visitor", "guest")
    r = client.post(f"/api/services/{svc['id']}/prices", json={"rate_id": refs["standard"], "price": 10}, headers=auth_headers(guest))
    assert r.status_code == 403


# -----------------------------
# Tours
# -----------------------------
def test_tours_and_tour_prices(client, refs, admin_headers):
    teotihuacan = _poi(client, admin_headers, "Teotihuacán")
    r = client.post(
        "/api/tours/",
        json={"destination_poi_id": teotihuacan["id"], "time": 270, "available_days": [6, 1, 1],
              "start_time": "08:00", "end_time": "17:30", "notes": "Pyramids"},
        headers=admin_headers,
    )
    assert r.status_code == 201, r.text
    tour = r.json()
    assert tour["display_name"] == "Teotihuacán | 4.5h"
    assert tour["available_days"] == [1, 6]

    base = {"destination_poi_id": teotihuacan["id"], "time": 60}
    assert client.post("/api/tours/", json={**base, "available_days": [8]}, headers=admin_headers).status_code == 422
    assert client.post("/api/tours/", json={**base, "start_time": "8am"}, headers=admin_headers).status_code == 422
    r = client.post("/api/tours/", json={**base, "start_time": "18:00", "end_time": "09:00"}, headers=admin_headers)
    assert r.status_code == 400
    assert client.post("/api/tours/", json={**base, "destination_poi_id": 9999}, headers=admin_headers).status_code == 400

    r = client.get("/api/tours/", params={"day": 6}, headers=admin_headers)
    assert [t["id"] for t in r.json()["items"]] == [tour["id"]]
    r = client.get("/api/tours/", params={"day": 3}, headers=admin_headers)
    assert r.json()["meta"]["total"] == 0

    url = f"/api/tours/{tour['id']}/prices"
    # tours have no vehicle of their own
    assert client.post(url, json={"rate_id": refs["standard"], "price": 3000}, headers=admin_headers).status_code == 422
    r = client.post(url, json={"rate_id": refs["standard"], "vehicle_type_id": refs["suv"], "price": 3000}, headers=admin_headers)
    assert r.status_code == 201, r.text
    tour_price = r.json()
    assert tour_price["display_name"].startswith("Teotihuacán | 4.5h | ")
    assert tour_price["display_name"].endswith(" | $3,000.00 MXN")
    r = client.post(url, json={"rate_id": refs["standard"], "vehicle_type_id": refs["suv"], "price": 10}, headers=admin_headers)
    assert r.status_code == 409

    # the destination and vehicle type are referenced now
    assert client.delete(f"/api/pois/{teotihuacan['id']}", headers=admin_headers).status_code == 409
    assert client.delete(f"/api/vehicle-types/{refs['suv']}", headers=admin_headers).status_code == 409

    assert client.delete(f"/api/tours/{tour['id']}", headers=admin_headers).status_code == 204
    assert client.get(url, headers=admin_headers).status_code == 404
    assert client.delete(f"/api/pois/{teotihuacan['id']}", headers=admin_headers).status_code == 204

    r = client.post(f"/api/tours/{tour['id']}/restore", headers=admin_headers)
    assert r.status_code == 200, r.text
    assert r.json()["lifecycle_status"] == "archived"
    assert client.post(f"/api/tours/{tour['id']}/publish", headers=admin_headers).status_code == 404


# -----------------------------
# System
# -----------------------------
def test_health_and_metrics(client, refs, admin_headers):
    r = client.get("/health")
    assert r.status_code == 200, r.text
    assert r.json()["status"] == "ok"
    assert r.json()["database"]["status"] == "ok"

    _vehicle(client, admin_headers, refs)
    r = client.get("/metrics")
    assert r.status_code == 200, r.text
    counts = r.json()["counts"]
    assert counts["vehicles"] == 1
    assert counts["roles"] == 8
    assert r.json()["uptime_seconds"] >= 0
