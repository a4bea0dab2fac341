# backend/tests/test_experiences_api.py
from amexing.models import MAX_INCLUDED_EXPERIENCES


def _create(client, headers, name, **extra):
    payload = {"name": name, "description": f"{name} description", "cost": 500}
    payload.update(extra)
    r = client.post("/api/experiences/", json=payload, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


def test_create_and_name_uniqueness(client, admin_headers):
    exp = _create(client, admin_headers, "Tequila Tour", type="Provider")
    assert exp["type"] == "Provider"
    assert exp["is_package"] is False
    assert exp["display_name"] == "Tequila Tour"

    r = client.post(
        "/api/experiences/",
        json={"name": "Tequila Tour", "description": "again"},
        headers=admin_headers,
    )
    assert r.status_code == 409


def test_validation(client, admin_headers):
    r = client.post("/api/experiences/", json={"name": "X", "description": "d", "type": "Hotel"}, headers=admin_headers)
    assert r.status_code == 422
    r = client.post("/api/experiences/", json={"name": "X", "description": "d" * 1001}, headers=admin_headers)
    assert r.status_code == 422
    r = client.post("/api/experiences/", json={"name": "X", "description": "d", "cost": -1}, headers=admin_headers)
    assert r.status_code == 422


def test_package_with_included_experiences(client, admin_headers):
    a = _create(client, admin_headers, "Cata de vinos")
    b = _create(client, admin_headers, "Paseo en globo")

    package = _create(client, admin_headers, "Fin de semana", experiences=[b["id"], a["id"], b["id"]])
    assert package["is_package"] is True
    assert package["display_name"] == "Fin de semana (+2 experiencias)"
    # duplicates collapse and order is preserved
    assert [x["id"] for x in package["experiences"]] == [b["id"], a["id"]]

    r = client.get(f"/api/experiences/{a['id']}/packages", headers=admin_headers)
    assert r.status_code == 200, r.text
    assert [p["id"] for p in r.json()] == [package["id"]]


def test_included_experiences_must_exist(client, admin_headers):
    r = client.post(
        "/api/experiences/",
        json={"name": "Paquete", "description": "d", "experiences": [12345]},
        headers=admin_headers,
    )
    assert r.status_code == 400
    assert "12345" in r.json()["detail"]


def test_package_limit(client, admin_headers):
    ids = [_create(client, admin_headers, f"Exp {i}")["id"] for i in range(MAX_INCLUDED_EXPERIENCES + 1)]

    r = client.post(
        "/api/experiences/",
        json={"name": "Mega", "description": "d", "experiences": ids},
        headers=admin_headers,
    )
    assert r.status_code == 400

    package = _create(client, admin_headers, "Casi mega", experiences=ids[:MAX_INCLUDED_EXPERIENCES])
    r = client.post(f"/api/experiences/{package['id']}/experiences/{ids[-1]}", headers=admin_headers)
    assert r.status_code == 400


def test_cannot_include_itself(client, admin_headers):
    exp = _create(client, admin_headers, "Solo")
    r = client.patch(f"/api/experiences/{exp['id']}", json={"experiences": [exp["id"]]}, headers=admin_headers)
    assert r.status_code == 400
    r = client.post(f"/api/experiences/{exp['id']}/experiences/{exp['id']}", headers=admin_headers)
    assert r.status_code == 400


def test_add_and_remove_included(client, admin_headers):
    a = _create(client, admin_headers, "Cata de vinos")
    b = _create(client, admin_headers, "Paseo en globo")
    package = _create(client, admin_headers, "Fin de semana", experiences=[a["id"]])

    r = client.post(f"/api/experiences/{package['id']}/experiences/{b['id']}", headers=admin_headers)
    assert r.status_code == 200, r.text
    assert [x["id"] for x in r.json()["experiences"]] == [a["id"], b["id"]]

    r = client.post(f"/api/experiences/{package['id']}/experiences/{b['id']}", headers=admin_headers)
    assert r.status_code == 409

    r = client.delete(f"/api/experiences/{package['id']}/experiences/{a['id']}", headers=admin_headers)
    assert r.status_code == 200, r.text
    assert [x["id"] for x in r.json()["experiences"]] == [b["id"]]

    r = client.delete(f"/api/experiences/{package['id']}/experiences/{a['id']}", headers=admin_headers)
    assert r.status_code == 404


def test_update_and_lifecycle(client, admin_headers):
    exp = _create(client, admin_headers, "Nado con delfines")
    _create(client, admin_headers, "Snorkel")

    r = client.patch(f"/api/experiences/{exp['id']}", json={"name": "Snorkel"}, headers=admin_headers)
    assert r.status_code == 409
    r = client.patch(f"/api/experiences/{exp['id']}", json={"cost": 1200.5}, headers=admin_headers)
    assert r.json()["cost"] == 1200.5

    assert client.delete(f"/api/experiences/{exp['id']}", headers=admin_headers).status_code == 204
    # the name is free again once the record is deleted
    replacement = _create(client, admin_headers, "Nado con delfines")
    r = client.post(f"/api/experiences/{exp['id']}/restore", headers=admin_headers)
    assert r.status_code == 409

    client.delete(f"/api/experiences/{replacement['id']}", headers=admin_headers)
    r = client.post(f"/api/experiences/{exp['id']}/restore", headers=admin_headers)
    assert r.status_code == 200, r.text
    assert r.json()["lifecycle_status"] == "archived"


def test_listing_filters(client, admin_headers):
    _create(client, admin_headers, "Cata de vinos")
    _create(client, admin_headers, "Proveedor de flores", type="Provider")

    r = client.get("/api/experiences/", params={"type": "Provider"}, headers=admin_headers)
    assert [x["name"] for x in r.json()["items"]] == ["Proveedor de flores"]
    r = client.get("/api/experiences/", params={"q": "vinos"}, headers=admin_headers)
    assert r.json()["meta"]["total"] == 1
