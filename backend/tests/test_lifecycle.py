# backend/tests/test_lifecycle.py
import pytest
from fastapi import HTTPException

from amexing.api.common import apply_lifecycle, lifecycle_query, paginate
from amexing.models import Rate, VehicleType


def _rate(db, name="Tarifa Prueba"):
    rate = Rate(name=name, percentage=0)
    db.add(rate)
    db.commit()
    return rate


def test_state_transitions(db):
    rate = _rate(db)
    assert rate.lifecycle_status == "active"
    assert rate.is_active() and not rate.is_archived()

    rate.deactivate(1)
    assert rate.lifecycle_status == "archived"
    assert rate.modified_by == 1

    rate.soft_delete(2)
    assert rate.lifecycle_status == "deleted"
    assert rate.deleted_by == 2 and rate.deleted_at is not None
    assert not rate.active

    # restored records come back archived
    rate.restore(3)
    assert rate.lifecycle_status == "archived"
    assert rate.deleted_at is None and rate.deleted_by is None

    rate.activate(3)
    assert rate.lifecycle_status == "active"


def test_query_helpers(db):
    live = _rate(db, "Live")
    archived = _rate(db, "Archived")
    deleted = _rate(db, "Deleted")
    archived.deactivate()
    deleted.soft_delete()
    db.commit()

    def names(q):
        return {r.name for r in q.filter(Rate.name.in_(["Live", "Archived", "Deleted"])).all()}

    assert names(Rate.query_active(db)) == {"Live"}
    assert names(Rate.query_archived(db)) == {"Archived"}
    assert names(Rate.query_soft_deleted(db)) == {"Deleted"}
    assert names(Rate.query_existing(db)) == {"Live", "Archived"}
    assert names(Rate.query_all(db)) == {"Live", "Archived", "Deleted"}

    assert names(lifecycle_query(Rate, db, "existing")) == {"Live", "Archived"}
    assert names(lifecycle_query(Rate, db, None)) == {"Live"}
    assert live.id is not None


def test_apply_lifecycle_rules(db):
    rate = _rate(db)

    with pytest.raises(HTTPException) as exc:
        apply_lifecycle(db, rate, "restore", 1)
    assert exc.value.status_code == 400

    apply_lifecycle(db, rate, "delete", 1)
    with pytest.raises(HTTPException):
        apply_lifecycle(db, rate, "activate", 1)

    apply_lifecycle(db, rate, "restore", 1)
    assert rate.lifecycle_status == "archived"
    apply_lifecycle(db, rate, "activate", 1)
    assert rate.lifecycle_status == "active"

    with pytest.raises(HTTPException):
        apply_lifecycle(db, rate, "explode", 1)


def test_paginate_meta(db):
    q = VehicleType.query_active(db).order_by(VehicleType.sort_order)
    page = paginate(q, page=2, size=2, serialize=lambda t: t.code)
    assert page["meta"] == {"total": 5, "page": 2, "size": 2, "pages": 3}
    assert page["items"] == ["van", "bus"]


def test_api_lifecycle_actions(client, db, admin_headers):
    rate = _rate(db, "Tarifa Temporal")

    r = client.post(f"/api/rates/{rate.id}/deactivate", headers=admin_headers)
    assert r.status_code == 200, r.text
    assert r.json()["lifecycle_status"] == "archived"

    r = client.get("/api/rates/", params={"state": "archived"}, headers=admin_headers)
    assert [x["name"] for x in r.json()["items"]] == ["Tarifa Temporal"]

    r = client.delete(f"/api/rates/{rate.id}", headers=admin_headers)
    assert r.status_code == 204

    r = client.get(f"/api/rates/{rate.id}", headers=admin_headers)
    assert r.status_code == 404

    r = client.post(f"/api/rates/{rate.id}/restore", headers=admin_headers)
    assert r.status_code == 200, r.text
    assert r.json()["lifecycle_status"] == "archived"

    r = client.post(f"/api/rates/{rate.id}/activate", headers=admin_headers)
    assert r.json()["lifecycle_status"] == "active"

    r = client.post(f"/api/rates/{rate.id}/explode", headers=admin_headers)
    assert r.status_code == 404
