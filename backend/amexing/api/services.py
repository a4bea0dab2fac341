from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from ..models import POI, PRICE_CURRENCIES, Rate, RatePrice, Service, VehicleType
from ..services.catalog import delete_item_prices, item_prices, price_key_taken, service_route_taken
from ..services.pricing import price_breakdown
from .common import apply_lifecycle, commit_or_409, get_or_404, lifecycle_query, paginate
from .deps import get_db, CurrentUser, require_permission

router = APIRouter(prefix="/api/services", tags=["services"])


# ---------- Schemas ----------
def _check_currency(v: str) -> str:
    v = v.upper()
    if v not in PRICE_CURRENCIES:
        raise ValueError(f"currency must be one of {', '.join(PRICE_CURRENCIES)}")
    return v


class ServiceCreate(BaseModel):
    origin_poi_id: Optional[int] = None
    destination_poi_id: int
    vehicle_type_id: int
    note: Optional[str] = None


class ServiceUpdate(BaseModel):
    origin_poi_id: Optional[int] = None
    destination_poi_id: Optional[int] = None
    vehicle_type_id: Optional[int] = None
    note: Optional[str] = None


class ItemPriceIn(BaseModel):
    rate_id: int
    vehicle_type_id: Optional[int] = None  # services default to their own vehicle type
    price: float = Field(..., gt=0)
    currency: str = "MXN"

    @field_validator("currency")
    @classmethod
    def _currency(cls, v: str) -> str:
        return _check_currency(v)


class ItemPriceUpdate(BaseModel):
    price: Optional[float] = Field(None, gt=0)
    currency: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _currency(cls, v: Optional[str]) -> Optional[str]:
        return v if v is None else _check_currency(v)


def serialize_service(s: Service) -> dict:
    return {
        "id": s.id,
        "route": s.route_description,
        "origin_poi_id": s.origin_poi_id,
        "origin": s.origin_poi.name if s.origin_poi else None,
        "destination_poi_id": s.destination_poi_id,
        "destination": s.destination_poi.name if s.destination_poi else None,
        "vehicle_type_id": s.vehicle_type_id,
        "vehicle_type": s.vehicle_type.name if s.vehicle_type else None,
        "note": s.note,
        "lifecycle_status": s.lifecycle_status,
    }


def serialize_item_price(p) -> dict:
    """Fields shared by rate prices and tour prices."""
    return {
        "id": p.id,
        "rate_id": p.rate_id,
        "rate": p.rate.name if p.rate else None,
        "vehicle_type_id": p.vehicle_type_id,
        "vehicle_type": p.vehicle_type.name if p.vehicle_type else None,
        "price": float(p.price),
        "currency": p.currency,
        "formatted_price": p.formatted_price,
        "pricing": price_breakdown(float(p.price)),
        "lifecycle_status": p.lifecycle_status,
    }


def serialize_rate_price(p: RatePrice) -> dict:
    out = serialize_item_price(p)
    svc = p.service
    out.update(
        service_id=p.service_id,
        route=svc.route_description if svc else None,
        origin=svc.origin_poi.name if svc and svc.origin_poi else None,
        destination=svc.destination_poi.name if svc and svc.destination_poi else None,
    )
    return out


def _check_refs(db: Session, data: dict) -> None:
    for key, model, label in (
        ("origin_poi_id", POI, "Origin"),
        ("destination_poi_id", POI, "Destination"),
        ("vehicle_type_id", VehicleType, "Vehicle type"),
        ("rate_id", Rate, "Rate"),
    ):
        obj_id = data.get(key)
        if obj_id is not None and not model.query_active(db).filter(model.id == obj_id).first():
            raise HTTPException(status_code=400, detail=f"{label} not found or inactive")


def _check_route(origin_poi_id: Optional[int], destination_poi_id: int) -> None:
    if origin_poi_id is not None and origin_poi_id == destination_poi_id:
        raise HTTPException(status_code=400, detail="Origin and destination must differ")


def add_item_price(db: Session, item, price_model, fk_name: str, body: ItemPriceIn, vehicle_type_id: int, actor_id: int):
    _check_refs(db, {"rate_id": body.rate_id, "vehicle_type_id": vehicle_type_id})
    if price_key_taken(db, item, body.rate_id, vehicle_type_id):
        raise HTTPException(status_code=409, detail="A price already exists for this rate and vehicle type")
    row = price_model(
        **{fk_name: item.id},
        rate_id=body.rate_id,
        vehicle_type_id=vehicle_type_id,
        price=body.price,
        currency=body.currency,
        created_by=actor_id,
    )
    db.add(row)
    commit_or_409(db)
    db.refresh(row)
    return row


def find_item_price(db: Session, item, price_id: int):
    row = next((p for p in item_prices(db, item) if p.id == price_id), None)
    if row is None:
        raise HTTPException(status_code=404, detail="Price not found")
    return row


def update_item_price(db: Session, row, body: ItemPriceUpdate, actor_id: int):
    for k, v in body.model_dump(exclude_unset=True).items():
        if v is not None:
            setattr(row, k, v)
    row.modified_by = actor_id
    db.commit()
    db.refresh(row)
    return row


# ---------- Endpoints ----------
@router.get("/", dependencies=[Depends(require_permission("services.read"))])
def list_services(
    page: int = Query(1, ge=1),
    size: int = Query(25, ge=1, le=200),
    origin_poi_id: Optional[int] = Query(None),
    destination_poi_id: Optional[int] = Query(None),
    vehicle_type_id: Optional[int] = Query(None),
    state: str = Query("active"),
    db: Session = Depends(get_db),
):
    qs = lifecycle_query(Service, db, state)
    if origin_poi_id is not None:
        qs = qs.filter(Service.origin_poi_id == origin_poi_id)
    if destination_poi_id is not None:
        qs = qs.filter(Service.destination_poi_id == destination_poi_id)
    if vehicle_type_id is not None:
        qs = qs.filter(Service.vehicle_type_id == vehicle_type_id)
    return paginate(qs.order_by(Service.id.asc()), page, size, serialize_service)


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_service(
    body: ServiceCreate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("services.create")),
):
    data = body.model_dump()
    _check_refs(db, data)
    _check_route(body.origin_poi_id, body.destination_poi_id)
    if service_route_taken(db, body.origin_poi_id, body.destination_poi_id, body.vehicle_type_id):
        raise HTTPException(status_code=409, detail="A service already exists for this route and vehicle type")
    svc = Service(**data, created_by=current.id)
    db.add(svc)
    commit_or_409(db)
    db.refresh(svc)
    return serialize_service(svc)


@router.get("/prices", dependencies=[Depends(require_permission("pricing.read"))])
def list_rate_prices(
    page: int = Query(1, ge=1),
    size: int = Query(25, ge=1, le=200),
    service_id: Optional[int] = Query(None),
    rate_id: Optional[int] = Query(None),
    vehicle_type_id: Optional[int] = Query(None),
    state: str = Query("active"),
    db: Session = Depends(get_db),
):
    """Rate prices across services, filtered by service, rate or vehicle type."""
    qs = lifecycle_query(RatePrice, db, state)
    if service_id is not None:
        qs = qs.filter(RatePrice.service_id == service_id)
    if rate_id is not None:
        qs = qs.filter(RatePrice.rate_id == rate_id)
    if vehicle_type_id is not None:
        qs = qs.filter(RatePrice.vehicle_type_id == vehicle_type_id)
    return paginate(qs.order_by(RatePrice.id.asc()), page, size, serialize_rate_price)


@router.get("/{service_id}", dependencies=[Depends(require_permission("services.read"))])
def get_service(service_id: int, db: Session = Depends(get_db)):
    return serialize_service(get_or_404(Service, db, service_id, "Service not found"))


@router.patch("/{service_id}")
def update_service(
    service_id: int,
    body: ServiceUpdate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("services.update")),
):
    svc = get_or_404(Service, db, service_id, "Service not found")
    data = body.model_dump(exclude_unset=True)
    merged = {
        "origin_poi_id": data.get("origin_poi_id", svc.origin_poi_id),
        "destination_poi_id": data.get("destination_poi_id", svc.destination_poi_id),
        "vehicle_type_id": data.get("vehicle_type_id", svc.vehicle_type_id),
    }
    _check_refs(db, data)
    _check_route(merged["origin_poi_id"], merged["destination_poi_id"])
    if service_route_taken(db, exclude_id=svc.id, **merged):
        raise HTTPException(status_code=409, detail="A service already exists for this route and vehicle type")
    for k, v in data.items():
        setattr(svc, k, v)
    svc.modified_by = current.id
    commit_or_409(db)
    db.refresh(svc)
    return serialize_service(svc)


@router.delete("/{service_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_service(
    service_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("services.delete")),
):
    svc = get_or_404(Service, db, service_id, "Service not found")
    delete_item_prices(db, svc, current.id)
    apply_lifecycle(db, svc, "delete", current.id)
    return None


# ---------- Rate prices ----------
@router.get("/{service_id}/prices", dependencies=[Depends(require_permission("pricing.read"))])
def list_service_prices(service_id: int, db: Session = Depends(get_db)):
    svc = get_or_404(Service, db, service_id, "Service not found")
    rows = item_prices(db, svc).order_by(RatePrice.rate_id, RatePrice.vehicle_type_id).all()
    return [serialize_rate_price(p) for p in rows]


@router.post("/{service_id}/prices", status_code=status.HTTP_201_CREATED)
def add_service_price(
    service_id: int,
    body: ItemPriceIn,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("pricing.update")),
):
    svc = get_or_404(Service, db, service_id, "Service not found")
    vehicle_type_id = body.vehicle_type_id or svc.vehicle_type_id
    row = add_item_price(db, svc, RatePrice, "service_id", body, vehicle_type_id, current.id)
    return serialize_rate_price(row)


@router.patch("/{service_id}/prices/{price_id}")
def update_service_price(
    service_id: int,
    price_id: int,
    body: ItemPriceUpdate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("pricing.update")),
):
    svc = get_or_404(Service, db, service_id, "Service not found")
    row = find_item_price(db, svc, price_id)
    return serialize_rate_price(update_item_price(db, row, body, current.id))


@router.delete("/{service_id}/prices/{price_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_service_price(
    service_id: int,
    price_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("pricing.update")),
):
    svc = get_or_404(Service, db, service_id, "Service not found")
    apply_lifecycle(db, find_item_price(db, svc, price_id), "delete", current.id)
    return None


# must stay below the nested POST routes
@router.post("/{service_id}/{action}", summary="activate | deactivate | restore")
def service_lifecycle(
    service_id: int,
    action: str,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("services.update")),
):
    if action not in ("activate", "deactivate", "restore"):
        raise HTTPException(status_code=404, detail="Not found")
    svc = get_or_404(Service, db, service_id, "Service not found", include_deleted=True)
    if action == "restore" and service_route_taken(
        db, svc.origin_poi_id, svc.destination_poi_id, svc.vehicle_type_id, exclude_id=svc.id
    ):
        raise HTTPException(status_code=409, detail="A service already exists for this route and vehicle type")
    return serialize_service(apply_lifecycle(db, svc, action, current.id))
