import re
from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from ..models import POI, Tour, TourPrice
from ..services.catalog import delete_item_prices, item_prices
from .common import apply_lifecycle, commit_or_409, get_or_404, lifecycle_query, paginate
from .deps import get_db, CurrentUser, require_permission
from .services import (
    ItemPriceIn,
    ItemPriceUpdate,
    add_item_price,
    find_item_price,
    serialize_item_price,
    update_item_price,
)

router = APIRouter(prefix="/api/tours", tags=["tours"])

_HHMM = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# ---------- Schemas ----------
def _check_days(v: Optional[List[int]]) -> Optional[List[int]]:
    if v is None:
        return v
    if any(d < 1 or d > 7 for d in v):
        raise ValueError("available_days are ISO weekdays (1 = Monday .. 7 = Sunday)")
    return sorted(set(v))


def _check_hhmm(v: Optional[str]) -> Optional[str]:
    if v is not None and not _HHMM.match(v):
        raise ValueError("times use the HH:MM format")
    return v


class TourCreate(BaseModel):
    destination_poi_id: int
    time: int = Field(..., ge=1)  # minutes
    notes: Optional[str] = None
    available_days: Optional[List[int]] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None

    @field_validator("available_days")
    @classmethod
    def _days(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        return _check_days(v)

    @field_validator("start_time", "end_time")
    @classmethod
    def _times(cls, v: Optional[str]) -> Optional[str]:
        return _check_hhmm(v)


class TourUpdate(BaseModel):
    destination_poi_id: Optional[int] = None
    time: Optional[int] = Field(None, ge=1)
    notes: Optional[str] = None
    available_days: Optional[List[int]] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None

    @field_validator("available_days")
    @classmethod
    def _days(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        return _check_days(v)

    @field_validator("start_time", "end_time")
    @classmethod
    def _times(cls, v: Optional[str]) -> Optional[str]:
        return _check_hhmm(v)


class TourPriceIn(ItemPriceIn):
    vehicle_type_id: int


def serialize_tour(t: Tour) -> dict:
    return {
        "id": t.id,
        "display_name": t.display_name,
        "destination_poi_id": t.destination_poi_id,
        "destination": t.destination_poi.name if t.destination_poi else None,
        "time": t.time,
        "hours": round((t.time or 0) / 60, 1),
        "notes": t.notes,
        "available_days": t.available_days or [],
        "start_time": t.start_time,
        "end_time": t.end_time,
        "lifecycle_status": t.lifecycle_status,
    }


def serialize_tour_price(p: TourPrice) -> dict:
    out = serialize_item_price(p)
    out.update(tour_id=p.tour_id, display_name=p.display_name)
    return out


def _check_destination(db: Session, poi_id: Optional[int]) -> None:
    if poi_id is not None and not POI.query_active(db).filter(POI.id == poi_id).first():
        raise HTTPException(status_code=400, detail="Destination not found or inactive")


def _check_window(start_time: Optional[str], end_time: Optional[str]) -> None:
    # zero-padded HH:MM compares correctly as text
    if start_time and end_time and start_time >= end_time:
        raise HTTPException(status_code=400, detail="start_time must be before end_time")


# ---------- Endpoints ----------
@router.get("/", dependencies=[Depends(require_permission("services.read"))])
def list_tours(
    page: int = Query(1, ge=1),
    size: int = Query(25, ge=1, le=200),
    destination_poi_id: Optional[int] = Query(None),
    day: Optional[int] = Query(None, ge=1, le=7, description="ISO weekday the tour must run on"),
    state: str = Query("active"),
    db: Session = Depends(get_db),
):
    qs = lifecycle_query(Tour, db, state)
    if destination_poi_id is not None:
        qs = qs.filter(Tour.destination_poi_id == destination_poi_id)
    qs = qs.order_by(Tour.id.asc())
    if day is not None:
        # available_days is JSON; filter in Python so every backend behaves alike
        ids = [t.id for t in qs.all() if not t.available_days or day in t.available_days]
        qs = lifecycle_query(Tour, db, state).filter(Tour.id.in_(ids)).order_by(Tour.id.asc())
    return paginate(qs, page, size, serialize_tour)


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_tour(
    body: TourCreate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("services.create")),
):
    _check_destination(db, body.destination_poi_id)
    _check_window(body.start_time, body.end_time)
    tour = Tour(**body.model_dump(), created_by=current.id)
    db.add(tour)
    commit_or_409(db)
    db.refresh(tour)
    return serialize_tour(tour)


@router.get("/{tour_id}", dependencies=[Depends(require_permission("services.read"))])
def get_tour(tour_id: int, db: Session = Depends(get_db)):
    return serialize_tour(get_or_404(Tour, db, tour_id, "Tour not found"))


@router.patch("/{tour_id}")
def update_tour(
    tour_id: int,
    body: TourUpdate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("services.update")),
):
    tour = get_or_404(Tour, db, tour_id, "Tour not found")
    data = body.model_dump(exclude_unset=True)
    _check_destination(db, data.get("destination_poi_id"))
    _check_window(data.get("start_time", tour.start_time), data.get("end_time", tour.end_time))
    for k, v in data.items():
        setattr(tour, k, v)
    tour.modified_by = current.id
    commit_or_409(db)
    db.refresh(tour)
    return serialize_tour(tour)


@router.delete("/{tour_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_tour(
    tour_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("services.delete")),
):
    tour = get_or_404(Tour, db, tour_id, "Tour not found")
    delete_item_prices(db, tour, current.id)
    apply_lifecycle(db, tour, "delete", current.id)
    return None


# ---------- Tour prices ----------
@router.get("/{tour_id}/prices", dependencies=[Depends(require_permission("pricing.read"))])
def list_tour_prices(tour_id: int, db: Session = Depends(get_db)):
    tour = get_or_404(Tour, db, tour_id, "Tour not found")
    rows = item_prices(db, tour).order_by(TourPrice.rate_id, TourPrice.vehicle_type_id).all()
    return [serialize_tour_price(p) for p in rows]


@router.post("/{tour_id}/prices", status_code=status.HTTP_201_CREATED)
def add_tour_price(
    tour_id: int,
    body: TourPriceIn,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("pricing.update")),
):
    tour = get_or_404(Tour, db, tour_id, "Tour not found")
    row = add_item_price(db, tour, TourPrice, "tour_id", body, body.vehicle_type_id, current.id)
    return serialize_tour_price(row)


@router.patch("/{tour_id}/prices/{price_id}")
def update_tour_price(
    tour_id: int,
    price_id: int,
    body: ItemPriceUpdate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("pricing.update")),
):
    tour = get_or_404(Tour, db, tour_id, "Tour not found")
    row = find_item_price(db, tour, price_id)
    return serialize_tour_price(update_item_price(db, row, body, current.id))


@router.delete("/{tour_id}/prices/{price_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_tour_price(
    tour_id: int,
    price_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("pricing.update")),
):
    tour = get_or_404(Tour, db, tour_id, "Tour not found")
    apply_lifecycle(db, find_item_price(db, tour, price_id), "delete", current.id)
    return None


# must stay below the nested POST routes
@router.post("/{tour_id}/{action}", summary="activate | deactivate | restore")
def tour_lifecycle(
    tour_id: int,
    action: str,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("services.update")),
):
    if action not in ("activate", "deactivate", "restore"):
        raise HTTPException(status_code=404, detail="Not found")
    tour = get_or_404(Tour, db, tour_id, "Tour not found", include_deleted=True)
    return serialize_tour(apply_lifecycle(db, tour, action, current.id))
