from datetime import date
from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, Field, constr, field_validator
from sqlalchemy.orm import Session

from ..models import MAINTENANCE_STATUSES, Rate, Vehicle, VehicleImage, VehicleType
from .common import apply_lifecycle, commit_or_409, get_or_404, lifecycle_query, paginate
from .deps import get_db, CurrentUser, require_permission

router = APIRouter(prefix="/api/vehicles", tags=["vehicles"])


# ---------- Schemas ----------
class VehicleCreate(BaseModel):
    vehicle_type_id: int
    rate_id: Optional[int] = None
    brand: constr(strip_whitespace=True, min_length=1, max_length=100)
    model: constr(strip_whitespace=True, min_length=1, max_length=100)
    year: int = Field(..., ge=1950, le=2100)
    license_plate: constr(strip_whitespace=True, min_length=1, max_length=20)
    capacity: int = Field(..., ge=1, le=100)
    color: Optional[str] = None
    features: List[str] = []
    maintenance_status: str = "operational"
    insurance_expiry: Optional[date] = None

    @field_validator("maintenance_status")
    @classmethod
    def _status(cls, v: str) -> str:
        if v not in MAINTENANCE_STATUSES:
            raise ValueError(f"maintenance_status must be one of {', '.join(MAINTENANCE_STATUSES)}")
        return v


class VehicleUpdate(BaseModel):
    vehicle_type_id: Optional[int] = None
    rate_id: Optional[int] = None
    brand: Optional[constr(strip_whitespace=True, min_length=1, max_length=100)] = None
    model: Optional[constr(strip_whitespace=True, min_length=1, max_length=100)] = None
    year: Optional[int] = Field(None, ge=1950, le=2100)
    license_plate: Optional[constr(strip_whitespace=True, min_length=1, max_length=20)] = None
    capacity: Optional[int] = Field(None, ge=1, le=100)
    color: Optional[str] = None
    features: Optional[List[str]] = None
    maintenance_status: Optional[str] = None
    insurance_expiry: Optional[date] = None

    @field_validator("maintenance_status")
    @classmethod
    def _status(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in MAINTENANCE_STATUSES:
            raise ValueError(f"maintenance_status must be one of {', '.join(MAINTENANCE_STATUSES)}")
        return v


class ImageIn(BaseModel):
    url: constr(strip_whitespace=True, min_length=1)
    file_name: Optional[str] = None
    display_order: Optional[int] = None
    is_primary: bool = False


class ImageOut(BaseModel):
    id: int
    vehicle_id: int
    url: str
    file_name: Optional[str] = None
    display_order: int
    is_primary: bool

    class Config:
        from_attributes = True


def serialize_vehicle(v: Vehicle) -> dict:
    return {
        "id": v.id,
        "display_name": v.display_name,
        "vehicle_type_id": v.vehicle_type_id,
        "vehicle_type": v.vehicle_type.name if v.vehicle_type else None,
        "rate_id": v.rate_id,
        "rate": v.rate.name if v.rate else None,
        "brand": v.brand,
        "model": v.model,
        "year": v.year,
        "license_plate": v.license_plate,
        "capacity": v.capacity,
        "color": v.color,
        "features": v.features or [],
        "maintenance_status": v.maintenance_status,
        "insurance_expiry": v.insurance_expiry.isoformat() if v.insurance_expiry else None,
        "insurance_expired": v.is_insurance_expired(),
        "available": v.is_available(),
        "images": [ImageOut.model_validate(i).model_dump() for i in v.images if i.exists],
        "lifecycle_status": v.lifecycle_status,
    }


def _plate_taken(db: Session, plate: str, exclude_id: Optional[int] = None) -> bool:
    q = Vehicle.query_existing(db).filter(Vehicle.license_plate == plate)
    if exclude_id is not None:
        q = q.filter(Vehicle.id != exclude_id)
    return q.first() is not None


def _check_refs(db: Session, vehicle_type_id: Optional[int], rate_id: Optional[int]) -> None:
    if vehicle_type_id is not None and not VehicleType.query_active(db).filter(VehicleType.id == vehicle_type_id).first():
        raise HTTPException(status_code=400, detail="Vehicle type not found or inactive")
    if rate_id is not None and not Rate.query_active(db).filter(Rate.id == rate_id).first():
        raise HTTPException(status_code=400, detail="Rate not found or inactive")


def _live_images(v: Vehicle) -> List[VehicleImage]:
    return [i for i in v.images if i.exists]


# ---------- Endpoints ----------
@router.get("/", dependencies=[Depends(require_permission("vehicles.read"))])
def list_vehicles(
    page: int = Query(1, ge=1),
    size: int = Query(25, ge=1, le=200),
    q: Optional[str] = Query(None, description="Search brand / model / plate"),
    vehicle_type_id: Optional[int] = Query(None),
    maintenance_status: Optional[str] = Query(None),
    available: Optional[bool] = Query(None),
    insurance_expired: Optional[bool] = Query(None),
    state: str = Query("active"),
    db: Session = Depends(get_db),
):
    qs = lifecycle_query(Vehicle, db, state)
    if q:
        like = f"%{q}%"
        qs = qs.filter(Vehicle.brand.ilike(like) | Vehicle.model.ilike(like) | Vehicle.license_plate.ilike(like))
    if vehicle_type_id is not None:
        qs = qs.filter(Vehicle.vehicle_type_id == vehicle_type_id)
    if maintenance_status:
        qs = qs.filter(Vehicle.maintenance_status == maintenance_status)
    if available is not None:
        cond = Vehicle.active.is_(True) & (Vehicle.maintenance_status == "operational")
        qs = qs.filter(cond if available else ~cond)
    if insurance_expired is not None:
        today = date.today()
        if insurance_expired:
            qs = qs.filter(Vehicle.insurance_expiry.isnot(None), Vehicle.insurance_expiry < today)
        else:
            qs = qs.filter((Vehicle.insurance_expiry.is_(None)) | (Vehicle.insurance_expiry >= today))
    qs = qs.order_by(Vehicle.brand.asc(), Vehicle.model.asc(), Vehicle.id.asc())
    return paginate(qs, page, size, serialize_vehicle)


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_vehicle(
    body: VehicleCreate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("vehicles.create")),
):
    plate = body.license_plate.upper()
    if _plate_taken(db, plate):
        raise HTTPException(status_code=409, detail="License plate already registered")
    _check_refs(db, body.vehicle_type_id, body.rate_id)
    v = Vehicle(**{**body.model_dump(), "license_plate": plate}, created_by=current.id)
    db.add(v)
    commit_or_409(db)
    db.refresh(v)
    return serialize_vehicle(v)


@router.get("/{vehicle_id}", dependencies=[Depends(require_permission("vehicles.read"))])
def get_vehicle(vehicle_id: int, db: Session = Depends(get_db)):
    return serialize_vehicle(get_or_404(Vehicle, db, vehicle_id, "Vehicle not found"))


@router.patch("/{vehicle_id}")
def update_vehicle(
    vehicle_id: int,
    body: VehicleUpdate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("vehicles.update")),
):
    v = get_or_404(Vehicle, db, vehicle_id, "Vehicle not found")
    data = body.model_dump(exclude_unset=True)
    if data.get("license_plate"):
        data["license_plate"] = data["license_plate"].upper()
        if _plate_taken(db, data["license_plate"], exclude_id=v.id):
            raise HTTPException(status_code=409, detail="License plate already registered")
    _check_refs(db, data.get("vehicle_type_id"), data.get("rate_id"))
    for k, val in data.items():
        setattr(v, k, val)
    v.modified_by = current.id
    db.add(v)
    commit_or_409(db)
    db.refresh(v)
    return serialize_vehicle(v)


@router.delete("/{vehicle_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_vehicle(
    vehicle_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("vehicles.delete")),
):
    v = get_or_404(Vehicle, db, vehicle_id, "Vehicle not found")
    apply_lifecycle(db, v, "delete", current.id)
    return None


# ---------- Images ----------
@router.get("/{vehicle_id}/images", response_model=List[ImageOut], dependencies=[Depends(require_permission("vehicles.read"))])
def list_images(vehicle_id: int, db: Session = Depends(get_db)):
    return _live_images(get_or_404(Vehicle, db, vehicle_id, "Vehicle not found"))


@router.post("/{vehicle_id}/images", response_model=ImageOut, status_code=status.HTTP_201_CREATED)
def add_image(
    vehicle_id: int,
    body: ImageIn,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("vehicles.update")),
):
    v = get_or_404(Vehicle, db, vehicle_id, "Vehicle not found")
    images = _live_images(v)
    order = body.display_order if body.display_order is not None else len(images)
    # first image is primary by default
    primary = body.is_primary or not images
    if primary:
        for i in images:
            i.is_primary = False
    img = VehicleImage(
        vehicle_id=v.id,
        url=body.url,
        file_name=body.file_name,
        display_order=order,
        is_primary=primary,
        created_by=current.id,
    )
    db.add(img)
    db.commit()
    db.refresh(img)
    return img


@router.put("/{vehicle_id}/images/{image_id}/primary", response_model=ImageOut)
def set_primary_image(
    vehicle_id: int,
    image_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("vehicles.update")),
):
    v = get_or_404(Vehicle, db, vehicle_id, "Vehicle not found")
    target = next((i for i in _live_images(v) if i.id == image_id), None)
    if target is None:
        raise HTTPException(status_code=404, detail="Image not found")
    for i in _live_images(v):
        i.is_primary = i.id == image_id
        i.modified_by = current.id
    db.commit()
    db.refresh(target)
    return target


@router.delete("/{vehicle_id}/images/{image_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_image(
    vehicle_id: int,
    image_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("vehicles.update")),
):
    v = get_or_404(Vehicle, db, vehicle_id, "Vehicle not found")
    images = _live_images(v)
    target = next((i for i in images if i.id == image_id), None)
    if target is None:
        raise HTTPException(status_code=404, detail="Image not found")
    target.soft_delete(current.id)
    was_primary = target.is_primary
    target.is_primary = False
    remaining = [i for i in images if i.id != image_id]
    if was_primary and remaining:
        remaining[0].is_primary = True
    db.commit()
    return None


# must stay below the nested POST routes
@router.post("/{vehicle_id}/{action}", summary="activate | deactivate | restore")
def vehicle_lifecycle(
    vehicle_id: int,
    action: str,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("vehicles.update")),
):
    if action not in ("activate", "deactivate", "restore"):
        raise HTTPException(status_code=404, detail="Not found")
    v = get_or_404(Vehicle, db, vehicle_id, "Vehicle not found", include_deleted=True)
    if action == "restore" and _plate_taken(db, v.license_plate, exclude_id=v.id):
        raise HTTPException(status_code=409, detail="License plate already registered")
    return serialize_vehicle(apply_lifecycle(db, v, action, current.id))
