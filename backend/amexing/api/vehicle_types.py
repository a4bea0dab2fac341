from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, Field, constr
from sqlalchemy.orm import Session

from ..models import VehicleType
from ..services.catalog import catalog_in_use
from .common import apply_lifecycle, commit_or_409, get_or_404, lifecycle_query
from .deps import get_db, CurrentUser, require_permission

router = APIRouter(prefix="/api/vehicle-types", tags=["vehicle-types"])


# ---------- Schemas ----------
class VehicleTypeCreate(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=100)
    code: constr(strip_whitespace=True, min_length=1, max_length=50)
    description: Optional[str] = None
    icon: Optional[str] = None
    default_capacity: int = Field(4, ge=1, le=100)
    sort_order: int = 0


class VehicleTypeUpdate(BaseModel):
    name: Optional[constr(strip_whitespace=True, min_length=1, max_length=100)] = None
    code: Optional[constr(strip_whitespace=True, min_length=1, max_length=50)] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    default_capacity: Optional[int] = Field(None, ge=1, le=100)
    sort_order: Optional[int] = None


class VehicleTypeOut(BaseModel):
    id: int
    name: str
    code: str
    description: Optional[str] = None
    icon: Optional[str] = None
    default_capacity: int
    sort_order: int
    lifecycle_status: str

    class Config:
        from_attributes = True


def _code_taken(db: Session, code: str, exclude_id: Optional[int] = None) -> bool:
    q = db.query(VehicleType).filter(VehicleType.code == code)
    if exclude_id is not None:
        q = q.filter(VehicleType.id != exclude_id)
    return q.first() is not None


# ---------- Endpoints ----------
@router.get("/", response_model=List[VehicleTypeOut], dependencies=[Depends(require_permission("vehicles.read"))])
def list_vehicle_types(state: str = Query("active"), db: Session = Depends(get_db)):
    return lifecycle_query(VehicleType, db, state).order_by(VehicleType.sort_order.asc(), VehicleType.name.asc()).all()


@router.post("/", response_model=VehicleTypeOut, status_code=status.HTTP_201_CREATED)
def create_vehicle_type(
    body: VehicleTypeCreate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("vehicles.create")),
):
    code = body.code.lower()
    if _code_taken(db, code):
        raise HTTPException(status_code=409, detail="Vehicle type code already exists")
    vt = VehicleType(**{**body.model_dump(), "code": code}, created_by=current.id)
    db.add(vt)
    commit_or_409(db)
    db.refresh(vt)
    return vt


@router.get("/{type_id}", response_model=VehicleTypeOut, dependencies=[Depends(require_permission("vehicles.read"))])
def get_vehicle_type(type_id: int, db: Session = Depends(get_db)):
    return get_or_404(VehicleType, db, type_id, "Vehicle type not found")


@router.patch("/{type_id}", response_model=VehicleTypeOut)
def update_vehicle_type(
    type_id: int,
    body: VehicleTypeUpdate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("vehicles.update")),
):
    vt = get_or_404(VehicleType, db, type_id, "Vehicle type not found")
    data = body.model_dump(exclude_unset=True)
    if data.get("code"):
        data["code"] = data["code"].lower()
        if _code_taken(db, data["code"], exclude_id=vt.id):
            raise HTTPException(status_code=409, detail="Vehicle type code already exists")
    for k, v in data.items():
        setattr(vt, k, v)
    vt.modified_by = current.id
    db.add(vt)
    commit_or_409(db)
    db.refresh(vt)
    return vt


@router.delete("/{type_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_vehicle_type(
    type_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("vehicles.delete")),
):
    vt = get_or_404(VehicleType, db, type_id, "Vehicle type not found")
    if catalog_in_use(db, VehicleType, vt.id):
        raise HTTPException(status_code=409, detail="Vehicle type is in use by vehicles, services or prices")
    apply_lifecycle(db, vt, "delete", current.id)
    return None


@router.post("/{type_id}/{action}", response_model=VehicleTypeOut, summary="activate | deactivate | restore")
def vehicle_type_lifecycle(
    type_id: int,
    action: str,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("vehicles.update")),
):
    if action not in ("activate", "deactivate", "restore"):
        raise HTTPException(status_code=404, detail="Not found")
    vt = get_or_404(VehicleType, db, type_id, "Vehicle type not found", include_deleted=True)
    return apply_lifecycle(db, vt, action, current.id)
