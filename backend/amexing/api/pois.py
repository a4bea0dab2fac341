from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, constr
from sqlalchemy.orm import Session

from ..models import POI, ServiceType
from ..services.catalog import catalog_in_use
from .common import apply_lifecycle, commit_or_409, get_or_404, lifecycle_query
from .deps import get_db, CurrentUser, require_permission

router = APIRouter(prefix="/api/pois", tags=["pois"])


# ---------- Schemas ----------
class POICreate(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=200)
    service_type_id: Optional[int] = None


class POIUpdate(BaseModel):
    name: Optional[constr(strip_whitespace=True, min_length=1, max_length=200)] = None
    service_type_id: Optional[int] = None


class POIOut(BaseModel):
    id: int
    name: str
    service_type_id: Optional[int] = None
    lifecycle_status: str

    class Config:
        from_attributes = True


def _name_taken(db: Session, name: str, exclude_id: Optional[int] = None) -> bool:
    q = db.query(POI).filter(POI.name == name)
    if exclude_id is not None:
        q = q.filter(POI.id != exclude_id)
    return q.first() is not None


def _check_service_type(db: Session, service_type_id: Optional[int]) -> None:
    if service_type_id is not None and not ServiceType.query_active(db).filter(ServiceType.id == service_type_id).first():
        raise HTTPException(status_code=400, detail="Service type not found or inactive")


# ---------- Endpoints ----------
@router.get("/", response_model=List[POIOut], dependencies=[Depends(require_permission("services.read"))])
def list_pois(
    q: Optional[str] = Query(None),
    service_type_id: Optional[int] = Query(None),
    state: str = Query("active"),
    db: Session = Depends(get_db),
):
    qs = lifecycle_query(POI, db, state)
    if q:
        qs = qs.filter(POI.name.ilike(f"%{q}%"))
    if service_type_id is not None:
        qs = qs.filter(POI.service_type_id == service_type_id)
    return qs.order_by(POI.name.asc()).all()


@router.post("/", response_model=POIOut, status_code=status.HTTP_201_CREATED)
def create_poi(
    body: POICreate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("services.create")),
):
    if _name_taken(db, body.name):
        raise HTTPException(status_code=409, detail="Point of interest already exists")
    _check_service_type(db, body.service_type_id)
    poi = POI(**body.model_dump(), created_by=current.id)
    db.add(poi)
    commit_or_409(db)
    db.refresh(poi)
    return poi


@router.get("/{poi_id}", response_model=POIOut, dependencies=[Depends(require_permission("services.read"))])
def get_poi(poi_id: int, db: Session = Depends(get_db)):
    return get_or_404(POI, db, poi_id, "Point of interest not found")


@router.patch("/{poi_id}", response_model=POIOut)
def update_poi(
    poi_id: int,
    body: POIUpdate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("services.update")),
):
    poi = get_or_404(POI, db, poi_id, "Point of interest not found")
    data = body.model_dump(exclude_unset=True)
    if data.get("name") and _name_taken(db, data["name"], exclude_id=poi.id):
        raise HTTPException(status_code=409, detail="Point of interest already exists")
    _check_service_type(db, data.get("service_type_id"))
    for k, v in data.items():
        setattr(poi, k, v)
    poi.modified_by = current.id
    commit_or_409(db)
    db.refresh(poi)
    return poi


@router.delete("/{poi_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_poi(
    poi_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("services.delete")),
):
    poi = get_or_404(POI, db, poi_id, "Point of interest not found")
    if catalog_in_use(db, POI, poi.id):
        raise HTTPException(status_code=409, detail="Point of interest is used by a service route or tour")
    apply_lifecycle(db, poi, "delete", current.id)
    return None


@router.post("/{poi_id}/{action}", response_model=POIOut, summary="activate | deactivate | restore")
def poi_lifecycle(
    poi_id: int,
    action: str,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("services.update")),
):
    if action not in ("activate", "deactivate", "restore"):
        raise HTTPException(status_code=404, detail="Not found")
    poi = get_or_404(POI, db, poi_id, "Point of interest not found", include_deleted=True)
    return apply_lifecycle(db, poi, action, current.id)
