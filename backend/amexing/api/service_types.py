from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, constr
from sqlalchemy.orm import Session

from ..models import ServiceType
from ..services.catalog import catalog_in_use
from .common import apply_lifecycle, commit_or_409, get_or_404, lifecycle_query
from .deps import get_db, CurrentUser, require_permission

router = APIRouter(prefix="/api/service-types", tags=["service-types"])


class ServiceTypeIn(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=100)


class ServiceTypeOut(BaseModel):
    id: int
    name: str
    lifecycle_status: str

    class Config:
        from_attributes = True


def _name_taken(db: Session, name: str, exclude_id: Optional[int] = None) -> bool:
    q = db.query(ServiceType).filter(ServiceType.name == name)
    if exclude_id is not None:
        q = q.filter(ServiceType.id != exclude_id)
    return q.first() is not None


@router.get("/", response_model=List[ServiceTypeOut], dependencies=[Depends(require_permission("services.read"))])
def list_service_types(state: str = Query("active"), db: Session = Depends(get_db)):
    return lifecycle_query(ServiceType, db, state).order_by(ServiceType.name.asc()).all()


@router.post("/", response_model=ServiceTypeOut, status_code=status.HTTP_201_CREATED)
def create_service_type(
    body: ServiceTypeIn,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("services.create")),
):
    if _name_taken(db, body.name):
        raise HTTPException(status_code=409, detail="Service type already exists")
    st = ServiceType(name=body.name, created_by=current.id)
    db.add(st)
    commit_or_409(db)
    db.refresh(st)
    return st


@router.patch("/{type_id}", response_model=ServiceTypeOut)
def rename_service_type(
    type_id: int,
    body: ServiceTypeIn,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("services.update")),
):
    st = get_or_404(ServiceType, db, type_id, "Service type not found")
    if _name_taken(db, body.name, exclude_id=st.id):
        raise HTTPException(status_code=409, detail="Service type already exists")
    st.name = body.name
    st.modified_by = current.id
    commit_or_409(db)
    db.refresh(st)
    return st


@router.delete("/{type_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_service_type(
    type_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("services.delete")),
):
    st = get_or_404(ServiceType, db, type_id, "Service type not found")
    if catalog_in_use(db, ServiceType, st.id):
        raise HTTPException(status_code=409, detail="Service type is in use by points of interest")
    apply_lifecycle(db, st, "delete", current.id)
    return None


@router.post("/{type_id}/{action}", response_model=ServiceTypeOut, summary="activate | deactivate | restore")
def service_type_lifecycle(
    type_id: int,
    action: str,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("services.update")),
):
    if action not in ("activate", "deactivate", "restore"):
        raise HTTPException(status_code=404, detail="Not found")
    st = get_or_404(ServiceType, db, type_id, "Service type not found", include_deleted=True)
    return apply_lifecycle(db, st, action, current.id)
