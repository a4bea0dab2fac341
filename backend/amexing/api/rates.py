from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, Field, constr
from sqlalchemy.orm import Session

from ..models import Rate
from ..services.catalog import catalog_in_use
from .common import apply_lifecycle, commit_or_409, get_or_404, lifecycle_query
from .deps import get_db, CurrentUser, require_permission

router = APIRouter(prefix="/api/rates", tags=["rates"])


# ---------- Schemas ----------
class RateCreate(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=100)
    percentage: float = Field(0, ge=0, le=100)
    color: Optional[str] = None


class RateUpdate(BaseModel):
    name: Optional[constr(strip_whitespace=True, min_length=1, max_length=100)] = None
    percentage: Optional[float] = Field(None, ge=0, le=100)
    color: Optional[str] = None


class RateOut(BaseModel):
    id: int
    name: str
    percentage: float
    color: Optional[str] = None
    lifecycle_status: str

    class Config:
        from_attributes = True


def _name_taken(db: Session, name: str, exclude_id: Optional[int] = None) -> bool:
    q = db.query(Rate).filter(Rate.name == name)
    if exclude_id is not None:
        q = q.filter(Rate.id != exclude_id)
    return q.first() is not None


# ---------- Endpoints ----------
@router.get("/", response_model=List[RateOut], dependencies=[Depends(require_permission("pricing.read"))])
def list_rates(state: str = Query("active"), db: Session = Depends(get_db)):
    return lifecycle_query(Rate, db, state).order_by(Rate.percentage.asc(), Rate.name.asc()).all()


@router.post("/", response_model=RateOut, status_code=status.HTTP_201_CREATED)
def create_rate(
    body: RateCreate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("pricing.update")),
):
    if _name_taken(db, body.name):
        raise HTTPException(status_code=409, detail="Rate name already exists")
    rate = Rate(**body.model_dump(), created_by=current.id)
    db.add(rate)
    commit_or_409(db)
    db.refresh(rate)
    return rate


@router.get("/{rate_id}", response_model=RateOut, dependencies=[Depends(require_permission("pricing.read"))])
def get_rate(rate_id: int, db: Session = Depends(get_db)):
    return get_or_404(Rate, db, rate_id, "Rate not found")


@router.patch("/{rate_id}", response_model=RateOut)
def update_rate(
    rate_id: int,
    body: RateUpdate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("pricing.update")),
):
    rate = get_or_404(Rate, db, rate_id, "Rate not found")
    data = body.model_dump(exclude_unset=True)
    if data.get("name") and _name_taken(db, data["name"], exclude_id=rate.id):
        raise HTTPException(status_code=409, detail="Rate name already exists")
    for k, v in data.items():
        setattr(rate, k, v)
    rate.modified_by = current.id
    db.add(rate)
    commit_or_409(db)
    db.refresh(rate)
    return rate


@router.delete("/{rate_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rate(
    rate_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("pricing.update")),
):
    rate = get_or_404(Rate, db, rate_id, "Rate not found")
    if catalog_in_use(db, Rate, rate.id):
        raise HTTPException(status_code=409, detail="Rate is in use by vehicles, service or tour prices, or client prices")
    apply_lifecycle(db, rate, "delete", current.id)
    return None


@router.post("/{rate_id}/{action}", response_model=RateOut, summary="activate | deactivate | restore")
def rate_lifecycle(
    rate_id: int,
    action: str,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("pricing.update")),
):
    if action not in ("activate", "deactivate", "restore"):
        raise HTTPException(status_code=404, detail="Not found")
    rate = get_or_404(Rate, db, rate_id, "Rate not found", include_deleted=True)
    return apply_lifecycle(db, rate, action, current.id)
