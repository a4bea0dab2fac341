from datetime import datetime
from typing import Optional, List
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..models import PRICE_ITEM_TYPES, ClientPrice, User
from ..services import client_prices as price_service
from ..services.pricing import bulk_price_breakdown, price_breakdown
from .deps import get_db, CurrentUser, require_permission

router = APIRouter(prefix="/api/client-prices", tags=["client-prices"])


# ---------- Schemas ----------
class PriceEntry(BaseModel):
    rate_id: int
    vehicle_type_id: int
    price: Optional[float] = Field(None, ge=0)
    base_price: Optional[float] = Field(None, ge=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    notes: Optional[str] = None


class PriceSheetIn(BaseModel):
    item_type: str
    item_id: int
    prices: List[PriceEntry]


class ClientPriceOut(BaseModel):
    id: int
    client_id: int
    rate_id: int
    vehicle_type_id: int
    item_type: str
    item_id: int
    price: float
    base_price: Optional[float] = None
    currency: str
    notes: Optional[str] = None
    valid_until: Optional[datetime] = None
    created_at: datetime
    last_modified_by: Optional[int] = None
    discount_percentage: float
    formatted_price: str
    is_discount: bool
    is_markup: bool
    is_current: bool
    lifecycle_status: str


class BreakdownIn(BaseModel):
    prices: List[float] = Field(..., min_length=1)
    surcharge_percentage: Optional[float] = Field(None, ge=0, le=100)


def serialize_price(p: ClientPrice) -> dict:
    return {
        "id": p.id,
        "client_id": p.client_id,
        "rate_id": p.rate_id,
        "vehicle_type_id": p.vehicle_type_id,
        "item_type": p.item_type,
        "item_id": p.item_id,
        "price": float(p.price),
        "base_price": float(p.base_price) if p.base_price is not None else None,
        "currency": p.currency,
        "notes": p.notes,
        "valid_until": p.valid_until,
        "created_at": p.created_at,
        "last_modified_by": p.last_modified_by,
        "discount_percentage": p.discount_percentage,
        "formatted_price": p.formatted_price,
        "is_discount": p.is_discount(),
        "is_markup": p.is_markup(),
        "is_current": p.is_current(),
        "lifecycle_status": p.lifecycle_status,
    }


def _client_user(db: Session, client_user_id: int) -> User:
    user = User.query_existing(db).filter(User.id == client_user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="Client user not found")
    return user


def _check_item_type(item_type: Optional[str]) -> None:
    if item_type is not None and item_type not in PRICE_ITEM_TYPES:
        raise HTTPException(status_code=400, detail=f"item_type must be one of {', '.join(PRICE_ITEM_TYPES)}")


# ---------- Endpoints ----------
@router.post("/breakdown", dependencies=[Depends(require_permission("pricing.read"))])
def surcharge_breakdown(body: BreakdownIn):
    """Payment surcharge breakdown for one or more base prices."""
    if len(body.prices) == 1:
        return price_breakdown(body.prices[0], body.surcharge_percentage)
    return {"items": bulk_price_breakdown(body.prices, body.surcharge_percentage)}


@router.put("/{client_user_id}")
def save_prices(
    client_user_id: int,
    body: PriceSheetIn,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("pricing.update")),
):
    _check_item_type(body.item_type)
    _client_user(db, client_user_id)
    summary = price_service.save_client_prices(
        db,
        client_user_id,
        body.item_type,
        body.item_id,
        [p.model_dump() for p in body.prices],
        actor_id=current.id,
    )
    db.commit()
    current_prices = price_service.get_client_prices(db, client_user_id, body.item_type, body.item_id)
    return {"summary": summary, "items": [serialize_price(p) for p in current_prices]}


@router.get("/{client_user_id}", response_model=List[ClientPriceOut], dependencies=[Depends(require_permission("pricing.read"))])
def list_current_prices(
    client_user_id: int,
    item_type: Optional[str] = Query(None),
    item_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
):
    _check_item_type(item_type)
    _client_user(db, client_user_id)
    if item_id is not None:
        if item_type is None:
            raise HTTPException(status_code=400, detail="item_type is required with item_id")
        rows = price_service.get_client_prices(db, client_user_id, item_type, item_id)
    else:
        rows = price_service.get_all_client_prices(db, client_user_id, item_type)
    return [serialize_price(p) for p in rows]


@router.get("/{client_user_id}/history", response_model=List[ClientPriceOut], dependencies=[Depends(require_permission("pricing.read"))])
def price_history(
    client_user_id: int,
    item_type: str = Query(...),
    item_id: int = Query(...),
    rate_id: int = Query(...),
    vehicle_type_id: int = Query(...),
    db: Session = Depends(get_db),
):
    _check_item_type(item_type)
    _client_user(db, client_user_id)
    rows = price_service.get_price_history(db, client_user_id, item_type, item_id, rate_id, vehicle_type_id)
    return [serialize_price(p) for p in rows]
