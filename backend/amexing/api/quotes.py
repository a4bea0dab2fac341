from datetime import datetime
from typing import Optional, Dict, Any
from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, EmailStr, Field, field_validator
from sqlalchemy.orm import Session

from ..models import QUOTE_STATUSES, Quote, Rate, User
from ..services import quotes as quote_service
from ..services.pricing import compute_service_items
from .common import apply_lifecycle, get_or_404, lifecycle_query, paginate
from .deps import get_db, CurrentUser, require_permission

router = APIRouter(prefix="/api/quotes", tags=["quotes"])
public_router = APIRouter(prefix="/public", tags=["public"])


# ---------- Schemas ----------
class QuoteCreate(BaseModel):
    rate_id: int
    client_id: Optional[int] = None
    contact_person: Optional[str] = None
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = None
    notes: Optional[str] = None
    number_of_people: Optional[int] = Field(None, ge=1)
    event_type: Optional[str] = None
    service_items: Optional[Dict[str, Any]] = None


class QuoteUpdate(BaseModel):
    rate_id: Optional[int] = None
    client_id: Optional[int] = None
    contact_person: Optional[str] = None
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[str] = None
    valid_until: Optional[datetime] = None
    number_of_people: Optional[int] = Field(None, ge=1)
    event_type: Optional[str] = None
    service_items: Optional[Dict[str, Any]] = None

    @field_validator("status")
    @classmethod
    def _status(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in QUOTE_STATUSES:
            raise ValueError(f"status must be one of {', '.join(QUOTE_STATUSES)}")
        return v


def serialize_quote(q: Quote, include_notes: bool = True) -> dict:
    data = {
        "id": q.id,
        "folio": q.folio,
        "rate_id": q.rate_id,
        "rate": q.rate.name if q.rate else None,
        "client_id": q.client_id,
        "client": q.client.full_name if q.client else None,
        "contact_person": q.contact_person,
        "contact_email": q.contact_email,
        "contact_phone": q.contact_phone,
        "status": q.status,
        "valid_until": q.valid_until.isoformat() if q.valid_until else None,
        "is_expired": q.is_expired(),
        "number_of_people": q.number_of_people,
        "event_type": q.event_type,
        "service_items": q.service_items or {},
        "created_at": q.created_at.isoformat() if q.created_at else None,
    }
    if include_notes:
        data.update({
            "notes": q.notes,
            "share_token_active": bool(q.share_token_active),
            "has_pending_invoice": any(i.status == "pending" and i.exists for i in q.invoices),
            "lifecycle_status": q.lifecycle_status,
        })
    return data


def _check_refs(db: Session, rate_id: Optional[int], client_id: Optional[int]) -> None:
    if rate_id is not None and not Rate.query_active(db).filter(Rate.id == rate_id).first():
        raise HTTPException(status_code=400, detail="Rate not found or inactive")
    if client_id is not None and not User.query_active(db).filter(User.id == client_id).first():
        raise HTTPException(status_code=400, detail="Client user not found or inactive")


def _load_quote(db: Session, current: CurrentUser, quote_id: int, include_deleted: bool = False) -> Quote:
    quote = get_or_404(Quote, db, quote_id, "Quote not found", include_deleted=include_deleted)
    # client users only see their own quotes
    if current.role_name == "client" and quote.client_id != current.id:
        raise HTTPException(status_code=404, detail="Quote not found")
    return quote


# ---------- Endpoints ----------
@router.get("/")
def list_quotes(
    page: int = Query(1, ge=1),
    size: int = Query(25, ge=1, le=200),
    q: Optional[str] = Query(None, description="Search folio / contact / event type"),
    quote_status: Optional[str] = Query(None, alias="status"),
    client_id: Optional[int] = Query(None),
    state: str = Query("active"),
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("quotes.read")),
):
    qs = lifecycle_query(Quote, db, state)
    if current.role_name == "client":
        qs = qs.filter(Quote.client_id == current.id)
    elif client_id is not None:
        qs = qs.filter(Quote.client_id == client_id)
    if q:
        like = f"%{q}%"
        qs = qs.filter(Quote.folio.ilike(like) | Quote.contact_person.ilike(like) | Quote.event_type.ilike(like))
    if quote_status:
        qs = qs.filter(Quote.status == quote_status)
    return paginate(qs.order_by(Quote.created_at.desc(), Quote.id.desc()), page, size, serialize_quote)


@router.post("/", status_code=status.HTTP_201_CREATED)
def create_quote(
    body: QuoteCreate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("quotes.create")),
):
    data = body.model_dump()
    if current.role_name == "client":
        data["client_id"] = current.id
    _check_refs(db, data["rate_id"], data["client_id"])
    quote = quote_service.create_quote(db, current.user, **data)
    db.commit()
    db.refresh(quote)
    return serialize_quote(quote)


@router.get("/{quote_id}")
def get_quote(
    quote_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("quotes.read")),
):
    return serialize_quote(_load_quote(db, current, quote_id))


@router.patch("/{quote_id}")
def update_quote(
    quote_id: int,
    body: QuoteUpdate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("quotes.update")),
):
    quote = _load_quote(db, current, quote_id)
    data = body.model_dump(exclude_unset=True)
    if current.role_name == "client":
        data.pop("client_id", None)
    _check_refs(db, data.get("rate_id"), data.get("client_id"))
    if "service_items" in data:
        data["service_items"] = compute_service_items(data["service_items"])
    for k, v in data.items():
        setattr(quote, k, v)
    quote.modified_by = current.id
    db.add(quote)
    db.commit()
    db.refresh(quote)
    return serialize_quote(quote)


@router.post("/{quote_id}/duplicate", status_code=status.HTTP_201_CREATED)
def duplicate_quote(
    quote_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("quotes.create")),
):
    original = _load_quote(db, current, quote_id)
    copy = quote_service.duplicate_quote(db, original, current.user)
    db.commit()
    db.refresh(copy)
    return serialize_quote(copy)


@router.post("/{quote_id}/share")
def share_quote(
    quote_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("quotes.share")),
):
    quote = _load_quote(db, current, quote_id)
    token = quote_service.enable_share(db, quote)
    db.commit()
    return {"folio": quote.folio, "share_token": token, "public_url": f"/public/quotes/{quote.folio}"}


@router.delete("/{quote_id}/share", status_code=status.HTTP_204_NO_CONTENT)
def unshare_quote(
    quote_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("quotes.share")),
):
    quote = _load_quote(db, current, quote_id)
    quote_service.disable_share(db, quote)
    db.commit()
    return None


@router.delete("/{quote_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_quote(
    quote_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("quotes.delete")),
):
    quote = _load_quote(db, current, quote_id)
    quote.share_token_active = False
    apply_lifecycle(db, quote, "delete", current.id)
    return None


# must stay below the nested POST routes
@router.post("/{quote_id}/{action}", summary="activate | deactivate | restore")
def quote_lifecycle(
    quote_id: int,
    action: str,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("quotes.update")),
):
    if action not in ("activate", "deactivate", "restore"):
        raise HTTPException(status_code=404, detail="Not found")
    quote = _load_quote(db, current, quote_id, include_deleted=True)
    return serialize_quote(apply_lifecycle(db, quote, action, current.id))


# ---------- Public ----------
@public_router.get("/quotes/{folio}")
def public_quote(folio: str, db: Session = Depends(get_db)):
    """Shared quote by folio; no authentication, internal notes omitted."""
    return serialize_quote(quote_service.find_public_quote(db, folio), include_notes=False)
