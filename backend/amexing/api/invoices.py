from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..models import INVOICE_STATUSES, Invoice, Quote
from ..services import quotes as quote_service
from .common import get_or_404, paginate
from .deps import get_db, CurrentUser, require_permission

router = APIRouter(prefix="/api/invoices", tags=["invoices"])


# ---------- Schemas ----------
class InvoiceRequestIn(BaseModel):
    quote_id: int
    notes: Optional[str] = None


class InvoiceCompleteIn(BaseModel):
    invoice_number: Optional[str] = None


class InvoiceOut(BaseModel):
    id: int
    quote_id: int
    folio: Optional[str] = None
    requested_by_id: Optional[int] = None
    processed_by_id: Optional[int] = None
    status: str
    request_date: datetime
    process_date: Optional[datetime] = None
    notes: Optional[str] = None
    invoice_number: Optional[str] = None
    lifecycle_status: str


def serialize_invoice(i: Invoice) -> dict:
    return InvoiceOut(
        id=i.id,
        quote_id=i.quote_id,
        folio=i.quote.folio if i.quote else None,
        requested_by_id=i.requested_by_id,
        processed_by_id=i.processed_by_id,
        status=i.status,
        request_date=i.request_date,
        process_date=i.process_date,
        notes=i.notes,
        invoice_number=i.invoice_number,
        lifecycle_status=i.lifecycle_status,
    ).model_dump()


# ---------- Endpoints ----------
@router.get("/", dependencies=[Depends(require_permission("invoices.read"))])
def list_invoices(
    page: int = Query(1, ge=1),
    size: int = Query(25, ge=1, le=200),
    invoice_status: Optional[str] = Query("pending", alias="status"),
    quote_id: Optional[int] = Query(None),
    db: Session = Depends(get_db),
):
    """Pending requests by default; completed and cancelled ones are archived or deleted."""
    if invoice_status and invoice_status not in INVOICE_STATUSES:
        raise HTTPException(status_code=400, detail=f"status must be one of {', '.join(INVOICE_STATUSES)}")
    qs = Invoice.query_all(db)
    if invoice_status:
        qs = qs.filter(Invoice.status == invoice_status)
    if quote_id is not None:
        qs = qs.filter(Invoice.quote_id == quote_id)
    return paginate(qs.order_by(Invoice.request_date.desc(), Invoice.id.desc()), page, size, serialize_invoice)


@router.post("/", status_code=status.HTTP_201_CREATED)
def request_invoice(
    body: InvoiceRequestIn,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("invoices.request")),
):
    quote = get_or_404(Quote, db, body.quote_id, "Quote not found")
    if current.role_name == "client" and quote.client_id != current.id:
        raise HTTPException(status_code=404, detail="Quote not found")
    invoice = quote_service.request_invoice(db, quote, current.user, body.notes)
    db.commit()
    db.refresh(invoice)
    return serialize_invoice(invoice)


@router.get("/{invoice_id}", dependencies=[Depends(require_permission("invoices.read"))])
def get_invoice(invoice_id: int, db: Session = Depends(get_db)):
    return serialize_invoice(get_or_404(Invoice, db, invoice_id, "Invoice request not found", include_deleted=True))


@router.post("/{invoice_id}/complete")
def complete_invoice(
    invoice_id: int,
    body: InvoiceCompleteIn,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("invoices.process")),
):
    invoice = get_or_404(Invoice, db, invoice_id, "Invoice request not found")
    quote_service.complete_invoice(db, invoice, current.user, body.invoice_number)
    db.commit()
    db.refresh(invoice)
    return serialize_invoice(invoice)


@router.post("/{invoice_id}/cancel")
def cancel_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("invoices.process")),
):
    invoice = get_or_404(Invoice, db, invoice_id, "Invoice request not found")
    quote_service.cancel_invoice(db, invoice, current.user)
    db.commit()
    db.refresh(invoice)
    return serialize_invoice(invoice)
