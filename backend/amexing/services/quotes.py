import copy
import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.errors import ConflictError, NotFoundError, ValidationError
from ..models import Invoice, Quote, User
from .pricing import compute_service_items, empty_service_items

logger = logging.getLogger(__name__)

FOLIO_RE = re.compile(r"^QTE-\d{4}-\d{4,}$")
_OPTION_SUFFIX = re.compile(r" - Opción (\d+)$")


def generate_folio(db: Session, year: Optional[int] = None) -> str:
    """QTE-<year>-<existing quotes + 1, zero padded to 4>, skipping folios already taken."""
    year = year or datetime.utcnow().year
    seq = Quote.query_existing(db).count() + 1
    while True:
        folio = f"QTE-{year}-{seq:04d}"
        if not db.query(Quote.id).filter(Quote.folio == folio).first():
            return folio
        seq += 1


def next_option_event_type(event_type: Optional[str]) -> str:
    """'Boda' -> 'Boda - Opción 2', 'Boda - Opción 2' -> 'Boda - Opción 3'."""
    event_type = event_type or ""
    match = _OPTION_SUFFIX.search(event_type)
    if match:
        return _OPTION_SUFFIX.sub(f" - Opción {int(match.group(1)) + 1}", event_type)
    return f"{event_type} - Opción 2"


def create_quote(db: Session, actor: User, **fields) -> Quote:
    quote = Quote(
        folio=generate_folio(db),
        status="requested",
        valid_until=datetime.utcnow() + timedelta(days=settings.QUOTE_VALIDITY_DAYS),
        created_by=actor.id,
        **fields,
    )
    quote.service_items = compute_service_items(fields.get("service_items") or empty_service_items())
    db.add(quote)
    db.flush()
    logger.info("Quote %s created by user %s", quote.folio, actor.id)
    return quote


def duplicate_quote(db: Session, original: Quote, actor: User) -> Quote:
    quote = Quote(
        folio=generate_folio(db),
        rate_id=original.rate_id,
        client_id=original.client_id,
        contact_person=original.contact_person,
        contact_email=original.contact_email,
        contact_phone=original.contact_phone,
        notes=original.notes,
        number_of_people=original.number_of_people or 1,
        event_type=next_option_event_type(original.event_type),
        service_items=copy.deepcopy(original.service_items) if original.service_items else empty_service_items(),
        status="draft",
        valid_until=datetime.utcnow() + timedelta(days=settings.QUOTE_VALIDITY_DAYS),
        created_by=actor.id,
    )
    db.add(quote)
    db.flush()
    logger.info("Quote %s duplicated from %s by user %s", quote.folio, original.folio, actor.id)
    return quote


def enable_share(db: Session, quote: Quote) -> str:
    if not quote.share_token:
        quote.share_token = secrets.token_urlsafe(24)
    quote.share_token_active = True
    db.add(quote)
    db.flush()
    return quote.share_token


def disable_share(db: Session, quote: Quote) -> None:
    quote.share_token_active = False
    db.add(quote)
    db.flush()


def find_public_quote(db: Session, folio: str) -> Quote:
    if not FOLIO_RE.match(folio or ""):
        raise ValidationError("Invalid folio format, expected QTE-YYYY-NNNN")
    quote = (
        Quote.query_active(db)
        .filter(Quote.folio == folio, Quote.share_token_active.is_(True))
        .first()
    )
    if not quote:
        raise NotFoundError("Quote not found")
    logger.info("Public quote %s accessed", folio)
    return quote


# ---------- Invoice requests ----------
def has_pending_invoice(db: Session, quote_id: int) -> bool:
    return (
        Invoice.query_active(db)
        .filter(Invoice.quote_id == quote_id, Invoice.status == "pending")
        .first()
        is not None
    )


def request_invoice(db: Session, quote: Quote, actor: User, notes: Optional[str] = None) -> Invoice:
    if not quote.is_active():
        raise ValidationError("Quote is not active")
    if has_pending_invoice(db, quote.id):
        raise ConflictError("An invoice request is already pending for this quote")
    invoice = Invoice(
        quote_id=quote.id,
        requested_by_id=actor.id,
        status="pending",
        request_date=datetime.utcnow(),
        notes=notes,
        created_by=actor.id,
    )
    db.add(invoice)
    db.flush()
    logger.info("Invoice requested for quote %s by user %s", quote.folio, actor.id)
    return invoice


def complete_invoice(db: Session, invoice: Invoice, actor: User, invoice_number: Optional[str] = None) -> Invoice:
    if invoice.status != "pending":
        raise ValidationError(f"Invoice request is {invoice.status}")
    invoice.mark_completed(actor.id, invoice_number)
    db.add(invoice)
    db.flush()
    return invoice


def cancel_invoice(db: Session, invoice: Invoice, actor: User) -> Invoice:
    if invoice.status != "pending":
        raise ValidationError(f"Invoice request is {invoice.status}")
    invoice.mark_cancelled(actor.id)
    db.add(invoice)
    db.flush()
    return invoice
