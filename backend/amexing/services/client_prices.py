"""
Client price overrides with version history.

A version is current while ``valid_until`` is NULL. Saving a new price never
updates a row in place: the current version is closed at the end of today
and a new current version is inserted, so the full history stays queryable.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.errors import ValidationError
from ..core.logging import AuditEvent, audit_log
from ..models import PRICE_ITEM_TYPES, ClientPrice, Experience, Service, Tour

logger = logging.getLogger(__name__)

PriceKey = Tuple[int, int]  # (rate_id, vehicle_type_id)

ITEM_MODELS = {"SERVICES": Service, "TOURS": Tour, "EXPERIENCES": Experience}


def _check_item_type(item_type: str) -> None:
    if item_type not in PRICE_ITEM_TYPES:
        raise ValidationError(f"item_type must be one of {', '.join(PRICE_ITEM_TYPES)}")


def _check_item_exists(db: Session, item_type: str, item_id: int) -> None:
    model = ITEM_MODELS[item_type]
    if model.query_existing(db).filter(model.id == item_id).first() is None:
        raise ValidationError(f"{item_type} item {item_id} not found")


def _sheet_keys(prices: List[Dict[str, Any]]) -> List[PriceKey]:
    keys = [(int(entry["rate_id"]), int(entry["vehicle_type_id"])) for entry in prices]
    seen = set()
    for key in keys:
        if key in seen:
            raise ValidationError(f"Duplicate price entry for rate {key[0]} and vehicle type {key[1]}")
        seen.add(key)
    return keys


def _current_query(db: Session, client_id: int):
    return ClientPrice.query_existing(db).filter(
        ClientPrice.client_id == client_id,
        ClientPrice.valid_until.is_(None),
    )


def save_client_prices(
    db: Session,
    client_id: int,
    item_type: str,
    item_id: int,
    prices: List[Dict[str, Any]],
    actor_id: Optional[int] = None,
) -> Dict[str, int]:
    """
    Apply a full price sheet for one item.

    Each entry carries ``rate_id``, ``vehicle_type_id`` and ``price`` (plus
    optional ``base_price``, ``currency``, ``notes``). A positive price
    starts a new version; a missing or zero price retires the current one.
    Current versions whose key is absent from ``prices`` are retired too.
    A sheet naming the same key twice is rejected before anything changes.
    """
    _check_item_type(item_type)
    _check_item_exists(db, item_type, item_id)
    keys = _sheet_keys(prices)
    now = datetime.utcnow()

    existing: Dict[PriceKey, ClientPrice] = {
        (p.rate_id, p.vehicle_type_id): p
        for p in _current_query(db, client_id)
        .filter(ClientPrice.item_type == item_type, ClientPrice.item_id == item_id)
        .all()
    }

    summary = {"created": 0, "closed": 0, "deactivated": 0}

    for key, entry in zip(keys, prices):
        current = existing.pop(key, None)
        price = entry.get("price")

        if price is not None and float(price) > 0:
            if current is not None:
                current.close(now)
                current.last_modified_by = actor_id
                summary["closed"] += 1
            base_price = entry.get("base_price")
            if base_price is None and current is not None:
                base_price = current.base_price
            db.add(ClientPrice(
                client_id=client_id,
                rate_id=key[0],
                vehicle_type_id=key[1],
                item_type=item_type,
                item_id=item_id,
                price=price,
                base_price=base_price,
                currency=entry.get("currency") or settings.DEFAULT_CURRENCY,
                notes=entry.get("notes"),
                created_by=actor_id,
                last_modified_by=actor_id,
                valid_until=None,
            ))
            summary["created"] += 1
        elif current is not None:
            current.close(now)
            current.last_modified_by = actor_id
            current.deactivate(actor_id)
            summary["deactivated"] += 1

    # keys dropped from the sheet
    for current in existing.values():
        current.close(now)
        current.last_modified_by = actor_id
        current.deactivate(actor_id)
        summary["deactivated"] += 1

    db.flush()
    audit_log(
        AuditEvent.CLIENT_PRICES_UPDATED,
        f"Client {client_id} {item_type}#{item_id}: {summary}",
        user=actor_id,
    )
    return summary


def get_client_prices(db: Session, client_id: int, item_type: str, item_id: int) -> List[ClientPrice]:
    _check_item_type(item_type)
    return (
        _current_query(db, client_id)
        .filter(
            ClientPrice.active.is_(True),
            ClientPrice.item_type == item_type,
            ClientPrice.item_id == item_id,
        )
        .order_by(ClientPrice.rate_id, ClientPrice.vehicle_type_id)
        .all()
    )


def get_all_client_prices(db: Session, client_id: int, item_type: Optional[str] = None) -> List[ClientPrice]:
    q = _current_query(db, client_id).filter(ClientPrice.active.is_(True))
    if item_type:
        _check_item_type(item_type)
        q = q.filter(ClientPrice.item_type == item_type)
    return q.order_by(ClientPrice.item_type, ClientPrice.item_id).all()


def get_price_history(
    db: Session,
    client_id: int,
    item_type: str,
    item_id: int,
    rate_id: int,
    vehicle_type_id: int,
) -> List[ClientPrice]:
    """Every version for one key, newest first."""
    _check_item_type(item_type)
    return (
        ClientPrice.query_existing(db)
        .filter(
            ClientPrice.client_id == client_id,
            ClientPrice.item_type == item_type,
            ClientPrice.item_id == item_id,
            ClientPrice.rate_id == rate_id,
            ClientPrice.vehicle_type_id == vehicle_type_id,
        )
        .order_by(ClientPrice.created_at.desc(), ClientPrice.id.desc())
        .all()
    )
