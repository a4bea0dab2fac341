from typing import Optional

from sqlalchemy.orm import Session

from ..models import POI, ClientPrice, Rate, RatePrice, Service, ServiceType, Tour, TourPrice, Vehicle, VehicleType

# priced item -> (price model, foreign key column)
PRICE_TABLES = {
    Service: (RatePrice, RatePrice.service_id),
    Tour: (TourPrice, TourPrice.tour_id),
}


def _referenced(db: Session, model, *criteria) -> bool:
    return model.query_existing(db).filter(*criteria).first() is not None


def catalog_in_use(db: Session, model, obj_id: int) -> bool:
    """True while a rate / vehicle type / service type / POI is referenced by existing records."""
    if model is Rate:
        return (
            _referenced(db, Vehicle, Vehicle.rate_id == obj_id)
            or _referenced(db, RatePrice, RatePrice.rate_id == obj_id)
            or _referenced(db, TourPrice, TourPrice.rate_id == obj_id)
            or ClientPrice.query_active(db).filter(ClientPrice.rate_id == obj_id).first() is not None
        )
    if model is VehicleType:
        return (
            _referenced(db, Vehicle, Vehicle.vehicle_type_id == obj_id)
            or _referenced(db, Service, Service.vehicle_type_id == obj_id)
            or _referenced(db, RatePrice, RatePrice.vehicle_type_id == obj_id)
            or _referenced(db, TourPrice, TourPrice.vehicle_type_id == obj_id)
        )
    if model is ServiceType:
        return _referenced(db, POI, POI.service_type_id == obj_id)
    if model is POI:
        return _referenced(
            db, Service, (Service.origin_poi_id == obj_id) | (Service.destination_poi_id == obj_id)
        ) or _referenced(db, Tour, Tour.destination_poi_id == obj_id)
    return False


def service_route_taken(
    db: Session,
    origin_poi_id,
    destination_poi_id: int,
    vehicle_type_id: int,
    exclude_id=None,
) -> bool:
    q = Service.query_existing(db).filter(
        Service.origin_poi_id == origin_poi_id,
        Service.destination_poi_id == destination_poi_id,
        Service.vehicle_type_id == vehicle_type_id,
    )
    if exclude_id is not None:
        q = q.filter(Service.id != exclude_id)
    return q.first() is not None


# ---------- Item prices (RatePrice / TourPrice) ----------
def item_prices(db: Session, item):
    price_model, fk = PRICE_TABLES[type(item)]
    return price_model.query_existing(db).filter(fk == item.id)


def price_key_taken(
    db: Session,
    item,
    rate_id: int,
    vehicle_type_id: int,
    exclude_id: Optional[int] = None,
) -> bool:
    """One existing price per (item, rate, vehicle type)."""
    price_model, _ = PRICE_TABLES[type(item)]
    q = item_prices(db, item).filter(
        price_model.rate_id == rate_id,
        price_model.vehicle_type_id == vehicle_type_id,
    )
    if exclude_id is not None:
        q = q.filter(price_model.id != exclude_id)
    return q.first() is not None


def delete_item_prices(db: Session, item, actor_id: Optional[int] = None) -> int:
    """Soft-delete the prices of a deleted service or tour."""
    rows = item_prices(db, item).all()
    for row in rows:
        row.soft_delete(actor_id)
    return len(rows)
