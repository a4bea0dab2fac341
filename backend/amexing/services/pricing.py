import logging
from typing import Any, Dict, Iterable, List, Optional

from ..core.config import settings

logger = logging.getLogger(__name__)


def _round2(value: float) -> float:
    return round(float(value), 2)


def _percentage(surcharge_percentage: Optional[float]) -> float:
    if surcharge_percentage is None:
        return settings.PAYMENT_SURCHARGE_PERCENTAGE
    return float(surcharge_percentage)


def calculate_surcharge(base_price: float, surcharge_percentage: Optional[float] = None) -> float:
    """Payment surcharge for ``base_price``; zero for non-positive prices."""
    if not base_price or base_price <= 0:
        return 0.0
    return _round2(float(base_price) * _percentage(surcharge_percentage) / 100)


def price_with_surcharge(base_price: float, surcharge_percentage: Optional[float] = None) -> float:
    return _round2(float(base_price or 0) + calculate_surcharge(base_price, surcharge_percentage))


def price_breakdown(base_price: float, surcharge_percentage: Optional[float] = None) -> Dict[str, float]:
    percentage = _percentage(surcharge_percentage)
    surcharge = calculate_surcharge(base_price, percentage)
    return {
        "base_price": _round2(base_price or 0),
        "surcharge": surcharge,
        "total_price": _round2(float(base_price or 0) + surcharge),
        "surcharge_percentage": percentage,
    }


def bulk_price_breakdown(prices: Iterable[float], surcharge_percentage: Optional[float] = None) -> List[Dict[str, float]]:
    return [price_breakdown(p, surcharge_percentage) for p in prices]


def format_mxn(amount: Optional[float]) -> str:
    return f"${float(amount or 0):,.2f} MXN"


# ---------- Quote service items ----------
def empty_service_items() -> Dict[str, Any]:
    return {"days": [], "subtotal": 0, "iva": 0, "total": 0}


def compute_service_items(service_items: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Recalculate totals for a quote's ``service_items``.

    Shape: ``{"days": [{"day": 1, "services": [{"description", "price",
    "quantity"}], "subtotal"}], "subtotal", "iva", "total"}``. Day and
    document subtotals come from the service lines; IVA is applied once on
    the document subtotal.
    """
    items = dict(service_items or {})
    days: List[Dict[str, Any]] = []
    subtotal = 0.0
    for day in items.get("days") or []:
        day = dict(day)
        services = [dict(s) for s in day.get("services") or []]
        day_total = 0.0
        for service in services:
            quantity = service.get("quantity") or 1
            line = float(service.get("price") or 0) * quantity
            service["total"] = _round2(line)
            day_total += line
        day["services"] = services
        day["subtotal"] = _round2(day_total)
        subtotal += day_total
        days.append(day)

    subtotal = _round2(subtotal)
    iva = _round2(subtotal * settings.IVA_RATE)
    items.update({"days": days, "subtotal": subtotal, "iva": iva, "total": _round2(subtotal + iva)})
    return items
