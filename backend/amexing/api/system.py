import logging
import time
from datetime import datetime

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import Client, DelegatedPermission, Experience, Quote, Role, Service, Tour, User, Vehicle
from .deps import get_db

router = APIRouter(tags=["system"])
logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()

_COUNTED = {
    "users": User,
    "clients": Client,
    "roles": Role,
    "delegations": DelegatedPermission,
    "vehicles": Vehicle,
    "services": Service,
    "tours": Tour,
    "quotes": Quote,
    "experiences": Experience,
}


@router.get("/health")
def health(db: Session = Depends(get_db)):
    started = time.perf_counter()
    try:
        db.execute(text("SELECT 1"))
        database = {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 2)}
        status_code = 200
    except SQLAlchemyError as exc:
        logger.error("Database health check failed: %s", exc)
        database = {"status": "error", "error": str(exc.__class__.__name__)}
        status_code = 503
    body = {
        "status": "ok" if status_code == 200 else "degraded",
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "database": database,
    }
    return JSONResponse(status_code=status_code, content=body)


@router.get("/metrics")
def metrics(db: Session = Depends(get_db)):
    """Uptime and live entity counts."""
    return {
        "uptime_seconds": round(time.monotonic() - STARTED_AT, 1),
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "counts": {name: model.query_active(db).count() for name, model in _COUNTED.items()},
    }
