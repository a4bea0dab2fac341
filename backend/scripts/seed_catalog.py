# backend/scripts/seed_catalog.py
"""
Seeds default rates, vehicle types and service types (idempotent).

Usage:
    cd backend
    python scripts/seed_catalog.py
"""
import logging
import os
import sys

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from sqlalchemy.exc import SQLAlchemyError

from amexing.core.config import SessionLocal
from amexing.core.logging import setup_logging
from amexing.services.seeds import seed_catalog

logger = logging.getLogger("scripts.seed_catalog")


def main() -> int:
    setup_logging()
    db = SessionLocal()
    try:
        counts = seed_catalog(db)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Catalog seed failed")
        return 1
    finally:
        db.close()

    logger.info("Catalog seed complete: %s", counts)
    return 0


if __name__ == "__main__":
    sys.exit(main())
