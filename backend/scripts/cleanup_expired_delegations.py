# backend/scripts/cleanup_expired_delegations.py
"""
Marks delegations past their valid_until as expired. Meant for cron.

Usage:
    cd backend
    python scripts/cleanup_expired_delegations.py
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
from amexing.services.delegation import cleanup_expired

logger = logging.getLogger("scripts.cleanup_expired_delegations")


def main() -> int:
    setup_logging()
    db = SessionLocal()
    try:
        count = cleanup_expired(db)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Delegation cleanup failed")
        return 1
    finally:
        db.close()
    logger.info("%d delegations expired", count)
    return 0


if __name__ == "__main__":
    sys.exit(main())
