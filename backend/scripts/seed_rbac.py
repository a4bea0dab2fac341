# backend/scripts/seed_rbac.py
"""
Seeds the permission catalog and the system roles (idempotent).

Usage:
    cd backend
    python scripts/seed_rbac.py
    python scripts/seed_rbac.py --with-superadmin
"""
import argparse
import logging
import os
import sys

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from sqlalchemy.exc import SQLAlchemyError

from amexing.core.config import SessionLocal
from amexing.core.logging import setup_logging
from amexing.services.seeds import ensure_superadmin, seed_permissions, seed_roles

logger = logging.getLogger("scripts.seed_rbac")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Seed RBAC permissions and system roles")
    parser.add_argument("--with-superadmin", action="store_true", help="also create the superadmin user")
    args = parser.parse_args(argv)

    setup_logging()
    db = SessionLocal()
    try:
        permissions = seed_permissions(db)
        roles = seed_roles(db)
        if args.with_superadmin:
            ensure_superadmin(db)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("RBAC seed failed")
        return 1
    finally:
        db.close()

    logger.info("RBAC seed complete: %d new permissions, %d new roles", permissions, roles)
    return 0


if __name__ == "__main__":
    sys.exit(main())
