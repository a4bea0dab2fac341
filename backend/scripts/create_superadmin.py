# backend/scripts/create_superadmin.py
"""
Creates the superadmin account (roles are seeded first when missing).

Usage:
    cd backend
    python scripts/create_superadmin.py --email admin@amexing.com --username admin --password '...'

Missing options fall back to SUPERADMIN_EMAIL / SUPERADMIN_USERNAME /
SUPERADMIN_PASSWORD from the environment.
"""
import argparse
import logging
import os
import sys

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from sqlalchemy.exc import SQLAlchemyError

from amexing.core.config import SessionLocal, settings
from amexing.core.logging import AuditEvent, audit_log, setup_logging
from amexing.core.security import password_policy_errors
from amexing.services.seeds import ensure_superadmin

logger = logging.getLogger("scripts.create_superadmin")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create the superadmin user")
    parser.add_argument("--email", default=None)
    parser.add_argument("--username", default=None)
    parser.add_argument("--password", default=None)
    args = parser.parse_args(argv)

    setup_logging()
    password = args.password or settings.SUPERADMIN_PASSWORD
    errors = password_policy_errors(password)
    if errors:
        for err in errors:
            logger.error("Password rejected: %s", err)
        return 2

    db = SessionLocal()
    try:
        user = ensure_superadmin(db, email=args.email, username=args.username, password=password)
        db.commit()
        audit_log(AuditEvent.USER_CREATED, f"Superadmin {user.email} ensured", user="system")
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not create superadmin")
        return 1
    finally:
        db.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
