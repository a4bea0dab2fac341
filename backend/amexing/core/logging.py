"""
Logging setup and security audit trail.

Application modules log through ``logging.getLogger(__name__)``. Security
relevant events (logins, lockouts, RBAC changes, delegations) go through
``audit_log`` to the dedicated ``security.audit`` logger, which writes to a
rotating ``audit.log`` file.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

from .config import settings


audit_logger = logging.getLogger("security.audit")

_configured = False


def setup_logging(level: Optional[str] = None) -> None:
    """Configure root logging and the audit file handler (idempotent)."""
    global _configured
    if _configured:
        return

    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if settings.AUDIT_LOG_ENABLED:
        os.makedirs(settings.LOG_DIR, exist_ok=True)
        # 10MB per file, keep 5 backups
        handler = RotatingFileHandler(
            os.path.join(settings.LOG_DIR, "audit.log"),
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
        )
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        audit_logger.addHandler(handler)
    audit_logger.setLevel(logging.INFO)

    _configured = True


def audit_log(event_type, details, user=None, ip_address=None, level="INFO"):
    """
    Log a security audit event.

    Args:
        event_type: Type of event (e.g., 'LOGIN_SUCCESS', 'ROLE_UPDATED')
        details: Description of what happened
        user: Username or id of the actor (defaults to 'anonymous')
        ip_address: Client IP when known
        level: Log level ('INFO', 'WARNING', 'ERROR')
    """
    message = f"{event_type} | User: {user or 'anonymous'} | IP: {ip_address or 'unknown'} | {details}"

    if level == "WARNING":
        audit_logger.warning(message)
    elif level == "ERROR":
        audit_logger.error(message)
    else:
        audit_logger.info(message)


class AuditEvent:
    """Audit event type constants."""
    # Authentication
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILED = "LOGIN_FAILED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"

    # User management
    USER_CREATED = "USER_CREATED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"
    USER_ROLE_CHANGED = "USER_ROLE_CHANGED"

    # RBAC
    ROLE_CREATED = "ROLE_CREATED"
    ROLE_UPDATED = "ROLE_UPDATED"
    ROLE_DELETED = "ROLE_DELETED"
    PERMISSION_CREATED = "PERMISSION_CREATED"
    PERMISSION_UPDATED = "PERMISSION_UPDATED"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # Delegation
    DELEGATION_CREATED = "DELEGATION_CREATED"
    DELEGATION_USED = "DELEGATION_USED"
    DELEGATION_REVOKED = "DELEGATION_REVOKED"
    DELEGATION_EXTENDED = "DELEGATION_EXTENDED"
    DELEGATIONS_EXPIRED = "DELEGATIONS_EXPIRED"

    # Pricing
    CLIENT_PRICES_UPDATED = "CLIENT_PRICES_UPDATED"
