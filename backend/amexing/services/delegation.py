import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.errors import NotFoundError, PermissionDeniedError, ValidationError
from ..core.logging import AuditEvent, audit_log
from ..models import DELEGATION_TYPES, DelegatedPermission, Permission, User
from ..models.conditions import validate_condition_structure
from .rbac import role_grants

logger = logging.getLogger(__name__)

# None = no upper bound
MAX_DURATIONS: Dict[str, Optional[timedelta]] = {
    "temporary": timedelta(hours=24),
    "emergency": timedelta(hours=4),
    "coverage": timedelta(days=7),
    "project": timedelta(days=30),
    "permanent": None,
}

MAX_ACTIVE_DELEGATIONS: Dict[str, int] = {
    "temporary": 10,
    "project": 5,
    "emergency": 3,
    "coverage": 3,
    "permanent": 5,
}


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _recipient_level_limit(delegator: User) -> int:
    role = delegator.role
    if role.max_delegation_level is not None:
        return role.max_delegation_level
    return (role.level or 1) - 1


def _check_permissions(db: Session, delegator: User, permissions: List[str]) -> None:
    role = delegator.role
    for name in permissions:
        if not Permission.is_valid_name(name):
            raise ValidationError(f"Invalid permission name '{name}'")
        # only permissions held through the delegator's own role can be passed on
        if not role_grants(db, role, name):
            raise PermissionDeniedError(f"You do not hold permission '{name}'")
        if not role.can_delegate_permission(name):
            raise PermissionDeniedError(f"Your role cannot delegate '{name}'")
        catalog = Permission.query_existing(db).filter(Permission.name == name).first()
        if catalog is not None and not catalog.is_delegatable():
            raise PermissionDeniedError(f"Permission '{name}' cannot be delegated")


def create_delegation(
    db: Session,
    delegator: User,
    recipient: User,
    permissions: List[str],
    delegation_type: str = "temporary",
    valid_until: Optional[datetime] = None,
    conditions: Optional[Dict[str, Any]] = None,
    restrictions: Optional[Dict[str, Any]] = None,
    reason: Optional[str] = None,
    priority: str = "normal",
) -> DelegatedPermission:
    if not delegator.is_active():
        raise PermissionDeniedError("Delegator account is not active")
    if delegator.role is None or not delegator.role.is_active():
        raise PermissionDeniedError("Delegator has no active role")
    if not recipient.is_active():
        raise ValidationError("Recipient account is not active")
    if delegator.id == recipient.id:
        raise ValidationError("Cannot delegate permissions to yourself")
    if delegation_type not in DELEGATION_TYPES:
        raise ValidationError(f"Invalid delegation type '{delegation_type}'")
    if not permissions:
        raise ValidationError("At least one permission is required")
    if conditions and not validate_condition_structure(conditions):
        raise ValidationError("Invalid delegation conditions")

    _check_permissions(db, delegator, permissions)

    recipient_level = recipient.role.level if recipient.role else 0
    limit = _recipient_level_limit(delegator)
    if recipient_level > limit:
        raise PermissionDeniedError(
            f"Cannot delegate to a user with role level {recipient_level} (limit {limit})"
        )

    active_count = (
        DelegatedPermission.query_active(db)
        .filter(
            DelegatedPermission.from_user_id == delegator.id,
            DelegatedPermission.delegation_type == delegation_type,
            DelegatedPermission.status == "active",
        )
        .count()
    )
    if active_count >= MAX_ACTIVE_DELEGATIONS[delegation_type]:
        raise ValidationError(
            f"Maximum of {MAX_ACTIVE_DELEGATIONS[delegation_type]} active {delegation_type} delegations reached"
        )

    valid_until = _naive_utc(valid_until)
    valid_from = datetime.utcnow()
    max_duration = MAX_DURATIONS[delegation_type]
    if valid_until is not None and valid_until <= valid_from:
        raise ValidationError("valid_until must be in the future")
    if max_duration is not None:
        limit_until = valid_from + max_duration
        if valid_until is None or valid_until > limit_until:
            valid_until = limit_until

    delegation = DelegatedPermission(
        from_user_id=delegator.id,
        to_user_id=recipient.id,
        permissions=list(permissions),
        conditions=conditions or {},
        restrictions=restrictions or {},
        valid_from=valid_from,
        valid_until=valid_until,
        is_permanent=valid_until is None,
        reason=reason,
        delegation_type=delegation_type,
        priority=priority,
        status="active",
        created_by=delegator.id,
    )
    db.add(delegation)
    db.flush()

    audit_log(
        AuditEvent.DELEGATION_CREATED,
        f"Delegation {delegation.id} ({delegation_type}) of {', '.join(permissions)} to {recipient.username}",
        user=delegator.username,
    )
    return delegation


def get_delegation(db: Session, delegation_id: int) -> DelegatedPermission:
    delegation = DelegatedPermission.query_existing(db).filter(DelegatedPermission.id == delegation_id).first()
    if not delegation:
        raise NotFoundError("Delegation not found")
    return delegation


def revoke_delegation(
    db: Session,
    delegation: DelegatedPermission,
    actor: User,
    reason: Optional[str] = None,
) -> DelegatedPermission:
    if delegation.status != "active":
        raise ValidationError(f"Delegation is already {delegation.status}")
    delegation.revoke(actor.id, reason)
    db.add(delegation)
    db.flush()
    audit_log(
        AuditEvent.DELEGATION_REVOKED,
        f"Delegation {delegation.id} revoked" + (f": {reason}" if reason else ""),
        user=actor.username,
    )
    return delegation


def extend_delegation(
    db: Session,
    delegation: DelegatedPermission,
    valid_until: Optional[datetime],
    actor: User,
) -> DelegatedPermission:
    """Move the end date; ``None`` makes the delegation permanent."""
    valid_until = _naive_utc(valid_until)
    if delegation.status != "active" or delegation.is_expired():
        raise ValidationError("Only active delegations can be extended")
    if valid_until is not None and valid_until <= datetime.utcnow():
        raise ValidationError("valid_until must be in the future")
    delegation.extend(valid_until, actor.id)
    db.add(delegation)
    db.flush()
    audit_log(
        AuditEvent.DELEGATION_EXTENDED,
        f"Delegation {delegation.id} extended to {valid_until.isoformat() if valid_until else 'permanent'}",
        user=actor.username,
    )
    return delegation


def cleanup_expired(db: Session, now: Optional[datetime] = None) -> int:
    """Mark active delegations past valid_until as expired; returns how many."""
    now = now or datetime.utcnow()
    expired = (
        DelegatedPermission.query_active(db)
        .filter(
            DelegatedPermission.status == "active",
            DelegatedPermission.valid_until.isnot(None),
            DelegatedPermission.valid_until < now,
        )
        .all()
    )
    for delegation in expired:
        delegation.expire()
        db.add(delegation)
    db.flush()
    if expired:
        audit_log(AuditEvent.DELEGATIONS_EXPIRED, f"{len(expired)} delegations expired", user="system")
    logger.info("Expired delegation cleanup: %d updated", len(expired))
    return len(expired)


def delegations_for(db: Session, user_id: int, direction: str = "received", include_inactive: bool = False):
    q = DelegatedPermission.query_existing(db) if include_inactive else DelegatedPermission.query_active(db)
    if direction == "given":
        q = q.filter(DelegatedPermission.from_user_id == user_id)
    else:
        q = q.filter(DelegatedPermission.to_user_id == user_id)
    return q.order_by(DelegatedPermission.created_at.desc()).all()
