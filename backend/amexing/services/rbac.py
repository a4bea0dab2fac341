"""
Authorization decisions.

``authorize`` walks three steps in order:

1. the user must be live and not locked out;
2. the user's role (plus its ``inherits_from`` chain) must grant the
   permission, and the role's conditions must hold for the context;
3. otherwise an active delegation to the user may grant it, subject to the
   delegation's conditions and restrictions.

The first step that grants access wins; every denial carries a reason.
"""

import ipaddress
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import List, Optional, Set

from sqlalchemy.orm import Session

from ..core.logging import AuditEvent, audit_log
from ..models import DelegatedPermission, Role, User, permission_matches
from ..models.conditions import PermissionContext, condition_denial

logger = logging.getLogger(__name__)


@dataclass
class AuthorizationResult:
    allowed: bool
    source: Optional[str] = None        # "role" | "delegation"
    reason: Optional[str] = None
    delegation_id: Optional[int] = None

    def __bool__(self) -> bool:
        return self.allowed


# ---------- Role grants ----------
def role_chain(db: Session, role: Role) -> List[Role]:
    """The role followed by its live ancestors; inheritance cycles stop the walk."""
    chain = [role]
    seen: Set[str] = {role.name}
    parent_name = role.inherits_from
    while parent_name and parent_name not in seen:
        parent = Role.query_active(db).filter(Role.name == parent_name).first()
        if parent is None:
            break
        chain.append(parent)
        seen.add(parent.name)
        parent_name = parent.inherits_from
    return chain


def effective_permissions(db: Session, role: Role) -> Set[str]:
    perms: Set[str] = set()
    for r in role_chain(db, role):
        perms.update(r.base_permissions or [])
    return perms


def role_grants(db: Session, role: Role, permission: str) -> bool:
    return any(permission_matches(grant, permission) for grant in effective_permissions(db, role))


def role_condition_denial(role: Role, permission: str, context: PermissionContext) -> Optional[str]:
    reason = condition_denial(role.conditions, context)
    if reason:
        return reason
    contextual = (role.contextual_permissions or {}).get(permission) or {}
    return condition_denial(contextual.get("conditions"), context)


# ---------- Delegation grants ----------
def ip_allowed(ip_address: Optional[str], allowed_ranges: List[str]) -> bool:
    if not allowed_ranges:
        return True
    if not ip_address:
        return False
    try:
        addr = ipaddress.ip_address(ip_address)
    except ValueError:
        return False
    for entry in allowed_ranges:
        try:
            if addr in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            logger.warning("Ignoring malformed IP range in delegation restrictions: %s", entry)
    return False


def restriction_denial(delegation: DelegatedPermission, context: PermissionContext) -> Optional[str]:
    restrictions = delegation.restrictions or {}
    now = datetime.utcnow()

    max_usage = restrictions.get("max_usage_count")
    if max_usage is not None and (delegation.usage_count or 0) >= max_usage:
        return "Delegation usage limit reached"

    # IP ranges only apply when the request carries an address
    allowed_ips = restrictions.get("allowed_ip_ranges")
    if allowed_ips and context.ip_address and not ip_allowed(context.ip_address, allowed_ips):
        return "IP address not allowed for this delegation"

    daily_limit = restrictions.get("daily_usage_limit")
    if daily_limit is not None and delegation.usage_on(now.date()) >= daily_limit:
        return "Daily usage limit reached for this delegation"

    return None


def delegation_denial(delegation: DelegatedPermission, context: PermissionContext) -> Optional[str]:
    ctx = context
    if (delegation.conditions or {}).get("department_only"):
        delegator = delegation.from_user
        ctx = replace(context, delegator_department_id=delegator.department_id if delegator else None)
    return condition_denial(delegation.conditions, ctx) or restriction_denial(delegation, context)


def active_delegations(db: Session, user_id: int, now: Optional[datetime] = None) -> List[DelegatedPermission]:
    now = now or datetime.utcnow()
    rows = (
        DelegatedPermission.query_active(db)
        .filter(
            DelegatedPermission.to_user_id == user_id,
            DelegatedPermission.status == "active",
            DelegatedPermission.valid_from <= now,
        )
        .order_by(DelegatedPermission.created_at.asc())
        .all()
    )
    return [d for d in rows if not d.is_expired(now)]


# ---------- Decision ----------
def authorize(
    db: Session,
    user: Optional[User],
    permission: str,
    context: Optional[PermissionContext] = None,
) -> AuthorizationResult:
    context = context or PermissionContext()
    now = datetime.utcnow()

    if user is None or not user.is_active():
        return AuthorizationResult(False, reason="User is not active")
    if user.is_locked(now):
        return AuthorizationResult(False, reason="User account is locked")

    # user-side context values default to the acting user; the caller's context is left untouched
    context = replace(
        context,
        user_department_id=(
            context.user_department_id if context.user_department_id is not None else user.department_id
        ),
        user_organization_id=(
            context.user_organization_id if context.user_organization_id is not None else user.organization_id
        ),
    )

    reason = "Permission not granted by role or delegation"

    role = user.role
    if role is not None and role.is_active() and role_grants(db, role, permission):
        denial = role_condition_denial(role, permission, context)
        if denial is None:
            return AuthorizationResult(True, source="role")
        reason = denial

    for delegation in active_delegations(db, user.id, now):
        if not delegation.includes_permission(permission):
            continue
        denial = delegation_denial(delegation, context)
        if denial:
            reason = denial
            continue
        delegation.record_usage(now)
        db.add(delegation)
        db.flush()
        audit_log(
            AuditEvent.DELEGATION_USED,
            f"Delegation {delegation.id} used for '{permission}'",
            user=user.username,
            ip_address=context.ip_address,
        )
        return AuthorizationResult(True, source="delegation", delegation_id=delegation.id)

    logger.debug("Denied %s to user %s: %s", permission, user.id, reason)
    return AuthorizationResult(False, reason=reason)


def has_permission(db: Session, user: User, permission: str, context: Optional[PermissionContext] = None) -> bool:
    return authorize(db, user, permission, context).allowed


def user_permissions(db: Session, user: User) -> dict:
    """Role permissions plus what active delegations add, for /auth/me and the UI."""
    role_perms: Set[str] = set()
    if user.role is not None and user.role.is_active():
        role_perms = effective_permissions(db, user.role)
    delegated: Set[str] = set()
    for delegation in active_delegations(db, user.id):
        delegated.update(delegation.permissions or [])
    return {
        "role": sorted(role_perms),
        "delegated": sorted(delegated - role_perms),
    }
