"""
Contextual permission conditions.

Roles, permissions and delegations all carry a ``conditions`` dict. The same
keys mean the same thing everywhere:

    max_amount           deny when context.amount > value
    min_amount           deny when context.amount < value
    allowed_departments  deny when context.department_id is not listed
    business_hours_only  deny outside Monday-Friday business hours
    department_scope     "own": target department must be the user's
    organization_scope   "own": target organization must be the user's;
                         any other value: the user must belong to it
    department_only      delegations: target department must be the delegator's

A condition is only evaluated when the context carries the value it needs.
Other keys (e.g. "operations_only", "assigned_only") are kept as metadata and
not evaluated here.
"""

from dataclasses import dataclass, fields
from datetime import datetime, timezone
from numbers import Number
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo

from ..core.config import settings


@dataclass
class PermissionContext:
    amount: Optional[float] = None
    department_id: Optional[int] = None
    user_department_id: Optional[int] = None
    organization_id: Optional[str] = None
    user_organization_id: Optional[str] = None
    delegator_department_id: Optional[int] = None
    timestamp: Optional[datetime] = None
    ip_address: Optional[str] = None

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))


def to_local_time(timestamp: datetime) -> datetime:
    """Convert to settings.TIMEZONE; naive timestamps are UTC."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(ZoneInfo(settings.TIMEZONE))


def is_business_hours(timestamp: datetime) -> bool:
    """Monday-Friday, BUSINESS_HOURS_START <= hour < BUSINESS_HOURS_END, in local time."""
    local = to_local_time(timestamp)
    return local.weekday() < 5 and settings.BUSINESS_HOURS_START <= local.hour < settings.BUSINESS_HOURS_END


def condition_denial(conditions: Optional[Dict[str, Any]], context: PermissionContext) -> Optional[str]:
    """Return the reason the context breaks ``conditions``, or None if it satisfies them."""
    if not conditions:
        return None

    amount = context.amount
    max_amount = conditions.get("max_amount")
    if max_amount is not None and amount is not None and amount > max_amount:
        return f"Amount {amount} exceeds maximum allowed {max_amount}"

    min_amount = conditions.get("min_amount")
    if min_amount is not None and amount is not None and amount < min_amount:
        return f"Amount {amount} is below minimum required {min_amount}"

    allowed = conditions.get("allowed_departments")
    if allowed and context.department_id is not None and context.department_id not in allowed:
        return "Department is not allowed for this action"

    if conditions.get("business_hours_only") and context.timestamp is not None:
        if not is_business_hours(context.timestamp):
            return "Action only allowed during business hours (Monday-Friday)"

    dept_scope = conditions.get("department_scope")
    if dept_scope in ("own", True) and context.department_id is not None:
        if context.user_department_id is None or context.user_department_id != context.department_id:
            return "Action only allowed within your own department"

    org_scope = conditions.get("organization_scope")
    if org_scope == "own":
        if context.organization_id is not None and context.user_organization_id != context.organization_id:
            return "Action only allowed within your own organization"
    elif org_scope and context.user_organization_id is not None:
        if context.user_organization_id != org_scope:
            return f"Action only allowed for organization '{org_scope}'"

    if conditions.get("department_only") and context.department_id is not None:
        if context.delegator_department_id != context.department_id:
            return "Delegated permission only valid for delegator's department"

    return None


def validate_condition_structure(conditions: Any) -> bool:
    if not isinstance(conditions, dict):
        return False
    for key in ("max_amount", "min_amount"):
        value = conditions.get(key)
        if value is not None and (isinstance(value, bool) or not isinstance(value, Number)):
            return False
    if "business_hours_only" in conditions and not isinstance(conditions["business_hours_only"], bool):
        return False
    if "allowed_departments" in conditions and not isinstance(conditions["allowed_departments"], list):
        return False
    return True
