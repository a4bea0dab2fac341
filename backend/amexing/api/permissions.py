from typing import Optional, List, Dict, Any
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..core.logging import AuditEvent, audit_log
from ..models import PERMISSION_SCOPES, Permission
from ..models.conditions import PermissionContext
from .common import commit_or_409, get_or_404, lifecycle_query
from .deps import get_db, CurrentUser, require_permission

router = APIRouter(prefix="/api/permissions", tags=["permissions"])


# ---------- Schemas ----------
class PermissionCreate(BaseModel):
    name: str = Field(..., description="resource.action")
    description: Optional[str] = None
    scope: str = "own"
    conditions: Dict[str, Any] = {}
    category: Optional[str] = None
    priority: int = 0
    requires_approval: bool = False
    delegatable: bool = True
    includes: List[str] = []
    prerequisites: List[str] = []


class PermissionUpdate(BaseModel):
    description: Optional[str] = None
    scope: Optional[str] = None
    conditions: Optional[Dict[str, Any]] = None
    category: Optional[str] = None
    priority: Optional[int] = None
    requires_approval: Optional[bool] = None
    delegatable: Optional[bool] = None
    includes: Optional[List[str]] = None
    prerequisites: Optional[List[str]] = None


class PermissionOut(BaseModel):
    id: int
    name: str
    resource: str
    action: str
    description: Optional[str] = None
    scope: str
    scope_level: int
    conditions: Dict[str, Any]
    category: Optional[str] = None
    priority: int
    is_system_permission: bool
    requires_approval: bool
    delegatable: bool
    includes: List[str]
    prerequisites: List[str]
    lifecycle_status: str

    class Config:
        from_attributes = True


class ContextIn(BaseModel):
    amount: Optional[float] = None
    department_id: Optional[int] = None
    user_department_id: Optional[int] = None
    organization_id: Optional[str] = None
    user_organization_id: Optional[str] = None
    timestamp: Optional[datetime] = None


def _check_payload(scope: Optional[str], conditions: Optional[Dict[str, Any]]) -> None:
    if scope is not None and scope not in PERMISSION_SCOPES:
        raise HTTPException(status_code=400, detail=f"scope must be one of {', '.join(PERMISSION_SCOPES)}")
    if conditions and not Permission.is_valid_conditions(conditions):
        raise HTTPException(status_code=400, detail="Invalid permission conditions")


# ---------- Endpoints ----------
@router.get("/", response_model=List[PermissionOut], dependencies=[Depends(require_permission("permissions.read"))])
def list_permissions(
    resource: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    state: str = Query("active"),
    db: Session = Depends(get_db),
):
    qs = lifecycle_query(Permission, db, state)
    if resource:
        qs = qs.filter(Permission.resource == resource)
    if category:
        qs = qs.filter(Permission.category == category)
    return qs.order_by(Permission.resource.asc(), Permission.priority.desc(), Permission.action.asc()).all()


@router.post("/", response_model=PermissionOut, status_code=status.HTTP_201_CREATED)
def create_permission(
    body: PermissionCreate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("permissions.manage")),
):
    if not Permission.is_valid_name(body.name):
        raise HTTPException(status_code=400, detail="Permission name must look like 'resource.action'")
    _check_payload(body.scope, body.conditions)
    if db.query(Permission).filter(Permission.name == body.name).first():
        raise HTTPException(status_code=409, detail="Permission already exists")

    resource, action = body.name.split(".")
    perm = Permission(**body.model_dump(), resource=resource, action=action, created_by=current.id)
    db.add(perm)
    commit_or_409(db, "Permission violates a DB constraint")
    db.refresh(perm)
    audit_log(AuditEvent.PERMISSION_CREATED, f"Permission {perm.name}", user=current.username)
    return perm


@router.get("/{permission_id}", response_model=PermissionOut, dependencies=[Depends(require_permission("permissions.read"))])
def get_permission(permission_id: int, db: Session = Depends(get_db)):
    return get_or_404(Permission, db, permission_id, "Permission not found")


@router.patch("/{permission_id}", response_model=PermissionOut)
def update_permission(
    permission_id: int,
    body: PermissionUpdate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("permissions.manage")),
):
    perm = get_or_404(Permission, db, permission_id, "Permission not found")
    data = body.model_dump(exclude_unset=True)
    _check_payload(data.get("scope"), data.get("conditions"))
    if perm.is_system_permission and "scope" in data and data["scope"] != perm.scope:
        raise HTTPException(status_code=400, detail="System permission scope cannot be changed")
    for k, v in data.items():
        setattr(perm, k, v)
    perm.modified_by = current.id
    db.add(perm)
    db.commit()
    db.refresh(perm)
    audit_log(AuditEvent.PERMISSION_UPDATED, f"Permission {perm.name}: {', '.join(sorted(data))}", user=current.username)
    return perm


@router.post("/{permission_id}/validate", dependencies=[Depends(require_permission("permissions.read"))])
def validate_context(permission_id: int, body: ContextIn, db: Session = Depends(get_db)):
    """Check a context against the catalog conditions of one permission."""
    perm = get_or_404(Permission, db, permission_id, "Permission not found")
    return {"permission": perm.name, "valid": perm.validate_context(PermissionContext(**body.model_dump()))}


@router.get("/{permission_id}/implied-by", dependencies=[Depends(require_permission("permissions.read"))])
def implied_by(
    permission_id: int,
    parent: str = Query(..., description="Permission or wildcard held by the user"),
    db: Session = Depends(get_db),
):
    perm = get_or_404(Permission, db, permission_id, "Permission not found")
    return {"permission": perm.name, "parent": parent, "inherits": perm.inherits_from(parent)}
