import re
from typing import Optional, List, Dict, Any
from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from ..core.logging import AuditEvent, audit_log
from ..models import ROLE_ORGANIZATIONS, ROLE_SCOPES, Role, User
from ..models.conditions import validate_condition_structure
from ..services.rbac import effective_permissions, role_chain
from .common import commit_or_409, get_or_404, lifecycle_query
from .deps import get_db, CurrentUser, require_permission

router = APIRouter(prefix="/api/roles", tags=["roles"])

_ROLE_NAME = re.compile(r"^[a-z_]+$")


# ---------- Schemas ----------
class RoleCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    display_name: str = Field(..., min_length=1)
    description: Optional[str] = None
    level: int = Field(..., ge=1, le=7)
    scope: str = "public"
    organization: str = "amexing"
    base_permissions: List[str] = []
    delegatable: bool = False
    inherits_from: Optional[str] = None
    conditions: Dict[str, Any] = {}
    contextual_permissions: Dict[str, Any] = {}
    delegatable_permissions: List[str] = []
    max_delegation_level: Optional[int] = Field(None, ge=1, le=7)
    color: Optional[str] = None
    icon: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        if not _ROLE_NAME.match(v):
            raise ValueError("Role name may only contain lowercase letters and underscores")
        return v

    @field_validator("scope")
    @classmethod
    def _scope(cls, v: str) -> str:
        if v not in ROLE_SCOPES:
            raise ValueError(f"scope must be one of {', '.join(ROLE_SCOPES)}")
        return v

    @field_validator("organization")
    @classmethod
    def _organization(cls, v: str) -> str:
        if v not in ROLE_ORGANIZATIONS:
            raise ValueError(f"organization must be one of {', '.join(ROLE_ORGANIZATIONS)}")
        return v


class RoleUpdate(BaseModel):
    display_name: Optional[str] = None
    description: Optional[str] = None
    level: Optional[int] = Field(None, ge=1, le=7)
    base_permissions: Optional[List[str]] = None
    delegatable: Optional[bool] = None
    inherits_from: Optional[str] = None
    conditions: Optional[Dict[str, Any]] = None
    contextual_permissions: Optional[Dict[str, Any]] = None
    delegatable_permissions: Optional[List[str]] = None
    max_delegation_level: Optional[int] = Field(None, ge=1, le=7)
    color: Optional[str] = None
    icon: Optional[str] = None


class RoleOut(BaseModel):
    id: int
    name: str
    display_name: str
    description: Optional[str] = None
    level: int
    scope: str
    organization: str
    base_permissions: List[str]
    delegatable: bool
    inherits_from: Optional[str] = None
    conditions: Dict[str, Any]
    contextual_permissions: Dict[str, Any]
    delegatable_permissions: List[str]
    max_delegation_level: Optional[int] = None
    is_system_role: bool
    color: Optional[str] = None
    icon: Optional[str] = None
    lifecycle_status: str

    class Config:
        from_attributes = True  # pydantic v2


def _check_conditions(conditions: Optional[Dict[str, Any]], contextual: Optional[Dict[str, Any]]) -> None:
    if conditions and not validate_condition_structure(conditions):
        raise HTTPException(status_code=400, detail="Invalid role conditions")
    for perm, entry in (contextual or {}).items():
        if not isinstance(entry, dict) or not validate_condition_structure(entry.get("conditions") or {}):
            raise HTTPException(status_code=400, detail=f"Invalid contextual conditions for '{perm}'")


def _check_parent(db: Session, name: Optional[str], parent: Optional[str]) -> None:
    if not parent:
        return
    if parent == name:
        raise HTTPException(status_code=400, detail="A role cannot inherit from itself")
    if not Role.query_existing(db).filter(Role.name == parent).first():
        raise HTTPException(status_code=400, detail=f"Parent role '{parent}' not found")


def _ensure_manageable(current: CurrentUser, level: int) -> None:
    actor = current.user.role
    if actor is None or (actor.level or 0) <= level:
        raise HTTPException(status_code=403, detail="Cannot manage a role at or above your own level")


# ---------- Endpoints ----------
@router.get("/", response_model=List[RoleOut], dependencies=[Depends(require_permission("roles.read"))])
def list_roles(
    q: Optional[str] = Query(None, description="Search by role name"),
    state: str = Query("active"),
    db: Session = Depends(get_db),
):
    qs = lifecycle_query(Role, db, state)
    if q:
        qs = qs.filter(Role.name.ilike(f"%{q}%"))
    return qs.order_by(Role.level.desc(), Role.name.asc()).all()


@router.post("/", response_model=RoleOut, status_code=status.HTTP_201_CREATED)
def create_role(
    body: RoleCreate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("roles.create")),
):
    _ensure_manageable(current, body.level)
    _check_conditions(body.conditions, body.contextual_permissions)
    _check_parent(db, body.name, body.inherits_from)
    if db.query(Role).filter(Role.name == body.name).first():
        raise HTTPException(status_code=409, detail="Role name already exists")

    role = Role(**body.model_dump(), is_system_role=False, created_by=current.id)
    db.add(role)
    commit_or_409(db, "Role violates a DB constraint")
    db.refresh(role)
    audit_log(AuditEvent.ROLE_CREATED, f"Role {role.name} (level {role.level})", user=current.username)
    return role


@router.get("/{role_id}", response_model=RoleOut, dependencies=[Depends(require_permission("roles.read"))])
def get_role(role_id: int, db: Session = Depends(get_db)):
    return get_or_404(Role, db, role_id, "Role not found")


@router.get("/{role_id}/permissions", dependencies=[Depends(require_permission("roles.read"))])
def get_role_permissions(role_id: int, db: Session = Depends(get_db)):
    """Effective permissions including the inheritance chain."""
    role = get_or_404(Role, db, role_id, "Role not found")
    return {
        "role": role.name,
        "chain": [r.name for r in role_chain(db, role)],
        "permissions": sorted(effective_permissions(db, role)),
    }


@router.patch("/{role_id}", response_model=RoleOut)
def update_role(
    role_id: int,
    body: RoleUpdate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("roles.update")),
):
    role = get_or_404(Role, db, role_id, "Role not found")
    _ensure_manageable(current, role.level)
    data = body.model_dump(exclude_unset=True)
    if role.is_system_role and "level" in data and data["level"] != role.level:
        raise HTTPException(status_code=400, detail="System role levels cannot be changed")
    if "level" in data:
        _ensure_manageable(current, data["level"])
    _check_conditions(data.get("conditions"), data.get("contextual_permissions"))
    if "inherits_from" in data:
        _check_parent(db, role.name, data["inherits_from"])

    for k, v in data.items():
        setattr(role, k, v)
    role.modified_by = current.id
    db.add(role)
    commit_or_409(db, "Role violates a DB constraint")
    db.refresh(role)
    audit_log(AuditEvent.ROLE_UPDATED, f"Role {role.name}: {', '.join(sorted(data))}", user=current.username)
    return role


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_role(
    role_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("roles.delete")),
):
    role = get_or_404(Role, db, role_id, "Role not found")
    if role.is_system_role:
        raise HTTPException(status_code=400, detail="System roles cannot be deleted")
    _ensure_manageable(current, role.level)
    if User.query_existing(db).filter(User.role_id == role.id).first():
        raise HTTPException(status_code=409, detail="Role is still assigned to users")
    role.soft_delete(current.id)
    db.add(role)
    db.commit()
    audit_log(AuditEvent.ROLE_DELETED, f"Role {role.name}", user=current.username)
    return None
