# backend/amexing/api/users.py

from typing import List, Optional, Dict, Any
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import or_, func
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..core.logging import AuditEvent, audit_log
from ..core.security import hash_password, password_policy_errors
from ..models import AMEXING_ORGANIZATION, Client, Department, Role, User
from .common import apply_lifecycle, get_or_404, lifecycle_query
from .deps import get_db, CurrentUser, require_permission

router = APIRouter(prefix="/api/users", tags=["users"])


# ---------------------------
# Pydantic Schemas
# ---------------------------

class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role_name: str
    client_id: Optional[int] = None
    department_id: Optional[int] = None
    must_change_password: bool = True


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role_name: Optional[str] = None
    client_id: Optional[int] = None
    department_id: Optional[int] = None
    password: Optional[str] = None
    contextual_data: Optional[Dict[str, Any]] = None


class UserOut(BaseModel):
    id: int
    username: str
    email: EmailStr
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    full_name: str
    role_name: Optional[str] = None
    client_id: Optional[int] = None
    department_id: Optional[int] = None
    organization_id: str
    lifecycle_status: str
    email_verified: bool
    last_login_at: Optional[datetime] = None
    locked_until: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True  # Pydantic v2


class PageMeta(BaseModel):
    total: int
    page: int
    size: int
    pages: int


class UsersListOut(BaseModel):
    meta: PageMeta
    items: List[UserOut]


def serialize_user(u: User) -> UserOut:
    return UserOut.model_validate(u)


def _resolve_role(db: Session, name: str) -> Role:
    role = Role.query_active(db).filter(Role.name == name).first()
    if not role:
        raise HTTPException(status_code=400, detail=f"Role '{name}' not found")
    return role


def _ensure_can_assign(current: CurrentUser, role: Role) -> None:
    actor_role = current.user.role
    if actor_role is None or not actor_role.can_manage(role):
        raise HTTPException(status_code=403, detail=f"Cannot assign role '{role.name}'")


def _ensure_same_org(current: CurrentUser, target: User) -> None:
    if current.organization_id != AMEXING_ORGANIZATION and target.client_id != current.client_id:
        raise HTTPException(status_code=404, detail="User not found")


def _check_org_refs(db: Session, client_id: Optional[int], department_id: Optional[int]) -> None:
    if client_id is not None and not Client.query_existing(db).filter(Client.id == client_id).first():
        raise HTTPException(status_code=400, detail="Client not found")
    if department_id is not None:
        dept = Department.query_existing(db).filter(Department.id == department_id).first()
        if not dept:
            raise HTTPException(status_code=400, detail="Department not found")
        if client_id is not None and dept.client_id != client_id:
            raise HTTPException(status_code=400, detail="Department does not belong to the client")


# ---------------------------
# Endpoints
# ---------------------------

@router.get("/", response_model=UsersListOut, summary="List Users")
def list_users(
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("users.read")),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, description="Search in username/email/name"),
    role: Optional[str] = Query(None),
    client_id: Optional[int] = Query(None),
    department_id: Optional[int] = Query(None),
    state: str = Query("existing", description="active|archived|deleted|existing|all"),
):
    q = lifecycle_query(User, db, state)

    # client organizations only see their own people
    if current.organization_id != AMEXING_ORGANIZATION:
        q = q.filter(User.client_id == current.client_id)
    elif client_id is not None:
        q = q.filter(User.client_id == client_id)
    if department_id is not None:
        q = q.filter(User.department_id == department_id)
    if role:
        q = q.join(Role, User.role_id == Role.id).filter(Role.name == role)
    if search:
        like = f"%{search.lower()}%"
        q = q.filter(
            or_(
                func.lower(User.username).like(like),
                func.lower(User.email).like(like),
                func.lower(func.coalesce(User.first_name, "")).like(like),
                func.lower(func.coalesce(User.last_name, "")).like(like),
            )
        )

    total = q.count()
    rows = q.order_by(User.id.desc()).offset((page - 1) * size).limit(size).all()
    pages = max(1, (total + size - 1) // size)

    return UsersListOut(
        meta=PageMeta(total=total, page=page, size=size, pages=pages),
        items=[serialize_user(u) for u in rows],
    )


@router.post("/", response_model=UserOut, status_code=status.HTTP_201_CREATED, summary="Create User")
def create_user(
    body: UserCreate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("users.create")),
):
    role = _resolve_role(db, body.role_name)
    _ensure_can_assign(current, role)

    client_id = body.client_id
    if current.organization_id != AMEXING_ORGANIZATION:
        client_id = current.client_id
    _check_org_refs(db, client_id, body.department_id)

    errors = password_policy_errors(body.password)
    if errors:
        raise HTTPException(status_code=400, detail="Password validation failed: " + ", ".join(errors))

    email = body.email.lower()
    username = body.username.strip().lower()
    clash = db.query(User).filter(or_(User.email == email, User.username == username)).first()
    if clash:
        raise HTTPException(status_code=409, detail="Email or username already exists")

    user = User(
        username=username,
        email=email,
        first_name=body.first_name,
        last_name=body.last_name,
        password_hash=hash_password(body.password),
        role_id=role.id,
        client_id=client_id,
        department_id=body.department_id,
        must_change_password=body.must_change_password,
        created_by=current.id,
    )

    try:
        db.add(user)
        db.commit()
        db.refresh(user)
    except IntegrityError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail="User violates a DB constraint") from e
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail="Database error while creating user") from e

    audit_log(AuditEvent.USER_CREATED, f"User {user.username} ({role.name})", user=current.username)
    return serialize_user(user)


@router.get("/{user_id}", response_model=UserOut, summary="Get User")
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("users.read")),
):
    user = get_or_404(User, db, user_id, "User not found")
    _ensure_same_org(current, user)
    return serialize_user(user)


@router.patch("/{user_id}", response_model=UserOut, summary="Update User (partial)")
def update_user(
    user_id: int,
    body: UserUpdate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("users.update")),
):
    user = get_or_404(User, db, user_id, "User not found")
    _ensure_same_org(current, user)
    data = body.model_dump(exclude_unset=True)

    if "email" in data and data["email"]:
        email = data["email"].lower()
        if email != user.email and db.query(User).filter(User.email == email).first():
            raise HTTPException(status_code=409, detail="Email already exists")
        user.email = email

    if data.get("role_name"):
        new_role = _resolve_role(db, data["role_name"])
        if user.role is not None:
            _ensure_can_assign(current, user.role)
        _ensure_can_assign(current, new_role)
        if user.role_id != new_role.id:
            audit_log(
                AuditEvent.USER_ROLE_CHANGED,
                f"{user.username}: {user.role_name} -> {new_role.name}",
                user=current.username,
            )
        user.role_id = new_role.id
        user.role = new_role

    if "client_id" in data or "department_id" in data:
        client_id = data.get("client_id", user.client_id)
        if current.organization_id != AMEXING_ORGANIZATION:
            client_id = current.client_id
        department_id = data.get("department_id", user.department_id)
        _check_org_refs(db, client_id, department_id)
        user.client_id = client_id
        user.department_id = department_id

    if data.get("password"):
        errors = password_policy_errors(data["password"])
        if errors:
            raise HTTPException(status_code=400, detail="Password validation failed: " + ", ".join(errors))
        user.password_hash = hash_password(data["password"])
        user.password_changed_at = datetime.utcnow()

    for field in ("first_name", "last_name"):
        if field in data:
            setattr(user, field, data[field])
    if "contextual_data" in data:
        user.contextual_data = dict(data["contextual_data"] or {})

    user.modified_by = current.id

    try:
        db.add(user)
        db.commit()
        db.refresh(user)
    except IntegrityError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail="User violates a DB constraint") from e

    audit_log(AuditEvent.USER_UPDATED, f"User {user.username} updated", user=current.username)
    return serialize_user(user)


@router.post("/{user_id}/unlock", response_model=UserOut, summary="Clear lockout")
def unlock_user(
    user_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("users.update")),
):
    user = get_or_404(User, db, user_id, "User not found")
    _ensure_same_org(current, user)
    user.locked_until = None
    user.login_attempts = 0
    db.add(user)
    db.commit()
    db.refresh(user)
    return serialize_user(user)


@router.post("/{user_id}/{action}", response_model=UserOut, summary="Activate / deactivate / restore")
def user_lifecycle(
    user_id: int,
    action: str,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("users.delete")),
):
    if action not in ("activate", "deactivate", "restore"):
        raise HTTPException(status_code=404, detail="Not found")
    user = get_or_404(User, db, user_id, "User not found", include_deleted=True)
    _ensure_same_org(current, user)
    if user.id == current.id:
        raise HTTPException(status_code=400, detail="Cannot change your own account status")
    return serialize_user(apply_lifecycle(db, user, action, current.id))


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Soft delete User")
def delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("users.delete")),
):
    user = get_or_404(User, db, user_id, "User not found")
    _ensure_same_org(current, user)
    if user.id == current.id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")
    apply_lifecycle(db, user, "delete", current.id)
    audit_log(AuditEvent.USER_DELETED, f"User {user.username} soft deleted", user=current.username)
    return None
