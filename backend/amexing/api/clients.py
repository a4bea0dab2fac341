# backend/amexing/api/clients.py

from typing import Optional, Dict, Any
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, EmailStr, constr
from sqlalchemy import or_, func
from sqlalchemy.orm import Session

from ..models import AMEXING_ORGANIZATION, Client
from ..services import organizations
from .common import apply_lifecycle, commit_or_409, get_or_404, lifecycle_query, paginate
from .deps import get_db, CurrentUser, require_permission
from .departments import DepartmentIn, serialize_department
from .users import serialize_user

router = APIRouter(prefix="/api/clients", tags=["clients"])


# ---------- Schemas ----------

class ClientBase(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    contact_person: Optional[str] = None
    company_type: Optional[str] = None
    tax_id: Optional[str] = None
    website: Optional[str] = None
    notes: Optional[str] = None
    address: Optional[Dict[str, Any]] = None
    is_corporate: bool = True
    oauth_domain: Optional[str] = None
    auto_provision_employees: bool = False
    default_employee_role: str = "employee"
    employee_access_level: str = "basic"


class ClientCreate(ClientBase):
    pass


class ClientUpdate(BaseModel):
    name: Optional[constr(strip_whitespace=True, min_length=1, max_length=200)] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    contact_person: Optional[str] = None
    company_type: Optional[str] = None
    tax_id: Optional[str] = None
    website: Optional[str] = None
    notes: Optional[str] = None
    address: Optional[Dict[str, Any]] = None
    is_corporate: Optional[bool] = None
    oauth_domain: Optional[str] = None
    auto_provision_employees: Optional[bool] = None
    default_employee_role: Optional[str] = None
    employee_access_level: Optional[str] = None


class ClientOut(ClientBase):
    id: int
    lifecycle_status: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProvisionIn(BaseModel):
    email: EmailStr
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    provider: Optional[str] = None
    provider_id: Optional[str] = None


def _serialize(c: Client) -> ClientOut:
    return ClientOut.model_validate(c)


def _ensure_access(current: CurrentUser, client_id: int) -> None:
    if current.organization_id != AMEXING_ORGANIZATION and current.client_id != client_id:
        raise HTTPException(status_code=404, detail="Client not found")


# ---------- Endpoints ----------

@router.get("/", summary="List Clients (paged)")
def list_clients(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    q: Optional[str] = Query(None, description="Search name/email/contact"),
    state: str = Query("active", description="active|archived|deleted|existing|all"),
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("clients.read")),
):
    qs = lifecycle_query(Client, db, state)
    if current.organization_id != AMEXING_ORGANIZATION:
        qs = qs.filter(Client.id == current.client_id)
    if q:
        like = f"%{q.strip().lower()}%"
        qs = qs.filter(
            or_(
                func.lower(Client.name).like(like),
                func.lower(func.coalesce(Client.email, "")).like(like),
                func.lower(func.coalesce(Client.contact_person, "")).like(like),
            )
        )
    return paginate(qs.order_by(Client.name.asc()), page, size, _serialize)


@router.post("/", response_model=ClientOut, status_code=status.HTTP_201_CREATED)
def create_client(
    body: ClientCreate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("clients.create")),
):
    client = Client(**body.model_dump(), created_by=current.id, modified_by=current.id)
    db.add(client)
    commit_or_409(db, "Client violates a DB constraint")
    db.refresh(client)
    return _serialize(client)


@router.get("/{client_id}", response_model=ClientOut)
def get_client(
    client_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("clients.read")),
):
    _ensure_access(current, client_id)
    return _serialize(get_or_404(Client, db, client_id, "Client not found"))


@router.patch("/{client_id}", response_model=ClientOut)
def update_client(
    client_id: int,
    body: ClientUpdate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("clients.update")),
):
    _ensure_access(current, client_id)
    client = get_or_404(Client, db, client_id, "Client not found")
    for k, v in body.model_dump(exclude_unset=True).items():
        setattr(client, k, v)
    client.modified_by = current.id
    db.add(client)
    commit_or_409(db, "Client violates a DB constraint")
    db.refresh(client)
    return _serialize(client)


@router.delete("/{client_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_client(
    client_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("clients.delete")),
):
    client = get_or_404(Client, db, client_id, "Client not found")
    apply_lifecycle(db, client, "delete", current.id)
    return None


# ---------- Nested: departments / employees / statistics ----------

@router.get("/{client_id}/departments")
def list_client_departments(
    client_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("departments.read")),
):
    _ensure_access(current, client_id)
    client = get_or_404(Client, db, client_id, "Client not found")
    return [serialize_department(d) for d in client.departments if d.is_active()]


@router.post("/{client_id}/departments", status_code=status.HTTP_201_CREATED)
def create_client_department(
    client_id: int,
    body: DepartmentIn,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("departments.create")),
):
    _ensure_access(current, client_id)
    client = get_or_404(Client, db, client_id, "Client not found")
    dept = organizations.create_department(db, client, body.model_dump(), current.id)
    commit_or_409(db, "Department violates a DB constraint")
    db.refresh(dept)
    return serialize_department(dept)


@router.get("/{client_id}/employees")
def list_client_employees(
    client_id: int,
    role: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("users.read")),
):
    _ensure_access(current, client_id)
    client = get_or_404(Client, db, client_id, "Client not found")
    users = [u for u in client.users if u.is_active()]
    if role:
        users = [u for u in users if u.role_name == role]
    return [serialize_user(u) for u in users]


@router.post("/{client_id}/employees/provision", status_code=status.HTTP_201_CREATED)
def provision_employee(
    client_id: int,
    body: ProvisionIn,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("users.create")),
):
    _ensure_access(current, client_id)
    client = get_or_404(Client, db, client_id, "Client not found")
    user = organizations.auto_provision_employee(
        db, client, body.email,
        first_name=body.first_name, last_name=body.last_name,
        provider=body.provider, provider_id=body.provider_id,
    )
    commit_or_409(db, "User violates a DB constraint")
    db.refresh(user)
    return serialize_user(user)


@router.get("/{client_id}/statistics")
def client_statistics(
    client_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("clients.read")),
):
    _ensure_access(current, client_id)
    client = get_or_404(Client, db, client_id, "Client not found")
    return organizations.client_statistics(db, client)


# must stay below the nested POST routes
@router.post("/{client_id}/{action}", response_model=ClientOut, summary="activate | deactivate | restore")
def client_lifecycle(
    client_id: int,
    action: str,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("clients.delete")),
):
    if action not in ("activate", "deactivate", "restore"):
        raise HTTPException(status_code=404, detail="Not found")
    client = get_or_404(Client, db, client_id, "Client not found", include_deleted=True)
    return _serialize(apply_lifecycle(db, client, action, current.id))
