# backend/amexing/api/departments.py

from typing import Optional
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, constr
from sqlalchemy.orm import Session

from ..models import AMEXING_ORGANIZATION, Client, Department
from ..services import organizations
from .common import apply_lifecycle, commit_or_409, get_or_404, lifecycle_query, paginate
from .deps import get_db, CurrentUser, require_permission

router = APIRouter(prefix="/api/departments", tags=["departments"])


# ---------- Schemas ----------

class DepartmentIn(BaseModel):
    name: constr(strip_whitespace=True, min_length=1, max_length=200)
    description: Optional[str] = None
    budget: Optional[float] = Field(None, ge=0)
    cost_center: Optional[str] = None


class DepartmentCreate(DepartmentIn):
    client_id: int


class DepartmentUpdate(BaseModel):
    name: Optional[constr(strip_whitespace=True, min_length=1, max_length=200)] = None
    description: Optional[str] = None
    cost_center: Optional[str] = None


class DepartmentOut(BaseModel):
    id: int
    client_id: int
    name: str
    description: Optional[str] = None
    manager_id: Optional[int] = None
    budget: Optional[float] = None
    cost_center: Optional[str] = None
    lifecycle_status: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ManagerIn(BaseModel):
    user_id: int


class EmployeeIn(BaseModel):
    user_id: int


class BudgetIn(BaseModel):
    budget: float = Field(..., ge=0)
    reason: Optional[str] = None


def serialize_department(d: Department) -> DepartmentOut:
    return DepartmentOut.model_validate(d)


def _load(db: Session, current: CurrentUser, department_id: int, include_deleted: bool = False) -> Department:
    dept = get_or_404(Department, db, department_id, "Department not found", include_deleted=include_deleted)
    if current.organization_id != AMEXING_ORGANIZATION and dept.client_id != current.client_id:
        raise HTTPException(status_code=404, detail="Department not found")
    return dept


# ---------- Endpoints ----------

@router.get("/", summary="List Departments (paged)")
def list_departments(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    client_id: Optional[int] = Query(None),
    state: str = Query("active"),
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("departments.read")),
):
    qs = lifecycle_query(Department, db, state)
    if current.organization_id != AMEXING_ORGANIZATION:
        qs = qs.filter(Department.client_id == current.client_id)
    elif client_id is not None:
        qs = qs.filter(Department.client_id == client_id)
    return paginate(qs.order_by(Department.name.asc()), page, size, serialize_department)


@router.post("/", response_model=DepartmentOut, status_code=status.HTTP_201_CREATED)
def create_department(
    body: DepartmentCreate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("departments.create")),
):
    if current.organization_id != AMEXING_ORGANIZATION and body.client_id != current.client_id:
        raise HTTPException(status_code=403, detail="Cannot create departments for another client")
    client = get_or_404(Client, db, body.client_id, "Client not found")
    data = body.model_dump(exclude={"client_id"})
    dept = organizations.create_department(db, client, data, current.id)
    commit_or_409(db, "Department violates a DB constraint")
    db.refresh(dept)
    return serialize_department(dept)


@router.get("/{department_id}", response_model=DepartmentOut)
def get_department(
    department_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("departments.read")),
):
    return serialize_department(_load(db, current, department_id))


@router.patch("/{department_id}", response_model=DepartmentOut)
def update_department(
    department_id: int,
    body: DepartmentUpdate,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("departments.update")),
):
    dept = _load(db, current, department_id)
    data = body.model_dump(exclude_unset=True)
    if data.get("name") and organizations.department_name_taken(db, dept.client_id, data["name"], exclude_id=dept.id):
        raise HTTPException(status_code=409, detail="A department with this name already exists for the client")
    for k, v in data.items():
        setattr(dept, k, v)
    dept.modified_by = current.id
    db.add(dept)
    commit_or_409(db, "Department violates a DB constraint")
    db.refresh(dept)
    return serialize_department(dept)


@router.delete("/{department_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_department(
    department_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("departments.delete")),
):
    apply_lifecycle(db, _load(db, current, department_id), "delete", current.id)
    return None


# ---------- Manager / employees / budget ----------

@router.put("/{department_id}/manager", response_model=DepartmentOut)
def assign_manager(
    department_id: int,
    body: ManagerIn,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("departments.update")),
):
    dept = _load(db, current, department_id)
    organizations.assign_manager(db, dept, body.user_id, current.id)
    db.commit()
    db.refresh(dept)
    return serialize_department(dept)


@router.delete("/{department_id}/manager", response_model=DepartmentOut)
def remove_manager(
    department_id: int,
    demote: bool = Query(False, description="Demote a department_manager back to employee"),
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("departments.update")),
):
    dept = _load(db, current, department_id)
    organizations.remove_manager(db, dept, current.id, demote=demote)
    db.commit()
    db.refresh(dept)
    return serialize_department(dept)


@router.post("/{department_id}/employees", status_code=status.HTTP_204_NO_CONTENT)
def add_employee(
    department_id: int,
    body: EmployeeIn,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("departments.update")),
):
    organizations.add_employee(db, _load(db, current, department_id), body.user_id, current.id)
    db.commit()
    return None


@router.delete("/{department_id}/employees/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_employee(
    department_id: int,
    user_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("departments.update")),
):
    organizations.remove_employee(db, _load(db, current, department_id), user_id, current.id)
    db.commit()
    return None


@router.put("/{department_id}/budget", response_model=DepartmentOut)
def update_budget(
    department_id: int,
    body: BudgetIn,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("departments.update")),
):
    dept = _load(db, current, department_id)
    organizations.update_budget(db, dept, body.budget, current.id, body.reason or "")
    db.commit()
    db.refresh(dept)
    return serialize_department(dept)


@router.get("/{department_id}/statistics")
def department_statistics(
    department_id: int,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("departments.read")),
):
    return organizations.department_statistics(db, _load(db, current, department_id))


# must stay below the nested POST routes
@router.post("/{department_id}/{action}", response_model=DepartmentOut, summary="activate | deactivate | restore")
def department_lifecycle(
    department_id: int,
    action: str,
    db: Session = Depends(get_db),
    current: CurrentUser = Depends(require_permission("departments.delete")),
):
    if action not in ("activate", "deactivate", "restore"):
        raise HTTPException(status_code=404, detail="Not found")
    dept = _load(db, current, department_id, include_deleted=True)
    return serialize_department(apply_lifecycle(db, dept, action, current.id))
