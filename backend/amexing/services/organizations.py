import logging
import secrets
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..core.errors import ConflictError, NotFoundError, ValidationError
from ..core.logging import AuditEvent, audit_log
from ..models import Client, Department, Quote, Role, User

logger = logging.getLogger(__name__)

MANAGER_ELIGIBLE_ROLES = ("department_manager", "admin", "client", "employee")


def _live_user(db: Session, user_id: int) -> User:
    user = User.query_active(db).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError("User not found or not active")
    return user


def _role(db: Session, name: str) -> Role:
    role = Role.query_active(db).filter(Role.name == name).first()
    if not role:
        raise NotFoundError(f"Role '{name}' not found")
    return role


def department_name_taken(db: Session, client_id: int, name: str, exclude_id: Optional[int] = None) -> bool:
    q = Department.query_existing(db).filter(
        Department.client_id == client_id,
        Department.name == name.strip(),
    )
    if exclude_id is not None:
        q = q.filter(Department.id != exclude_id)
    return q.first() is not None


def create_department(db: Session, client: Client, data: Dict[str, Any], actor_id: int) -> Department:
    if not client.is_active():
        raise ValidationError("Client is not active")
    if department_name_taken(db, client.id, data["name"]):
        raise ConflictError("A department with this name already exists for the client")
    dept = Department(client_id=client.id, created_by=actor_id, modified_by=actor_id, **data)
    dept.name = dept.name.strip()
    db.add(dept)
    db.flush()
    logger.info("Department %s created for client %s", dept.id, client.id)
    return dept


# ---------- Managers / employees ----------
def assign_manager(db: Session, dept: Department, user_id: int, actor_id: int) -> Department:
    user = _live_user(db, user_id)
    if user.role_name not in MANAGER_ELIGIBLE_ROLES:
        raise ValidationError("User role not eligible for department management")
    if user.client_id is not None and user.client_id != dept.client_id:
        raise ValidationError("User belongs to a different client")

    # employees are promoted when they take over a department
    if user.role_name == "employee":
        previous = user.role_name
        user.role = _role(db, "department_manager")
        user.modified_by = actor_id
        audit_log(AuditEvent.USER_ROLE_CHANGED, f"{user.username}: {previous} -> department_manager", user=actor_id)
    if user.client_id is not None:
        user.department_id = dept.id

    dept.manager_id = user.id
    dept.modified_by = actor_id
    db.add_all([user, dept])
    db.flush()
    logger.info("Department %s manager set to user %s", dept.id, user.id)
    return dept


def remove_manager(db: Session, dept: Department, actor_id: int, demote: bool = False) -> Department:
    if dept.manager_id is None:
        return dept
    if demote:
        user = User.query_active(db).filter(User.id == dept.manager_id).first()
        if user is not None and user.role_name == "department_manager":
            user.role = _role(db, "employee")
            user.modified_by = actor_id
            db.add(user)
            audit_log(AuditEvent.USER_ROLE_CHANGED, f"{user.username}: department_manager -> employee", user=actor_id)
    logger.info("Department %s manager %s removed", dept.id, dept.manager_id)
    dept.manager_id = None
    dept.modified_by = actor_id
    db.add(dept)
    db.flush()
    return dept


def add_employee(db: Session, dept: Department, user_id: int, actor_id: int) -> User:
    user = _live_user(db, user_id)
    if user.client_id is not None and user.client_id != dept.client_id:
        raise ValidationError("User belongs to a different client")
    user.client_id = dept.client_id
    user.department_id = dept.id
    user.modified_by = actor_id
    db.add(user)
    db.flush()
    return user


def remove_employee(db: Session, dept: Department, user_id: int, actor_id: int) -> User:
    user = _live_user(db, user_id)
    if user.department_id != dept.id:
        raise ValidationError("User is not in this department")
    user.department_id = None
    user.modified_by = actor_id
    if dept.manager_id == user.id:
        dept.manager_id = None
        db.add(dept)
    db.add(user)
    db.flush()
    return user


def update_budget(db: Session, dept: Department, budget: float, actor_id: int, reason: str = "") -> Department:
    if budget < 0:
        raise ValidationError("Budget cannot be negative")
    logger.info("Department %s budget %s -> %s (%s)", dept.id, dept.budget, budget, reason or "no reason")
    dept.budget = budget
    dept.modified_by = actor_id
    db.add(dept)
    db.flush()
    return dept


# ---------- Statistics ----------
def department_statistics(db: Session, dept: Department) -> Dict[str, Any]:
    employees = User.query_existing(db).filter(User.department_id == dept.id)
    return {
        "department_id": dept.id,
        "employee_count": employees.count(),
        "active_employee_count": employees.filter(User.active.is_(True)).count(),
        "manager_id": dept.manager_id,
        "budget": float(dept.budget) if dept.budget is not None else None,
        "lifecycle_status": dept.lifecycle_status,
    }


def client_statistics(db: Session, client: Client) -> Dict[str, Any]:
    employees = User.query_existing(db).filter(User.client_id == client.id)
    user_ids = [u.id for u in employees.all()]
    open_quotes = 0
    if user_ids:
        open_quotes = (
            Quote.query_active(db)
            .filter(Quote.client_id.in_(user_ids), Quote.status.in_(("draft", "requested", "sent")))
            .count()
        )
    return {
        "client_id": client.id,
        "department_count": Department.query_active(db).filter(Department.client_id == client.id).count(),
        "employee_count": len(user_ids),
        "active_employee_count": employees.filter(User.active.is_(True)).count(),
        "open_quote_count": open_quotes,
        "lifecycle_status": client.lifecycle_status,
        "created_at": client.created_at,
        "updated_at": client.updated_at,
    }


# ---------- Auto-provisioning ----------
def auto_provision_employee(
    db: Session,
    client: Client,
    email: str,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    provider: Optional[str] = None,
    provider_id: Optional[str] = None,
) -> User:
    """Create an employee for a corporate client when the email matches its OAuth domain."""
    if not client.is_active() or not client.auto_provision_employees or not client.oauth_domain:
        raise ValidationError("Client does not allow employee auto-provisioning")
    email = email.lower()
    domain = email.rsplit("@", 1)[-1]
    if domain != client.oauth_domain.lower():
        raise ValidationError(f"Email domain '{domain}' does not match client domain")
    if db.query(User).filter(User.email == email).first():
        raise ConflictError("A user with this email already exists")

    role = _role(db, client.default_employee_role or "employee")
    base = email.split("@", 1)[0]
    username = base
    while db.query(User).filter(User.username == username).first():
        username = f"{base}_{secrets.token_hex(2)}"

    user = User(
        username=username,
        email=email,
        first_name=first_name,
        last_name=last_name,
        role_id=role.id,
        client_id=client.id,
        email_verified=True,
        contextual_data={"access_level": client.employee_access_level, "auto_provisioned": True},
    )
    if provider and provider_id:
        user.add_oauth_account(provider, provider_id, email=email)
        user.last_auth_method = provider
    db.add(user)
    db.flush()
    audit_log(AuditEvent.USER_CREATED, f"Auto-provisioned {email} for client {client.id}", user="system")
    return user
