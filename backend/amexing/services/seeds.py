"""
Idempotent seed data: permission catalog, system roles, superadmin user and
catalog defaults. Rows are matched by name (or code) and updated in place,
so running a seed twice is harmless.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.security import hash_password
from ..models import Permission, Rate, Role, ServiceType, User, VehicleType

logger = logging.getLogger(__name__)

# ---------- Permission catalog ----------
# (name, description, scope, category, extra)
_PERMISSIONS: List[Tuple[str, str, str, str, Dict[str, Any]]] = [
    ("users.create", "Create new users", "organization", "user_management", {}),
    ("users.read", "View users", "department", "user_management", {}),
    ("users.update", "Update user information", "department", "user_management", {}),
    ("users.delete", "Deactivate users", "organization", "user_management", {}),
    ("clients.create", "Create new client organizations", "system", "client_management", {}),
    ("clients.read", "View client information", "organization", "client_management", {}),
    ("clients.update", "Update client information", "organization", "client_management", {}),
    ("clients.delete", "Delete client organizations", "system", "client_management", {}),
    ("departments.create", "Create departments", "organization", "department_management", {}),
    ("departments.read", "View departments", "organization", "department_management", {}),
    ("departments.update", "Update departments", "department", "department_management", {}),
    ("departments.delete", "Delete departments", "organization", "department_management", {}),
    ("roles.read", "View roles", "system", "access_control", {}),
    ("roles.create", "Create roles", "system", "access_control", {"delegatable": False}),
    ("roles.update", "Update roles", "system", "access_control", {"delegatable": False}),
    ("roles.delete", "Delete roles", "system", "access_control", {"delegatable": False}),
    ("permissions.read", "View the permission catalog", "system", "access_control", {}),
    ("permissions.manage", "Manage the permission catalog", "system", "access_control", {"delegatable": False}),
    ("delegations.read", "View permission delegations", "organization", "access_control", {}),
    ("delegations.create", "Delegate permissions", "organization", "access_control", {"delegatable": False}),
    ("delegations.manage", "Revoke or extend any delegation", "system", "access_control", {"delegatable": False}),
    ("events.read", "View events", "organization", "event_management", {}),
    ("events.create", "Create events", "organization", "event_management", {}),
    ("events.update", "Update events", "organization", "event_management", {}),
    ("bookings.create", "Create new bookings", "department", "booking_management",
     {"conditions": {"max_amount": 2000, "business_hours_only": True}}),
    ("bookings.read", "View bookings", "department", "booking_management", {}),
    ("bookings.update", "Update existing bookings", "department", "booking_management", {}),
    ("bookings.approve", "Approve bookings", "department", "booking_management",
     {"conditions": {"max_amount": 10000}, "requires_approval": True}),
    ("bookings.cancel", "Cancel bookings", "department", "booking_management", {}),
    ("services.read", "View available services", "department", "service_management", {}),
    ("services.create", "Create new services", "system", "service_management", {}),
    ("services.update", "Update services", "system", "service_management", {}),
    ("services.delete", "Delete services", "system", "service_management", {}),
    ("pricing.read", "View pricing", "department", "pricing", {}),
    ("pricing.update", "Update rates and client prices", "system", "pricing", {}),
    ("reports.read", "View reports", "department", "reporting", {}),
    ("reports.generate", "Generate reports", "organization", "reporting", {}),
    ("vehicles.read", "View fleet", "system", "fleet_management", {}),
    ("vehicles.create", "Register vehicles and vehicle types", "system", "fleet_management", {}),
    ("vehicles.update", "Update vehicles and vehicle types", "system", "fleet_management", {}),
    ("vehicles.delete", "Remove vehicles and vehicle types", "system", "fleet_management", {}),
    ("schedules.read", "View schedules", "system", "operations", {}),
    ("schedules.update", "Update schedules", "system", "operations", {}),
    ("routes.read", "View routes", "system", "operations", {}),
    ("trips.read", "View assigned trips", "own", "operations", {}),
    ("trips.accept", "Accept trips", "own", "operations", {}),
    ("trips.complete", "Complete trips", "own", "operations", {}),
    ("trips.cancel", "Cancel trips", "own", "operations", {}),
    ("location.update", "Report location", "own", "operations", {}),
    ("earnings.read", "View own earnings", "own", "operations", {}),
    ("requests.create", "Create service requests", "own", "public", {}),
    ("quotes.read", "View quotes", "organization", "sales", {}),
    ("quotes.create", "Create quotes", "organization", "sales", {}),
    ("quotes.update", "Update quotes", "organization", "sales", {}),
    ("quotes.delete", "Delete quotes", "organization", "sales", {}),
    ("quotes.share", "Share quotes publicly", "organization", "sales", {}),
    ("invoices.read", "View invoice requests", "organization", "sales", {}),
    ("invoices.request", "Request invoices", "organization", "sales", {}),
    ("invoices.process", "Complete or cancel invoice requests", "system", "sales", {}),
    ("experiences.read", "View experiences", "department", "catalog", {}),
    ("experiences.create", "Create experiences", "system", "catalog", {}),
    ("experiences.update", "Update experiences", "system", "catalog", {}),
    ("experiences.delete", "Delete experiences", "system", "catalog", {}),
    ("system.admin", "Full system administration", "system", "system", {"delegatable": False}),
]


def system_permissions() -> List[Dict[str, Any]]:
    out = []
    for name, description, scope, category, extra in _PERMISSIONS:
        resource, action = name.split(".")
        out.append({
            "name": name,
            "resource": resource,
            "action": action,
            "description": description,
            "scope": scope,
            "category": category,
            "is_system_permission": True,
            **extra,
        })
    return out


# ---------- System roles ----------
SYSTEM_ROLES: List[Dict[str, Any]] = [
    {
        "name": "superadmin",
        "display_name": "Super Administrator",
        "description": "Full system access and administration",
        "level": 7,
        "scope": "system",
        "organization": "amexing",
        "base_permissions": ["*"],
        "delegatable": True,
        "max_delegation_level": 6,
        "color": "#DC2626",
        "icon": "shield-check",
    },
    {
        "name": "admin",
        "display_name": "Administrator",
        "description": "System administration and client management",
        "level": 6,
        "scope": "system",
        "organization": "amexing",
        "base_permissions": [
            "users.read", "users.create", "users.update", "users.delete",
            "clients.read", "clients.create", "clients.update", "clients.delete",
            "departments.*",
            "events.read", "events.create", "events.update",
            "bookings.read", "bookings.create", "bookings.update", "bookings.approve",
            "reports.read", "reports.generate",
            "roles.read", "permissions.read",
            "delegations.read", "delegations.create",
            "vehicles.*", "services.*", "pricing.*",
            "quotes.*", "invoices.*", "experiences.*",
        ],
        "delegatable": True,
        "max_delegation_level": 5,
        "color": "#DC2626",
        "icon": "shield",
    },
    {
        "name": "client",
        "display_name": "Client Administrator",
        "description": "Organization administrator for client companies",
        "level": 5,
        "scope": "organization",
        "organization": "client",
        "base_permissions": [
            "users.read", "users.create", "users.update",
            "clients.read",
            "departments.read", "departments.create", "departments.update",
            "events.read", "events.create", "events.update",
            "bookings.read", "bookings.create", "bookings.approve",
            "services.read", "pricing.read",
            "quotes.read", "quotes.create", "invoices.read", "invoices.request",
            "delegations.read", "delegations.create",
        ],
        "delegatable": True,
        "max_delegation_level": 4,
        "conditions": {"organization_scope": "own"},
        "color": "#059669",
        "icon": "building-office",
    },
    {
        "name": "department_manager",
        "display_name": "Department Manager",
        "description": "Department supervisor with delegation capabilities",
        "level": 4,
        "scope": "department",
        "organization": "client",
        "base_permissions": [
            "users.read", "users.update",
            "bookings.read", "bookings.create", "bookings.approve",
            "services.read", "pricing.read", "reports.read",
            "delegations.read", "delegations.create",
        ],
        "delegatable": True,
        "max_delegation_level": 3,
        "conditions": {"max_amount": 10000, "department_scope": "own"},
        "color": "#0891B2",
        "icon": "user-group",
    },
    {
        "name": "employee",
        "display_name": "Employee",
        "description": "Corporate client employee with departmental access",
        "level": 3,
        "scope": "department",
        "organization": "client",
        "base_permissions": ["bookings.read", "bookings.create", "services.read", "pricing.read"],
        "delegatable": False,
        "conditions": {"max_amount": 2000, "business_hours_only": True, "department_scope": "own"},
        "color": "#7C3AED",
        "icon": "user",
    },
    {
        "name": "employee_amexing",
        "display_name": "Amexing Employee",
        "description": "Internal Amexing administrative and operations staff",
        "level": 3,
        "scope": "operations",
        "organization": "amexing",
        "base_permissions": [
            "bookings.read", "bookings.update",
            "vehicles.read", "vehicles.update",
            "schedules.read", "schedules.update", "routes.read",
        ],
        "delegatable": False,
        "conditions": {"operations_only": True, "schedule_scope": "assigned"},
        "color": "#EA580C",
        "icon": "briefcase",
    },
    {
        "name": "driver",
        "display_name": "Driver",
        "description": "Transportation service driver with mobile app access",
        "level": 2,
        "scope": "operations",
        "organization": "amexing",
        "base_permissions": [
            "trips.read", "trips.accept", "trips.complete", "trips.cancel",
            "vehicles.read", "routes.read", "location.update", "earnings.read",
        ],
        "delegatable": False,
        "conditions": {"assigned_only": True, "mobile_access": True},
        "color": "#F59E0B",
        "icon": "truck",
    },
    {
        "name": "guest",
        "display_name": "Guest",
        "description": "Public access for service requests",
        "level": 1,
        "scope": "public",
        "organization": "external",
        "base_permissions": ["services.read", "requests.create", "quotes.read"],
        "delegatable": False,
        "color": "#6B7280",
        "icon": "user-circle",
    },
]

# ---------- Catalog defaults ----------
DEFAULT_RATES = [
    {"name": "Tarifa Estándar", "percentage": 0, "color": "#6B7280"},
    {"name": "Tarifa Corporativa", "percentage": 10, "color": "#2d673c"},
    {"name": "Tarifa Premium", "percentage": 15, "color": "#dc713d"},
    {"name": "Tarifa VIP", "percentage": 20, "color": "#982933"},
    {"name": "Descuento Departamental", "percentage": 5, "color": "#ebab3c"},
]

DEFAULT_VEHICLE_TYPES = [
    {"name": "Sedan", "code": "sedan", "description": "Vehículo de pasajeros estándar", "icon": "car",
     "default_capacity": 4, "sort_order": 1},
    {"name": "SUV", "code": "suv", "description": "Vehículo utilitario deportivo", "icon": "car-suv",
     "default_capacity": 6, "sort_order": 2},
    {"name": "Van", "code": "van", "description": "Van de pasajeros", "icon": "bus",
     "default_capacity": 8, "sort_order": 3},
    {"name": "Bus", "code": "bus", "description": "Autobús de pasajeros", "icon": "bus",
     "default_capacity": 20, "sort_order": 4},
    {"name": "Limousine", "code": "limousine", "description": "Limusina de lujo", "icon": "car-garage",
     "default_capacity": 8, "sort_order": 5},
]

DEFAULT_SERVICE_TYPES = ["Aeropuerto", "Punto a Punto", "Local"]


def _upsert(db: Session, model, lookup: Dict[str, Any], values: Dict[str, Any]) -> Tuple[Any, bool]:
    row = db.query(model).filter_by(**lookup).first()
    created = row is None
    if created:
        row = model(**lookup)
        db.add(row)
    for key, value in values.items():
        setattr(row, key, value)
    return row, created


def seed_permissions(db: Session) -> int:
    created = 0
    for data in system_permissions():
        values = {k: v for k, v in data.items() if k != "name"}
        _, is_new = _upsert(db, Permission, {"name": data["name"]}, values)
        created += int(is_new)
    db.flush()
    logger.info("Permission catalog seeded (%d new)", created)
    return created


def seed_roles(db: Session) -> int:
    created = 0
    for data in SYSTEM_ROLES:
        values = {k: v for k, v in data.items() if k != "name"}
        values.setdefault("conditions", {})
        values["is_system_role"] = True
        _, is_new = _upsert(db, Role, {"name": data["name"]}, values)
        created += int(is_new)
    db.flush()
    logger.info("System roles seeded (%d new)", created)
    return created


def seed_catalog(db: Session) -> Dict[str, int]:
    counts = {"rates": 0, "vehicle_types": 0, "service_types": 0}
    for data in DEFAULT_RATES:
        _, is_new = _upsert(db, Rate, {"name": data["name"]}, {k: v for k, v in data.items() if k != "name"})
        counts["rates"] += int(is_new)
    for data in DEFAULT_VEHICLE_TYPES:
        _, is_new = _upsert(db, VehicleType, {"code": data["code"]}, {k: v for k, v in data.items() if k != "code"})
        counts["vehicle_types"] += int(is_new)
    for name in DEFAULT_SERVICE_TYPES:
        _, is_new = _upsert(db, ServiceType, {"name": name}, {})
        counts["service_types"] += int(is_new)
    db.flush()
    logger.info("Catalog defaults seeded: %s", counts)
    return counts


def ensure_superadmin(
    db: Session,
    email: Optional[str] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
) -> User:
    role = db.query(Role).filter(Role.name == "superadmin").first()
    if role is None:
        seed_roles(db)
        role = db.query(Role).filter(Role.name == "superadmin").first()

    email = (email or settings.SUPERADMIN_EMAIL).lower()
    user = db.query(User).filter(User.email == email).first()
    if user:
        logger.info("Superadmin %s already exists", email)
        return user

    user = User(
        username=username or settings.SUPERADMIN_USERNAME,
        email=email,
        first_name="Super",
        last_name="Admin",
        password_hash=hash_password(password or settings.SUPERADMIN_PASSWORD),
        role_id=role.id,
        email_verified=True,
        must_change_password=True,
    )
    db.add(user)
    db.flush()
    logger.info("Superadmin %s created", email)
    return user

