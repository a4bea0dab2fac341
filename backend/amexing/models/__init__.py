import logging
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    Date,
    ForeignKey,
    Index,
    Numeric,
    Boolean,
    JSON,
)
from sqlalchemy.ext.orderinglist import ordering_list
from sqlalchemy.orm import declarative_base, relationship

from .conditions import PermissionContext, condition_denial, validate_condition_structure

logger = logging.getLogger(__name__)

Base = declarative_base()

AMEXING_ORGANIZATION = "amexing"


# =========================
# Lifecycle (active / exists)
# =========================
class LifecycleMixin:
    """
    Soft lifecycle shared by every entity.

        active=True,  exists=True   -> live
        active=False, exists=True   -> archived
        exists=False                -> soft-deleted
    """

    active = Column(Boolean, nullable=False, default=True, server_default="1")
    exists = Column(Boolean, nullable=False, default=True, server_default="1")

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True)

    created_by = Column(Integer, nullable=True)   # user id
    modified_by = Column(Integer, nullable=True)
    deleted_by = Column(Integer, nullable=True)

    def is_active(self) -> bool:
        return bool(self.active) and bool(self.exists)

    def is_archived(self) -> bool:
        return not self.active and bool(self.exists)

    def is_soft_deleted(self) -> bool:
        return not self.exists

    @property
    def lifecycle_status(self) -> str:
        if self.exists is False:
            return "deleted"
        if self.exists and self.active:
            return "active"
        if self.exists and self.active is False:
            return "archived"
        return "unknown"

    def activate(self, modified_by: Optional[int] = None) -> None:
        self.active = True
        self.modified_by = modified_by
        logger.info("%s %s activated", type(self).__name__, self.id)

    def deactivate(self, modified_by: Optional[int] = None) -> None:
        self.active = False
        self.modified_by = modified_by
        logger.info("%s %s archived", type(self).__name__, self.id)

    def soft_delete(self, deleted_by: Optional[int] = None) -> None:
        self.exists = False
        self.active = False
        self.deleted_at = datetime.utcnow()
        self.deleted_by = deleted_by
        logger.info("%s %s soft deleted", type(self).__name__, self.id)

    def restore(self, modified_by: Optional[int] = None) -> None:
        # restored records come back archived; activate explicitly
        self.exists = True
        self.active = False
        self.deleted_at = None
        self.deleted_by = None
        self.modified_by = modified_by
        logger.info("%s %s restored", type(self).__name__, self.id)

    # ---- query helpers ----
    @classmethod
    def query_active(cls, db):
        return db.query(cls).filter(cls.active.is_(True), cls.exists.is_(True))

    @classmethod
    def query_existing(cls, db):
        return db.query(cls).filter(cls.exists.is_(True))

    @classmethod
    def query_archived(cls, db):
        return db.query(cls).filter(cls.active.is_(False), cls.exists.is_(True))

    @classmethod
    def query_soft_deleted(cls, db):
        return db.query(cls).filter(cls.exists.is_(False))

    @classmethod
    def query_all(cls, db):
        return db.query(cls)


# =========================
# Organization (Client / Department)
# =========================
class Client(LifecycleMixin, Base):
    __tablename__ = "clients"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    contact_person = Column(String, nullable=True)
    company_type = Column(String, nullable=True)
    tax_id = Column(String, nullable=True)
    website = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    address = Column(JSON, nullable=True)

    is_corporate = Column(Boolean, nullable=False, default=True)
    oauth_domain = Column(String, nullable=True)
    auto_provision_employees = Column(Boolean, nullable=False, default=False)
    default_employee_role = Column(String, nullable=False, default="employee")
    employee_access_level = Column(String, nullable=False, default="basic")

    departments = relationship("Department", back_populates="client", lazy="selectin")
    users = relationship("User", back_populates="client", foreign_keys="User.client_id", lazy="selectin")

    @property
    def organization_id(self) -> str:
        return str(self.id)


class Department(LifecycleMixin, Base):
    __tablename__ = "departments"
    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(Integer, ForeignKey("clients.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    manager_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    budget = Column(Numeric(18, 2), nullable=True)
    cost_center = Column(String, nullable=True)

    client = relationship("Client", back_populates="departments", lazy="selectin")
    manager = relationship("User", foreign_keys=[manager_id], lazy="selectin")
    employees = relationship(
        "User",
        back_populates="department",
        foreign_keys="User.department_id",
        lazy="selectin",
    )

    __table_args__ = (Index("ix_departments_client", "client_id"),)


# =========================
# RBAC (Role / Permission / DelegatedPermission)
# =========================
ROLE_SCOPES = ("system", "organization", "department", "operations", "public")
ROLE_ORGANIZATIONS = (AMEXING_ORGANIZATION, "client", "external")


class Role(LifecycleMixin, Base):
    __tablename__ = "roles"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), nullable=False, unique=True)
    display_name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    level = Column(Integer, nullable=False, default=1)  # 1..7
    scope = Column(String, nullable=False, default="public")
    organization = Column(String, nullable=False, default=AMEXING_ORGANIZATION)

    base_permissions = Column(JSON, nullable=False, default=list)
    delegatable = Column(Boolean, nullable=False, default=False)
    inherits_from = Column(String(50), nullable=True)  # parent role name
    conditions = Column(JSON, nullable=False, default=dict)
    contextual_permissions = Column(JSON, nullable=False, default=dict)
    delegatable_permissions = Column(JSON, nullable=False, default=list)
    max_delegation_level = Column(Integer, nullable=True)

    is_system_role = Column(Boolean, nullable=False, default=False)
    color = Column(String, nullable=True)
    icon = Column(String, nullable=True)

    users = relationship("User", back_populates="role", lazy="select")

    def is_higher_than(self, other: "Role") -> bool:
        return (self.level or 0) > (other.level or 0)

    def can_manage(self, other: "Role") -> bool:
        return self.is_higher_than(other)

    def has_system_permission(self, permission: str) -> bool:
        """Direct grant in ``base_permissions`` (or '*'); no wildcard or inheritance walk."""
        perms = self.base_permissions or []
        return "*" in perms or permission in perms

    def can_delegate_permission(self, permission: str) -> bool:
        if not self.delegatable:
            return False
        allowed = self.delegatable_permissions or self.base_permissions or []
        if "*" in allowed:
            return True
        return any(permission_matches(grant, permission) for grant in allowed)

    def can_access_organization(self, user_org: Optional[str], target_org: Optional[str]) -> bool:
        """
        Amexing staff roles reach every organization. Client roles reach their
        own organization, or any when the user sits in Amexing. Every other
        role stays inside its own organization.
        """
        if self.organization == AMEXING_ORGANIZATION and user_org == AMEXING_ORGANIZATION:
            return True
        if self.organization == "client":
            return user_org == AMEXING_ORGANIZATION or user_org == target_org
        return user_org == target_org


def permission_matches(grant: str, permission: str) -> bool:
    """Exact name, '*' or 'resource.*' wildcard."""
    if grant == "*" or grant == permission:
        return True
    if grant.endswith(".*"):
        return permission.startswith(grant[:-1])
    return False


PERMISSION_SCOPES = {"own": 1, "department": 2, "organization": 3, "system": 4}
_PERMISSION_NAME_CHARS = set("abcdefghijklmnopqrstuvwxyz0123456789_")


class Permission(LifecycleMixin, Base):
    __tablename__ = "permissions"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)
    resource = Column(String(50), nullable=False)
    action = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    scope = Column(String, nullable=False, default="own")
    conditions = Column(JSON, nullable=False, default=dict)
    category = Column(String, nullable=True)
    priority = Column(Integer, nullable=False, default=0)

    is_system_permission = Column(Boolean, nullable=False, default=False)
    requires_approval = Column(Boolean, nullable=False, default=False)
    delegatable = Column(Boolean, nullable=False, default=True)
    includes = Column(JSON, nullable=False, default=list)
    prerequisites = Column(JSON, nullable=False, default=list)

    __table_args__ = (Index("ix_permissions_resource", "resource"),)

    @staticmethod
    def is_valid_name(name: Optional[str]) -> bool:
        """Accept 'resource.action' where both parts match ^[a-z][a-z0-9_]*$."""
        if not name or name.count(".") != 1:
            return False
        for part in name.split("."):
            if not part or not ("a" <= part[0] <= "z") or not set(part) <= _PERMISSION_NAME_CHARS:
                return False
        return True

    @staticmethod
    def is_valid_conditions(conditions: Any) -> bool:
        return validate_condition_structure(conditions)

    @property
    def scope_level(self) -> int:
        return PERMISSION_SCOPES.get(self.scope, 0)

    def is_more_restrictive_than(self, other: "Permission") -> bool:
        return self.scope_level < other.scope_level

    def is_delegatable(self) -> bool:
        return self.delegatable is not False and self.is_active()

    def inherits_from(self, parent: str) -> bool:
        """True when holding ``parent`` implies this permission."""
        if parent == self.name:
            return True
        if parent in (self.includes or []):
            return True
        if parent.endswith(".*") and self.name.startswith(parent[:-1]):
            return True
        return self.name.startswith(parent + ".")

    def validate_context(self, context: PermissionContext) -> bool:
        conditions = self.conditions or {}
        if context.is_empty():
            needs_context = ("max_amount", "business_hours_only", "department_scope")
            return not any(conditions.get(key) for key in needs_context)
        return condition_denial(conditions, context) is None


DELEGATION_TYPES = ("temporary", "permanent", "emergency", "project", "coverage")
DELEGATION_STATUSES = ("active", "expired", "revoked", "suspended")


class DelegatedPermission(LifecycleMixin, Base):
    __tablename__ = "delegated_permissions"
    id = Column(Integer, primary_key=True, index=True)
    from_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    to_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    permissions = Column(JSON, nullable=False, default=list)
    conditions = Column(JSON, nullable=False, default=dict)
    restrictions = Column(JSON, nullable=False, default=dict)

    valid_from = Column(DateTime, nullable=False, default=datetime.utcnow)
    valid_until = Column(DateTime, nullable=True)  # null = permanent
    is_permanent = Column(Boolean, nullable=False, default=False)

    reason = Column(Text, nullable=True)
    delegation_type = Column(String, nullable=False, default="temporary")
    priority = Column(String, nullable=False, default="normal")
    status = Column(String, nullable=False, default="active")

    usage_count = Column(Integer, nullable=False, default=0)
    usage_today = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime, nullable=True)

    revoked_by = Column(Integer, nullable=True)
    revoked_at = Column(DateTime, nullable=True)
    revocation_reason = Column(Text, nullable=True)

    from_user = relationship("User", foreign_keys=[from_user_id], lazy="selectin")
    to_user = relationship("User", foreign_keys=[to_user_id], lazy="selectin")

    __table_args__ = (
        Index("ix_delegations_to_user", "to_user_id", "status"),
        Index("ix_delegations_from_user", "from_user_id", "status"),
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.valid_until is None:
            return False
        return (now or datetime.utcnow()) > self.valid_until

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        if not self.is_active() or self.status != "active":
            return False
        if self.valid_from and now < self.valid_from:
            return False
        return not self.is_expired(now)

    def includes_permission(self, permission: str) -> bool:
        return any(permission_matches(grant, permission) for grant in (self.permissions or []))

    def usage_on(self, day: date) -> int:
        if self.last_used_at is None or self.last_used_at.date() != day:
            return 0
        return self.usage_today or 0

    def record_usage(self, now: Optional[datetime] = None) -> None:
        now = now or datetime.utcnow()
        self.usage_today = self.usage_on(now.date()) + 1
        self.usage_count = (self.usage_count or 0) + 1
        self.last_used_at = now

    def revoke(self, revoked_by: Optional[int], reason: Optional[str] = None) -> None:
        self.status = "revoked"
        self.active = False
        self.revoked_by = revoked_by
        self.revoked_at = datetime.utcnow()
        self.revocation_reason = reason
        self.modified_by = revoked_by

    def expire(self) -> None:
        self.status = "expired"
        self.active = False

    def extend(self, valid_until: Optional[datetime], modified_by: Optional[int] = None) -> None:
        self.valid_until = valid_until
        self.is_permanent = valid_until is None
        self.modified_by = modified_by


# =========================
# Users
# =========================
class User(LifecycleMixin, Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), nullable=False, unique=True)
    email = Column(String, nullable=False, unique=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    password_hash = Column(String, nullable=True)  # OAuth-only users have none

    role_id = Column(Integer, ForeignKey("roles.id", ondelete="SET NULL"), nullable=True)
    client_id = Column(Integer, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True)
    department_id = Column(Integer, ForeignKey("departments.id", ondelete="SET NULL"), nullable=True)

    login_attempts = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime, nullable=True)
    last_login_at = Column(DateTime, nullable=True)
    last_auth_method = Column(String, nullable=True)
    password_changed_at = Column(DateTime, nullable=True)
    must_change_password = Column(Boolean, nullable=False, default=False)
    email_verified = Column(Boolean, nullable=False, default=False)

    oauth_accounts = Column(JSON, nullable=False, default=list)
    primary_oauth_provider = Column(String, nullable=True)
    contextual_data = Column(JSON, nullable=False, default=dict)

    role = relationship("Role", back_populates="users", lazy="selectin")
    client = relationship("Client", back_populates="users", foreign_keys=[client_id], lazy="selectin")
    department = relationship("Department", back_populates="employees", foreign_keys=[department_id], lazy="selectin")

    @property
    def full_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) or self.username

    @property
    def organization_id(self) -> str:
        return str(self.client_id) if self.client_id else AMEXING_ORGANIZATION

    @property
    def role_name(self) -> Optional[str]:
        return self.role.name if self.role else None

    def is_locked(self, now: Optional[datetime] = None) -> bool:
        return self.locked_until is not None and self.locked_until > (now or datetime.utcnow())

    def register_failed_login(self, max_attempts: int, lockout_minutes: int) -> bool:
        """Count a failed login; returns True when this attempt locked the account."""
        self.login_attempts = (self.login_attempts or 0) + 1
        if self.login_attempts >= max_attempts:
            self.locked_until = datetime.utcnow() + timedelta(minutes=lockout_minutes)
            self.login_attempts = 0
            return True
        return False

    def register_successful_login(self, method: str = "password") -> None:
        self.login_attempts = 0
        self.locked_until = None
        self.last_login_at = datetime.utcnow()
        self.last_auth_method = method

    # ---- OAuth account bookkeeping ----
    def get_oauth_account(self, provider: str) -> Optional[Dict[str, Any]]:
        for account in self.oauth_accounts or []:
            if account.get("provider") == provider:
                return account
        return None

    def add_oauth_account(self, provider: str, provider_id: str, email: Optional[str] = None, **extra) -> Dict[str, Any]:
        accounts = [a for a in (self.oauth_accounts or []) if a.get("provider") != provider]
        account = {
            "provider": provider,
            "provider_id": provider_id,
            "email": email,
            "linked_at": datetime.utcnow().isoformat(),
            **extra,
        }
        accounts.append(account)
        # reassign so the JSON column is flagged dirty
        self.oauth_accounts = accounts
        if not self.primary_oauth_provider:
            self.primary_oauth_provider = provider
        return account

    def remove_oauth_account(self, provider: str) -> bool:
        accounts = self.oauth_accounts or []
        remaining = [a for a in accounts if a.get("provider") != provider]
        if len(remaining) == len(accounts):
            return False
        self.oauth_accounts = remaining
        if self.primary_oauth_provider == provider:
            self.primary_oauth_provider = remaining[0]["provider"] if remaining else None
        return True


# =========================
# Fleet (VehicleType / Vehicle / VehicleImage)
# =========================
MAINTENANCE_STATUSES = ("operational", "maintenance", "repair", "out_of_service")


class VehicleType(LifecycleMixin, Base):
    __tablename__ = "vehicle_types"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    code = Column(String(50), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    icon = Column(String, nullable=True)
    default_capacity = Column(Integer, nullable=False, default=4)
    sort_order = Column(Integer, nullable=False, default=0)


class Vehicle(LifecycleMixin, Base):
    __tablename__ = "vehicles"
    id = Column(Integer, primary_key=True, index=True)
    vehicle_type_id = Column(Integer, ForeignKey("vehicle_types.id"), nullable=False)
    rate_id = Column(Integer, ForeignKey("rates.id", ondelete="SET NULL"), nullable=True)

    brand = Column(String, nullable=False)
    model = Column(String, nullable=False)
    year = Column(Integer, nullable=False)
    license_plate = Column(String(20), nullable=False)
    capacity = Column(Integer, nullable=False)
    color = Column(String, nullable=True)
    features = Column(JSON, nullable=False, default=list)
    maintenance_status = Column(String, nullable=False, default="operational")
    insurance_expiry = Column(Date, nullable=True)

    vehicle_type = relationship("VehicleType", lazy="selectin")
    rate = relationship("Rate", lazy="selectin")
    images = relationship(
        "VehicleImage",
        back_populates="vehicle",
        cascade="all, delete-orphan",
        order_by="VehicleImage.display_order",
        lazy="selectin",
    )

    __table_args__ = (Index("ix_vehicles_plate", "license_plate"),)

    @property
    def display_name(self) -> str:
        return f"{self.brand} {self.model} {self.year} ({self.license_plate})"

    def is_available(self) -> bool:
        return self.is_active() and self.maintenance_status == "operational"

    def is_insurance_expired(self, today: Optional[date] = None) -> bool:
        if self.insurance_expiry is None:
            return False
        return self.insurance_expiry < (today or date.today())


class VehicleImage(LifecycleMixin, Base):
    __tablename__ = "vehicle_images"
    id = Column(Integer, primary_key=True, index=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id", ondelete="CASCADE"), nullable=False)
    url = Column(String, nullable=False)
    file_name = Column(String, nullable=True)
    display_order = Column(Integer, nullable=False, default=0)
    is_primary = Column(Boolean, nullable=False, default=False)

    vehicle = relationship("Vehicle", back_populates="images", lazy="selectin")


# =========================
# Pricing catalog (Rate / ServiceType / POI / Service / Tour)
# =========================
class Rate(LifecycleMixin, Base):
    __tablename__ = "rates"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)
    percentage = Column(Numeric(5, 2), nullable=False, default=0)
    color = Column(String, nullable=True)


class ServiceType(LifecycleMixin, Base):
    __tablename__ = "service_types"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, unique=True)


class POI(LifecycleMixin, Base):
    __tablename__ = "pois"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False, unique=True)
    service_type_id = Column(Integer, ForeignKey("service_types.id", ondelete="SET NULL"), nullable=True)

    service_type = relationship("ServiceType", lazy="selectin")


class Service(LifecycleMixin, Base):
    """A route: (origin, destination, vehicle type). Prices per rate live in RatePrice."""

    __tablename__ = "services"
    id = Column(Integer, primary_key=True, index=True)
    origin_poi_id = Column(Integer, ForeignKey("pois.id"), nullable=True)
    destination_poi_id = Column(Integer, ForeignKey("pois.id"), nullable=False)
    vehicle_type_id = Column(Integer, ForeignKey("vehicle_types.id"), nullable=False)
    note = Column(Text, nullable=True)

    origin_poi = relationship("POI", foreign_keys=[origin_poi_id], lazy="selectin")
    destination_poi = relationship("POI", foreign_keys=[destination_poi_id], lazy="selectin")
    vehicle_type = relationship("VehicleType", lazy="selectin")

    @property
    def route_description(self) -> str:
        origin = self.origin_poi.name if self.origin_poi else "Any"
        destination = self.destination_poi.name if self.destination_poi else "?"
        return f"{origin} → {destination}"


PRICE_CURRENCIES = ("MXN", "USD", "EUR")


def format_price(price: Optional[float], currency: str) -> str:
    return f"${float(price or 0):,.2f} {currency}"


class RatePrice(LifecycleMixin, Base):
    """Price of a service route under one rate and vehicle type."""

    __tablename__ = "rate_prices"
    id = Column(Integer, primary_key=True, index=True)
    service_id = Column(Integer, ForeignKey("services.id", ondelete="CASCADE"), nullable=False)
    rate_id = Column(Integer, ForeignKey("rates.id"), nullable=False)
    vehicle_type_id = Column(Integer, ForeignKey("vehicle_types.id"), nullable=False)
    price = Column(Numeric(18, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="MXN")

    service = relationship("Service", lazy="selectin")
    rate = relationship("Rate", lazy="selectin")
    vehicle_type = relationship("VehicleType", lazy="selectin")

    __table_args__ = (Index("ix_rate_prices_key", "service_id", "rate_id", "vehicle_type_id"),)

    @property
    def formatted_price(self) -> str:
        return format_price(self.price, self.currency)


class Tour(LifecycleMixin, Base):
    __tablename__ = "tours"
    id = Column(Integer, primary_key=True, index=True)
    destination_poi_id = Column(Integer, ForeignKey("pois.id"), nullable=False)
    time = Column(Integer, nullable=False, default=0)  # minutes
    notes = Column(Text, nullable=True)
    available_days = Column(JSON, nullable=True)  # ISO weekdays, 1 = Monday
    start_time = Column(String(5), nullable=True)  # "HH:MM"
    end_time = Column(String(5), nullable=True)

    destination_poi = relationship("POI", lazy="selectin")

    @property
    def display_name(self) -> str:
        destination = self.destination_poi.name if self.destination_poi else "Unknown Destination"
        return f"{destination} | {round((self.time or 0) / 60, 1):g}h"


class TourPrice(LifecycleMixin, Base):
    __tablename__ = "tour_prices"
    id = Column(Integer, primary_key=True, index=True)
    tour_id = Column(Integer, ForeignKey("tours.id", ondelete="CASCADE"), nullable=False)
    rate_id = Column(Integer, ForeignKey("rates.id"), nullable=False)
    vehicle_type_id = Column(Integer, ForeignKey("vehicle_types.id"), nullable=False)
    price = Column(Numeric(18, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="MXN")

    tour = relationship("Tour", lazy="selectin")
    rate = relationship("Rate", lazy="selectin")
    vehicle_type = relationship("VehicleType", lazy="selectin")

    __table_args__ = (Index("ix_tour_prices_key", "tour_id", "rate_id", "vehicle_type_id"),)

    @property
    def formatted_price(self) -> str:
        return format_price(self.price, self.currency)

    @property
    def display_name(self) -> str:
        tour = self.tour.display_name if self.tour else "Unknown Tour"
        vehicle = self.vehicle_type.name if self.vehicle_type else "Unknown Vehicle"
        rate = self.rate.name if self.rate else "Unknown Rate"
        return f"{tour} | {vehicle} | {rate} | {self.formatted_price}"


# =========================
# Client price overrides (versioned via valid_until)
# =========================
PRICE_ITEM_TYPES = ("SERVICES", "TOURS", "EXPERIENCES")


class ClientPrice(LifecycleMixin, Base):
    __tablename__ = "client_prices"
    id = Column(Integer, primary_key=True, index=True)
    client_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    rate_id = Column(Integer, ForeignKey("rates.id"), nullable=False)
    vehicle_type_id = Column(Integer, ForeignKey("vehicle_types.id"), nullable=False)
    item_type = Column(String(20), nullable=False)
    item_id = Column(Integer, nullable=False)

    price = Column(Numeric(18, 2), nullable=False)
    base_price = Column(Numeric(18, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="MXN")
    notes = Column(Text, nullable=True)
    last_modified_by = Column(Integer, nullable=True)
    valid_until = Column(DateTime, nullable=True)  # null = current version

    client = relationship("User", foreign_keys=[client_id], lazy="selectin")
    rate = relationship("Rate", lazy="selectin")
    vehicle_type = relationship("VehicleType", lazy="selectin")

    __table_args__ = (
        Index("ix_client_prices_key", "client_id", "item_type", "item_id", "rate_id", "vehicle_type_id"),
    )

    def is_current(self) -> bool:
        return self.valid_until is None

    @property
    def discount_percentage(self) -> float:
        """Percentage below the base price (negative for a markup), 2 decimals."""
        if not self.base_price or float(self.base_price) <= 0:
            return 0.0
        base = float(self.base_price)
        return round((base - float(self.price)) / base * 100, 2)

    def is_discount(self) -> bool:
        return self.base_price is not None and float(self.price) < float(self.base_price)

    def is_markup(self) -> bool:
        return self.base_price is not None and float(self.price) > float(self.base_price)

    @property
    def formatted_price(self) -> str:
        return format_price(self.price, self.currency)

    def close(self, now: Optional[datetime] = None) -> None:
        """End this version at the end of today."""
        today = (now or datetime.utcnow()).date()
        self.valid_until = datetime.combine(today, time(23, 59, 59, 999000))


# =========================
# Sales documents (Quote / Invoice)
# =========================
QUOTE_STATUSES = ("draft", "requested", "sent", "accepted", "rejected", "expired")


class Quote(LifecycleMixin, Base):
    __tablename__ = "quotes"
    id = Column(Integer, primary_key=True, index=True)
    folio = Column(String(20), nullable=False, unique=True)
    rate_id = Column(Integer, ForeignKey("rates.id"), nullable=False)
    client_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    contact_person = Column(String, nullable=True)
    contact_email = Column(String, nullable=True)
    contact_phone = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    status = Column(String, nullable=False, default="draft")
    valid_until = Column(DateTime, nullable=True)
    number_of_people = Column(Integer, nullable=True)
    event_type = Column(String, nullable=True)
    service_items = Column(JSON, nullable=False, default=dict)

    share_token = Column(String(64), nullable=True, unique=True)
    share_token_active = Column(Boolean, nullable=False, default=False)

    rate = relationship("Rate", lazy="selectin")
    client = relationship("User", foreign_keys=[client_id], lazy="selectin")
    invoices = relationship("Invoice", back_populates="quote", lazy="selectin")

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.valid_until is not None and (now or datetime.utcnow()) > self.valid_until


INVOICE_STATUSES = ("pending", "completed", "cancelled")


class Invoice(LifecycleMixin, Base):
    __tablename__ = "invoices"
    id = Column(Integer, primary_key=True, index=True)
    quote_id = Column(Integer, ForeignKey("quotes.id", ondelete="CASCADE"), nullable=False)
    requested_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    processed_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status = Column(String, nullable=False, default="pending")
    request_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    process_date = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    invoice_number = Column(String, nullable=True)

    quote = relationship("Quote", back_populates="invoices", lazy="selectin")
    requested_by = relationship("User", foreign_keys=[requested_by_id], lazy="selectin")
    processed_by = relationship("User", foreign_keys=[processed_by_id], lazy="selectin")

    def mark_completed(self, processed_by: int, invoice_number: Optional[str] = None) -> None:
        """Completed requests are archived so they leave the pending queue."""
        self.status = "completed"
        self.processed_by_id = processed_by
        self.process_date = datetime.utcnow()
        if invoice_number:
            self.invoice_number = invoice_number
        self.deactivate(processed_by)

    def mark_cancelled(self, cancelled_by: int) -> None:
        self.status = "cancelled"
        self.processed_by_id = cancelled_by
        self.process_date = datetime.utcnow()
        self.soft_delete(cancelled_by)


# =========================
# Experiences (tours / packages)
# =========================
EXPERIENCE_TYPES = ("Experience", "Provider")
MAX_INCLUDED_EXPERIENCES = 20


class ExperienceInclusion(Base):
    __tablename__ = "experience_inclusions"
    package_id = Column(Integer, ForeignKey("experiences.id", ondelete="CASCADE"), primary_key=True)
    experience_id = Column(Integer, ForeignKey("experiences.id", ondelete="CASCADE"), primary_key=True)
    position = Column(Integer, nullable=False, default=0)

    experience = relationship("Experience", foreign_keys=[experience_id], lazy="selectin")


class Experience(LifecycleMixin, Base):
    __tablename__ = "experiences"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(String(1000), nullable=False)
    type = Column(String(20), nullable=False, default="Experience")
    cost = Column(Numeric(18, 2), nullable=False, default=0)
    main_image = Column(String, nullable=True)

    inclusions = relationship(
        "ExperienceInclusion",
        foreign_keys=[ExperienceInclusion.package_id],
        order_by=ExperienceInclusion.position,
        collection_class=ordering_list("position"),
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def included_experiences(self) -> List["Experience"]:
        return [inc.experience for inc in self.inclusions]

    @property
    def included_ids(self) -> List[int]:
        return [inc.experience_id for inc in self.inclusions]

    def is_package(self) -> bool:
        return len(self.inclusions) > 0

    @property
    def display_name(self) -> str:
        count = len(self.inclusions)
        if count:
            return f"{self.name} (+{count} experiencias)"
        return self.name

    def includes_experience(self, experience_id: int) -> bool:
        return experience_id in self.included_ids

    def set_included(self, experiences: List["Experience"]) -> None:
        existing = {inc.experience_id: inc for inc in self.inclusions}
        self.inclusions = [
            existing.get(e.id) or ExperienceInclusion(experience=e, experience_id=e.id)
            for e in experiences
        ]
