# backend/tests/test_rbac.py
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from amexing.models import DelegatedPermission, Permission, Role, permission_matches
from amexing.models.conditions import (
    PermissionContext,
    condition_denial,
    is_business_hours,
    to_local_time,
    validate_condition_structure,
)
from amexing.services.rbac import authorize, effective_permissions, ip_allowed, role_chain

from conftest import make_client, make_department, make_user

# naive timestamps are UTC; Mexico City is UTC-6
# Monday and Saturday, 10:00 local
WEEKDAY = datetime(2025, 3, 3, 16, 0)
WEEKEND = datetime(2025, 3, 8, 16, 0)


# -----------------------------
# Wildcards & conditions
# -----------------------------
def test_permission_matches_wildcards():
    assert permission_matches("*", "users.read")
    assert permission_matches("users.*", "users.delete")
    assert permission_matches("users.read", "users.read")
    assert not permission_matches("users.*", "clients.read")
    assert not permission_matches("users.read", "users.update")


def test_condition_amount_limits():
    conditions = {"max_amount": 2000, "min_amount": 100}
    assert condition_denial(conditions, PermissionContext(amount=500)) is None
    assert "exceeds" in condition_denial(conditions, PermissionContext(amount=2500))
    assert "below" in condition_denial(conditions, PermissionContext(amount=50))
    # no amount in context -> nothing to evaluate
    assert condition_denial(conditions, PermissionContext()) is None


def test_condition_business_hours():
    conditions = {"business_hours_only": True}
    assert condition_denial(conditions, PermissionContext(timestamp=WEEKDAY)) is None
    assert condition_denial(conditions, PermissionContext(timestamp=WEEKEND)) is not None
    # Monday 18:00 local
    assert condition_denial(conditions, PermissionContext(timestamp=datetime(2025, 3, 4, 0, 0))) is not None
    # Monday 08:00 local
    assert condition_denial(conditions, PermissionContext(timestamp=datetime(2025, 3, 3, 14, 0))) is not None


def test_business_hours_use_local_time():
    # 20:00 UTC is 14:00 in Mexico City
    assert is_business_hours(datetime(2025, 3, 3, 20, 0))
    # Friday 23:30 UTC is still Friday afternoon locally
    assert is_business_hours(datetime(2025, 3, 7, 23, 30))
    # Saturday 01:00 UTC is Friday 19:00 locally
    assert not is_business_hours(datetime(2025, 3, 8, 1, 0))
    local = to_local_time(datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc))
    assert (local.hour, local.utcoffset()) == (6, timedelta(hours=-6))
    aware = datetime(2025, 3, 3, 10, 0, tzinfo=ZoneInfo("America/Mexico_City"))
    assert is_business_hours(aware)


def test_condition_department_and_organization_scope():
    dept = {"department_scope": "own"}
    assert condition_denial(dept, PermissionContext(department_id=3, user_department_id=3)) is None
    assert condition_denial(dept, PermissionContext(department_id=3, user_department_id=4)) is not None

    org = {"organization_scope": "own"}
    assert condition_denial(org, PermissionContext(organization_id="7", user_organization_id="7")) is None
    assert condition_denial(org, PermissionContext(organization_id="8", user_organization_id="7")) is not None

    literal = {"organization_scope": "amexing"}
    assert condition_denial(literal, PermissionContext(user_organization_id="amexing")) is None
    assert condition_denial(literal, PermissionContext(user_organization_id="7")) is not None


def test_condition_allowed_departments():
    conditions = {"allowed_departments": [1, 2]}
    assert condition_denial(conditions, PermissionContext(department_id=2)) is None
    assert condition_denial(conditions, PermissionContext(department_id=5)) is not None


def test_validate_condition_structure():
    assert validate_condition_structure({"max_amount": 10, "business_hours_only": False})
    assert validate_condition_structure({"operations_only": True})
    assert not validate_condition_structure({"max_amount": "10"})
    assert not validate_condition_structure({"max_amount": True})
    assert not validate_condition_structure({"business_hours_only": "yes"})
    assert not validate_condition_structure({"allowed_departments": 3})
    assert not validate_condition_structure(["max_amount"])


def test_ip_allowed_ranges():
    assert ip_allowed("10.0.0.5", [])
    assert ip_allowed("10.0.0.5", ["10.0.0.0/24"])
    assert ip_allowed("192.168.1.1", ["192.168.1.1"])
    assert not ip_allowed("10.0.1.5", ["10.0.0.0/24"])
    assert not ip_allowed(None, ["10.0.0.0/24"])
    assert ip_allowed("10.0.0.5", ["not-a-range", "10.0.0.0/8"])


# -----------------------------
# Permission catalog model
# -----------------------------
def test_permission_name_validation():
    assert Permission.is_valid_name("users.read")
    assert Permission.is_valid_name("client_prices.update")
    assert not Permission.is_valid_name("users")
    assert not Permission.is_valid_name("Users.read")
    assert not Permission.is_valid_name("users.read.all")
    assert not Permission.is_valid_name("users.")


def test_permission_inheritance_and_scope(db):
    read = db.query(Permission).filter(Permission.name == "users.read").one()
    create = db.query(Permission).filter(Permission.name == "users.create").one()

    assert read.inherits_from("users.read")
    assert read.inherits_from("users.*")
    assert not read.inherits_from("clients.*")
    assert read.is_more_restrictive_than(create)       # department < organization
    assert read.scope_level == 2

    read.includes = ["users.manage"]
    assert read.inherits_from("users.manage")


def test_permission_validate_context(db):
    perm = db.query(Permission).filter(Permission.name == "bookings.create").one()
    assert perm.conditions.get("max_amount") is not None
    # conditions that need a context fail an empty one
    assert not perm.validate_context(PermissionContext())
    assert perm.validate_context(PermissionContext(amount=1, timestamp=WEEKDAY))


def test_system_permissions_are_delegatable_unless_flagged(db):
    read = db.query(Permission).filter(Permission.name == "users.read").one()
    admin = db.query(Permission).filter(Permission.name == "system.admin").one()
    assert read.is_delegatable()
    assert not admin.is_delegatable()


# -----------------------------
# Roles
# -----------------------------
def test_role_hierarchy(db):
    roles = {r.name: r for r in db.query(Role).all()}
    assert roles["superadmin"].can_manage(roles["admin"])
    assert not roles["employee"].can_manage(roles["employee_amexing"])
    assert not roles["driver"].can_manage(roles["admin"])
    assert roles["admin"].can_delegate_permission("users.read")
    assert not roles["admin"].can_delegate_permission("roles.update")
    assert not roles["employee"].can_delegate_permission("bookings.read")
    assert roles["superadmin"].has_system_permission("anything.at_all")


def test_has_system_permission_checks_direct_grants(db):
    auditor = Role(name="auditor", display_name="Auditor", level=2, base_permissions=["users.read"],
                   is_system_role=False, conditions={}, contextual_permissions={}, delegatable_permissions=[])
    db.add(auditor)
    db.commit()

    assert auditor.has_system_permission("users.read")
    assert not auditor.has_system_permission("users.update")
    # no wildcard expansion
    admin = db.query(Role).filter(Role.name == "admin").one()
    assert not admin.has_system_permission("services.read")


def test_role_organization_access(db):
    roles = {r.name: r for r in db.query(Role).all()}
    assert roles["admin"].can_access_organization("amexing", "12")
    assert not roles["admin"].can_access_organization("12", "13")

    assert roles["client"].can_access_organization("12", "12")
    assert roles["client"].can_access_organization("amexing", "12")
    assert not roles["client"].can_access_organization("12", "13")
    assert not roles["client"].can_access_organization(None, "13")

    # any other organization type stays inside its own organization
    assert roles["guest"].can_access_organization("x", "x")
    assert not roles["guest"].can_access_organization("x", "y")


def test_role_inheritance_chain_ignores_cycles(db):
    a = Role(name="alpha", display_name="Alpha", level=2, base_permissions=["reports.read"], inherits_from="beta",
             conditions={}, contextual_permissions={}, delegatable_permissions=[])
    b = Role(name="beta", display_name="Beta", level=2, base_permissions=["events.read"], inherits_from="alpha",
             conditions={}, contextual_permissions={}, delegatable_permissions=[])
    db.add_all([a, b])
    db.commit()

    assert [r.name for r in role_chain(db, a)] == ["alpha", "beta"]
    assert effective_permissions(db, a) == {"reports.read", "events.read"}


def test_archived_parent_role_is_not_inherited(db):
    parent = Role(name="parent_role", display_name="Parent", level=2, base_permissions=["events.read"],
                  conditions={}, contextual_permissions={}, delegatable_permissions=[])
    child = Role(name="child_role", display_name="Child", level=1, base_permissions=[], inherits_from="parent_role",
                 conditions={}, contextual_permissions={}, delegatable_permissions=[])
    db.add_all([parent, child])
    db.commit()
    user = make_user(db, "inheritor", "guest")
    user.role_id = child.id
    db.commit()

    assert authorize(db, user, "events.read").allowed
    parent.deactivate()
    db.commit()
    assert not authorize(db, user, "events.read").allowed


# -----------------------------
# authorize()
# -----------------------------
def test_superadmin_wildcard(db, superadmin):
    result = authorize(db, superadmin, "anything.goes")
    assert result.allowed and result.source == "role"


def test_employee_conditions(db):
    acme = make_client(db)
    finance = make_department(db, acme, "Finance")
    sales = make_department(db, acme, "Sales")
    emp = make_user(db, "emp", "employee", client=acme, department=finance)

    ok = PermissionContext(amount=1500, department_id=finance.id, timestamp=WEEKDAY)
    assert authorize(db, emp, "bookings.create", ok).allowed

    too_much = PermissionContext(amount=2500, department_id=finance.id, timestamp=WEEKDAY)
    denied = authorize(db, emp, "bookings.create", too_much)
    assert not denied.allowed and "exceeds" in denied.reason

    weekend = PermissionContext(amount=100, department_id=finance.id, timestamp=WEEKEND)
    assert not authorize(db, emp, "bookings.create", weekend).allowed

    other_dept = PermissionContext(amount=100, department_id=sales.id, timestamp=WEEKDAY)
    assert not authorize(db, emp, "bookings.create", other_dept).allowed

    assert not authorize(db, emp, "users.delete", PermissionContext(timestamp=WEEKDAY)).allowed


def test_employee_request_in_local_business_hours(db):
    acme = make_client(db)
    finance = make_department(db, acme, "Finance")
    emp = make_user(db, "emp_late", "employee", client=acme, department=finance)

    # Monday 20:00 UTC, 14:00 in Mexico City
    afternoon = PermissionContext(amount=100, department_id=finance.id, timestamp=datetime(2025, 3, 3, 20, 0))
    assert authorize(db, emp, "bookings.create", afternoon).allowed

    # Monday 12:00 UTC, 06:00 in Mexico City
    early = PermissionContext(amount=100, department_id=finance.id, timestamp=datetime(2025, 3, 3, 12, 0))
    assert not authorize(db, emp, "bookings.create", early).allowed


def test_authorize_leaves_caller_context_untouched(db):
    acme = make_client(db)
    finance = make_department(db, acme, "Finance")
    emp = make_user(db, "emp_ctx", "employee", client=acme, department=finance)

    context = PermissionContext(amount=100, department_id=finance.id, timestamp=WEEKDAY)
    assert authorize(db, emp, "bookings.create", context).allowed
    assert context.user_department_id is None
    assert context.user_organization_id is None


def test_contextual_permission_conditions(db):
    role = db.query(Role).filter(Role.name == "admin").one()
    role.contextual_permissions = {"bookings.approve": {"conditions": {"max_amount": 5000}}}
    db.commit()
    admin = make_user(db, "ctxadmin", "admin")

    assert authorize(db, admin, "bookings.approve", PermissionContext(amount=4000)).allowed
    assert not authorize(db, admin, "bookings.approve", PermissionContext(amount=6000)).allowed
    assert authorize(db, admin, "bookings.read", PermissionContext(amount=6000)).allowed


def test_inactive_and_locked_users_are_denied(db):
    user = make_user(db, "sleepy", "admin")
    user.locked_until = datetime.utcnow() + timedelta(minutes=5)
    db.commit()
    assert authorize(db, user, "users.read").reason == "User account is locked"

    user.locked_until = None
    user.deactivate()
    db.commit()
    assert authorize(db, user, "users.read").reason == "User is not active"


def test_delegation_fallback_records_usage(db):
    manager = make_user(db, "boss", "admin")
    driver = make_user(db, "wheels", "driver")
    delegation = DelegatedPermission(
        from_user_id=manager.id,
        to_user_id=driver.id,
        permissions=["reports.read"],
        conditions={},
        restrictions={"max_usage_count": 2},
        valid_from=datetime.utcnow() - timedelta(minutes=1),
        valid_until=datetime.utcnow() + timedelta(hours=1),
        status="active",
    )
    db.add(delegation)
    db.commit()

    first = authorize(db, driver, "reports.read")
    assert first.allowed and first.source == "delegation"
    assert first.delegation_id == delegation.id
    assert delegation.usage_count == 1
    assert delegation.last_used_at is not None

    assert authorize(db, driver, "reports.read").allowed
    third = authorize(db, driver, "reports.read")
    assert not third.allowed and "usage limit" in third.reason


def test_expired_or_revoked_delegation_does_not_grant(db):
    manager = make_user(db, "boss2", "admin")
    guest = make_user(db, "visitor", "guest")
    expired = DelegatedPermission(
        from_user_id=manager.id, to_user_id=guest.id, permissions=["reports.read"],
        conditions={}, restrictions={},
        valid_from=datetime.utcnow() - timedelta(days=2),
        valid_until=datetime.utcnow() - timedelta(days=1),
        status="active",
    )
    revoked = DelegatedPermission(
        from_user_id=manager.id, to_user_id=guest.id, permissions=["events.read"],
        conditions={}, restrictions={},
        valid_from=datetime.utcnow() - timedelta(days=1),
        status="active",
    )
    db.add_all([expired, revoked])
    db.commit()
    revoked.revoke(manager.id, "no longer needed")
    db.commit()

    assert not authorize(db, guest, "reports.read").allowed
    assert not authorize(db, guest, "events.read").allowed


def test_delegation_daily_limit_and_ip_restrictions(db):
    manager = make_user(db, "boss3", "admin")
    guest = make_user(db, "visitor2", "guest")
    delegation = DelegatedPermission(
        from_user_id=manager.id, to_user_id=guest.id, permissions=["reports.*"],
        conditions={},
        restrictions={"daily_usage_limit": 1, "allowed_ip_ranges": ["10.0.0.0/8"]},
        valid_from=datetime.utcnow() - timedelta(minutes=1),
        status="active",
    )
    db.add(delegation)
    db.commit()

    assert not authorize(db, guest, "reports.read", PermissionContext(ip_address="192.168.0.1")).allowed
    assert authorize(db, guest, "reports.read", PermissionContext(ip_address="10.1.2.3")).allowed
    limited = authorize(db, guest, "reports.generate", PermissionContext(ip_address="10.1.2.3"))
    assert not limited.allowed and "Daily usage limit" in limited.reason


def test_delegation_ip_ranges_skipped_without_address(db):
    manager = make_user(db, "boss4", "admin")
    guest = make_user(db, "visitor3", "guest")
    delegation = DelegatedPermission(
        from_user_id=manager.id, to_user_id=guest.id, permissions=["reports.read"],
        conditions={},
        restrictions={"allowed_ip_ranges": ["10.0.0.0/8"]},
        valid_from=datetime.utcnow() - timedelta(minutes=1),
        status="active",
    )
    db.add(delegation)
    db.commit()

    result = authorize(db, guest, "reports.read", PermissionContext())
    assert result.allowed and result.source == "delegation"
    assert not authorize(db, guest, "reports.read", PermissionContext(ip_address="172.16.0.1")).allowed


def test_department_only_delegation(db):
    acme = make_client(db)
    finance = make_department(db, acme, "Finance")
    sales = make_department(db, acme, "Sales")
    manager = make_user(db, "fin_boss", "department_manager", client=acme, department=finance)
    guest = make_user(db, "helper", "guest", client=acme)
    delegation = DelegatedPermission(
        from_user_id=manager.id, to_user_id=guest.id, permissions=["reports.read"],
        conditions={"department_only": True}, restrictions={},
        valid_from=datetime.utcnow() - timedelta(minutes=1),
        status="active",
    )
    db.add(delegation)
    db.commit()

    assert authorize(db, guest, "reports.read", PermissionContext(department_id=finance.id)).allowed
    assert not authorize(db, guest, "reports.read", PermissionContext(department_id=sales.id)).allowed
