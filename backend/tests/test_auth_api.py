# backend/tests/test_auth_api.py
from amexing.core.config import settings
from amexing.core.security import password_policy_errors, verify_password
from amexing.models import User

from conftest import PASSWORD, auth_headers, make_client, make_department, make_user


def _login(client, identifier, password=PASSWORD):
    return client.post("/auth/login", json={"identifier": identifier, "password": password})


# -----------------------------
# Login
# -----------------------------
def test_login_with_email_or_username(client, admin):
    r = _login(client, "admin@example.com")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["token_type"] == "bearer"
    assert body["access_token"]

    r = _login(client, "ADMIN")
    assert r.status_code == 200, r.text


def test_login_updates_last_login(client, db, admin):
    _login(client, "admin")
    db.expire_all()
    user = db.get(User, admin.id)
    assert user.last_login_at is not None
    assert user.last_auth_method == "password"
    assert user.login_attempts == 0


def test_wrong_password_and_unknown_account(client, admin):
    assert _login(client, "admin", "nope").status_code == 401
    assert _login(client, "ghost@example.com").status_code == 401


def test_lockout_after_repeated_failures(client, db, admin):
    for _ in range(settings.MAX_LOGIN_ATTEMPTS - 1):
        assert _login(client, "admin", "bad-password").status_code == 401

    r = _login(client, "admin", "bad-password")
    assert r.status_code == 423

    # even the right password is refused while locked
    r = _login(client, "admin")
    assert r.status_code == 423
    assert "locked" in r.json()["detail"].lower()

    db.expire_all()
    assert db.get(User, admin.id).locked_until is not None


def test_inactive_user_cannot_log_in(client, db):
    user = make_user(db, "sleepy", "admin")
    user.deactivate()
    db.commit()
    assert _login(client, "sleepy").status_code == 403


def test_token_of_deactivated_user_is_rejected(client, db):
    user = make_user(db, "sleepy", "admin")
    headers = auth_headers(user)
    assert client.get("/auth/me", headers=headers).status_code == 200

    user.deactivate()
    db.commit()
    assert client.get("/auth/me", headers=headers).status_code == 401


def test_missing_or_bad_token(client):
    assert client.get("/auth/me").status_code in (401, 403)
    r = client.get("/auth/me", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401


# -----------------------------
# Me / permission check
# -----------------------------
def test_me_lists_role_permissions(client, admin, admin_headers):
    r = client.get("/auth/me", headers=admin_headers)
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["role"] == "admin"
    assert body["role_level"] == 6
    assert body["organization_id"] == "amexing"
    assert "users.read" in body["permissions"]["role"]
    assert body["permissions"]["delegated"] == []


def test_check_permission_with_context(client, db):
    acme = make_client(db)
    finance = make_department(db, acme, "Finance")
    manager = make_user(db, "mgr", "department_manager", client=acme, department=finance)
    headers = auth_headers(manager)

    r = client.get("/auth/check", params={"permission": "bookings.approve", "amount": 5000}, headers=headers)
    assert r.json()["allowed"] is True
    assert r.json()["source"] == "role"

    r = client.get("/auth/check", params={"permission": "bookings.approve", "amount": 15000}, headers=headers)
    assert r.json()["allowed"] is False
    assert "exceeds" in r.json()["reason"]

    r = client.get(
        "/auth/check",
        params={"permission": "bookings.read", "department_id": finance.id + 100},
        headers=headers,
    )
    assert r.json()["allowed"] is False


# -----------------------------
# Password change
# -----------------------------
def test_change_password(client, db, admin, admin_headers):
    new_password = "Another-Secret-456"
    r = client.post(
        "/auth/change-password",
        json={"current_password": PASSWORD, "new_password": new_password},
        headers=admin_headers,
    )
    assert r.status_code == 204, r.text

    db.expire_all()
    user = db.get(User, admin.id)
    assert verify_password(new_password, user.password_hash)
    assert user.password_changed_at is not None
    assert _login(client, "admin", new_password).status_code == 200


def test_change_password_rules(client, admin_headers):
    r = client.post(
        "/auth/change-password",
        json={"current_password": "wrong", "new_password": "Another-Secret-456"},
        headers=admin_headers,
    )
    assert r.status_code == 400

    r = client.post(
        "/auth/change-password",
        json={"current_password": PASSWORD, "new_password": PASSWORD},
        headers=admin_headers,
    )
    assert r.status_code == 400

    r = client.post(
        "/auth/change-password",
        json={"current_password": PASSWORD, "new_password": "short"},
        headers=admin_headers,
    )
    assert r.status_code == 400
    assert "at least" in r.json()["detail"]


def test_password_policy():
    assert password_policy_errors("Secret-Pass-123") == []
    errors = password_policy_errors("alllowercase")
    assert any("uppercase" in e for e in errors)
    assert any("number" in e for e in errors)


# -----------------------------
# OAuth account bookkeeping
# -----------------------------
def test_link_and_unlink_oauth_account(client, admin_headers):
    r = client.post(
        "/auth/oauth-accounts",
        json={"provider": "google", "provider_id": "g-123", "email": "admin@example.com"},
        headers=admin_headers,
    )
    assert r.status_code == 201, r.text
    assert r.json()["primary"] == "google"

    client.post("/auth/oauth-accounts", json={"provider": "microsoft", "provider_id": "m-1"}, headers=admin_headers)
    r = client.get("/auth/oauth-accounts", headers=admin_headers)
    assert [a["provider"] for a in r.json()["items"]] == ["google", "microsoft"]

    r = client.delete("/auth/oauth-accounts/google", headers=admin_headers)
    assert r.status_code == 204
    r = client.get("/auth/oauth-accounts", headers=admin_headers)
    assert r.json()["primary"] == "microsoft"

    assert client.delete("/auth/oauth-accounts/github", headers=admin_headers).status_code == 404


def test_cannot_unlink_only_sign_in_method(client, db):
    user = make_user(db, "oauth_only", "admin")
    user.password_hash = None
    user.add_oauth_account("google", "g-9")
    db.commit()

    r = client.delete("/auth/oauth-accounts/google", headers=auth_headers(user))
    assert r.status_code == 400
