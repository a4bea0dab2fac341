# backend/tests/conftest.py
import os
import tempfile

# settings are read at import time
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("AUDIT_LOG_ENABLED", "false")
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="amexing-logs-"))
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from amexing.main import app
from amexing.api import deps as app_deps
from amexing.core.security import create_access_token, hash_password
from amexing.models import Base, Client, Department, Role, User
from amexing.services.seeds import seed_catalog, seed_permissions, seed_roles

PASSWORD = "Secret-Pass-123"


# -----------------------------
# Test DB: in-memory SQLite, fresh per test
# -----------------------------
@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    seed_permissions(session)
    seed_roles(session)
    seed_catalog(session)
    session.commit()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db, session_factory):
    def override_get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[app_deps.get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# -----------------------------
# Builders
# -----------------------------
def make_user(db, username, role_name, client=None, department=None, password=PASSWORD, **extra):
    role = db.query(Role).filter(Role.name == role_name).one()
    user = User(
        username=username,
        email=f"{username}@example.com",
        first_name=username.capitalize(),
        last_name="Test",
        password_hash=hash_password(password),
        role_id=role.id,
        client_id=client.id if client else None,
        department_id=department.id if department else None,
        **extra,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_client(db, name="Acme Corp", **extra):
    c = Client(name=name, email="contact@acme.example.com", **extra)
    db.add(c)
    db.commit()
    db.refresh(c)
    return c


def make_department(db, client, name="Finance", **extra):
    d = Department(client_id=client.id, name=name, **extra)
    db.add(d)
    db.commit()
    db.refresh(d)
    return d


def auth_headers(user):
    token = create_access_token(subject=str(user.id), role_name=user.role_name)
    return {"Authorization": f"Bearer {token}"}


# -----------------------------
# Common actors
# -----------------------------
@pytest.fixture
def superadmin(db):
    return make_user(db, "root", "superadmin")


@pytest.fixture
def admin(db):
    return make_user(db, "admin", "admin")


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def super_headers(superadmin):
    return auth_headers(superadmin)
