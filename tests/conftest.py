"""
ConstructTrack - Test Configuration

Pytest fixtures: an in-memory SQLite database rebuilt for every test, a
TestClient wired to it, and factories for tenants, users, sites and tokens.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUTO_CREATE_DB", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("JWT_SECRET", "test-secret")

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from constructtrack.db import Base, get_db
from constructtrack.auth.security import create_access_token, get_password_hash, open_session
from constructtrack.main import app
from constructtrack.models.models import Client, Site, SiteAssignment, Tenant, TimeRecord, Tool, User


test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    future=True,
)
TestSessionLocal = sessionmaker(bind=test_engine, autoflush=False, autocommit=False, future=True)

PASSWORD = "Password123!"


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """Fresh schema and session for each test."""
    Base.metadata.create_all(bind=test_engine)
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def client(db: Session) -> Generator[TestClient, None, None]:
    """TestClient whose requests use the test database."""

    def _override_get_db():
        session = TestSessionLocal()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# =====================
# Factories
# =====================


def make_tenant(db: Session, name: str = "Acme Construction", status: str = "active") -> Tenant:
    tenant = Tenant(name=name, email=f"info@{name.split()[0].lower()}.com", subscription_status=status, settings={})
    db.add(tenant)
    db.commit()
    db.refresh(tenant)
    return tenant


def make_user(db: Session, tenant, role: str = "employee", email: str = None,
              first_name: str = "Test", last_name: str = "User", hourly_rate=None,
              vacation_days_balance: int = 22) -> User:
    user = User(
        tenant_id=tenant.id if tenant is not None else None,
        email=email or f"{role}.{os.urandom(4).hex()}@acme.com",
        password_hash=get_password_hash(PASSWORD),
        first_name=first_name,
        last_name=last_name,
        role=role,
        hourly_rate=hourly_rate,
        vacation_days_balance=vacation_days_balance,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_site(db: Session, tenant: Tenant, client_user: User = None, name: str = "Riverside Tower",
              billing_type: str = "hourly", rate="25.00", latitude: float = 40.4168,
              longitude: float = -3.7038, radius: int = 100) -> Site:
    client_row = Client(tenant_id=tenant.id, name=f"{name} Client", user_id=client_user.id if client_user else None)
    db.add(client_row)
    db.flush()
    site = Site(
        tenant_id=tenant.id,
        client_id=client_row.id,
        name=name,
        latitude=latitude,
        longitude=longitude,
        geofence_radius=radius,
        billing_type=billing_type,
        hourly_rate=Decimal(rate) if rate is not None else None,
    )
    db.add(site)
    db.commit()
    db.refresh(site)
    return site


def make_tool(db: Session, tenant: Tenant, name: str = "Hilti TE 30", qr_code: str = None) -> Tool:
    tool = Tool(tenant_id=tenant.id, name=name, category="drills", qr_code=qr_code, status="available")
    db.add(tool)
    db.commit()
    db.refresh(tool)
    return tool


def make_closed_record(db: Session, user: User, site: Site, check_in: datetime, hours: float,
                       status: str = "approved") -> TimeRecord:
    total = Decimal(str(hours)).quantize(Decimal("0.01"))
    overtime = max(Decimal("0"), total - Decimal("8")).quantize(Decimal("0.01"))
    record = TimeRecord(
        tenant_id=site.tenant_id,
        user_id=user.id,
        site_id=site.id,
        check_in_time=check_in,
        check_out_time=check_in + timedelta(hours=hours),
        total_hours=total,
        overtime_hours=overtime,
        status=status,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def assign(db: Session, site: Site, user: User) -> None:
    db.add(SiteAssignment(site_id=site.id, user_id=user.id))
    db.commit()


def token_for(db: Session, user: User) -> str:
    """Open a server-side session and return a bearer token bound to it."""
    session = open_session(db, user, "pytest")
    db.commit()
    return create_access_token(str(user.id), str(session.id), user.role)


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# =====================
# Common fixtures
# =====================


@pytest.fixture
def tenant(db: Session) -> Tenant:
    return make_tenant(db)


@pytest.fixture
def other_tenant(db: Session) -> Tenant:
    return make_tenant(db, name="Borealis Builders")


@pytest.fixture
def admin(db: Session, tenant: Tenant) -> User:
    return make_user(db, tenant, "admin", email="admin@acme.com", first_name="Ana", last_name="Admin")


@pytest.fixture
def manager(db: Session, tenant: Tenant) -> User:
    return make_user(db, tenant, "manager", email="manager@acme.com", first_name="Mario", last_name="Manager")


@pytest.fixture
def employee(db: Session, tenant: Tenant) -> User:
    return make_user(db, tenant, "employee", email="worker@acme.com", first_name="Eva", last_name="Worker",
                     hourly_rate=Decimal("20.00"))


@pytest.fixture
def client_user(db: Session, tenant: Tenant) -> User:
    return make_user(db, tenant, "client", email="portal@clientco.com", first_name="Carla", last_name="Client")


@pytest.fixture
def superadmin(db: Session) -> User:
    return make_user(db, None, "superadmin", email="root@constructtrack.io", first_name="Sam", last_name="Root")


@pytest.fixture
def site(db: Session, tenant: Tenant, client_user: User) -> Site:
    return make_site(db, tenant, client_user)
