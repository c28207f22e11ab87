"""
Tests for user management within a tenant.
"""
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from constructtrack.db import Base
from constructtrack.models.models import TimeRecord, ToolTransaction, User

from conftest import auth, make_closed_record, make_site, make_tenant, make_tool, make_user, token_for, utc


def new_user(role="employee", email="new.hire@acme.com"):
    return {
        "email": email,
        "password": "Welcome2024!",
        "first_name": "Nora",
        "last_name": "Hire",
        "role": role,
    }


class TestCreateUser:
    def test_manager_creates_employee(self, client, db, manager):
        resp = client.post("/users", json=new_user(), headers=auth(token_for(db, manager)))
        assert resp.status_code == 201
        body = resp.json()
        assert body["role"] == "employee"
        assert body["tenant_id"] == str(manager.tenant_id)
        assert body["vacation_days_balance"] == 22
        assert "password_hash" not in body

    def test_email_is_unique_and_case_insensitive(self, client, db, admin):
        headers = auth(token_for(db, admin))
        client.post("/users", json=new_user(), headers=headers)
        resp = client.post("/users", json=new_user(email="New.Hire@ACME.com"), headers=headers)
        assert resp.status_code == 409

    def test_manager_cannot_hand_out_admin(self, client, db, manager):
        resp = client.post("/users", json=new_user(role="admin"), headers=auth(token_for(db, manager)))
        assert resp.status_code == 403
        assert resp.json()["detail"] == "Cannot assign role admin"

    def test_superadmin_is_never_assignable(self, client, db, admin):
        resp = client.post("/users", json=new_user(role="superadmin"), headers=auth(token_for(db, admin)))
        assert resp.status_code == 403
        assert db.query(User).filter(User.email == "new.hire@acme.com").count() == 0

    def test_short_password_is_rejected(self, client, db, admin):
        payload = new_user()
        payload["password"] = "short"
        resp = client.post("/users", json=payload, headers=auth(token_for(db, admin)))
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION"

    def test_employee_cannot_create_users(self, client, db, employee):
        resp = client.post("/users", json=new_user(), headers=auth(token_for(db, employee)))
        assert resp.status_code == 403


class TestUpdateUser:
    def test_last_admin_cannot_be_demoted(self, client, db, admin):
        resp = client.patch(f"/users/{admin.id}", json={"role": "manager"}, headers=auth(token_for(db, admin)))
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Cannot remove the last admin"
        db.refresh(admin)
        assert admin.role == "admin"

    def test_last_admin_cannot_be_deactivated(self, client, db, admin):
        resp = client.patch(f"/users/{admin.id}", json={"is_active": False}, headers=auth(token_for(db, admin)))
        assert resp.status_code == 400

    def test_admin_can_be_demoted_when_another_remains(self, client, db, tenant, admin):
        second = make_user(db, tenant, "admin", email="second.admin@acme.com")
        resp = client.patch(f"/users/{second.id}", json={"role": "manager"}, headers=auth(token_for(db, admin)))
        assert resp.status_code == 200
        assert resp.json()["role"] == "manager"

    def test_manager_cannot_modify_admin(self, client, db, admin, manager):
        resp = client.patch(f"/users/{admin.id}", json={"first_name": "Changed"},
                            headers=auth(token_for(db, manager)))
        assert resp.status_code == 403

    def test_manager_updates_hourly_rate(self, client, db, manager, employee):
        resp = client.patch(f"/users/{employee.id}", json={"hourly_rate": 23.5},
                            headers=auth(token_for(db, manager)))
        assert resp.status_code == 200
        assert resp.json()["hourly_rate"] == 23.5


class TestReadAndDelete:
    def test_employee_reads_only_self(self, client, db, employee, manager):
        headers = auth(token_for(db, employee))
        assert client.get(f"/users/{employee.id}", headers=headers).status_code == 200
        assert client.get(f"/users/{manager.id}", headers=headers).status_code == 403

    def test_list_filters_by_role(self, client, db, admin, manager, employee):
        resp = client.get("/users", params={"role": "employee"}, headers=auth(token_for(db, admin)))
        assert [u["email"] for u in resp.json()] == [employee.email]

    def test_last_admin_cannot_be_deleted(self, client, db, admin):
        resp = client.delete(f"/users/{admin.id}", headers=auth(token_for(db, admin)))
        assert resp.status_code == 400

    def test_only_admin_deletes(self, client, db, admin, manager, employee):
        email = employee.email
        assert client.delete(f"/users/{employee.id}", headers=auth(token_for(db, manager))).status_code == 403
        assert client.delete(f"/users/{employee.id}", headers=auth(token_for(db, admin))).status_code == 200
        assert db.query(User).filter(User.email == email).count() == 0

    def test_user_with_time_records_cannot_be_deleted(self, client, db, admin, employee, site):
        record = make_closed_record(db, employee, site, utc(2024, 3, 4, 8), 8)
        resp = client.delete(f"/users/{employee.id}", headers=auth(token_for(db, admin)))
        assert resp.status_code == 409
        assert resp.json()["code"] == "CONFLICT"
        assert db.query(TimeRecord).filter(TimeRecord.id == record.id).count() == 1
        assert db.query(User).filter(User.id == employee.id).count() == 1

    def test_user_with_tool_movements_cannot_be_deleted(self, client, db, tenant, admin, employee):
        tool = make_tool(db, tenant)
        db.add(ToolTransaction(tenant_id=tenant.id, tool_id=tool.id, user_id=employee.id, type="checkout"))
        db.commit()
        resp = client.delete(f"/users/{employee.id}", headers=auth(token_for(db, admin)))
        assert resp.status_code == 409
        assert db.query(ToolTransaction).count() == 1


@pytest.fixture
def strict_db():
    """Separate database with SQLite foreign key enforcement switched on."""
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        dbapi_connection.execute("PRAGMA foreign_keys=ON")

    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


class TestHistoryForeignKeys:
    def test_database_refuses_to_drop_tool_log(self, strict_db):
        tenant = make_tenant(strict_db)
        worker = make_user(strict_db, tenant, "employee", email="worker@acme.com")
        tool = make_tool(strict_db, tenant)
        strict_db.add(ToolTransaction(tenant_id=tenant.id, tool_id=tool.id, user_id=worker.id, type="checkout"))
        strict_db.commit()

        strict_db.delete(worker)
        with pytest.raises(IntegrityError):
            strict_db.commit()
        strict_db.rollback()
        assert strict_db.query(ToolTransaction).count() == 1

    def test_database_refuses_to_drop_time_records(self, strict_db):
        tenant = make_tenant(strict_db)
        worker = make_user(strict_db, tenant, "employee", email="worker@acme.com")
        site = make_site(strict_db, tenant)
        make_closed_record(strict_db, worker, site, utc(2024, 3, 4, 8), 8)

        strict_db.delete(worker)
        with pytest.raises(IntegrityError):
            strict_db.commit()
        strict_db.rollback()
        assert strict_db.query(TimeRecord).count() == 1
