"""
Tests for registration, login, token refresh and session revocation.
"""
from conftest import PASSWORD, auth, make_tenant, make_user


def register(client, **overrides):
    payload = {
        "company_name": "Nimbus Reformas",
        "company_email": "hello@nimbus.es",
        "email": "Owner@Nimbus.es",
        "password": "S3cure-pass",
        "first_name": "Olga",
        "last_name": "Owner",
    }
    payload.update(overrides)
    return client.post("/auth/register", json=payload)


class TestRegister:
    def test_creates_company_and_admin(self, client, db):
        resp = register(client)
        assert resp.status_code == 201
        tokens = resp.json()
        assert tokens["token_type"] == "bearer"

        me = client.get("/auth/me", headers=auth(tokens["access_token"])).json()
        assert me["email"] == "owner@nimbus.es"
        assert me["role"] == "admin"
        assert me["effective_tenant_id"] == me["tenant_id"]
        assert "manage_payroll" in me["permissions"]
        assert "record_time" not in me["permissions"]
        assert me["impersonating"] is None

    def test_duplicate_company_conflicts(self, client, db):
        register(client)
        resp = register(client, email="someone@else.es")
        assert resp.status_code == 409

    def test_duplicate_email_conflicts(self, client, db):
        register(client)
        resp = register(client, company_name="Another Co", email="owner@nimbus.es")
        assert resp.status_code == 409
        assert resp.json()["detail"] == "Email already registered"


class TestLogin:
    def test_login_and_me(self, client, db, employee):
        resp = client.post("/auth/login", json={"email": "WORKER@acme.com", "password": PASSWORD})
        assert resp.status_code == 200
        me = client.get("/auth/me", headers=auth(resp.json()["access_token"])).json()
        assert me["id"] == str(employee.id)
        assert me["permissions"] == ["checkin_tools", "checkout_tools", "record_time", "request_leave"]

    def test_wrong_password(self, client, db, employee):
        resp = client.post("/auth/login", json={"email": employee.email, "password": "nope-nope"})
        assert resp.status_code == 401
        assert resp.json() == {"detail": "Invalid credentials", "code": "UNAUTHORIZED"}

    def test_inactive_user_cannot_login(self, client, db, tenant):
        user = make_user(db, tenant, "employee", email="gone@acme.com")
        user.is_active = False
        db.commit()
        resp = client.post("/auth/login", json={"email": "gone@acme.com", "password": PASSWORD})
        assert resp.status_code == 401

    def test_cancelled_company_cannot_login(self, client, db):
        closed = make_tenant(db, name="Closed Works", status="cancelled")
        make_user(db, closed, "admin", email="boss@closed.com")
        resp = client.post("/auth/login", json={"email": "boss@closed.com", "password": PASSWORD})
        assert resp.status_code == 401

    def test_missing_token(self, client, db):
        resp = client.get("/auth/me")
        assert resp.status_code == 401
        assert resp.json()["code"] == "UNAUTHORIZED"

    def test_garbage_token(self, client, db):
        assert client.get("/auth/me", headers=auth("not-a-jwt")).status_code == 401


class TestSessions:
    def test_refresh_issues_new_access_token(self, client, db, employee):
        tokens = client.post("/auth/login", json={"email": employee.email, "password": PASSWORD}).json()
        resp = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 200
        assert resp.json()["session_id"] == tokens["session_id"]
        assert client.get("/auth/me", headers=auth(resp.json()["access_token"])).status_code == 200

    def test_tokens_are_not_interchangeable(self, client, db, employee):
        tokens = client.post("/auth/login", json={"email": employee.email, "password": PASSWORD}).json()
        assert client.post("/auth/refresh", json={"refresh_token": tokens["access_token"]}).status_code == 401
        assert client.get("/auth/me", headers=auth(tokens["refresh_token"])).status_code == 401

    def test_logout_revokes_only_that_session(self, client, db, employee):
        first = client.post("/auth/login", json={"email": employee.email, "password": PASSWORD}).json()
        second = client.post("/auth/login", json={"email": employee.email, "password": PASSWORD}).json()

        assert client.post("/auth/logout", headers=auth(first["access_token"])).status_code == 200
        assert client.get("/auth/me", headers=auth(first["access_token"])).status_code == 401
        assert client.post("/auth/refresh", json={"refresh_token": first["refresh_token"]}).status_code == 401
        assert client.get("/auth/me", headers=auth(second["access_token"])).status_code == 200
