"""
Tests for tenant resolution, superadmin impersonation and tenant isolation.
"""
from constructtrack.auth.security import open_session
from constructtrack.services.tenancy import build_context, get_effective_tenant_id

from conftest import auth, make_site, make_tenant, make_user, token_for


class TestEffectiveTenant:
    def test_regular_user_resolves_own_tenant(self, db, tenant, admin):
        session = open_session(db, admin)
        session.impersonated_tenant_id = make_tenant(db, name="Elsewhere Ltd").id
        # Only superadmins can impersonate; the field is ignored for everyone else
        assert get_effective_tenant_id(session, admin) == tenant.id

    def test_superadmin_without_impersonation_has_no_tenant(self, db, superadmin):
        ctx = build_context(superadmin, open_session(db, superadmin))
        assert ctx.tenant_id is None
        assert ctx.is_impersonating is False

    def test_sessions_resolve_independently(self, db, superadmin, tenant, other_tenant):
        first = open_session(db, superadmin)
        second = open_session(db, superadmin)
        first.impersonated_tenant_id = tenant.id
        second.impersonated_tenant_id = other_tenant.id
        assert build_context(superadmin, first).tenant_id == tenant.id
        assert build_context(superadmin, second).tenant_id == other_tenant.id


class TestImpersonationApi:
    def test_two_sessions_impersonate_different_tenants(self, client, db, superadmin, tenant, other_tenant):
        token_a = token_for(db, superadmin)
        token_b = token_for(db, superadmin)

        resp = client.post(f"/superadmin/impersonate/{tenant.id}", headers=auth(token_a))
        assert resp.status_code == 200
        assert resp.json() == {"impersonating": True, "tenant_id": str(tenant.id), "tenant_name": tenant.name}
        client.post(f"/superadmin/impersonate/{other_tenant.id}", headers=auth(token_b))

        me_a = client.get("/auth/me", headers=auth(token_a)).json()
        me_b = client.get("/auth/me", headers=auth(token_b)).json()
        assert me_a["effective_tenant_id"] == str(tenant.id)
        assert me_b["effective_tenant_id"] == str(other_tenant.id)

        assert client.get("/tenant", headers=auth(token_a)).json()["name"] == tenant.name
        assert client.get("/tenant", headers=auth(token_b)).json()["name"] == other_tenant.name

    def test_stop_impersonation(self, client, db, superadmin, tenant):
        token = token_for(db, superadmin)
        client.post(f"/superadmin/impersonate/{tenant.id}", headers=auth(token))
        resp = client.post("/superadmin/stop-impersonate", headers=auth(token))
        assert resp.json()["impersonating"] is False
        status = client.get("/superadmin/impersonation-status", headers=auth(token)).json()
        assert status["impersonating"] is False
        assert client.get("/tenant", headers=auth(token)).status_code == 400

    def test_superadmin_without_tenant_gets_validation_error(self, client, db, superadmin):
        resp = client.get("/tenant", headers=auth(token_for(db, superadmin)))
        assert resp.status_code == 400
        assert resp.json()["detail"] == "No tenant context"

    def test_impersonating_unknown_tenant(self, client, db, superadmin):
        resp = client.post("/superadmin/impersonate/00000000-0000-0000-0000-000000000000",
                           headers=auth(token_for(db, superadmin)))
        assert resp.status_code == 404

    def test_cannot_impersonate_cancelled_tenant(self, client, db, superadmin):
        gone = make_tenant(db, name="Defunct Works", status="cancelled")
        resp = client.post(f"/superadmin/impersonate/{gone.id}", headers=auth(token_for(db, superadmin)))
        assert resp.status_code == 400

    def test_admin_cannot_impersonate(self, client, db, admin, other_tenant):
        resp = client.post(f"/superadmin/impersonate/{other_tenant.id}", headers=auth(token_for(db, admin)))
        assert resp.status_code == 403

    def test_cancelling_tenant_ends_its_impersonations(self, client, db, superadmin, tenant):
        token_a = token_for(db, superadmin)
        token_b = token_for(db, superadmin)
        client.post(f"/superadmin/impersonate/{tenant.id}", headers=auth(token_a))

        resp = client.delete(f"/superadmin/tenants/{tenant.id}", headers=auth(token_b))
        assert resp.status_code == 200

        status = client.get("/superadmin/impersonation-status", headers=auth(token_a)).json()
        assert status["impersonating"] is False
        assert client.get("/tenant", headers=auth(token_a)).status_code == 400

    def test_logout_ends_impersonation(self, client, db, superadmin, tenant):
        token = token_for(db, superadmin)
        client.post(f"/superadmin/impersonate/{tenant.id}", headers=auth(token))
        assert client.post("/auth/logout", headers=auth(token)).status_code == 200
        assert client.get("/auth/me", headers=auth(token)).status_code == 401


class TestTenantIsolation:
    def test_sites_are_tenant_scoped(self, client, db, tenant, other_tenant, admin):
        make_site(db, tenant, name="Own Site")
        foreign = make_site(db, other_tenant, name="Foreign Site")
        headers = auth(token_for(db, admin))

        names = [s["name"] for s in client.get("/sites", headers=headers).json()]
        assert names == ["Own Site"]
        assert client.get(f"/sites/{foreign.id}", headers=headers).status_code == 403

    def test_users_are_tenant_scoped(self, client, db, admin, other_tenant):
        outsider = make_user(db, other_tenant, "employee", email="worker@borealis.com")
        headers = auth(token_for(db, admin))
        emails = [u["email"] for u in client.get("/users", headers=headers).json()]
        assert outsider.email not in emails
        resp = client.patch(f"/users/{outsider.id}", json={"first_name": "Hacked"}, headers=headers)
        assert resp.status_code == 403
        db.refresh(outsider)
        assert outsider.first_name == "Test"
