"""
Tests for tool checkout/checkin and the append-only transaction log.
"""
import pytest
from sqlalchemy import update

from constructtrack.errors import ConflictError
from constructtrack.models.models import Notification, Tool, ToolTransaction
from constructtrack.services import tools as tool_service

from conftest import TestSessionLocal, auth, make_tenant, make_tool, make_user, token_for


class TestToolMovements:
    def test_checkout_then_checkin(self, client, db, tenant, employee, site):
        tool = make_tool(db, tenant)
        headers = auth(token_for(db, employee))

        resp = client.post(f"/tools/{tool.id}/checkout",
                           json={"site_id": str(site.id), "condition": "good", "notes": "For the slab"},
                           headers=headers)
        assert resp.status_code == 200
        assert resp.json()["type"] == "checkout"
        db.refresh(tool)
        assert tool.status == "in_use"
        assert tool.current_user_id == employee.id
        assert tool.current_site_id == site.id

        resp = client.post(f"/tools/{tool.id}/checkin", json={"condition": "good"}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["site_id"] == str(site.id)
        db.refresh(tool)
        assert tool.status == "available"
        assert tool.current_user_id is None

        history = client.get(f"/tools/{tool.id}/transactions", headers=headers).json()
        assert [t["type"] for t in history] == ["checkin", "checkout"]

    def test_checkout_of_busy_tool_conflicts(self, client, db, tenant, employee):
        tool = make_tool(db, tenant)
        colleague = make_user(db, tenant, "employee", email="colleague@acme.com")
        assert client.post(f"/tools/{tool.id}/checkout", json={},
                           headers=auth(token_for(db, employee))).status_code == 200

        resp = client.post(f"/tools/{tool.id}/checkout", json={}, headers=auth(token_for(db, colleague)))
        assert resp.status_code == 409
        assert resp.json()["detail"] == "Tool is not available"
        db.refresh(tool)
        assert tool.current_user_id == employee.id
        assert db.query(ToolTransaction).filter(ToolTransaction.tool_id == tool.id).count() == 1

    def test_damaged_return_goes_to_maintenance(self, client, db, tenant, employee):
        tool = make_tool(db, tenant)
        headers = auth(token_for(db, employee))
        client.post(f"/tools/{tool.id}/checkout", json={}, headers=headers)
        resp = client.post(f"/tools/{tool.id}/checkin", json={"condition": "damaged", "notes": "Chuck broken"},
                           headers=headers)
        assert resp.json()["condition"] == "damaged"
        db.refresh(tool)
        assert tool.status == "maintenance"

        again = client.post(f"/tools/{tool.id}/checkout", json={}, headers=headers)
        assert again.status_code == 409

    def test_checkin_of_available_tool_conflicts(self, client, db, tenant, employee):
        tool = make_tool(db, tenant)
        resp = client.post(f"/tools/{tool.id}/checkin", json={}, headers=auth(token_for(db, employee)))
        assert resp.status_code == 409
        assert db.query(ToolTransaction).count() == 0

    def test_foreign_tool_is_forbidden(self, client, db, employee):
        other = make_tenant(db, name="Borealis Builders")
        tool = make_tool(db, other)
        resp = client.post(f"/tools/{tool.id}/checkout", json={}, headers=auth(token_for(db, employee)))
        assert resp.status_code == 403
        db.refresh(tool)
        assert tool.status == "available"

    def test_client_cannot_move_tools(self, client, db, tenant, client_user):
        tool = make_tool(db, tenant)
        resp = client.post(f"/tools/{tool.id}/checkout", json={}, headers=auth(token_for(db, client_user)))
        assert resp.status_code == 403

    def test_report_stolen_notifies_admins(self, client, db, tenant, admin, employee):
        tool = make_tool(db, tenant)
        resp = client.post(f"/tools/{tool.id}/incident", json={"type": "stolen", "notes": "Van broken into"},
                           headers=auth(token_for(db, employee)))
        assert resp.status_code == 200
        db.refresh(tool)
        assert tool.status == "stolen"
        unread = client.get("/notifications/unread-count", headers=auth(token_for(db, admin))).json()
        assert unread["count"] == 1


class TestToolInventory:
    def test_admin_creates_tool_and_finds_it_by_qr(self, client, db, admin, employee):
        resp = client.post("/tools", json={"name": "Laser level", "category": "survey", "qr_code": "QR-0001"},
                           headers=auth(token_for(db, admin)))
        assert resp.status_code == 201
        assert resp.json()["status"] == "available"

        found = client.get("/tools/qr/QR-0001", headers=auth(token_for(db, employee)))
        assert found.status_code == 200
        assert found.json()["name"] == "Laser level"

        dup = client.post("/tools", json={"name": "Other", "qr_code": "QR-0001"}, headers=auth(token_for(db, admin)))
        assert dup.status_code == 409

    def test_manager_cannot_create_tool(self, client, db, manager):
        resp = client.post("/tools", json={"name": "Grinder"}, headers=auth(token_for(db, manager)))
        assert resp.status_code == 403
        assert db.query(Tool).count() == 0


class TestConcurrentMoves:
    """Another writer changes the tool between the read and the conditional update."""

    @pytest.fixture
    def race(self, monkeypatch):
        def _arm(change):
            real_load = tool_service.load_scoped

            def _load_then_change(db, model, obj_id, tenant_id, label):
                obj = real_load(db, model, obj_id, tenant_id, label)
                if model is Tool:
                    other = TestSessionLocal()
                    try:
                        other.execute(update(Tool).where(Tool.id == obj_id).values(**change))
                        other.commit()
                    finally:
                        other.close()
                return obj

            monkeypatch.setattr(tool_service, "load_scoped", _load_then_change)

        return _arm

    def test_losing_checkout_conflicts_without_log_row(self, db, tenant, employee, race):
        tool = make_tool(db, tenant)
        colleague = make_user(db, tenant, "employee", email="colleague@acme.com")
        race({"status": "in_use", "current_user_id": colleague.id})

        with pytest.raises(ConflictError):
            tool_service.checkout_tool(db, employee, tenant.id, tool.id)

        db.refresh(tool)
        assert tool.status == "in_use"
        assert tool.current_user_id == colleague.id
        assert db.query(ToolTransaction).count() == 0

    def test_losing_checkin_conflicts_without_log_row(self, db, tenant, employee, race):
        tool = make_tool(db, tenant)
        tool.status = "in_use"
        tool.current_user_id = employee.id
        db.commit()
        race({"status": "available", "current_user_id": None})

        with pytest.raises(ConflictError):
            tool_service.checkin_tool(db, employee, tenant.id, tool.id)

        db.refresh(tool)
        assert tool.status == "available"
        assert db.query(ToolTransaction).count() == 0

    def test_incident_report_loses_to_checkout(self, db, tenant, employee, race):
        tool = make_tool(db, tenant)
        colleague = make_user(db, tenant, "employee", email="colleague@acme.com")
        race({"status": "in_use", "current_user_id": colleague.id})

        with pytest.raises(ConflictError):
            tool_service.report_incident(db, employee, tenant.id, tool.id, "stolen")

        db.refresh(tool)
        assert tool.status == "in_use"
        assert tool.current_user_id == colleague.id
        assert db.query(ToolTransaction).count() == 0
        assert db.query(Notification).count() == 0
