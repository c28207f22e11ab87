"""
Tests for in-app notifications, chat rooms and the live chat socket.
"""
import json
from datetime import datetime, timezone

import pytest
from starlette.websockets import WebSocketDisconnect

from constructtrack.models.models import ChatParticipant, ChatRoom, TimeRecord

from conftest import auth, make_closed_record, make_tool, make_user, token_for


def decide_leave(client, db, employee, manager, action="approve"):
    leave = client.post("/leave-requests",
                        json={"type": "vacation", "start_date": "2024-08-05", "end_date": "2024-08-06"},
                        headers=auth(token_for(db, employee))).json()
    client.patch(f"/leave-requests/{leave['id']}/{action}", headers=auth(token_for(db, manager)))
    return leave


class TestNotifications:
    def test_leave_decision_notifies_requester(self, client, db, employee, manager):
        decide_leave(client, db, employee, manager)
        headers = auth(token_for(db, employee))
        items = client.get("/notifications", headers=headers).json()
        assert [n["type"] for n in items] == ["leave_approved"]
        assert items[0]["is_read"] is False
        assert client.get("/notifications/unread-count", headers=headers).json() == {"count": 1}

    def test_mark_read_and_mark_all(self, client, db, employee, manager):
        decide_leave(client, db, employee, manager)
        decide_leave(client, db, employee, manager, action="reject")
        headers = auth(token_for(db, employee))
        first = client.get("/notifications", headers=headers).json()[0]

        resp = client.post(f"/notifications/{first['id']}/read", headers=headers)
        assert resp.json()["is_read"] is True
        assert resp.json()["read_at"] is not None
        assert client.get("/notifications", params={"unread_only": True}, headers=headers).json() != []

        resp = client.post("/notifications/mark-all-read", headers=headers)
        assert resp.json() == {"success": True, "updated_count": 1}
        assert client.get("/notifications/unread-count", headers=headers).json() == {"count": 0}

    def test_cannot_read_someone_elses_notification(self, client, db, employee, manager):
        decide_leave(client, db, employee, manager)
        note_id = client.get("/notifications", headers=auth(token_for(db, employee))).json()[0]["id"]
        resp = client.post(f"/notifications/{note_id}/read", headers=auth(token_for(db, manager)))
        assert resp.status_code == 404

    def test_muted_category_is_not_created(self, client, db, employee, manager):
        headers = auth(token_for(db, employee))
        prefs = client.get("/notifications/preferences", headers=headers).json()
        assert prefs["leave_alerts"] is True

        resp = client.put("/notifications/preferences", json={"leave_alerts": False}, headers=headers)
        assert resp.json()["leave_alerts"] is False
        decide_leave(client, db, employee, manager)
        assert client.get("/notifications/unread-count", headers=headers).json() == {"count": 0}


class TestChatRooms:
    @pytest.fixture
    def room(self, db, tenant, site, employee):
        room = ChatRoom(tenant_id=tenant.id, site_id=site.id, name=site.name, type="site")
        db.add(room)
        db.flush()
        db.add(ChatParticipant(room_id=room.id, user_id=employee.id))
        db.commit()
        db.refresh(room)
        return room

    def test_site_creation_opens_room_and_assignment_joins_it(self, client, db, admin, employee, site):
        headers = auth(token_for(db, admin))
        resp = client.post("/sites", json={"client_id": str(site.client_id), "name": "Harbour Works"},
                           headers=headers)
        new_site = resp.json()
        client.post(f"/sites/{new_site['id']}/assignments", json={"user_id": str(employee.id)}, headers=headers)

        rooms = client.get("/chat/rooms", headers=auth(token_for(db, employee))).json()
        assert [r["site_id"] for r in rooms] == [new_site["id"]]
        assert rooms[0]["name"] == "Harbour Works"

    def test_unread_count_follows_read_marker(self, client, db, manager, employee, room):
        resp = client.post(f"/chat/rooms/{room.id}/messages", json={"content": "Concrete arrives at 7"},
                           headers=auth(token_for(db, manager)))
        assert resp.status_code == 201

        headers = auth(token_for(db, employee))
        assert client.get("/chat/rooms", headers=headers).json()[0]["unread_count"] == 1
        assert client.post(f"/chat/rooms/{room.id}/read", headers=headers).json() == {"ok": True}
        assert client.get("/chat/rooms", headers=headers).json()[0]["unread_count"] == 0

        history = client.get(f"/chat/rooms/{room.id}/messages", headers=headers).json()
        assert [m["content"] for m in history] == ["Concrete arrives at 7"]

    def test_blank_message_is_rejected(self, client, db, employee, room):
        resp = client.post(f"/chat/rooms/{room.id}/messages", json={"content": "   "},
                           headers=auth(token_for(db, employee)))
        assert resp.status_code == 400

    def test_non_participant_is_forbidden(self, client, db, tenant, room):
        outsider = make_user(db, tenant, "employee", email="outsider@acme.com")
        resp = client.get(f"/chat/rooms/{room.id}/messages", headers=auth(token_for(db, outsider)))
        assert resp.status_code == 403

    def test_socket_receives_posted_message(self, client, db, manager, employee, room):
        with client.websocket_connect(f"/ws/chat?token={token_for(db, employee)}") as ws:
            ws.send_text("ping")
            assert ws.receive_text() == "pong"
            ws.send_text(json.dumps({"type": "join", "room_id": str(room.id)}))
            assert ws.receive_json() == {"event": "joined", "data": {"room_id": str(room.id)}}

            client.post(f"/chat/rooms/{room.id}/messages", json={"content": "Crane inspection at noon"},
                        headers=auth(token_for(db, manager)))
            event = ws.receive_json()
            assert event["event"] == "message_new"
            assert event["data"]["content"] == "Crane inspection at noon"
            assert event["data"]["sender_id"] == str(manager.id)

    def test_socket_rejects_bad_frames(self, client, db, employee, room):
        with client.websocket_connect(f"/ws/chat?token={token_for(db, employee)}") as ws:
            ws.send_text("not json")
            assert ws.receive_json()["event"] == "error"

    def test_socket_without_token_is_closed(self, client, db):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect("/ws/chat"):
                pass
        assert exc.value.code == 4401


class TestDashboard:
    def test_stats(self, client, db, tenant, manager, employee, site):
        make_closed_record(db, employee, site, datetime(2024, 3, 4, 8, 0, tzinfo=timezone.utc), 8, status="pending")
        db.add(TimeRecord(tenant_id=tenant.id, user_id=employee.id, site_id=site.id,
                          check_in_time=datetime.now(timezone.utc)))
        tool = make_tool(db, tenant)
        tool.status = "in_use"
        db.commit()
        client.post("/leave-requests", json={"type": "sick", "start_date": "2024-08-05", "end_date": "2024-08-05"},
                    headers=auth(token_for(db, employee)))

        stats = client.get("/dashboard/stats", headers=auth(token_for(db, manager))).json()
        assert stats["active_workers"] == 1
        assert stats["pending_approvals"] == 1
        assert stats["pending_leave_requests"] == 1
        assert stats["tools_out"] == 1
        assert stats["active_sites"] == 1
        assert stats["open_contestations"] == 0

    def test_employee_is_forbidden(self, client, db, employee):
        assert client.get("/dashboard/stats", headers=auth(token_for(db, employee))).status_code == 403
