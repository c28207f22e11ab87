"""
Tests for payroll generation and payroll status changes.
"""
from conftest import auth, make_closed_record, token_for, utc


def generate(client, token, user_id, start="2024-03-01", end="2024-03-31"):
    return client.post(
        "/payroll/generate",
        json={"user_id": str(user_id), "period_start": start, "period_end": end},
        headers=auth(token),
    )


class TestGenerate:
    def test_prices_approved_hours_and_counts_leave(self, client, db, admin, manager, employee, site):
        for day in range(4, 9):
            make_closed_record(db, employee, site, utc(2024, 3, day, 8, 0), 9)
        make_closed_record(db, employee, site, utc(2024, 3, 11, 8, 0), 8, status="pending")
        make_closed_record(db, employee, site, utc(2024, 4, 1, 8, 0), 8)

        leave = client.post("/leave-requests",
                            json={"type": "vacation", "start_date": "2024-03-18", "end_date": "2024-03-19"},
                            headers=auth(token_for(db, employee))).json()
        client.patch(f"/leave-requests/{leave['id']}/approve", headers=auth(token_for(db, manager)))

        resp = generate(client, token_for(db, admin), employee.id)
        assert resp.status_code == 201
        body = resp.json()
        assert body["regular_hours"] == 40.0
        assert body["overtime_hours"] == 5.0
        assert body["vacation_days"] == 2
        # 40h x 20 + 5h x 20 x 1.5
        assert body["total_amount"] == 950.0
        assert body["status"] == "pending"

    def test_worker_without_rate_is_priced_at_zero(self, client, db, admin, manager, site):
        make_closed_record(db, manager, site, utc(2024, 3, 5, 8, 0), 8)
        body = generate(client, token_for(db, admin), manager.id).json()
        assert body["regular_hours"] == 8.0
        assert body["total_amount"] == 0.0

    def test_reversed_period_is_rejected(self, client, db, admin, employee):
        resp = generate(client, token_for(db, admin), employee.id, start="2024-03-31", end="2024-03-01")
        assert resp.status_code == 400

    def test_manager_cannot_generate(self, client, db, manager, employee):
        assert generate(client, token_for(db, manager), employee.id).status_code == 403


class TestStatus:
    def test_pending_to_paid_stamps_paid_at(self, client, db, admin, employee):
        headers = auth(token_for(db, admin))
        record = generate(client, token_for(db, admin), employee.id).json()
        resp = client.patch(f"/payroll/{record['id']}", json={"status": "processing"}, headers=headers)
        assert resp.json()["paid_at"] is None
        resp = client.patch(f"/payroll/{record['id']}", json={"status": "paid"}, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["paid_at"] is not None

    def test_paid_is_final(self, client, db, admin, employee):
        headers = auth(token_for(db, admin))
        record = generate(client, token_for(db, admin), employee.id).json()
        client.patch(f"/payroll/{record['id']}", json={"status": "paid"}, headers=headers)
        resp = client.patch(f"/payroll/{record['id']}", json={"status": "pending"}, headers=headers)
        assert resp.status_code == 409

    def test_worker_sees_only_own_payroll(self, client, db, admin, manager, employee):
        generate(client, token_for(db, admin), employee.id)
        generate(client, token_for(db, admin), manager.id)
        mine = client.get("/payroll/my", headers=auth(token_for(db, employee))).json()
        assert [p["user_id"] for p in mine] == [str(employee.id)]
        assert client.get("/payroll", headers=auth(token_for(db, employee))).status_code == 403
        assert len(client.get("/payroll", headers=auth(token_for(db, manager))).json()) == 2
