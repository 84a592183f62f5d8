"""HTTP tests for the protocol, bishop, visitor and auth routes."""

from datetime import datetime, timedelta, timezone

import pytest

from church_platform.services.auth_service import create_access_token, hash_password


def _visit(days_ago: int = 7, status: str = "present") -> dict:
    when = datetime.now(timezone.utc) - timedelta(days=days_ago)
    return {"date": when.isoformat(), "event_type": "Sunday Service", "attendance_status": status, "notes": ""}


def _auth(subject) -> dict:
    role = getattr(subject, "role", None) or "visitor"
    return {"Authorization": f"Bearer {create_access_token(subject.id, role)}"}


@pytest.fixture
async def team(make_team):
    return await make_team()


@pytest.fixture
async def caretaker(make_user, team):
    return await make_user(role="protocol", team=team, name="Caretaker")


@pytest.fixture
async def client(build_app_client):
    async with build_app_client() as c:
        yield c


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class TestAuth:
    async def test_member_signup_login_and_me(self, client):
        resp = await client.post("/api/auth/signup", json={
            "email": "Ada@Church.test", "password": "secret123", "name": "Ada",
        })
        assert resp.status_code == 200
        assert resp.json()["user"]["email"] == "ada@church.test"
        assert resp.json()["user"]["role"] == "member"

        resp = await client.post("/api/auth/login", json={"email": "ada@church.test", "password": "secret123"})
        assert resp.status_code == 200
        token = resp.json()["access_token"]

        resp = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.json()["protocol_team_id"] is None

    @pytest.mark.parametrize("role", ["bishop", "protocol", "leader", "visitor"])
    async def test_anonymous_signup_cannot_claim_role(self, client, role):
        resp = await client.post("/api/auth/signup", json={
            "email": "x@church.test", "password": "secret123", "name": "X", "role": role,
        })
        assert resp.status_code == 403

    async def test_anonymous_signup_cannot_join_team(self, client, make_visitor, team, caretaker):
        visitor = await make_visitor(team, caretaker)
        intruder = {"email": "intruder@church.test", "password": "secret123", "name": "Intruder"}
        resp = await client.post("/api/auth/signup", json={**intruder, "role": "protocol", "protocol_team_id": team.id})
        assert resp.status_code == 403
        resp = await client.post("/api/auth/signup", json={**intruder, "protocol_team_id": team.id})
        assert resp.status_code == 403
        resp = await client.post("/api/auth/login", json={"email": intruder["email"], "password": intruder["password"]})
        assert resp.status_code == 401

        resp = await client.post("/api/auth/signup", json=intruder)
        token = resp.json()["access_token"]
        resp = await client.post(
            "/api/protocol/visitors/attendance",
            headers={"Authorization": f"Bearer {token}"},
            json={"attendance_records": [{"visitor_id": visitor.id, "attendance_status": "present"}]},
        )
        assert resp.status_code == 403

    async def test_bishop_creates_protocol_member(self, client, make_user, team):
        bishop = await make_user(role="bishop")
        resp = await client.post("/api/auth/users", headers=_auth(bishop), json={
            "email": "p@church.test", "password": "secret123", "name": "P",
            "role": "protocol", "protocol_team_id": team.id,
        })
        assert resp.status_code == 201
        assert resp.json()["protocol_team_id"] == team.id

    async def test_only_bishop_creates_staff(self, client, caretaker, team):
        resp = await client.post("/api/auth/users", headers=_auth(caretaker), json={
            "email": "p@church.test", "password": "secret123", "name": "P",
            "role": "protocol", "protocol_team_id": team.id,
        })
        assert resp.status_code == 403
        resp = await client.post("/api/auth/users", json={
            "email": "p@church.test", "password": "secret123", "name": "P", "role": "bishop",
        })
        assert resp.status_code == 401

    async def test_wrong_password(self, client):
        resp = await client.post("/api/auth/login", json={"email": "nobody@church.test", "password": "x"})
        assert resp.status_code == 401

    async def test_missing_token(self, client):
        assert (await client.get("/api/protocol/visitors")).status_code == 401

    async def test_visitor_token_rejected_on_staff_routes(self, client, make_visitor, team, caretaker):
        visitor = await make_visitor(team, caretaker)
        resp = await client.get("/api/protocol/visitors", headers=_auth(visitor))
        assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Protocol visitor routes
# ---------------------------------------------------------------------------


class TestVisitorRoutes:
    async def test_register_and_list(self, client, caretaker):
        resp = await client.post("/api/protocol/visitors", headers=_auth(caretaker), json={
            "name": "Grace",
            "email": "grace@example.com",
            "visitor_type": "first-time",
            "status": "joining",
            "marital_status": "single",
            "emergency_contact": {"name": "Tom", "phone": "555"},
        })
        assert resp.status_code == 201
        body = resp.json()
        assert body["temporary_password"]
        assert body["visitor"]["monitoring_status"] == "active"
        assert body["visitor"]["days_remaining"] == 90
        assert len(body["visitor"]["milestones"]) == 12

        resp = await client.get("/api/protocol/visitors", headers=_auth(caretaker))
        assert resp.status_code == 200
        assert resp.json()["statistics"]["joining_visitors"] == 1

    async def test_duplicate_email_names_field(self, client, caretaker, make_visitor, team):
        await make_visitor(team, caretaker, email="dup@example.com")
        resp = await client.post("/api/protocol/visitors", headers=_auth(caretaker), json={
            "name": "Dup", "email": "dup@example.com", "visitor_type": "first-time", "status": "joining",
        })
        assert resp.status_code == 400
        assert resp.json()["detail"]["field"] == "email"

    async def test_bishop_cannot_register(self, client, make_user):
        bishop = await make_user(role="bishop")
        resp = await client.post("/api/protocol/visitors", headers=_auth(bishop), json={
            "name": "X", "email": "x@example.com", "visitor_type": "first-time", "status": "joining",
        })
        assert resp.status_code == 403

    async def test_record_single_attendance(self, client, caretaker, make_visitor, team):
        visitor = await make_visitor(team, caretaker, visit_history=[_visit()])

        resp = await client.post("/api/protocol/visitors/attendance", headers=_auth(caretaker), json={
            "visitor_id": visitor.id, "attendance_status": "present",
        })

        assert resp.status_code == 200
        body = resp.json()
        assert body["attendance_rate"] == 100
        assert body["completed_weeks"] == [5]
        assert len(body["visitor"]["visit_history"]) == 2

    async def test_unknown_visitor_is_404(self, client, caretaker):
        resp = await client.post("/api/protocol/visitors/attendance", headers=_auth(caretaker), json={
            "visitor_id": "nope", "attendance_status": "present",
        })
        assert resp.status_code == 404

    async def test_foreign_visitor_is_403(self, client, make_team, make_user, make_visitor, team, caretaker):
        other = await make_team(name="Other")
        visitor = await make_visitor(other, await make_user(team=other))
        resp = await client.post("/api/protocol/visitors/attendance", headers=_auth(caretaker), json={
            "visitor_id": visitor.id, "attendance_status": "present",
        })
        assert resp.status_code == 403

    async def test_bad_attendance_status_is_400(self, client, caretaker, make_visitor, team):
        visitor = await make_visitor(team, caretaker)
        resp = await client.post("/api/protocol/visitors/attendance", headers=_auth(caretaker), json={
            "visitor_id": visitor.id, "attendance_status": "late",
        })
        assert resp.status_code == 400
        assert resp.json()["detail"]["field"] == "attendance_status"

    async def test_batch_attendance(self, client, caretaker, make_visitor, team):
        first = await make_visitor(team, caretaker)
        third = await make_visitor(team, caretaker)

        resp = await client.post("/api/protocol/visitors/attendance", headers=_auth(caretaker), json={
            "attendance_records": [
                {"visitor_id": first.id, "attendance_status": "present"},
                {"visitor_id": "missing", "attendance_status": "present"},
                {"visitor_id": third.id, "attendance_status": "absent"},
            ],
        })

        assert resp.status_code == 200
        body = resp.json()
        assert body["total_marked"] == 2
        assert body["skipped"][0]["visitor_id"] == "missing"

    async def test_attendance_body_must_have_records(self, client, caretaker):
        resp = await client.post("/api/protocol/visitors/attendance", headers=_auth(caretaker), json={})
        assert resp.status_code == 422

    async def test_milestone_update(self, client, caretaker, make_visitor, team):
        visitor = await make_visitor(team, caretaker)
        resp = await client.put(
            f"/api/protocol/visitors/{visitor.id}/milestones",
            headers=_auth(caretaker),
            json={"week": 3, "completed": True, "notes": "Met the pastor"},
        )
        assert resp.status_code == 200
        assert resp.json()["completed_milestones"] == 1

    async def test_milestone_week_out_of_range(self, client, caretaker, make_visitor, team):
        visitor = await make_visitor(team, caretaker)
        resp = await client.put(
            f"/api/protocol/visitors/{visitor.id}/milestones",
            headers=_auth(caretaker),
            json={"week": 13, "completed": True},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["field"] == "week"

    async def test_checklist_update(self, client, caretaker, make_visitor, team):
        visitor = await make_visitor(team, caretaker)
        resp = await client.put(
            f"/api/protocol/visitors/{visitor.id}/integration",
            headers=_auth(caretaker),
            json={"checklist_item": "welcome_package", "completed": True},
        )
        assert resp.status_code == 200
        assert resp.json()["integration_progress"] == 17

    async def test_update_rejects_monitoring_fields(self, client, caretaker, make_visitor, team):
        visitor = await make_visitor(team, caretaker)
        resp = await client.put(
            f"/api/protocol/visitors/{visitor.id}",
            headers=_auth(caretaker),
            json={"monitoring_status": "completed"},
        )
        assert resp.status_code == 422

    async def test_convert_and_events(self, client, caretaker, make_visitor, team):
        visitor = await make_visitor(team, caretaker)
        resp = await client.post(f"/api/protocol/visitors/{visitor.id}/convert", headers=_auth(caretaker))
        assert resp.status_code == 200
        assert resp.json()["monitoring_status"] == "converted-to-member"

        resp = await client.get(f"/api/protocol/visitors/{visitor.id}/events", headers=_auth(caretaker))
        assert [e["event_type"] for e in resp.json()] == ["converted"]

    async def test_bishop_reads_visitor(self, client, make_user, make_visitor, team, caretaker):
        bishop = await make_user(role="bishop")
        visitor = await make_visitor(team, caretaker)
        resp = await client.get(f"/api/protocol/visitors/{visitor.id}", headers=_auth(bishop))
        assert resp.status_code == 200

    async def test_alerts(self, client, caretaker, make_visitor, team):
        await make_visitor(team, caretaker, monitoring_status="needs-attention")
        resp = await client.get("/api/protocol/visitors/alerts", headers=_auth(caretaker))
        assert resp.json()["summary"]["urgent_alerts"] == 1

    async def test_bishop_report(self, client, caretaker, make_visitor, team):
        await make_visitor(team, caretaker)
        resp = await client.post("/api/protocol/bishop-report?period=weekly", headers=_auth(caretaker))
        assert resp.status_code == 200
        body = resp.json()
        assert body["protocol_member_name"] == "Caretaker"
        assert body["metrics"]["total_visitors"] == 1

    async def test_bishop_report_bad_period(self, client, caretaker):
        resp = await client.post("/api/protocol/bishop-report?period=yearly", headers=_auth(caretaker))
        assert resp.status_code == 400
        assert resp.json()["detail"]["field"] == "period"


# ---------------------------------------------------------------------------
# Bishop routes
# ---------------------------------------------------------------------------


class TestBishopRoutes:
    async def test_create_team_moves_members(self, client, make_user):
        bishop = await make_user(role="bishop")
        member = await make_user(role="member", name="Joiner")

        resp = await client.post("/api/bishop/protocol-teams", headers=_auth(bishop), json={
            "name": "Greeters", "leader_id": member.id, "responsibilities": ["door"],
        })

        assert resp.status_code == 201
        assert resp.json()["leader_id"] == member.id
        assert member.role == "protocol"
        assert member.protocol_team_id == resp.json()["id"]

        resp = await client.get("/api/bishop/protocol-teams", headers=_auth(bishop))
        assert resp.json()[0]["member_count"] == 1

    async def test_leader_cannot_join_team(self, client, make_user):
        bishop = await make_user(role="bishop")
        leader = await make_user(role="leader")
        resp = await client.post("/api/bishop/protocol-teams", headers=_auth(bishop), json={
            "name": "Greeters", "member_ids": [leader.id],
        })
        assert resp.status_code == 400

    async def test_protocol_member_forbidden(self, client, caretaker):
        resp = await client.get("/api/bishop/protocol-teams/analytics", headers=_auth(caretaker))
        assert resp.status_code == 403

    async def test_team_performance(self, client, make_user, make_visitor, team, caretaker):
        bishop = await make_user(role="bishop")
        await make_visitor(team, caretaker)

        resp = await client.get(f"/api/bishop/protocol-teams/{team.id}/performance", headers=_auth(bishop))

        assert resp.status_code == 200
        assert resp.json()["statistics"]["total_visitors"] == 1

    async def test_unknown_team_performance(self, client, make_user):
        bishop = await make_user(role="bishop")
        resp = await client.get("/api/bishop/protocol-teams/nope/performance", headers=_auth(bishop))
        assert resp.status_code == 404

    async def test_analytics_and_deadlines(self, client, make_user, make_visitor, team, caretaker):
        bishop = await make_user(role="bishop")
        await make_visitor(team, caretaker, started_days_ago=70)

        analytics = await client.get("/api/bishop/protocol-teams/analytics", headers=_auth(bishop))
        alerts = await client.get("/api/bishop/protocol-teams/automated-alerts", headers=_auth(bishop))

        assert analytics.json()["church_stats"]["total_visitors"] == 1
        assert alerts.json()["summary"]["warning_count"] == 1


# ---------------------------------------------------------------------------
# Visitor portal
# ---------------------------------------------------------------------------


class TestVisitorPortal:
    async def test_login_with_temporary_password(self, client, caretaker, make_visitor, team):
        await make_visitor(
            team, caretaker, email="me@example.com", password_hash=hash_password("temp1234"), can_login=True,
        )
        resp = await client.post("/api/visitor/login", json={"email": "me@example.com", "password": "temp1234"})
        assert resp.status_code == 200
        assert resp.json()["name"] == "Test Visitor"

    async def test_login_disabled_without_can_login(self, client, caretaker, make_visitor, team):
        await make_visitor(
            team, caretaker, email="me@example.com", password_hash=hash_password("temp1234"), can_login=False,
        )
        resp = await client.post("/api/visitor/login", json={"email": "me@example.com", "password": "temp1234"})
        assert resp.status_code == 401

    async def test_dashboard_and_feedback(self, client, caretaker, make_visitor, team):
        visitor = await make_visitor(team, caretaker, visit_history=[_visit()])
        headers = _auth(visitor)

        resp = await client.post("/api/visitor/suggestion", headers=headers, json={"message": "More chairs", "category": "facility"})
        assert resp.status_code == 201
        resp = await client.post("/api/visitor/experience", headers=headers, json={"rating": 5, "message": "Lovely"})
        assert resp.status_code == 201

        resp = await client.get("/api/visitor/dashboard", headers=headers)
        body = resp.json()
        assert body["visitor"]["id"] == visitor.id
        assert body["statistics"]["average_rating"] == 5
        assert body["suggestions"][0]["category"] == "facility"

    async def test_rating_out_of_range_is_400(self, client, caretaker, make_visitor, team):
        visitor = await make_visitor(team, caretaker)
        resp = await client.post(
            "/api/visitor/experience", headers=_auth(visitor), json={"rating": 7, "message": "Too good"},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["field"] == "rating"

    async def test_staff_token_rejected(self, client, caretaker):
        resp = await client.get("/api/visitor/dashboard", headers=_auth(caretaker))
        assert resp.status_code == 401
