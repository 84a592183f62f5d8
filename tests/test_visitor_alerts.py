"""Tests for caretaker alerts and monitoring deadline buckets."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from church_platform.domain.enums import AlertPriority, UserRole
from church_platform.domain.models import Visitor
from church_platform.services.access_policy import Caller
from church_platform.services.milestone_engine import initial_milestones
from church_platform.services.visitor_alerts import (
    build_visitor_alerts,
    deadline_report,
    highest_priority,
    monitoring_deadlines,
    summarize_alerts,
    visitor_alerts,
)

NOW = datetime(2026, 5, 1, 9, 0, tzinfo=timezone.utc)


def _visit(days_ago: int, status: str = "present") -> dict:
    return {
        "date": (NOW - timedelta(days=days_ago)).isoformat(),
        "event_type": "Sunday Service",
        "attendance_status": status,
        "notes": "",
    }


def _visitor(**kwargs):
    defaults = {
        "id": "v1",
        "name": "Visitor",
        "email": "v@example.com",
        "visit_history": [],
        "milestones": [],
        "monitoring_status": "active",
        "monitoring_start_date": None,
        "attendance_rate": 100,
    }
    defaults.update(kwargs)
    return SimpleNamespace(**defaults)


def _kinds(alerts):
    return [(a.kind, a.priority) for a in alerts]


class TestVisitorAlerts:
    def test_no_alerts_for_healthy_visitor(self):
        visitor = _visitor(visit_history=[_visit(14), _visit(7), _visit(0)])
        assert build_visitor_alerts(visitor, NOW) == []

    def test_no_visit_for_over_two_weeks(self):
        visitor = _visitor(visit_history=[_visit(15)])
        alerts = build_visitor_alerts(visitor, NOW)
        assert _kinds(alerts) == [("warning", AlertPriority.HIGH)]
        assert alerts[0].message == "No visits in 15 days"

    def test_fourteen_days_is_not_yet_an_alert(self):
        assert build_visitor_alerts(_visitor(visit_history=[_visit(14)]), NOW) == []

    def test_declining_pattern_over_last_four_visits(self):
        history = [_visit(21, "absent"), _visit(14, "absent"), _visit(7, "present"), _visit(0, "absent")]
        alerts = build_visitor_alerts(_visitor(visit_history=history, attendance_rate=60), NOW)
        assert ("critical", AlertPriority.URGENT) in _kinds(alerts)
        assert "only attended 1 of last 4" in alerts[0].message

    def test_declining_pattern_needs_four_recent_visits(self):
        history = [_visit(45, "absent"), _visit(14, "absent"), _visit(7, "absent"), _visit(0, "present")]
        kinds = _kinds(build_visitor_alerts(_visitor(visit_history=history, attendance_rate=60), NOW))
        assert ("critical", AlertPriority.URGENT) not in kinds

    def test_low_attendance_rate_needs_three_visits(self):
        two = _visitor(visit_history=[_visit(7, "absent"), _visit(0)], attendance_rate=40)
        three = _visitor(visit_history=[_visit(14), _visit(7, "absent"), _visit(0)], attendance_rate=40)
        assert build_visitor_alerts(two, NOW) == []
        assert _kinds(build_visitor_alerts(three, NOW)) == [("warning", AlertPriority.MEDIUM)]

    def test_slow_milestone_progress(self):
        visitor = _visitor(milestones=initial_milestones(), monitoring_start_date=NOW - timedelta(days=31))
        alerts = build_visitor_alerts(visitor, NOW)
        assert alerts[0].message == "Slow milestone progress: 0% after 31 days"

    def test_slow_progress_ignored_early_in_window(self):
        visitor = _visitor(milestones=initial_milestones(), monitoring_start_date=NOW - timedelta(days=30))
        assert build_visitor_alerts(visitor, NOW) == []

    def test_needs_attention_is_urgent(self):
        alerts = build_visitor_alerts(_visitor(monitoring_status="needs-attention"), NOW)
        assert _kinds(alerts) == [("critical", AlertPriority.URGENT)]

    def test_highest_priority(self):
        assert highest_priority([]) == AlertPriority.LOW
        alerts = build_visitor_alerts(_visitor(monitoring_status="needs-attention", visit_history=[_visit(20)]), NOW)
        assert highest_priority(alerts) == AlertPriority.URGENT


class TestSummarizeAlerts:
    def test_sorted_by_priority_with_counts(self):
        medium = _visitor(id="medium", milestones=initial_milestones(), monitoring_start_date=NOW - timedelta(days=40))
        urgent = _visitor(id="urgent", monitoring_status="needs-attention")
        high = _visitor(id="high", visit_history=[_visit(20)])
        quiet = _visitor(id="quiet")

        summary = summarize_alerts([medium, quiet, high, urgent], NOW)

        assert [entry["visitor_id"] for entry in summary["alerts"]] == ["urgent", "high", "medium"]
        assert summary["summary"] == {
            "total_alerts": 3,
            "urgent_alerts": 1,
            "high_priority_alerts": 1,
            "medium_priority_alerts": 1,
        }


def _monitored(days_remaining: int, visitor_id: str, status: str = "active") -> Visitor:
    end = NOW + timedelta(days=days_remaining)
    return Visitor(
        id=visitor_id,
        name=visitor_id,
        email=f"{visitor_id}@example.com",
        monitoring_status=status,
        monitoring_start_date=end - timedelta(days=90),
        monitoring_end_date=end,
        protocol_team_id="team-1",
        assigned_protocol_member_id="member-1",
    )


class TestMonitoringDeadlines:
    @pytest.mark.parametrize(
        "days,bucket",
        [(0, "critical"), (7, "critical"), (8, "urgent"), (14, "urgent"), (15, "warning"), (28, "warning"), (29, "normal")],
    )
    def test_bucket_boundaries(self, days, bucket):
        report = monitoring_deadlines([_monitored(days, "v")], NOW)
        assert report["summary"][f"{bucket}_count"] == 1

    def test_only_active_visitors_counted(self):
        visitors = [_monitored(3, "a"), _monitored(3, "b", status="needs-attention"), _monitored(3, "c", status="converted-to-member")]
        report = monitoring_deadlines(visitors, NOW)
        assert report["summary"]["total_active_visitors"] == 1

    def test_recommendations_and_team_alerts(self):
        visitors = [_monitored(2, "a"), _monitored(5, "b"), _monitored(20, "c"), _monitored(60, "d")]
        report = monitoring_deadlines(
            visitors, NOW, team_names={"team-1": "Welcome Team"}, member_names={"member-1": "Ada"},
        )

        assert [r["type"] for r in report["recommendations"]] == ["CRITICAL", "WARNING"]
        assert report["recommendations"][0]["description"] == (
            "2 visitors have less than 1 week remaining in their monitoring period"
        )
        team = report["team_alerts"][0]
        assert (team["team_name"], team["critical"], team["urgent"], team["warning"]) == ("Welcome Team", 2, 0, 1)
        assert report["visitor_details"]["normal"][0]["assigned_member"] == "Ada"

    def test_normal_bucket_display_is_limited(self):
        visitors = [_monitored(60, f"v{i}") for i in range(12)]
        report = monitoring_deadlines(visitors, NOW)
        assert report["summary"]["normal_count"] == 12
        assert len(report["visitor_details"]["normal"]) == 10


class TestAlertQueries:
    async def test_visitor_alerts_scoped_to_caretaker(self, db_session, make_team, make_user, make_visitor):
        team = await make_team()
        other = await make_team(name="Other")
        member = await make_user(team=team)
        await make_visitor(team, member, monitoring_status="needs-attention", name="Mine")
        await make_visitor(other, await make_user(team=other), monitoring_status="needs-attention", name="Theirs")

        result = await visitor_alerts(db_session, Caller(member.id, UserRole.PROTOCOL, team.id))

        assert [a["visitor_name"] for a in result["alerts"]] == ["Mine"]

    async def test_deadline_report_resolves_names(self, db_session, make_team, make_user, make_visitor):
        team = await make_team(name="Hospitality")
        member = await make_user(team=team, name="Grace")
        await make_visitor(team, member, started_days_ago=85)

        report = await deadline_report(db_session)

        assert report["summary"]["critical_count"] == 1
        row = report["visitor_details"]["critical"][0]
        assert (row["team_name"], row["assigned_member"]) == ("Hospitality", "Grace")
