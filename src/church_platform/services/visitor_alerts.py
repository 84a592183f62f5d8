"""Caretaker alerts and monitoring-deadline buckets.

`build_visitor_alerts` inspects one visitor's attendance pattern, milestone
pace and monitoring status. `monitoring_deadlines` groups active visitors by
how close their 90-day window is to closing, for the bishop's view.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from church_platform.domain.enums import AlertPriority, AttendanceStatus, MonitoringStatus
from church_platform.domain.models import ProtocolTeam, User, Visitor, as_utc, from_iso
from church_platform.services.access_policy import Caller
from church_platform.services.milestone_engine import milestone_progress
from church_platform.services.visitor_store import VisitorFilter, query_visitors

logger = logging.getLogger(__name__)

PRIORITY_ORDER = {
    AlertPriority.LOW: 0,
    AlertPriority.MEDIUM: 1,
    AlertPriority.HIGH: 2,
    AlertPriority.URGENT: 3,
}

NO_VISIT_DAYS = 14
RECENT_WINDOW_DAYS = 30
RECENT_VISITS_CHECKED = 4
LOW_ATTENDANCE_RATE = 50
LOW_ATTENDANCE_MIN_VISITS = 3
SLOW_MILESTONE_PROGRESS = 25
SLOW_MILESTONE_AFTER_DAYS = 30

# Deadline buckets: (name, days remaining at most)
DEADLINE_BUCKETS = (("critical", 7), ("urgent", 14), ("warning", 28))
DEADLINE_ADVICE = {
    "critical": (
        "Immediate Action Required",
        "{count} visitors have less than 1 week remaining in their monitoring period",
        "Schedule conversion meetings immediately",
    ),
    "urgent": (
        "Action Needed Soon",
        "{count} visitors have 1-2 weeks remaining in their monitoring period",
        "Begin conversion preparation and discussions",
    ),
    "warning": (
        "Prepare for Conversion Discussions",
        "{count} visitors have 2-4 weeks remaining in their monitoring period",
        "Start preparing conversion materials and meetings",
    ),
}
NORMAL_DISPLAY_LIMIT = 10


@dataclass(frozen=True)
class Alert:
    kind: str
    message: str
    priority: AlertPriority
    action: str

    def as_dict(self) -> dict:
        return {
            "type": self.kind,
            "message": self.message,
            "priority": self.priority.value,
            "action": self.action,
        }


def _dated_visits(visit_history: list[dict]) -> list[tuple[datetime, dict]]:
    visits = [(from_iso(v.get("date")), v) for v in visit_history or []]
    return sorted([(d, v) for d, v in visits if d is not None], key=lambda pair: pair[0], reverse=True)


def build_visitor_alerts(visitor: Visitor, now: datetime | None = None) -> list[Alert]:
    """Every alert condition that currently holds for visitor."""
    now = now or datetime.now(timezone.utc)
    alerts: list[Alert] = []
    visits = _dated_visits(visitor.visit_history)

    if visits:
        days_since = (now - visits[0][0]).days
        if days_since > NO_VISIT_DAYS:
            alerts.append(Alert(
                "warning", f"No visits in {days_since} days", AlertPriority.HIGH, "Follow up with visitor",
            ))

        cutoff = now - timedelta(days=RECENT_WINDOW_DAYS)
        recent = [v for d, v in visits if d >= cutoff][:RECENT_VISITS_CHECKED]
        if len(recent) == RECENT_VISITS_CHECKED:
            present = sum(1 for v in recent if v.get("attendance_status") == AttendanceStatus.PRESENT.value)
            if present <= 1:
                alerts.append(Alert(
                    "critical",
                    f"Declining attendance pattern - only attended {present} of last {RECENT_VISITS_CHECKED} services",
                    AlertPriority.URGENT,
                    "Schedule immediate follow-up",
                ))

        rate = visitor.attendance_rate or 0
        if rate < LOW_ATTENDANCE_RATE and len(visits) >= LOW_ATTENDANCE_MIN_VISITS:
            alerts.append(Alert(
                "warning", f"Low attendance rate: {rate}%", AlertPriority.MEDIUM, "Review visitor engagement strategy",
            ))

    started = as_utc(visitor.monitoring_start_date)
    if visitor.milestones and visitor.monitoring_status == MonitoringStatus.ACTIVE.value and started:
        progress = milestone_progress(visitor.milestones)
        days_in = (now - started).days
        if progress < SLOW_MILESTONE_PROGRESS and days_in > SLOW_MILESTONE_AFTER_DAYS:
            alerts.append(Alert(
                "warning",
                f"Slow milestone progress: {progress}% after {days_in} days",
                AlertPriority.MEDIUM,
                "Increase milestone support",
            ))

    if visitor.monitoring_status == MonitoringStatus.NEEDS_ATTENTION.value:
        alerts.append(Alert(
            "critical", "Visitor flagged for attention", AlertPriority.URGENT, "Immediate intervention required",
        ))

    return alerts


def highest_priority(alerts: list[Alert]) -> AlertPriority:
    return max((a.priority for a in alerts), key=PRIORITY_ORDER.__getitem__, default=AlertPriority.LOW)


def summarize_alerts(visitors: list[Visitor], now: datetime | None = None) -> dict:
    """Alerted visitors, highest priority first, with per-priority counts."""
    entries = []
    for visitor in visitors:
        alerts = build_visitor_alerts(visitor, now)
        if alerts:
            entries.append((visitor, alerts))
    entries.sort(key=lambda pair: PRIORITY_ORDER[highest_priority(pair[1])], reverse=True)

    def count(priority: AlertPriority) -> int:
        return sum(1 for _, alerts in entries if any(a.priority == priority for a in alerts))

    return {
        "alerts": [
            {
                "visitor_id": visitor.id,
                "visitor_name": visitor.name,
                "visitor_email": visitor.email,
                "monitoring_status": visitor.monitoring_status,
                "attendance_rate": visitor.attendance_rate or 0,
                "alerts": [a.as_dict() for a in alerts],
            }
            for visitor, alerts in entries
        ],
        "summary": {
            "total_alerts": len(entries),
            "urgent_alerts": count(AlertPriority.URGENT),
            "high_priority_alerts": count(AlertPriority.HIGH),
            "medium_priority_alerts": count(AlertPriority.MEDIUM),
        },
    }


async def visitor_alerts(db: AsyncSession, caller: Caller, now: datetime | None = None) -> dict:
    """Alerts for the visitors a protocol member looks after."""
    visitors = await query_visitors(
        db, VisitorFilter(team_id=caller.protocol_team_id, assigned_member_id=caller.id)
    )
    return summarize_alerts(visitors, now)


def _bucket_for(days_remaining: int) -> str:
    for name, limit in DEADLINE_BUCKETS:
        if days_remaining <= limit:
            return name
    return "normal"


def monitoring_deadlines(
    visitors: list[Visitor],
    now: datetime | None = None,
    team_names: dict[str, str] | None = None,
    member_names: dict[str, str] | None = None,
) -> dict:
    """Bucket active visitors by days left in monitoring and attach recommendations."""
    now = now or datetime.now(timezone.utc)
    team_names = team_names or {}
    member_names = member_names or {}
    buckets: dict[str, list[dict]] = {"critical": [], "urgent": [], "warning": [], "normal": []}
    team_alerts: dict[str, dict] = {}

    active = [v for v in visitors if v.monitoring_status == MonitoringStatus.ACTIVE.value]
    for visitor in active:
        days = visitor.remaining_days(now)
        if days is None:
            continue
        bucket = _bucket_for(days)
        team_name = team_names.get(visitor.protocol_team_id, "Unknown Team")
        row = {
            "visitor_id": visitor.id,
            "name": visitor.name,
            "email": visitor.email,
            "phone": visitor.phone,
            "days_remaining": days,
            "team_name": team_name,
            "assigned_member": member_names.get(visitor.assigned_protocol_member_id, "Unassigned"),
            "start_date": as_utc(visitor.monitoring_start_date),
            "end_date": as_utc(visitor.monitoring_end_date),
        }
        buckets[bucket].append(row)

        if bucket != "normal":
            team = team_alerts.setdefault(
                team_name,
                {"team_name": team_name, "critical": 0, "urgent": 0, "warning": 0, "visitors": []},
            )
            team[bucket] += 1
            team["visitors"].append(row)

    recommendations = []
    for name, _ in DEADLINE_BUCKETS:
        if not buckets[name]:
            continue
        title, description, action = DEADLINE_ADVICE[name]
        recommendations.append({
            "type": name.upper(),
            "title": title,
            "description": description.format(count=len(buckets[name])),
            "action": action,
            "visitors": buckets[name],
        })

    return {
        "summary": {
            "total_active_visitors": len(active),
            "critical_count": len(buckets["critical"]),
            "urgent_count": len(buckets["urgent"]),
            "warning_count": len(buckets["warning"]),
            "normal_count": len(buckets["normal"]),
        },
        "recommendations": recommendations,
        "team_alerts": list(team_alerts.values()),
        "visitor_details": {
            "critical": buckets["critical"],
            "urgent": buckets["urgent"],
            "warning": buckets["warning"],
            "normal": buckets["normal"][:NORMAL_DISPLAY_LIMIT],
        },
    }


async def deadline_report(db: AsyncSession, now: datetime | None = None) -> dict:
    """Church-wide deadline buckets with team and caretaker names resolved."""
    visitors = await query_visitors(
        db, VisitorFilter(monitoring_status=MonitoringStatus.ACTIVE.value)
    )
    teams = (await db.execute(select(ProtocolTeam.id, ProtocolTeam.name))).all()
    members = (await db.execute(select(User.id, User.name))).all()
    report = monitoring_deadlines(
        visitors,
        now,
        team_names={team_id: name for team_id, name in teams},
        member_names={user_id: name for user_id, name in members},
    )
    logger.info(
        "Deadline report: %d critical, %d urgent, %d warning",
        report["summary"]["critical_count"],
        report["summary"]["urgent_count"],
        report["summary"]["warning_count"],
    )
    return report
