"""Milestone progression engine for the 12-week visitor monitoring programme.

Milestones are plain dicts stored in the visitor's JSON column:

    {"week": 5, "completed": True, "notes": "", "protocol_member_notes": "...",
     "completed_date": "2026-03-01T10:00:00+00:00"}

Every function here is pure: it takes the current list and returns a new
one, leaving the input untouched.
"""

import math
from dataclasses import dataclass
from datetime import datetime

from church_platform.domain.enums import AttendanceStatus
from church_platform.domain.errors import InvalidInputError
from church_platform.services.rates import percent

TOTAL_WEEKS = 12

# Visits of this event type count towards the attendance-unlocked milestones
PRIMARY_SERVICE_EVENT = "Sunday Service"


@dataclass(frozen=True)
class MilestoneRule:
    week: int
    min_services: int
    description: str


# Fixed rule table: week -> present primary-service visits required
MILESTONE_RULES: tuple[MilestoneRule, ...] = (
    MilestoneRule(week=5, min_services=2, description="Attend Small Group"),
    MilestoneRule(week=7, min_services=4, description="Volunteer Opportunity"),
    MilestoneRule(week=9, min_services=6, description="Regular Check-ins"),
)


def _blank_milestone(week: int) -> dict:
    return {
        "week": week,
        "completed": False,
        "notes": "",
        "protocol_member_notes": "",
        "completed_date": None,
    }


def initial_milestones() -> list[dict]:
    """Return the 12 incomplete weekly milestones a joining visitor starts with."""
    return [_blank_milestone(week) for week in range(1, TOTAL_WEEKS + 1)]


def count_primary_service_attendance(visit_history: list[dict]) -> int:
    """Cumulative present visits to the primary service across the whole history."""
    return sum(
        1
        for visit in visit_history or []
        if visit.get("event_type") == PRIMARY_SERVICE_EVENT
        and visit.get("attendance_status") == AttendanceStatus.PRESENT.value
    )


def _index_by_week(milestones: list[dict]) -> dict[int, dict]:
    return {m["week"]: m for m in milestones}


def _sorted(by_week: dict[int, dict]) -> list[dict]:
    return [by_week[week] for week in sorted(by_week)]


def apply_attendance_milestones(
    milestones: list[dict],
    visit_history: list[dict],
    now: datetime,
) -> tuple[list[dict], list[int]]:
    """Auto-complete milestones whose attendance threshold has been reached.

    Only moves milestones from incomplete to complete; completed entries keep
    their date and notes. Running it again with the same history is a no-op.

    Returns:
        (new milestone list, weeks completed by this call)
    """
    attended = count_primary_service_attendance(visit_history)
    by_week = {week: dict(m) for week, m in _index_by_week(milestones or []).items()}
    newly_completed: list[int] = []

    for rule in MILESTONE_RULES:
        if attended < rule.min_services:
            continue
        milestone = by_week.setdefault(rule.week, _blank_milestone(rule.week))
        if milestone.get("completed"):
            continue
        milestone["completed"] = True
        milestone["completed_date"] = now.isoformat()
        milestone["protocol_member_notes"] = (
            f"Auto-completed: Attended {attended} Sunday services "
            f"(minimum required: {rule.min_services})"
        )
        newly_completed.append(rule.week)

    return _sorted(by_week), newly_completed


def validate_week(week) -> int:
    """Return week as an int in [1, 12] or raise InvalidInputError."""
    if isinstance(week, bool) or not isinstance(week, int):
        raise InvalidInputError("week", "Week must be a whole number between 1 and 12")
    if week < 1 or week > TOTAL_WEEKS:
        raise InvalidInputError("week", "Week must be between 1 and 12")
    return week


def set_milestone(
    milestones: list[dict],
    week: int,
    completed: bool,
    notes: str | None,
    now: datetime,
) -> list[dict]:
    """Manually set one week's completion flag with caretaker notes.

    Re-marking a completed week keeps its original completion date;
    marking it incomplete clears the date.
    """
    week = validate_week(week)
    by_week = {w: dict(m) for w, m in _index_by_week(milestones or []).items()}
    milestone = by_week.setdefault(week, _blank_milestone(week))

    milestone["completed"] = bool(completed)
    milestone["protocol_member_notes"] = notes or ""
    if completed and not milestone.get("completed_date"):
        milestone["completed_date"] = now.isoformat()
    elif not completed:
        milestone["completed_date"] = None

    return _sorted(by_week)


def completed_count(milestones: list[dict]) -> int:
    return sum(1 for m in milestones or [] if m.get("completed"))


def milestone_progress(milestones: list[dict]) -> int:
    """Percentage of the 12 programme weeks completed."""
    return percent(completed_count(milestones), TOTAL_WEEKS)


def find_milestone(milestones: list[dict], week: int) -> dict | None:
    return _index_by_week(milestones or []).get(week)


def current_week(start: datetime, now: datetime) -> int:
    """Programme week containing now, counting the start day as week 1."""
    elapsed_days = (now - start).total_seconds() / 86400
    return max(1, math.ceil(elapsed_days / 7))


def is_behind_schedule(milestones: list[dict], start: datetime | None, now: datetime) -> bool:
    """More than one week behind: current week exceeds completed weeks + 1."""
    if start is None:
        return False
    return current_week(start, now) > completed_count(milestones) + 1
