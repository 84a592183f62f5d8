"""Monitoring status calculator: composite progress and status transitions.

Composite progress weights milestone completion 50%, attendance 30% and the
integration checklist 20%. The resulting score, together with the raw
attendance rate, decides whether a visitor under monitoring completes the
programme, gets flagged for follow-up, or recovers from a flag.
"""

from dataclasses import dataclass

from church_platform.domain.enums import AttendanceStatus, ChecklistItem, MonitoringStatus
from church_platform.services.milestone_engine import milestone_progress
from church_platform.services.rates import percent, round_half_up

M = MonitoringStatus

# Weights in percent of the overall score
MILESTONE_WEIGHT = 50
ATTENDANCE_WEIGHT = 30
INTEGRATION_WEIGHT = 20

# Active visitors below this attendance rate are flagged for follow-up
NEEDS_ATTENTION_BELOW = 30
# Flagged visitors at or above this rate return to active
RECOVERY_AT = 50
COMPLETION_SCORE = 100

# Reachable only through an explicit action, never through recalculation
TERMINAL_STATES: set[MonitoringStatus] = {M.CONVERTED_TO_MEMBER}

CHECKLIST_ITEMS: tuple[str, ...] = tuple(item.value for item in ChecklistItem)


@dataclass(frozen=True)
class MonitoringSnapshot:
    """Result of one recalculation over a visitor's current state."""

    attendance_rate: int
    milestone_progress: int
    integration_progress: int
    overall: float
    status: MonitoringStatus

    @property
    def monitoring_progress(self) -> int:
        return round_half_up(self.overall)


def attendance_rate(visit_history: list[dict]) -> int:
    """Percent of recorded visits marked present; 0 with no visits."""
    history = visit_history or []
    present = sum(
        1 for visit in history
        if visit.get("attendance_status") == AttendanceStatus.PRESENT.value
    )
    return percent(present, len(history))


def initial_checklist() -> dict[str, bool]:
    return {item: False for item in CHECKLIST_ITEMS}


def integration_progress(checklist: dict | None) -> int:
    """Percent of the six onboarding tasks done."""
    checklist = checklist or {}
    done = sum(1 for item in CHECKLIST_ITEMS if checklist.get(item))
    return percent(done, len(CHECKLIST_ITEMS))


def composite_progress(
    milestone_pct: float,
    attendance_pct: float,
    integration_pct: float,
) -> float:
    """Weighted overall score, clamped to [0, 100]."""
    overall = (
        MILESTONE_WEIGHT * milestone_pct
        + ATTENDANCE_WEIGHT * min(attendance_pct, 100)
        + INTEGRATION_WEIGHT * integration_pct
    ) / 100
    return max(0.0, min(100.0, overall))


def next_monitoring_status(
    current: MonitoringStatus,
    overall: float,
    attendance_pct: float,
) -> MonitoringStatus:
    """Apply the transition rules in order; the first match wins.

    1. active with a full score -> completed
    2. active with attendance below 30% -> needs-attention
    3. needs-attention with attendance at or above 50% -> active
    4. otherwise unchanged (inactive, completed and converted never move here)
    """
    current = MonitoringStatus(current)
    if current in TERMINAL_STATES:
        return current
    if overall >= COMPLETION_SCORE and current == M.ACTIVE:
        return M.COMPLETED
    if attendance_pct < NEEDS_ATTENTION_BELOW and current == M.ACTIVE:
        return M.NEEDS_ATTENTION
    if current == M.NEEDS_ATTENTION and attendance_pct >= RECOVERY_AT:
        return M.ACTIVE
    return current


def evaluate(
    visit_history: list[dict],
    milestones: list[dict],
    checklist: dict | None,
    current_status: MonitoringStatus,
) -> MonitoringSnapshot:
    """Recompute every derived monitoring field from the visitor's state."""
    attendance_pct = attendance_rate(visit_history)
    milestone_pct = milestone_progress(milestones)
    integration_pct = integration_progress(checklist)
    overall = composite_progress(milestone_pct, attendance_pct, integration_pct)
    status = next_monitoring_status(current_status, overall, attendance_pct)
    return MonitoringSnapshot(
        attendance_rate=attendance_pct,
        milestone_progress=milestone_pct,
        integration_progress=integration_pct,
        overall=overall,
        status=status,
    )
