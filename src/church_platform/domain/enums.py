"""Domain enumerations for the church platform.

All enums use the (str, Enum) pattern to ensure JSON serialization compatibility.
"""

from enum import Enum


class UserRole(str, Enum):
    """Role of an authenticated caller."""

    BISHOP = "bishop"
    LEADER = "leader"
    MEMBER = "member"
    PROTOCOL = "protocol"
    VISITOR = "visitor"


# Roles that can hold a staff account (visitors log in with their own record)
STAFF_ROLES = {UserRole.BISHOP, UserRole.LEADER, UserRole.MEMBER, UserRole.PROTOCOL}


class VisitorStatus(str, Enum):
    """Whether a visitor is just visiting or intends to join."""

    VISITING = "visiting"
    JOINING = "joining"


class VisitorType(str, Enum):
    """How the visitor came to the church."""

    FIRST_TIME = "first-time"
    FROM_OTHER_ALTAR = "from-other-altar"
    RETURNING = "returning"


class MaritalStatus(str, Enum):
    SINGLE = "single"
    MARRIED = "married"
    DIVORCED = "divorced"
    WIDOWED = "widowed"


class MonitoringStatus(str, Enum):
    """Where a visitor stands in the 90-day monitoring programme."""

    INACTIVE = "inactive"
    ACTIVE = "active"
    NEEDS_ATTENTION = "needs-attention"
    COMPLETED = "completed"
    CONVERTED_TO_MEMBER = "converted-to-member"


class AttendanceStatus(str, Enum):
    """Outcome of a single visit record."""

    PRESENT = "present"
    ABSENT = "absent"


class ChecklistItem(str, Enum):
    """One-time onboarding tasks tracked alongside the weekly milestones."""

    WELCOME_PACKAGE = "welcome_package"
    HOME_VISIT = "home_visit"
    SMALL_GROUP_INTRO = "small_group_intro"
    MINISTRY_OPPORTUNITIES = "ministry_opportunities"
    MENTOR_ASSIGNED = "mentor_assigned"
    REGULAR_CHECK_INS = "regular_check_ins"


class SuggestionCategory(str, Enum):
    """Topic of a visitor suggestion."""

    SERVICE = "service"
    FACILITY = "facility"
    COMMUNITY = "community"
    SPIRITUAL = "spiritual"
    OTHER = "other"


class VisitorEventType(str, Enum):
    """Type of event in the visitor audit trail."""

    REGISTERED = "registered"
    ATTENDANCE_RECORDED = "attendance_recorded"
    MILESTONE_COMPLETED = "milestone_completed"
    MILESTONE_REOPENED = "milestone_reopened"
    CHECKLIST_UPDATED = "checklist_updated"
    STATUS_CHANGED = "status_changed"
    CONVERTED = "converted"
    FEEDBACK_RECEIVED = "feedback_received"
    DETAILS_UPDATED = "details_updated"


class AlertPriority(str, Enum):
    """Urgency of a caretaker alert, lowest to highest."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ReportPeriod(str, Enum):
    """Look-back window for a protocol team report."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"


class TrendDirection(str, Enum):
    GROWING = "growing"
    STABLE = "stable"
    DECLINING = "declining"
