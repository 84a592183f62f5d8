"""SQLAlchemy ORM models for the church platform.

All models use SQLite-compatible types:
- String(36) for UUID primary keys
- JSON for nested visitor collections (visit history, milestones, feedback)
- DateTime for timestamps (stored naive, interpreted as UTC)

A Visitor row is the aggregate root: its nested collections live in JSON
columns and are always replaced wholesale, never mutated in place.
"""

import math
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.sql import func

from church_platform.infra.database import Base


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def from_iso(value: str | datetime | None) -> datetime | None:
    """Parse an ISO timestamp stored inside a JSON column, as UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return as_utc(datetime.fromisoformat(value))


# ---------------------------------------------------------------------------
# Staff
# ---------------------------------------------------------------------------


class User(Base):
    """Staff account: bishop, group leader, member or protocol team member."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    role = Column(String(20), nullable=False, default="member")  # UserRole
    protocol_team_id = Column(String(36), ForeignKey("protocol_teams.id"), nullable=True, index=True)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())
    last_login_at = Column(DateTime, nullable=True)


class ProtocolTeam(Base):
    """Visitor-care team. Members are the users whose protocol_team_id points here."""

    __tablename__ = "protocol_teams"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    # Weak references: a team may outlive its leader's account
    leader_id = Column(String(36), nullable=True, index=True)
    created_by = Column(String(36), nullable=True)
    responsibilities = Column(JSON, default=lambda: [])
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())


# ---------------------------------------------------------------------------
# Visitors
# ---------------------------------------------------------------------------


class Visitor(Base):
    """A visitor or prospect tracked by a protocol team."""

    __tablename__ = "visitors"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    phone = Column(String(50), nullable=True)
    address = Column(String(500), nullable=True)
    age = Column(Integer, nullable=True)
    occupation = Column(String(255), nullable=True)
    marital_status = Column(String(20), nullable=True)  # MaritalStatus

    # Classification
    visitor_type = Column(String(30), nullable=False)  # VisitorType
    status = Column(String(20), nullable=False, index=True)  # VisitorStatus

    # Monitoring window (joining visitors only)
    monitoring_start_date = Column(DateTime, nullable=True)
    monitoring_end_date = Column(DateTime, nullable=True, index=True)
    monitoring_status = Column(String(30), nullable=False, default="inactive", index=True)  # MonitoringStatus
    converted_at = Column(DateTime, nullable=True)

    # Assignment
    protocol_team_id = Column(String(36), ForeignKey("protocol_teams.id"), nullable=False, index=True)
    assigned_protocol_member_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    # Tracking: list of {date, event_type, attendance_status, notes}
    visit_history = Column(JSON, default=lambda: [])
    # 12 entries of {week, completed, notes, protocol_member_notes, completed_date}
    milestones = Column(JSON, default=lambda: [])
    # {ChecklistItem value: bool}, empty for visiting-only visitors
    integration_checklist = Column(JSON, default=lambda: {})

    # Derived, recomputed on every attendance / milestone / checklist write
    attendance_rate = Column(Integer, default=0)
    monitoring_progress = Column(Integer, default=0)

    # Feedback
    suggestions = Column(JSON, default=lambda: [])
    experiences = Column(JSON, default=lambda: [])

    # Source tracking
    referred_by = Column(String(255), nullable=True)
    how_did_you_hear = Column(String(255), nullable=True)
    previous_church = Column(String(255), nullable=True)
    emergency_contact = Column(JSON, nullable=True)

    # Login (joining visitors only)
    password_hash = Column(String(255), nullable=True)
    can_login = Column(Boolean, default=False)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def remaining_days(self, now: datetime | None = None) -> int | None:
        """Whole days left in the monitoring window, never negative."""
        end = as_utc(self.monitoring_end_date)
        if end is None:
            return None
        now = now or datetime.now(timezone.utc)
        return max(0, math.ceil((end - now).total_seconds() / 86400))


class VisitorEvent(Base):
    """Immutable audit trail entry for visitor monitoring changes.

    Status transitions and milestone completions land here; an external
    notifier may poll this table.
    """

    __tablename__ = "visitor_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    visitor_id = Column(String(36), ForeignKey("visitors.id"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False)  # VisitorEventType
    actor_id = Column(String(36), nullable=True)
    from_status = Column(String(30), nullable=True)  # MonitoringStatus
    to_status = Column(String(30), nullable=True)  # MonitoringStatus
    data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=func.now())
