"""Visitor service: attendance recording, milestone/checklist updates and lifecycle.

Every write loads the full visitor row, replaces its JSON collections with
new objects, reruns the monitoring calculator and commits once. Audit events
are added to the same session so they land in the same commit.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from church_platform.domain.enums import (
    AttendanceStatus,
    MaritalStatus,
    MonitoringStatus,
    SuggestionCategory,
    UserRole,
    VisitorEventType,
    VisitorStatus,
    VisitorType,
)
from church_platform.domain.errors import (
    DomainError,
    InvalidInputError,
    NotFoundError,
    UnauthorizedError,
)
from church_platform.domain.models import Visitor, VisitorEvent, as_utc, from_iso
from church_platform.services import milestone_engine, monitoring_status
from church_platform.services.access_policy import Caller, Capability, ensure_can_access
from church_platform.services.analytics_service import compute_team_stats
from church_platform.services.auth_service import generate_temporary_password, hash_password
from church_platform.services.rates import round_half_up, safe_ratio
from church_platform.services.visitor_store import (
    VisitorFilter,
    find_visitor_by_email,
    find_visitor_by_id,
    query_visitors,
    save_visitor,
)

logger = logging.getLogger(__name__)

MONITORING_WINDOW_DAYS = 90
MIN_AGE, MAX_AGE = 1, 120
MIN_RATING, MAX_RATING = 1, 5

# Descriptive fields a caretaker may edit; monitoring and derived fields are excluded
UPDATABLE_FIELDS = {
    "name",
    "phone",
    "address",
    "age",
    "occupation",
    "marital_status",
    "visitor_type",
    "referred_by",
    "how_did_you_hear",
    "previous_church",
    "emergency_contact",
    "is_active",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum_value(enum_cls, value, field_name: str, message: str) -> str:
    try:
        return enum_cls(value).value
    except ValueError:
        raise InvalidInputError(field_name, message)


@dataclass
class AttendanceResult:
    """Outcome of recording one visit."""

    visitor: Visitor
    completed_weeks: list[int] = field(default_factory=list)
    previous_status: str | None = None

    @property
    def status_changed(self) -> bool:
        return self.previous_status != self.visitor.monitoring_status

    def as_dict(self) -> dict:
        return {
            "visitor_id": self.visitor.id,
            "name": self.visitor.name,
            "attendance_rate": self.visitor.attendance_rate,
            "monitoring_progress": self.visitor.monitoring_progress,
            "monitoring_status": self.visitor.monitoring_status,
            "completed_weeks": self.completed_weeks,
        }


@dataclass
class BatchAttendanceResult:
    """Per-record outcomes of a batch; failures are reported, not raised."""

    results: list[dict] = field(default_factory=list)
    skipped: list[dict] = field(default_factory=list)

    @property
    def total_marked(self) -> int:
        return len(self.results)

    def as_dict(self) -> dict:
        return {
            "results": self.results,
            "total_marked": self.total_marked,
            "skipped": self.skipped,
        }


class VisitorService:
    """Operations on visitor records for protocol caretakers and visitors."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Loading and shared steps
    # ------------------------------------------------------------------

    async def _load(self, visitor_id: str) -> Visitor:
        visitor = await find_visitor_by_id(self.db, visitor_id)
        if visitor is None:
            raise NotFoundError("Visitor", visitor_id)
        return visitor

    async def _load_for(self, caller: Caller, visitor_id: str, capability: Capability) -> Visitor:
        visitor = await self._load(visitor_id)
        ensure_can_access(caller, visitor, capability)
        return visitor

    def _caretaker_scope(self, caller: Caller) -> VisitorFilter:
        """Visitors of the caller's team plus those assigned to the caller."""
        if UserRole(caller.role) != UserRole.PROTOCOL:
            raise UnauthorizedError("Only protocol members manage visitors")
        if not caller.protocol_team_id:
            raise InvalidInputError("protocol_team", "Protocol member not assigned to a team")
        return VisitorFilter(team_id=caller.protocol_team_id, assigned_member_id=caller.id)

    def _emit(
        self,
        visitor: Visitor,
        event_type: VisitorEventType,
        actor_id: str | None,
        data: dict | None = None,
        from_status: str | None = None,
        to_status: str | None = None,
    ) -> None:
        self.db.add(VisitorEvent(
            visitor_id=visitor.id,
            event_type=event_type.value,
            actor_id=actor_id,
            from_status=from_status,
            to_status=to_status,
            data=data,
        ))

    @staticmethod
    def _under_monitoring(visitor: Visitor) -> bool:
        return (
            visitor.status == VisitorStatus.JOINING.value
            or visitor.monitoring_start_date is not None
        )

    def _recalculate(self, visitor: Visitor, actor_id: str | None) -> monitoring_status.MonitoringSnapshot:
        """Refresh derived fields and apply the status transition rules."""
        previous = visitor.monitoring_status
        snapshot = monitoring_status.evaluate(
            visitor.visit_history,
            visitor.milestones,
            visitor.integration_checklist,
            previous,
        )
        visitor.attendance_rate = snapshot.attendance_rate
        visitor.monitoring_progress = snapshot.monitoring_progress

        if snapshot.status.value != previous:
            visitor.monitoring_status = snapshot.status.value
            self._emit(
                visitor,
                VisitorEventType.STATUS_CHANGED,
                actor_id,
                data={"overall": snapshot.overall, "attendance_rate": snapshot.attendance_rate},
                from_status=previous,
                to_status=snapshot.status.value,
            )
            logger.info(
                "Visitor %s monitoring status %s -> %s (attendance %d%%, progress %.1f)",
                visitor.id, previous, snapshot.status.value,
                snapshot.attendance_rate, snapshot.overall,
            )
        return snapshot

    def _require_monitoring(self, visitor: Visitor) -> None:
        if not self._under_monitoring(visitor):
            raise InvalidInputError("status", "Visitor is not in the monitoring programme")

    # ------------------------------------------------------------------
    # Registration and details
    # ------------------------------------------------------------------

    async def register_visitor(self, caller: Caller, data: dict) -> tuple[Visitor, str | None]:
        """Create a visitor assigned to the caller and their team.

        Returns:
            (visitor, temporary password) where the password is only set for
            joining visitors and is never retrievable again.
        """
        scope = self._caretaker_scope(caller)
        data = dict(data)

        for required in ("name", "email", "visitor_type", "status"):
            value = data.get(required)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise InvalidInputError(required, f"{required} is required")

        email = data["email"].strip().lower()
        visitor_type = _enum_value(VisitorType, data["visitor_type"], "visitor_type", "Unknown visitor type")
        status = _enum_value(VisitorStatus, data["status"], "status", "Status must be visiting or joining")
        self._validate_details(data)

        if await find_visitor_by_email(self.db, email):
            raise InvalidInputError("email", "Visitor with this email already exists")

        visitor = Visitor(
            name=data["name"].strip(),
            email=email,
            visitor_type=visitor_type,
            status=status,
            protocol_team_id=scope.team_id,
            assigned_protocol_member_id=caller.id,
            visit_history=[],
            suggestions=[],
            experiences=[],
            attendance_rate=0,
            monitoring_progress=0,
        )
        for key in UPDATABLE_FIELDS - {"name", "visitor_type", "is_active"}:
            if data.get(key) is not None:
                setattr(visitor, key, data[key])

        temporary_password = None
        if status == VisitorStatus.JOINING.value:
            now = _utcnow()
            temporary_password = generate_temporary_password()
            visitor.monitoring_start_date = now
            visitor.monitoring_end_date = now + timedelta(days=MONITORING_WINDOW_DAYS)
            visitor.monitoring_status = MonitoringStatus.ACTIVE.value
            visitor.milestones = milestone_engine.initial_milestones()
            visitor.integration_checklist = monitoring_status.initial_checklist()
            visitor.password_hash = hash_password(temporary_password)
            visitor.can_login = True
        else:
            visitor.monitoring_status = MonitoringStatus.INACTIVE.value
            visitor.milestones = []
            visitor.integration_checklist = {}
            visitor.can_login = False

        self.db.add(visitor)
        await self.db.flush()
        self._emit(visitor, VisitorEventType.REGISTERED, caller.id, data={"status": status})
        await save_visitor(self.db, visitor)

        logger.info("Registered %s visitor %s for team %s", status, visitor.id, scope.team_id)
        return visitor, temporary_password

    def _validate_details(self, data: dict) -> None:
        age = data.get("age")
        if age is not None:
            if isinstance(age, bool) or not isinstance(age, int) or not MIN_AGE <= age <= MAX_AGE:
                raise InvalidInputError("age", f"Age must be between {MIN_AGE} and {MAX_AGE}")
        if data.get("marital_status") is not None:
            data["marital_status"] = _enum_value(
                MaritalStatus, data["marital_status"], "marital_status", "Unknown marital status"
            )
        if data.get("visitor_type") is not None:
            data["visitor_type"] = _enum_value(
                VisitorType, data["visitor_type"], "visitor_type", "Unknown visitor type"
            )

    async def list_visitors(self, caller: Caller, now: datetime | None = None) -> tuple[list[Visitor], dict]:
        """Caller's visitors newest first, with team statistics."""
        visitors = await query_visitors(self.db, self._caretaker_scope(caller))
        now = now or _utcnow()

        behind = sum(
            1 for v in visitors
            if v.status == VisitorStatus.JOINING.value
            and milestone_engine.is_behind_schedule(
                v.milestones, as_utc(v.monitoring_start_date or v.created_at), now
            )
        )
        statistics = compute_team_stats(visitors).as_dict()
        statistics["behind_schedule"] = behind
        return visitors, statistics

    async def get_visitor(self, caller: Caller, visitor_id: str) -> Visitor:
        return await self._load_for(caller, visitor_id, Capability.READ)

    async def list_events(self, caller: Caller, visitor_id: str) -> list[VisitorEvent]:
        """Audit trail for one visitor, oldest first."""
        await self._load_for(caller, visitor_id, Capability.READ)
        result = await self.db.execute(
            select(VisitorEvent)
            .where(VisitorEvent.visitor_id == visitor_id)
            .order_by(VisitorEvent.created_at, VisitorEvent.id)
        )
        return list(result.scalars().all())

    async def update_visitor(self, caller: Caller, visitor_id: str, fields: dict) -> Visitor:
        """Edit descriptive fields only."""
        for key in fields:
            if key not in UPDATABLE_FIELDS:
                raise InvalidInputError(key, "Field cannot be updated")
        if "name" in fields and not (fields["name"] or "").strip():
            raise InvalidInputError("name", "name is required")
        fields = dict(fields)
        self._validate_details(fields)

        visitor = await self._load_for(caller, visitor_id, Capability.WRITE)
        for key, value in fields.items():
            setattr(visitor, key, dict(value) if isinstance(value, dict) else value)

        self._emit(visitor, VisitorEventType.DETAILS_UPDATED, caller.id, data={"fields": sorted(fields)})
        return await save_visitor(self.db, visitor)

    # ------------------------------------------------------------------
    # Attendance
    # ------------------------------------------------------------------

    async def record_attendance(
        self,
        caller: Caller,
        visitor_id: str,
        attendance_status: str,
        event_type: str | None = None,
        date: datetime | None = None,
        notes: str | None = None,
    ) -> AttendanceResult:
        """Append one visit, then rerun milestones and the status calculator."""
        attendance_status = _enum_value(
            AttendanceStatus, attendance_status, "attendance_status",
            "Attendance status must be present or absent",
        )
        visitor = await self._load_for(caller, visitor_id, Capability.WRITE)
        now = _utcnow()
        previous_status = visitor.monitoring_status

        history = list(visitor.visit_history or [])
        history.append({
            "date": (as_utc(date) or now).isoformat(),
            "event_type": event_type or milestone_engine.PRIMARY_SERVICE_EVENT,
            "attendance_status": attendance_status,
            "notes": notes or "",
        })
        visitor.visit_history = history
        self._emit(
            visitor,
            VisitorEventType.ATTENDANCE_RECORDED,
            caller.id,
            data={"attendance_status": attendance_status, "event_type": history[-1]["event_type"]},
        )

        completed_weeks: list[int] = []
        if self._under_monitoring(visitor):
            visitor.milestones, completed_weeks = milestone_engine.apply_attendance_milestones(
                visitor.milestones, history, now
            )
            for week in completed_weeks:
                self._emit(visitor, VisitorEventType.MILESTONE_COMPLETED, caller.id, data={"week": week, "auto": True})
                logger.info("Visitor %s auto-completed week %d milestone", visitor.id, week)

        self._recalculate(visitor, caller.id)
        await save_visitor(self.db, visitor)
        return AttendanceResult(visitor=visitor, completed_weeks=completed_weeks, previous_status=previous_status)

    async def record_attendance_batch(self, caller: Caller, records: list[dict]) -> BatchAttendanceResult:
        """Record each entry independently; unknown or foreign visitors are skipped."""
        outcome = BatchAttendanceResult()
        for index, record in enumerate(records):
            visitor_id = record.get("visitor_id")
            try:
                result = await self.record_attendance(
                    caller,
                    visitor_id,
                    record.get("attendance_status"),
                    event_type=record.get("event_type"),
                    date=record.get("date"),
                    notes=record.get("notes"),
                )
            except DomainError as exc:
                logger.warning("Skipping attendance record %d for visitor %s: %s", index, visitor_id, exc)
                outcome.skipped.append({"index": index, "visitor_id": visitor_id, "reason": str(exc)})
                continue
            outcome.results.append(result.as_dict())
        return outcome

    async def attendance_summary(self, caller: Caller) -> dict:
        """Per-visitor visit counts for the caller's visitors."""
        visitors = await query_visitors(self.db, self._caretaker_scope(caller))
        rows = []
        for visitor in visitors:
            history = visitor.visit_history or []
            present = sum(
                1 for visit in history
                if visit.get("attendance_status") == AttendanceStatus.PRESENT.value
            )
            dates = [from_iso(visit.get("date")) for visit in history if visit.get("date")]
            rows.append({
                "visitor_id": visitor.id,
                "name": visitor.name,
                "status": visitor.status,
                "monitoring_status": visitor.monitoring_status,
                "total_visits": len(history),
                "present_visits": present,
                "attendance_rate": monitoring_status.attendance_rate(history),
                "last_visit": max(dates) if dates else None,
            })
        average = round_half_up(safe_ratio(sum(r["attendance_rate"] for r in rows), len(rows)))
        return {"visitors": rows, "average_attendance": average}

    # ------------------------------------------------------------------
    # Milestones and integration checklist
    # ------------------------------------------------------------------

    async def get_milestones(self, caller: Caller, visitor_id: str) -> Visitor:
        return await self._load_for(caller, visitor_id, Capability.READ)

    async def update_milestone(
        self,
        caller: Caller,
        visitor_id: str,
        week,
        completed: bool,
        notes: str | None = None,
    ) -> Visitor:
        week = milestone_engine.validate_week(week)
        visitor = await self._load_for(caller, visitor_id, Capability.WRITE)
        self._require_monitoring(visitor)

        before = milestone_engine.find_milestone(visitor.milestones, week) or {}
        visitor.milestones = milestone_engine.set_milestone(
            visitor.milestones, week, completed, notes, _utcnow()
        )
        if bool(before.get("completed")) != bool(completed):
            event = VisitorEventType.MILESTONE_COMPLETED if completed else VisitorEventType.MILESTONE_REOPENED
            self._emit(visitor, event, caller.id, data={"week": week, "auto": False})

        self._recalculate(visitor, caller.id)
        return await save_visitor(self.db, visitor)

    async def get_checklist(self, caller: Caller, visitor_id: str) -> Visitor:
        return await self._load_for(caller, visitor_id, Capability.READ)

    async def update_checklist_item(self, caller: Caller, visitor_id: str, item: str, completed: bool) -> Visitor:
        if item not in monitoring_status.CHECKLIST_ITEMS:
            raise InvalidInputError("checklist_item", f"Unknown checklist item: {item}")
        visitor = await self._load_for(caller, visitor_id, Capability.WRITE)
        self._require_monitoring(visitor)

        checklist = dict(visitor.integration_checklist or monitoring_status.initial_checklist())
        checklist[item] = bool(completed)
        visitor.integration_checklist = checklist
        self._emit(visitor, VisitorEventType.CHECKLIST_UPDATED, caller.id, data={"item": item, "completed": bool(completed)})

        self._recalculate(visitor, caller.id)
        return await save_visitor(self.db, visitor)

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    async def convert_to_member(self, caller: Caller, visitor_id: str) -> Visitor:
        """Explicitly move a joining visitor to the terminal converted state."""
        visitor = await self._load_for(caller, visitor_id, Capability.WRITE)
        if visitor.status != VisitorStatus.JOINING.value:
            raise InvalidInputError("status", "Only joining visitors can be converted")
        if visitor.monitoring_status == MonitoringStatus.CONVERTED_TO_MEMBER.value:
            raise InvalidInputError("monitoring_status", "Visitor is already a member")

        previous = visitor.monitoring_status
        visitor.monitoring_status = MonitoringStatus.CONVERTED_TO_MEMBER.value
        visitor.converted_at = _utcnow()
        visitor.can_login = False
        self._emit(
            visitor,
            VisitorEventType.CONVERTED,
            caller.id,
            from_status=previous,
            to_status=visitor.monitoring_status,
        )
        logger.info("Visitor %s converted to member (was %s)", visitor.id, previous)
        return await save_visitor(self.db, visitor)

    # ------------------------------------------------------------------
    # Visitor self-service
    # ------------------------------------------------------------------

    async def submit_suggestion(self, caller: Caller, visitor_id: str, message: str, category: str = "other") -> Visitor:
        if not (message or "").strip():
            raise InvalidInputError("message", "Message is required")
        category = _enum_value(SuggestionCategory, category or "other", "category", "Unknown suggestion category")
        visitor = await self._load_for(caller, visitor_id, Capability.FEEDBACK)

        suggestions = list(visitor.suggestions or [])
        suggestions.append({"date": _utcnow().isoformat(), "message": message.strip(), "category": category})
        visitor.suggestions = suggestions
        self._emit(visitor, VisitorEventType.FEEDBACK_RECEIVED, caller.id, data={"kind": "suggestion", "category": category})
        return await save_visitor(self.db, visitor)

    async def submit_experience(
        self,
        caller: Caller,
        visitor_id: str,
        rating: int,
        message: str,
        event_type: str | None = None,
    ) -> Visitor:
        if isinstance(rating, bool) or not isinstance(rating, int) or not MIN_RATING <= rating <= MAX_RATING:
            raise InvalidInputError("rating", f"Rating must be between {MIN_RATING} and {MAX_RATING}")
        if not (message or "").strip():
            raise InvalidInputError("message", "Message is required")
        visitor = await self._load_for(caller, visitor_id, Capability.FEEDBACK)

        experiences = list(visitor.experiences or [])
        entry = {"date": _utcnow().isoformat(), "rating": rating, "message": message.strip()}
        if event_type:
            entry["event_type"] = event_type
        experiences.append(entry)
        visitor.experiences = experiences
        self._emit(visitor, VisitorEventType.FEEDBACK_RECEIVED, caller.id, data={"kind": "experience", "rating": rating})
        return await save_visitor(self.db, visitor)

    async def visitor_dashboard(self, caller: Caller, visitor_id: str, now: datetime | None = None) -> dict:
        """The visitor's own progress view."""
        visitor = await self._load_for(caller, visitor_id, Capability.READ)
        now = now or _utcnow()

        def newest_first(entries):
            return sorted(entries or [], key=lambda e: e.get("date") or "", reverse=True)

        history = visitor.visit_history or []
        present = sum(1 for v in history if v.get("attendance_status") == AttendanceStatus.PRESENT.value)
        ratings = [e["rating"] for e in visitor.experiences or [] if e.get("rating") is not None]
        started = as_utc(visitor.monitoring_start_date or visitor.created_at)

        return {
            "visitor": visitor,
            "visit_history": newest_first(history),
            "milestones": visitor.milestones or [],
            "integration_checklist": visitor.integration_checklist or {},
            "suggestions": newest_first(visitor.suggestions),
            "experiences": newest_first(visitor.experiences),
            "statistics": {
                "total_visits": len(history),
                "present_count": present,
                "attendance_rate": visitor.attendance_rate or 0,
                "completed_milestones": milestone_engine.completed_count(visitor.milestones),
                "milestone_progress": milestone_engine.milestone_progress(visitor.milestones),
                "monitoring_progress": visitor.monitoring_progress or 0,
                "average_rating": round(safe_ratio(sum(ratings), len(ratings)), 1),
                "days_in_program": (now - started).days if started else 0,
                "days_remaining": visitor.remaining_days(now),
            },
        }
