"""Pydantic v2 schemas for API request/response validation."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from church_platform.domain.enums import (
    MaritalStatus,
    SuggestionCategory,
    UserRole,
    VisitorStatus,
    VisitorType,
)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class UserCreate(BaseModel):
    """Schema for creating a staff account."""

    email: str
    password: str = Field(min_length=6)
    name: str
    role: UserRole = UserRole.MEMBER
    phone: str | None = None
    protocol_team_id: str | None = None


class UserLogin(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    """Schema for user API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str
    role: str
    phone: str | None = None
    protocol_team_id: str | None = None
    is_active: bool


class TokenResponse(BaseModel):
    """Schema for JWT token responses."""

    access_token: str
    token_type: str = "bearer"
    user: UserResponse


class VisitorTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    visitor_id: str
    name: str


# ---------------------------------------------------------------------------
# Protocol teams
# ---------------------------------------------------------------------------


class ProtocolTeamCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None
    leader_id: str | None = None
    member_ids: list[str] = Field(default_factory=list)
    responsibilities: list[str] = Field(default_factory=list)


class ProtocolTeamResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str | None = None
    leader_id: str | None = None
    responsibilities: list[str] = Field(default_factory=list)
    is_active: bool
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Visitors
# ---------------------------------------------------------------------------


class EmergencyContact(BaseModel):
    name: str | None = None
    phone: str | None = None
    relationship: str | None = None


class VisitorCreate(BaseModel):
    """Schema for registering a visitor."""

    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    visitor_type: VisitorType
    status: VisitorStatus
    phone: str | None = None
    address: str | None = None
    age: int | None = Field(default=None, ge=1, le=120)
    occupation: str | None = None
    marital_status: MaritalStatus | None = None
    referred_by: str | None = None
    how_did_you_hear: str | None = None
    previous_church: str | None = None
    emergency_contact: EmergencyContact | None = None


class VisitorUpdate(BaseModel):
    """Descriptive fields a caretaker may edit; unset fields stay unchanged."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    phone: str | None = None
    address: str | None = None
    age: int | None = Field(default=None, ge=1, le=120)
    occupation: str | None = None
    marital_status: MaritalStatus | None = None
    visitor_type: VisitorType | None = None
    referred_by: str | None = None
    how_did_you_hear: str | None = None
    previous_church: str | None = None
    emergency_contact: EmergencyContact | None = None
    is_active: bool | None = None


class VisitorResponse(BaseModel):
    """Visitor document as returned to staff and to the visitor themself."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    phone: str | None = None
    address: str | None = None
    age: int | None = None
    occupation: str | None = None
    marital_status: str | None = None
    visitor_type: str
    status: str
    monitoring_start_date: datetime | None = None
    monitoring_end_date: datetime | None = None
    monitoring_status: str
    converted_at: datetime | None = None
    protocol_team_id: str
    assigned_protocol_member_id: str
    visit_history: list[dict] = Field(default_factory=list)
    milestones: list[dict] = Field(default_factory=list)
    integration_checklist: dict = Field(default_factory=dict)
    attendance_rate: int = 0
    monitoring_progress: int = 0
    suggestions: list[dict] = Field(default_factory=list)
    experiences: list[dict] = Field(default_factory=list)
    referred_by: str | None = None
    how_did_you_hear: str | None = None
    previous_church: str | None = None
    emergency_contact: dict | None = None
    can_login: bool = False
    is_active: bool = True
    days_remaining: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_visitor(cls, visitor, now: datetime | None = None) -> "VisitorResponse":
        response = cls.model_validate(visitor)
        response.days_remaining = visitor.remaining_days(now)
        return response


class VisitorRegistered(BaseModel):
    visitor: VisitorResponse
    temporary_password: str | None = None


class VisitorListResponse(BaseModel):
    visitors: list[VisitorResponse]
    statistics: dict


# ---------------------------------------------------------------------------
# Attendance
# ---------------------------------------------------------------------------


class AttendanceRecordIn(BaseModel):
    visitor_id: str
    attendance_status: str
    event_type: str | None = None
    date: datetime | None = None
    notes: str | None = None


class AttendanceRequest(BaseModel):
    """Either a single record (flat fields) or a batch under attendance_records."""

    visitor_id: str | None = None
    attendance_status: str | None = None
    event_type: str | None = None
    date: datetime | None = None
    notes: str | None = None
    attendance_records: list[AttendanceRecordIn] | None = None

    @model_validator(mode="after")
    def _single_or_batch(self):
        if self.attendance_records is None and not (self.visitor_id and self.attendance_status):
            raise ValueError("Provide visitor_id and attendance_status, or attendance_records")
        return self

    def records(self) -> list[dict]:
        if self.attendance_records is not None:
            return [r.model_dump() for r in self.attendance_records]
        return [self.model_dump(exclude={"attendance_records"})]


# ---------------------------------------------------------------------------
# Milestones, checklist, conversion
# ---------------------------------------------------------------------------


class MilestoneUpdate(BaseModel):
    # Range checked by the milestone engine so errors name the field
    week: Any
    completed: bool
    notes: str | None = None


class ChecklistUpdate(BaseModel):
    checklist_item: str
    completed: bool


# ---------------------------------------------------------------------------
# Visitor self-service
# ---------------------------------------------------------------------------


class SuggestionCreate(BaseModel):
    message: str = Field(min_length=1)
    category: SuggestionCategory = SuggestionCategory.OTHER


class ExperienceCreate(BaseModel):
    rating: int
    message: str = Field(min_length=1)
    event_type: str | None = None
