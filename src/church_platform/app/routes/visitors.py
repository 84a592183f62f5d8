"""Protocol team visitor routes: registration, attendance, milestones, alerts."""

import logging

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from church_platform.app.routes.auth import caller_for, require_role
from church_platform.app.routes.errors import http_error
from church_platform.domain.enums import UserRole
from church_platform.domain.errors import DomainError
from church_platform.domain.models import User
from church_platform.domain.schemas import (
    AttendanceRequest,
    ChecklistUpdate,
    MilestoneUpdate,
    VisitorCreate,
    VisitorListResponse,
    VisitorRegistered,
    VisitorResponse,
    VisitorUpdate,
)
from church_platform.infra.database import get_db
from church_platform.services import milestone_engine, monitoring_status
from church_platform.services.analytics_service import AnalyticsService, get_analytics_cache
from church_platform.services.ttl_cache import TTLCache
from church_platform.services.visitor_alerts import visitor_alerts
from church_platform.services.visitor_service import VisitorService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/protocol/visitors", tags=["protocol-visitors"])
report_router = APIRouter(prefix="/api/protocol", tags=["protocol-reports"])

protocol_only = require_role(UserRole.PROTOCOL)
protocol_or_bishop = require_role(UserRole.PROTOCOL, UserRole.BISHOP)


def _milestone_view(visitor) -> dict:
    return {
        "visitor_id": visitor.id,
        "name": visitor.name,
        "milestones": visitor.milestones or [],
        "completed_milestones": milestone_engine.completed_count(visitor.milestones),
        "milestone_progress": milestone_engine.milestone_progress(visitor.milestones),
        "monitoring_progress": visitor.monitoring_progress or 0,
        "monitoring_status": visitor.monitoring_status,
        "attendance_rate": visitor.attendance_rate or 0,
    }


def _checklist_view(visitor) -> dict:
    checklist = visitor.integration_checklist or {}
    return {
        "visitor_id": visitor.id,
        "integration_checklist": checklist,
        "integration_progress": monitoring_status.integration_progress(checklist),
        "monitoring_progress": visitor.monitoring_progress or 0,
        "monitoring_status": visitor.monitoring_status,
    }


# ---------------------------------------------------------------------------
# Collection routes (declared before /{visitor_id})
# ---------------------------------------------------------------------------


@router.get("", response_model=VisitorListResponse)
async def list_visitors(user: User = Depends(protocol_only), db: AsyncSession = Depends(get_db)):
    try:
        visitors, statistics = await VisitorService(db).list_visitors(caller_for(user))
    except DomainError as exc:
        raise http_error(exc)
    return VisitorListResponse(
        visitors=[VisitorResponse.from_visitor(v) for v in visitors],
        statistics=statistics,
    )


@router.post("", response_model=VisitorRegistered, status_code=status.HTTP_201_CREATED)
async def register_visitor(
    data: VisitorCreate,
    user: User = Depends(protocol_only),
    db: AsyncSession = Depends(get_db),
):
    try:
        visitor, temporary_password = await VisitorService(db).register_visitor(
            caller_for(user), data.model_dump(mode="json")
        )
    except DomainError as exc:
        raise http_error(exc)
    return VisitorRegistered(
        visitor=VisitorResponse.from_visitor(visitor),
        temporary_password=temporary_password,
    )


@router.get("/attendance")
async def attendance_summary(user: User = Depends(protocol_only), db: AsyncSession = Depends(get_db)):
    try:
        return await VisitorService(db).attendance_summary(caller_for(user))
    except DomainError as exc:
        raise http_error(exc)


@router.post("/attendance")
async def record_attendance(
    body: AttendanceRequest,
    user: User = Depends(protocol_only),
    db: AsyncSession = Depends(get_db),
):
    """Record one visit, or a batch under attendance_records."""
    service = VisitorService(db)
    caller = caller_for(user)

    if body.attendance_records is not None:
        outcome = await service.record_attendance_batch(caller, body.records())
        logger.info(
            "Batch attendance by %s: %d marked, %d skipped",
            user.id, outcome.total_marked, len(outcome.skipped),
        )
        return outcome.as_dict()

    try:
        result = await service.record_attendance(
            caller,
            body.visitor_id,
            body.attendance_status,
            event_type=body.event_type,
            date=body.date,
            notes=body.notes,
        )
    except DomainError as exc:
        raise http_error(exc)
    return {
        **result.as_dict(),
        "visitor": VisitorResponse.from_visitor(result.visitor).model_dump(),
    }


@router.get("/alerts")
async def list_alerts(user: User = Depends(protocol_only), db: AsyncSession = Depends(get_db)):
    return await visitor_alerts(db, caller_for(user))


# ---------------------------------------------------------------------------
# Single visitor routes
# ---------------------------------------------------------------------------


@router.get("/{visitor_id}", response_model=VisitorResponse)
async def get_visitor(
    visitor_id: str,
    user: User = Depends(protocol_or_bishop),
    db: AsyncSession = Depends(get_db),
):
    try:
        visitor = await VisitorService(db).get_visitor(caller_for(user), visitor_id)
    except DomainError as exc:
        raise http_error(exc)
    return VisitorResponse.from_visitor(visitor)


@router.put("/{visitor_id}", response_model=VisitorResponse)
async def update_visitor(
    visitor_id: str,
    data: VisitorUpdate,
    user: User = Depends(protocol_only),
    db: AsyncSession = Depends(get_db),
):
    try:
        visitor = await VisitorService(db).update_visitor(
            caller_for(user), visitor_id, data.model_dump(exclude_unset=True, mode="json")
        )
    except DomainError as exc:
        raise http_error(exc)
    return VisitorResponse.from_visitor(visitor)


@router.get("/{visitor_id}/events")
async def list_visitor_events(
    visitor_id: str,
    user: User = Depends(protocol_or_bishop),
    db: AsyncSession = Depends(get_db),
):
    try:
        events = await VisitorService(db).list_events(caller_for(user), visitor_id)
    except DomainError as exc:
        raise http_error(exc)
    return [
        {
            "id": e.id,
            "event_type": e.event_type,
            "actor_id": e.actor_id,
            "from_status": e.from_status,
            "to_status": e.to_status,
            "data": e.data,
            "created_at": e.created_at,
        }
        for e in events
    ]


@router.get("/{visitor_id}/milestones")
async def get_milestones(
    visitor_id: str,
    user: User = Depends(protocol_or_bishop),
    db: AsyncSession = Depends(get_db),
):
    try:
        visitor = await VisitorService(db).get_milestones(caller_for(user), visitor_id)
    except DomainError as exc:
        raise http_error(exc)
    return _milestone_view(visitor)


@router.put("/{visitor_id}/milestones")
async def update_milestone(
    visitor_id: str,
    body: MilestoneUpdate,
    user: User = Depends(protocol_only),
    db: AsyncSession = Depends(get_db),
):
    try:
        visitor = await VisitorService(db).update_milestone(
            caller_for(user), visitor_id, body.week, body.completed, body.notes
        )
    except DomainError as exc:
        raise http_error(exc)
    return _milestone_view(visitor)


@router.get("/{visitor_id}/integration")
async def get_integration_checklist(
    visitor_id: str,
    user: User = Depends(protocol_or_bishop),
    db: AsyncSession = Depends(get_db),
):
    try:
        visitor = await VisitorService(db).get_checklist(caller_for(user), visitor_id)
    except DomainError as exc:
        raise http_error(exc)
    return _checklist_view(visitor)


@router.put("/{visitor_id}/integration")
async def update_integration_checklist(
    visitor_id: str,
    body: ChecklistUpdate,
    user: User = Depends(protocol_only),
    db: AsyncSession = Depends(get_db),
):
    try:
        visitor = await VisitorService(db).update_checklist_item(
            caller_for(user), visitor_id, body.checklist_item, body.completed
        )
    except DomainError as exc:
        raise http_error(exc)
    return _checklist_view(visitor)


@router.post("/{visitor_id}/convert", response_model=VisitorResponse)
async def convert_to_member(
    visitor_id: str,
    user: User = Depends(protocol_only),
    db: AsyncSession = Depends(get_db),
):
    try:
        visitor = await VisitorService(db).convert_to_member(caller_for(user), visitor_id)
    except DomainError as exc:
        raise http_error(exc)
    return VisitorResponse.from_visitor(visitor)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


@report_router.post("/bishop-report")
async def bishop_report(
    period: str = Query("monthly"),
    user: User = Depends(protocol_only),
    db: AsyncSession = Depends(get_db),
    cache: TTLCache = Depends(get_analytics_cache),
):
    try:
        report = await AnalyticsService(db, cache).protocol_report(caller_for(user), period)
    except DomainError as exc:
        raise http_error(exc)
    logger.info("Protocol report (%s) generated by %s", period, user.id)
    return {"protocol_member_name": user.name, **report}
