"""Bishop routes: protocol team management, performance analytics, deadline alerts."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from church_platform.app.routes.auth import require_role
from church_platform.app.routes.errors import http_error
from church_platform.domain.enums import UserRole
from church_platform.domain.errors import DomainError
from church_platform.domain.models import ProtocolTeam, User
from church_platform.domain.schemas import ProtocolTeamCreate, ProtocolTeamResponse
from church_platform.infra.database import get_db
from church_platform.services.analytics_service import AnalyticsService, get_analytics_cache
from church_platform.services.ttl_cache import TTLCache
from church_platform.services.visitor_alerts import deadline_report

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bishop/protocol-teams", tags=["protocol-teams"])

bishop_only = require_role(UserRole.BISHOP)


@router.post("", response_model=ProtocolTeamResponse, status_code=status.HTTP_201_CREATED)
async def create_team(
    data: ProtocolTeamCreate,
    user: User = Depends(bishop_only),
    db: AsyncSession = Depends(get_db),
):
    """Create a team and move the leader and members onto it as protocol staff."""
    member_ids = list(dict.fromkeys(([data.leader_id] if data.leader_id else []) + data.member_ids))
    members = []
    for member_id in member_ids:
        member = await db.get(User, member_id)
        if member is None:
            raise HTTPException(status_code=404, detail=f"User {member_id} not found")
        if member.role not in (UserRole.PROTOCOL.value, UserRole.MEMBER.value):
            raise HTTPException(status_code=400, detail=f"User {member_id} cannot join a protocol team")
        members.append(member)

    team = ProtocolTeam(
        name=data.name.strip(),
        description=data.description,
        leader_id=data.leader_id,
        created_by=user.id,
        responsibilities=list(data.responsibilities),
    )
    db.add(team)
    await db.flush()
    for member in members:
        member.protocol_team_id = team.id
        member.role = UserRole.PROTOCOL.value

    await db.commit()
    await db.refresh(team)
    logger.info("Protocol team %s created by %s with %d members", team.id, user.id, len(members))
    return ProtocolTeamResponse.model_validate(team)


@router.get("")
async def list_teams(user: User = Depends(bishop_only), db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(ProtocolTeam)
        .where(ProtocolTeam.is_active.is_(True))
        .order_by(ProtocolTeam.created_at.desc())
    )
    teams = result.scalars().all()
    counts = dict((await db.execute(
        select(User.protocol_team_id, func.count(User.id))
        .where(User.protocol_team_id.is_not(None))
        .group_by(User.protocol_team_id)
    )).all())
    return [
        {**ProtocolTeamResponse.model_validate(t).model_dump(), "member_count": counts.get(t.id, 0)}
        for t in teams
    ]


@router.get("/analytics")
async def church_analytics(
    user: User = Depends(bishop_only),
    db: AsyncSession = Depends(get_db),
    cache: TTLCache = Depends(get_analytics_cache),
):
    return await AnalyticsService(db, cache).church_overview()


@router.get("/automated-alerts")
async def automated_alerts(user: User = Depends(bishop_only), db: AsyncSession = Depends(get_db)):
    return await deadline_report(db)


@router.get("/{team_id}/performance")
async def team_performance(
    team_id: str,
    user: User = Depends(bishop_only),
    db: AsyncSession = Depends(get_db),
    cache: TTLCache = Depends(get_analytics_cache),
):
    try:
        return await AnalyticsService(db, cache).team_performance(team_id)
    except DomainError as exc:
        raise http_error(exc)
