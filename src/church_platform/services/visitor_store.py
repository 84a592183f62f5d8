"""Visitor persistence: lookups, scoped queries and the single save point."""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from church_platform.domain.models import Visitor


@dataclass
class VisitorFilter:
    """Query scope for visitors.

    team_id and assigned_member_id are OR-ed together when both are set,
    matching how a caretaker sees their own visitors plus their team's.
    """

    team_id: str | None = None
    assigned_member_id: str | None = None
    status: str | None = None
    monitoring_status: str | None = None
    created_since: datetime | None = None
    created_until: datetime | None = None
    include_inactive: bool = True


async def find_visitor_by_id(db: AsyncSession, visitor_id: str) -> Visitor | None:
    result = await db.execute(select(Visitor).where(Visitor.id == visitor_id))
    return result.scalar_one_or_none()


async def find_visitor_by_email(db: AsyncSession, email: str) -> Visitor | None:
    result = await db.execute(select(Visitor).where(Visitor.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def query_visitors(db: AsyncSession, flt: VisitorFilter | None = None) -> list[Visitor]:
    """Return matching visitors, newest first."""
    flt = flt or VisitorFilter()
    stmt = select(Visitor)

    scope = []
    if flt.team_id:
        scope.append(Visitor.protocol_team_id == flt.team_id)
    if flt.assigned_member_id:
        scope.append(Visitor.assigned_protocol_member_id == flt.assigned_member_id)
    if scope:
        stmt = stmt.where(or_(*scope))

    if flt.status:
        stmt = stmt.where(Visitor.status == flt.status)
    if flt.monitoring_status:
        stmt = stmt.where(Visitor.monitoring_status == flt.monitoring_status)
    if flt.created_since:
        stmt = stmt.where(Visitor.created_at >= flt.created_since)
    if flt.created_until:
        stmt = stmt.where(Visitor.created_at <= flt.created_until)
    if not flt.include_inactive:
        stmt = stmt.where(Visitor.is_active.is_(True))

    result = await db.execute(stmt.order_by(Visitor.created_at.desc(), Visitor.id.desc()))
    return list(result.scalars().all())


async def save_visitor(db: AsyncSession, visitor: Visitor) -> Visitor:
    """Persist the whole visitor document (and any pending events) in one commit."""
    db.add(visitor)
    await db.commit()
    await db.refresh(visitor)
    return visitor
