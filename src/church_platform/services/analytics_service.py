"""Team and church-wide visitor analytics.

Pure aggregation helpers (`compute_team_stats`, `monthly_trend`,
`performance_score`) work over lists of Visitor rows. `AnalyticsService`
loads the rows and serves the assembled reports through a TTL cache, so a
dashboard may lag a write by up to the configured TTL.
"""

import calendar
import logging
from collections import Counter
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from church_platform.app.config import get_settings
from church_platform.domain.enums import (
    MonitoringStatus,
    ReportPeriod,
    TrendDirection,
    UserRole,
    VisitorStatus,
)
from church_platform.domain.errors import InvalidInputError, NotFoundError, UnauthorizedError
from church_platform.domain.models import ProtocolTeam, User, Visitor, as_utc, from_iso
from church_platform.services.access_policy import Caller
from church_platform.services.milestone_engine import milestone_progress
from church_platform.services.rates import percent, round_half_up, safe_ratio
from church_platform.services.ttl_cache import TTLCache
from church_platform.services.visitor_store import VisitorFilter, query_visitors

logger = logging.getLogger(__name__)

M = MonitoringStatus

TREND_MONTHS = 12
GROWTH_WINDOW_MONTHS = 3
GROWING_ABOVE = 5.0
DECLINING_BELOW = -5.0
RECENT_VISITORS_LIMIT = 10
# Active visitors this far into monitoring show up as report concerns
CONCERN_AFTER_DAYS = 75
TOP_THEMES = 3
SATISFACTION_TARGET = 4.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TeamStats:
    """Named visitor counters for one team (or any visitor set)."""

    total_visitors: int = 0
    joining_visitors: int = 0
    visiting_only: int = 0
    active_monitoring: int = 0
    needs_attention: int = 0
    completed_monitoring: int = 0
    converted_members: int = 0
    average_attendance_rate: int = 0

    @property
    def conversion_rate(self) -> int:
        return percent(self.converted_members, self.joining_visitors)

    def as_dict(self) -> dict:
        data = asdict(self)
        data["conversion_rate"] = self.conversion_rate
        return data


def _in_window(value: datetime | None, start: datetime | None, end: datetime | None) -> bool:
    value, start, end = as_utc(value), as_utc(start), as_utc(end)
    if value is None:
        return start is None and end is None
    if start is not None and value < start:
        return False
    if end is not None and value > end:
        return False
    return True


def compute_team_stats(
    visitors: list[Visitor],
    start: datetime | None = None,
    end: datetime | None = None,
) -> TeamStats:
    """Count visitors by intent and monitoring status, optionally by created_at window."""
    selected = [v for v in visitors if _in_window(v.created_at, start, end)]
    statuses = Counter(v.monitoring_status for v in selected)
    intents = Counter(v.status for v in selected)
    rates = [v.attendance_rate or 0 for v in selected]

    return TeamStats(
        total_visitors=len(selected),
        joining_visitors=intents[VisitorStatus.JOINING.value],
        visiting_only=intents[VisitorStatus.VISITING.value],
        active_monitoring=statuses[M.ACTIVE.value],
        needs_attention=statuses[M.NEEDS_ATTENTION.value],
        completed_monitoring=statuses[M.COMPLETED.value],
        converted_members=statuses[M.CONVERTED_TO_MEMBER.value],
        average_attendance_rate=round_half_up(safe_ratio(sum(rates), len(rates))),
    )


# ---------------------------------------------------------------------------
# Trends
# ---------------------------------------------------------------------------


def _month_key(value: datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


def _months_ending_at(now: datetime, months: int) -> list[str]:
    """Calendar-month keys, oldest first, ending with now's month."""
    year, month = now.year, now.month
    keys = []
    for _ in range(months):
        keys.append(f"{year:04d}-{month:02d}")
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(keys))


def _subtract_months(value: datetime, months: int) -> datetime:
    month_index = value.year * 12 + (value.month - 1) - months
    year, month = divmod(month_index, 12)
    day = min(value.day, calendar.monthrange(year, month + 1)[1])
    return value.replace(year=year, month=month + 1, day=day)


def monthly_trend(
    visitors: list[Visitor],
    months: int = TREND_MONTHS,
    now: datetime | None = None,
) -> list[dict]:
    """Per-month registrations and conversions, every month present and zero-filled."""
    now = now or _utcnow()
    keys = _months_ending_at(now, months)
    buckets = {
        key: {"month": key, "total_visitors": 0, "joining": 0, "visiting": 0, "conversions": 0}
        for key in keys
    }
    created_keys = []

    for visitor in visitors:
        created = as_utc(visitor.created_at)
        if created is not None:
            key = _month_key(created)
            created_keys.append(key)
            if key in buckets:
                bucket = buckets[key]
                bucket["total_visitors"] += 1
                if visitor.status == VisitorStatus.JOINING.value:
                    bucket["joining"] += 1
                elif visitor.status == VisitorStatus.VISITING.value:
                    bucket["visiting"] += 1

        converted = as_utc(visitor.converted_at)
        if visitor.monitoring_status == M.CONVERTED_TO_MEMBER.value and converted is not None:
            key = _month_key(converted)
            if key in buckets:
                buckets[key]["conversions"] += 1

    trend = []
    for key in keys:
        bucket = buckets[key]
        bucket["cumulative_total"] = sum(1 for created_key in created_keys if created_key <= key)
        trend.append(bucket)
    return trend


def growth_trend(trend: list[dict]) -> float:
    """Percent change of the last three months' average over the three before; 0 without a base."""
    recent = trend[-GROWTH_WINDOW_MONTHS:]
    previous = trend[-2 * GROWTH_WINDOW_MONTHS:-GROWTH_WINDOW_MONTHS]
    recent_avg = safe_ratio(sum(m["total_visitors"] for m in recent), GROWTH_WINDOW_MONTHS)
    previous_avg = safe_ratio(sum(m["total_visitors"] for m in previous), len(previous))
    if not previous_avg:
        return 0.0
    return round((recent_avg - previous_avg) / previous_avg * 100, 2)


def trend_direction(growth: float) -> TrendDirection:
    if growth > GROWING_ABOVE:
        return TrendDirection.GROWING
    if growth < DECLINING_BELOW:
        return TrendDirection.DECLINING
    return TrendDirection.STABLE


def performance_score(conversion_rate: int, total_visitors: int, growth: float, member_count: int) -> int:
    """0-100 team score.

    40% conversion rate, 30% visitor volume (full marks at 10 visitors),
    20% growth (full marks at +20%), plus 10 points for having more than
    one member.
    """
    score = (
        conversion_rate * 0.4
        + min(total_visitors / 10, 1) * 30
        + min(growth / 20, 1) * 20
        + (10 if member_count > 1 else 0)
    )
    return max(0, min(100, round_half_up(score)))


def member_performance(visitors: list[Visitor], members: list[User], leader_id: str | None) -> list[dict]:
    rows = []
    for member in members:
        assigned = [v for v in visitors if v.assigned_protocol_member_id == member.id]
        conversions = sum(1 for v in assigned if v.monitoring_status == M.CONVERTED_TO_MEMBER.value)
        rows.append({
            "member_id": member.id,
            "name": member.name,
            "email": member.email,
            "assigned_visitors": len(assigned),
            "conversions": conversions,
            "conversion_rate": percent(conversions, len(assigned)),
            "is_leader": member.id == leader_id,
        })
    return rows


def _recent_activity(visitors: list[Visitor]) -> list[dict]:
    newest = sorted(
        visitors,
        key=lambda v: as_utc(v.created_at) or datetime.min.replace(tzinfo=timezone.utc),
        reverse=True,
    )
    return [
        {
            "visitor_id": v.id,
            "visitor_name": v.name,
            "status": v.status,
            "monitoring_status": v.monitoring_status,
            "created_at": as_utc(v.created_at),
            "assigned_to": v.assigned_protocol_member_id,
        }
        for v in newest[:RECENT_VISITORS_LIMIT]
    ]


def build_team_report(team: ProtocolTeam, visitors: list[Visitor], members: list[User], now: datetime) -> dict:
    """Assemble one team's statistics, growth and member performance."""
    stats = compute_team_stats(visitors)
    trend = monthly_trend(visitors, TREND_MONTHS, now)
    growth = growth_trend(trend)

    return {
        "team_id": team.id,
        "team_name": team.name,
        "team_description": team.description,
        "leader_id": team.leader_id,
        "member_count": len(members),
        "statistics": stats.as_dict(),
        "growth": {
            "monthly_growth": trend,
            "growth_trend": growth,
            "trend_direction": trend_direction(growth).value,
            "performance_score": performance_score(
                stats.conversion_rate, stats.total_visitors, growth, len(members)
            ),
        },
        "member_performance": member_performance(visitors, members, team.leader_id),
        "recent_activity": _recent_activity(visitors),
    }


def report_window_start(period: ReportPeriod, now: datetime) -> datetime:
    if period == ReportPeriod.WEEKLY:
        return now - timedelta(days=7)
    if period == ReportPeriod.QUARTERLY:
        return _subtract_months(now, 3)
    return _subtract_months(now, 1)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@lru_cache
def get_analytics_cache() -> TTLCache:
    """Process-wide analytics cache (FastAPI dependency)."""
    return TTLCache(get_settings().analytics_cache_ttl_seconds)


class AnalyticsService:
    """Loads visitors and serves cached aggregate reports."""

    def __init__(self, db: AsyncSession, cache: TTLCache):
        self.db = db
        self.cache = cache

    async def _team_members(self, team_id: str | None = None) -> list[User]:
        stmt = select(User).where(User.is_active.is_(True), User.protocol_team_id.is_not(None))
        if team_id:
            stmt = stmt.where(User.protocol_team_id == team_id)
        result = await self.db.execute(stmt.order_by(User.name))
        return list(result.scalars().all())

    async def team_performance(self, team_id: str, now: datetime | None = None) -> dict:
        """Statistics, 12-month growth and member performance for one team."""
        now = now or _utcnow()

        async def load() -> dict:
            team = await self.db.get(ProtocolTeam, team_id)
            if team is None:
                raise NotFoundError("Protocol team", team_id)
            visitors = await query_visitors(self.db, VisitorFilter(team_id=team_id))
            members = await self._team_members(team_id)
            return build_team_report(team, visitors, members, now)

        return await self.cache.get_or_load(f"team:{team_id}", load)

    async def church_overview(self, now: datetime | None = None) -> dict:
        """Every active team's report, rankings and church-wide totals."""
        now = now or _utcnow()

        async def load() -> dict:
            result = await self.db.execute(
                select(ProtocolTeam)
                .where(ProtocolTeam.is_active.is_(True))
                .order_by(ProtocolTeam.created_at.desc())
            )
            teams = list(result.scalars().all())
            visitors = await query_visitors(self.db)
            members = await self._team_members()

            reports = [
                build_team_report(
                    team,
                    [v for v in visitors if v.protocol_team_id == team.id],
                    [u for u in members if u.protocol_team_id == team.id],
                    now,
                )
                for team in teams
            ]
            ranked = sorted(reports, key=lambda r: r["growth"]["performance_score"], reverse=True)
            rankings = [
                {
                    "rank": index,
                    "team_id": r["team_id"],
                    "team_name": r["team_name"],
                    "performance_score": r["growth"]["performance_score"],
                    "total_visitors": r["statistics"]["total_visitors"],
                    "conversion_rate": r["statistics"]["conversion_rate"],
                    "growth_trend": r["growth"]["growth_trend"],
                    "trend_direction": r["growth"]["trend_direction"],
                }
                for index, r in enumerate(ranked, start=1)
            ]

            church = compute_team_stats(visitors)
            conversion_rates = [r["statistics"]["conversion_rate"] for r in reports]
            church_stats = {
                "total_teams": len(teams),
                "total_visitors": church.total_visitors,
                "total_joining": church.joining_visitors,
                "total_conversions": church.converted_members,
                "average_conversion_rate": round_half_up(
                    safe_ratio(sum(conversion_rates), len(conversion_rates))
                ),
                "average_attendance_rate": church.average_attendance_rate,
                "top_performing_team": rankings[0] if rankings else None,
            }
            insights = {
                "fastest_growing_team": next(
                    (r for r in rankings if r["trend_direction"] == TrendDirection.GROWING.value), None
                ),
                "teams_needing_attention": sum(
                    1 for r in rankings
                    if r["performance_score"] < 30
                    or r["trend_direction"] == TrendDirection.DECLINING.value
                ),
                "total_active_visitors": church.active_monitoring,
            }
            logger.info("Church overview built: %d teams, %d visitors", len(teams), len(visitors))
            return {
                "team_analytics": reports,
                "church_stats": church_stats,
                "team_rankings": rankings,
                "church_growth": monthly_trend(visitors, TREND_MONTHS, now),
                "insights": insights,
            }

        return await self.cache.get_or_load("church", load)

    async def protocol_report(self, caller: Caller, period: str = "monthly", now: datetime | None = None) -> dict:
        """Summary of a caretaker's recent visitors for the bishop."""
        if UserRole(caller.role) != UserRole.PROTOCOL:
            raise UnauthorizedError("Only protocol members can generate reports")
        if not caller.protocol_team_id:
            raise InvalidInputError("protocol_team", "Protocol member not assigned to a team")
        try:
            report_period = ReportPeriod(period)
        except ValueError:
            raise InvalidInputError("period", "Period must be weekly, monthly or quarterly")

        now = now or _utcnow()
        start = report_window_start(report_period, now)

        async def load() -> dict:
            team = await self.db.get(ProtocolTeam, caller.protocol_team_id)
            visitors = await query_visitors(
                self.db,
                VisitorFilter(
                    team_id=caller.protocol_team_id,
                    assigned_member_id=caller.id,
                    created_since=start,
                ),
            )
            return build_protocol_report(
                visitors, report_period, start, now, team.name if team else None
            )

        return await self.cache.get_or_load(f"report:{caller.id}:{report_period.value}", load)


def _entries_since(entries: list[dict] | None, start: datetime) -> list[dict]:
    return [e for e in entries or [] if (from_iso(e.get("date")) or start) >= start]


def build_protocol_report(
    visitors: list[Visitor],
    period: ReportPeriod,
    start: datetime,
    now: datetime,
    team_name: str | None = None,
) -> dict:
    stats = compute_team_stats(visitors)

    suggestions = [s for v in visitors for s in _entries_since(v.suggestions, start)]
    experiences = [e for v in visitors for e in _entries_since(v.experiences, start)]
    ratings = [e["rating"] for e in experiences if e.get("rating") is not None]
    average_rating = round(safe_ratio(sum(ratings), len(ratings)), 1)

    themes = Counter(s.get("category", "other") for s in suggestions)
    concerns = []
    for visitor in visitors:
        started = as_utc(visitor.monitoring_start_date)
        if visitor.monitoring_status != M.ACTIVE.value or started is None:
            continue
        days = (now - started).days
        if days > CONCERN_AFTER_DAYS:
            concerns.append({
                "visitor_id": visitor.id,
                "name": visitor.name,
                "days_in_monitoring": days,
                "progress": milestone_progress(visitor.milestones),
            })

    recommendations = []
    if stats.total_visitors == 0:
        recommendations.append("Focus on visitor outreach and recruitment")
    if stats.converted_members == 0 and stats.joining_visitors > 0:
        recommendations.append("Review conversion strategies and follow-up processes")
    if concerns:
        recommendations.append(f"{len(concerns)} visitors need immediate attention")
    if ratings and average_rating < SATISFACTION_TARGET:
        recommendations.append("Address visitor satisfaction concerns")

    return {
        "period": period.value,
        "date_range": {"start": start, "end": now},
        "team_name": team_name,
        "metrics": {
            "total_visitors": stats.total_visitors,
            "new_joining": stats.joining_visitors,
            "conversions": stats.converted_members,
            "active_monitoring": stats.active_monitoring,
            "total_feedback": len(suggestions) + len(experiences),
            "average_rating": average_rating,
            "conversion_rate": stats.conversion_rate,
        },
        "feedback_themes": [
            {"category": category, "count": count}
            for category, count in themes.most_common(TOP_THEMES)
        ],
        "concerns": concerns,
        "recommendations": recommendations,
    }
