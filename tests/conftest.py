"""Shared test infrastructure for the church platform test suite.

Provides:
- db_session: async SQLite in-memory session with all tables created
- make_team: factory for ProtocolTeam rows
- make_user: factory for staff User rows
- make_visitor: factory for Visitor rows (joining visitors start monitoring)
- build_app_client: HTTPX AsyncClient over a FastAPI app wired to db_session
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Import Base first, then models to register all tables
from church_platform.infra.database import Base

import church_platform.domain.models  # noqa: F401

from church_platform.domain.models import ProtocolTeam, User, Visitor
from church_platform.services.milestone_engine import initial_milestones
from church_platform.services.monitoring_status import initial_checklist


# ---------------------------------------------------------------------------
# Database session fixture
# ---------------------------------------------------------------------------

@pytest.fixture
async def db_session():
    """Async SQLite in-memory session with all tables created.

    Creates a fresh engine + tables for each test, yields a session,
    then rolls back and tears down.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


# ---------------------------------------------------------------------------
# Team / user factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_team(db_session):
    """Factory that creates a ProtocolTeam row.

    Usage:
        team = await make_team(name="Welcome Team")
    """
    async def _factory(name: str = "Welcome Team", leader_id: str | None = None) -> ProtocolTeam:
        now = datetime.now(timezone.utc)
        team = ProtocolTeam(
            id=str(uuid.uuid4()), name=name, leader_id=leader_id, created_at=now, updated_at=now,
        )
        db_session.add(team)
        await db_session.flush()
        return team

    return _factory


@pytest.fixture
def make_user(db_session):
    """Factory that creates a staff User row (password hash is a placeholder).

    Usage:
        member = await make_user(role="protocol", team=team)
    """
    async def _factory(
        role: str = "protocol",
        team: ProtocolTeam | None = None,
        name: str = "Test Caretaker",
        email: str | None = None,
    ) -> User:
        user = User(
            id=str(uuid.uuid4()),
            email=email or f"{uuid.uuid4().hex[:8]}@church.test",
            password_hash="not-a-real-hash",
            name=name,
            role=role,
            protocol_team_id=team.id if team else None,
            created_at=datetime.now(timezone.utc),
        )
        db_session.add(user)
        await db_session.flush()
        return user

    return _factory


# ---------------------------------------------------------------------------
# Visitor factory
# ---------------------------------------------------------------------------

@pytest.fixture
def make_visitor(db_session):
    """Factory that creates a Visitor row.

    Joining visitors get a monitoring window starting `started_days_ago`
    days ago, 12 blank milestones and an empty checklist.

    Usage:
        visitor = await make_visitor(team=team, member=member, status="joining")
    """
    async def _factory(
        team: ProtocolTeam,
        member: User,
        status: str = "joining",
        name: str = "Test Visitor",
        email: str | None = None,
        monitoring_status: str | None = None,
        visit_history: list[dict] | None = None,
        milestones: list[dict] | None = None,
        integration_checklist: dict | None = None,
        attendance_rate: int = 0,
        started_days_ago: int = 0,
        created_at: datetime | None = None,
        **extra,
    ) -> Visitor:
        now = datetime.now(timezone.utc)
        joining = status == "joining"
        start = now - timedelta(days=started_days_ago) if joining else None

        visitor = Visitor(
            id=str(uuid.uuid4()),
            name=name,
            email=email or f"{uuid.uuid4().hex[:8]}@visitor.test",
            visitor_type="first-time",
            status=status,
            protocol_team_id=team.id,
            assigned_protocol_member_id=member.id,
            monitoring_start_date=start,
            monitoring_end_date=start + timedelta(days=90) if start else None,
            monitoring_status=monitoring_status or ("active" if joining else "inactive"),
            visit_history=visit_history or [],
            milestones=milestones if milestones is not None else (initial_milestones() if joining else []),
            integration_checklist=(
                integration_checklist if integration_checklist is not None
                else (initial_checklist() if joining else {})
            ),
            attendance_rate=attendance_rate,
            monitoring_progress=0,
            suggestions=[],
            experiences=[],
            created_at=created_at or now,
            updated_at=now,
            **extra,
        )
        db_session.add(visitor)
        await db_session.flush()
        return visitor

    return _factory


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest.fixture
def build_app_client(db_session):
    """Build an HTTPX AsyncClient wired to a test FastAPI app.

    Uses a fresh FastAPI app with the API routers only, so the real
    database engine and lifespan hooks are never touched.
    """
    def _factory() -> AsyncClient:
        from fastapi import FastAPI

        from church_platform.app.routes.auth import router as auth_router
        from church_platform.app.routes.protocol_teams import router as protocol_teams_router
        from church_platform.app.routes.visitor_portal import router as visitor_portal_router
        from church_platform.app.routes.visitors import report_router, router as visitors_router
        from church_platform.infra.database import get_db
        from church_platform.services.analytics_service import get_analytics_cache
        from church_platform.services.ttl_cache import TTLCache

        test_app = FastAPI()
        for router in (auth_router, visitors_router, report_router, protocol_teams_router, visitor_portal_router):
            test_app.include_router(router)

        async def _override_get_db():
            yield db_session

        test_app.dependency_overrides[get_db] = _override_get_db
        test_app.dependency_overrides[get_analytics_cache] = lambda: TTLCache(0)

        return AsyncClient(
            transport=ASGITransport(app=test_app),
            base_url="http://testserver",
        )

    return _factory
