"""Authentication routes: member signup, bishop-created staff, login, me; bearer-token dependencies."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from church_platform.domain.enums import STAFF_ROLES, UserRole
from church_platform.domain.models import ProtocolTeam, User, Visitor
from church_platform.domain.schemas import TokenResponse, UserCreate, UserLogin, UserResponse
from church_platform.infra.database import get_db
from church_platform.services.access_policy import Caller
from church_platform.services.auth_service import (
    create_access_token,
    create_user,
    decode_token,
    get_user_by_email,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _token_payload(request: Request) -> dict:
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid token",
        )
    payload = decode_token(auth_header.removeprefix("Bearer "))
    if not payload or "sub" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload


async def get_current_user_dep(
    request: Request, db: AsyncSession = Depends(get_db)
) -> User:
    """Dependency: extract the current staff user from a Bearer token."""
    payload = _token_payload(request)
    if payload.get("role") == UserRole.VISITOR.value:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Staff token required",
        )
    result = await db.execute(select(User).where(User.id == payload["sub"]))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return user


async def get_current_visitor_dep(
    request: Request, db: AsyncSession = Depends(get_db)
) -> Visitor:
    """Dependency: extract the logged-in visitor from a visitor Bearer token."""
    payload = _token_payload(request)
    if payload.get("role") != UserRole.VISITOR.value:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Visitor token required",
        )
    result = await db.execute(select(Visitor).where(Visitor.id == payload["sub"]))
    visitor = result.scalar_one_or_none()
    if not visitor or not visitor.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Visitor not found or inactive",
        )
    return visitor


def require_role(*roles: UserRole):
    """Factory: dependency that checks the user has one of the required roles."""
    allowed = {UserRole(r).value for r in roles}

    async def checker(user: User = Depends(get_current_user_dep)):
        if user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return user

    return checker


def caller_for(user: User) -> Caller:
    return Caller.from_user(user)


async def _create_staff(db: AsyncSession, data: UserCreate) -> User:
    if data.role not in STAFF_ROLES:
        raise HTTPException(status_code=400, detail="Role must be a staff role")
    existing = await get_user_by_email(db, data.email)
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")
    if data.protocol_team_id and not await db.get(ProtocolTeam, data.protocol_team_id):
        raise HTTPException(status_code=404, detail="Protocol team not found")

    return await create_user(
        db,
        data.email,
        data.password,
        data.name,
        data.role.value,
        data.phone,
        data.protocol_team_id,
    )


@router.post("/signup", response_model=TokenResponse)
async def signup(data: UserCreate, db: AsyncSession = Depends(get_db)):
    """Public self-signup: plain members only, never onto a team."""
    if data.role != UserRole.MEMBER:
        raise HTTPException(status_code=403, detail="Only a bishop can create this role")
    if data.protocol_team_id:
        raise HTTPException(status_code=403, detail="Only a bishop can assign a protocol team")

    user = await _create_staff(db, data)
    logger.info("Signup: member %s", user.id)
    token = create_access_token(user.id, user.role)
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user))


@router.post("/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_staff_user(
    data: UserCreate,
    bishop: User = Depends(require_role(UserRole.BISHOP)),
    db: AsyncSession = Depends(get_db),
):
    """Bishop creates any staff account, optionally on a protocol team."""
    user = await _create_staff(db, data)
    logger.info("Bishop %s created %s user %s", bishop.id, user.role, user.id)
    return UserResponse.model_validate(user)


@router.post("/login", response_model=TokenResponse)
async def login(data: UserLogin, db: AsyncSession = Depends(get_db)):
    user = await get_user_by_email(db, data.email)
    if not user or not verify_password(data.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    user.last_login_at = datetime.now(timezone.utc)
    await db.commit()
    token = create_access_token(user.id, user.role)
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user))


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user_dep)):
    return UserResponse.model_validate(user)
