"""Authentication service: password hashing and JWT token management."""

import logging
import secrets
import string
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from church_platform.app.config import get_settings
from church_platform.domain.enums import UserRole
from church_platform.domain.models import User, Visitor

logger = logging.getLogger(__name__)

settings = get_settings()
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

_PASSWORD_ALPHABET = string.ascii_lowercase + string.digits


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def generate_temporary_password(length: int | None = None) -> str:
    """Random lowercase/digit password handed to a newly joining visitor."""
    length = length or settings.temporary_password_length
    return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))


def create_access_token(subject_id: str, role: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expiration_minutes)
    payload = {"sub": subject_id, "role": role, "exp": expire}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def create_user(
    db: AsyncSession,
    email: str,
    password: str,
    name: str,
    role: str,
    phone: str | None = None,
    protocol_team_id: str | None = None,
) -> User:
    user = User(
        email=email.strip().lower(),
        password_hash=hash_password(password),
        name=name,
        role=role,
        phone=phone,
        protocol_team_id=protocol_team_id,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def authenticate_visitor(db: AsyncSession, email: str, password: str) -> Visitor | None:
    """Return the visitor when login is enabled and the password matches."""
    result = await db.execute(select(Visitor).where(Visitor.email == email.strip().lower()))
    visitor = result.scalar_one_or_none()
    if not visitor or not visitor.can_login or not visitor.is_active or not visitor.password_hash:
        return None
    if not verify_password(password, visitor.password_hash):
        return None
    return visitor


async def ensure_bishop(db: AsyncSession, email: str | None, password: str | None) -> User | None:
    """Create the configured bishop account once; staff accounts flow from it."""
    if not email or not password:
        return None
    existing = await get_user_by_email(db, email)
    if existing:
        return existing
    user = await create_user(db, email, password, "Bishop", UserRole.BISHOP.value)
    logger.info("Bishop account created: %s", user.id)
    return user
