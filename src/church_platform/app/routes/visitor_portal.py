"""Visitor self-service routes: login, dashboard and feedback."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from church_platform.app.routes.auth import get_current_visitor_dep
from church_platform.app.routes.errors import http_error
from church_platform.domain.enums import UserRole
from church_platform.domain.errors import DomainError
from church_platform.domain.models import Visitor
from church_platform.domain.schemas import (
    ExperienceCreate,
    SuggestionCreate,
    UserLogin,
    VisitorResponse,
    VisitorTokenResponse,
)
from church_platform.infra.database import get_db
from church_platform.services.access_policy import Caller
from church_platform.services.auth_service import authenticate_visitor, create_access_token
from church_platform.services.visitor_service import VisitorService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/visitor", tags=["visitor"])


@router.post("/login", response_model=VisitorTokenResponse)
async def visitor_login(data: UserLogin, db: AsyncSession = Depends(get_db)):
    visitor = await authenticate_visitor(db, data.email, data.password)
    if visitor is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")
    token = create_access_token(visitor.id, UserRole.VISITOR.value)
    return VisitorTokenResponse(access_token=token, visitor_id=visitor.id, name=visitor.name)


@router.get("/dashboard")
async def dashboard(visitor: Visitor = Depends(get_current_visitor_dep), db: AsyncSession = Depends(get_db)):
    try:
        view = await VisitorService(db).visitor_dashboard(Caller.for_visitor(visitor.id), visitor.id)
    except DomainError as exc:
        raise http_error(exc)
    view["visitor"] = VisitorResponse.from_visitor(view["visitor"]).model_dump()
    return view


@router.post("/suggestion", status_code=status.HTTP_201_CREATED)
async def submit_suggestion(
    body: SuggestionCreate,
    visitor: Visitor = Depends(get_current_visitor_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        updated = await VisitorService(db).submit_suggestion(
            Caller.for_visitor(visitor.id), visitor.id, body.message, body.category.value
        )
    except DomainError as exc:
        raise http_error(exc)
    logger.info("Suggestion received from visitor %s", visitor.id)
    return {"suggestions": updated.suggestions}


@router.post("/experience", status_code=status.HTTP_201_CREATED)
async def submit_experience(
    body: ExperienceCreate,
    visitor: Visitor = Depends(get_current_visitor_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        updated = await VisitorService(db).submit_experience(
            Caller.for_visitor(visitor.id), visitor.id, body.rating, body.message, body.event_type
        )
    except DomainError as exc:
        raise http_error(exc)
    logger.info("Experience rating %d received from visitor %s", body.rating, visitor.id)
    return {"experiences": updated.experiences}
