"""FastAPI application entry point for the church platform visitor-care API."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from church_platform.app.config import get_settings
from church_platform.infra.database import async_session, init_db
from church_platform.services.auth_service import ensure_bishop

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: initialize database on startup."""
    await init_db()
    async with async_session() as db:
        await ensure_bishop(db, settings.bishop_email, settings.bishop_password)
    logger.info("Database ready")
    yield


settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if settings.debug else logging.WARNING,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

app = FastAPI(
    title="Church Platform Visitor Care API",
    lifespan=lifespan,
    debug=settings.debug,
)

# CORS middleware: allow all origins in debug mode for LAN/IP access
_cors_origins = settings.cors_origins_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=("*" not in _cors_origins),
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Route includes
# ---------------------------------------------------------------------------
from church_platform.app.routes.auth import router as auth_router
from church_platform.app.routes.visitors import router as visitors_router, report_router
from church_platform.app.routes.protocol_teams import router as protocol_teams_router
from church_platform.app.routes.visitor_portal import router as visitor_portal_router

app.include_router(auth_router)
app.include_router(visitors_router)
app.include_router(report_router)
app.include_router(protocol_teams_router)
app.include_router(visitor_portal_router)


@app.get("/health", tags=["health"])
async def health_check():
    """Return service health status."""
    return {"status": "ok", "service": "church-platform"}


def run() -> None:
    """Run the application with uvicorn (used by project.scripts entry point)."""
    uvicorn.run(
        "church_platform.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
