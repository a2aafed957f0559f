"""
Standalone FastAPI app wiring for BondLedger.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from core.db import DB, dispose_db, init_db
from app.errors import register_exception_handlers
from app.middleware import configure_middleware
from app.routes.activities import router as activities_router
from app.routes.certificates import router as certificates_router
from app.routes.health import router as health_router
from app.routes.milestones import router as milestones_router
from app.routes.notifications import router as notifications_router
from app.routes.relationships import router as relationships_router
from app.routes.root import router as root_router
from app.routes.terms import router as terms_router
from app.routes.users import router as users_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize on startup, cleanup on shutdown."""
    if DB.SessionLocal is None:
        init_db()
    try:
        yield
    finally:
        dispose_db()


def create_app() -> FastAPI:
    app = FastAPI(title="BondLedger", redirect_slashes=False, lifespan=lifespan)
    configure_middleware(app)
    register_exception_handlers(app)

    # Health and root endpoints
    app.include_router(health_router)
    app.include_router(root_router)

    # Domain endpoints
    app.include_router(users_router)
    app.include_router(relationships_router)
    app.include_router(terms_router)
    app.include_router(milestones_router)
    app.include_router(activities_router)
    app.include_router(certificates_router)
    app.include_router(notifications_router)
    return app


app = create_app()
