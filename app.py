"""
app.py - FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the shared store, the submission validator and the admin
services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from forked.controllers.admin_controller import router as admin_router
from forked.controllers.hall_controller import router as hall_router
from forked.controllers.submission_controller import router as submission_router
from forked.repository.data_repository import DataRepository
from forked.services.audit_service import SubmissionAuditService
from forked.services.auth_service import AuthService
from forked.services.validation_service import SubmissionValidationService
from forked.utils.config import get_settings
from forked.utils.logger import configure_logging, get_logger


logger = get_logger(__name__)


def create_app() -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    No global singletons - every dependency is traceable from this function.
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    # --- Repository (SQLite shared store) ---
    repository = DataRepository(settings)

    # --- Services ---
    validation_service = SubmissionValidationService(
        repository=repository,
        settings=settings,
    )
    audit_service = SubmissionAuditService(
        repository=repository,
        settings=settings,
    )
    auth_service = AuthService(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(hall_router)
    app.include_router(submission_router)
    app.include_router(admin_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.repository = repository
    app.state.validation_service = validation_service
    app.state.audit_service = audit_service
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    The schema must exist before the demo halls are seeded; seeding is
    skipped when halls are already present.
    """
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if app.state.settings.seed_demo_halls:
        logger.info("Startup: seeding demo halls (skipped if Halls table not empty)")
        repository.seed_demo_halls()

    logger.info("Startup complete - system ready")


# Module-level app object for uvicorn
app = create_app()
