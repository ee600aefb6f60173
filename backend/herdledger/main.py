"""
FastAPI application entry point.
Configures middleware, routers, and lifecycle events.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.gzip import GZipMiddleware
from sqlalchemy import text

from herdledger.core.config import get_settings
from herdledger.core.logging import configure_logging, get_logger
from herdledger.db.session import (
    close_db,
    create_schema,
    get_background_session,
    get_session_factory,
    init_db,
)
from herdledger.modules.audit.facade import AuditTrail
from herdledger.modules.audit.router import router as audit_router
from herdledger.modules.audit.sql import SqlAuditRepository

# Configure logging before anything else
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Opens the database, builds the audit trail and runs the anchor
    scheduler for the lifetime of the process. An audit trail injected
    through :func:`create_application` is used as-is.
    """
    settings = get_settings()
    logger.info(
        "starting_application",
        environment=settings.environment,
        version=settings.version,
    )

    owns_database = getattr(app.state, "audit_trail", None) is None
    if owns_database:
        await init_db()
        await create_schema()
        app.state.audit_trail = AuditTrail(SqlAuditRepository(get_session_factory()))
        logger.info("database_initialized")

    audit_trail: AuditTrail = app.state.audit_trail
    if settings.anchor_enabled:
        audit_trail.scheduler.start()

    yield

    # Shutdown: let an in-flight anchor cycle finish, then release connections
    await audit_trail.scheduler.stop()
    if owns_database:
        app.state.audit_trail = None
        await close_db()
    logger.info("application_shutdown_complete")


def create_application(audit_trail: AuditTrail | None = None) -> FastAPI:
    """
    Application factory function.

    Creates and configures the FastAPI application with all middleware,
    routers, and settings applied.
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.project_name,
        version=settings.version,
        openapi_url=f"{settings.api_v1_prefix}/openapi.json",
        docs_url=f"{settings.api_v1_prefix}/docs",
        redoc_url=f"{settings.api_v1_prefix}/redoc",
        lifespan=lifespan,
    )
    if audit_trail is not None:
        app.state.audit_trail = audit_trail

    # Gzip compression for responses
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    @app.get("/health", tags=["Health"])
    async def health_check() -> dict[str, object]:
        checks: dict[str, str] = {}
        trail: AuditTrail | None = getattr(app.state, "audit_trail", None)

        if trail is not None and isinstance(trail.repository, SqlAuditRepository):
            try:
                async with get_background_session() as session:
                    await session.execute(text("SELECT 1"))
                checks["db"] = "ok"
            except Exception:
                checks["db"] = "unavailable"

        if trail is not None:
            checks["ledger"] = trail.ledger_client.name
            checks["anchor_scheduler"] = "running" if trail.scheduler.running else "stopped"

        overall = "healthy" if checks.get("db", "ok") == "ok" and trail is not None else "degraded"
        return {"status": overall, "version": settings.version, "checks": checks}

    app.include_router(
        audit_router,
        prefix=f"{settings.api_v1_prefix}/audit",
        tags=["Audit"],
    )

    return app


# Application instance
app = create_application()
