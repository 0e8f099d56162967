"""
Alcovia Intervention Engine FastAPI Application

Daily check-in gate with human-in-the-loop escalation and real-time push.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from alcovia.config import settings
from alcovia.core.database import close_db, create_tables, get_sessionmaker, init_db, ping
from alcovia.core.exceptions import (
    ConflictError,
    InterventionError,
    NotFoundError,
    StorageError,
)
from alcovia.core.validation import ValidationError
from alcovia.escalation.gateway import EscalationGateway
from alcovia.intervention.expiry import ExpirySweeper, build_policy
from alcovia.intervention.state_machine import InterventionController
from alcovia.notifications.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

VERSION = "0.1.0"

# Seconds a client should wait before retrying after a storage failure
STORAGE_RETRY_AFTER = 5

_STATUS_CODES: dict[type[InterventionError], int] = {
    ValidationError: 422,
    NotFoundError: 404,
    ConflictError: 409,
    StorageError: 503,
}


def build_controller(
    session_factory: async_sessionmaker[AsyncSession],
    dispatcher: NotificationDispatcher,
    gateway: EscalationGateway | None = None,
) -> InterventionController:
    """Wire the state machine from settings."""
    return InterventionController(
        session_factory=session_factory,
        dispatcher=dispatcher,
        gateway=gateway or EscalationGateway.from_settings(),
        policy=build_policy(settings),
        window=settings.intervention_window,
        default_task=settings.DEFAULT_REMEDIAL_TASK,
        system_contact=settings.SYSTEM_MENTOR_CONTACT,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan events.

    Startup:
    - Open the database pool and verify the connection
    - Create missing tables (when DATABASE_AUTO_CREATE is set)
    - Build dispatcher, controller and expiry sweeper

    Shutdown:
    - Stop the sweeper, drop push sessions, close the pool
    """
    # Startup
    print("🚀 Alcovia Intervention Engine starting...")

    await init_db(
        settings.DATABASE_URL, pool_size=settings.DATABASE_POOL_SIZE, echo=settings.DEBUG
    )

    try:
        await ping()
        print("✅ Database connection verified")
    except Exception as e:
        print(f"❌ Database connection failed: {e}")
        await close_db()
        raise

    if settings.DATABASE_AUTO_CREATE:
        await create_tables()

    dispatcher = NotificationDispatcher()
    gateway = EscalationGateway.from_settings()
    controller = build_controller(get_sessionmaker(), dispatcher, gateway)
    sweeper = ExpirySweeper(controller, settings.EXPIRY_SWEEP_INTERVAL_SECONDS)

    app.state.dispatcher = dispatcher
    app.state.gateway = gateway
    app.state.controller = controller
    app.state.sweeper = sweeper

    if not gateway.enabled:
        print("⚠️  ESCALATION_WEBHOOK_URL not set; failed check-ins will not reach mentors")

    sweeper.start()
    print("✅ Alcovia Intervention Engine ready!")

    yield

    # Shutdown
    print("🛑 Alcovia Intervention Engine shutting down...")
    await sweeper.stop()
    await dispatcher.close()
    await close_db()
    print("✅ Shutdown complete")


async def handle_intervention_error(request: Request, exc: InterventionError) -> JSONResponse:
    """Map domain errors to HTTP responses with a specific rejection reason."""
    status_code = next(
        (code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)),
        500,
    )
    headers = {"Retry-After": str(STORAGE_RETRY_AFTER)} if isinstance(exc, StorageError) else None

    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
        detail = "Storage temporarily unavailable; retry with backoff"
    else:
        detail = exc.message

    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "error": exc.category},
        headers=headers,
    )


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI app instance
    """
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title="Alcovia Intervention Engine",
        description="Daily check-in gate and mentor intervention workflow",
        version=VERSION,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.CLIENT_URL] if settings.CLIENT_URL else [],
        allow_credentials=settings.CLIENT_URL != "*",
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.add_exception_handler(InterventionError, handle_intervention_error)

    # Health check endpoints
    @app.get("/", tags=["Health"])
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {
            "service": "Alcovia Intervention Engine",
            "status": "operational",
            "version": VERSION,
            "environment": settings.ENVIRONMENT,
        }

    @app.get("/health", tags=["Health"], response_model=None)
    async def health_check(request: Request) -> JSONResponse:
        """Health check endpoint for load balancers.

        Returns:
            - status: healthy/unhealthy
            - checks: Individual health checks
        """
        checks: dict[str, dict[str, Any]] = {}

        # Database health
        try:
            await ping()
            checks["database"] = {"status": "healthy"}
        except Exception as e:
            checks["database"] = {"status": "unhealthy", "error": str(e)}

        # Push channel (informational)
        dispatcher: NotificationDispatcher | None = getattr(request.app.state, "dispatcher", None)
        checks["push"] = {
            "status": "healthy" if dispatcher is not None else "unhealthy",
            "connections": dispatcher.connection_count() if dispatcher is not None else 0,
        }

        # Overall status
        all_healthy = all(check["status"] == "healthy" for check in checks.values())
        status_code = 200 if all_healthy else 503

        return JSONResponse(
            status_code=status_code,
            content={
                "status": "healthy" if all_healthy else "unhealthy",
                "environment": settings.ENVIRONMENT,
                "escalation_configured": bool(settings.ESCALATION_WEBHOOK_URL),
                "checks": checks,
            },
        )

    @app.get("/health/ready", tags=["Health"], response_model=None)
    async def readiness_check() -> dict[str, str] | JSONResponse:
        """Readiness check for Kubernetes.

        Returns 200 when app is ready to serve traffic.
        """
        try:
            await ping()
            return {"status": "ready"}
        except Exception:
            return JSONResponse(
                status_code=503,
                content={"status": "not_ready"},
            )

    @app.get("/health/live", tags=["Health"])
    async def liveness_check() -> dict[str, str]:
        """Liveness check for Kubernetes.

        Returns 200 if app is alive (even if not fully functional).
        """
        return {"status": "alive"}

    # Register API routers
    from alcovia.api import push
    from alcovia.api.v1 import checkins, interventions, students
    from alcovia.webhooks import escalation

    app.include_router(students.router, prefix="/api/v1/students", tags=["Students"])
    app.include_router(checkins.router, prefix="/api/v1/checkins", tags=["Check-ins"])
    app.include_router(
        interventions.router, prefix="/api/v1/interventions", tags=["Interventions"]
    )
    app.include_router(escalation.router)
    app.include_router(push.router, tags=["Push"])

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "alcovia.main:app",
        host="0.0.0.0",  # nosec B104 - Intentional for containerized deployment
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
