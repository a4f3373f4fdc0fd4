"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker

from workforce_engine.api.routes import (
    attendance_router,
    audit_router,
    health_router,
    leave_router,
    payroll_router,
    records_router,
)
from workforce_engine.collaborators import (
    Clock,
    InMemoryUserDirectory,
    LoggingNotificationService,
    NotificationService,
    SystemClock,
    UserDirectory,
)
from workforce_engine.config import Settings, get_settings
from workforce_engine.database import init_db
from workforce_engine.exceptions import (
    ConcurrencyConflict,
    InsufficientBalanceError,
    InvalidStateError,
    LockedPeriodError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    WorkforceError,
)

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS: list[tuple[type[WorkforceError], int]] = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InsufficientBalanceError, status.HTTP_409_CONFLICT),
    (LockedPeriodError, status.HTTP_409_CONFLICT),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (ConcurrencyConflict, status.HTTP_409_CONFLICT),
]


def status_for(exc: WorkforceError) -> int:
    for error_type, code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


def create_app(
    settings: Settings | None = None,
    session_factory: sessionmaker[Session] | None = None,
    directory: UserDirectory | None = None,
    notifications: NotificationService | None = None,
    clock: Clock | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Collaborators default to the in-process implementations; tests inject
    their own session factory, directory and clock.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> Any:
        """Application lifespan handler."""
        # Startup
        if app.state.session_factory is None:
            _, app.state.session_factory = init_db(settings.database_url)
        yield

    app = FastAPI(
        title="Workforce Engine API",
        description="Attendance, leave and payroll-lock reconciliation",
        version="0.1.0",
        lifespan=lifespan,
    )

    if directory is None:
        if settings.users_file:
            directory = InMemoryUserDirectory.from_json_file(settings.users_file)
        else:
            logger.warning("USERS_FILE not set; every actor will be rejected")
            directory = InMemoryUserDirectory()

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.directory = directory
    app.state.notifications = notifications or LoggingNotificationService()
    app.state.clock = clock or SystemClock()

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(WorkforceError)
    async def workforce_exception_handler(request: Request, exc: WorkforceError) -> JSONResponse:
        """Map engine errors to HTTP status codes."""
        code = status_for(exc)
        logger.info("%s %s -> %s %s", request.method, request.url.path, code, exc.code)
        return JSONResponse(status_code=code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(attendance_router, prefix="/api/v1")
    app.include_router(leave_router, prefix="/api/v1")
    app.include_router(payroll_router, prefix="/api/v1")
    app.include_router(audit_router, prefix="/api/v1")
    app.include_router(records_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
