"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from personal_actions import __version__
from personal_actions.api.routes import health_router, personal_actions_router
from personal_actions.config import get_settings
from personal_actions.database import create_schema, dispose_db, init_db
from personal_actions.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PersonalActionError,
    ValidationError,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    init_db()
    if get_settings().auto_create_schema:
        await create_schema()
    yield
    # Shutdown
    await dispose_db()


def _status_for(exc: PersonalActionError) -> int:
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, ForbiddenError):
        return status.HTTP_403_FORBIDDEN
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ConflictError):
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    app = FastAPI(
        title="Personal Actions API",
        description="Personal action lifecycle and financial line engine",
        version=__version__,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(PersonalActionError)
    async def personal_action_error_handler(
        request: Request, exc: PersonalActionError
    ) -> JSONResponse:
        """Map domain errors to status codes, keeping the specific rule text."""
        content: dict = {"detail": exc.message, "code": exc.code}
        if isinstance(exc, ValidationError):
            content["errors"] = [e.to_dict() for e in exc.errors]
        return JSONResponse(status_code=_status_for(exc), content=content)

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
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
    app.include_router(personal_actions_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
