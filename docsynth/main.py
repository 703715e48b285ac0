"""FastAPI application entry point.

Main application setup with middleware, routing, and lifecycle management.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from docsynth import __version__
from docsynth.api.generations import router as generations_router
from docsynth.api.schemas import ErrorResponse
from docsynth.api.templates import router as templates_router
from docsynth.core.config import Settings, get_settings
from docsynth.core.errors import ErrorKind, GenerationError
from docsynth.core.logging_config import setup_logging
from docsynth.db.session import close_db, init_db

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    ErrorKind.TEMPLATE_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.TEMPLATE_FILE_MISSING: status.HTTP_404_NOT_FOUND,
    ErrorKind.EMPTY_INSTRUCTION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.MISSING_CREDENTIAL: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorKind.UPSTREAM_ERROR: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.EMPTY_RESPONSE: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.TIMEOUT: status.HTTP_504_GATEWAY_TIMEOUT,
    ErrorKind.DISPATCH_FAILED: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Handles startup and shutdown events for proper resource management.
    """
    settings: Settings = app.state.settings

    # Startup
    logger.info("Starting document generation API...")

    setup_logging(settings)

    try:
        logger.info("Initializing database...")
        await init_db(settings)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}", exc_info=True)
        raise

    yield

    # Shutdown
    logger.info("Shutting down document generation API...")

    try:
        await close_db()
        logger.info("Database connections closed")
    except Exception as e:
        logger.error(f"Error closing database: {e}", exc_info=True)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Optional settings. If None, loads from environment.

    Returns:
        Configured FastAPI application instance.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="docsynth",
        description="Template-driven document generation with a text-generation model",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Store settings in app state
    app.state.settings = settings

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(templates_router)
    app.include_router(generations_router)

    # Health check endpoint
    @app.get("/health", tags=["health"])
    async def health_check():
        """Health check endpoint for load balancers and monitoring."""
        return {
            "status": "healthy",
            "service": "docsynth-api",
            "version": __version__,
        }

    # Exception handlers
    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request, exc):
        """Handle Pydantic validation errors."""
        logger.warning(f"Validation error: {exc.errors()}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "detail": "Validation error",
                "errors": jsonable_errors(exc.errors()),
            },
        )

    @app.exception_handler(GenerationError)
    async def generation_exception_handler(request, exc: GenerationError):
        """Map pipeline errors that escape a route to HTTP responses."""
        status_code = ERROR_STATUS_CODES.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
        logger.warning(f"Generation error ({exc.kind.value}): {exc.message}")
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(
                detail=exc.message,
                error_code=exc.kind.value.upper(),
                extra={"retryable": exc.retryable},
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request, exc):
        """Handle uncaught exceptions."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                detail="Internal server error",
                error_code="INTERNAL_ERROR",
            ).model_dump(),
        )

    logger.info("FastAPI application created successfully")
    return app


def jsonable_errors(errors) -> list[dict]:
    """Drop non-serializable context (exception objects) from validation errors."""
    return [{key: value for key, value in error.items() if key != "ctx"} for error in errors]


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    logger.info("Starting uvicorn server on port 8000...")
    uvicorn.run(
        "docsynth.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
