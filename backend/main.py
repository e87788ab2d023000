"""
SeniorShield Risk Engine API

FastAPI backend for transaction risk scoring on seniors' accounts.

Features:
- Composite scoring: anomaly model, behavioral deviation, per-user
  classifier and profile context
- Feedback loop with retrospective re-scoring of older transactions
- Situation tracking with periodic status reminders
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from core.config import settings
from core.exceptions import (
    DuplicateTransactionError,
    InsufficientDataError,
    SituationNotFoundError,
    TransactionNotFoundError,
)
from api.routes import router
from schemas import ErrorResponse


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)


# =============================================================================
# BACKGROUND TASK MANAGEMENT
# =============================================================================

# Global reference to the reminder task
_reminder_task: Optional[asyncio.Task] = None


# =============================================================================
# APPLICATION LIFESPAN
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Startup:
    - Log configuration
    - Seed synthetic demo data (when enabled)
    - Train the anomaly model and per-user models
    - Start background situation reminders

    Shutdown:
    - Stop reminders gracefully
    """
    global _reminder_task

    # Startup
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"CORS allowed origins: {settings.ALLOWED_ORIGINS}")
    logger.info(f"Debug mode: {settings.DEBUG}")

    from services.fraud_service import get_fraud_service
    from services.synthetic_data import seed_demo_data

    service = get_fraud_service()

    if settings.SEED_DEMO_DATA and not service.repository.get_all_transactions():
        seed_demo_data(service.repository, n_users=settings.DEMO_USER_COUNT)

    logger.info("=" * 60)
    logger.info("Initializing risk models...")
    logger.info("  - Autoencoder (unsupervised anomaly detection)")
    logger.info("  - Behavioral profiles (per-user deviation rules)")
    logger.info("  - SGD logistic regression (per-user fraud classifier)")
    logger.info("=" * 60)

    try:
        if service.initialize():
            logger.info("Risk models trained successfully")
            logger.info(f"   Anomaly threshold: {service.anomaly_scorer.threshold:.4f}")
    except InsufficientDataError as e:
        logger.warning(f"Model initialization skipped: {e}; models will train on demand")

    # Start situation reminders in the background
    from services.reminder_service import run_reminder_loop, stop_reminders

    logger.info("Starting background reminder service...")
    _reminder_task = asyncio.create_task(run_reminder_loop(service.repository))

    yield

    # Shutdown
    logger.info("Shutting down application...")

    if _reminder_task:
        stop_reminders()
        _reminder_task.cancel()
        try:
            await _reminder_task
        except asyncio.CancelledError:
            pass
        logger.info("Reminder service stopped")

    logger.info("Application shutdown complete")


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Transaction risk scoring for senior fraud monitoring",
        docs_url="/docs" if settings.DEBUG else None,  # Disable in production
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    # -------------------------------------------------------------------------
    # CORS MIDDLEWARE (Strict - No wildcards)
    # -------------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH"],
        allow_headers=["Content-Type", "Accept"],
        max_age=600,  # Cache preflight for 10 minutes
    )

    # -------------------------------------------------------------------------
    # EXCEPTION HANDLERS (Centralized, safe error messages)
    # -------------------------------------------------------------------------

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError
    ) -> JSONResponse:
        """
        Handle Pydantic validation errors.
        Returns safe, user-friendly error messages without exposing internals.
        """
        # Extract first error for user-friendly message
        errors = exc.errors()
        if errors:
            first_error = errors[0]
            field = " -> ".join(str(loc) for loc in first_error.get("loc", []))
            msg = first_error.get("msg", "Invalid value")
            safe_message = f"Validation error in '{field}': {msg}"
        else:
            safe_message = "Invalid request data"

        logger.warning(f"Validation error: {safe_message}")

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=ErrorResponse(
                error="validation_error",
                message=safe_message
            ).model_dump()
        )

    @app.exception_handler(ValidationError)
    async def pydantic_validation_handler(
        request: Request,
        exc: ValidationError
    ) -> JSONResponse:
        """Handle Pydantic model validation errors."""
        logger.warning(f"Pydantic validation error: {exc.error_count()} errors")

        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=ErrorResponse(
                error="validation_error",
                message="Invalid request data format"
            ).model_dump()
        )

    @app.exception_handler(TransactionNotFoundError)
    @app.exception_handler(SituationNotFoundError)
    async def not_found_handler(
        request: Request,
        exc: Exception
    ) -> JSONResponse:
        """Unknown (or not owned) transaction or situation."""
        logger.info(f"Not found: {exc}")

        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content=ErrorResponse(
                error="not_found",
                message=str(exc)
            ).model_dump()
        )

    @app.exception_handler(DuplicateTransactionError)
    async def conflict_handler(
        request: Request,
        exc: DuplicateTransactionError
    ) -> JSONResponse:
        """A transaction id that is already stored is never re-ingested."""
        logger.info(f"Conflict: {exc}")

        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=ErrorResponse(
                error="conflict",
                message=str(exc)
            ).model_dump()
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request,
        exc: Exception
    ) -> JSONResponse:
        """
        Global exception handler.
        NEVER expose stack traces or internal errors to clients.
        """
        # Log the full error internally
        logger.exception(f"Unhandled exception: {type(exc).__name__}")

        # Return safe generic message to client
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error="internal_error",
                message="An unexpected error occurred. Please try again later."
            ).model_dump()
        )

    # -------------------------------------------------------------------------
    # ROUTES
    # -------------------------------------------------------------------------

    # Include API routes
    app.include_router(router, prefix="/api", tags=["Risk Engine"])

    # Root endpoint
    @app.get("/", include_in_schema=False)
    async def root():
        """Root endpoint - basic info."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "running"
        }

    return app


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = create_app()


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info",
        access_log=True,
    )
