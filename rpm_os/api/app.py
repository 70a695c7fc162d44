"""FastAPI application for RPM OS billing."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from rpm_os import __version__
from rpm_os.api.middleware import RequestLoggingMiddleware
from rpm_os.api.routes import billing, health
from rpm_os.billing.errors import (
    InvalidPeriod,
    NotAuthorized,
    PatientComputationFailure,
    UpstreamReadFailure,
)
from rpm_os.config import get_settings

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = "5"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()
    logger.info(
        "Starting RPM OS billing API (default timezone=%s, report concurrency=%d)",
        settings.default_clinic_timezone,
        settings.billing_report_concurrency,
    )
    yield
    logger.info("Shutting down RPM OS billing API")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="RPM OS Billing API",
        description="RPM/CCM/PCM billing eligibility for clinicians and clinic administrators",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health.router, tags=["health"])
    app.include_router(billing.router, prefix="/api/v1", tags=["billing"])

    # Exception handlers
    @app.exception_handler(InvalidPeriod)
    async def invalid_period_handler(request: Request, exc: InvalidPeriod):
        return JSONResponse(status_code=400, content={"error": "Invalid period", "detail": str(exc)})

    @app.exception_handler(NotAuthorized)
    async def not_authorized_handler(request: Request, exc: NotAuthorized):
        # Same body whether or not the patient or clinic exists
        return JSONResponse(status_code=403, content={"error": "Not authorized"})

    @app.exception_handler(UpstreamReadFailure)
    async def upstream_failure_handler(request: Request, exc: UpstreamReadFailure):
        logger.warning(f"Upstream read failure on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=503,
            content={"error": "Temporarily unavailable, try again"},
            headers={"Retry-After": RETRY_AFTER_SECONDS},
        )

    @app.exception_handler(PatientComputationFailure)
    async def computation_failure_handler(request: Request, exc: PatientComputationFailure):
        logger.error(f"Billing computation failed on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Billing computation failed",
                "detail": exc.reason if settings.debug_mode else None,
            },
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if settings.debug_mode else None,
            },
        )

    return app
