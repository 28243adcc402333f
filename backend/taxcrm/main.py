"""
Tax Genius CRM Backend - FastAPI Application Entry Point

Contact, interaction and pipeline-stage management for a tax-preparation
practice, with row-level access for tax preparers.
"""

import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from .api import campaigns_router, contacts_router, health_router, tasks_router
from .core.config import settings
from .core.database import dispose_engine, get_engine
from .core.exceptions import AccessDeniedError, ConfigurationError, CRMError, ValidationError
from .core.logging_config import configure_logging


logger = logging.getLogger(__name__)

API_PREFIX = "/api/crm"

_DEV_TOKEN_SECRET = "dev-identity-secret-change-in-production"


# =============================================================================
# Performance Monitoring Middleware
# =============================================================================

class PerformanceMonitoringMiddleware(BaseHTTPMiddleware):
    """
    Middleware to track API response times and log slow requests.

    Logs warnings for requests exceeding 500ms.
    Adds X-Response-Time header to all responses.
    """

    SLOW_REQUEST_THRESHOLD_MS = 500

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        response = await call_next(request)

        process_time_ms = (time.time() - start_time) * 1000
        response.headers["X-Response-Time"] = f"{process_time_ms:.2f}ms"

        if process_time_ms > self.SLOW_REQUEST_THRESHOLD_MS:
            logger.warning(
                f"Slow request: {request.method} {request.url.path} "
                f"took {process_time_ms:.2f}ms"
            )

        if settings.debug:
            logger.debug(
                f"{request.method} {request.url.path} - {process_time_ms:.2f}ms"
            )

        return response


# =============================================================================
# Application Lifespan
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Configures logging and the database engine; refuses to start in
    production with the development token secret.
    """
    configure_logging()
    logger.info(f"Starting {settings.app_name} v{settings.app_version} ({settings.environment})")

    if settings.identity_token_secret == _DEV_TOKEN_SECRET:
        if settings.is_production:
            logger.critical("IDENTITY_TOKEN_SECRET still uses the development default. Refusing to start.")
            sys.exit(1)
        logger.warning("Using the development identity token secret")

    get_engine()

    yield

    logger.info("Shutting down...")
    dispose_engine()


# =============================================================================
# Exception Handlers
# =============================================================================

def _error_response(status_code: int, error: str, message: str, details=None) -> JSONResponse:
    content = {"success": False, "error": error, "message": message}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


async def crm_error_handler(request: Request, exc: CRMError) -> JSONResponse:
    """Map domain errors to the standard error envelope."""
    if isinstance(exc, AccessDeniedError):
        logger.warning(f"Access denied on {request.method} {request.url.path}: {exc.reason}")
    elif isinstance(exc, ConfigurationError):
        logger.critical(f"Configuration error on {request.method} {request.url.path}: {exc.message}")
        return _error_response(exc.status_code, exc.error_code, "Server configuration error")

    details = exc.details if isinstance(exc, ValidationError) else None
    return _error_response(exc.status_code, exc.error_code, exc.message, details)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request body/query validation failures use the same 400 envelope."""
    details = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body") or None,
            "message": err.get("msg", "Invalid value"),
            "code": err.get("type"),
        }
        for err in exc.errors()
    ]
    return _error_response(status.HTTP_400_BAD_REQUEST, "validation_error", "Invalid input data", details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    error = {
        status.HTTP_401_UNAUTHORIZED: "unauthorized",
        status.HTTP_403_FORBIDDEN: "access_denied",
        status.HTTP_404_NOT_FOUND: "not_found",
    }.get(exc.status_code, "http_error")
    response = _error_response(exc.status_code, error, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle unhandled exceptions.

    Logs the error and returns a generic message.
    """
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {type(exc).__name__}")
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "internal_error",
        "An unexpected error occurred. Please try again later.",
    )


# =============================================================================
# Application Factory
# =============================================================================

def create_application() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="CRM API: contacts, interactions, pipeline stages, tasks and campaigns.",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )

    # Add GZip compression middleware (compress responses > 1KB)
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    app.add_middleware(PerformanceMonitoringMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Response-Time"],
    )

    app.add_exception_handler(CRMError, crm_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Register routers
    app.include_router(health_router)
    app.include_router(contacts_router, prefix=API_PREFIX)
    app.include_router(tasks_router, prefix=API_PREFIX)
    app.include_router(campaigns_router, prefix=API_PREFIX)

    @app.get("/", tags=["Root"])
    async def root() -> dict:
        """Root endpoint returning API information."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "status": "running",
            "docs": "/docs" if settings.is_development else "disabled",
        }

    return app


app = create_application()


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "taxcrm.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
