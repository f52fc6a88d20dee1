"""Furlong FastAPI application.

Race-result ingestion and bet settlement service.
"""

import logging
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from furlong import __version__
from furlong.api.routes import admin, health, performance, settlement
from furlong.config import get_settings
from furlong.services.errors import ConfigurationError, StoreError

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)
settings = get_settings()
logging.basicConfig(format="%(message)s", level=settings.log_level.upper())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(
        "starting_furlong",
        version=__version__,
        store_configured=settings.store_configured,
        provider_configured=settings.provider_configured,
    )
    yield
    logger.info("shutting_down_furlong")


# Create FastAPI application
app = FastAPI(
    title="Furlong",
    description="Race-result ingestion and bet settlement service",
    version=__version__,
    lifespan=lifespan,
)

# Include API routers
app.include_router(health.router)
app.include_router(settlement.router)
app.include_router(performance.router)
app.include_router(admin.router)


# Error handlers
@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    """Missing credentials: fail before any work is attempted."""
    logger.error("configuration_error", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=500,
        content={"success": False, "code": "CONFIGURATION_ERROR", "message": str(exc)},
    )


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    """Data store failures outside a per-race boundary."""
    logger.error(
        "store_error",
        path=request.url.path,
        table=exc.table,
        status_code=exc.status_code,
        error=str(exc),
    )
    return JSONResponse(
        status_code=502,
        content={"success": False, "code": "STORE_ERROR", "message": str(exc)},
    )
