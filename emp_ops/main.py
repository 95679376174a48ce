"""Main FastAPI application."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from emp_ops.api.v1 import api_router
from emp_ops.core.config import settings
from emp_ops.core.errors import (
    APIException,
    EmpOpsError,
    api_exception_handler,
    domain_exception_handler,
    generic_exception_handler,
)
from emp_ops.core.logging_config import configure_logging
from emp_ops.core.metrics import metrics_response
from emp_ops.db.session import AsyncSessionLocal, Base, engine
from emp_ops.db.storage import StorageClient
from emp_ops.integrations.adapters import AdapterFactory
from emp_ops.scheduler import shutdown_scheduler, start_scheduler
from emp_ops.schemas.common import HealthResponse

# Import all models so they're registered with Base.metadata
from emp_ops import models  # noqa: F401

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    configure_logging()
    logger.info(
        "Starting %s v%s (%s)",
        settings.APP_NAME,
        settings.APP_VERSION,
        settings.ENVIRONMENT,
        extra={"event_type": "app.startup"},
    )

    # Only auto-create tables in development/local environments.
    # In production, use Alembic migrations: alembic upgrade head
    if settings.ENVIRONMENT in ("local", "development", "dev"):
        logger.warning("Auto-creating database tables (development mode)")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    await start_scheduler()

    yield

    logger.info("Shutting down...", extra={"event_type": "app.shutdown"})
    await shutdown_scheduler()
    await AdapterFactory.close()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="SEPA Direct Debit batch operations for emerchantpay",
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    docs_url=f"{settings.API_V1_PREFIX}/docs",
    redoc_url=f"{settings.API_V1_PREFIX}/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)

app.add_exception_handler(APIException, api_exception_handler)
app.add_exception_handler(EmpOpsError, domain_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """
    Health check with a real database round trip.

    Returns 503 Service Unavailable when the database is unreachable.
    """
    healthy = await StorageClient(AsyncSessionLocal, engine).ping()

    response = HealthResponse(
        status="healthy" if healthy else "unhealthy",
        version=settings.APP_VERSION,
        database="connected" if healthy else "error",
        gateway_adapter=settings.GATEWAY_ADAPTER,
        timestamp=datetime.now(timezone.utc),
    )

    if not healthy:
        return JSONResponse(
            status_code=503,
            content=response.model_dump(mode="json"),
        )

    return response


if settings.EXPOSE_METRICS:

    @app.get("/metrics", tags=["Health"], include_in_schema=False)
    async def metrics():
        return metrics_response()


app.include_router(api_router, prefix=settings.API_V1_PREFIX)


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": f"{settings.API_V1_PREFIX}/docs",
    }
