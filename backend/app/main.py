"""
FastAPI Application Entry Point.

This is the main application file for the ZapShift Backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from backend.app.core.config import settings
from backend.app.core.observability import ObservabilityMiddleware, configure_logging
from backend.app.api.v1.router import router as api_v1_router
from backend.app.db.session import Base, create_engine, create_session_factory
from backend.app.integrations.stripe_gateway import StripeGateway
from backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from backend.app.models.parcel import Parcel
from backend.app.models.payment_record import PaymentRecord
from backend.app.models.audit_log import AuditLog

logger = logging.getLogger("zapshift")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates the database engine and tables.
    2. Creates the payment gateway client.
    3. Releases both on shutdown.
    """
    configure_logging(settings.log_level)

    engine = create_engine(settings)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.engine = engine
    app.state.session_factory = create_session_factory(engine)
    app.state.gateway = StripeGateway.from_settings(settings)
    logger.info("Startup complete", extra={"app": settings.app_name})

    yield

    await app.state.gateway.close()
    await engine.dispose()
    logger.info("Shutdown complete")


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Parcel shipping backend with checkout and payment reconciliation",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status and application information
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "ZapShift Backend Server Running",
        "docs": "/docs",
        "health": "/health",
    }
