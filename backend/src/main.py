# pyright: reportMissingTypeStubs=false
"""
Clinic Planning Backend API

A FastAPI application orchestrating provider availability and appointment
booking for a clinic.

Features:
- Provider weekly availability (specific week, template, default)
- Multi-day slot search against the slot-computation service
- Single and linked multi-treatment booking
- Appointment duplication onto a new date
"""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import availability, planning
from core.constants import CORS_ORIGINS
from core.database import create_tables
from core.exceptions import (
    AppointmentNotFound,
    BookingConflict,
    InvalidDate,
    InvalidRequest,
    InvalidStatusTransition,
    InvalidTimeRange,
    SchedulingError,
    SlotServiceUnavailable,
    StaleSearchGeneration,
)
from services.scheduling_client import SchedulingServiceClient

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

logger = logging.getLogger(__name__)
logger.info("🏥 Clinic Planning API starting...")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("🚀 Starting Clinic Planning Backend API")

    try:
        await create_tables()
        logger.info("✅ Database tables ready")
    except Exception as e:
        logger.exception(f"❌ Failed to create database tables: {e}")

    app.state.scheduling_client = SchedulingServiceClient()
    logger.info("✅ Slot-computation client created")

    yield

    try:
        await app.state.scheduling_client.aclose()
        logger.info("🛑 Slot-computation client closed")
    except Exception as e:
        logger.exception(f"❌ Error closing slot-computation client: {e}")

    logger.info("🛑 Shutting down Clinic Planning Backend API")


# Create FastAPI application
app = FastAPI(
    title="Clinic Planning Backend",
    description="Provider availability, slot search and appointment booking",
    version="1.0.0",
    docs_url="/docs",  # Swagger UI
    redoc_url="/redoc",  # ReDoc
    lifespan=lifespan,
)

# CORS middleware for frontend integration
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(
    availability.router,
    prefix="/api/availability",
    tags=["availability"],
    responses={
        400: {"description": "Bad request"},
        500: {"description": "Internal server error"},
    },
)
app.include_router(
    planning.router,
    prefix="/api/planning",
    tags=["planning"],
    responses={
        400: {"description": "Bad request"},
        404: {"description": "Resource not found"},
        409: {"description": "Conflict"},
        503: {"description": "Slot-computation service unavailable"},
        500: {"description": "Internal server error"},
    },
)


@app.get(
    "/",
    summary="Root endpoint",
    description="Returns basic API information",
)
async def root() -> dict[str, str]:
    """Get API name, version and status."""
    return {
        "message": "Clinic Planning Backend API",
        "version": "1.0.0",
        "status": "running"
    }


@app.get(
    "/health",
    summary="Health check",
    description="Returns the health status of the API",
)
async def health_check() -> dict[str, str]:
    """Check if the API is healthy and responding."""
    return {"status": "healthy"}


def scheduling_error_status(exc: SchedulingError) -> int:
    """HTTP status for a scheduling error."""
    if isinstance(exc, (InvalidDate, InvalidTimeRange, InvalidRequest)):
        return 400
    if isinstance(exc, AppointmentNotFound):
        return 404
    if isinstance(exc, (BookingConflict, InvalidStatusTransition, StaleSearchGeneration)):
        return 409
    if isinstance(exc, SlotServiceUnavailable):
        return 503
    return 500


# Global exception handlers
@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    """Handle availability, search and booking errors."""
    status_code = scheduling_error_status(exc)
    if status_code >= 500:
        logger.exception(f"Scheduling error: {exc.message}")
    else:
        logger.warning(f"{type(exc).__name__}: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "type": exc.code, "retryable": exc.retryable},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions globally."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "type": "internal_error"},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    """Handle malformed time, date or slot payloads that surface as ValueError."""
    logger.warning(f"ValueError: {exc}")
    return JSONResponse(
        status_code=400,
        content={"detail": str(exc), "type": "validation_error"},
    )


@app.exception_handler(httpx.HTTPStatusError)
async def http_status_error_handler(request: Request, exc: httpx.HTTPStatusError):
    """Handle error responses from the slot-computation service."""
    logger.exception(f"External service error: {exc}")
    return JSONResponse(
        status_code=502,
        content={"detail": "External service error", "type": "external_service_error"},
    )
