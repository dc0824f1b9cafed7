"""FastAPI application setup and configuration."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from ez_ticketing import __version__
from ez_ticketing.config import settings
from ez_ticketing.api import api_router
from ez_ticketing.database import init_database, close_database
from ez_ticketing.middleware import (
    ErrorHandlerMiddleware,
    LoggingMiddleware,
    request_validation_exception_handler,
)
from ez_ticketing.utils.logging_config import setup_logging

setup_logging(
    log_level="DEBUG" if settings.debug else settings.log_level,
    log_file=settings.log_file,
    enable_json_logging=settings.enable_json_logging or settings.environment == "production"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    logger.info("Starting EZ Ticketing")
    await init_database()
    yield
    logger.info("Shutting down EZ Ticketing")
    await close_database()


app = FastAPI(
    title="EZ Ticketing API",
    description="""
    ## EZ Ticketing

    Inventory allocation and notification service for event ticketing.

    * **Bookings**: atomic capacity reservation with server-side seat checks
    * **Waitlist**: FIFO queue per event and ticket type with 48 hour offers
    * **Notifications**: deduplicated admin broadcasts to recipient cohorts

    ### Authentication

    Send a JWT access token as `Authorization: Bearer <token>`.

    ### Errors

    ```json
    {
      "error": {
        "error_code": "INSUFFICIENT_CAPACITY",
        "message": "Not enough tickets available: requested 2, available 1",
        "details": {"requested": 2, "available": 1},
        "suggestions": ["Join the waitlist"]
      },
      "error_id": "...",
      "timestamp": "..."
    }
    ```
    """,
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "bookings", "description": "Ticket booking and seat map operations"},
        {"name": "waitlist", "description": "Waitlist management for sold-out events"},
        {"name": "notifications", "description": "Admin broadcasts and templates"},
        {"name": "health", "description": "System health endpoints"},
    ],
    lifespan=lifespan,
)

# Last added runs outermost; error responses still get X-Request-ID
app.add_middleware(ErrorHandlerMiddleware, debug=settings.debug)
app.add_middleware(LoggingMiddleware)

if settings.debug:
    cors_origins = ["*"]
    cors_allow_credentials = False  # Cannot use credentials with wildcard origins
else:
    cors_origins = settings.cors_origins
    cors_allow_credentials = settings.cors_allow_credentials

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
    expose_headers=settings.cors_expose_headers
)

app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

app.include_router(api_router)


@app.get("/", tags=["health"])
async def root():
    """Basic information about the API."""
    return {
        "message": "EZ Ticketing API",
        "version": __version__,
        "docs_url": "/docs",
        "status": "operational"
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Liveness probe."""
    return {"status": "healthy", "service": "ez-ticketing"}
