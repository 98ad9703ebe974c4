"""
FastAPI application for the Delivery Review engine.
"""

from __future__ import annotations

import importlib.metadata
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Dict

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .db.base import init_database
from .engine.errors import (
    AlreadyDecided,
    EmptyFeedback,
    InvalidLink,
    InvalidTransition,
    LifecycleError,
    NotAssignee,
    NotFound,
    StorageUnavailable,
)
from .engine.routes import router as engine_router
from .log_config import configure_logging

# Initialize structured logging
configure_logging()
logger = structlog.get_logger()

settings = get_settings()

PACKAGE_NAME = "delivery-review-engine"

ERROR_STATUS_CODES: Dict[type, int] = {
    InvalidTransition: 409,
    AlreadyDecided: 409,
    NotAssignee: 403,
    EmptyFeedback: 422,
    InvalidLink: 410,
    NotFound: 404,
    StorageUnavailable: 503,
}


def _package_version() -> str:
    try:
        return importlib.metadata.version(PACKAGE_NAME)
    except importlib.metadata.PackageNotFoundError:
        return "0.0.0+local"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    # Startup
    logger.info("Starting Delivery Review engine", environment=settings.environment)

    try:
        init_database()
    except Exception as e:
        logger.error("Failed to start application", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    description="Delivery and review lifecycle for outsourced creative production",
    version=_package_version(),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LifecycleError)
async def lifecycle_error_handler(request: Request, exc: LifecycleError) -> JSONResponse:
    """Map engine errors to HTTP responses."""
    status_code = next(
        (code for kind, code in ERROR_STATUS_CODES.items() if isinstance(exc, kind)),
        400,
    )
    if status_code >= 500:
        logger.warning("Storage unavailable", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.get("/health", tags=["system"])
async def health() -> dict:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.get("/version", tags=["system"])
def version() -> dict[str, str]:
    """Return the version of the application."""
    return {"version": _package_version()}


app.include_router(engine_router)
