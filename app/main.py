"""
Qub Drive Identity - FastAPI Application

Main entry point for the application.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.database import close_db, init_db
from app.core.exceptions import IdentityError
from app.api.v1 import router as api_v1_router


logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    logger.info(f"Starting Qub Drive Identity ({settings.ENVIRONMENT})")
    if settings.is_development:
        await init_db()
    yield
    logger.info("Shutting down Qub Drive Identity")
    await close_db()


# Create FastAPI application
app = FastAPI(
    title="Qub Drive Identity",
    description="Registration, password reset, login and session management for Qub Drive.",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(IdentityError)
async def identity_error_handler(request: Request, exc: IdentityError) -> JSONResponse:
    """Render service errors as ``{"detail": ..., **details}``."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, **exc.details()},
        headers=exc.headers() or None,
    )


# Include API routers
app.include_router(api_v1_router, prefix="/api/v1")


@app.get("/health", tags=["Health"])
async def health_check() -> dict:
    """
    Health check endpoint.

    Returns:
        dict: Health status and environment info.
    """
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "version": "0.1.0",
    }


@app.get("/", tags=["Root"])
async def root() -> dict:
    return {
        "message": "Welcome to Qub Drive Identity API",
        "docs": "/docs",
        "health": "/health",
    }
