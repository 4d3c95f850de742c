"""
FastAPI application for the study planner.

Provides REST API for:
- Goals and their topics
- Study session logging
- Review queue (topics due for review, most urgent first)
- Daily plans (stored, generated, deleted)
- Whole-state access per user key
"""

from __future__ import annotations

import sys
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import get_settings
from src.db.database import check_database_health, init_db
from src.planner import NotFoundError, PlannerError, StateConflict, StorageFailure, ValidationError

settings = get_settings()


def configure_logging() -> None:
    """Configure loguru sinks from settings."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=settings.log_level,
        format="<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}",
    )
    if settings.log_file:
        logger.add(settings.log_file, level=settings.log_level, rotation="10 MB", retention=5)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    # Startup
    configure_logging()
    logger.info("Starting study planner service...")
    init_db()
    logger.info(f"Service started on {settings.api_host}:{settings.api_port}")

    yield

    # Shutdown
    logger.info("Shutting down study planner service...")
    planner_router.close_planner_service()


app = FastAPI(
    title="Study Planner",
    description="""
    Per-user study planning backend.

    ## Features

    - **Goals & Topics**: Exams, projects and commitments broken into reviewable topics
    - **Sessions**: Logged study time updates review history and mastery
    - **Review Queue**: Spaced repetition + memory decay ranking of what to review next
    - **Daily Plans**: One plan per day, generated remotely or from the review queue

    Every request is scoped to a user key taken from `X-User-Id` or `?userId=`.
    """,
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for the web frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-User-Id"],
)


# ========================================
# Error Translation
# ========================================


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": exc.message})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": exc.message})


@app.exception_handler(StateConflict)
async def state_conflict_handler(request: Request, exc: StateConflict) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path} conflicted: {exc.message}")
    return JSONResponse(status_code=409, content={"error": "Conflict", "message": exc.message})


@app.exception_handler(StorageFailure)
async def storage_failure_handler(request: Request, exc: StorageFailure) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=500, content={"error": "Internal server error", "message": exc.message})


@app.exception_handler(PlannerError)
async def planner_error_handler(request: Request, exc: PlannerError) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=500, content={"error": "Internal server error", "message": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


# ========================================
# Health & Status Endpoints
# ========================================


@app.get("/", tags=["Health"])
def root() -> dict[str, str]:
    """Root endpoint returning service info."""
    return {
        "service": "study-planner",
        "version": "0.1.0",
        "status": "ok",
    }


@app.get("/health", tags=["Health"])
def health_check() -> dict[str, Any]:
    """Health check with an actual database connectivity test."""
    db_status, db_error = check_database_health()

    result = {
        "status": "healthy" if db_status == "ok" else "unhealthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "components": {
            "database": db_status,
            "plan_generator": "configured" if settings.has_plan_generator() else "fallback_only",
        },
    }
    if db_error:
        result["errors"] = {"database": db_error}
    return result


# ========================================
# Import and mount routers
# ========================================

from src.api.routers import planner_router  # noqa: E402

app.include_router(planner_router.router, prefix="/api", tags=["Planner"])
