"""
FastAPI application for mathflat-sync.

Provides REST endpoints for:
- Daily activity collection
- Homework collection
- Wrong-answer detail collection (self-chaining)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from config import get_settings
from mathflat_sync import __version__
from mathflat_sync.api.auth import Unauthorized
from mathflat_sync.core.exceptions import ConfigurationError
from mathflat_sync.db.database import check_connection, init_db

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    logger.info("Starting mathflat-sync service...")
    init_db()
    logger.info("Service started on {}:{}", settings.api_host, settings.api_port)

    yield

    logger.info("Shutting down mathflat-sync service...")


app = FastAPI(
    title="MathFlat Sync",
    description="""
    Ingestion pipeline for MathFlat learning activity.

    ## Phases

    - **Daily activity**: per-student exercise counts for a date
    - **Homework**: per-class homework with worksheet problem counts
    - **Wrong-answer detail**: per-problem detail for every activity with
      wrong answers, time-boxed and continued across chained calls
    """,
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(Unauthorized)
async def unauthorized_handler(request: Request, exc: Unauthorized) -> JSONResponse:
    return JSONResponse(status_code=401, content={"error": "Unauthorized"})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error("Configuration error: {}", exc)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "message": str(exc)},
    )


# ========================================
# Health & Status Endpoints
# ========================================


@app.get("/", tags=["Health"])
def root() -> dict[str, str]:
    """Root endpoint returning service info."""
    return {
        "service": "mathflat-sync",
        "version": __version__,
        "status": "ok",
    }


@app.get("/health", tags=["Health"])
def health_check() -> dict[str, Any]:
    """Store connectivity and which integrations are configured."""
    db_status, db_error = check_connection()

    result: dict[str, Any] = {
        "status": "healthy" if db_status == "ok" else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "components": {
            "database": db_status,
            "mathflat": "configured" if settings.has_mathflat_credentials() else "not_configured",
            "cron_secret": "configured" if settings.cron_secret else "not_configured",
            "identity_provider": "configured" if settings.has_identity_provider() else "not_configured",
        },
        "config": settings.get_collection_config(),
    }
    if db_error:
        result["errors"] = {"database": db_error}
    return result


# ========================================
# Import and mount routers
# ========================================

from mathflat_sync.api.routers import collect_router  # noqa: E402

app.include_router(collect_router.router, prefix="/api/collect", tags=["Collect"])
