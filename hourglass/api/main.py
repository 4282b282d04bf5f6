"""
hourglass.api.main — FastAPI application entry point
=====================================================

Serves leaderboards, member stats and timezone lookups to the dashboard,
plus the JWT-guarded admin surface (timezone overrides, forced resets,
scheduler status).  The bot process owns the scheduled reset loops; this
process only runs passes an admin forces, and reads the status rows the
bot writes.

Run with::

    uvicorn hourglass.api.main:app --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from hourglass.api.deps import (  # noqa: E402
    get_config,
    get_engine,
    get_scheduler,
    get_stats_cache,
)
from hourglass.api.routes.admin import router as admin_router  # noqa: E402
from hourglass.api.routes.public import router as public_router  # noqa: E402
from hourglass.services.reset_service import ResetScheduler  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Dashboard origins: ``CORS_ALLOW_ORIGINS`` (comma-separated), else ``FRONTEND_URL``."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "") or os.getenv("FRONTEND_URL", "")
    return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the admin-side scheduler and report its health before serving."""
    engine = get_engine()
    cfg = get_config()
    scheduler = get_scheduler(engine, cfg, get_stats_cache())
    app.state.scheduler = scheduler

    report = await scheduler.health_check()
    logger.info(
        "Hourglass API ready for %s (server timezone %s, database %s): %s",
        cfg.community_name, cfg.server_timezone, engine.url.database, report["status"],
    )
    yield
    scheduler.stop()
    logger.info("Hourglass API shutting down")


app = FastAPI(
    title="Hourglass Voice Hours API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(public_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
async def health(
    response: Response,
    scheduler: ResetScheduler = Depends(get_scheduler),
):
    """Database and timezone checks; 503 while either is failing."""
    report = await scheduler.health_check()
    if report["status"] != "healthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {"status": report["status"], "checks": report["checks"]}
