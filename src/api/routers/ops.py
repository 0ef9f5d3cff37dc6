import os
import logging

from fastapi import APIRouter, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from api import state
from storage import db

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check() -> dict:
    """Health check endpoint for container orchestration."""
    health = {
        "status": "healthy",
        "profile": os.getenv("DEPLOYMENT_PROFILE", "unknown"),
        "sync_engine": "ready" if state.sync_service is not None else "not_initialized",
    }

    db_health = await db.health_check()
    health["database"] = db_health
    if db_health["status"] != "healthy" or state.sync_service is None:
        health["status"] = "degraded"

    if state.sync_service is not None:
        health["google_oauth_configured"] = state.sync_service.settings.is_configured()

    return health


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
