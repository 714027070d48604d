"""Health check endpoints."""

import logging

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from gameshelf import __version__
from gameshelf.api.deps import AppServices, DbSession

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(db: DbSession, services: AppServices) -> dict:
    """Basic health check endpoint."""
    db_healthy = False
    try:
        await db.execute(text("SELECT 1"))
        db_healthy = True
    except SQLAlchemyError as e:
        logger.warning(f"Database health check failed: {e}")

    return {
        "status": "healthy" if db_healthy else "degraded",
        "database": "connected" if db_healthy else "disconnected",
        "metadata_providers": services.matcher.consulted_provider_ids(),
        "scheduler": "running" if services.scheduler.scheduler.running else "stopped",
        "version": __version__,
    }
