"""API routes."""

from fastapi import APIRouter

from gameshelf.api.routes import games, health, jobs, libraries, scans, settings

api_router = APIRouter()

api_router.include_router(health.router, tags=["Health"])
api_router.include_router(libraries.router, prefix="/libraries", tags=["Libraries"])
api_router.include_router(games.router, prefix="/games", tags=["Games"])
api_router.include_router(scans.router, prefix="/scans", tags=["Scans"])
api_router.include_router(jobs.router, prefix="/jobs", tags=["Jobs"])
api_router.include_router(settings.router, prefix="/settings", tags=["Settings"])
