"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from gameshelf import __version__
from gameshelf.api.routes import api_router
from gameshelf.config import settings
from gameshelf.database import async_session_maker, engine, init_db
from gameshelf.exceptions import (
    DirectoryMappingConflictError,
    GameshelfError,
    NoMetadataProvidersError,
    NotFoundError,
    ScanAlreadyRunningError,
    ScheduleConfigurationError,
)
from gameshelf.services import Services, build_services

logger = logging.getLogger(__name__)

ERROR_STATUS = [
    (NotFoundError, 404),
    (ScanAlreadyRunningError, 409),
    (DirectoryMappingConflictError, 409),
    (NoMetadataProvidersError, 409),
    (ScheduleConfigurationError, 422),
]


def status_for(exc: GameshelfError) -> int:
    for exc_type, status_code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return status_code
    return 400


async def gameshelf_error_handler(request: Request, exc: GameshelfError) -> JSONResponse:
    return JSONResponse(status_code=status_for(exc), content=exc.to_dict())


def configure_logging(level: str = settings.log_level) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_app(services: Services | None = None, db_engine: AsyncEngine | None = None) -> FastAPI:
    """Build the application around a set of services."""
    if services is None:
        services = build_services(settings, async_session_maker)
        db_engine = db_engine or engine

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        configure_logging(services.settings.log_level)
        services.settings.ensure_directories()
        if db_engine is not None:
            await init_db(db_engine)

        await services.start()
        logger.info(f"Gameshelf {__version__} started")

        yield

        await services.stop()

    app = FastAPI(
        title="Gameshelf",
        description="A self-hosted game library manager",
        version=__version__,
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=services.settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
    )
    app.add_exception_handler(GameshelfError, gameshelf_error_handler)
    app.include_router(api_router, prefix="/api/v1")

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "Gameshelf",
            "version": __version__,
            "docs": "/api/docs",
        }

    return app


app = create_app()
