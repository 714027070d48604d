"""API dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from gameshelf.services import Services


def get_services(request: Request) -> Services:
    """Services built at startup and stored on the application."""
    return request.app.state.services


AppServices = Annotated[Services, Depends(get_services)]


async def get_db(services: AppServices) -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session."""
    async with services.session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


DbSession = Annotated[AsyncSession, Depends(get_db)]
