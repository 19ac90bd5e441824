"""FastAPI dependencies resolving the objects ``create_app`` put on ``app.state``."""

from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings
from .connectors.base import ConnectorBase


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_connector(request: Request) -> ConnectorBase:
    return request.app.state.connector


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency that yields one unit of work per request."""
    async with request.app.state.database.session() as session:
        yield session
