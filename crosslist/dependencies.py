from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from crosslist.database import async_session
from crosslist.integrations.registry import SyncServices


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


def get_services(request: Request) -> SyncServices:
    return request.app.state.services