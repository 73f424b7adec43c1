from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, get_settings
from .database import async_session
from .domain.errors import NotFoundError
from .infrastructure.repositories import SqlAlchemyEventRepository
from .models import Event


async def get_session() -> AsyncIterator[AsyncSession]:
    async with async_session() as session:
        yield session


def get_app_settings() -> Settings:
    return get_settings()


async def load_event(session: AsyncSession, event_code: str) -> Event:
    event = await SqlAlchemyEventRepository(session).get_by_code(event_code)
    if event is None:
        raise NotFoundError("event not found")
    return event
