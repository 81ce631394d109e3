# assessment_sync/services/events.py
import secrets
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_sync.models.admin import Event
from assessment_sync.utils.logger import logger

# Ambiguous characters (0/O, 1/I) are left out so codes survive being read aloud
EVENT_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
EVENT_CODE_LENGTH = 6


async def generate_event_code(session: AsyncSession) -> str:
    """Returns an access code not yet used by any event."""
    while True:
        code = "".join(secrets.choice(EVENT_CODE_ALPHABET) for _ in range(EVENT_CODE_LENGTH))
        result = await session.execute(select(Event.id).filter_by(event_code=code))
        if result.scalars().first() is None:
            return code


async def create_event(session: AsyncSession, event_name: str, description: str | None = None,
                       status: str = "active") -> Event:
    code = await generate_event_code(session)
    event = Event(event_name=event_name, description=description, status=status, event_code=code)
    session.add(event)
    await session.commit()
    await session.refresh(event)
    logger.info(f"Created event {event.id} '{event_name}' with access code {code}")
    return event


async def get_event_by_code(session: AsyncSession, code: str) -> Event | None:
    result = await session.execute(select(Event).filter_by(event_code=code))
    return result.scalars().first()
