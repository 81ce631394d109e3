# assessment_sync/endpoints/events.py
from fastapi import APIRouter, HTTPException, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_sync.models.payloads import EventResponse
from assessment_sync.services.events import get_event_by_code
from assessment_sync.utils.db import get_db
from assessment_sync.utils.logger import logger

router = APIRouter(
    tags=["Events"]
)

@router.get("/events/{code}", response_model=EventResponse)
async def get_event(code: str, db: AsyncSession = Depends(get_db)):
    """
    Looks up an event by its access code. Read-only; nothing is logged to the audit trail.
    """
    logger.debug(f"GET /api/events/{code}")
    event = await get_event_by_code(db, code)
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    return EventResponse(
        id=event.id,
        event_name=event.event_name,
        event_code=event.event_code or "",
        description=event.description,
        status=event.status,
    )
