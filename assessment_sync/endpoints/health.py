# assessment_sync/endpoints/health.py
from datetime import datetime, timezone
from fastapi import APIRouter

from assessment_sync.models.payloads import HealthResponse
from assessment_sync.utils.config import settings

router = APIRouter(
    tags=["Health"]
)

@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Connectivity check for candidate devices. Carries no business meaning."""
    return HealthResponse(
        status="ok",
        version=settings.app_version,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
