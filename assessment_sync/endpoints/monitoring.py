# Operator views onto the sync pipeline's health
# assessment_sync/endpoints/monitoring.py
from typing import List
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_sync.models.payloads import SyncLogResponse, ClientConnectionResponse
from assessment_sync.services import ingestion
from assessment_sync.utils.db import get_db

router = APIRouter(
    tags=["Monitoring"]
)

@router.get("/sync-logs", response_model=List[SyncLogResponse])
async def list_sync_logs(
    user_id: int | None = None,
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    logs = await ingestion.get_sync_logs(db, user_id=user_id, limit=limit)
    return [
        SyncLogResponse(
            id=log.id,
            client_session_id=log.client_session_id,
            user_id=log.user_id,
            data_type=log.data_type,
            payload_size=log.payload_size,
            client_ip=log.client_ip,
            status=log.status,
            error_message=log.error_message,
            received_at=log.received_at.isoformat(),
        )
        for log in logs
    ]

@router.get("/clients/active", response_model=List[ClientConnectionResponse])
async def list_active_clients(minutes: int = Query(5, ge=1, le=1440), db: AsyncSession = Depends(get_db)):
    clients = await ingestion.get_active_clients(db, minutes=minutes)
    return [
        ClientConnectionResponse(
            user_id=client.user_id,
            client_ip=client.client_ip,
            status=client.status,
            last_seen_at=client.last_seen_at.isoformat(),
        )
        for client in clients
    ]
