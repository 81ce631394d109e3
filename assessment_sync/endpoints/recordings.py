# assessment_sync/endpoints/recordings.py
import asyncio
from fastapi import APIRouter, HTTPException, Depends, Request, Form, File, UploadFile
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_sync.models.enums import SyncDataType, SyncStatus
from assessment_sync.models.payloads import SubmitResponse
from assessment_sync.services import ingestion
from assessment_sync.utils.db import get_db
from assessment_sync.utils.logger import logger

router = APIRouter(
    tags=["Recordings"]
)

@router.post("/recordings", response_model=SubmitResponse)
async def submit_recording(
    request: Request,
    session_id: str | None = Form(None),
    recording_type: str | None = Form(None),
    user_id: int | None = Form(None),
    video: UploadFile | None = File(None),
    db: AsyncSession = Depends(get_db),
):
    """Stores an uploaded surveillance recording under the candidate's session directory."""
    client_ip = request.client.host if request.client else None
    data_type = SyncDataType.RECORDING.value

    if not session_id or not recording_type or video is None:
        missing = [name for name, value in (("session_id", session_id), ("recording_type", recording_type), ("video", video)) if not value]
        logger.warning(f"Rejected recording upload, missing fields: {missing}")
        await ingestion.log_sync(
            db, session_id or "", user_id, data_type, SyncStatus.FAILED,
            client_ip=client_ip, error_message=f"Missing fields: {', '.join(missing)}",
        )
        raise HTTPException(status_code=400, detail=f"Missing fields: {', '.join(missing)}")

    logger.info(f"POST /api/recordings - Session: {session_id} ({recording_type})")
    filename = video.filename or f"{recording_type}.webm"
    try:
        destination = ingestion.recording_path(session_id, filename)
    except ValueError as e:
        logger.warning(f"Rejected recording upload for session {session_id!r}: {e}")
        await video.close()
        await ingestion.log_sync(
            db, session_id, user_id, data_type, SyncStatus.FAILED,
            client_ip=client_ip, error_message=str(e),
        )
        raise HTTPException(status_code=400, detail="Invalid recording file name")

    try:
        file_size = await asyncio.to_thread(ingestion.store_recording_file, video.file, destination)
    except OSError as e:
        logger.exception(f"Error writing recording for session {session_id}: {e}")
        await ingestion.log_sync(
            db, session_id, user_id, data_type, SyncStatus.FAILED,
            client_ip=client_ip, error_message=str(e),
        )
        raise HTTPException(status_code=500, detail="Failed to store recording")
    finally:
        await video.close()

    try:
        await ingestion.save_recording_metadata(db, session_id, user_id, recording_type, str(destination), file_size)
    except SQLAlchemyError as e:
        logger.exception(f"Error saving recording metadata for session {session_id}: {e}")
        await db.rollback()
        await ingestion.log_sync(
            db, session_id, user_id, data_type, SyncStatus.FAILED,
            payload_size=file_size, client_ip=client_ip, error_message=str(e),
        )
        raise HTTPException(status_code=500, detail="Failed to record recording metadata")

    await ingestion.log_sync(
        db, session_id, user_id, data_type, SyncStatus.SUCCESS,
        payload_size=file_size, client_ip=client_ip,
    )
    await ingestion.touch_client_connection(db, user_id, client_ip)
    logger.info(f"Recording saved: {destination} ({file_size} bytes)")

    return SubmitResponse(
        success=True,
        message=f"Recording uploaded successfully: {destination.name}",
    )
