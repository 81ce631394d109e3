# Server-side persistence for data arriving from candidate devices
# assessment_sync/services/ingestion.py
import os
import shutil
from datetime import timedelta
from pathlib import Path
from typing import BinaryIO

from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import AsyncSession
from werkzeug.utils import secure_filename

from assessment_sync.models.admin import TestResult, SyncLog, RecordingUpload, ClientConnection, utcnow
from assessment_sync.models.enums import SyncStatus
from assessment_sync.models.payloads import TestResultPayload
from assessment_sync.utils.config import settings
from assessment_sync.utils.logger import logger

CHUNK_SIZE = 1024 * 1024


async def find_result_by_idempotency_key(session: AsyncSession, key: str) -> TestResult | None:
    result = await session.execute(select(TestResult).filter_by(idempotency_key=key))
    return result.scalars().first()


async def save_synced_test_result(session: AsyncSession, payload: TestResultPayload) -> tuple[int, bool]:
    """
    Persists a submitted test result and commits.
    Returns (result_id, duplicate). A payload whose idempotency key is already stored
    is not inserted again; the id of the stored row is returned instead.
    """
    if payload.idempotency_key:
        existing = await find_result_by_idempotency_key(session, payload.idempotency_key)
        if existing:
            logger.info(f"Duplicate submission for session {payload.session_id}; returning result {existing.id}")
            return existing.id, True

    answers = [answer.model_dump() for answer in payload.answers]
    test_result = TestResult(
        user_id=payload.user_id,
        event_id=payload.event_id,
        client_session_id=payload.session_id,
        idempotency_key=payload.idempotency_key,
        sync_source="client_sync",
        answer_count=len(answers),
        answers=answers,
        completed_at=payload.completed_at,
    )
    session.add(test_result)
    try:
        await session.commit()
    except IntegrityError:
        # A concurrent request with the same key committed first
        await session.rollback()
        if not payload.idempotency_key:
            raise
        existing = await find_result_by_idempotency_key(session, payload.idempotency_key)
        if existing is None:
            raise
        logger.info(f"Duplicate submission for session {payload.session_id} raced; returning result {existing.id}")
        return existing.id, True
    await session.refresh(test_result)
    return test_result.id, False


async def log_sync(
    session: AsyncSession,
    client_session_id: str,
    user_id: int | None,
    data_type: str,
    status: SyncStatus,
    payload_size: int | None = None,
    client_ip: str | None = None,
    error_message: str | None = None,
) -> int | None:
    """
    Appends an audit row for one ingestion attempt.
    Never raises: a failed audit write is logged and reported as None.
    """
    try:
        entry = SyncLog(
            client_session_id=client_session_id,
            user_id=user_id,
            data_type=data_type,
            payload_size=payload_size,
            client_ip=client_ip,
            status=status.value,
            error_message=error_message,
        )
        session.add(entry)
        await session.commit()
        return entry.id
    except SQLAlchemyError as e:
        logger.error(f"Could not write sync log for session {client_session_id}: {e}")
        await session.rollback()
        return None


async def touch_client_connection(session: AsyncSession, user_id: int | None, client_ip: str | None) -> None:
    """Records that a candidate device was seen. Failures are logged only."""
    if user_id is None:
        return
    try:
        result = await session.execute(select(ClientConnection).filter_by(user_id=user_id))
        connection = result.scalars().first()
        if connection:
            connection.client_ip = client_ip
            connection.status = "active"
            connection.last_seen_at = utcnow()
        else:
            session.add(ClientConnection(user_id=user_id, client_ip=client_ip))
        await session.commit()
    except SQLAlchemyError as e:
        logger.error(f"Could not update client connection for user {user_id}: {e}")
        await session.rollback()


async def get_sync_logs(session: AsyncSession, user_id: int | None = None, limit: int = 100) -> list[SyncLog]:
    query = select(SyncLog)
    if user_id is not None:
        query = query.filter_by(user_id=user_id)
    query = query.order_by(SyncLog.received_at.desc(), SyncLog.id.desc()).limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())


async def get_active_clients(session: AsyncSession, minutes: int = 5) -> list[ClientConnection]:
    cutoff = (utcnow() - timedelta(minutes=minutes)).replace(tzinfo=None)
    result = await session.execute(
        select(ClientConnection)
        .filter(ClientConnection.status == "active", ClientConnection.last_seen_at > cutoff)
        .order_by(ClientConnection.last_seen_at.desc())
    )
    return list(result.scalars().all())


def recording_path(session_id: str, filename: str) -> Path:
    """
    Destination for an uploaded recording: <recordings_dir>/<session_id>/<filename>.
    Raises ValueError if the cleaned names would still land outside recordings_dir.
    """
    safe_session = secure_filename(session_id) or "unknown"
    safe_name = secure_filename(filename) or f"{safe_session}.webm"

    root = Path(settings.recordings_dir).resolve()
    destination = (root / safe_session / safe_name).resolve()
    if not destination.is_relative_to(root) or destination.parent == root:
        raise ValueError(f"Recording path escapes the recordings directory: {session_id!r}, {filename!r}")
    return destination


def store_recording_file(source: BinaryIO, destination: Path) -> int:
    """Streams an uploaded file to disk in chunks and returns the bytes written."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = destination.with_suffix(destination.suffix + ".part")
    with open(tmp_path, "wb") as out:
        shutil.copyfileobj(source, out, CHUNK_SIZE)
    os.replace(tmp_path, destination)
    return destination.stat().st_size


async def save_recording_metadata(
    session: AsyncSession,
    client_session_id: str,
    user_id: int | None,
    recording_type: str,
    file_path: str,
    file_size: int,
) -> int:
    upload = RecordingUpload(
        client_session_id=client_session_id,
        user_id=user_id,
        recording_type=recording_type,
        file_path=file_path,
        file_size=file_size,
    )
    session.add(upload)
    await session.commit()
    await session.refresh(upload)
    return upload.id
