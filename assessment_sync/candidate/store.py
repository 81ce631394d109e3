# Local durable store of a candidate device: sessions, answers, recordings and the sync queue
# assessment_sync/candidate/store.py
import asyncio
import json
import uuid
from pathlib import Path

from sqlalchemy import update, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.future import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker

from assessment_sync.candidate.errors import SessionConflict, SessionNotFound, SerializationError
from assessment_sync.models.admin import utcnow
from assessment_sync.models.candidate import (
    CandidateBase,
    LocalSession,
    LocalAnswer,
    SyncQueueItem,
    LocalRecording,
    EventCache,
)
from assessment_sync.models.enums import SessionStatus, SyncDataType, RecordingType
from assessment_sync.utils.config import settings
from assessment_sync.utils.logger import logger


def _isoformat(value) -> str | None:
    return value.isoformat() if value is not None else None


class CandidateStore:
    """
    Transactional access to the candidate's SQLite database.

    The sync queue discipline lives here: `fetch_pending` only ever returns items that are
    unsynced and still below the attempt ceiling, and `mark_synced` / `increment_attempt`
    are the only outcome transitions. Both are conditional on the item still being unsynced,
    so a second worker racing on the same item cannot undo a success.
    """

    def __init__(self, database_url: str | None = None, recordings_dir: str | None = None,
                 max_attempts: int | None = None):
        self.engine = create_async_engine(database_url or settings.candidate_database_url, echo=False)
        self.session_factory = sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        self.recordings_dir = Path(recordings_dir or settings.candidate_recordings_dir)
        self.max_attempts = max_attempts or settings.sync_max_attempts

    async def init_schema(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(CandidateBase.metadata.create_all)

    async def close(self):
        await self.engine.dispose()

    # ===== Sessions =====

    async def create_session(self, session_id: str, event_id: int, user_id: int,
                             event_code: str | None = None) -> str:
        async with self.session_factory() as session:
            session.add(LocalSession(
                session_id=session_id,
                event_id=event_id,
                user_id=user_id,
                event_code=event_code,
            ))
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise SessionConflict(f"Session '{session_id}' already exists") from e
        logger.info(f"Created local session {session_id} (event {event_id}, user {user_id})")
        return session_id

    async def get_session(self, session_id: str) -> LocalSession | None:
        async with self.session_factory() as session:
            return await session.get(LocalSession, session_id)

    async def update_session_status(self, session_id: str, status: SessionStatus):
        async with self.session_factory() as session:
            result = await session.execute(
                update(LocalSession)
                .where(LocalSession.session_id == session_id)
                .values(status=status.value)
            )
            await session.commit()
        if result.rowcount == 0:
            raise SessionNotFound(session_id)

    async def complete_session(self, session_id: str):
        async with self.session_factory() as session:
            await self._complete(session, session_id)
            await session.commit()

    async def _complete(self, session: AsyncSession, session_id: str):
        result = await session.execute(
            update(LocalSession)
            .where(LocalSession.session_id == session_id)
            .values(status=SessionStatus.COMPLETED.value, completed_at=utcnow())
        )
        if result.rowcount == 0:
            raise SessionNotFound(session_id)

    async def complete_session_and_enqueue(self, session_id: str, priority: int | None = None) -> int:
        """
        Finishes a session and queues its result for upload in a single transaction,
        so the worker can never see the queue item without the completed session behind it.
        """
        async with self.session_factory() as session:
            await self._complete(session, session_id)
            snapshot = await self._answer_snapshot(session, session_id)
            queue_id = await self._enqueue(
                session,
                SyncDataType.TEST_RESULT,
                session_id,
                {"session_id": session_id, "answers": snapshot},
                settings.test_result_priority if priority is None else priority,
            )
            await session.commit()
        logger.info(f"Session {session_id} completed with {len(snapshot)} answer(s); queued as item {queue_id}")
        return queue_id

    # ===== Answers =====

    async def save_answer(self, session_id: str, question_id: int, answer: str | None = None) -> int:
        """Appends an answer row. Re-answering a question adds a row; the latest one wins at sync time."""
        async with self.session_factory() as session:
            if await session.get(LocalSession, session_id) is None:
                raise SessionNotFound(session_id)
            local_answer = LocalAnswer(session_id=session_id, question_id=question_id, answer=answer)
            session.add(local_answer)
            await session.commit()
            return local_answer.id

    async def get_session_answers(self, session_id: str) -> list[LocalAnswer]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(LocalAnswer)
                .filter_by(session_id=session_id)
                .order_by(LocalAnswer.answered_at, LocalAnswer.id)
            )
            return list(result.scalars().all())

    async def answer_snapshot(self, session_id: str) -> list[dict]:
        """Latest answer per distinct question, ordered by question id."""
        async with self.session_factory() as session:
            return await self._answer_snapshot(session, session_id)

    async def _answer_snapshot(self, session: AsyncSession, session_id: str) -> list[dict]:
        result = await session.execute(
            select(LocalAnswer)
            .filter_by(session_id=session_id)
            .order_by(LocalAnswer.answered_at, LocalAnswer.id)
        )
        latest: dict[int, LocalAnswer] = {}
        for row in result.scalars().all():
            latest[row.question_id] = row
        return [
            {
                "question_id": question_id,
                "answer": row.answer,
                "answered_at": _isoformat(row.answered_at),
            }
            for question_id, row in sorted(latest.items())
        ]

    # ===== Sync Queue =====

    async def enqueue(self, data_type: SyncDataType, session_id: str, payload: dict | str,
                      priority: int) -> int:
        async with self.session_factory() as session:
            queue_id = await self._enqueue(session, data_type, session_id, payload, priority)
            await session.commit()
            return queue_id

    async def _enqueue(self, session: AsyncSession, data_type: SyncDataType, session_id: str,
                       payload: dict | str, priority: int) -> int:
        if isinstance(payload, str):
            serialized = payload
        else:
            try:
                serialized = json.dumps(payload)
            except (TypeError, ValueError) as e:
                raise SerializationError(f"Queue payload for session {session_id} is not JSON serializable: {e}") from e
        item = SyncQueueItem(
            data_type=SyncDataType(data_type).value,
            session_id=session_id,
            payload=serialized,
            priority=priority,
        )
        session.add(item)
        await session.flush()
        return item.id

    async def get_queue_item(self, queue_id: int) -> SyncQueueItem | None:
        async with self.session_factory() as session:
            return await session.get(SyncQueueItem, queue_id)

    async def fetch_pending(self, limit: int | None = None) -> list[SyncQueueItem]:
        """Unsynced items still under the retry ceiling, most urgent first, FIFO within a priority."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncQueueItem)
                .filter(SyncQueueItem.synced.is_(False), SyncQueueItem.sync_attempts < self.max_attempts)
                .order_by(SyncQueueItem.priority.asc(), SyncQueueItem.created_at.asc(), SyncQueueItem.id.asc())
                .limit(settings.sync_batch_size if limit is None else limit)
            )
            return list(result.scalars().all())

    async def mark_synced(self, queue_id: int) -> bool:
        """Returns False when the item was already synced (or does not exist)."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(SyncQueueItem)
                .where(SyncQueueItem.id == queue_id, SyncQueueItem.synced.is_(False))
                .values(synced=True, synced_at=utcnow())
            )
            await session.commit()
        return result.rowcount == 1

    async def increment_attempt(self, queue_id: int, error: str | None = None, exhaust: bool = False) -> bool:
        """
        Records a failed attempt. With `exhaust`, the item jumps straight to the ceiling
        and becomes a dead item. Synced items are left untouched.
        """
        attempts = SyncQueueItem.sync_attempts + 1
        if exhaust:
            attempts = func.max(attempts, self.max_attempts)
        async with self.session_factory() as session:
            result = await session.execute(
                update(SyncQueueItem)
                .where(SyncQueueItem.id == queue_id, SyncQueueItem.synced.is_(False))
                .values(sync_attempts=attempts, last_attempt_at=utcnow(), last_error=error)
            )
            await session.commit()
        return result.rowcount == 1

    async def count_pending(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(SyncQueueItem.id))
                .filter(SyncQueueItem.synced.is_(False), SyncQueueItem.sync_attempts < self.max_attempts)
            )
            return result.scalar_one()

    async def count_dead(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(SyncQueueItem.id))
                .filter(SyncQueueItem.synced.is_(False), SyncQueueItem.sync_attempts >= self.max_attempts)
            )
            return result.scalar_one()

    async def last_error(self) -> str | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncQueueItem.last_error)
                .filter(SyncQueueItem.synced.is_(False), SyncQueueItem.last_error.is_not(None))
                .order_by(SyncQueueItem.last_attempt_at.desc(), SyncQueueItem.id.desc())
                .limit(1)
            )
            return result.scalars().first()

    async def list_dead_items(self) -> list[SyncQueueItem]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncQueueItem)
                .filter(SyncQueueItem.synced.is_(False), SyncQueueItem.sync_attempts >= self.max_attempts)
                .order_by(SyncQueueItem.created_at.asc(), SyncQueueItem.id.asc())
            )
            return list(result.scalars().all())

    async def requeue_item(self, queue_id: int) -> bool:
        """Gives a dead item a fresh retry budget. Refuses items that are synced or still live."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(SyncQueueItem)
                .where(
                    SyncQueueItem.id == queue_id,
                    SyncQueueItem.synced.is_(False),
                    SyncQueueItem.sync_attempts >= self.max_attempts,
                )
                .values(sync_attempts=0, last_error=None)
            )
            await session.commit()
        requeued = result.rowcount == 1
        if requeued:
            logger.info(f"Dead queue item {queue_id} re-enqueued by operator")
        return requeued

    # ===== Cleanup =====

    async def cleanup_session(self, session_id: str):
        """
        Drops data that has reached the server. Safe to call any number of times.

        Synced queue rows and uploaded recordings (with their files) always go. Answers
        go only once the session's result has been delivered (or the session is completed)
        and no unsynced test_result item remains; the session flips to `synced` only once
        nothing at all is left to send.
        """
        async with self.session_factory() as session:
            delivered = await session.execute(
                select(func.count(SyncQueueItem.id))
                .filter(
                    SyncQueueItem.session_id == session_id,
                    SyncQueueItem.data_type == SyncDataType.TEST_RESULT.value,
                    SyncQueueItem.synced.is_(True),
                )
            )
            result_delivered = delivered.scalar_one() > 0

            await session.execute(
                delete(SyncQueueItem)
                .where(SyncQueueItem.session_id == session_id, SyncQueueItem.synced.is_(True))
            )

            uploaded = await session.execute(
                select(LocalRecording.file_path)
                .filter_by(session_id=session_id, uploaded=True)
            )
            uploaded_files = list(uploaded.scalars().all())
            await session.execute(
                delete(LocalRecording)
                .where(LocalRecording.session_id == session_id, LocalRecording.uploaded.is_(True))
            )

            local_session = await session.get(LocalSession, session_id)
            finished = local_session is not None and (
                result_delivered
                or local_session.status in (SessionStatus.COMPLETED.value, SessionStatus.SYNCED.value)
            )
            unsynced_results = await self._count_unsynced(session, session_id, SyncDataType.TEST_RESULT)
            unsynced_total = await self._count_unsynced(session, session_id)

            if finished and unsynced_results == 0:
                await session.execute(delete(LocalAnswer).where(LocalAnswer.session_id == session_id))
            if finished and unsynced_total == 0:
                local_session.status = SessionStatus.SYNCED.value

            await session.commit()

        if uploaded_files:
            await asyncio.to_thread(self._remove_files, uploaded_files)
        logger.debug(f"Cleanup done for session {session_id}")

    async def _count_unsynced(self, session: AsyncSession, session_id: str,
                              data_type: SyncDataType | None = None) -> int:
        query = select(func.count(SyncQueueItem.id)).filter(
            SyncQueueItem.session_id == session_id, SyncQueueItem.synced.is_(False)
        )
        if data_type is not None:
            query = query.filter(SyncQueueItem.data_type == data_type.value)
        result = await session.execute(query)
        return result.scalar_one()

    @staticmethod
    def _remove_files(paths: list[str]):
        for path in paths:
            file_path = Path(path)
            file_path.unlink(missing_ok=True)
            session_dir = file_path.parent
            if session_dir.is_dir() and not any(session_dir.iterdir()):
                session_dir.rmdir()

    # ===== Recordings =====

    async def save_recording_metadata(self, session_id: str, recording_type: str, file_path: str,
                                      file_size: int, duration: int | None = None) -> int:
        async with self.session_factory() as session:
            recording = LocalRecording(
                session_id=session_id,
                recording_type=RecordingType(recording_type).value,
                file_path=file_path,
                file_size=file_size,
                duration=duration,
            )
            session.add(recording)
            await session.commit()
            return recording.id

    async def save_recording(self, session_id: str, recording_type: str, data: bytes,
                             duration: int | None = None, priority: int | None = None) -> tuple[int, int]:
        """
        Writes a finished capture to disk, then stores its descriptor and queues the upload
        in one transaction. Returns (recording_id, queue_id).
        """
        recording_type = RecordingType(recording_type).value
        if await self.get_session(session_id) is None:
            raise SessionNotFound(session_id)

        file_path = self.recordings_dir / session_id / f"{recording_type}-{uuid.uuid4().hex[:8]}.webm"
        await asyncio.to_thread(self._write_file, file_path, data)

        async with self.session_factory() as session:
            recording = LocalRecording(
                session_id=session_id,
                recording_type=recording_type,
                file_path=str(file_path),
                file_size=len(data),
                duration=duration,
            )
            session.add(recording)
            await session.flush()
            queue_id = await self._enqueue(
                session,
                SyncDataType.RECORDING,
                session_id,
                {"recording_type": recording_type, "recording_id": recording.id},
                settings.recording_priority if priority is None else priority,
            )
            await session.commit()
        logger.info(f"Saved {recording_type} recording for session {session_id} ({len(data)} bytes)")
        return recording.id, queue_id

    @staticmethod
    def _write_file(path: Path, data: bytes):
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def get_recording(self, recording_id: int) -> LocalRecording | None:
        async with self.session_factory() as session:
            return await session.get(LocalRecording, recording_id)

    async def get_session_recordings(self, session_id: str, recording_type: str | None = None) -> list[LocalRecording]:
        """Recordings of a session that have not been uploaded yet."""
        async with self.session_factory() as session:
            query = select(LocalRecording).filter_by(session_id=session_id, uploaded=False)
            if recording_type is not None:
                query = query.filter_by(recording_type=recording_type)
            result = await session.execute(query.order_by(LocalRecording.id))
            return list(result.scalars().all())

    async def mark_recording_uploaded(self, recording_id: int) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                update(LocalRecording)
                .where(LocalRecording.id == recording_id, LocalRecording.uploaded.is_(False))
                .values(uploaded=True, uploaded_at=utcnow())
            )
            await session.commit()
        return result.rowcount == 1

    # ===== Events Cache =====

    async def cache_event(self, event_id: int, event_code: str, event_name: str,
                          description: str | None = None):
        async with self.session_factory() as session:
            await session.execute(
                delete(EventCache).where(EventCache.event_code == event_code, EventCache.id != event_id)
            )
            await session.merge(EventCache(
                id=event_id,
                event_code=event_code,
                event_name=event_name,
                description=description,
            ))
            await session.commit()

    async def get_cached_event(self, event_code: str) -> EventCache | None:
        async with self.session_factory() as session:
            result = await session.execute(select(EventCache).filter_by(event_code=event_code))
            return result.scalars().first()
