# Background task that drains the sync queue against the admin server
# assessment_sync/candidate/worker.py
import asyncio
import json
from datetime import datetime, timezone

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from assessment_sync.candidate.errors import (
    SyncError,
    ServerError,
    DatabaseError,
    SerializationError,
)
from assessment_sync.candidate.store import CandidateStore
from assessment_sync.models.candidate import SyncQueueItem
from assessment_sync.models.enums import SyncDataType, RecordingType
from assessment_sync.models.payloads import compute_idempotency_key
from assessment_sync.utils.config import settings
from assessment_sync.utils.logger import logger


class CycleReport(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    dead: int = 0


class SyncWorker:
    """
    Drains the sync queue on a fixed interval.

    Items are handled one at a time, in the order `fetch_pending` returns them. A cycle
    never overlaps another: the periodic loop and manual `run_cycle` calls share one lock.
    Whatever goes wrong with one item is turned into an attempt increment on that item
    and the cycle moves on.
    """

    def __init__(self, store: CandidateStore, transport, interval: float | None = None,
                 batch_size: int | None = None, retry_client_errors: bool | None = None):
        self.store = store
        self.transport = transport
        self.interval = interval or settings.sync_interval_seconds
        self.batch_size = batch_size or settings.sync_batch_size
        self.retry_client_errors = (
            settings.sync_retry_client_errors if retry_client_errors is None else retry_client_errors
        )
        self._cycle_lock = asyncio.Lock()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    # ===== Lifecycle =====

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._stop_event.clear()
        self._task = asyncio.create_task(self.run_forever(), name="sync-worker")
        return self._task

    async def stop(self):
        """Asks the loop to exit and waits for it. An item already in flight is finished first."""
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def run_forever(self):
        logger.info(f"Sync worker started (interval {self.interval}s, batch {self.batch_size})")
        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception as e:
                # The loop outlives any single bad cycle
                logger.exception(f"Unexpected error in sync cycle: {e}")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue
        logger.info("Sync worker stopped")

    # ===== Cycle =====

    async def run_cycle(self) -> CycleReport:
        async with self._cycle_lock:
            return await self._drain()

    async def _drain(self) -> CycleReport:
        report = CycleReport()
        try:
            items = await self.store.fetch_pending(self.batch_size)
        except SQLAlchemyError as e:
            logger.error(f"Error fetching pending sync items: {e}")
            return report

        for item in items:
            report.processed += 1
            logger.info(f"Processing sync item {item.id} ({item.data_type}, session {item.session_id})")
            error = await self._process_item(item)
            if error is None:
                report.succeeded += 1
                continue
            report.failed += 1
            if await self._record_failure(item, error):
                report.dead += 1

        if report.processed:
            logger.info(
                f"Sync cycle finished: {report.succeeded} synced, {report.failed} failed, {report.dead} dead"
            )
        return report

    async def _process_item(self, item: SyncQueueItem) -> SyncError | None:
        """Sends one item. Returns the failure, or None once the item is settled as synced."""
        try:
            await self._dispatch(item)
        except SyncError as e:
            return e
        except SQLAlchemyError as e:
            return DatabaseError(str(e))
        except OSError as e:
            return SyncError(f"Local I/O error: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error while syncing item {item.id}: {e}")
            return SyncError(f"{type(e).__name__}: {e}")

        await self._record_success(item)
        return None

    async def _dispatch(self, item: SyncQueueItem):
        if item.data_type == SyncDataType.TEST_RESULT.value:
            payload = await self.build_test_result_payload(item.session_id)
            await asyncio.to_thread(self.transport.submit_test_result, payload)
        elif item.data_type == SyncDataType.RECORDING.value:
            await self._sync_recordings(item)
        else:
            raise SerializationError(f"Unknown data type '{item.data_type}'")

    async def build_test_result_payload(self, session_id: str) -> dict:
        """
        Rebuilds the submission from the answers table rather than the queued payload,
        which may predate later corrections.
        """
        session = await self.store.get_session(session_id)
        if session is None:
            raise DatabaseError(f"Session '{session_id}' not found in local store")
        answers = await self.store.answer_snapshot(session_id)
        completed_at = session.completed_at or datetime.now(timezone.utc)
        return {
            "session_id": session_id,
            "event_id": session.event_id,
            "user_id": session.user_id,
            "answers": answers,
            "completed_at": completed_at.isoformat(),
            "idempotency_key": compute_idempotency_key(session_id, answers),
        }

    async def _sync_recordings(self, item: SyncQueueItem):
        try:
            params = json.loads(item.payload)
        except ValueError as e:
            raise SerializationError(f"Recording payload of item {item.id} is not valid JSON: {e}") from e
        if not isinstance(params, dict):
            raise SerializationError(f"Recording payload of item {item.id} is not a JSON object")

        recording_type = params.get("recording_type", RecordingType.CAMERA.value)
        recording_id = params.get("recording_id")
        if recording_id is not None:
            recording = await self.store.get_recording(recording_id)
            recordings = [recording] if recording is not None and not recording.uploaded else []
        else:
            recordings = await self.store.get_session_recordings(item.session_id, recording_type)

        session = await self.store.get_session(item.session_id)
        user_id = session.user_id if session is not None else None

        # Nothing left to upload means an earlier attempt already got through
        for recording in recordings:
            await asyncio.to_thread(
                self.transport.upload_recording,
                item.session_id,
                recording.recording_type,
                recording.file_path,
                user_id,
            )
            await self.store.mark_recording_uploaded(recording.id)

    # ===== Outcomes =====

    async def _record_success(self, item: SyncQueueItem):
        try:
            if not await self.store.mark_synced(item.id):
                logger.warning(f"Sync item {item.id} was already settled; skipping")
        except SQLAlchemyError as e:
            # The send went through; the next cycle will resend and the server tolerates it
            logger.error(f"Error marking item {item.id} as synced: {e}")
            return
        try:
            await self.store.cleanup_session(item.session_id)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Error cleaning up session {item.session_id}: {e}")
        logger.info(f"Sync item {item.id} synced")

    def is_retryable(self, error: SyncError) -> bool:
        if isinstance(error, ServerError) and error.is_client_error and not self.retry_client_errors:
            return False
        return error.retryable

    async def _record_failure(self, item: SyncQueueItem, error: SyncError) -> bool:
        """Counts the failed attempt. Returns True if the item is now dead."""
        retryable = self.is_retryable(error)
        attempts = item.sync_attempts + 1
        dead = not retryable or attempts >= self.store.max_attempts

        if isinstance(error, SerializationError):
            logger.critical(f"Sync item {item.id} cannot be encoded or decoded and needs attention: {error}")
        elif dead:
            logger.error(f"Sync item {item.id} exhausted its retries ({type(error).__name__}): {error}")
        else:
            logger.warning(
                f"Sync item {item.id} failed (attempt {attempts}/{self.store.max_attempts}, "
                f"{type(error).__name__}): {error}"
            )

        try:
            await self.store.increment_attempt(item.id, f"{type(error).__name__}: {error}", exhaust=not retryable)
        except SQLAlchemyError as e:
            logger.error(f"Error recording failed attempt for item {item.id}: {e}")
        return dead
