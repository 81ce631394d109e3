# Operations the candidate application exposes around sync: configuration, status, manual triggers
# assessment_sync/candidate/controller.py
import asyncio
import uuid

from assessment_sync.candidate.device_config import (
    load_device_config,
    save_device_config,
    normalize_server_url,
)
from assessment_sync.candidate.store import CandidateStore
from assessment_sync.candidate.transport import SyncClient
from assessment_sync.candidate.worker import SyncWorker, CycleReport
from assessment_sync.utils.logger import logger


class ServerUrlNotConfigured(Exception):
    """No admin server URL has been set on this device."""


class SyncController:
    def __init__(self, store: CandidateStore, config_path: str | None = None, client_factory=SyncClient):
        self.store = store
        self.config_path = config_path
        self.config = load_device_config(config_path)
        self._client_factory = client_factory
        self._worker: SyncWorker | None = None

    # ===== Server URL =====

    def get_server_url(self) -> str | None:
        return self.config.server_url

    def set_server_url(self, url: str) -> str:
        normalized = normalize_server_url(url)
        self.config.server_url = normalized
        save_device_config(self.config, self.config_path)
        if self._worker is not None:
            self._worker.transport = self._client_factory(normalized)
        logger.info(f"Server URL set to: {normalized}")
        return normalized

    def _client(self):
        if not self.config.server_url:
            raise ServerUrlNotConfigured("Server URL not set")
        return self._client_factory(self.config.server_url)

    async def test_server_connection(self) -> bool:
        client = self._client()
        return await asyncio.to_thread(client.test_connection)

    async def lookup_event(self, code: str) -> dict:
        """Fetches an event by access code from the server and caches it locally."""
        client = self._client()
        event = await asyncio.to_thread(client.get_event_by_code, code)
        await self.store.cache_event(event["id"], event["event_code"], event["event_name"], event.get("description"))
        return event

    # ===== Sessions =====

    async def begin_session(self, event_id: int, user_id: int, event_code: str | None = None) -> str:
        return await self.store.create_session(str(uuid.uuid4()), event_id, user_id, event_code)

    async def finish_session(self, session_id: str) -> int:
        return await self.store.complete_session_and_enqueue(session_id)

    # ===== Worker =====

    def worker(self) -> SyncWorker:
        if self._worker is None:
            self._worker = SyncWorker(self.store, self._client())
        return self._worker

    def start_worker(self):
        self.worker().start()

    async def stop_worker(self):
        if self._worker is not None:
            await self._worker.stop()

    async def sync_now(self) -> CycleReport:
        """Runs one cycle immediately, through the same selection and outcome logic as the loop."""
        return await self.worker().run_cycle()

    # ===== Queue status =====

    async def queue_status(self) -> dict:
        pending = await self.store.fetch_pending()
        return {
            "pending_count": await self.store.count_pending(),
            "dead_count": await self.store.count_dead(),
            "last_error": await self.store.last_error(),
            "items": [item.to_dict() for item in pending],
        }

    async def dead_items(self) -> list[dict]:
        return [item.to_dict() for item in await self.store.list_dead_items()]

    async def requeue(self, queue_id: int) -> bool:
        return await self.store.requeue_item(queue_id)
