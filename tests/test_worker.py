# tests/test_worker.py
import asyncio
import pytest
from pathlib import Path
from unittest.mock import MagicMock

from assessment_sync.candidate.errors import NetworkError, ServerError
from assessment_sync.candidate.transport import SyncClient
from assessment_sync.candidate.worker import SyncWorker, CycleReport
from assessment_sync.models.enums import SessionStatus, SyncDataType
from assessment_sync.models.payloads import compute_idempotency_key

SESSION_ID = "9b2e7c44-3f1a-4a8e-b6d2-71c0e5a9f3d8"
SERVER_URL = "http://192.168.1.10:8080"


async def _completed_session(store, session_id=SESSION_ID):
    await store.create_session(session_id, event_id=7, user_id=12, event_code="ABC234")
    await store.save_answer(session_id, 1, "B")
    await store.save_answer(session_id, 2, "A")
    await store.save_answer(session_id, 2, "C")
    return await store.complete_session_and_enqueue(session_id)


@pytest.fixture
def transport():
    fake = MagicMock(spec=SyncClient)
    fake.submit_test_result.return_value = 42
    return fake


@pytest.fixture
def worker(store, transport):
    return SyncWorker(store, transport, interval=0.05, batch_size=10)


@pytest.mark.candidate
class TestSuccessfulSync:

    @pytest.mark.asyncio
    async def test_result_synced_end_to_end(self, store, http_session, mock_response):
        """One cycle against a server that accepts the result leaves nothing behind locally."""
        queue_id = await _completed_session(store)
        http_session.request.return_value = mock_response(
            200, {"success": True, "message": "Test result received successfully", "result_id": 42}
        )
        worker = SyncWorker(store, SyncClient(SERVER_URL, http_session=http_session))

        report = await worker.run_cycle()

        assert report == CycleReport(processed=1, succeeded=1, failed=0, dead=0)
        sent = http_session.request.call_args.kwargs["json"]
        assert sent["session_id"] == SESSION_ID
        assert sent["event_id"] == 7
        assert sent["user_id"] == 12
        assert [a["answer"] for a in sent["answers"]] == ["B", "C"]

        assert await store.get_queue_item(queue_id) is None  # synced rows are cleaned up
        assert await store.fetch_pending(10) == []
        assert (await store.get_session(SESSION_ID)).status == SessionStatus.SYNCED.value
        assert await store.get_session_answers(SESSION_ID) == []

    @pytest.mark.asyncio
    async def test_directly_enqueued_result(self, store, http_session, mock_response):
        """A result queued without completing the session still settles the session once delivered."""
        await store.create_session("s1", event_id=1, user_id=1)
        await store.save_answer("s1", 1, "A")
        await store.enqueue(SyncDataType.TEST_RESULT, "s1", {"session_id": "s1"}, 5)
        http_session.request.return_value = mock_response(200, {"success": True, "message": "ok", "result_id": 42})

        report = await SyncWorker(store, SyncClient(SERVER_URL, http_session=http_session)).run_cycle()

        assert report.succeeded == 1
        assert await store.fetch_pending(10) == []
        assert (await store.get_session("s1")).status == SessionStatus.SYNCED.value
        assert await store.get_session_answers("s1") == []

    @pytest.mark.asyncio
    async def test_payload_carries_idempotency_key(self, store, worker):
        await _completed_session(store)
        payload = await worker.build_test_result_payload(SESSION_ID)
        assert payload["idempotency_key"] == compute_idempotency_key(SESSION_ID, payload["answers"])
        assert payload["completed_at"]

    @pytest.mark.asyncio
    async def test_empty_queue(self, worker, transport):
        report = await worker.run_cycle()
        assert report.processed == 0
        transport.submit_test_result.assert_not_called()

    @pytest.mark.asyncio
    async def test_higher_priority_sent_first(self, store, worker, transport):
        await store.create_session(SESSION_ID, event_id=7, user_id=12)
        await store.save_answer(SESSION_ID, 1, "A")
        await store.save_recording(SESSION_ID, "camera", b"frames")
        await store.complete_session_and_enqueue(SESSION_ID)

        calls = []
        transport.submit_test_result.side_effect = lambda payload: calls.append("test_result") or 42
        transport.upload_recording.side_effect = lambda *args: calls.append("recording")

        await worker.run_cycle()
        assert calls == ["test_result", "recording"]
        assert (await store.get_session(SESSION_ID)).status == SessionStatus.SYNCED.value


@pytest.mark.candidate
class TestFailures:

    @pytest.mark.asyncio
    async def test_server_error_three_times_exhausts_item(self, store, worker, transport):
        queue_id = await _completed_session(store)
        transport.submit_test_result.side_effect = ServerError(500, "Failed to persist test result")

        for expected_attempts in (1, 2, 3):
            report = await worker.run_cycle()
            assert report.failed == 1
            assert (await store.get_queue_item(queue_id)).sync_attempts == expected_attempts
        assert report.dead == 1

        # The item is never selected again
        report = await worker.run_cycle()
        assert report.processed == 0
        assert transport.submit_test_result.call_count == 3

        item = await store.get_queue_item(queue_id)
        assert item.synced is False
        assert "500" in item.last_error
        assert (await store.get_session(SESSION_ID)).status == SessionStatus.COMPLETED.value
        assert len(await store.get_session_answers(SESSION_ID)) == 3

    @pytest.mark.asyncio
    async def test_network_error_then_success(self, store, worker, transport):
        queue_id = await _completed_session(store)
        transport.submit_test_result.side_effect = [NetworkError("Connection refused"), 42]

        first = await worker.run_cycle()
        assert first.failed == 1 and first.dead == 0
        assert (await store.get_queue_item(queue_id)).last_error.startswith("NetworkError")

        second = await worker.run_cycle()
        assert second.succeeded == 1
        assert (await store.get_session(SESSION_ID)).status == SessionStatus.SYNCED.value

    @pytest.mark.asyncio
    async def test_lost_response_resends_same_key(self, store, worker, transport):
        """The server stored the result but the answer never arrived; the resend is recognisable."""
        await _completed_session(store)
        transport.submit_test_result.side_effect = [NetworkError("read timed out"), 42]

        await worker.run_cycle()
        await worker.run_cycle()

        first_payload = transport.submit_test_result.call_args_list[0].args[0]
        second_payload = transport.submit_test_result.call_args_list[1].args[0]
        assert first_payload["idempotency_key"] == second_payload["idempotency_key"]
        assert first_payload["answers"] == second_payload["answers"]

    @pytest.mark.asyncio
    async def test_client_error_fails_fast(self, store, worker, transport):
        queue_id = await _completed_session(store)
        transport.submit_test_result.side_effect = ServerError(404, "Not Found")

        report = await worker.run_cycle()

        assert report.dead == 1
        assert (await store.get_queue_item(queue_id)).sync_attempts == 3
        assert [item.id for item in await store.list_dead_items()] == [queue_id]

    @pytest.mark.asyncio
    async def test_client_error_retried_when_configured(self, store, transport):
        queue_id = await _completed_session(store)
        transport.submit_test_result.side_effect = ServerError(404, "Not Found")
        worker = SyncWorker(store, transport, retry_client_errors=True)

        report = await worker.run_cycle()

        assert report.dead == 0
        assert (await store.get_queue_item(queue_id)).sync_attempts == 1

    @pytest.mark.asyncio
    async def test_rate_limit_is_retried(self, store, worker, transport):
        queue_id = await _completed_session(store)
        transport.submit_test_result.side_effect = ServerError(429, "Too Many Requests")

        await worker.run_cycle()
        assert (await store.get_queue_item(queue_id)).sync_attempts == 1

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_others(self, store, worker, transport):
        await _completed_session(store, "session-a")
        await _completed_session(store, "session-b")
        transport.submit_test_result.side_effect = [ServerError(503), 42]

        report = await worker.run_cycle()

        assert report == CycleReport(processed=2, succeeded=1, failed=1, dead=0)
        assert (await store.get_session("session-a")).status == SessionStatus.COMPLETED.value
        assert (await store.get_session("session-b")).status == SessionStatus.SYNCED.value

    @pytest.mark.asyncio
    async def test_undecodable_payload_is_dead_immediately(self, store, worker):
        await store.create_session(SESSION_ID, event_id=7, user_id=12)
        queue_id = await store.enqueue(SyncDataType.RECORDING, SESSION_ID, "{not json", 5)

        report = await worker.run_cycle()

        assert report.dead == 1
        item = await store.get_queue_item(queue_id)
        assert item.sync_attempts == 3
        assert item.last_error.startswith("SerializationError")

    @pytest.mark.asyncio
    async def test_non_object_recording_payload_does_not_block_queue(self, store, worker, transport):
        await _completed_session(store)
        bad_id = await store.enqueue(SyncDataType.RECORDING, SESSION_ID, "[]", 1)

        report = await worker.run_cycle()

        assert report == CycleReport(processed=2, succeeded=1, failed=1, dead=1)
        bad = await store.get_queue_item(bad_id)
        assert bad.sync_attempts == 3
        assert bad.last_error.startswith("SerializationError")
        transport.submit_test_result.assert_called_once()

    @pytest.mark.asyncio
    async def test_unexpected_transport_exception_counts_as_attempt(self, store, worker, transport):
        queue_id = await _completed_session(store)
        transport.submit_test_result.side_effect = RuntimeError("response lost")

        report = await worker.run_cycle()

        assert report == CycleReport(processed=1, succeeded=0, failed=1, dead=0)
        item = await store.get_queue_item(queue_id)
        assert item.sync_attempts == 1
        assert "response lost" in item.last_error
        assert (await store.get_session(SESSION_ID)).status == SessionStatus.COMPLETED.value


@pytest.mark.candidate
class TestRecordingSync:

    @pytest.mark.asyncio
    async def test_recording_uploaded_and_removed(self, store, worker, transport):
        await store.create_session(SESSION_ID, event_id=7, user_id=12)
        recording_id, queue_id = await store.save_recording(SESSION_ID, "screen", b"screen-frames")
        file_path = (await store.get_recording(recording_id)).file_path

        report = await worker.run_cycle()

        assert report.succeeded == 1
        transport.upload_recording.assert_called_once_with(SESSION_ID, "screen", file_path, 12)
        assert await store.get_recording(recording_id) is None
        assert await store.get_queue_item(queue_id) is None
        assert not Path(file_path).exists()
        # Session still running: nothing else is touched
        assert (await store.get_session(SESSION_ID)).status == SessionStatus.IN_PROGRESS.value

    @pytest.mark.asyncio
    async def test_missing_recording_file_is_not_retried(self, store, http_session):
        await store.create_session(SESSION_ID, event_id=7, user_id=12)
        recording_id, queue_id = await store.save_recording(SESSION_ID, "camera", b"frames")
        Path((await store.get_recording(recording_id)).file_path).unlink()
        worker = SyncWorker(store, SyncClient(SERVER_URL, http_session=http_session))

        report = await worker.run_cycle()

        assert report.dead == 1
        http_session.request.assert_not_called()
        assert (await store.get_queue_item(queue_id)).last_error.startswith("RecordingFileMissing")

    @pytest.mark.asyncio
    async def test_upload_network_failure_keeps_recording(self, store, worker, transport):
        await store.create_session(SESSION_ID, event_id=7, user_id=12)
        recording_id, queue_id = await store.save_recording(SESSION_ID, "camera", b"frames")
        transport.upload_recording.side_effect = NetworkError("Connection reset")

        await worker.run_cycle()

        recording = await store.get_recording(recording_id)
        assert recording.uploaded is False
        assert Path(recording.file_path).exists()
        assert (await store.get_queue_item(queue_id)).sync_attempts == 1


@pytest.mark.candidate
class TestWorkerLifecycle:

    @pytest.mark.asyncio
    async def test_concurrent_cycles_send_once(self, store, worker, transport):
        await _completed_session(store)

        await asyncio.gather(worker.run_cycle(), worker.run_cycle())

        assert transport.submit_test_result.call_count == 1

    @pytest.mark.asyncio
    async def test_background_loop_syncs_and_stops(self, store, worker, transport):
        await _completed_session(store)

        worker.start()
        assert worker.running
        for _ in range(100):
            if (await store.get_session(SESSION_ID)).status == SessionStatus.SYNCED.value:
                break
            await asyncio.sleep(0.02)
        await worker.stop()

        assert not worker.running
        assert (await store.get_session(SESSION_ID)).status == SessionStatus.SYNCED.value

    @pytest.mark.asyncio
    async def test_loop_survives_unexpected_error(self, worker):
        calls = []

        async def flaky_drain():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return CycleReport()

        worker._drain = flaky_drain

        worker.start()
        for _ in range(100):
            if len(calls) >= 2:
                break
            await asyncio.sleep(0.02)
        await worker.stop()

        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_stop_without_start(self, worker):
        await worker.stop()
        assert not worker.running
