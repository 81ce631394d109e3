# tests/test_end_to_end.py
# Candidate worker talking to the admin app in-process: TestClient stands in for requests.Session.
import pytest

from assessment_sync.candidate.errors import ServerError
from assessment_sync.candidate.transport import SyncClient
from assessment_sync.candidate.worker import SyncWorker
from assessment_sync.models.admin import TestResult, SyncLog, RecordingUpload
from assessment_sync.models.enums import SessionStatus

SESSION_ID = "e2e-0b6f-4d8a-9c3e"


@pytest.fixture
def sync_client(client):
    return SyncClient("http://testserver", http_session=client)


@pytest.mark.admin
@pytest.mark.candidate
class TestCandidateToAdmin:

    def test_connection_and_event_lookup(self, sync_client, sample_event):
        assert sync_client.test_connection() is True
        assert sync_client.get_event_by_code("ABC234")["id"] == sample_event.id
        with pytest.raises(ServerError) as exc_info:
            sync_client.get_event_by_code("ZZZ999")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_session_and_recording_reach_server(self, store, sync_client, admin_rows, recordings_dir):
        await store.create_session(SESSION_ID, event_id=7, user_id=12, event_code="ABC234")
        await store.save_answer(SESSION_ID, 1, "B")
        await store.save_answer(SESSION_ID, 2, "A")
        await store.save_answer(SESSION_ID, 2, "D")
        await store.save_recording(SESSION_ID, "camera", b"camera-frames", duration=600)
        await store.complete_session_and_enqueue(SESSION_ID)

        report = await SyncWorker(store, sync_client).run_cycle()

        assert report.succeeded == 2
        results = admin_rows(TestResult)
        assert len(results) == 1
        assert results[0].client_session_id == SESSION_ID
        assert [a["answer"] for a in results[0].answers] == ["B", "D"]

        uploads = admin_rows(RecordingUpload)
        assert [(u.client_session_id, u.recording_type, u.user_id) for u in uploads] == [(SESSION_ID, "camera", 12)]
        stored = list((recordings_dir / SESSION_ID).iterdir())
        assert [p.read_bytes() for p in stored] == [b"camera-frames"]

        assert sorted(log.data_type for log in admin_rows(SyncLog)) == ["recording", "test_result"]
        assert (await store.get_session(SESSION_ID)).status == SessionStatus.SYNCED.value
        assert await store.get_session_answers(SESSION_ID) == []
        assert await store.get_session_recordings(SESSION_ID) == []

    @pytest.mark.asyncio
    async def test_session_without_answers_syncs(self, store, sync_client, admin_rows):
        await store.create_session(SESSION_ID, event_id=7, user_id=12)
        await store.complete_session_and_enqueue(SESSION_ID)

        report = await SyncWorker(store, sync_client).run_cycle()

        assert report.succeeded == 1
        results = admin_rows(TestResult)
        assert [(r.client_session_id, r.answer_count) for r in results] == [(SESSION_ID, 0)]
        assert (await store.get_session(SESSION_ID)).status == SessionStatus.SYNCED.value

    @pytest.mark.asyncio
    async def test_resent_result_is_stored_once(self, store, sync_client, admin_rows):
        """A resend after a lost response is acknowledged with the original result id."""
        await store.create_session(SESSION_ID, event_id=7, user_id=12)
        await store.save_answer(SESSION_ID, 1, "C")
        await store.complete_session_and_enqueue(SESSION_ID)
        payload = await SyncWorker(store, sync_client).build_test_result_payload(SESSION_ID)

        first_id = sync_client.submit_test_result(payload)
        second_id = sync_client.submit_test_result(payload)

        assert first_id == second_id
        assert len(admin_rows(TestResult)) == 1
