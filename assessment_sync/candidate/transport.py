# HTTP client a candidate device uses to reach the admin server
# assessment_sync/candidate/transport.py
import json
import os
from urllib.parse import quote

import requests

from assessment_sync.candidate.errors import NetworkError, ServerError, SerializationError, RecordingFileMissing
from assessment_sync.utils.config import settings
from assessment_sync.utils.logger import logger


class SyncClient:
    """
    Blocking client around a `requests.Session`. Every call carries the same bounded
    timeout; the sync worker runs these methods in a thread so the event loop stays free.
    """

    def __init__(self, server_url: str, timeout: float | None = None, http_session=None):
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout or settings.sync_request_timeout_seconds
        self.http = http_session or requests.Session()

    def close(self):
        self.http.close()

    def _send(self, method: str, path: str, **kwargs):
        url = f"{self.server_url}{path}"
        try:
            return self.http.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise NetworkError(f"{method} {url} failed: {e}") from e

    @staticmethod
    def _ensure_success(response):
        if not 200 <= response.status_code < 300:
            detail = None
            try:
                body = response.json()
                if isinstance(body, dict):
                    detail = body.get("detail") or body.get("message")
            except ValueError:
                detail = None
            raise ServerError(response.status_code, detail)

    @staticmethod
    def _decode(response) -> dict:
        try:
            body = response.json()
        except ValueError as e:
            raise SerializationError(f"Server response is not valid JSON: {e}") from e
        if not isinstance(body, dict):
            raise SerializationError(f"Unexpected response body: {body!r}")
        return body

    def test_connection(self) -> bool:
        """True only when the health endpoint answers 2xx. Never raises."""
        try:
            response = self._send("GET", "/api/health")
        except NetworkError as e:
            logger.warning(f"Connection test to {self.server_url} failed: {e}")
            return False
        return 200 <= response.status_code < 300

    def get_event_by_code(self, code: str) -> dict:
        response = self._send("GET", f"/api/events/{quote(code, safe='')}")
        self._ensure_success(response)
        return self._decode(response)

    def submit_test_result(self, payload: dict) -> int | None:
        """POSTs a result payload and returns the server-assigned result id."""
        try:
            json.dumps(payload)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Test result payload is not JSON serializable: {e}") from e

        response = self._send("POST", "/api/test-results", json=payload)
        self._ensure_success(response)
        result = self._decode(response)
        if not result.get("success", False):
            raise ServerError(response.status_code, result.get("message"))
        logger.info(f"Test result for session {payload.get('session_id')} accepted as result {result.get('result_id')}")
        return result.get("result_id")

    def upload_recording(self, session_id: str, recording_type: str, file_path: str,
                         user_id: int | None = None):
        """Streams a recording file to the server as multipart form data."""
        if not os.path.isfile(file_path):
            raise RecordingFileMissing(f"Recording file not found: {file_path}")

        fields = {"session_id": session_id, "recording_type": recording_type}
        if user_id is not None:
            fields["user_id"] = str(user_id)

        with open(file_path, "rb") as video:
            files = {"video": (os.path.basename(file_path), video, "video/webm")}
            response = self._send("POST", "/api/recordings", data=fields, files=files)
        self._ensure_success(response)
        logger.info(f"Uploaded {recording_type} recording for session {session_id}")
