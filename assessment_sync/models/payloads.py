# Wire models shared by the admin ingestion endpoints and the candidate transport
# assessment_sync/models/payloads.py
import hashlib
import json
from typing import List, Optional
from pydantic import BaseModel, Field


class AnswerData(BaseModel):
    question_id: int
    answer: Optional[str] = None # None = skipped
    answered_at: str


class TestResultPayload(BaseModel):
    __test__ = False

    session_id: str = Field(..., min_length=1)
    event_id: int
    user_id: int
    answers: List[AnswerData]
    completed_at: str
    idempotency_key: Optional[str] = None


class SubmitResponse(BaseModel):
    success: bool
    message: str
    result_id: Optional[int] = None
    duplicate: bool = False


class EventResponse(BaseModel):
    id: int
    event_name: str
    event_code: str
    description: Optional[str] = None
    status: str


class HealthResponse(BaseModel):
    status: str
    version: str
    timestamp: str


class SyncLogResponse(BaseModel):
    id: int
    client_session_id: str
    user_id: Optional[int] = None
    data_type: str
    payload_size: Optional[int] = None
    client_ip: Optional[str] = None
    status: str
    error_message: Optional[str] = None
    received_at: str


class ClientConnectionResponse(BaseModel):
    user_id: int
    client_ip: Optional[str] = None
    status: str
    last_seen_at: str


def compute_idempotency_key(session_id: str, answers: List[dict]) -> str:
    """Stable key for one session's answer set: sha256 over the id and canonical JSON."""
    canonical = json.dumps(answers, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(f"{session_id}:{canonical}".encode("utf-8")).hexdigest()
