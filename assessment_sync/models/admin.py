# assessment_sync/models/admin.py
from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    JSON,
    Text,
)
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone


Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Event(Base):
    __tablename__ = "events"
    id = Column(Integer, primary_key=True, index=True)
    event_name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, default="draft")
    event_code = Column(String, unique=True, index=True, nullable=True)
    max_participants = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class TestResult(Base):
    """A test result accepted from a candidate device."""
    __tablename__ = "test_results"
    __test__ = False  # not a pytest test class

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    event_id = Column(Integer, nullable=False, index=True)
    client_session_id = Column(String, index=True, nullable=True)
    idempotency_key = Column(String, unique=True, nullable=True)
    sync_source = Column(String, default="direct")
    answer_count = Column(Integer, default=0)
    answers = Column(JSON, nullable=False) # [{question_id, answer, answered_at}]
    completed_at = Column(String, nullable=True)
    received_at = Column(DateTime, default=utcnow)


class SyncLog(Base):
    """Append-only audit trail of every ingestion attempt."""
    __tablename__ = "sync_log"
    id = Column(Integer, primary_key=True, index=True)
    client_session_id = Column(String, nullable=False, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    data_type = Column(String, nullable=False)
    payload_size = Column(Integer, nullable=True)
    client_ip = Column(String, nullable=True)
    status = Column(String, nullable=False)  # "success" | "failed"
    error_message = Column(Text, nullable=True)
    received_at = Column(DateTime, default=utcnow, index=True)


class RecordingUpload(Base):
    __tablename__ = "recording_uploads"
    id = Column(Integer, primary_key=True, index=True)
    client_session_id = Column(String, nullable=False, index=True)
    user_id = Column(Integer, nullable=True)
    recording_type = Column(String, nullable=False)
    file_path = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False)
    received_at = Column(DateTime, default=utcnow)


class ClientConnection(Base):
    __tablename__ = "client_connections"
    user_id = Column(Integer, primary_key=True)
    client_ip = Column(String, nullable=True)
    status = Column(String, default="active")
    last_seen_at = Column(DateTime, default=utcnow, onupdate=utcnow)
