# assessment_sync/models/candidate.py
# Tables of the candidate device's local store. Kept on their own metadata so the
# device database never carries admin tables and vice versa.
from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    ForeignKey,
    Text,
    Boolean,
)
from sqlalchemy.orm import declarative_base, relationship

from assessment_sync.models.admin import utcnow
from assessment_sync.models.enums import SessionStatus


CandidateBase = declarative_base()


class LocalSession(CandidateBase):
    __tablename__ = "sessions"
    session_id = Column(String, primary_key=True)  # generated on the device
    event_id = Column(Integer, nullable=False)
    user_id = Column(Integer, nullable=False)
    event_code = Column(String, nullable=True)
    started_at = Column(DateTime, default=utcnow)
    completed_at = Column(DateTime, nullable=True)
    status = Column(String, default=SessionStatus.IN_PROGRESS.value, nullable=False)

    answers = relationship("LocalAnswer", back_populates="session")


class LocalAnswer(CandidateBase):
    __tablename__ = "answers"
    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String, ForeignKey("sessions.session_id"), index=True, nullable=False)
    question_id = Column(Integer, nullable=False)
    answer = Column(Text, nullable=True) # None means skipped
    answered_at = Column(DateTime, default=utcnow, nullable=False)

    session = relationship("LocalSession", back_populates="answers")


class SyncQueueItem(CandidateBase):
    __tablename__ = "sync_queue"
    id = Column(Integer, primary_key=True, index=True)
    data_type = Column(String, nullable=False)
    session_id = Column(String, ForeignKey("sessions.session_id"), index=True, nullable=False)
    payload = Column(Text, nullable=False) # serialized JSON
    priority = Column(Integer, default=5, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    synced = Column(Boolean, default=False, nullable=False, index=True)
    synced_at = Column(DateTime, nullable=True)
    sync_attempts = Column(Integer, default=0, nullable=False)
    last_attempt_at = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "data_type": self.data_type,
            "session_id": self.session_id,
            "priority": self.priority,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "synced": self.synced,
            "sync_attempts": self.sync_attempts,
            "last_attempt_at": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "last_error": self.last_error,
        }


class LocalRecording(CandidateBase):
    __tablename__ = "recordings"
    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String, ForeignKey("sessions.session_id"), index=True, nullable=False)
    recording_type = Column(String, nullable=False)
    file_path = Column(String, nullable=False)
    file_size = Column(Integer, nullable=False)
    duration = Column(Integer, nullable=True) # seconds
    uploaded = Column(Boolean, default=False, nullable=False)
    uploaded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)


class EventCache(CandidateBase):
    __tablename__ = "events_cache"
    id = Column(Integer, primary_key=True)
    event_code = Column(String, unique=True, index=True, nullable=False)
    event_name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    cached_at = Column(DateTime, default=utcnow, onupdate=utcnow)
