# assessment_sync/models/enums.py
from enum import Enum

class SessionStatus(str, Enum):
    """Lifecycle of a candidate-local test session."""
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SYNCED = "synced"

class SyncDataType(str, Enum):
    """Kinds of outbound data carried by the sync queue."""
    TEST_RESULT = "test_result"
    RECORDING = "recording"

class SyncStatus(str, Enum):
    """Outcome recorded in the server-side audit log."""
    SUCCESS = "success"
    FAILED = "failed"

class RecordingType(str, Enum):
    CAMERA = "camera"
    SCREEN = "screen"
