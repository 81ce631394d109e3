# assessment_sync/candidate/errors.py
# Failure taxonomy of the candidate-side sync pipeline.


class SyncError(Exception):
    """Base class for failures while moving one queue item to the server."""
    retryable = True


class NetworkError(SyncError):
    """DNS failure, refused connection, timeout: the request never got an answer."""


class ServerError(SyncError):
    """The server answered with a non-2xx status."""

    def __init__(self, status_code: int, detail: str | None = None):
        self.status_code = status_code
        self.detail = detail
        message = f"Server returned HTTP {status_code}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

    @property
    def is_client_error(self) -> bool:
        # 408 and 429 are the server asking us to come back later
        return 400 <= self.status_code < 500 and self.status_code not in (408, 429)


class DatabaseError(SyncError):
    """The local store failed while preparing or recording a transfer."""


class SerializationError(SyncError):
    """A payload could not be encoded or a response decoded. Indicates a defect, not a transient fault."""
    retryable = False


class RecordingFileMissing(SyncError):
    """The recording file referenced by a queue item no longer exists on disk."""
    retryable = False


class SessionConflict(Exception):
    """A session with this identifier already exists on the device."""


class SessionNotFound(Exception):
    """No local session with this identifier."""
