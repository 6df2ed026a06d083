"""
Pipeline error taxonomy.

Every error carries the HTTP status the routes surface it with.

- SessionNotFound:   uploader cannot resolve a session id; the session is
                     presumed already ended.
- StreamWriteFailed: transport-level failure while writing into a
                     recognition stream. Not retried internally.
- PersistenceFailed: a record could not be saved. Recoverable: the Turn
                     Recorder keeps its buffer for a later attempt.
- RecognitionError:  the recognizer reported a failure. Terminal for the
                     session; the client must re-establish it.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for pipeline errors."""

    http_status: int = 500
    code: str = "pipeline_error"

    def to_payload(self) -> dict[str, str]:
        """JSON body used by the HTTP layer."""
        return {"error": self.code, "details": str(self)}


class SessionNotFound(PipelineError):
    """No streaming session is registered under the requested id."""

    http_status = 404
    code = "session_not_found"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"session {session_id!r} not found; start streaming first")
        self.session_id = session_id


class StreamWriteFailed(PipelineError):
    """
    Writing audio into a recognition stream failed.

    Slices written before the failure have already reached the recognizer
    and are not rolled back.
    """

    http_status = 502
    code = "stream_write_failed"

    def __init__(self, session_id: str, reason: str, *, writes_completed: int = 0) -> None:
        super().__init__(f"write to session {session_id!r} failed: {reason}")
        self.session_id = session_id
        self.reason = reason
        self.writes_completed = writes_completed


class PersistenceFailed(PipelineError):
    """A transcript or AI message could not be saved."""

    http_status = 503
    code = "persistence_failed"


class RecognitionError(PipelineError):
    """The recognizer reported a terminal failure for a session."""

    http_status = 502
    code = "recognition_error"

    def __init__(self, session_id: str, reason: str) -> None:
        super().__init__(f"recognition failed for session {session_id!r}: {reason}")
        self.session_id = session_id
        self.reason = reason
