"""
Streaming session manager.

Responsibilities (the request layer's only way into the session store):
- open():      create a recognition stream, start it, register the session
- lookup():    resolve a session id
- terminate(): unregister, close the stream, end the client feed
- sweep():     terminate sessions older than a maximum age

Recognition events flow through _handle_event():
- every event is forwarded to the session's subscriber queue
- non-blank finals are persisted as TranscriptRecords (failures are
  logged, never fatal)
- end / error remove the session from the store

NOT responsible for:
- Splitting or writing audio (see audio.uploader)
- Talking to a vendor recognizer directly
"""

from __future__ import annotations

from typing import Optional
from uuid import uuid4

from adapters.asr.base import StreamFactory
from adapters.asr.events import (
    RecognitionEvent,
    StreamErrored,
    TranscriptFinal,
    is_terminal,
)
from errors import RecognitionError
from observability.logger import log_event
from observability.metrics import METRIC_TRANSCRIPT_PERSIST, timed
from persistence.base import TranscriptRepository
from persistence.records import TranscriptRecord, utc_now
from session.store import SessionStore, StreamingSession


class StreamingSessionManager:
    """
    Owns the lifecycle of streaming sessions.

    One manager per process; shared by every request context.
    """

    def __init__(
        self,
        *,
        store: SessionStore,
        stream_factory: StreamFactory,
        transcripts: TranscriptRepository,
    ) -> None:
        self._store = store
        self._stream_factory = stream_factory
        self._transcripts = transcripts

    @property
    def store(self) -> SessionStore:
        return self._store

    # ------------------------------------------------------------------
    # Boundary
    # ------------------------------------------------------------------

    async def open(
        self,
        session_id: str,
        meeting_id: Optional[str] = None,
    ) -> StreamingSession:
        """
        Open a recognition stream for `session_id` and register it.

        An existing session under the same id is terminated first; the
        new session replaces it. Of two concurrent opens for one id, the
        last to register wins and the other is closed.

        Raises:
            RecognitionError if the stream cannot be started or terminates
            during start-up. Nothing is registered in that case.
        """
        if self._store.get(session_id) is not None:
            await self.terminate(session_id, reason="replaced")

        session: Optional[StreamingSession] = None

        async def emit(event: RecognitionEvent) -> None:
            if session is not None:
                await self._handle_event(session, event)

        stream = self._stream_factory(session_id, emit)
        session = StreamingSession(
            session_id=session_id,
            stream=stream,
            meeting_id=meeting_id,
        )

        try:
            await stream.start()
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "RECOGNITION_START_FAILED",
                "level": "error",
                "session_id": session_id,
                "error": repr(e),
            })
            raise RecognitionError(session_id, f"start failed: {e!r}") from e

        if stream.closed:
            raise RecognitionError(session_id, "stream terminated during start-up")

        # Another open() of the same id may have registered while start()
        # was suspended. The swap is atomic; whoever it displaces is closed.
        displaced = self._store.put(session_id, session)
        if displaced is not None and displaced is not session:
            await self._close(displaced, reason="replaced")

        log_event({
            "event_type": "SESSION_OPENED",
            "session_id": session_id,
            "meeting_id": meeting_id,
            "active_sessions": len(self._store),
        })
        return session

    def lookup(self, session_id: str) -> Optional[StreamingSession]:
        return self._store.get(session_id)

    async def terminate(
        self,
        session_id: str,
        *,
        reason: str,
        expected: Optional[StreamingSession] = None,
    ) -> bool:
        """
        Unregister and close a session.

        With `expected`, only that exact session is terminated (a newer
        session registered under the same id is left alone).

        Returns False when no matching session was registered. Idempotent.
        """
        session = self._store.get(session_id)
        if session is None:
            return False
        if expected is not None and session is not expected:
            return False

        self._store.remove(session_id, expected=session)
        await self._close(session, reason=reason)
        return True

    async def sweep(self, max_age_s: float) -> int:
        """
        Terminate every session created more than max_age_s ago.

        Returns the number of sessions removed.
        """
        stale = self._store.pop_older_than(max_age_s)
        for session in stale:
            await self._close(session, reason="stale")

        if stale:
            log_event({
                "event_type": "SESSION_SWEEP",
                "removed": len(stale),
                "remaining": len(self._store),
                "max_age_s": max_age_s,
            })
        return len(stale)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _close(self, session: StreamingSession, *, reason: str) -> None:
        log_event({
            "event_type": "SESSION_TERMINATED",
            "session_id": session.session_id,
            "reason": reason,
        })

        try:
            await session.stream.close()
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "RECOGNITION_CLOSE_FAILED",
                "level": "warning",
                "session_id": session.session_id,
                "error": repr(e),
            })

        # End of feed, even if the stream never produced a terminal event.
        await session.events.put(None)

    async def _handle_event(
        self,
        session: StreamingSession,
        event: RecognitionEvent,
    ) -> None:
        if isinstance(event, TranscriptFinal) and event.text.strip():
            await self._persist_final(session, event)

        await session.events.put(event)

        if not is_terminal(event):
            return

        removed = self._store.remove(session.session_id, expected=session)

        if isinstance(event, StreamErrored):
            err = RecognitionError(session.session_id, event.reason)
            log_event({
                "event_type": "RECOGNITION_ERROR",
                "level": "error",
                "session_id": session.session_id,
                "error": err.code,
                "details": str(err),
                "removed": removed,
            })
        else:
            log_event({
                "event_type": "RECOGNITION_ENDED",
                "session_id": session.session_id,
                "removed": removed,
            })

        await session.events.put(None)

    async def _persist_final(
        self,
        session: StreamingSession,
        event: TranscriptFinal,
    ) -> None:
        record = TranscriptRecord(
            record_id=uuid4().hex,
            session_id=session.session_id,
            speaker_label=event.speaker_label,
            text=event.text.strip(),
            created_at=utc_now(),
            confidence=event.confidence,
        )

        with timed(METRIC_TRANSCRIPT_PERSIST, session_id=session.session_id) as d:
            try:
                await self._transcripts.save_transcript(record)
                d["ok"] = True
            except Exception as e:  # pylint: disable=broad-exception-caught
                # PersistenceFailed or a backend error: the event still
                # reaches the client.
                d["ok"] = False
                log_event({
                    "event_type": "TRANSCRIPT_PERSIST_FAILED",
                    "level": "error",
                    "session_id": session.session_id,
                    "error": repr(e),
                })
