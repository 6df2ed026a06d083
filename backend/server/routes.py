"""
Route registration for the conversation pipeline API.

Responsibilities:
- Define HTTP, SSE and WebSocket endpoints
- Translate PipelineError into JSON error responses
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from adapters.asr.events import (
    RecognitionEventType,
    StreamErrored,
    TranscriptFinal,
    TranscriptPartial,
)
from audio.uploader import FrameUploader
from constants import RECOGNIZER_AUDIO_FORMAT
from context.merger import MergeMode, build_conversation_log
from context.serialization import serialize_for_llm
from errors import PipelineError, RecognitionError
from observability.logger import log_event, now_ms
from persistence.base import ConversationStore
from persistence.records import AIMode, AISource
from protocol.binary import BinaryProtocolError, decode_c2s_frame
from session.manager import StreamingSessionManager
from session.store import StreamingSession
from turns.prompts import system_prompt_for
from turns.registry import TurnRecorderRegistry
from turns.reply_stream import ReplyStreamer


# ------------------------------------------------------------------
# Request bodies
# ------------------------------------------------------------------

class ChunkBody(BaseModel):
    text: str


class TurnBody(BaseModel):
    source: AISource = AISource.RESPONSE


class ModeBody(BaseModel):
    mode: AIMode


class ReplyBody(BaseModel):
    prompt: Optional[str] = None
    custom_prompt: Optional[str] = None


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _bad_request(details: str) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "missing_parameters", "details": details},
    )


def _sse(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


def _iso(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).isoformat()


def _transcript_payload(event: TranscriptPartial | TranscriptFinal) -> dict[str, Any]:
    return {
        "id": f"transcript-{event.ts_ms}",
        "text": event.text,
        "speaker": event.speaker_label,
        "confidence": event.confidence,
        "timestamp": _iso(event.ts_ms),
    }


async def _event_feed(
    manager: StreamingSessionManager,
    session: StreamingSession,
    heartbeat_s: float,
) -> AsyncIterator[str]:
    """
    Server-Sent Events for one session.

    ready -> (partial | final | ping)* -> [error]. The feed ends when the
    recognition stream terminates; leaving it (client disconnect)
    terminates the session.
    """
    session_id = session.session_id
    try:
        yield _sse("ready", {
            "session_id": session_id,
            "sample_rate_hz": RECOGNIZER_AUDIO_FORMAT.sample_rate_hz,
            "channels": RECOGNIZER_AUDIO_FORMAT.channels,
        })

        while True:
            try:
                event = await asyncio.wait_for(session.events.get(), timeout=heartbeat_s)
            except asyncio.TimeoutError:
                yield _sse("ping", {"ts_ms": now_ms()})
                continue

            if event is None or event.event_type == RecognitionEventType.END:
                break

            if isinstance(event, StreamErrored):
                err = RecognitionError(session_id, event.reason)
                yield _sse("error", {"message": event.reason, "code": err.code})
                break

            if isinstance(event, (TranscriptPartial, TranscriptFinal)):
                yield _sse(event.event_type.value, _transcript_payload(event))
    finally:
        log_event({
            "event_type": "SSE_FEED_CLOSED",
            "session_id": session_id,
        })
        await asyncio.shield(
            manager.terminate(session_id, reason="client_disconnect", expected=session)
        )


# ------------------------------------------------------------------
# Routes
# ------------------------------------------------------------------

def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""

    @app.exception_handler(PipelineError)
    async def pipeline_error(_: Request, exc: PipelineError) -> JSONResponse: # pyright: ignore[reportUnusedFunction]
        log_event({
            "event_type": "HTTP_PIPELINE_ERROR",
            "level": "warning",
            "error": exc.code,
            "details": str(exc),
        })
        return JSONResponse(status_code=exc.http_status, content=exc.to_payload())

    @app.get("/health")
    async def health() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        manager: StreamingSessionManager = app.state.sessions
        return {"status": "ok", "active_sessions": len(manager.store)}

    # --------------------------------------------------------------
    # Speech recognition
    # --------------------------------------------------------------

    @app.get("/stt/stream", response_model=None)
    async def stt_stream( # pyright: ignore[reportUnusedFunction]
        session_id: Optional[str] = None,
        meeting_id: Optional[str] = None,
    ) -> StreamingResponse | JSONResponse:
        if not session_id:
            return _bad_request("session_id is required")

        manager: StreamingSessionManager = app.state.sessions
        session = await manager.open(session_id, meeting_id)

        return StreamingResponse(
            _event_feed(manager, session, app.state.config.sse_heartbeat_interval_s),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.post("/stt/upload", response_model=None)
    async def stt_upload( # pyright: ignore[reportUnusedFunction]
        request: Request,
        session_id: Optional[str] = None,
        sequence: Optional[int] = None,
    ) -> dict[str, Any] | JSONResponse:
        payload = await request.body()
        if not session_id or not payload:
            return _bad_request("session_id and audio data are required")

        uploader: FrameUploader = app.state.uploader
        result = await uploader.upload(session_id, payload, sequence)
        return {
            "success": True,
            "sequence": result.sequence_num,
            "size": result.size,
            "writes": result.writes,
        }

    @app.websocket("/stt/ws")
    async def stt_ws(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()
        uploader: FrameUploader = app.state.uploader

        try:
            while True:
                msg = await ws.receive()
                if msg["type"] == "websocket.disconnect":
                    break

                data = msg.get("bytes")
                if data is None:
                    await ws.send_text(json.dumps({
                        "type": "REJECT",
                        "error": "binary_frames_only",
                    }))
                    continue

                try:
                    frame = decode_c2s_frame(data)
                except BinaryProtocolError as exc:
                    await ws.send_text(json.dumps({
                        "type": "REJECT",
                        "error": "malformed_frame",
                        "details": str(exc),
                    }))
                    continue

                try:
                    await uploader.upload(frame.session_id, frame.pcm_bytes, frame.sequence_num)
                except PipelineError as exc:
                    await ws.send_text(json.dumps({
                        "type": "REJECT",
                        "session_id": frame.session_id,
                        "sequence": frame.sequence_num,
                        **exc.to_payload(),
                    }))

        except WebSocketDisconnect:
            pass

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "WS_FATAL_ERROR",
                "level": "error",
                "exception": type(exc).__name__,
                "message": str(exc),
            })

    # --------------------------------------------------------------
    # AI turns
    # --------------------------------------------------------------

    @app.post("/sessions/{session_id}/ai/chunks")
    async def ai_chunks(session_id: str, body: ChunkBody) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        recorders: TurnRecorderRegistry = app.state.recorders
        recorder = await recorders.get_or_create(session_id)
        recorder.append_chunk(body.text)
        return {"buffered_chars": len(recorder.buffer)}

    @app.post("/sessions/{session_id}/ai/complete")
    async def ai_complete( # pyright: ignore[reportUnusedFunction]
        session_id: str,
        body: Optional[TurnBody] = None,
    ) -> dict[str, Any]:
        recorders: TurnRecorderRegistry = app.state.recorders
        recorder = await recorders.get_or_create(session_id)
        source = body.source if body is not None else AISource.RESPONSE
        saved = await recorder.complete_turn(source=source)
        return {"saved": saved, "buffered_chars": len(recorder.buffer)}

    @app.post("/sessions/{session_id}/ai/flush")
    async def ai_flush( # pyright: ignore[reportUnusedFunction]
        session_id: str,
        body: Optional[TurnBody] = None,
    ) -> dict[str, Any]:
        recorders: TurnRecorderRegistry = app.state.recorders
        recorder = await recorders.get_or_create(session_id)
        source = body.source if body is not None else AISource.RESPONSE
        saved = await recorder.flush(source=source)
        return {"saved": saved, "buffered_chars": len(recorder.buffer)}

    @app.post("/sessions/{session_id}/ai/mode")
    async def ai_mode(session_id: str, body: ModeBody) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        recorders: TurnRecorderRegistry = app.state.recorders
        recorder = await recorders.get_or_create(session_id)
        recorder.set_mode(body.mode)
        return {"mode": recorder.mode.value}

    @app.post("/sessions/{session_id}/ai/reply", response_model=None)
    async def ai_reply( # pyright: ignore[reportUnusedFunction]
        session_id: str,
        body: ReplyBody,
    ) -> dict[str, Any] | JSONResponse:
        replies: ReplyStreamer | None = app.state.replies
        if replies is None:
            return JSONResponse(
                status_code=503,
                content={"error": "llm_unavailable", "details": "no LLM client configured"},
            )

        store: ConversationStore = app.state.conversation_store
        recorders: TurnRecorderRegistry = app.state.recorders
        recorder = await recorders.get_or_create(session_id)

        log = await build_conversation_log(
            transcripts=store,
            ai_messages=store,
            session_id=session_id,
        )
        messages = serialize_for_llm(
            system_prompt=system_prompt_for(recorder.mode, body.custom_prompt),
            conversation_text=log.text,
            user_text=body.prompt,
        )
        return {"started": replies.start(recorder, messages)}

    @app.post("/sessions/{session_id}/ai/stop")
    async def ai_stop(session_id: str) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        replies: ReplyStreamer | None = app.state.replies
        stopped = await replies.stop(session_id) if replies is not None else False
        return {"stopped": stopped}

    # --------------------------------------------------------------
    # Session end and read side
    # --------------------------------------------------------------

    @app.post("/sessions/{session_id}/end")
    async def end_session(session_id: str) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        replies: ReplyStreamer | None = app.state.replies
        if replies is not None:
            await replies.stop(session_id)

        recorders: TurnRecorderRegistry = app.state.recorders
        flushed = await recorders.close(session_id)

        manager: StreamingSessionManager = app.state.sessions
        terminated = await manager.terminate(session_id, reason="session_end")

        log_event({
            "event_type": "SESSION_END_REQUESTED",
            "session_id": session_id,
            "flushed": flushed,
            "terminated": terminated,
        })
        return {"flushed": flushed, "terminated": terminated}

    @app.get("/sessions/{session_id}/transcripts")
    async def list_transcripts(session_id: str) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        store: ConversationStore = app.state.conversation_store
        records = await store.list_transcripts(session_id)
        return {"session_id": session_id, "transcripts": [r.to_dict() for r in records]}

    @app.get("/sessions/{session_id}/ai-messages")
    async def list_ai_messages(session_id: str) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        store: ConversationStore = app.state.conversation_store
        records = await store.list_ai_messages(session_id)
        return {"session_id": session_id, "ai_messages": [r.to_dict() for r in records]}

    @app.get("/sessions/{session_id}/conversation")
    async def conversation( # pyright: ignore[reportUnusedFunction]
        session_id: str,
        mode: MergeMode = MergeMode.HUMAN_AI_COMBINED,
    ) -> dict[str, Any]:
        store: ConversationStore = app.state.conversation_store
        log = await build_conversation_log(
            transcripts=store,
            ai_messages=store,
            session_id=session_id,
            mode=mode,
        )
        return log.to_dict()
