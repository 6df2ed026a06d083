"""
Deepgram live-streaming recognition adapter.

Core model:
- One Deepgram WebSocket per streaming session, opened by start() and
  closed by close() (or by Deepgram).
- Audio is sent as raw linear16 binary messages, in write() order.
- Deepgram "Results" messages become partial (is_final=False) or final
  (is_final=True) transcript events. Empty transcripts are dropped.
- Diarization: the first word's speaker index becomes "Speaker N".
- A clean socket close becomes StreamEnded; a Deepgram "Error" message or
  an abnormal close becomes StreamErrored.
- While no audio flows, a KeepAlive message is sent periodically so
  Deepgram does not time the stream out.

Design constraints:
- Adapter must not touch the session store or persistence.
- Adapter must not split audio (the uploader enforces wire limits).
"""

from __future__ import annotations

import asyncio
import json
import time
import urllib.parse
from typing import Any, TYPE_CHECKING

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from adapters.asr.base import EventSink, RecognitionStream, StreamFactory
from adapters.asr.events import (
    StreamEnded,
    StreamErrored,
    TranscriptFinal,
    TranscriptPartial,
)
from constants import DEFAULT_SPEAKER_LABEL, RECOGNIZER_AUDIO_FORMAT
from observability.logger import log_event, now_ms

if TYPE_CHECKING:
    from config import AppConfig


DEEPGRAM_LISTEN_URL = "wss://api.deepgram.com/v1/listen"


def speaker_label_from_words(words: list[dict[str, Any]]) -> str:
    """
    Derive a speaker label from Deepgram's diarized word list.

    Uses the first word's speaker index; falls back to DEFAULT_SPEAKER_LABEL.
    """
    if words:
        speaker = words[0].get("speaker")
        if isinstance(speaker, int):
            return f"Speaker {speaker}"
    return DEFAULT_SPEAKER_LABEL


class DeepgramRecognitionStream(RecognitionStream):
    """
    Deepgram /v1/listen adapter implementing RecognitionStream.
    """

    _KEEPALIVE_INTERVAL_S = 5.0
    _CLOSE_TIMEOUT_S = 5.0

    def __init__(
        self,
        *,
        session_id: str,
        emit_event: EventSink,
        api_key: str,
        model: str = "nova-2",
        language: str | None = None,
        punctuate: bool = True,
        interim_results: bool = True,
        diarize: bool = True,
    ) -> None:
        super().__init__(session_id=session_id, emit_event=emit_event)
        self._api_key = api_key

        self._model = model
        self._language = language
        self._punctuate = punctuate
        self._interim_results = interim_results
        self._diarize = diarize

        self._ws: ClientConnection | None = None
        self._recv_task: asyncio.Task[None] | None = None
        self._keepalive_task: asyncio.Task[None] | None = None

        self._last_audio_send_ts: float = 0.0
        self._closing: bool = False

    # -------------------------------------------------------------------------
    # RecognitionStream
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Open the Deepgram socket and start the receive loop."""
        headers = {"Authorization": f"Token {self._api_key}"}
        self._ws = await ws_connect(
            self._build_url(),
            additional_headers=headers,
            max_size=2**22,
            ping_interval=None,
        )
        self._last_audio_send_ts = time.monotonic()
        self._recv_task = asyncio.create_task(self._recv_loop())
        self._keepalive_task = asyncio.create_task(self._keepalive_loop())

        log_event({
            "event_type": "DEEPGRAM_STREAM_OPENED",
            "session_id": self._session_id,
            "model": self._model,
            "language": self._language,
        })

    async def write(self, audio: bytes) -> None:
        ws = self._ws
        if ws is None or self.closed or self._closing:
            raise ConnectionError("deepgram stream is not open")

        await ws.send(audio)
        self._last_audio_send_ts = time.monotonic()

    async def close(self) -> None:
        """
        Ask Deepgram to flush and close, then wait for the receive loop.

        Deepgram answers CloseStream with any pending finals followed by a
        normal close, so late finals are still delivered.
        """
        if self._closing:
            return
        self._closing = True

        if self._keepalive_task is not None and not self._keepalive_task.done():
            self._keepalive_task.cancel()

        ws = self._ws
        if ws is not None and not self.closed:
            try:
                await ws.send(json.dumps({"type": "CloseStream"}))
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "event_type": "DEEPGRAM_CLOSE_SEND_FAILED",
                    "level": "warning",
                    "session_id": self._session_id,
                    "error": repr(e),
                })

        rt = self._recv_task
        if rt is not None and not rt.done():
            try:
                await asyncio.wait_for(rt, timeout=self._CLOSE_TIMEOUT_S)
            except asyncio.TimeoutError:
                rt.cancel()

        if ws is not None:
            try:
                await ws.close()
            except Exception:  # pylint: disable=broad-exception-caught
                pass

        # Guarantees a terminal event even if the socket died silently.
        await self._deliver(StreamEnded(session_id=self._session_id, ts_ms=now_ms()))

    # -------------------------------------------------------------------------
    # Connection helpers
    # -------------------------------------------------------------------------

    def _build_url(self) -> str:
        params: dict[str, str] = {
            "model": self._model,
            "encoding": "linear16",
            "sample_rate": str(RECOGNIZER_AUDIO_FORMAT.sample_rate_hz),
            "channels": str(RECOGNIZER_AUDIO_FORMAT.channels),
            "punctuate": str(self._punctuate).lower(),
            "interim_results": str(self._interim_results).lower(),
            "diarize": str(self._diarize).lower(),
        }
        if self._language:
            params["language"] = self._language

        qs = urllib.parse.urlencode(params)
        return f"{DEEPGRAM_LISTEN_URL}?{qs}"

    # -------------------------------------------------------------------------
    # Background loops
    # -------------------------------------------------------------------------

    async def _recv_loop(self) -> None:
        ws = self._ws
        if ws is None:
            return

        try:
            async for raw in ws:
                if isinstance(raw, bytes):
                    continue
                try:
                    data = json.loads(raw)
                except ValueError as e:
                    log_event({
                        "event_type": "DEEPGRAM_MESSAGE_DECODE_ERROR",
                        "level": "warning",
                        "session_id": self._session_id,
                        "error": str(e),
                    })
                    continue

                await self.handle_message(data)
        except asyncio.CancelledError:
            return
        except ConnectionClosedOK:
            pass
        except ConnectionClosedError as e:
            await self._deliver(
                StreamErrored(
                    session_id=self._session_id,
                    reason=f"deepgram_connection_lost: {e!r}",
                    ts_ms=now_ms(),
                )
            )
            return
        except Exception as e:  # pylint: disable=broad-exception-caught
            await self._deliver(
                StreamErrored(
                    session_id=self._session_id,
                    reason=f"deepgram_recv_failed: {e!r}",
                    ts_ms=now_ms(),
                )
            )
            return

        await self._deliver(StreamEnded(session_id=self._session_id, ts_ms=now_ms()))

    async def _keepalive_loop(self) -> None:
        try:
            while not self.closed:
                await asyncio.sleep(self._KEEPALIVE_INTERVAL_S)
                ws = self._ws
                if ws is None or self._closing:
                    return
                idle_s = time.monotonic() - self._last_audio_send_ts
                if idle_s >= self._KEEPALIVE_INTERVAL_S:
                    await ws.send(json.dumps({"type": "KeepAlive"}))
        except asyncio.CancelledError:
            return
        except Exception as e:  # pylint: disable=broad-exception-caught
            # The receive loop reports the broken socket.
            log_event({
                "event_type": "DEEPGRAM_KEEPALIVE_FAILED",
                "level": "warning",
                "session_id": self._session_id,
                "error": repr(e),
            })

    async def handle_message(self, data: dict[str, Any]) -> None:
        """
        Translate one decoded Deepgram message into recognition events.
        """
        msg_type = data.get("type")

        if msg_type == "Error":
            await self._deliver(
                StreamErrored(
                    session_id=self._session_id,
                    reason=(
                        f"deepgram_error: {data.get('err_code') or data.get('code')} "
                        f"{data.get('err_msg') or data.get('description')}"
                    ),
                    ts_ms=now_ms(),
                )
            )
            return

        if msg_type != "Results":
            return

        alternatives = (data.get("channel") or {}).get("alternatives") or []
        if not alternatives:
            return

        best = alternatives[0]
        raw_transcript = best.get("transcript")
        transcript = raw_transcript.strip() if isinstance(raw_transcript, str) else ""
        if not transcript:
            return

        speaker = speaker_label_from_words(best.get("words") or [])
        confidence = float(best.get("confidence") or 0.0)

        if data.get("is_final"):
            await self._deliver(
                TranscriptFinal(
                    session_id=self._session_id,
                    text=transcript,
                    speaker_label=speaker,
                    confidence=confidence,
                    ts_ms=now_ms(),
                )
            )
        else:
            await self._deliver(
                TranscriptPartial(
                    session_id=self._session_id,
                    text=transcript,
                    speaker_label=speaker,
                    confidence=confidence,
                    ts_ms=now_ms(),
                )
            )


def deepgram_stream_factory(config: AppConfig) -> StreamFactory:
    """
    Build the StreamFactory used by the session manager.

    Raises:
        RuntimeError if DEEPGRAM_API_KEY is not configured.
    """
    api_key = config.deepgram_api_key
    if not api_key:
        raise RuntimeError("DEEPGRAM_API_KEY environment variable not set")

    def _factory(session_id: str, emit_event: EventSink) -> RecognitionStream:
        return DeepgramRecognitionStream(
            session_id=session_id,
            emit_event=emit_event,
            api_key=api_key,
            model=config.deepgram_model,
            language=config.deepgram_language,
        )

    return _factory
