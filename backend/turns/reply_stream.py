"""
Streaming AI reply driver.

Streams an OpenAI-compatible chat completion into a session's Turn
Recorder:
- every content delta -> recorder.append_chunk()
- normal end of stream -> recorder.complete_turn()
- cancellation (pause / stop / disconnect) or stream failure
  -> recorder.flush(), so the partial reply is kept

Design notes:
- One streamer serves every session; at most one reply runs per session.
- Each reply is an asyncio.Task tracked by session id.
- The streamer does NOT retry, chunk text, or build prompts.
"""

from __future__ import annotations

import asyncio
from typing import Any

from observability.logger import log_event
from turns.recorder import TurnRecorder


class ReplyStreamer:
    """
    Concrete streaming reply adapter over `client.chat.completions`.
    """

    def __init__(
        self,
        *,
        client: Any,
        model: str,
        provider: str = "openai",
    ) -> None:
        """
        Args:
            client:
                Vendor client (openai.AsyncOpenAI or a compatible endpoint).
            model:
                Model identifier string.
            provider:
                "openai" or "groq"; selects provider-specific options.
        """
        self._client = client
        self._model = model
        self._provider = provider

        # One task per session with an active reply
        self._active_tasks: dict[str, asyncio.Task[None]] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def is_active(self, session_id: str) -> bool:
        task = self._active_tasks.get(session_id)
        return task is not None and not task.done()

    def start(self, recorder: TurnRecorder, messages: list[dict[str, str]]) -> bool:
        """
        Start streaming a reply into `recorder`.

        Returns False (and does nothing) if a reply is already running for
        the recorder's session. Returns immediately; the stream runs in a
        background task.
        """
        session_id = recorder.session_id
        if self.is_active(session_id):
            return False

        task = asyncio.create_task(self._run_stream(recorder, messages))
        self._active_tasks[session_id] = task

        def _cleanup(done: asyncio.Task[None]) -> None:
            if self._active_tasks.get(session_id) is done:
                del self._active_tasks[session_id]

        task.add_done_callback(_cleanup)
        return True

    async def wait(self, session_id: str) -> None:
        """Wait for the session's active reply (if any) to finish."""
        task = self._active_tasks.get(session_id)
        if task is None:
            return
        await asyncio.wait({task})

    async def stop(self, session_id: str) -> bool:
        """
        Cancel the session's active reply. The partial reply is flushed.

        Idempotent; returns False if nothing was running.
        """
        task = self._active_tasks.get(session_id)
        if task is None or task.done():
            return False

        task.cancel()
        await asyncio.wait({task})
        return True

    async def stop_all(self) -> None:
        for session_id in list(self._active_tasks):
            await self.stop(session_id)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _run_stream(
        self,
        recorder: TurnRecorder,
        messages: list[dict[str, str]],
    ) -> None:
        session_id = recorder.session_id
        log_event({
            "event_type": "REPLY_STREAM_STARTED",
            "session_id": session_id,
            "model": self._model,
            "provider": self._provider,
        })

        try:
            kwargs: dict[str, Any] = dict(
                model=self._model,
                messages=messages,
                stream=True,
            )
            stream = await self._client.chat.completions.create(**kwargs)

            async for chunk in stream:
                delta = self._extract_delta(chunk)
                if delta:
                    recorder.append_chunk(delta)

        except asyncio.CancelledError:
            log_event({
                "event_type": "REPLY_STREAM_CANCELLED",
                "session_id": session_id,
                "buffered_chars": len(recorder.buffer),
            })
            await recorder.flush()
            raise

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "REPLY_STREAM_FAILED",
                "level": "error",
                "session_id": session_id,
                "reason": f"{type(exc).__name__}: {exc}",
            })
            await recorder.flush()
            return

        saved = await recorder.complete_turn()
        log_event({
            "event_type": "REPLY_STREAM_DONE",
            "session_id": session_id,
            "saved": saved,
        })

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_delta(chunk: Any) -> str:
        """
        Extract token delta from vendor response (OpenAI format).
        """
        try:
            delta = chunk.choices[0].delta
            return delta.content or ""
        except (AttributeError, IndexError):
            return ""
