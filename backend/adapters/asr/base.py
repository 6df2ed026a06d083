"""
Recognition stream contract.

This module defines the streaming recognizer boundary. It contains no
vendor code, no buffering, no retries.

Key invariants:
- After start(), a stream emits zero or more partial/final events and then
  exactly one terminal event (end or error).
- Nothing is delivered after the terminal event. The base class enforces
  this; implementations report everything through _deliver().
- The adapter emits events; it never touches the session store. The
  session manager reacts to terminal events.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Coroutine

from adapters.asr.events import RecognitionEvent, is_terminal


EventSink = Callable[[RecognitionEvent], Coroutine[Any, Any, None]]


class RecognitionStream(ABC):
    """
    Abstract streaming recognizer bound to one session.

    Note: emit_event callback must be async.

    Implementations are responsible for:
    - Opening the vendor stream in start()
    - Accepting PCM16 audio via write(), in call order
    - Reporting partial/final/end/error through _deliver()
    - Releasing vendor resources in close()

    Non-responsibilities:
    - No session registry access
    - No persistence of transcripts
    - No frame splitting (the uploader enforces wire limits)
    """

    def __init__(self, *, session_id: str, emit_event: EventSink) -> None:
        self._session_id = session_id
        self._emit_event = emit_event
        self._terminated = False

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def closed(self) -> bool:
        """True once a terminal event has been delivered."""
        return self._terminated

    @abstractmethod
    async def start(self) -> None:
        """
        Open the recognition stream.

        Raises on failure; nothing has been registered at that point.
        """
        raise NotImplementedError

    @abstractmethod
    async def write(self, audio: bytes) -> None:
        """
        Send one PCM16 buffer to the recognizer.

        Contract:
        - May await until the transport accepts the buffer.
        - Raises on transport failure; the caller maps that to
          StreamWriteFailed.
        - Buffers are forwarded in call order.
        """
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """
        Close the stream and release resources.

        Contract:
        - Idempotent.
        - Results in a terminal event if none was delivered yet.
        """
        raise NotImplementedError

    async def _deliver(self, event: RecognitionEvent) -> None:
        """
        Forward one event to the sink unless the stream already terminated.
        """
        if self._terminated:
            return
        if is_terminal(event):
            self._terminated = True
        await self._emit_event(event)


StreamFactory = Callable[[str, EventSink], RecognitionStream]
