"""
Streaming session registry.

Responsibilities:
- Map session id -> StreamingSession
- Answer lookups from the upload path and the termination path
- Select stale sessions for the periodic sweep

Non-responsibilities:
- Opening or closing recognition streams (see session.manager)
- Persisting anything

SessionStore is the seam at which a shared key-value backend can replace
the in-process map without changing callers.
"""

from __future__ import annotations

import asyncio
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Optional

from adapters.asr.base import RecognitionStream
from adapters.asr.events import RecognitionEvent


Clock = Callable[[], float]


@dataclass
class StreamingSession:
    """
    One live speech-recognition session.

    stream:
        Open recognition stream. Written to only while holding write_lock.

    created_at:
        Epoch seconds. Drives staleness cleanup.

    last_sequence_num:
        Last uploaded chunk's sequence number, for gap diagnostics.

    events:
        Subscriber queue feeding the client's event feed. A None item
        marks the end of the feed.
    """
    session_id: str
    stream: RecognitionStream
    created_at: float = field(default_factory=time.time)
    meeting_id: Optional[str] = None
    last_sequence_num: Optional[int] = None
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    events: "asyncio.Queue[RecognitionEvent | None]" = field(default_factory=asyncio.Queue)


class SessionStore(ABC):
    """
    Registry contract.

    All operations are safe under concurrent calls and never expose a
    partially-updated entry.
    """

    @abstractmethod
    def put(
        self,
        session_id: str,
        session: StreamingSession,
    ) -> Optional[StreamingSession]:
        """
        Register a session. Last writer wins; no error on collision.

        Returns the session it displaced, if any. The caller owns closing it.
        """
        raise NotImplementedError

    @abstractmethod
    def get(self, session_id: str) -> Optional[StreamingSession]:
        raise NotImplementedError

    @abstractmethod
    def remove(
        self,
        session_id: str,
        expected: Optional[StreamingSession] = None,
    ) -> bool:
        """
        Delete the entry. Returns whether one was removed. Idempotent.

        With `expected`, the entry is removed only if it is that exact
        session (a replacement registered under the same id survives).
        """
        raise NotImplementedError

    @abstractmethod
    def pop_older_than(self, max_age_s: float) -> list[StreamingSession]:
        """
        Remove and return every session created before now - max_age_s.
        """
        raise NotImplementedError

    def cleanup_older_than(self, max_age_s: float) -> int:
        """Remove stale sessions. Returns the number removed."""
        return len(self.pop_older_than(max_age_s))

    @abstractmethod
    def __len__(self) -> int:
        raise NotImplementedError


class InMemorySessionStore(SessionStore):
    """Thread-safe in-process registry."""

    def __init__(self, *, clock: Clock = time.time) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._sessions: dict[str, StreamingSession] = {}

    def put(
        self,
        session_id: str,
        session: StreamingSession,
    ) -> Optional[StreamingSession]:
        with self._lock:
            displaced = self._sessions.get(session_id)
            self._sessions[session_id] = session
            return displaced

    def get(self, session_id: str) -> Optional[StreamingSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def remove(
        self,
        session_id: str,
        expected: Optional[StreamingSession] = None,
    ) -> bool:
        with self._lock:
            current = self._sessions.get(session_id)
            if current is None:
                return False
            if expected is not None and current is not expected:
                return False
            del self._sessions[session_id]
            return True

    def pop_older_than(self, max_age_s: float) -> list[StreamingSession]:
        if max_age_s < 0:
            raise ValueError("max_age_s must be >= 0")

        cutoff = self._clock() - max_age_s
        with self._lock:
            stale_ids = [
                sid for sid, s in self._sessions.items() if s.created_at < cutoff
            ]
            return [self._sessions.pop(sid) for sid in stale_ids]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
