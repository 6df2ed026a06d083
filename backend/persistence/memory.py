"""
In-process conversation store.

Implements both repositories over plain dicts. Used by default in the
app factory and by the tests; a real deployment swaps in a database
backed implementation.
"""

from __future__ import annotations

import threading

from persistence.base import ConversationStore
from persistence.records import AIMessageRecord, TranscriptRecord


class InMemoryConversationStore(ConversationStore):
    """
    Transcripts and AI messages per session.

    AI messages are de-duplicated on turn id: saving an already stored
    turn id is acknowledged without storing a second copy.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._transcripts: dict[str, list[TranscriptRecord]] = {}
        self._ai_messages: dict[str, list[AIMessageRecord]] = {}
        self._turn_ids: set[str] = set()

    async def save_transcript(self, record: TranscriptRecord) -> None:
        with self._lock:
            self._transcripts.setdefault(record.session_id, []).append(record)

    async def list_transcripts(self, session_id: str) -> list[TranscriptRecord]:
        with self._lock:
            return list(self._transcripts.get(session_id, ()))

    async def save_ai_message(self, record: AIMessageRecord) -> bool:
        with self._lock:
            if record.turn_id in self._turn_ids:
                return True
            self._turn_ids.add(record.turn_id)
            self._ai_messages.setdefault(record.session_id, []).append(record)
            return True

    async def list_ai_messages(self, session_id: str) -> list[AIMessageRecord]:
        with self._lock:
            return list(self._ai_messages.get(session_id, ()))
