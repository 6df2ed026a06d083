"""
Persistence boundary.

The pipeline never talks to a concrete store. Repositories are the seam
where the relational/storage collaborator plugs in.

Failure contract:
- save_ai_message returns False (or raises PersistenceFailed) when the
  record was not durably saved. Callers treat both the same way.
- save_transcript raises PersistenceFailed on failure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from persistence.records import AIMessageRecord, TranscriptRecord


class TranscriptRepository(ABC):
    """Storage for confirmed human transcripts."""

    @abstractmethod
    async def save_transcript(self, record: TranscriptRecord) -> None:
        raise NotImplementedError

    @abstractmethod
    async def list_transcripts(self, session_id: str) -> list[TranscriptRecord]:
        """All transcripts for a session, in insertion order."""
        raise NotImplementedError


class AIMessageRepository(ABC):
    """Storage for AI turns, keyed by turn id."""

    @abstractmethod
    async def save_ai_message(self, record: AIMessageRecord) -> bool:
        """Persist one turn. Returns True once the turn is durably saved."""
        raise NotImplementedError

    @abstractmethod
    async def list_ai_messages(self, session_id: str) -> list[AIMessageRecord]:
        """All AI messages for a session, in insertion order."""
        raise NotImplementedError

    async def list_turn_ids(self, session_id: str) -> list[str]:
        """Turn ids already persisted for a session."""
        return [m.turn_id for m in await self.list_ai_messages(session_id)]


class ConversationStore(TranscriptRepository, AIMessageRepository, ABC):
    """Both repositories behind one object; what the app factory wires."""
