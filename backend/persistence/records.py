"""
Persisted record types.

Records are immutable once created. They are produced by the session
manager (transcripts) and the Turn Recorder (AI messages) and read back
by the conversation merger.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class AIProvider(str, Enum):
    """Backend that generated an AI message."""
    GEMINI_LIVE = "gemini_live"
    GEMINI_ASSESSMENT = "gemini_assessment"
    OPENAI_REALTIME = "openai_realtime"


class AIMode(str, Enum):
    """What the AI agent was doing when it produced the message."""
    ASSISTANT = "assistant"
    ASSESSMENT = "assessment"
    CUSTOM = "custom"


class AISource(str, Enum):
    """What triggered the message."""
    RESPONSE = "response"
    TRIGGER = "trigger"
    ERROR = "error"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TranscriptRecord:
    """One confirmed (final) human utterance."""
    record_id: str
    session_id: str
    speaker_label: str
    text: str
    created_at: datetime
    participant_id: Optional[str] = None
    participant_name: Optional[str] = None
    confidence: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.record_id,
            "session_id": self.session_id,
            "speaker_label": self.speaker_label,
            "text": self.text,
            "created_at": self.created_at.isoformat(),
            "participant_id": self.participant_id,
            "participant_name": self.participant_name,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class AIProvenance:
    """Provenance tag stamped on an AI message at persistence time."""
    provider: AIProvider
    mode: AIMode
    source: AISource = AISource.RESPONSE


@dataclass(frozen=True)
class AIMessageRecord:
    """The full text of one AI turn."""
    turn_id: str
    session_id: str
    text: str
    provenance: AIProvenance
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "turn_id": self.turn_id,
            "session_id": self.session_id,
            "text": self.text,
            "provider": self.provenance.provider.value,
            "mode": self.provenance.mode.value,
            "source": self.provenance.source.value,
            "created_at": self.created_at.isoformat(),
        }
