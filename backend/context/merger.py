"""
Conversation merger.

Responsibilities:
- Merge human transcripts and AI messages into one chronological log
- Derive statistics over the merged log
- Render the log as plain text for summarization / evaluation

Invariants:
- Pure: identical inputs always yield an identical ordered sequence.
- Stable ordering by timestamp. On equal timestamps humans come before
  AI, and each source keeps its input order.
- human_only / ai_only results are subsequences of the combined result.

Non-responsibilities:
- No persistence (build_conversation_log only reads)
- No summarization
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional

from constants import (
    SUMMARY_AI_SPEAKER_NAME,
    SUMMARY_HUMAN_FALLBACK_NAME,
    SUMMARY_MESSAGE_SEPARATOR,
    UNKNOWN_PARTICIPANT_NAME,
)
from persistence.base import AIMessageRepository, TranscriptRepository
from persistence.records import AIMessageRecord, TranscriptRecord


class Speaker(str, Enum):
    HUMAN = "human"
    AI = "ai"


class MergeMode(str, Enum):
    HUMAN_ONLY = "human_only"
    AI_ONLY = "ai_only"
    HUMAN_AI_COMBINED = "human_ai_combined"


class MessageSource(str, Enum):
    TRANSCRIPT = "transcript"
    AI_MESSAGE = "ai_message"


@dataclass(frozen=True)
class ConversationMessage:
    """One entry of the merged log. Derived only; never persisted."""
    speaker: Speaker
    text: str
    timestamp: datetime
    source: MessageSource
    speaker_name: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "speaker": self.speaker.value,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source.value,
            "speaker_name": self.speaker_name,
        }


@dataclass(frozen=True)
class ConversationStats:
    total_messages: int
    human_message_count: int
    ai_message_count: int
    participant_count: int
    duration_seconds: int

    def to_dict(self) -> dict[str, int]:
        return {
            "total_messages": self.total_messages,
            "human_message_count": self.human_message_count,
            "ai_message_count": self.ai_message_count,
            "participant_count": self.participant_count,
            "duration_seconds": self.duration_seconds,
        }


# ------------------------------------------------------------------
# Projection
# ------------------------------------------------------------------

def _as_utc(ts: datetime) -> datetime:
    # Naive timestamps from external stores are taken as UTC.
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _human_name(record: TranscriptRecord) -> str:
    # participant name -> raw speaker label -> placeholder
    return record.participant_name or record.speaker_label or UNKNOWN_PARTICIPANT_NAME


def _from_transcript(record: TranscriptRecord) -> ConversationMessage:
    return ConversationMessage(
        speaker=Speaker.HUMAN,
        text=record.text,
        timestamp=_as_utc(record.created_at),
        source=MessageSource.TRANSCRIPT,
        speaker_name=_human_name(record),
    )


def _from_ai_message(record: AIMessageRecord) -> ConversationMessage:
    return ConversationMessage(
        speaker=Speaker.AI,
        text=record.text,
        timestamp=_as_utc(record.created_at),
        source=MessageSource.AI_MESSAGE,
    )


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------

def merge_conversation_logs(
    transcripts: Iterable[TranscriptRecord],
    ai_messages: Iterable[AIMessageRecord],
    mode: MergeMode = MergeMode.HUMAN_AI_COMBINED,
) -> list[ConversationMessage]:
    """
    Merge both collections into one list sorted by timestamp (ascending).
    """
    messages: list[ConversationMessage] = []

    if mode in (MergeMode.HUMAN_ONLY, MergeMode.HUMAN_AI_COMBINED):
        messages.extend(_from_transcript(t) for t in transcripts)

    if mode in (MergeMode.AI_ONLY, MergeMode.HUMAN_AI_COMBINED):
        messages.extend(_from_ai_message(a) for a in ai_messages)

    # sorted() is stable: ties keep the projection order above.
    return sorted(messages, key=lambda m: m.timestamp)


def get_conversation_stats(messages: list[ConversationMessage]) -> ConversationStats:
    humans = [m for m in messages if m.speaker == Speaker.HUMAN]
    ai_count = sum(1 for m in messages if m.speaker == Speaker.AI)

    participants = {m.speaker_name for m in humans if m.speaker_name is not None}

    duration_seconds = 0
    if len(messages) >= 2:
        delta = messages[-1].timestamp - messages[0].timestamp
        duration_seconds = math.floor(delta.total_seconds())

    return ConversationStats(
        total_messages=len(messages),
        human_message_count=len(humans),
        ai_message_count=ai_count,
        participant_count=len(participants),
        duration_seconds=duration_seconds,
    )


def format_conversation_for_summary(messages: list[ConversationMessage]) -> str:
    """
    Render `[name]: text` lines separated by blank lines.
    """
    lines = []
    for m in messages:
        if m.speaker == Speaker.HUMAN:
            name = m.speaker_name or SUMMARY_HUMAN_FALLBACK_NAME
        else:
            name = SUMMARY_AI_SPEAKER_NAME
        lines.append(f"[{name}]: {m.text}")
    return SUMMARY_MESSAGE_SEPARATOR.join(lines)


@dataclass(frozen=True)
class ConversationLog:
    """Input contract of the summarization / evaluation collaborator."""
    session_id: str
    mode: MergeMode
    messages: list[ConversationMessage]
    stats: ConversationStats
    text: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "mode": self.mode.value,
            "messages": [m.to_dict() for m in self.messages],
            "stats": self.stats.to_dict(),
            "text": self.text,
        }


async def build_conversation_log(
    *,
    transcripts: TranscriptRepository,
    ai_messages: AIMessageRepository,
    session_id: str,
    mode: MergeMode = MergeMode.HUMAN_AI_COMBINED,
) -> ConversationLog:
    """Load both collections for a session and merge them."""
    messages = merge_conversation_logs(
        await transcripts.list_transcripts(session_id),
        await ai_messages.list_ai_messages(session_id),
        mode,
    )
    return ConversationLog(
        session_id=session_id,
        mode=mode,
        messages=messages,
        stats=get_conversation_stats(messages),
        text=format_conversation_for_summary(messages),
    )
