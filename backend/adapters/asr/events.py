"""
Recognition event definitions.

Rules:
- Events describe facts reported by a recognizer.
- Events carry data only (no behavior).
- A stream delivers zero or more TranscriptPartial / TranscriptFinal
  events and then exactly one terminal event (StreamEnded or StreamErrored).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union


class RecognitionEventType(str, Enum):
    """
    Canonical recognition event types.

    The values double as the Server-Sent-Events event names.
    """

    PARTIAL = "partial"
    FINAL = "final"
    END = "end"
    ERROR = "error"


@dataclass(frozen=True)
class TranscriptPartial:
    """
    Low-confidence, revisable text. May never be followed by a final
    (interrupted speech).
    """
    session_id: str
    text: str
    speaker_label: str
    confidence: float
    ts_ms: int
    event_type: RecognitionEventType = RecognitionEventType.PARTIAL


@dataclass(frozen=True)
class TranscriptFinal:
    """Confirmed text. Finals only ever advance."""
    session_id: str
    text: str
    speaker_label: str
    confidence: float
    ts_ms: int
    event_type: RecognitionEventType = RecognitionEventType.FINAL


@dataclass(frozen=True)
class StreamEnded:
    """Clean closure of the recognition stream."""
    session_id: str
    ts_ms: int
    event_type: RecognitionEventType = RecognitionEventType.END


@dataclass(frozen=True)
class StreamErrored:
    """Recognizer failure. Terminal for the session."""
    session_id: str
    reason: str
    ts_ms: int
    event_type: RecognitionEventType = RecognitionEventType.ERROR


RecognitionEvent = Union[TranscriptPartial, TranscriptFinal, StreamEnded, StreamErrored]

TERMINAL_EVENT_TYPES: frozenset[RecognitionEventType] = frozenset(
    {RecognitionEventType.END, RecognitionEventType.ERROR}
)


def is_terminal(event: RecognitionEvent) -> bool:
    """True for StreamEnded / StreamErrored."""
    return event.event_type in TERMINAL_EVENT_TYPES
