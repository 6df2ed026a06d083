"""
BEHAVIOURAL CONSTANTS
---------------------
Single source of truth for the pipeline's invariants.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Deployment-specific values (keys, limits overridable per environment)
  live in config.py and default to the values below.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

# =============================================================================
# Audio Format (PCM16 mono @ 16kHz)
# =============================================================================

AUDIO_SAMPLE_RATE_HZ: Final[int] = 16_000
AUDIO_CHANNELS: Final[int] = 1
AUDIO_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit)

# Frame chunker emits one frame per 500ms of captured audio
AUDIO_CHUNK_MS: Final[int] = 500

# =============================================================================
# PCM16 quantization
# =============================================================================

# Negative samples scale by the most-negative magnitude, positive by the
# most-positive. Asymmetric on purpose: -1.0 -> -32768, 1.0 -> 32767.
PCM16_POSITIVE_SCALE: Final[int] = 0x7FFF
PCM16_NEGATIVE_SCALE: Final[int] = 0x8000

# =============================================================================
# Recognition wire limits
# =============================================================================

# Downstream recognizer rejects audio messages above 25KB; keep headroom.
MAX_STREAM_WRITE_BYTES: Final[int] = 20 * 1024

# =============================================================================
# Binary Frame Format (client -> server)
# =============================================================================
# u16 session_id_len | session_id (utf-8) | u32 seq_num | PCM16 payload

C2S_SESSION_ID_LEN_BYTES: Final[int] = 2
C2S_SEQ_NUM_BYTES: Final[int] = 4
C2S_HEADER_MIN_BYTES: Final[int] = C2S_SESSION_ID_LEN_BYTES + C2S_SEQ_NUM_BYTES
SESSION_ID_MAX_BYTES: Final[int] = 256

SEQ_NUM_START: Final[int] = 0
SEQ_NUM_MAX: Final[int] = 2**32 - 1  # u32 wraparound

# =============================================================================
# Session lifecycle
# =============================================================================

# Sessions older than this are presumed leaked (client vanished without
# teardown, e.g. the disconnect landed on another instance).
SESSION_MAX_AGE_S: Final[float] = 3600.0
SESSION_SWEEP_INTERVAL_S: Final[float] = 300.0

# Server-Sent Events heartbeat
SSE_HEARTBEAT_INTERVAL_S: Final[float] = 30.0

# =============================================================================
# Transcripts / conversation log
# =============================================================================

DEFAULT_SPEAKER_LABEL: Final[str] = "Speaker 0"
UNKNOWN_PARTICIPANT_NAME: Final[str] = "Unknown participant"
SUMMARY_HUMAN_FALLBACK_NAME: Final[str] = "Participant"
SUMMARY_AI_SPEAKER_NAME: Final[str] = "AI assistant"
SUMMARY_MESSAGE_SEPARATOR: Final[str] = "\n\n"

# =============================================================================
# AI turns
# =============================================================================

TURN_ID_RANDOM_HEX_LEN: Final[int] = 13

# Conversation text sent with a reply request; oldest text dropped first.
REPLY_CONTEXT_MAX_CHARS: Final[int] = 6_000

# =============================================================================
# Helper Functions
# =============================================================================

def samples_per_chunk(sample_rate_hz: int, chunk_ms: int = AUDIO_CHUNK_MS) -> int:
    """
    Number of samples in one chunk of `chunk_ms` at `sample_rate_hz`.

    Rounded to the nearest sample (48kHz / 500ms -> 24000).
    """
    if sample_rate_hz <= 0:
        raise ValueError("sample_rate_hz must be > 0")
    if chunk_ms <= 0:
        raise ValueError("chunk_ms must be > 0")
    return max(1, round(sample_rate_hz * chunk_ms / 1000))


# =============================================================================
# Convenience Bundles
# =============================================================================

@dataclass(frozen=True)
class AudioFormat:
    """
    Immutable bundle describing the PCM audio format sent to the recognizer.

    This is a convenience wrapper for passing format metadata around;
    it is NOT a second source of truth.
    """
    sample_rate_hz: int = AUDIO_SAMPLE_RATE_HZ
    channels: int = AUDIO_CHANNELS
    sample_width_bytes: int = AUDIO_SAMPLE_WIDTH_BYTES
    chunk_ms: int = AUDIO_CHUNK_MS

    @property
    def samples_per_chunk(self) -> int:
        """Return number of samples per chunk."""
        return samples_per_chunk(self.sample_rate_hz, self.chunk_ms)

    @property
    def bytes_per_chunk(self) -> int:
        """Return number of bytes per chunk."""
        return self.samples_per_chunk * self.channels * self.sample_width_bytes


RECOGNIZER_AUDIO_FORMAT: Final[AudioFormat] = AudioFormat()
