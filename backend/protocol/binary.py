# backend/protocol/binary.py
"""
Binary framing helpers for audio transport.

Client → Server (one uploaded audio chunk), little-endian:
    2 bytes  session_id length (u16)
    N bytes  session_id (utf-8)
    4 bytes  seq_num (u32)
    M bytes  PCM16 audio (M even, M > 0)

Usage example:

    frame = decode_c2s_frame(payload)

    result = check_sequence_gap(last_seq=prev_seq, current_seq=frame.sequence_num)
    if result.gap:
        log_event({
            "event_type": "SEQ_GAP_DETECTED",
            "expected": result.expected,
            "actual": result.actual,
            "gap_size": result.gap_size,
        })

    payload = encode_c2s_frame(
        session_id=frame.session_id,
        sequence_num=frame.sequence_num,
        pcm_bytes=frame.pcm_bytes,
    )
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Optional

from constants import (
    AUDIO_SAMPLE_WIDTH_BYTES,
    C2S_HEADER_MIN_BYTES,
    C2S_SEQ_NUM_BYTES,
    C2S_SESSION_ID_LEN_BYTES,
    SEQ_NUM_MAX,
    SEQ_NUM_START,
    SESSION_ID_MAX_BYTES,
)


# -------------------------
# Exceptions
# -------------------------

class BinaryProtocolError(Exception):
    """Base class for binary protocol errors."""


class InvalidFrameLength(BinaryProtocolError):
    """
    Raised when a binary audio frame is truncated, empty, or carries an
    odd number of PCM bytes. The frame is unsafe to process and must be
    dropped.
    """


class InvalidSequenceNumber(BinaryProtocolError):
    """
    Raised when a sequence number is outside the u32 range.
    """


class InvalidSessionId(BinaryProtocolError):
    """
    Raised when the session id is empty, too long, or not valid utf-8.
    """


# -------------------------
# Decoded frame
# -------------------------

@dataclass(frozen=True)
class UploadFrame:
    """One client audio chunk as received on the wire."""
    session_id: str
    sequence_num: int
    pcm_bytes: bytes


# -------------------------
# Low-level helpers
# -------------------------

def _u16_le(value: int) -> bytes:
    return struct.pack("<H", value)


def _u32_le(value: int) -> bytes:
    return struct.pack("<I", value)


def is_seq_next(prev: int, current: int) -> bool:
    """
    Return True if `current` is the expected next sequence number
    after `prev`, accounting for wraparound.
    """
    if prev == SEQ_NUM_MAX:
        return current == SEQ_NUM_START
    return current == prev + 1


def _encode_session_id(session_id: str) -> bytes:
    raw = session_id.encode("utf-8")
    if not raw or len(raw) > SESSION_ID_MAX_BYTES:
        raise InvalidSessionId(f"session_id must be 1..{SESSION_ID_MAX_BYTES} bytes")
    return raw


def _check_pcm(pcm_bytes: bytes) -> None:
    if not pcm_bytes:
        raise InvalidFrameLength("PCM payload is empty")
    if len(pcm_bytes) % AUDIO_SAMPLE_WIDTH_BYTES != 0:
        raise InvalidFrameLength(
            f"PCM length {len(pcm_bytes)} is not a multiple of {AUDIO_SAMPLE_WIDTH_BYTES}"
        )


# -------------------------
# Client → Server
# -------------------------

def encode_c2s_frame(
    *,
    session_id: str,
    sequence_num: int,
    pcm_bytes: bytes,
) -> bytes:
    """
    Encode a client→server audio chunk.
    """
    if sequence_num < SEQ_NUM_START or sequence_num > SEQ_NUM_MAX:
        raise InvalidSequenceNumber(f"Invalid seq_num: {sequence_num}")

    sid = _encode_session_id(session_id)
    _check_pcm(pcm_bytes)

    return _u16_le(len(sid)) + sid + _u32_le(sequence_num) + pcm_bytes


def decode_c2s_frame(payload: bytes) -> UploadFrame:
    """
    Decode a client→server audio chunk.
    """
    if len(payload) < C2S_HEADER_MIN_BYTES:
        raise InvalidFrameLength(
            f"C2S frame length {len(payload)} < {C2S_HEADER_MIN_BYTES}"
        )

    (sid_len,) = struct.unpack_from("<H", payload, 0)
    if sid_len == 0 or sid_len > SESSION_ID_MAX_BYTES:
        raise InvalidSessionId(f"Invalid session_id length: {sid_len}")

    sid_end = C2S_SESSION_ID_LEN_BYTES + sid_len
    seq_end = sid_end + C2S_SEQ_NUM_BYTES
    if len(payload) < seq_end:
        raise InvalidFrameLength(
            f"C2S frame length {len(payload)} < header length {seq_end}"
        )

    try:
        session_id = payload[C2S_SESSION_ID_LEN_BYTES:sid_end].decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidSessionId(f"session_id is not utf-8: {e}") from e

    (seq,) = struct.unpack_from("<I", payload, sid_end)

    pcm_bytes = payload[seq_end:]
    _check_pcm(pcm_bytes)

    return UploadFrame(
        session_id=session_id,
        sequence_num=seq,
        pcm_bytes=pcm_bytes,
    )


# -------------------------
# Sequence gap detection
# -------------------------

@dataclass(frozen=True)
class SeqCheckResult:
    """
    Result of a sequence continuity check.
    """
    gap: bool
    expected: int
    actual: int

    @property
    def gap_size(self) -> int:
        """
        Number of frames skipped (0 if no gap).

        Handles wraparound correctly. A sequence number going backwards
        (client restarted its counter) counts as a wraparound gap.
        """
        if not self.gap:
            return 0

        # Linear (no wrap)
        if self.actual > self.expected:
            return self.actual - self.expected

        # Wraparound
        return (SEQ_NUM_MAX - self.expected + 1) + (self.actual - SEQ_NUM_START)


def check_sequence_gap(
    *,
    last_seq: Optional[int],
    current_seq: int,
) -> SeqCheckResult:
    """
    Check whether `current_seq` follows `last_seq`.

    Pure function; never raises.
    """
    if last_seq is None or is_seq_next(last_seq, current_seq):
        return SeqCheckResult(
            gap=False,
            expected=current_seq,
            actual=current_seq,
        )

    expected = SEQ_NUM_START if last_seq == SEQ_NUM_MAX else last_seq + 1

    return SeqCheckResult(
        gap=True,
        expected=expected,
        actual=current_seq,
    )
