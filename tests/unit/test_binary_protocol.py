# pylint: disable=missing-module-docstring,missing-function-docstring

import struct

import pytest

from protocol.binary import (
    InvalidFrameLength,
    InvalidSequenceNumber,
    InvalidSessionId,
    check_sequence_gap,
    decode_c2s_frame,
    encode_c2s_frame,
    is_seq_next,
)
from constants import (
    SEQ_NUM_MAX,
    SEQ_NUM_START,
    SESSION_ID_MAX_BYTES,
)


def make_valid_pcm(samples: int = 160) -> bytes:
    return b"\x01\x00" * samples


def raw_frame(session_id: bytes, seq: int, pcm: bytes) -> bytes:
    return struct.pack("<H", len(session_id)) + session_id + struct.pack("<I", seq) + pcm


# ---------------------------------------------------------------------
# Layout
# ---------------------------------------------------------------------

def test_encode_layout_is_little_endian():
    payload = encode_c2s_frame(session_id="ab", sequence_num=258, pcm_bytes=b"\x10\x20")

    assert payload == b"\x02\x00" + b"ab" + b"\x02\x01\x00\x00" + b"\x10\x20"


def test_decode_reads_back_header_fields():
    pcm = make_valid_pcm()
    frame = decode_c2s_frame(raw_frame("会議-1".encode("utf-8"), 7, pcm))

    assert frame.session_id == "会議-1"
    assert frame.sequence_num == 7
    assert frame.pcm_bytes == pcm


# ---------------------------------------------------------------------
# Invalid frame lengths
# ---------------------------------------------------------------------

def test_decode_rejects_short_frame():
    with pytest.raises(InvalidFrameLength):
        decode_c2s_frame(b"\x01\x00")


def test_decode_rejects_truncated_header():
    payload = struct.pack("<H", 4) + b"abcd" + b"\x01\x00"

    with pytest.raises(InvalidFrameLength):
        decode_c2s_frame(payload)


def test_decode_rejects_empty_pcm():
    with pytest.raises(InvalidFrameLength):
        decode_c2s_frame(raw_frame(b"s1", 1, b""))


def test_decode_rejects_odd_pcm_length():
    with pytest.raises(InvalidFrameLength):
        decode_c2s_frame(raw_frame(b"s1", 1, make_valid_pcm() + b"\x00"))


# ---------------------------------------------------------------------
# Session id / sequence number validation
# ---------------------------------------------------------------------

def test_decode_rejects_zero_length_session_id():
    with pytest.raises(InvalidSessionId):
        decode_c2s_frame(raw_frame(b"", 1, make_valid_pcm()))


def test_decode_rejects_non_utf8_session_id():
    with pytest.raises(InvalidSessionId):
        decode_c2s_frame(raw_frame(b"\xff\xfe", 1, make_valid_pcm()))


def test_encode_rejects_oversized_session_id():
    with pytest.raises(InvalidSessionId):
        encode_c2s_frame(
            session_id="x" * (SESSION_ID_MAX_BYTES + 1),
            sequence_num=1,
            pcm_bytes=make_valid_pcm(),
        )


def test_encode_rejects_invalid_seq():
    with pytest.raises(InvalidSequenceNumber):
        encode_c2s_frame(session_id="s1", sequence_num=-1, pcm_bytes=make_valid_pcm())

    with pytest.raises(InvalidSequenceNumber):
        encode_c2s_frame(session_id="s1", sequence_num=SEQ_NUM_MAX + 1, pcm_bytes=make_valid_pcm())


def test_encode_accepts_sequence_zero():
    payload = encode_c2s_frame(session_id="s1", sequence_num=SEQ_NUM_START, pcm_bytes=make_valid_pcm())

    assert decode_c2s_frame(payload).sequence_num == 0


# ---------------------------------------------------------------------
# Sequence gap detection
# ---------------------------------------------------------------------

def test_first_frame_is_never_a_gap():
    result = check_sequence_gap(last_seq=None, current_seq=42)

    assert result.gap is False
    assert result.gap_size == 0


def test_sequence_gap_detected():
    result = check_sequence_gap(last_seq=5, current_seq=8)

    assert result.gap is True
    assert result.expected == 6
    assert result.actual == 8
    assert result.gap_size == 2


def test_no_gap_on_wraparound():
    assert is_seq_next(SEQ_NUM_MAX, SEQ_NUM_START)

    result = check_sequence_gap(last_seq=SEQ_NUM_MAX, current_seq=SEQ_NUM_START)
    assert result.gap is False


def test_gap_across_wraparound():
    result = check_sequence_gap(last_seq=SEQ_NUM_MAX - 1, current_seq=1)

    assert result.gap is True
    assert result.expected == SEQ_NUM_MAX
    assert result.gap_size == 2
