"""
Frame uploader / splitter.

Forwards one uploaded audio chunk into its session's recognition stream,
honoring the recognizer's maximum message size.

Rules:
- Unknown session -> SessionNotFound.
- Payloads larger than max_frame_bytes are written as consecutive
  max_frame_bytes slices (last one shorter), in byte order.
- The first failed write aborts the remaining slices and surfaces as
  StreamWriteFailed. Slices already written are not rolled back.
- Sequence numbers feed gap diagnostics only. No reordering, no retry.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from constants import MAX_STREAM_WRITE_BYTES
from errors import SessionNotFound, StreamWriteFailed
from observability.logger import log_event
from observability.metrics import METRIC_STREAM_WRITE, timed
from protocol.binary import check_sequence_gap
from session.store import SessionStore, StreamingSession


def split_payload(payload: bytes, max_frame_bytes: int) -> list[bytes]:
    """
    Split `payload` into ceil(len/max) slices of at most max_frame_bytes.

    An empty payload yields no slices.
    """
    if max_frame_bytes <= 0:
        raise ValueError("max_frame_bytes must be > 0")
    if len(payload) <= max_frame_bytes:
        return [payload] if payload else []
    return [
        payload[i : i + max_frame_bytes]
        for i in range(0, len(payload), max_frame_bytes)
    ]


@dataclass(frozen=True)
class UploadResult:
    """Outcome of one successful upload."""
    sequence_num: Optional[int]
    size: int
    writes: int


class FrameUploader:
    """
    Writes uploaded chunks into recognition streams.

    Writes for one session are serialised on the session's write lock, so
    slices of two concurrently uploaded chunks never interleave.
    """

    def __init__(
        self,
        *,
        store: SessionStore,
        max_frame_bytes: int = MAX_STREAM_WRITE_BYTES,
    ) -> None:
        if max_frame_bytes <= 0:
            raise ValueError("max_frame_bytes must be > 0")
        self._store = store
        self._max_frame_bytes = max_frame_bytes

    @property
    def max_frame_bytes(self) -> int:
        return self._max_frame_bytes

    async def upload(
        self,
        session_id: str,
        payload: bytes,
        sequence_num: Optional[int] = None,
    ) -> UploadResult:
        session = self._store.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)

        slices = split_payload(payload, self._max_frame_bytes)
        writes = 0

        async with session.write_lock:
            if sequence_num is not None:
                self._check_sequence(session, sequence_num)

            with timed(
                METRIC_STREAM_WRITE,
                session_id=session_id,
                details={"bytes": len(payload), "slices": len(slices)},
            ) as d:
                for part in slices:
                    try:
                        await session.stream.write(part)
                    except Exception as e:  # pylint: disable=broad-exception-caught
                        d["ok"] = False
                        log_event({
                            "event_type": "STREAM_WRITE_FAILED",
                            "level": "error",
                            "session_id": session_id,
                            "sequence_num": sequence_num,
                            "writes_completed": writes,
                            "slices": len(slices),
                            "error": repr(e),
                        })
                        raise StreamWriteFailed(
                            session_id, repr(e), writes_completed=writes
                        ) from e
                    writes += 1
                d["ok"] = True

        return UploadResult(sequence_num=sequence_num, size=len(payload), writes=writes)

    @staticmethod
    def _check_sequence(session: StreamingSession, sequence_num: int) -> None:
        result = check_sequence_gap(
            last_seq=session.last_sequence_num,
            current_seq=sequence_num,
        )
        if result.gap:
            log_event({
                "event_type": "SEQ_GAP_DETECTED",
                "level": "warning",
                "session_id": session.session_id,
                "expected": result.expected,
                "actual": result.actual,
                "gap_size": result.gap_size,
            })
        session.last_sequence_num = sequence_num
