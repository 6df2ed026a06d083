"""
Fixed-duration frame chunker.

Purpose:
- Turn a continuous stream of float sample blocks (arbitrary sizes,
  irregular arrival, one fixed sample rate) into fixed-duration PCM16
  AudioFrames, ready for upload.

Invariants:
- Every consumed sample lands in exactly one emitted frame
  (no drops, no duplicates, order preserved).
- A block is split when a frame boundary falls inside it.
- At most one partial frame is ever held back.
- Empty or missing blocks are no-ops.

Design:
- Runs on the capture thread: no IO, no locks, never blocks.
- Frames are handed to `on_frame` (when given) as soon as they are
  complete and are also returned from push().
"""

from __future__ import annotations

from collections import deque
from typing import Callable, Deque, Optional

import numpy as np
from numpy.typing import ArrayLike, NDArray

from audio.frames import AudioFrame
from audio.pcm import float32_to_pcm16
from constants import AUDIO_CHUNK_MS, SEQ_NUM_MAX, SEQ_NUM_START, samples_per_chunk
from observability.logger import now_ms


FrameSink = Callable[[AudioFrame], None]


class FrameChunker:
    """
    Queue-based chunker producing frames of `frame_samples` samples.

    Not thread-safe: one chunker belongs to one capture thread.
    """

    def __init__(
        self,
        *,
        session_id: str,
        sample_rate_hz: int,
        frame_ms: int = AUDIO_CHUNK_MS,
        frame_samples: int | None = None,
        on_frame: Optional[FrameSink] = None,
    ) -> None:
        """
        Args:
            session_id:
                Streaming session the frames belong to.
            sample_rate_hz:
                Capture sample rate; fixed for the life of the chunker.
            frame_ms:
                Target frame duration. Ignored when frame_samples is given.
            frame_samples:
                Explicit frame size in samples (tests, odd devices).
            on_frame:
                Called synchronously with every finished frame.
        """
        if frame_samples is None:
            frame_samples = samples_per_chunk(sample_rate_hz, frame_ms)
        if frame_samples <= 0:
            raise ValueError("frame_samples must be > 0")

        self._session_id = session_id
        self._sample_rate_hz = sample_rate_hz
        self._frame_samples = frame_samples
        self._on_frame = on_frame

        self._pending: Deque[NDArray[np.float32]] = deque()
        self._pending_samples = 0
        self._next_seq = SEQ_NUM_START

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def frame_samples(self) -> int:
        """Samples per emitted frame."""
        return self._frame_samples

    @property
    def pending_samples(self) -> int:
        """Samples queued but not yet emitted (always < frame_samples)."""
        return self._pending_samples

    @property
    def next_sequence_num(self) -> int:
        return self._next_seq

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    def push(self, block: ArrayLike | None) -> list[AudioFrame]:
        """
        Queue one block of float samples and emit every completed frame.

        Returns:
            Frames completed by this block, oldest first. Often empty.
        """
        if block is None:
            return []

        samples = np.asarray(block, dtype=np.float32).reshape(-1)
        if samples.size == 0:
            return []

        # Copy: capture APIs commonly reuse their buffers between callbacks.
        self._pending.append(samples.copy())
        self._pending_samples += int(samples.size)

        emitted: list[AudioFrame] = []
        while self._pending_samples >= self._frame_samples:
            frame = self._make_frame(self._take(self._frame_samples))
            emitted.append(frame)
            if self._on_frame is not None:
                self._on_frame(frame)

        return emitted

    def reset(self) -> None:
        """Drop the queued partial frame. Sequence numbering continues."""
        self._pending.clear()
        self._pending_samples = 0

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _take(self, count: int) -> NDArray[np.float32]:
        """Slice exactly `count` samples off the front of the queue."""
        out = np.empty(count, dtype=np.float32)
        offset = 0

        while offset < count:
            head = self._pending[0]
            remaining = count - offset

            if head.shape[0] <= remaining:
                out[offset : offset + head.shape[0]] = head
                offset += head.shape[0]
                self._pending.popleft()
            else:
                out[offset:count] = head[:remaining]
                self._pending[0] = head[remaining:]
                offset = count

        self._pending_samples -= count
        return out

    def _make_frame(self, samples: NDArray[np.float32]) -> AudioFrame:
        frame = AudioFrame(
            samples=float32_to_pcm16(samples),
            sequence_num=self._next_seq,
            session_id=self._session_id,
            ts_ms=now_ms(),
        )
        self._next_seq = SEQ_NUM_START if self._next_seq == SEQ_NUM_MAX else self._next_seq + 1
        return frame
