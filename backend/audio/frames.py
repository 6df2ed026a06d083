"""
Audio frame primitives.

Pure data containers only.
No behavior, no queues, no timing logic.
"""

from __future__ import annotations
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray


@dataclass(frozen=True)
class AudioFrame:
    """
    Fixed-length PCM16 frame produced by the frame chunker.

    samples:
        Signed 16-bit samples. Length equals the chunker's target size.

    sequence_num:
        Monotonic per-chunker sequence number. Used for gap detection
        and debugging only, never for reordering.

    session_id:
        Owning streaming session.

    ts_ms:
        Wall-clock timestamp (milliseconds) when the frame was emitted.
        Observability only.
    """
    samples: NDArray[np.int16]
    sequence_num: int
    session_id: str
    ts_ms: int

    @property
    def pcm_bytes(self) -> bytes:
        """Little-endian PCM16 bytes, as sent over the wire."""
        return self.samples.astype("<i2", copy=False).tobytes()

    def __len__(self) -> int:
        return int(self.samples.shape[0])
