"""PCM conversion utilities."""
import numpy as np
from numpy.typing import ArrayLike, NDArray

from constants import PCM16_NEGATIVE_SCALE, PCM16_POSITIVE_SCALE


def float32_to_pcm16(samples: ArrayLike) -> NDArray[np.int16]:
    """
    Convert float samples in [-1.0, 1.0] to signed 16-bit integers.

    - Values outside the range are clamped first.
    - Negative samples scale by 32768, positive by 32767
      (-1.0 -> -32768, 1.0 -> 32767).
    - The scaled value is truncated toward zero.
    """
    f = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(f < 0, f * PCM16_NEGATIVE_SCALE, f * PCM16_POSITIVE_SCALE)
    return np.trunc(scaled).astype(np.int16)


def pcm16le_to_float32(pcm_bytes: bytes) -> NDArray[np.float32]:
    """
    Convert PCM16 little-endian mono bytes to float32 in [-1.0, 1.0).

    No resampling. No channel mixing.
    """
    if len(pcm_bytes) % 2 != 0:
        # Truncated sample; caller should treat as malformed upstream.
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    audio_i16 = np.frombuffer(pcm_bytes, dtype="<i2")  # little-endian int16
    return audio_i16.astype(np.float32) / float(PCM16_NEGATIVE_SCALE)
