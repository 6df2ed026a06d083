"""
Stream a WAV file into a running server over WS /stt/ws.

The file is fed to the FrameChunker in irregular blocks, the way a capture
callback would deliver it, and every emitted frame is sent as one binary
upload frame.

Requires 16 kHz mono PCM16 input (no resampling). Open the session's SSE
feed first, e.g.:

    curl -N "http://localhost:8000/stt/stream?session_id=demo"
    python tools/stream_wav.py hello.wav --session demo
"""

from __future__ import annotations

import argparse
import asyncio
import wave

import numpy as np
from websockets.asyncio.client import connect

from audio.chunker import FrameChunker
from audio.pcm import pcm16le_to_float32
from constants import AUDIO_SAMPLE_RATE_HZ, AUDIO_SAMPLE_WIDTH_BYTES
from protocol.binary import encode_c2s_frame


def read_wav(path: str) -> np.ndarray:
    with wave.open(path, "rb") as wf:
        if wf.getnchannels() != 1 or wf.getsampwidth() != AUDIO_SAMPLE_WIDTH_BYTES:
            raise SystemExit("expected mono PCM16 audio")
        if wf.getframerate() != AUDIO_SAMPLE_RATE_HZ:
            raise SystemExit(f"expected {AUDIO_SAMPLE_RATE_HZ} Hz audio")
        return pcm16le_to_float32(wf.readframes(wf.getnframes()))


async def _print_replies(ws) -> None:
    async for msg in ws:
        print("server:", msg)


async def stream(path: str, *, url: str, session_id: str, realtime: bool) -> None:
    samples = read_wav(path)
    chunker = FrameChunker(session_id=session_id, sample_rate_hz=AUDIO_SAMPLE_RATE_HZ)
    rng = np.random.default_rng()

    async with connect(url) as ws:
        reader = asyncio.create_task(_print_replies(ws))

        offset = 0
        sent = 0
        while offset < samples.shape[0]:
            size = int(rng.integers(128, 4096))
            block = samples[offset : offset + size]
            offset += size

            for frame in chunker.push(block):
                await ws.send(encode_c2s_frame(
                    session_id=frame.session_id,
                    sequence_num=frame.sequence_num,
                    pcm_bytes=frame.pcm_bytes,
                ))
                sent += 1

            if realtime:
                await asyncio.sleep(block.shape[0] / AUDIO_SAMPLE_RATE_HZ)

        # Give the server a moment to answer the last frames.
        await asyncio.sleep(0.5)
        reader.cancel()

    print(f"sent {sent} frames, {chunker.pending_samples} samples left unsent")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("wav")
    parser.add_argument("--session", default="demo")
    parser.add_argument("--url", default="ws://localhost:8000/stt/ws")
    parser.add_argument("--realtime", action="store_true", help="pace sends like live capture")
    args = parser.parse_args()

    asyncio.run(stream(args.wav, url=args.url, session_id=args.session, realtime=args.realtime))


if __name__ == "__main__":
    main()
