# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import urllib.parse

from adapters.asr.deepgram_streaming import (
    DeepgramRecognitionStream,
    speaker_label_from_words,
)
from adapters.asr.events import (
    RecognitionEvent,
    RecognitionEventType,
    StreamEnded,
    StreamErrored,
    TranscriptFinal,
    TranscriptPartial,
    is_terminal,
)
from fakes import FakeRecognitionStream, errored, final, partial


def collector() -> tuple[list[RecognitionEvent], object]:
    events: list[RecognitionEvent] = []

    async def sink(event: RecognitionEvent) -> None:
        events.append(event)

    return events, sink


def results_message(transcript: str, *, is_final: bool, speaker: int | None = 2) -> dict:
    words = [{"word": "x", "speaker": speaker}] if speaker is not None else []
    return {
        "type": "Results",
        "is_final": is_final,
        "channel": {
            "alternatives": [
                {"transcript": transcript, "confidence": 0.87, "words": words},
            ],
        },
    }


# ---------------------------------------------------------------------
# Base-class contract
# ---------------------------------------------------------------------

def test_nothing_is_delivered_after_terminal_event():
    events, sink = collector()
    stream = FakeRecognitionStream(session_id="s1", emit_event=sink)

    async def run() -> None:
        await stream.emit(partial("s1", "hel"))
        await stream.emit(final("s1", "hello"))
        await stream.emit(errored("s1"))
        await stream.emit(final("s1", "late"))
        await stream.close()

    asyncio.run(run())

    assert [e.event_type for e in events] == [
        RecognitionEventType.PARTIAL,
        RecognitionEventType.FINAL,
        RecognitionEventType.ERROR,
    ]
    assert stream.closed is True


def test_close_emits_exactly_one_end_event():
    events, sink = collector()
    stream = FakeRecognitionStream(session_id="s1", emit_event=sink)

    async def run() -> None:
        await stream.close()
        await stream.close()

    asyncio.run(run())

    assert len(events) == 1
    assert isinstance(events[0], StreamEnded)


def test_is_terminal_classification():
    assert is_terminal(StreamEnded(session_id="s", ts_ms=0))
    assert is_terminal(errored("s"))
    assert not is_terminal(partial("s", "a"))
    assert not is_terminal(final("s", "a"))


# ---------------------------------------------------------------------
# Deepgram message translation
# ---------------------------------------------------------------------

def make_deepgram(sink) -> DeepgramRecognitionStream:
    return DeepgramRecognitionStream(
        session_id="s1",
        emit_event=sink,
        api_key="test-key",
        model="nova-2",
        language="ja",
    )


def test_interim_result_becomes_partial_with_speaker_label():
    events, sink = collector()
    dg = make_deepgram(sink)

    asyncio.run(dg.handle_message(results_message(" こんにちは ", is_final=False)))

    assert len(events) == 1
    event = events[0]
    assert isinstance(event, TranscriptPartial)
    assert event.text == "こんにちは"
    assert event.speaker_label == "Speaker 2"
    assert event.confidence == 0.87


def test_final_result_becomes_final():
    events, sink = collector()
    dg = make_deepgram(sink)

    asyncio.run(dg.handle_message(results_message("done", is_final=True)))

    assert isinstance(events[0], TranscriptFinal)


def test_missing_speaker_falls_back_to_default_label():
    events, sink = collector()
    dg = make_deepgram(sink)

    asyncio.run(dg.handle_message(results_message("hi", is_final=True, speaker=None)))

    assert events[0].speaker_label == "Speaker 0"
    assert speaker_label_from_words([]) == "Speaker 0"
    assert speaker_label_from_words([{"speaker": 0}]) == "Speaker 0"


def test_empty_transcripts_and_metadata_are_dropped():
    events, sink = collector()
    dg = make_deepgram(sink)

    async def run() -> None:
        await dg.handle_message(results_message("   ", is_final=True))
        await dg.handle_message({"type": "Metadata", "request_id": "r"})
        await dg.handle_message({"type": "SpeechStarted"})
        await dg.handle_message({"type": "Results", "channel": {"alternatives": []}})

    asyncio.run(run())

    assert events == []


def test_error_message_becomes_terminal_error():
    events, sink = collector()
    dg = make_deepgram(sink)

    async def run() -> None:
        await dg.handle_message({"type": "Error", "err_code": "INVALID_AUDIO", "err_msg": "bad"})
        await dg.handle_message(results_message("after", is_final=True))

    asyncio.run(run())

    assert len(events) == 1
    assert isinstance(events[0], StreamErrored)
    assert "INVALID_AUDIO" in events[0].reason
    assert dg.closed is True


def test_listen_url_requests_linear16_16k_mono_with_diarization():
    dg = make_deepgram(collector()[1])

    url = dg._build_url()  # pylint: disable=protected-access
    query = urllib.parse.parse_qs(urllib.parse.urlparse(url).query)

    assert url.startswith("wss://api.deepgram.com/v1/listen?")
    assert query["encoding"] == ["linear16"]
    assert query["sample_rate"] == ["16000"]
    assert query["channels"] == ["1"]
    assert query["interim_results"] == ["true"]
    assert query["diarize"] == ["true"]
    assert query["language"] == ["ja"]


def test_close_without_start_still_ends_the_stream():
    events, sink = collector()
    dg = make_deepgram(sink)

    asyncio.run(dg.close())

    assert len(events) == 1
    assert isinstance(events[0], StreamEnded)
