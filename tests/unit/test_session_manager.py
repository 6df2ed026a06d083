# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
import json

import pytest

from adapters.asr.events import RecognitionEventType
from errors import PersistenceFailed, RecognitionError
from fakes import FakeStreamFactory, errored, final, partial
from persistence.memory import InMemoryConversationStore
from persistence.records import TranscriptRecord
from session.manager import StreamingSessionManager
from session.store import InMemorySessionStore
from session.sweeper import SessionSweeper


class FailingTranscripts(InMemoryConversationStore):
    async def save_transcript(self, record: TranscriptRecord) -> None:
        raise PersistenceFailed("database unavailable")


def make_manager(
    factory: FakeStreamFactory,
    transcripts: InMemoryConversationStore | None = None,
) -> tuple[StreamingSessionManager, InMemoryConversationStore]:
    repo = transcripts if transcripts is not None else InMemoryConversationStore()
    manager = StreamingSessionManager(
        store=InMemorySessionStore(),
        stream_factory=factory,
        transcripts=repo,
    )
    return manager, repo


def drain(queue: asyncio.Queue) -> list:
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


# ---------------------------------------------------------------------
# open / terminate
# ---------------------------------------------------------------------

def test_open_registers_started_session(stream_factory: FakeStreamFactory):
    manager, _ = make_manager(stream_factory)

    session = asyncio.run(manager.open("s1", meeting_id="m1"))

    assert manager.lookup("s1") is session
    assert session.meeting_id == "m1"
    assert stream_factory.last.started is True


def test_terminate_closes_stream_and_ends_feed(stream_factory: FakeStreamFactory):
    manager, _ = make_manager(stream_factory)

    async def run():
        session = await manager.open("s1")
        first = await manager.terminate("s1", reason="client_disconnect")
        second = await manager.terminate("s1", reason="client_disconnect")
        return session, first, second

    session, first, second = asyncio.run(run())

    assert (first, second) == (True, False)
    assert manager.lookup("s1") is None
    assert stream_factory.last.close_calls == 1
    items = drain(session.events)
    assert items[0].event_type == RecognitionEventType.END
    assert items[-1] is None


def test_reopening_an_id_replaces_the_previous_session(stream_factory: FakeStreamFactory):
    manager, _ = make_manager(stream_factory)

    async def run():
        old = await manager.open("s1")
        new = await manager.open("s1")
        return old, new

    old, new = asyncio.run(run())

    assert manager.lookup("s1") is new
    assert stream_factory.streams[0].close_calls == 1
    assert stream_factory.streams[1].closed is False
    assert drain(old.events)[-1] is None


def test_concurrent_opens_of_one_id_close_the_displaced_session(stream_factory: FakeStreamFactory):
    stream_factory.yield_on_start = True
    manager, _ = make_manager(stream_factory)

    async def run():
        first, second = await asyncio.gather(manager.open("s1"), manager.open("s1"))
        stale = await manager.terminate("s1", reason="client_disconnect", expected=first)
        return first, second, stale

    first, second, stale = asyncio.run(run())

    assert manager.lookup("s1") is second
    assert stale is False
    assert [s.close_calls for s in stream_factory.streams] == [1, 0]
    assert drain(first.events)[-1] is None
    assert len(manager.store) == 1


def test_terminate_with_stale_expected_leaves_replacement(stream_factory: FakeStreamFactory):
    manager, _ = make_manager(stream_factory)

    async def run():
        old = await manager.open("s1")
        new = await manager.open("s1")
        removed = await manager.terminate("s1", reason="client_disconnect", expected=old)
        return new, removed

    new, removed = asyncio.run(run())

    assert removed is False
    assert manager.lookup("s1") is new


def test_start_failure_raises_and_registers_nothing(stream_factory: FakeStreamFactory, captured_logs):
    stream_factory.fail_start = True
    manager, _ = make_manager(stream_factory)

    with pytest.raises(RecognitionError) as exc_info:
        asyncio.run(manager.open("s1"))

    assert exc_info.value.http_status == 502
    assert manager.lookup("s1") is None
    assert any("RECOGNITION_START_FAILED" in line for line in captured_logs)


# ---------------------------------------------------------------------
# Event handling
# ---------------------------------------------------------------------

def test_finals_are_persisted_and_forwarded(stream_factory: FakeStreamFactory):
    stream_factory.scripted = [
        partial("s1", "hel"),
        final("s1", "  hello there  "),
        final("s1", "   "),
    ]
    manager, repo = make_manager(stream_factory)

    async def run():
        session = await manager.open("s1")
        await stream_factory.last.wait_played()
        return session, await repo.list_transcripts("s1")

    session, transcripts = asyncio.run(run())

    assert [t.text for t in transcripts] == ["hello there"]
    assert transcripts[0].speaker_label == "Speaker 1"
    assert [e.event_type for e in drain(session.events)] == [
        RecognitionEventType.PARTIAL,
        RecognitionEventType.FINAL,
        RecognitionEventType.FINAL,
    ]
    assert manager.lookup("s1") is session


def test_stream_end_removes_session(stream_factory: FakeStreamFactory):
    manager, _ = make_manager(stream_factory)

    async def run():
        session = await manager.open("s1")
        await stream_factory.last.close()
        return session

    session = asyncio.run(run())

    assert manager.lookup("s1") is None
    items = drain(session.events)
    assert items[0].event_type == RecognitionEventType.END
    assert items[-1] is None


def test_stream_error_removes_session_and_logs(stream_factory: FakeStreamFactory, captured_logs):
    stream_factory.scripted = [final("s1", "one"), errored("s1", "socket reset")]
    manager, repo = make_manager(stream_factory)

    async def run():
        session = await manager.open("s1")
        await stream_factory.last.wait_played()
        return session, await repo.list_transcripts("s1")

    session, transcripts = asyncio.run(run())

    assert manager.lookup("s1") is None
    assert len(transcripts) == 1
    items = drain(session.events)
    assert items[1].event_type == RecognitionEventType.ERROR
    assert items[-1] is None

    errors = [json.loads(line) for line in captured_logs if "RECOGNITION_ERROR" in line]
    assert errors[0]["error"] == "recognition_error"
    assert "socket reset" in errors[0]["details"]


def test_transcript_persistence_failure_is_not_fatal(stream_factory: FakeStreamFactory, captured_logs):
    stream_factory.scripted = [final("s1", "kept in the feed")]
    manager, _ = make_manager(stream_factory, transcripts=FailingTranscripts())

    async def run():
        session = await manager.open("s1")
        await stream_factory.last.wait_played()
        return session

    session = asyncio.run(run())

    assert manager.lookup("s1") is session
    assert [e.text for e in drain(session.events)] == ["kept in the feed"]
    assert any("TRANSCRIPT_PERSIST_FAILED" in line for line in captured_logs)


# ---------------------------------------------------------------------
# Sweep
# ---------------------------------------------------------------------

def test_sweep_terminates_only_stale_sessions(stream_factory: FakeStreamFactory):
    manager, _ = make_manager(stream_factory)

    async def run():
        old = await manager.open("old")
        await manager.open("new")
        old.created_at -= 7_200.0
        return await manager.sweep(3_600.0)

    removed = asyncio.run(run())

    assert removed == 1
    assert manager.lookup("old") is None
    assert manager.lookup("new") is not None
    assert stream_factory.streams[0].close_calls == 1


def test_sweeper_runs_periodically_until_stopped(stream_factory: FakeStreamFactory):
    manager, _ = make_manager(stream_factory)
    sweeper = SessionSweeper(manager, max_age_s=0.0, interval_s=0.01)

    async def run():
        await manager.open("s1")
        sweeper.start()
        assert sweeper.running
        await asyncio.sleep(0.1)
        await sweeper.stop()

    asyncio.run(run())

    assert sweeper.running is False
    assert len(manager.store) == 0


def test_sweeper_rejects_non_positive_interval(stream_factory: FakeStreamFactory):
    manager, _ = make_manager(stream_factory)

    with pytest.raises(ValueError):
        SessionSweeper(manager, interval_s=0)
