# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from datetime import datetime, timedelta, timezone

from context.merger import (
    ConversationMessage,
    MergeMode,
    MessageSource,
    Speaker,
    build_conversation_log,
    format_conversation_for_summary,
    get_conversation_stats,
    merge_conversation_logs,
)
from context.serialization import serialize_for_llm, truncate_conversation
from persistence.memory import InMemoryConversationStore
from persistence.records import (
    AIMessageRecord,
    AIMode,
    AIProvenance,
    AIProvider,
    TranscriptRecord,
)

T0 = datetime(2025, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


def transcript(text: str, seconds: float, *, label: str = "Speaker 1", name: str | None = None) -> TranscriptRecord:
    return TranscriptRecord(
        record_id=f"t-{text}",
        session_id="s1",
        speaker_label=label,
        text=text,
        created_at=at(seconds),
        participant_name=name,
    )


def ai(text: str, seconds: float) -> AIMessageRecord:
    return AIMessageRecord(
        turn_id=f"a-{text}",
        session_id="s1",
        text=text,
        provenance=AIProvenance(provider=AIProvider.OPENAI_REALTIME, mode=AIMode.ASSISTANT),
        created_at=at(seconds),
    )


# ---------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------

def test_combined_log_is_chronological():
    merged = merge_conversation_logs(
        [transcript("h1", 0), transcript("h2", 10)],
        [ai("a1", 5), ai("a2", 15)],
    )

    assert [m.text for m in merged] == ["h1", "a1", "h2", "a2"]
    assert [m.source for m in merged] == [
        MessageSource.TRANSCRIPT,
        MessageSource.AI_MESSAGE,
        MessageSource.TRANSCRIPT,
        MessageSource.AI_MESSAGE,
    ]


def test_equal_timestamps_put_humans_first_and_keep_input_order():
    merged = merge_conversation_logs(
        [transcript("h1", 5), transcript("h2", 5)],
        [ai("a1", 5), ai("a2", 5)],
    )

    assert [m.text for m in merged] == ["h1", "h2", "a1", "a2"]


def test_merge_is_deterministic_and_does_not_mutate_inputs():
    transcripts = [transcript("h2", 20), transcript("h1", 0)]
    ai_messages = [ai("a1", 10)]

    first = merge_conversation_logs(transcripts, ai_messages)
    second = merge_conversation_logs(transcripts, ai_messages)

    assert first == second
    assert [t.text for t in transcripts] == ["h2", "h1"]


def test_single_source_modes_are_subsequences_of_combined():
    transcripts = [transcript("h1", 0), transcript("h2", 7), transcript("h3", 7)]
    ai_messages = [ai("a1", 7), ai("a2", 3)]

    combined = merge_conversation_logs(transcripts, ai_messages, MergeMode.HUMAN_AI_COMBINED)
    humans = merge_conversation_logs(transcripts, ai_messages, MergeMode.HUMAN_ONLY)
    ais = merge_conversation_logs(transcripts, ai_messages, MergeMode.AI_ONLY)

    assert humans == [m for m in combined if m.speaker == Speaker.HUMAN]
    assert ais == [m for m in combined if m.speaker == Speaker.AI]


def test_naive_and_offset_timestamps_are_ordered_as_utc():
    naive = TranscriptRecord(
        record_id="t-naive",
        session_id="s1",
        speaker_label="Speaker 1",
        text="naive",
        created_at=datetime(2025, 3, 1, 9, 0, 10),
    )
    offset = AIMessageRecord(
        turn_id="a-offset",
        session_id="s1",
        text="offset",
        provenance=AIProvenance(provider=AIProvider.OPENAI_REALTIME, mode=AIMode.ASSISTANT),
        created_at=datetime(2025, 3, 1, 11, 0, 5, tzinfo=timezone(timedelta(hours=2))),
    )

    merged = merge_conversation_logs([naive, transcript("aware", 0)], [offset])

    assert [m.text for m in merged] == ["aware", "offset", "naive"]
    assert all(m.timestamp.tzinfo is timezone.utc for m in merged)
    assert merged[1].timestamp == at(5)


def test_empty_inputs_give_empty_log():
    merged = merge_conversation_logs([], [])

    assert merged == []
    assert get_conversation_stats(merged).to_dict() == {
        "total_messages": 0,
        "human_message_count": 0,
        "ai_message_count": 0,
        "participant_count": 0,
        "duration_seconds": 0,
    }
    assert format_conversation_for_summary(merged) == ""


# ---------------------------------------------------------------------
# Names / stats / rendering
# ---------------------------------------------------------------------

def test_human_name_falls_back_from_participant_to_label_to_placeholder():
    merged = merge_conversation_logs(
        [
            transcript("x", 0, name="Aiko"),
            transcript("y", 1, label="Speaker 2"),
            transcript("z", 2, label=""),
        ],
        [],
    )

    assert [m.speaker_name for m in merged] == ["Aiko", "Speaker 2", "Unknown participant"]


def test_stats_count_messages_participants_and_whole_seconds():
    merged = merge_conversation_logs(
        [
            transcript("x", 0, name="Aiko"),
            transcript("y", 30, name="Ben"),
            transcript("z", 61.9, name="Aiko"),
        ],
        [ai("a", 45)],
    )

    stats = get_conversation_stats(merged)

    assert stats.total_messages == 4
    assert stats.human_message_count == 3
    assert stats.ai_message_count == 1
    assert stats.participant_count == 2
    assert stats.duration_seconds == 61


def test_single_message_has_zero_duration():
    stats = get_conversation_stats(merge_conversation_logs([transcript("x", 9)], []))

    assert stats.duration_seconds == 0


def test_summary_format_labels_each_message():
    merged = merge_conversation_logs([transcript("Hi there", 0, name="Aiko")], [ai("Hello Aiko", 1)])
    anonymous = ConversationMessage(
        speaker=Speaker.HUMAN,
        text="hm",
        timestamp=at(2),
        source=MessageSource.TRANSCRIPT,
    )

    text = format_conversation_for_summary(merged + [anonymous])

    assert text == "[Aiko]: Hi there\n\n[AI assistant]: Hello Aiko\n\n[Participant]: hm"


def test_build_conversation_log_reads_both_repositories():
    store = InMemoryConversationStore()

    async def run():
        await store.save_transcript(transcript("question?", 0, name="Aiko"))
        await store.save_ai_message(ai("answer.", 4))
        await store.save_transcript(TranscriptRecord(
            record_id="t-other",
            session_id="s2",
            speaker_label="Speaker 0",
            text="other session",
            created_at=at(1),
        ))
        return await build_conversation_log(
            transcripts=store, ai_messages=store, session_id="s1", mode=MergeMode.HUMAN_AI_COMBINED
        )

    log = asyncio.run(run())
    payload = log.to_dict()

    assert payload["session_id"] == "s1"
    assert payload["mode"] == "human_ai_combined"
    assert [m["text"] for m in payload["messages"]] == ["question?", "answer."]
    assert payload["stats"]["duration_seconds"] == 4
    assert payload["text"] == "[Aiko]: question?\n\n[AI assistant]: answer."


# ---------------------------------------------------------------------
# LLM serialization
# ---------------------------------------------------------------------

def test_truncation_keeps_recent_whole_messages():
    text = "\n\n".join(f"[A]: message {i}" for i in range(10))

    kept = truncate_conversation(text, max_chars=40)

    assert len(kept) <= 40
    assert kept.startswith("[A]: ")
    assert kept.endswith("message 9")


def test_serialize_orders_system_conversation_request():
    messages = serialize_for_llm(
        system_prompt="SYS",
        conversation_text="[A]: hi",
        user_text="summarise please",
    )

    assert [m["role"] for m in messages] == ["system", "user", "user"]
    assert messages[0]["content"] == "SYS"
    assert messages[1]["content"].endswith("[A]: hi")
    assert messages[2]["content"] == "summarise please"


def test_serialize_omits_empty_parts():
    assert serialize_for_llm(system_prompt="SYS", conversation_text="") == [
        {"role": "system", "content": "SYS"},
    ]
