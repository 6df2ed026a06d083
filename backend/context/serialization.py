"""
Conversation serialization for LLM consumption.

Responsibilities:
- Convert system prompt + merged conversation text + the caller's request
  into LLM-ready message format.

Non-responsibilities:
- No merging (see context.merger)
- No logging
- No persistence
"""

from __future__ import annotations

from constants import REPLY_CONTEXT_MAX_CHARS, SUMMARY_MESSAGE_SEPARATOR


def truncate_conversation(text: str, max_chars: int = REPLY_CONTEXT_MAX_CHARS) -> str:
    """
    Keep the most recent `max_chars` characters of a rendered conversation.

    Cuts on a message boundary when one exists inside the kept tail, so
    no half message is sent.
    """
    if len(text) <= max_chars:
        return text

    tail = text[-max_chars:]
    boundary = tail.find(SUMMARY_MESSAGE_SEPARATOR)
    if boundary != -1:
        tail = tail[boundary + len(SUMMARY_MESSAGE_SEPARATOR):]
    return tail


def serialize_for_llm(
    *,
    system_prompt: str,
    conversation_text: str,
    user_text: str | None = None,
) -> list[dict[str, str]]:
    """
    Serialize a conversation into LLM message format.

    Output format:
    [
        {"role": "system", "content": "..."},
        {"role": "user", "content": "Conversation so far: ..."},
        {"role": "user", "content": "<request>"},
    ]

    Rules:
    - System prompt is always first
    - Conversation text comes next (truncated, may be omitted when empty)
    - The caller's request is appended last, when given
    """
    messages: list[dict[str, str]] = [{
        "role": "system",
        "content": system_prompt,
    }]

    conversation_text = truncate_conversation(conversation_text)
    if conversation_text:
        messages.append({
            "role": "user",
            "content": f"Conversation so far:\n\n{conversation_text}",
        })

    if user_text:
        messages.append({
            "role": "user",
            "content": user_text,
        })

    return messages
