"""Prompt templates for AI replies."""

from __future__ import annotations

from persistence.records import AIMode


ASSISTANT_PROMPT_V1: str = """
You are a meeting assistant listening to a live conversation.

Rules
- Answer in the language the participants are speaking.
- Keep replies short: 1-3 sentences unless asked for more.
- Refer to participants by the names shown in the transcript.
- Never invent statements nobody made.
- Plain text only. No markdown.
""".strip()


ASSESSMENT_PROMPT_V1: str = """
You are evaluating a live conversation between the participants shown in
the transcript.

Rules
- Comment on clarity, turn-taking and whether questions were answered.
- Quote the transcript when pointing something out.
- Keep it brief and constructive.
- Plain text only. No markdown.
""".strip()


def system_prompt_for(mode: AIMode, custom_prompt: str | None = None) -> str:
    if mode == AIMode.CUSTOM and custom_prompt:
        return custom_prompt
    if mode == AIMode.ASSESSMENT:
        return ASSESSMENT_PROMPT_V1
    return ASSISTANT_PROMPT_V1

