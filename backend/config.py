"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No pipeline logic
- No protocol constants (see constants.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from constants import (
    MAX_STREAM_WRITE_BYTES,
    SESSION_MAX_AGE_S,
    SESSION_SWEEP_INTERVAL_S,
    SSE_HEARTBEAT_INTERVAL_S,
)


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the app factory, session manager and routes.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Speech recognition
    # ------------------------------------------------------------------

    deepgram_api_key: str | None
    deepgram_model: str
    deepgram_language: str | None

    # ------------------------------------------------------------------
    # AI replies
    # ------------------------------------------------------------------

    llm_provider: str
    llm_model: str
    openai_api_key: str | None
    groq_api_key: str | None

    ai_provider: str
    ai_mode: str

    # ------------------------------------------------------------------
    # Pipeline limits
    # ------------------------------------------------------------------

    max_frame_bytes: int
    session_max_age_s: float
    session_sweep_interval_s: float
    sse_heartbeat_interval_s: float

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env() -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ValueError if a numeric variable cannot be parsed.
        """
        return AppConfig(
            env=os.environ.get("ENV", "dev"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),

            deepgram_api_key=os.environ.get("DEEPGRAM_API_KEY"),
            deepgram_model=os.environ.get("DEEPGRAM_MODEL", "nova-2"),
            deepgram_language=os.environ.get("DEEPGRAM_LANGUAGE", "ja"),

            llm_provider=os.environ.get("LLM_PROVIDER", "openai"),
            llm_model=os.environ.get("LLM_MODEL", "gpt-4o-mini"),
            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            groq_api_key=os.environ.get("GROQ_API_KEY"),

            ai_provider=os.environ.get("AI_PROVIDER", "openai_realtime"),
            ai_mode=os.environ.get("AI_MODE", "assistant"),

            max_frame_bytes=int(
                os.environ.get("STT_MAX_FRAME_BYTES", str(MAX_STREAM_WRITE_BYTES))
            ),
            session_max_age_s=float(
                os.environ.get("SESSION_MAX_AGE_S", str(SESSION_MAX_AGE_S))
            ),
            session_sweep_interval_s=float(
                os.environ.get("SESSION_SWEEP_INTERVAL_S", str(SESSION_SWEEP_INTERVAL_S))
            ),
            sse_heartbeat_interval_s=float(
                os.environ.get("SSE_HEARTBEAT_INTERVAL_S", str(SSE_HEARTBEAT_INTERVAL_S))
            ),

            enable_json_logs=os.environ.get("ENABLE_JSON_LOGS", "1") == "1",
        )
