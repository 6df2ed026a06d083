"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Build the shared pipeline objects (session manager, uploader,
  turn recorders, LLM client) once per process
- Start / stop the stale-session sweeper
- Register routes
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from openai import AsyncOpenAI

from adapters.asr.base import StreamFactory
from adapters.asr.deepgram_streaming import deepgram_stream_factory
from audio.uploader import FrameUploader
from config import AppConfig
from observability import logger
from observability.logger import log_event
from persistence.base import ConversationStore
from persistence.memory import InMemoryConversationStore
from persistence.records import AIMode, AIProvider
from session.manager import StreamingSessionManager
from session.store import InMemorySessionStore
from session.sweeper import SessionSweeper
from turns.registry import TurnRecorderRegistry
from turns.reply_stream import ReplyStreamer

from server.routes import register_routes


def create_app(
    config: Optional[AppConfig] = None,
    *,
    stream_factory: Optional[StreamFactory] = None,
    store: Optional[ConversationStore] = None,
    llm_client: Any | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with fake recognizers, stores and LLM clients
    - Environment-specific setup
    - ASGI server compatibility
    """
    if config is None:
        config = AppConfig.load_from_env()

    logger.configure(level=config.log_level, json_enabled=config.enable_json_logs)

    if stream_factory is None:
        stream_factory = deepgram_stream_factory(config)
    if store is None:
        store = InMemoryConversationStore()
    if llm_client is None:
        llm_client = build_llm_client(config)

    session_store = InMemorySessionStore()
    sessions = StreamingSessionManager(
        store=session_store,
        stream_factory=stream_factory,
        transcripts=store,
    )
    sweeper = SessionSweeper(
        sessions,
        max_age_s=config.session_max_age_s,
        interval_s=config.session_sweep_interval_s,
    )
    replies = (
        ReplyStreamer(client=llm_client, model=config.llm_model, provider=config.llm_provider)
        if llm_client is not None
        else None
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        sweeper.start()
        log_event({"event_type": "APP_STARTED", "env": config.env})
        try:
            yield
        finally:
            await sweeper.stop()
            if replies is not None:
                await replies.stop_all()
            # Shutdown: every remaining session is closed.
            await sessions.sweep(0.0)
            log_event({"event_type": "APP_STOPPED", "env": config.env})

    app = FastAPI(title="Conversation Pipeline API", lifespan=lifespan)

    app.state.config = config
    app.state.conversation_store = store
    app.state.sessions = sessions
    app.state.uploader = FrameUploader(
        store=session_store,
        max_frame_bytes=config.max_frame_bytes,
    )
    app.state.recorders = TurnRecorderRegistry(
        repository=store,
        provider=AIProvider(config.ai_provider),
        mode=AIMode(config.ai_mode),
    )
    app.state.replies = replies

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # tighten later
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app


def build_llm_client(config: AppConfig) -> AsyncOpenAI | None:
    """
    Build an LLM client with the provider selected by environment variables.

    Returns None when the selected provider has no API key; AI replies are
    then unavailable but every other endpoint works.
    """
    if config.llm_provider.lower() == "groq":
        if not config.groq_api_key:
            return None
        return AsyncOpenAI(
            api_key=config.groq_api_key,
            base_url="https://api.groq.com/openai/v1",
        )

    if not config.openai_api_key:
        return None
    return AsyncOpenAI(api_key=config.openai_api_key)
