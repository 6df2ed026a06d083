"""
Per-session Turn Recorder registry.

A recorder is created on first use for a session and seeded with the
turn ids already persisted for it, so a reconnect or process restart
never re-saves a confirmed turn.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from persistence.base import AIMessageRepository
from persistence.records import AIMode, AIProvider
from turns.recorder import TurnRecorder


class TurnRecorderRegistry:
    """session id -> TurnRecorder."""

    def __init__(
        self,
        *,
        repository: AIMessageRepository,
        provider: AIProvider = AIProvider.OPENAI_REALTIME,
        mode: AIMode = AIMode.ASSISTANT,
    ) -> None:
        self._repository = repository
        self._provider = provider
        self._mode = mode
        self._recorders: dict[str, TurnRecorder] = {}
        self._lock = asyncio.Lock()

    def get(self, session_id: str) -> Optional[TurnRecorder]:
        return self._recorders.get(session_id)

    async def get_or_create(self, session_id: str) -> TurnRecorder:
        async with self._lock:
            recorder = self._recorders.get(session_id)
            if recorder is not None:
                return recorder

            recorder = TurnRecorder(
                session_id=session_id,
                repository=self._repository,
                provider=self._provider,
                mode=self._mode,
            )
            recorder.restore_confirmed_turn_ids(
                await self._repository.list_turn_ids(session_id)
            )
            self._recorders[session_id] = recorder
            return recorder

    async def close(self, session_id: str) -> bool:
        """
        Flush the session's recorder and drop it.

        Held under the registry lock, so a chunk arriving meanwhile waits
        and lands in a fresh recorder rather than in one being discarded.
        Returns whether a turn was saved.
        """
        async with self._lock:
            recorder = self._recorders.get(session_id)
            if recorder is None:
                return False
            try:
                return await recorder.flush()
            finally:
                del self._recorders[session_id]

    def __len__(self) -> int:
        return len(self._recorders)
