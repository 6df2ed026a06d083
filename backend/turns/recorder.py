"""
AI turn recorder.

Converts incremental reply deltas into persisted turns, with at-most-once
persistence per turn id.

State:
- buffer:             text appended since the last persisted turn
- current_turn_id:    id reserved by a flush that has not succeeded yet
- confirmed_turn_ids: ids known to be durably saved (authoritative)

Operations:
- append_chunk():  pure accumulation, never suspends
- complete_turn(): normal end of a reply; always mints a fresh id
- flush():         interruption (pause / stop / disconnect); reuses the
                   reserved id so a retried flush cannot create a second
                   row for the same content
- restore_confirmed_turn_ids(): resynchronise after restart / reconnect

Invariants:
- A confirmed turn id is never submitted for persistence again.
- complete_turn() and flush() are serialised on an asyncio.Lock, so a
  streaming task and an explicit flush request may share one recorder.
- Once started, a persistence attempt runs to completion even if the
  caller is cancelled; its outcome still updates the recorder state.

The confirmed set grows for the life of the recorder. One recorder
belongs to one live session and is dropped with it.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Iterable, Optional
from uuid import uuid4

from constants import TURN_ID_RANDOM_HEX_LEN
from errors import PersistenceFailed
from observability.logger import log_event, now_ms
from observability.metrics import METRIC_TURN_PERSIST, timed
from persistence.base import AIMessageRepository
from persistence.records import (
    AIMessageRecord,
    AIMode,
    AIProvenance,
    AIProvider,
    AISource,
    utc_now,
)


def generate_turn_id() -> str:
    """`<epoch ms>-<random hex>`; unique per call."""
    return f"{now_ms()}-{uuid4().hex[:TURN_ID_RANDOM_HEX_LEN]}"


class TurnRecorder:
    """
    Per-session AI turn buffer.
    """

    def __init__(
        self,
        *,
        session_id: str,
        repository: AIMessageRepository,
        provider: AIProvider = AIProvider.OPENAI_REALTIME,
        mode: AIMode = AIMode.ASSISTANT,
        turn_id_factory: Callable[[], str] = generate_turn_id,
    ) -> None:
        self._session_id = session_id
        self._repository = repository
        self._provider = provider
        self._mode = mode
        self._new_turn_id = turn_id_factory

        self._buffer: str = ""
        # Bumped by clear(); a persist started before a clear must not
        # trim the buffer that replaced it.
        self._generation = 0
        self._current_turn_id: Optional[str] = None
        self._confirmed: set[str] = set()

        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def buffer(self) -> str:
        return self._buffer

    @property
    def current_turn_id(self) -> Optional[str]:
        return self._current_turn_id

    @property
    def confirmed_turn_ids(self) -> frozenset[str]:
        return frozenset(self._confirmed)

    @property
    def mode(self) -> AIMode:
        return self._mode

    # ------------------------------------------------------------------
    # Buffering
    # ------------------------------------------------------------------

    def append_chunk(self, text: str) -> None:
        self._buffer += text

    def set_mode(self, mode: AIMode) -> None:
        """
        Provenance mode for future persistence calls. Applies to the whole
        buffer outstanding at that time.
        """
        self._mode = mode
        log_event({
            "event_type": "TURN_MODE_CHANGED",
            "session_id": self._session_id,
            "mode": mode.value,
        })

    def restore_confirmed_turn_ids(self, turn_ids: Iterable[str]) -> None:
        """Replace the confirmed set wholesale."""
        self._confirmed = set(turn_ids)
        log_event({
            "event_type": "TURN_IDS_RESTORED",
            "session_id": self._session_id,
            "count": len(self._confirmed),
        })

    def clear(self) -> None:
        """Drop the buffer and any reserved turn id without persisting."""
        self._buffer = ""
        self._generation += 1
        self._current_turn_id = None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def complete_turn(self, *, source: AISource = AISource.RESPONSE) -> bool:
        """
        Persist the buffer as a new turn.

        Returns True when a turn was saved. On failure the buffer is kept
        and no id stays reserved: the next attempt mints a new one.
        """
        return await asyncio.shield(self._complete_turn(source))

    async def flush(self, *, source: AISource = AISource.RESPONSE) -> bool:
        """
        Persist whatever is buffered after an interruption.

        Returns True when a turn was saved. Returns False when there was
        nothing to save, when the reserved id is already confirmed (the
        buffer is discarded), or when persistence failed (buffer and
        reserved id are kept for the next flush).
        """
        return await asyncio.shield(self._flush(source))

    async def _complete_turn(self, source: AISource) -> bool:
        async with self._lock:
            if not self._buffer.strip():
                return False

            turn_id = self._new_turn_id()
            self._current_turn_id = turn_id

            ok = await self._persist(turn_id, self._buffer, source)
            if not ok:
                self._current_turn_id = None
            return ok

    async def _flush(self, source: AISource) -> bool:
        async with self._lock:
            if not self._buffer.strip():
                return False

            turn_id = self._current_turn_id
            if turn_id is not None and turn_id in self._confirmed:
                log_event({
                    "event_type": "TURN_FLUSH_SKIPPED",
                    "session_id": self._session_id,
                    "turn_id": turn_id,
                    "reason": "already_confirmed",
                })
                self._buffer = ""
                self._current_turn_id = None
                return False

            if turn_id is None:
                turn_id = self._new_turn_id()
                self._current_turn_id = turn_id

            return await self._persist(turn_id, self._buffer, source)

    async def _persist(self, turn_id: str, text: str, source: AISource) -> bool:
        """
        Submit one turn. On success, confirm the id and drop the persisted
        prefix from the buffer (chunks appended meanwhile are kept). If the
        buffer was cleared in the meantime it is left untouched.
        """
        if turn_id in self._confirmed:
            raise RuntimeError(f"turn {turn_id!r} is already confirmed")

        record = AIMessageRecord(
            turn_id=turn_id,
            session_id=self._session_id,
            text=text,
            provenance=AIProvenance(
                provider=self._provider,
                mode=self._mode,
                source=source,
            ),
            created_at=utc_now(),
        )
        generation = self._generation

        with timed(
            METRIC_TURN_PERSIST,
            session_id=self._session_id,
            details={"turn_id": turn_id, "chars": len(text)},
        ) as d:
            try:
                ok = await self._repository.save_ai_message(record)
            except PersistenceFailed as e:
                ok = False
                d["error"] = str(e)
            except Exception as e:  # pylint: disable=broad-exception-caught
                ok = False
                d["error"] = repr(e)
            d["ok"] = ok

        if not ok:
            log_event({
                "event_type": "TURN_PERSIST_FAILED",
                "level": "warning",
                "session_id": self._session_id,
                "turn_id": turn_id,
                "error": d.get("error"),
            })
            return False

        self._confirmed.add(turn_id)
        if self._generation == generation:
            self._buffer = self._buffer[len(text):]
            self._current_turn_id = None

        log_event({
            "event_type": "TURN_PERSISTED",
            "session_id": self._session_id,
            "turn_id": turn_id,
            "mode": self._mode.value,
            "source": source.value,
            "chars": len(text),
        })
        return True
