"""
Metrics and timing helpers for observability.

Responsibilities:
- Measure durations using monotonic time (immune to clock changes)
- Emit metrics as JSONL events via observability.logger
- Never aggregate: one metric = one log event

Design notes:
- Durations use monotonic time for correctness
- Event timestamps (ts_ms) use wall-clock time for human readability
- `timed()` always stops its timer, even when the body raises
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event, now_ms


# Metric names
METRIC_STREAM_WRITE = "stream_write_ms"
METRIC_TURN_PERSIST = "turn_persist_ms"
METRIC_TRANSCRIPT_PERSIST = "transcript_persist_ms"


def emit_duration(
    name: str,
    duration_ms: int,
    *,
    session_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit one METRIC_TIMER event."""
    log_event({
        "ts_ms": now_ms(),
        "event_type": "METRIC_TIMER",
        "level": "debug",
        "metric": name,
        "value_ms": duration_ms,
        "session_id": session_id,
        "details": details or {},
    })


@contextmanager
def timed(
    name: str,
    *,
    session_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[dict[str, Any]]:
    """
    Context manager for measuring durations.

    Yields a mutable details dict so the body can attach outcome fields
    (e.g. {"ok": False}) before the metric is emitted.

    Usage:
        with timed(METRIC_TURN_PERSIST, session_id=sid) as d:
            ok = await repo.save_ai_message(record)
            d["ok"] = ok
    """
    collected: dict[str, Any] = dict(details or {})
    start_ns = time.monotonic_ns()
    try:
        yield collected
    finally:
        emit_duration(
            name,
            (time.monotonic_ns() - start_ns) // 1_000_000,
            session_id=session_id,
            details=collected,
        )
