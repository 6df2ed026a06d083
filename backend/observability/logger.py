"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- Level filtering only; no side effects beyond logging
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Mapping, Callable


_LEVELS: dict[str, int] = {
    "debug": 10,
    "info": 20,
    "warning": 30,
    "error": 40,
}


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_min_level: int = _LEVELS["info"]
_json_enabled: bool = True


def configure(*, level: str = "INFO", json_enabled: bool = True) -> None:
    """
    Set the minimum level and output format.

    Called once by the app factory from AppConfig. Unknown level names
    fall back to INFO.
    """
    global _min_level, _json_enabled  # pylint: disable=global-statement
    _min_level = _LEVELS.get(level.lower(), _LEVELS["info"])
    _json_enabled = json_enabled


def now_ms() -> int:
    """Wall-clock milliseconds, for ts_ms fields."""
    return time.time_ns() // 1_000_000


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single JSONL event to stdout.

    The caller supplies the event dict. `ts_ms` is filled in when absent;
    `level` defaults to "info" and is used for filtering only.

    This function:
    - Serializes to JSON
    - Writes exactly one line (or nothing, when filtered)
    - Flushes immediately (no buffering)
    - Never raises
    """
    level = str(event.get("level", "info")).lower()
    if _LEVELS.get(level, _LEVELS["info"]) < _min_level:
        return

    payload: dict[str, Any] = dict(event)
    payload.setdefault("ts_ms", now_ms())

    if not _json_enabled:
        fields = " ".join(
            f"{k}={v!r}" for k, v in payload.items() if k not in ("ts_ms", "event_type")
        )
        _print(f"{payload['ts_ms']} {payload.get('event_type', '-')} {fields}")
        return

    try:
        line = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        # Last-resort fallback: logging must never crash the runtime
        fallback: dict[str, Any] = {
            "ts_ms": payload.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)
