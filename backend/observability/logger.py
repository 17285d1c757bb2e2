"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging

configure_logging() switches to a human-readable key=value format
(ENABLE_JSON_LOGS=0) and enables debug-only events (LOG_LEVEL=DEBUG).
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Mapping, Callable


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print

_json_logs: bool = True
_debug_enabled: bool = False


def configure_logging(*, json_logs: bool, log_level: str) -> None:
    """Apply process-wide logging options from AppConfig."""
    global _json_logs, _debug_enabled  # pylint: disable=global-statement
    _json_logs = json_logs
    _debug_enabled = log_level.upper() == "DEBUG"


def debug_enabled() -> bool:
    return _debug_enabled


def now_ms() -> int:
    """Wall-clock milliseconds, shared by every event source."""
    return time.time_ns() // 1_000_000


def _format_plain(event: Mapping[str, Any]) -> str:
    head = event.get("event_type", "EVENT")
    parts = [
        f"{key}={json.dumps(value, ensure_ascii=False, default=str)}"
        for key, value in event.items()
        if key != "event_type"
    ]
    return " ".join([str(head), *parts])


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single structured event.

    The caller is responsible for:
    - Supplying a fully-formed event dict
    - Including ts_ms, session_id, state, etc. where relevant

    This function:
    - Serializes to JSON (or key=value when JSON logs are disabled)
    - Writes exactly one line
    - Flushes immediately (no buffering)
    - Never raises
    """
    try:
        if _json_logs:
            line = json.dumps(event, ensure_ascii=False, separators=(",", ":"))
        else:
            line = _format_plain(event)
    except (TypeError, ValueError) as e:
        # Last-resort fallback: logging must never crash the runtime
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)


def log_debug(event: Mapping[str, Any]) -> None:
    """Like log_event, but only when LOG_LEVEL=DEBUG."""
    if _debug_enabled:
        log_event(event)
