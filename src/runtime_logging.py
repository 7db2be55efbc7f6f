"""Structured JSONL diagnostics for the chat dashboard and its exporters."""

from __future__ import annotations

import json
import os
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

import pandas as pd
from streamlit.runtime.scriptrunner import get_script_run_ctx


LOG_DIR = Path(".local_store")
RUNTIME_EVENTS_LOG_FILE = LOG_DIR / "runtime_events.jsonl"

_DEFAULT_LOG_DIR = Path(".local_store")
_STORAGE_ENV_VAR = "CHATDASH_STORAGE_ROOT"
_MAX_CONTEXT_CHARS = 4000

PREFERRED_COLUMNS = [
    "timestamp_utc",
    "level",
    "event",
    "message",
    "exception_type",
    "exception_message",
    "context",
]

_EXCEPTION_HOOK_INSTALLED = False


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _safe_json_default(value: Any):
    if isinstance(value, (set, tuple, frozenset)):
        return list(value)
    return str(value)


def _bounded_context(context: dict[str, Any] | None) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key, value in (context or {}).items():
        if isinstance(value, str) and len(value) > _MAX_CONTEXT_CHARS:
            value = f"{value[: _MAX_CONTEXT_CHARS - 3]}..."
        out[str(key)] = value
    return out


def _expand_log_root(path_value: str | Path | None) -> Path:
    if path_value is None:
        return _DEFAULT_LOG_DIR
    text = str(path_value).strip()
    if not text:
        return _DEFAULT_LOG_DIR
    return Path(os.path.expandvars(os.path.expanduser(text)))


def configure_log_root(path_value: str | Path | None) -> Path:
    global LOG_DIR, RUNTIME_EVENTS_LOG_FILE
    LOG_DIR = _expand_log_root(path_value)
    RUNTIME_EVENTS_LOG_FILE = LOG_DIR / "runtime_events.jsonl"
    return LOG_DIR


def runtime_log_path() -> str:
    return str(RUNTIME_EVENTS_LOG_FILE.resolve())


def _event_record(
    level: str,
    event: str,
    message: str,
    context: dict[str, Any] | None,
    exc: BaseException | None,
) -> dict[str, Any]:
    record: dict[str, Any] = {
        "timestamp_utc": _now_iso(),
        "level": str(level).upper(),
        "event": str(event),
        "message": str(message),
        "context": _bounded_context(context),
    }
    if exc is None:
        return record
    record["exception_type"] = type(exc).__name__
    record["exception_message"] = str(exc)
    if exc.__traceback__ is not None:
        record["traceback"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return record


def append_runtime_event(
    level: str,
    event: str,
    message: str,
    context: dict[str, Any] | None = None,
    exc: BaseException | None = None,
) -> None:
    """Append one structured event record to the JSONL log.

    The keyword signature doubles as the ``log_event`` hook accepted by the
    validator, the dispatcher and both export engines.
    """
    try:
        line = json.dumps(_event_record(level, event, message, context, exc), default=_safe_json_default, ensure_ascii=False)
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        with RUNTIME_EVENTS_LOG_FILE.open("a", encoding="utf-8") as f:
            f.write(line + "\n")
    except Exception:
        # Diagnostics must never break rendering or export.
        pass


def _parse_line(line: str) -> dict[str, Any]:
    try:
        return json.loads(line)
    except json.JSONDecodeError:
        return {
            "timestamp_utc": _now_iso(),
            "level": "ERROR",
            "event": "log_parse_error",
            "message": "Malformed log line encountered.",
            "context": {"line": line},
        }


def read_runtime_events(limit: int = 200, levels: Iterable[str] | None = None) -> list[dict[str, Any]]:
    """Up to ``limit`` most recent events, optionally restricted to ``levels``."""
    if limit <= 0 or not RUNTIME_EVENTS_LOG_FILE.exists():
        return []
    try:
        lines = RUNTIME_EVENTS_LOG_FILE.read_text(encoding="utf-8").splitlines()
    except OSError:
        return []
    wanted = {str(level).upper() for level in levels} if levels is not None else None
    events = [_parse_line(line) for line in lines if line.strip()]
    if wanted is not None:
        events = [e for e in events if str(e.get("level", "")).upper() in wanted]
    return events[-int(limit) :]


def runtime_events_frame(limit: int = 200, levels: Iterable[str] | None = None) -> pd.DataFrame:
    """Recent events as a table with the most useful columns first."""
    events = read_runtime_events(limit=limit, levels=levels)
    if not events:
        return pd.DataFrame(columns=PREFERRED_COLUMNS)
    frame = pd.DataFrame(events)
    cols = [c for c in PREFERRED_COLUMNS if c in frame.columns] + [
        c for c in frame.columns if c not in PREFERRED_COLUMNS
    ]
    frame = frame[cols]
    if "context" in frame.columns:
        frame["context"] = frame["context"].map(lambda v: json.dumps(v, default=_safe_json_default, ensure_ascii=False))
    return frame


def clear_runtime_events() -> bool:
    try:
        RUNTIME_EVENTS_LOG_FILE.unlink()
    except FileNotFoundError:
        return True
    except OSError as exc:
        append_runtime_event(
            level="ERROR",
            event="runtime_log_clear_failed",
            message="Failed to clear runtime log.",
            context={"path": str(RUNTIME_EVENTS_LOG_FILE)},
            exc=exc,
        )
        return False
    return True


def install_global_exception_logging() -> None:
    """Capture uncaught exceptions raised inside Streamlit script runs."""
    global _EXCEPTION_HOOK_INSTALLED
    if _EXCEPTION_HOOK_INSTALLED:
        return
    old_hook = sys.excepthook

    def _hook(exc_type, exc, exc_tb):
        try:
            if get_script_run_ctx() is not None:
                append_runtime_event(
                    level="ERROR",
                    event="uncaught_exception",
                    message=str(exc),
                    context={"traceback": "".join(traceback.format_exception(exc_type, exc, exc_tb))},
                    exc=exc,
                )
        except Exception:
            pass
        old_hook(exc_type, exc, exc_tb)

    sys.excepthook = _hook
    _EXCEPTION_HOOK_INSTALLED = True


configure_log_root(os.getenv(_STORAGE_ENV_VAR, ""))
