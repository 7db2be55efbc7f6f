from __future__ import annotations

from pathlib import Path

import src.runtime_logging as runtime_logging


def test_runtime_logging_append_and_read():
    runtime_logging.append_runtime_event(
        level="warning",
        event="unknown_data_type",
        message="Unsupported data type.",
        context={"data_type": "sentiment_heatmap"},
    )
    events = runtime_logging.read_runtime_events(limit=10)
    assert len(events) == 1
    assert events[0]["event"] == "unknown_data_type"
    assert events[0]["level"] == "WARNING"
    assert events[0]["context"]["data_type"] == "sentiment_heatmap"


def test_exception_details_are_recorded():
    try:
        raise ValueError("bad sheet")
    except ValueError as exc:
        runtime_logging.append_runtime_event("ERROR", "excel_section_failed", "Failed.", exc=exc)
    (event,) = runtime_logging.read_runtime_events()
    assert event["exception_type"] == "ValueError"
    assert event["exception_message"] == "bad sheet"
    assert "Traceback" in event["traceback"]


def test_long_context_strings_are_bounded():
    runtime_logging.append_runtime_event("INFO", "big", "Big context.", context={"raw": "x" * 10_000})
    (event,) = runtime_logging.read_runtime_events()
    assert len(event["context"]["raw"]) == 4000
    assert event["context"]["raw"].endswith("...")


def test_runtime_logging_handles_malformed_lines(isolated_runtime_log):
    log_file = isolated_runtime_log
    log_file.parent.mkdir(parents=True, exist_ok=True)
    log_file.write_text(
        '{"event":"ok","level":"INFO","timestamp_utc":"2026-01-01T00:00:00+00:00","message":"ok","context":{}}\nnot-json\n',
        encoding="utf-8",
    )

    events = runtime_logging.read_runtime_events(limit=10)
    assert len(events) == 2
    assert events[0]["event"] == "ok"
    assert events[1]["event"] == "log_parse_error"


def test_events_frame_orders_columns_and_serializes_context():
    assert list(runtime_logging.runtime_events_frame().columns) == runtime_logging.PREFERRED_COLUMNS
    runtime_logging.append_runtime_event("INFO", "pdf_export_completed", "Done.", context={"pages": 2})
    frame = runtime_logging.runtime_events_frame(limit=5)
    assert list(frame.columns[:4]) == ["timestamp_utc", "level", "event", "message"]
    assert frame.loc[0, "context"] == '{"pages": 2}'


def test_clear_runtime_events_removes_the_file(isolated_runtime_log):
    runtime_logging.append_runtime_event("INFO", "e", "m")
    assert isolated_runtime_log.exists()
    assert runtime_logging.clear_runtime_events() is True
    assert not isolated_runtime_log.exists()
    assert runtime_logging.clear_runtime_events() is True


def test_configure_log_root_expands_user_paths(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    root = runtime_logging.configure_log_root("~/chat_logs")
    assert root == Path(tmp_path) / "chat_logs"
    assert runtime_logging.RUNTIME_EVENTS_LOG_FILE == root / "runtime_events.jsonl"
    assert runtime_logging.configure_log_root("  ") == Path(".local_store")


def test_level_filter_applies_before_the_limit():
    runtime_logging.append_runtime_event("ERROR", "pdf_section_failed", "Failed.")
    for idx in range(5):
        runtime_logging.append_runtime_event("INFO", "excel_export_completed", f"Done {idx}.")
    errors = runtime_logging.read_runtime_events(limit=2, levels=["error"])
    assert [e["event"] for e in errors] == ["pdf_section_failed"]
    assert len(runtime_logging.read_runtime_events(limit=2)) == 2
    assert runtime_logging.runtime_events_frame(levels=["WARNING"]).empty
