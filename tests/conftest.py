from __future__ import annotations

from pathlib import Path

import pandas as pd
import pytest

import src.runtime_logging as runtime_logging
from src.samples import sample_responses


FIXED_NOW = pd.Timestamp("2026-10-19 12:00:00")


class EventRecorder:
    def __init__(self) -> None:
        self.events: list[dict] = []

    def __call__(self, **kwargs) -> None:
        self.events.append(kwargs)

    def names(self) -> list[str]:
        return [e["event"] for e in self.events]


@pytest.fixture(autouse=True)
def isolated_runtime_log(tmp_path, monkeypatch):
    monkeypatch.setattr(runtime_logging, "LOG_DIR", Path(tmp_path))
    monkeypatch.setattr(runtime_logging, "RUNTIME_EVENTS_LOG_FILE", Path(tmp_path) / "runtime_events.jsonl")
    return Path(tmp_path) / "runtime_events.jsonl"


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def samples() -> dict:
    return sample_responses(now=FIXED_NOW)


@pytest.fixture
def wide_table() -> dict:
    columns = [f"col_{i:02d}" for i in range(1, 21)]
    return {
        "title": "Wide Table",
        "columns": columns,
        "data": [[f"row{r}"] + [r * 100 + c for c in range(1, 20)] for r in range(1, 4)],
    }


def nested_report(depth: int) -> dict:
    """``depth`` multi-section reports, each holding the next one plus a key/value sibling."""
    report = {"sections": [{"section_type": "key_value", "title": "Leaf", "content": {"data": {"level": 0}}}]}
    for level in range(1, depth + 1):
        report = {
            "sections": [
                {"section_type": "multi_section_report", "title": f"Level {level}", "content": report},
                {"section_type": "key_value", "title": f"Level {level} Metrics", "content": {"data": {"level": level}}},
            ]
        }
    return report


@pytest.fixture
def nested():
    return nested_report
