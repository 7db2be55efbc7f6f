from __future__ import annotations

import json

import pytest

from src.schema import AssistantResponse, ChatMessage, Section, SectionType, ensure_exhaustive
from src.validation import (
    build_section,
    is_dataframe_payload,
    sections_from_array,
    sections_from_response,
    validate,
)


def test_validate_dot_paths_and_list_indexes():
    value = {"a": {"b": [{"c": 1}, {"c": None}]}}
    assert validate(value, ["a.b.0.c"])
    assert not validate(value, ["a.b.1.c"])
    assert not validate(value, ["a.b.5.c"])
    assert not validate(value, ["a.x"])
    assert validate({"a": 1}, "a")


@pytest.mark.parametrize("value", [None, 3, "text", [], {"a": None}])
def test_validate_is_total(value):
    assert validate(value, ["a"]) is False
    assert validate(value, 5) is False


def test_dataframe_payload_property():
    assert is_dataframe_payload({"columns": ["a"], "data": [[1]]})
    assert is_dataframe_payload({"columns": [], "data": []})
    assert is_dataframe_payload({"dataframe": {"columns": ["a"], "data": [[1]]}})
    assert not is_dataframe_payload({"columns": ["a"], "data": [1]})
    assert not is_dataframe_payload({"columns": "a", "data": []})
    assert not is_dataframe_payload({"data": [[1]]})


def test_dataframe_rows_are_padded_and_truncated(recorder):
    section = build_section(
        "dataframe",
        {"columns": ["a", "b"], "data": [[1], [1, 2, 3], [4, 5]]},
        log_event=recorder,
    )
    assert not section.malformed
    assert section.content["data"] == [[1, ""], [1, 2], [4, 5]]
    assert recorder.names() == ["dataframe_row_normalized"]
    assert recorder.events[0]["context"]["rows"] == [0, 1]


def test_legacy_wrappers_are_unwrapped_once():
    table = {"columns": ["track", "streams"], "data": [["A", 10]], "title": "Tracks"}
    modern = build_section("dataframe", table)
    legacy = build_section("dataframe", {"dataframe": table})
    assert modern.content == legacy.content
    assert legacy.title == "Tracks"


def test_malformed_payload_keeps_raw_value_and_logs(recorder):
    raw = {"columns": ["a"], "data": "x"}
    section = build_section("dataframe", raw, "Broken", log_event=recorder, context="display_data")
    assert section.malformed
    assert section.content == raw
    assert section.reason
    assert recorder.names() == ["malformed_section"]
    assert recorder.events[0]["context"]["context"] == "display_data"


def test_unknown_tag_is_kept_verbatim_not_malformed():
    section = build_section("sentiment_heatmap", {"foo": 1})
    assert not section.malformed
    assert not section.is_known
    assert section.content == {"foo": 1}


def test_virality_status_fields_follow_the_status():
    section = build_section(
        "virality_report",
        {
            "artist_name": "A",
            "final_score": 150,
            "verdict": "VIRAL",
            "detailed_metrics": {
                "ok": {"status": "calculated", "growth": "5", "baseline_avg": 10, "recent_avg": 12},
                "partial": {"status": "unavailable", "growth": 9, "recent_avg": 7},
                "weird": {"status": "exploded", "growth": 1},
            },
        },
    )
    report = section.content
    assert report["final_score"] == 100.0
    assert report["verdict"] == "viral"
    assert report["detailed_metrics"]["ok"] == {
        "status": "calculated",
        "growth": 5.0,
        "baseline_avg": 10.0,
        "recent_avg": 12.0,
    }
    assert report["detailed_metrics"]["partial"] == {"status": "unavailable", "recent_avg": 7.0}
    assert report["detailed_metrics"]["weird"] == {"status": "data_error"}


def test_multi_section_isolates_a_bad_child(recorder):
    section = build_section(
        "multi_section_report",
        {
            "sections": [
                {"section_type": "key_value", "title": "Overview", "content": {"data": {"followers": 10}}},
                {"section_type": "dataframe", "title": "Broken", "content": {"columns": "oops"}},
            ]
        },
        log_event=recorder,
    )
    assert not section.malformed
    first, second = section.content["sections"]
    assert first.tag is SectionType.KEY_VALUE and not first.malformed
    assert second.malformed and second.title == "Broken"
    assert recorder.events[0]["context"]["context"] == "sections[1]"


def test_sections_from_array_titles_results():
    sections = sections_from_array([{"columns": ["a"], "data": [[1]]}, {"x": 1}, [1, 2]], "text")
    assert [s.title for s in sections] == ["Result 1", "Result 2", "Result 3"]
    assert sections[0].tag is SectionType.DATAFRAME
    assert sections[1].tag is SectionType.KEY_VALUE
    assert sections[2].malformed


def test_sections_from_response_orders_answer_first(samples):
    payload = samples["Dataframe"]
    sections = sections_from_response(payload["data_type"], payload["display_data"], payload["answer_str"])
    assert [s.tag for s in sections] == [SectionType.TEXT, SectionType.DATAFRAME]


def test_sections_from_response_skips_duplicate_text_and_expands_containers(samples):
    assert len(sections_from_response("text", "hello", "hello")) == 1
    report = samples["Multi-section report"]
    sections = sections_from_response(report["data_type"], report["display_data"], "")
    assert len(sections) == 5
    assert sum(1 for s in sections if s.malformed) == 1


def test_error_responses_become_one_error_section():
    sections = sections_from_response("error", None, "Service unavailable")
    assert len(sections) == 1
    assert sections[0].tag is SectionType.ERROR
    assert sections[0].content == "Service unavailable"


def test_wire_adapter_decodes_json_display_data():
    response = AssistantResponse.from_payload(
        {
            "answer_str": "Hi",
            "display_data": json.dumps({"columns": ["a"], "data": [[1]]}),
            "data_type": "dataframe",
            "status_bool": "yes",
        }
    )
    assert response.display_data == {"columns": ["a"], "data": [[1]]}
    assert response.status_bool is True
    assert AssistantResponse.from_payload(None).data_type == "text"


def test_failed_status_becomes_error_message():
    response = AssistantResponse.from_payload({"answer_str": "Timed out", "status_bool": False})
    message = ChatMessage.from_response(response)
    assert message.data_type == "error"
    assert message.role == "assistant"


def test_ensure_exhaustive_rejects_missing_handlers():
    with pytest.raises(TypeError, match="virality_report"):
        ensure_exhaustive({t: None for t in SectionType if t is not SectionType.VIRALITY_REPORT}, "test")


def test_sections_are_immutable():
    section = Section(section_type="text", content="x")
    with pytest.raises(AttributeError):
        section.content = "y"


def _walk_sections(sections):
    pending = list(sections)
    while pending:
        section = pending.pop()
        yield section
        if section.tag is SectionType.MULTI_SECTION_REPORT and not section.malformed:
            pending.extend(section.content["sections"])


def test_deeply_nested_report_becomes_a_malformed_descendant(nested, recorder):
    sections = sections_from_response("multi_section_report", nested(1200), log_event=recorder)
    assert [s.title for s in sections] == ["Level 1200", "Level 1200 Metrics"]
    malformed = [s for s in _walk_sections(sections) if s.malformed]
    assert malformed
    assert all(s.reason == "nested too deeply to normalize" for s in malformed)
    assert "malformed_section" in recorder.names()


def test_deeply_nested_json_string_is_kept_as_text():
    text = "[" * 100_000 + "]" * 100_000
    assert AssistantResponse.from_payload({"data_type": "text", "display_data": text}).display_data == text
