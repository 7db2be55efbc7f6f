from __future__ import annotations

from datetime import datetime
from io import BytesIO

import pandas as pd
import pytest

import src.excel_export as excel_export
from src.excel_export import export_messages_to_excel, export_to_excel, sheet_name
from src.samples import PLAYLIST_REPORT, VIRALITY_REPORT
from src.schema import ChatMessage, Section, SectionType
from src.validation import build_section, sections_from_response


def _options(recorder=None) -> dict:
    options = {"generated_at": datetime(2026, 10, 19)}
    if recorder is not None:
        options["log_event"] = recorder
    return options


def _read_back(workbook) -> dict[str, pd.DataFrame]:
    return pd.read_excel(BytesIO(workbook.data), sheet_name=None, engine="openpyxl")


def _fields(frame: pd.DataFrame) -> dict:
    return dict(zip(frame["Field"], frame["Value"]))


def test_sheet_names_keep_the_suffix_within_the_limit():
    assert sheet_name("Q1 Sales!", "_S1") == "Q1_Sales_S1"
    long_name = sheet_name("A very long section title that keeps going", "_M12S3_P2")
    assert len(long_name) == 31
    assert long_name.endswith("_M12S3_P2")
    assert sheet_name("***", "_S4") == "Section_S4"


def test_colliding_titles_get_distinct_sheet_names():
    title = "Quarterly Streaming Performance Overview"
    sections = [
        build_section("key_value", {"data": {"plays": 1}}, f"{title}!"),
        build_section("key_value", {"data": {"plays": 2}}, f"{title}?"),
    ]
    workbook = export_to_excel(sections, _options())
    first, second = workbook.sheet_names
    assert first != second
    assert len(first) <= 31 and len(second) <= 31
    assert first.endswith("_S1") and second.endswith("_S2")
    assert set(_read_back(workbook)) == {first, second}


def test_wide_dataframe_is_split_across_sheets(wide_table):
    workbook = export_to_excel([build_section("dataframe", wide_table)], _options())
    assert workbook.sheet_names == ("Wide_Table_S1_P1", "Wide_Table_S1_P2")
    frames = _read_back(workbook)
    assert list(frames["Wide_Table_S1_P1"].columns) == wide_table["columns"][:15]
    assert list(frames["Wide_Table_S1_P2"].columns) == wide_table["columns"][15:]
    assert len(frames["Wide_Table_S1_P2"]) == 3


def test_fifteen_columns_stay_on_one_sheet():
    columns = [f"c{i}" for i in range(15)]
    section = build_section("dataframe", {"columns": columns, "data": [list(range(15))]})
    assert len(export_to_excel([section], _options()).sheet_names) == 1


def test_virality_report_has_summary_and_metric_sheets():
    workbook = export_to_excel([build_section("virality_report", VIRALITY_REPORT)], _options())
    assert workbook.sheet_names == ("Virality_Nova_Reyes_S1_Sum", "Virality_Nova_Reyes_S1_Met")
    frames = _read_back(workbook)
    summary = _fields(frames["Virality_Nova_Reyes_S1_Sum"])
    assert summary["Artist"] == "Nova Reyes"
    assert summary["Verdict"] == "TRENDING"
    assert summary["Audience Growth"] == "+18.40%"
    metrics = frames["Virality_Nova_Reyes_S1_Met"]
    assert len(metrics) == 6
    tiktok = metrics.loc[metrics["Metric"] == "Tiktok Followers"].iloc[0]
    assert tiktok["Growth"] == "+24.10%"
    assert tiktok["Growth (raw)"] == pytest.approx(24.1)
    assert tiktok["Baseline Avg (raw)"] == pytest.approx(410_000)
    errored = metrics.loc[metrics["Metric"] == "Shazam Count"].iloc[0]
    assert errored["Status"] == "Data Error"
    assert pd.isna(errored["Growth (raw)"])


def test_multi_section_summary_lists_every_child(samples):
    report = samples["Multi-section report"]
    workbook = export_to_excel([build_section(report["data_type"], report["display_data"])], _options())
    names = workbook.sheet_names
    assert names[0] == "Report_S1_Sum"
    assert "Overview_S1_1" in names
    assert "Top_Tracks_S1_2" in names
    assert "Broken_Table_S1_3" in names
    summary = _read_back(workbook)["Report_S1_Sum"]
    assert list(summary["Section Type"]) == [
        "key_value",
        "dataframe",
        "dataframe",
        "country_listenership_data",
        "virality_report",
    ]
    assert list(summary["Has Tabular Data"]) == [False, True, False, True, True]
    assert list(summary["Has Scalar Data"]) == [True, False, False, False, True]


def test_malformed_and_unknown_sections_become_placeholder_sheets():
    sections = [
        build_section("dataframe", {"columns": "oops"}, "Broken"),
        Section(section_type="sentiment_heatmap", content={"foo": 1}),
        build_section("key_value", {"data": {"plays": 10}}),
    ]
    workbook = export_to_excel(sections, _options())
    assert workbook.sheet_names == ("Broken_S1", "Sentiment_Heatmap_S2", "Key_Value_S3")
    frames = _read_back(workbook)
    assert _fields(frames["Broken_S1"])["Status"].startswith("Malformed section")
    assert _fields(frames["Sentiment_Heatmap_S2"])["Status"] == "Unsupported section type 'sentiment_heatmap'"
    assert list(frames["Key_Value_S3"].columns) == ["Metric", "Value"]


def test_builder_failure_is_logged_and_replaced(monkeypatch, recorder):
    def _boom(section, suffix, options):
        raise RuntimeError("sheet exploded")

    monkeypatch.setitem(excel_export._SHEET_BUILDERS, SectionType.PLAYLIST_RECOMMENDATION_REPORT, _boom)
    sections = [
        build_section("playlist_recommendation_report", PLAYLIST_REPORT),
        build_section("key_value", {"data": {"plays": 10}}),
    ]
    workbook = export_to_excel(sections, _options(recorder))
    assert len(workbook.sheet_names) == 2
    assert "excel_section_failed" in recorder.names()
    assert recorder.names()[-1] == "excel_export_completed"
    frames = _read_back(workbook)
    assert _fields(frames[workbook.sheet_names[0]])["Status"] == "No data available"


def test_forecast_and_playlist_sheets_keep_raw_numbers(samples):
    forecast = build_section("forecast_chart", samples["Forecast"]["display_data"])
    playlist = build_section("playlist_recommendation_report", PLAYLIST_REPORT)
    workbook = export_to_excel([forecast, playlist], _options())
    hist_name, fc_name, playlist_name = workbook.sheet_names
    assert hist_name.endswith("_S1_Hist") and fc_name.endswith("_S1_Fc")
    frames = _read_back(workbook)
    assert len(frames[hist_name]) == 400
    assert list(frames[fc_name].columns) == ["Date", "Listeners", "Lower Bound", "Upper Bound"]
    recs = frames[playlist_name]
    assert list(recs["Followers"]) == ["1.8M", "620K", "45.3K"]
    assert list(recs["Followers (raw)"]) == [1_840_000, 620_000, 45_300]
    assert recs.loc[0, "Reasoning"].startswith("Genre Fit: ")


def test_chat_export_starts_with_summary_sheet(samples, recorder):
    messages = [
        ChatMessage(role="user", content="Top tracks?", timestamp=1_700_000_000),
        ChatMessage(
            role="assistant",
            content="Your top tracks this quarter.",
            display_data=samples["Dataframe"]["display_data"],
            data_type="dataframe",
        ),
        ChatMessage(role="assistant", content="Just text."),
    ]
    workbook = export_messages_to_excel(messages, _options(recorder))
    assert workbook.sheet_names == ("Chat Summary", "Top_Tracks_M2S2")
    summary = _read_back(workbook)["Chat Summary"]
    assert list(summary["Role"]) == ["User", "Assistant", "Assistant"]
    assert summary.loc[0, "Timestamp"] == "Nov 14, 2023 22:13"
    assert workbook.filename == "chat_export_2026-10-19.xlsx"


def test_single_message_export_adds_message_info(samples):
    message = ChatMessage(
        role="assistant",
        content="Full artist report.",
        display_data=samples["Countries"]["display_data"],
        data_type="country_listenership_data",
    )
    workbook = export_messages_to_excel([message], _options())
    assert workbook.sheet_names[:2] == ("Chat Summary", "Message Info")
    info = _fields(_read_back(workbook)["Message Info"])
    assert info["Data Type"] == "country_listenership_data"
    assert info["Content"] == "Full artist report."


def test_empty_export_still_produces_a_workbook():
    workbook = export_to_excel([], _options())
    assert workbook.sheet_names == ("Export",)
    assert workbook.data[:2] == b"PK"


def test_control_characters_are_stripped_instead_of_aborting_the_workbook(recorder):
    sections = [
        build_section("dataframe", {"columns": ["name", "tag\x0b"], "data": [["bell\x07", {"nested": "ok"}]]}, "Alerts"),
        build_section("key_value", {"data": {"plays": 10}}),
    ]
    workbook = export_to_excel(sections, _options(recorder))
    assert workbook.sheet_names == ("Alerts_S1", "Key_Value_S2")
    alerts = _read_back(workbook)["Alerts_S1"]
    assert list(alerts.columns) == ["name", "tag"]
    assert alerts.loc[0, "name"] == "bell"
    assert alerts.loc[0, "tag"] == '{"nested": "ok"}'
    assert "excel_sheet_failed" not in recorder.names()


def test_message_text_with_control_characters_exports(recorder):
    message = ChatMessage(role="assistant", content="line\x0bbreak")
    workbook = export_messages_to_excel([message], _options(recorder))
    frames = _read_back(workbook)
    assert _fields(frames["Message Info"])["Content"] == "linebreak"
    assert frames["Chat Summary"].loc[0, "Preview"] == "line break"


def test_timezone_aware_timestamps_are_written_as_utc():
    when = pd.Timestamp("2026-10-19 12:00", tz="Europe/Berlin")
    section = Section(section_type="dataframe", content={"columns": ["when"], "data": [[when]]}, title="Times")
    frames = _read_back(export_to_excel([section], _options()))
    assert frames["Times_S1"].loc[0, "when"] == pd.Timestamp("2026-10-19 10:00")


def test_sheet_write_failure_is_logged_and_replaced(monkeypatch, recorder):
    monkeypatch.setattr(excel_export, "_excel_frame", lambda frame: frame)
    sections = [
        build_section("dataframe", {"columns": ["name"], "data": [["bell\x07"]]}, "Alerts"),
        build_section("key_value", {"data": {"plays": 10}}),
    ]
    workbook = export_to_excel(sections, _options(recorder))
    assert "excel_sheet_failed" in recorder.names()
    frames = _read_back(workbook)
    assert list(frames) == ["Alerts_S1", "Key_Value_S2"]
    assert _fields(frames["Alerts_S1"])["Status"] == "No data available"
    assert list(frames["Key_Value_S2"].columns) == ["Metric", "Value"]


def test_long_suffixes_fold_into_a_stable_token():
    deep = "_S1" + "_1" * 12 + "_Sum"
    name = sheet_name("Level 3", deep)
    assert name == sheet_name("Level 3", deep)
    assert len(name) <= 31
    assert name.startswith("Level_3_")
    assert name != sheet_name("Level 3", "_S1" + "_1" * 12 + "_2")


def test_deeply_nested_reports_keep_unique_sheet_names(nested):
    workbook = export_to_excel(sections_from_response("multi_section_report", nested(20)), _options())
    names = workbook.sheet_names
    assert len(names) == 41
    assert len({name.lower() for name in names}) == len(names)
    assert all(len(name) <= 31 for name in names)
    frames = _read_back(workbook)
    assert len(frames) == 41
    (leaf,) = [name for name in names if name.startswith("Leaf")]
    assert list(frames[leaf].columns) == ["Metric", "Value"]


def test_very_deep_report_still_exports(nested, recorder):
    sections = sections_from_response("multi_section_report", nested(1200), log_event=recorder)
    workbook = export_to_excel(sections, _options(recorder))
    assert workbook.data[:2] == b"PK"
    assert len(set(workbook.sheet_names)) == len(workbook.sheet_names)
    assert recorder.names()[-1] == "excel_export_completed"
