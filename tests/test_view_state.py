from __future__ import annotations

import pandas as pd
import pytest

from src.samples import METRIC_GRID, forecast_payload
from src.validation import build_section
from src.view_state import (
    SORT_ASC,
    SORT_DESC,
    column_chunks,
    filter_by_window,
    flag_emoji,
    forecast_stats,
    forecast_view,
    metric_grid_groups,
    metric_rows,
    next_sort_state,
    normalize_window,
    progress_percentage,
    score_tier,
    search_rows,
    series_frame,
    sort_rows,
    sorted_countries,
    split_text_blocks,
    status_counts,
)

FIXED_NOW = pd.Timestamp("2026-10-19 12:00:00")


def test_sort_cycle_is_ascending_descending_unsorted():
    state = next_sort_state(None, 1)
    assert state == (1, SORT_ASC)
    state = next_sort_state(state, 1)
    assert state == (1, SORT_DESC)
    assert next_sort_state(state, 1) is None
    assert next_sort_state((0, SORT_DESC), 2) == (2, SORT_ASC)


def test_sort_rows_orders_numbers_before_text_and_blanks():
    rows = [["b", "10"], ["a", 2], ["c", None], ["d", "n/a"]]
    assert [r[0] for r in sort_rows(rows, (1, SORT_ASC))] == ["a", "b", "d", "c"]
    assert sort_rows(rows, None) == rows


def test_search_rows_matches_any_cell_case_insensitively():
    rows = [["Midnight Drive", 10], ["Low Tide", 20]]
    assert search_rows(rows, "tide") == [["Low Tide", 20]]
    assert search_rows(rows, "20") == [["Low Tide", 20]]
    assert search_rows(rows, "  ") == rows


def test_column_chunks_are_half_open():
    assert column_chunks(20, 8) == [(0, 8), (8, 16), (16, 20)]
    assert column_chunks(15, 15) == [(0, 15)]
    assert column_chunks(0, 8) == []


def test_window_aliases_normalize():
    assert normalize_window("1month") == "1mo"
    assert normalize_window("2WEEKS") == "2wk"
    assert normalize_window("decade") == "all"


def test_one_month_window_keeps_only_the_last_month():
    payload = build_section("forecast_chart", forecast_payload(history_days=400, now=FIXED_NOW)).content
    full = forecast_view(payload, "all", now=FIXED_NOW)
    month = forecast_view(payload, "1month", now=FIXED_NOW)
    assert full.historical_stats["count"] == 400
    cutoff = FIXED_NOW - pd.DateOffset(months=1)
    assert (month.historical["date"] >= cutoff).all()
    assert month.historical_stats["count"] == 30
    # Windows never touch the forecast series.
    assert len(month.forecast) == len(full.forecast) == 30


def test_filter_by_window_on_empty_frame_is_empty():
    frame = series_frame({"data": []})
    assert filter_by_window(frame, "1y", now=FIXED_NOW).empty


def test_forecast_stats_projected_change():
    frame = pd.DataFrame({"date": pd.date_range("2026-01-01", periods=3), "value": [100.0, 105.0, 110.0]})
    stats = forecast_stats(frame)
    assert stats["projected_change"] == pytest.approx(10.0)
    assert stats["average"] == pytest.approx(105.0)
    assert forecast_stats(frame.iloc[:1])["projected_change"] == 0.0
    assert forecast_stats(frame.iloc[0:0])["count"] == 0


def test_confidence_band_only_covers_points_with_both_bounds():
    payload = build_section(
        "forecast_chart",
        {
            "forecast_data": {
                "columns": ["date", "value", "lower", "upper"],
                "data": [
                    ["2026-11-01", 10, 8, 12],
                    ["2026-11-02", 11, None, 13],
                    ["2026-11-03", 12, 10, 14],
                ],
            }
        },
    ).content
    view = forecast_view(payload)
    assert len(view.forecast) == 3
    assert len(view.band) == 2


def test_progress_percentage_is_centered_and_clamped():
    assert progress_percentage(100, 100) == 50.0
    assert progress_percentage(100, 150) == 75.0
    assert progress_percentage(100, 400) == 100.0
    assert progress_percentage(0, 10) == 50.0
    assert progress_percentage(None, 10) == 50.0


def test_status_counts_and_score_tiers(samples):
    details = build_section("virality_report", samples["Virality report"]["display_data"]).content["detailed_metrics"]
    assert status_counts(details) == {"calculated": 4, "unavailable": 1, "data_error": 1}
    assert score_tier(94) == "high"
    assert score_tier(78) == "medium"
    assert score_tier(None) == "low"


def test_countries_sort_descending_with_names_and_flags(samples):
    countries = build_section("country_listenership_data", samples["Countries"]["display_data"]).content["data"]
    ranked = sorted_countries(countries)
    assert [c["countryCode"] for c in ranked] == ["us", "other", "br", "gb", "de"]
    assert ranked[0]["name"] == "United States"
    assert ranked[1]["name"] == "Other Countries"
    assert flag_emoji("us") == "\U0001F1FA\U0001F1F8"
    assert ranked[1]["flag"] == flag_emoji("other")


def test_metric_grid_groups_put_earnings_first_and_pair_ranges():
    payload = build_section("metric_grid", METRIC_GRID).content
    groups = metric_grid_groups(payload)
    assert [g.key for g in groups] == ["earnings", "spotify", "youtube"]
    spotify = groups[1]
    assert spotify.display_name == "Spotify"
    assert spotify.links == ("https://open.spotify.com/artist/example",)
    assert spotify.earnings == (("Stream Earnings", "$9.8K - $14.7K"),)
    assert all(not name.startswith(("min_", "max_")) for name, _ in spotify.metrics)


def test_metric_rows_format_values_and_prefix_platforms():
    payload = build_section("metric_grid", METRIC_GRID).content
    rows = dict(metric_rows("metric_grid", payload))
    assert rows["Total Earnings - Total Revenue"] == "$1.3M"
    assert rows["Spotify - Followers"] == "310.5K"
    kv = build_section("key_value", {"data": {"total_earnings": 1500, "plays": 2000}}).content
    assert metric_rows("key_value", kv) == [("Total Earnings", "$1.5K"), ("Plays", "2K")]


def test_split_text_blocks_extracts_pipe_tables():
    text = "Intro **bold**\n\n| a | b |\n|---|---|\n| 1 | 2 |\n| 3 |\nOutro"
    blocks = split_text_blocks(text)
    assert [kind for kind, _ in blocks] == ["markdown", "table", "markdown"]
    table = blocks[1][1]
    assert table["columns"] == ["a", "b"]
    assert table["data"] == [["1", "2"], ["3", ""]]
