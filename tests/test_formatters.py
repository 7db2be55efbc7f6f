from __future__ import annotations

import pandas as pd
import pytest

from src.formatters import (
    convert_snake_case_to_title_case,
    format_currency_compact,
    format_earnings_range,
    format_growth,
    format_number,
    format_number_compact,
    format_percentage,
    format_smart_value,
    format_timestamp,
    is_earnings_key,
    parse_timestamp,
    to_number,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (999, "999"),
        (1500, "1.5K"),
        (1_000_000, "1M"),
        (2_500_000_000, "2.5B"),
        (1.2e12, "1.2T"),
        (-1500, "-1.5K"),
        (12.5, "12.5"),
        ("48,200", "48.2K"),
    ],
)
def test_format_number_compact_thresholds(value, expected):
    assert format_number_compact(value) == expected


def test_format_number_compact_carries_rounding_into_the_next_unit():
    assert format_number_compact(999_950) == "1M"
    assert format_number_compact(999_999_999) == "1B"
    assert format_number_compact(-999_950) == "-1M"
    assert format_number_compact(999_940) == "999.9K"
    assert format_currency_compact(999_950) == "$1M"


def test_format_number_compact_returns_non_numeric_verbatim():
    assert format_number_compact("abc") == "abc"
    assert format_number_compact(True) == "True"


def test_to_number_rejects_bool_and_non_finite():
    assert to_number(True) is None
    assert to_number(float("nan")) is None
    assert to_number(" 1,250.5 ") == 1250.5
    assert to_number("") is None


def test_currency_formatting():
    assert format_currency_compact(1500) == "$1.5K"
    assert format_currency_compact(12.5) == "$12.50"
    assert format_currency_compact(12) == "$12"
    assert format_currency_compact(-2_000_000) == "-$2M"
    assert format_earnings_range(9800, 14700) == "$9.8K - $14.7K"
    assert format_earnings_range(None, 500) == "$500"
    assert format_earnings_range(None, None) == "N/A"


def test_smart_value_picks_currency_from_field_name():
    assert format_smart_value("total_revenue", 1500) == "$1.5K"
    assert format_smart_value("ROYALTY_PAYMENTS", 2_400_000) == "$2.4M"
    assert format_smart_value("streams", 1500) == "1.5K"
    assert format_smart_value("streams", None) == "N/A"
    assert format_smart_value("anything", "$2500") == "$2.5K"
    assert format_smart_value("track_name", "Midnight Drive") == "Midnight Drive"


def test_smart_value_keywords_are_overridable(monkeypatch):
    assert format_smart_value("streams", 1500, earnings_keywords=["stream"]) == "$1.5K"
    assert not is_earnings_key("fan_tips")
    monkeypatch.setenv("CHATDASH_EARNINGS_KEYWORDS", "tips, merch")
    assert is_earnings_key("fan_tips")
    assert format_smart_value("merch_sales", 3000) == "$3K"


def test_growth_and_percentage():
    assert format_growth(12.3456) == "+12.35%"
    assert format_growth(-3.25) == "-3.25%"
    assert format_growth(0) == "0.00%"
    assert format_growth(None) == "N/A"
    assert format_percentage(38.4) == "38.4%"
    assert format_percentage(9.6, decimals=0) == "10%"
    assert format_number(1234567) == "1,234,567"


def test_title_case_is_idempotent():
    once = convert_snake_case_to_title_case("total_plays_last_week")
    assert once == "Total Plays Last Week"
    assert convert_snake_case_to_title_case(once) == once


def test_parse_timestamp_detects_seconds_and_milliseconds():
    expected = pd.Timestamp("2023-11-14 22:13:20")
    assert parse_timestamp(1_700_000_000) == expected
    assert parse_timestamp(1_700_000_000_000) == expected
    assert parse_timestamp("1700000000") == expected
    assert parse_timestamp("2024-03-01T12:00:00Z") == pd.Timestamp("2024-03-01 12:00:00")


def test_parse_timestamp_falls_back_to_now():
    now = pd.Timestamp("2026-10-19 08:30:00")
    assert parse_timestamp("not a date", now=now) == now
    assert parse_timestamp(None, now=now) == now
    assert parse_timestamp({"x": 1}, now=now) == now


def test_format_timestamp_styles():
    assert format_timestamp(1_700_000_000, "iso") == "2023-11-14"
    assert format_timestamp(1_700_000_000, "datetime") == "Nov 14, 2023 22:13"
    assert format_timestamp(1_700_000_000) == "Nov 14, 2023"
