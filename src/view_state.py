"""Derived projections over immutable section payloads.

Search, sort, time-window filtering and grouping all build new values from
(source payload, view parameters); nothing here mutates a section.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Any, Iterable

import numpy as np
import pandas as pd

from src.defaults import COUNTRY_NAMES, DEFAULTS, platform_config
from src.formatters import (
    convert_snake_case_to_title_case,
    format_earnings_range,
    format_smart_value,
    parse_timestamp,
    to_number,
)


SORT_ASC = "asc"
SORT_DESC = "desc"

WINDOW_OFFSETS: dict[str, pd.DateOffset | None] = {
    "all": None,
    "1y": pd.DateOffset(years=1),
    "6mo": pd.DateOffset(months=6),
    "3mo": pd.DateOffset(months=3),
    "1mo": pd.DateOffset(months=1),
    "2wk": pd.DateOffset(weeks=2),
}
WINDOW_LABELS = {
    "all": "All Time",
    "1y": "1 Year",
    "6mo": "6 Months",
    "3mo": "3 Months",
    "1mo": "1 Month",
    "2wk": "2 Weeks",
}
_WINDOW_ALIASES = {
    "1year": "1y",
    "6months": "6mo",
    "3months": "3mo",
    "1month": "1mo",
    "2weeks": "2wk",
}

AUDIENCE_PATTERN = re.compile(r"follower|subscriber|audience", re.IGNORECASE)
ENGAGEMENT_PATTERN = re.compile(r"like|comment|share|engagement|view", re.IGNORECASE)
METRIC_GROUPS = ("audience", "engagement", "other")

STATUS_STYLES: dict[str, dict[str, str]] = {
    "calculated": {"color": "green", "icon": "✅", "label": "Calculated"},
    "unavailable": {"color": "orange", "icon": "⚠️", "label": "Unavailable"},
    "data_error": {"color": "gray", "icon": "⛔", "label": "Data Error"},
}

_TABLE_SEPARATOR = re.compile(r"^\|?\s*:?-{3,}:?\s*(\|\s*:?-{3,}:?\s*)*\|?$")
_EARNINGS_BOUND = re.compile(r"^(min|max)_(.*earning.*)$", re.IGNORECASE)


# Tables -----------------------------------------------------------------------

def next_sort_state(state: tuple[int, str] | None, column: int) -> tuple[int, str] | None:
    """Advance the header-click cycle: ascending, descending, unsorted."""
    if state is None or state[0] != column:
        return (column, SORT_ASC)
    if state[1] == SORT_ASC:
        return (column, SORT_DESC)
    return None


def _sort_key(value: Any) -> tuple[int, Any]:
    num = to_number(value)
    if num is not None:
        return (0, num)
    if value is None or value == "":
        return (2, "")
    return (1, str(value).lower())


def search_rows(rows: list[list[Any]], query: str) -> list[list[Any]]:
    needle = str(query or "").strip().lower()
    if not needle:
        return list(rows)
    return [row for row in rows if any(needle in str(cell).lower() for cell in row)]


def sort_rows(rows: list[list[Any]], state: tuple[int, str] | None) -> list[list[Any]]:
    if state is None:
        return list(rows)
    column, direction = state
    return sorted(
        rows,
        key=lambda row: _sort_key(row[column] if column < len(row) else None),
        reverse=direction == SORT_DESC,
    )


def table_rows(payload: dict[str, Any], query: str = "", sort_state: tuple[int, str] | None = None) -> list[list[Any]]:
    return sort_rows(search_rows(payload.get("data", []), query), sort_state)


def format_table_rows(columns: list[str], rows: Iterable[list[Any]]) -> list[list[str]]:
    """First column stays verbatim; the rest go through smart formatting by column name."""
    out: list[list[str]] = []
    for row in rows:
        cells: list[str] = []
        for idx, cell in enumerate(row):
            if idx == 0:
                cells.append("" if cell is None else str(cell))
            else:
                cells.append(format_smart_value(columns[idx] if idx < len(columns) else "", cell))
        out.append(cells)
    return out


def column_chunks(count: int, size: int) -> list[tuple[int, int]]:
    """Half-open column ranges of at most ``size`` columns."""
    size = max(1, int(size))
    return [(start, min(start + size, count)) for start in range(0, count, size)]


def display_frame(payload: dict[str, Any], rows: list[list[Any]] | None = None) -> pd.DataFrame:
    columns = [convert_snake_case_to_title_case(c) for c in payload.get("columns", [])]
    source = payload.get("data", []) if rows is None else rows
    return pd.DataFrame(format_table_rows(payload.get("columns", []), source), columns=columns)


# Pipe tables inside text ------------------------------------------------------

def _split_pipe_row(line: str) -> list[str]:
    text = line.strip()
    if text.startswith("|"):
        text = text[1:]
    if text.endswith("|"):
        text = text[:-1]
    return [cell.strip() for cell in text.split("|")]


def split_text_blocks(text: str) -> list[tuple[str, Any]]:
    """Split text into ("markdown", str) and ("table", {columns, data}) blocks."""
    lines = str(text or "").splitlines()
    blocks: list[tuple[str, Any]] = []
    buffer: list[str] = []
    i = 0
    while i < len(lines):
        line = lines[i]
        if (
            line.strip().startswith("|")
            and i + 1 < len(lines)
            and _TABLE_SEPARATOR.match(lines[i + 1].strip())
        ):
            if buffer:
                blocks.append(("markdown", "\n".join(buffer)))
                buffer = []
            columns = _split_pipe_row(line)
            rows: list[list[str]] = []
            i += 2
            while i < len(lines) and lines[i].strip().startswith("|"):
                cells = _split_pipe_row(lines[i])
                rows.append((cells + [""] * len(columns))[: len(columns)])
                i += 1
            blocks.append(("table", {"columns": columns, "data": rows, "index": None, "title": None}))
            continue
        buffer.append(line)
        i += 1
    if buffer and "\n".join(buffer).strip():
        blocks.append(("markdown", "\n".join(buffer)))
    return blocks


def strip_markdown(text: str) -> str:
    out = re.sub(r"\*\*(.+?)\*\*", r"\1", str(text or ""))
    out = re.sub(r"__(.+?)__", r"\1", out)
    out = re.sub(r"`([^`]*)`", r"\1", out)
    out = re.sub(r"^\s{0,3}#{1,6}\s*", "", out, flags=re.MULTILINE)
    return out


# Forecasts --------------------------------------------------------------------

def normalize_window(window: str | None) -> str:
    key = str(window or "all").strip().lower()
    key = _WINDOW_ALIASES.get(key, key)
    return key if key in WINDOW_OFFSETS else "all"


def series_frame(series: dict[str, Any], *, with_bounds: bool = False) -> pd.DataFrame:
    columns = ["date", "value", "lower", "upper"] if with_bounds else ["date", "value"]
    rows = []
    for row in series.get("data", []) if isinstance(series, dict) else []:
        record = {
            "date": parse_timestamp(row[0]),
            "value": to_number(row[1]) if len(row) > 1 else None,
        }
        if with_bounds:
            record["lower"] = to_number(row[2]) if len(row) > 2 else None
            record["upper"] = to_number(row[3]) if len(row) > 3 else None
        rows.append(record)
    frame = pd.DataFrame(rows, columns=columns)
    for col in columns[1:]:
        frame[col] = pd.to_numeric(frame[col], errors="coerce")
    frame = frame.dropna(subset=["value"])
    return frame.sort_values("date", kind="stable").reset_index(drop=True)


def filter_by_window(frame: pd.DataFrame, window: str, now: pd.Timestamp | None = None) -> pd.DataFrame:
    """Drop points dated before ``now`` minus the window's calendar offset."""
    offset = WINDOW_OFFSETS[normalize_window(window)]
    if offset is None or frame.empty:
        return frame.copy()
    anchor = parse_timestamp(now) if now is not None else parse_timestamp(None)
    cutoff = anchor - offset
    return frame.loc[frame["date"] >= cutoff].reset_index(drop=True)


def historical_stats(frame: pd.DataFrame) -> dict[str, Any]:
    if frame.empty:
        return {"count": 0, "average": None, "minimum": None, "maximum": None}
    values = frame["value"].to_numpy(dtype=float)
    return {
        "count": int(values.size),
        "average": float(np.mean(values)),
        "minimum": float(np.min(values)),
        "maximum": float(np.max(values)),
    }


def forecast_stats(frame: pd.DataFrame) -> dict[str, Any]:
    if frame.empty:
        return {"count": 0, "average": None, "projected_change": 0.0}
    values = frame["value"].to_numpy(dtype=float)
    first, last = float(values[0]), float(values[-1])
    change = (last - first) / first * 100.0 if values.size > 1 and first != 0 else 0.0
    return {"count": int(values.size), "average": float(np.mean(values)), "projected_change": change}


def confidence_band(frame: pd.DataFrame) -> pd.DataFrame:
    if frame.empty or "lower" not in frame.columns:
        return frame.iloc[0:0]
    return frame.dropna(subset=["lower", "upper"]).reset_index(drop=True)


@dataclass(frozen=True)
class ForecastView:
    title: str
    y_axis_label: str
    window: str
    historical: pd.DataFrame
    forecast: pd.DataFrame
    band: pd.DataFrame
    historical_stats: dict[str, Any]
    forecast_stats: dict[str, Any]


def forecast_view(payload: dict[str, Any], window: str = "all", now: pd.Timestamp | None = None) -> ForecastView:
    key = normalize_window(window)
    historical = filter_by_window(series_frame(payload.get("historical_data", {})), key, now=now)
    forecast = series_frame(payload.get("forecast_data", {}), with_bounds=True)
    return ForecastView(
        title=str(payload.get("title") or "Forecast"),
        y_axis_label=str(payload.get("y_axis_label") or "Value"),
        window=key,
        historical=historical,
        forecast=forecast,
        band=confidence_band(forecast),
        historical_stats=historical_stats(historical),
        forecast_stats=forecast_stats(forecast),
    )


# Virality ---------------------------------------------------------------------

def metric_group(name: str) -> str:
    if AUDIENCE_PATTERN.search(name):
        return "audience"
    if ENGAGEMENT_PATTERN.search(name):
        return "engagement"
    return "other"


def group_detailed_metrics(details: dict[str, dict[str, Any]]) -> dict[str, list[tuple[str, dict[str, Any]]]]:
    groups: dict[str, list[tuple[str, dict[str, Any]]]] = {name: [] for name in METRIC_GROUPS}
    for key, metric in details.items():
        groups[metric_group(key)].append((key, metric))
    return groups


def status_counts(details: dict[str, dict[str, Any]]) -> dict[str, int]:
    counts = {status: 0 for status in STATUS_STYLES}
    for metric in details.values():
        status = metric.get("status", "data_error")
        counts[status if status in counts else "data_error"] += 1
    return counts


def progress_percentage(baseline: Any, recent: Any) -> float:
    """Recent relative to baseline, with 50 meaning unchanged, clamped to 0-100."""
    base = to_number(baseline)
    latest = to_number(recent)
    if base is None or latest is None or base == 0:
        return 50.0
    return float(min(max(latest / base * 50.0, 0.0), 100.0))


# Playlists --------------------------------------------------------------------

def score_tier(score: Any) -> str:
    num = to_number(score)
    if num is None:
        return "low"
    if num >= float(DEFAULTS["score_tier_high"]):
        return "high"
    if num >= float(DEFAULTS["score_tier_medium"]):
        return "medium"
    return "low"


def playlist_summary(payload: dict[str, Any]) -> dict[str, Any]:
    recs = payload.get("recommendations", [])
    followers = [r["followers"] for r in recs if r.get("followers") is not None]
    scores = [r["score"] for r in recs if r.get("score") is not None]
    return {
        "total": len(recs),
        "total_followers": float(sum(followers)),
        "average_score": float(np.mean(scores)) if scores else None,
    }


# Countries and platforms ------------------------------------------------------

def country_name(code: Any) -> str:
    text = str(code or "").strip()
    return COUNTRY_NAMES.get(text.lower(), text.upper())


def flag_emoji(code: Any) -> str:
    text = str(code or "").strip().upper()
    if len(text) != 2 or not text.isalpha() or not text.isascii():
        return "🌐"
    return "".join(chr(0x1F1E6 + ord(ch) - ord("A")) for ch in text)


def sorted_countries(items: list[dict[str, Any]]) -> list[dict[str, Any]]:
    ranked = sorted(items, key=lambda item: item.get("percentage") or 0.0, reverse=True)
    return [
        {
            "countryCode": item["countryCode"],
            "name": country_name(item["countryCode"]),
            "flag": flag_emoji(item["countryCode"]),
            "percentage": item["percentage"],
        }
        for item in ranked
    ]


def is_link_key(key: str) -> bool:
    return str(key).upper().endswith("_URL")


@dataclass(frozen=True)
class MetricGroup:
    key: str
    display_name: str
    links: tuple[str, ...]
    metrics: tuple[tuple[str, Any], ...]
    earnings: tuple[tuple[str, str], ...]


def metric_grid_groups(payload: dict[str, Any]) -> list[MetricGroup]:
    """Split each platform into metrics, ``_URL`` links, and min/max earnings ranges."""
    groups: list[MetricGroup] = []
    for key, metrics in payload.get("data", {}).items():
        config = platform_config(key)
        links = tuple(str(v) for k, v in metrics.items() if is_link_key(k) and v)
        bounds: dict[str, dict[str, Any]] = {}
        plain: list[tuple[str, Any]] = []
        for name, value in metrics.items():
            if is_link_key(name):
                continue
            match = _EARNINGS_BOUND.match(name)
            if match:
                bounds.setdefault(match.group(2).lower(), {})[match.group(1).lower()] = value
            else:
                plain.append((name, value))
        primary = config.get("primary_metric")
        if primary:
            plain.sort(key=lambda item: 0 if item[0] == primary else 1)
        earnings = []
        for label, pair in bounds.items():
            if "min" in pair and "max" in pair:
                earnings.append((convert_snake_case_to_title_case(label), format_earnings_range(pair["min"], pair["max"])))
            else:
                for side, value in pair.items():
                    plain.append((f"{side}_{label}", value))
        groups.append(
            MetricGroup(
                key=str(key),
                display_name=config["display_name"],
                links=links,
                metrics=tuple(plain),
                earnings=tuple(earnings),
            )
        )
    groups.sort(key=lambda g: 0 if g.key.lower() == "earnings" else 1)
    return groups


def metric_rows(section_type: str, payload: dict[str, Any]) -> list[tuple[str, str]]:
    """Flatten key_value / metric_grid payloads into formatted (Metric, Value) rows."""
    if section_type == "metric_grid":
        rows: list[tuple[str, str]] = []
        groups = metric_grid_groups(payload)
        for group in groups:
            prefix = f"{group.display_name} - " if len(groups) > 1 or group.key != "Metrics" else ""
            for name, value in group.metrics:
                rows.append((prefix + convert_snake_case_to_title_case(name), format_smart_value(name, value)))
            for label, text in group.earnings:
                rows.append((prefix + label, text))
        return rows
    return [
        (convert_snake_case_to_title_case(key), format_smart_value(key, value))
        for key, value in payload.get("data", {}).items()
    ]
